# Tests for the structlog audit logger: JSON records, daily files,
# singleton handling

import json

from cryptokeeper.core import audit_log as audit_mod
from cryptokeeper.core.audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
    log_vault_event,
    set_audit_logger,
)


def _records(logger):
    lines = logger.log_file.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


class TestAuditLogger:
    def test_writes_json_line(self, tmp_path):
        logger = AuditLogger(log_dir=tmp_path / "logs")
        set_audit_logger(logger)
        event_id = logger.log_vault_event(
            EventType.ENTRY_ADDED, "Entry added: BTC cold key", details={"entry_id": "abc"}
        )

        record = _records(logger)[-1]
        assert record["event"] == "vault_event"
        assert record["event_id"] == event_id
        assert record["event_type"] == "vault.entry.added"
        assert record["severity"] == "info"
        assert record["message"] == "Vault: Entry added: BTC cold key"
        assert record["details"] == {"entry_id": "abc"}
        assert "hostname" in record["user_context"]

    def test_daily_file_name(self, tmp_path):
        logger = AuditLogger(log_dir=tmp_path / "logs")
        set_audit_logger(logger)
        assert logger.log_file.parent == tmp_path / "logs"
        assert logger.log_file.name.startswith("audit_")
        assert logger.log_file.suffix == ".log"

    def test_severity_override(self, tmp_path):
        logger = AuditLogger(log_dir=tmp_path / "logs")
        set_audit_logger(logger)
        logger.log_vault_event(EventType.VAULT_UNLOCK_FAILED, "bad password", severity=EventSeverity.ALERT)
        assert _records(logger)[-1]["severity"] == "alert"

    def test_module_helper_uses_singleton(self):
        log_vault_event(EventType.VAULT_LOCKED, "Vault locked")
        record = _records(get_audit_logger())[-1]
        assert record["event_type"] == "vault.locked"

    def test_set_audit_logger_closes_previous(self, tmp_path):
        first = AuditLogger(log_dir=tmp_path / "one")
        set_audit_logger(first)
        set_audit_logger(AuditLogger(log_dir=tmp_path / "two"))
        assert first.log_file is None
        assert audit_mod._audit_logger.log_dir == tmp_path / "two"
