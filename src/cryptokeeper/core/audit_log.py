# Core - Audit Logging
#
# Append-only structured log of every vault event: unlock attempts, entry
# access and changes, password changes, export/import, clipboard activity.
# Records carry ids, labels and counts only. Secrets, passwords, keys and
# ciphertext are never logged.

import logging
import os
import socket
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Types of events that can be logged."""
    # Vault lifecycle
    VAULT_CREATED = "vault.created"
    VAULT_UNLOCKED = "vault.unlocked"
    VAULT_LOCKED = "vault.locked"
    VAULT_UNLOCK_FAILED = "vault.unlock.failed"
    VAULT_CORRUPT = "vault.corrupt"
    VAULT_ERROR = "vault.error"

    # Entries
    ENTRY_ADDED = "vault.entry.added"
    ENTRY_ACCESSED = "vault.entry.accessed"
    ENTRY_UPDATED = "vault.entry.updated"
    ENTRY_DELETED = "vault.entry.deleted"

    # Whole-vault operations
    PASSWORD_CHANGED = "vault.password.changed"
    VAULT_EXPORTED = "vault.exported"
    VAULT_IMPORTED = "vault.imported"

    # View passwords and recovery
    VIEW_PASSWORD_SET = "vault.entry.view_password.set"
    VIEW_PASSWORD_REMOVED = "vault.entry.view_password.removed"
    VIEW_PASSWORD_FAILED = "vault.entry.view_password.failed"
    RECOVERY_CONFIGURED = "vault.recovery.configured"
    RECOVERY_CLEARED = "vault.recovery.cleared"
    VAULT_RECOVERED = "vault.recovered"
    VAULT_RECOVERY_FAILED = "vault.recovery.failed"

    # Clipboard
    CLIPBOARD_COPIED = "clipboard.copied"
    CLIPBOARD_CLEARED = "clipboard.cleared"
    CLIPBOARD_SKIPPED = "clipboard.skipped"

    # CLI
    SYSTEM_START = "system.start"


class EventSeverity(str, Enum):
    """
    Severity levels for audit events.

    - INFO: Normal activity
    - ALERT: Something the user should know about (failed unlock)
    - CRITICAL: Integrity problem (corrupt or tampered vault)
    """
    INFO = "info"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only audit logger for vault events.

    Features:
    - Structured JSON logging (structlog)
    - Automatic timestamp and event ID
    - OS user / host context
    - Daily log files
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: <vault dir>/audit_logs)
        """
        if log_dir is None:
            from .config import default_vault_dir
            log_dir = default_vault_dir() / "audit_logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        if os.name == "posix":
            os.chmod(self.log_dir, 0o700)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._file_handler: Optional[logging.Handler] = None
        self._setup_file_handler()

        self.logger = structlog.get_logger("cryptokeeper.audit")

    def _setup_file_handler(self):
        """Attach a daily log file to the audit logger."""
        today = datetime.now().strftime("%Y-%m-%d")
        log_file = self.log_dir / f"audit_{today}.log"

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))  # structlog formats

        audit_logger = logging.getLogger("cryptokeeper.audit")
        audit_logger.addHandler(file_handler)
        audit_logger.setLevel(logging.INFO)
        audit_logger.propagate = False
        self._file_handler = file_handler

    def close(self) -> None:
        """Detach and close the file handler."""
        if self._file_handler is None:
            return
        logging.getLogger("cryptokeeper.audit").removeHandler(self._file_handler)
        self._file_handler.close()
        self._file_handler = None

    @property
    def log_file(self) -> Optional[Path]:
        if self._file_handler is None:
            return None
        return Path(self._file_handler.baseFilename)

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_context: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Log an event (append-only).

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (never secrets!)
            user_context: Overrides the default OS user / host context

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())

        event_data = {
            "event_id": event_id,
            "event_type": event_type.value,
            "severity": severity.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details or {},
            "user_context": user_context or self._get_default_user_context(),
        }

        self.logger.info("vault_event", **event_data)

        return event_id

    def log_vault_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: EventSeverity = EventSeverity.INFO
    ) -> str:
        """
        Log a Vault event.

        Args:
            event_type: Type of Vault event
            message: Event description
            details: Additional details (ids, labels, counts - never secrets!)
            severity: Defaults to INFO

        Returns:
            str: Event ID
        """
        return self.log_event(
            event_type=event_type,
            severity=severity,
            message=f"Vault: {message}",
            details=details
        )

    def _get_default_user_context(self) -> Dict[str, Any]:
        """Get default user context (OS user, hostname, platform)."""
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
            "pid": os.getpid(),
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def set_audit_logger(instance: Optional[AuditLogger]) -> None:
    """Replace the singleton (for testing)."""
    global _audit_logger
    if _audit_logger is not None and _audit_logger is not instance:
        _audit_logger.close()
    _audit_logger = instance


def log_vault_event(event_type: EventType, message: str, **kwargs) -> str:
    """
    Convenience function for logging vault events.

    Usage:
        log_vault_event(
            EventType.ENTRY_DELETED,
            "Entry deleted",
            details={"entry_id": entry_id}
        )
    """
    return get_audit_logger().log_vault_event(event_type, message, **kwargs)
