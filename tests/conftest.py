"""
Shared pytest fixtures for the CryptoKeeper test suite.

Autouse fixtures below isolate tests from the real user data:
  - Audit logger -> temp directory  (no test events in ~/.cryptokeeper/audit_logs)
  - Config       -> temp directory  (CRYPTOKEEPER_VAULT_DIR points at tmp_path)
"""

import threading
from pathlib import Path

import pytest

from cryptokeeper.vault import EntryKind, KdfParams, Session


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Point the global AuditLogger at a temp directory for every test."""
    import cryptokeeper.core.audit_log as audit_mod

    audit_mod.set_audit_logger(audit_mod.AuditLogger(log_dir=tmp_path / "audit_logs"))

    yield

    audit_mod.set_audit_logger(None)


@pytest.fixture(autouse=True)
def _isolate_config(tmp_path, monkeypatch):
    """Keep every default path inside tmp_path."""
    import cryptokeeper.core.config as config_mod

    monkeypatch.setenv(config_mod.VAULT_DIR_ENV, str(tmp_path / "keeper"))
    config_mod.set_config(None)

    yield

    config_mod.set_config(None)


@pytest.fixture
def fast_kdf():
    """Lowest Argon2id cost the vault accepts, so tests stay quick."""
    return KdfParams(memory_cost=8192, time_cost=1, parallelism=1)


@pytest.fixture
def vault_path(tmp_path) -> Path:
    return tmp_path / "vaults" / "vault.ck"


@pytest.fixture
def session(vault_path, fast_kdf):
    """An unlocked, empty vault protected by 'correct-horse'."""
    s = Session.create(vault_path, "correct-horse", kdf_params=fast_kdf)
    yield s
    s.lock()


@pytest.fixture
def btc_key():
    return "a" * 32 + "0123456789abcdef" * 2


@pytest.fixture
def populated(session, btc_key):
    """Session with three entries in insertion order."""
    session.add("BTC cold key", EntryKind.PRIVATE_KEY, btc_key, network="Bitcoin")
    session.add(
        "Ledger seed",
        EntryKind.SEED_PHRASE,
        "abandon ability able about above absent absorb abstract absurd abuse access accident",
        metadata="hardware wallet backup",
    )
    session.add(
        "ETH hot wallet",
        EntryKind.PRIVATE_KEY,
        "0x" + "f" * 64,
        network="Ethereum",
        public_address="0x52908400098527886E0F7030069857D2E4169EE7",
    )
    return session


class FakeClipboard:
    """In-memory stand-in for pyperclip."""

    def __init__(self):
        self.content = ""
        self.writes = []
        self._lock = threading.Lock()

    def copy(self, text):
        with self._lock:
            self.content = text
            self.writes.append(text)

    def paste(self):
        with self._lock:
            return self.content


@pytest.fixture
def board():
    return FakeClipboard()
