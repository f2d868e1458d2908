# Vault Module - Encrypted Key & Seed Storage
#
# Argon2id master key, XChaCha20-Poly1305 per-entry encryption,
# HMAC-SHA256 manifest, atomic single-file persistence.
# Optional per-entry view passwords and security-question recovery.

from .encryption import Cipher, KdfParams, KeyDerivation, check_master_password
from .errors import (
    AmbiguousEntryError,
    AuthenticationError,
    ClipboardError,
    ConfigError,
    CorruptVaultError,
    EntryNotFoundError,
    KeyDerivationError,
    RecoveryFailedError,
    RecoveryNotConfiguredError,
    SessionLockedError,
    UnsupportedFormatError,
    VaultError,
    VaultExistsError,
    VaultIOError,
    VaultMissingError,
    ViewPasswordRequiredError,
    WrongPasswordError,
    WrongViewPasswordError,
)
from .key_wrap import MIN_ANSWER_LENGTH, RECOVERY_QUESTIONS, normalize_answer
from .models import Entry, EntryKind, EntrySummary, ImportReport
from .secure_memory import SecretBuffer
from .session import Session
from .vault_store import VaultStore

__all__ = [
    "Session",
    "VaultStore",
    "KeyDerivation",
    "KdfParams",
    "Cipher",
    "SecretBuffer",
    "check_master_password",
    # View passwords and recovery
    "RECOVERY_QUESTIONS",
    "MIN_ANSWER_LENGTH",
    "normalize_answer",
    # Models
    "Entry",
    "EntryKind",
    "EntrySummary",
    "ImportReport",
    # Errors
    "VaultError",
    "WrongPasswordError",
    "CorruptVaultError",
    "UnsupportedFormatError",
    "VaultMissingError",
    "VaultExistsError",
    "VaultIOError",
    "KeyDerivationError",
    "AuthenticationError",
    "SessionLockedError",
    "ViewPasswordRequiredError",
    "WrongViewPasswordError",
    "RecoveryNotConfiguredError",
    "RecoveryFailedError",
    "EntryNotFoundError",
    "AmbiguousEntryError",
    "ClipboardError",
    "ConfigError",
]
