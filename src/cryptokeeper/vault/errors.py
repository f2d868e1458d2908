# Vault - Error Taxonomy
#
# Every failure the vault core can report to the UI layer.
# The core raises, the caller decides: re-prompt (wrong password),
# abort and recommend restoring an export (corrupt vault), or run
# first-time setup (missing vault). Nothing here triggers a rewrite.

from typing import Iterable, List, Optional


class VaultError(Exception):
    """Base class for all vault errors."""


class KeyDerivationError(VaultError):
    """KDF parameters are invalid (below the safe floor, unknown id, bad salt)."""


class AuthenticationError(VaultError):
    """A single AEAD open failed: wrong key, wrong nonce or tampered data."""


class WrongPasswordError(VaultError):
    """The derived key does not authenticate the vault."""

    def __init__(self, message: str = "Invalid master password - decryption failed."):
        super().__init__(message)


class CorruptVaultError(VaultError):
    """
    Vault is structurally invalid or fails authentication on well-formed records.

    Args:
        message: Human-readable reason
        entry_ids: Ids of entries that failed authentication, if any
    """

    def __init__(self, message: str, entry_ids: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.entry_ids: List[str] = list(entry_ids or [])


class UnsupportedFormatError(VaultError):
    """Vault was written by an unknown (future) format version."""

    def __init__(self, version: int):
        super().__init__(f"Unsupported vault format version {version}")
        self.version = version


class VaultMissingError(VaultError):
    """No vault at the given path (first-run condition)."""

    def __init__(self, path=None):
        message = "Vault not found. Run `keeper init` first."
        if path is not None:
            message = f"Vault not found at {path}. Run `keeper init` first."
        super().__init__(message)
        self.path = path


class VaultExistsError(VaultError):
    """Refusing to create a vault where one already exists."""


class VaultIOError(VaultError):
    """Filesystem failure while reading or writing vault data."""


class SessionLockedError(VaultError):
    """Operation attempted on a session that has been locked."""

    def __init__(self):
        super().__init__("Vault is locked. Unlock vault first.")


class EntryNotFoundError(VaultError):
    """No entry matches the given reference."""

    def __init__(self, ref: str):
        super().__init__(
            f"Entry '{ref}' not found. Use `keeper list` to see entries with their index numbers."
        )
        self.ref = ref


class AmbiguousEntryError(VaultError):
    """A label matches more than one entry."""

    def __init__(self, ref: str, entry_ids: Iterable[str]):
        self.entry_ids = list(entry_ids)
        super().__init__(
            f"'{ref}' matches {len(self.entry_ids)} entries; use the index or id instead."
        )
        self.ref = ref


class ViewPasswordRequiredError(VaultError):
    """Entry is protected by its own view password and none was given."""

    def __init__(self, label: str):
        super().__init__(f"Entry '{label}' is protected by a view password.")
        self.label = label


class WrongViewPasswordError(WrongPasswordError):
    """View password does not unwrap the entry key."""

    def __init__(self, message: str = "Incorrect view password."):
        super().__init__(message)


class RecoveryNotConfiguredError(VaultError):
    """Vault has no recovery question."""

    def __init__(self):
        super().__init__(
            "No recovery question has been configured. Set one up with `keeper recovery`."
        )


class RecoveryFailedError(WrongPasswordError):
    """Recovery answer does not unwrap the master key."""

    def __init__(self, message: str = "Incorrect recovery answer."):
        super().__init__(message)


class ClipboardError(VaultError):
    """System clipboard is unavailable or rejected the operation."""


class ConfigError(VaultError):
    """Configuration file is unreadable or holds invalid values."""
