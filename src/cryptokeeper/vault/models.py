# Vault - Data Model
#
# Two shapes for every entry:
#   EntryRecord - sealed, exactly what lives on disk
#   Entry       - decrypted, exists only inside an unlocked Session
# plus the VaultHeader / VaultFile container, the optional key wraps for
# view passwords and recovery, and import reporting.

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from .encryption import CIPHER_XCHACHA20_POLY1305, KdfParams
from .secure_memory import SecretBuffer

FORMAT_VERSION = 1


class EntryKind(str, Enum):
    """What kind of secret an entry holds."""
    PRIVATE_KEY = "private-key"
    SEED_PHRASE = "seed-phrase"
    OTHER = "other"

    @property
    def display_name(self) -> str:
        return {
            EntryKind.PRIVATE_KEY: "Private Key",
            EntryKind.SEED_PHRASE: "Seed Phrase",
            EntryKind.OTHER: "Other",
        }[self]

    @classmethod
    def parse(cls, value: str) -> "EntryKind":
        """Accept 'private-key', 'private_key', 'Private Key', etc."""
        normalized = value.strip().lower().replace("_", "-").replace(" ", "-")
        return cls(normalized)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_entry_id() -> str:
    return uuid4().hex


@dataclass(frozen=True)
class KeyWrap:
    """A 256-bit key sealed under Argon2id(password, salt)."""
    kdf: KdfParams
    salt: bytes
    nonce: bytes
    wrapped_key: bytes


@dataclass(frozen=True)
class RecoveryRecord:
    """Security question plus the master key wrapped under its answer."""
    question: str
    wrap: KeyWrap


@dataclass(frozen=True)
class VaultHeader:
    """Format version, KDF parameters, salt, cipher id and optional recovery."""
    kdf: KdfParams
    salt: bytes
    format_version: int = FORMAT_VERSION
    cipher_id: str = CIPHER_XCHACHA20_POLY1305
    recovery: Optional[RecoveryRecord] = None


@dataclass(frozen=True)
class CanaryRecord:
    """Known plaintext sealed under the entry key; verifies the password."""
    nonce: bytes
    ciphertext: bytes


@dataclass(frozen=True)
class EntryRecord:
    """An entry as stored on disk: cleartext metadata + sealed secret."""
    id: str
    label: str
    kind: EntryKind
    nonce: bytes
    ciphertext: bytes
    created_at: datetime
    updated_at: datetime
    metadata: str = ""
    network: str = ""
    public_address: Optional[str] = None
    protection: Optional[KeyWrap] = None

    def summary(self) -> "EntrySummary":
        return EntrySummary(
            id=self.id,
            label=self.label,
            kind=self.kind,
            metadata=self.metadata,
            network=self.network,
            public_address=self.public_address,
            created_at=self.created_at,
            updated_at=self.updated_at,
            protected=self.protection is not None,
        )


@dataclass
class VaultFile:
    """Header + canary + entry records (insertion order) + manifest MAC."""
    header: VaultHeader
    canary: CanaryRecord
    records: List[EntryRecord] = field(default_factory=list)
    mac: bytes = b""

    def find(self, entry_id: str) -> Optional[EntryRecord]:
        for record in self.records:
            if record.id == entry_id:
                return record
        return None


@dataclass(frozen=True)
class EntrySummary:
    """Everything about an entry except the secret."""
    id: str
    label: str
    kind: EntryKind
    created_at: datetime
    updated_at: datetime
    metadata: str = ""
    network: str = ""
    public_address: Optional[str] = None
    protected: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "kind": self.kind.value,
            "network": self.network,
            "public_address": self.public_address,
            "protected": self.protected,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class Entry:
    """
    A decrypted entry.

    The secret is a SecretBuffer; use the entry as a context manager so the
    secret is zeroed when the block exits:

        with session.get(entry_id) as entry:
            show(entry.secret.text())

    Inside a Session, a protected entry's `secret` holds its sealed payload;
    Session.get() opens it with the view password.
    """
    id: str
    label: str
    kind: EntryKind
    secret: SecretBuffer
    created_at: datetime
    updated_at: datetime
    metadata: str = ""
    network: str = ""
    public_address: Optional[str] = None
    protection: Optional[KeyWrap] = None

    @property
    def protected(self) -> bool:
        return self.protection is not None

    def summary(self) -> EntrySummary:
        return EntrySummary(
            id=self.id,
            label=self.label,
            kind=self.kind,
            metadata=self.metadata,
            network=self.network,
            public_address=self.public_address,
            created_at=self.created_at,
            updated_at=self.updated_at,
            protected=self.protection is not None,
        )

    def copy(self) -> "Entry":
        """Independent copy with its own secret buffer."""
        return replace(self, secret=self.secret.copy())

    def to_dict(self, reveal: bool = False) -> Dict[str, Any]:
        data = self.summary().to_dict()
        if reveal:
            data["secret"] = self.secret.text()
        return data

    def wipe(self) -> None:
        self.secret.wipe()

    def __enter__(self) -> "Entry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return (
            f"Entry(id={self.id!r}, label={self.label!r}, kind={self.kind.value!r}, "
            f"secret=[REDACTED])"
        )


@dataclass
class ImportReport:
    """Outcome of merging a backup into the live vault."""
    source: str
    imported: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)
    overwritten: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.imported or self.overwritten)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "imported": list(self.imported),
            "conflicts": list(self.conflicts),
            "overwritten": list(self.overwritten),
        }
