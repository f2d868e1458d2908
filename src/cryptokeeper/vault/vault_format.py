# Vault - On-Disk Format
#
# Self-describing, length-prefixed binary container. All integers big-endian.
#
#   magic "CKPR" | u16 version | u32 header_len | header
#   | canary: nonce(24) | u32 len | ciphertext+tag
#   | u32 entry_count | entry_count x (u32 record_len | record)
#   | mac(32)  HMAC-SHA256 over everything before it
#
#   header = str8 kdf_id | u32 memory_cost | u32 time_cost | u32 parallelism
#            | bytes16 salt | str8 cipher_id
#            | u8 has_recovery [ str16 question | wrap ]
#   record = str16 id | str16 label | str8 kind | str16 network
#            | str16 public_address | str32 metadata | str8 created_at
#            | str8 updated_at | u8 protected [ wrap ]
#            | bytes8 nonce | bytes32 ciphertext+tag
#   wrap   = str8 kdf_id | u32 memory_cost | u32 time_cost | u32 parallelism
#            | bytes16 salt | bytes8 nonce | bytes16 wrapped_key+tag
#
# Pure functions, no I/O. Unknown versions are rejected, never guessed at.

import struct
from datetime import datetime
from typing import Iterable, List, Optional, Set

from .encryption import (
    CIPHER_XCHACHA20_POLY1305,
    KDF_ARGON2ID,
    KEY_LENGTH,
    MAC_LENGTH,
    NONCE_LENGTH,
    SALT_LENGTH,
    TAG_LENGTH,
    KdfParams,
)
from .errors import CorruptVaultError, UnsupportedFormatError
from .models import (
    FORMAT_VERSION,
    CanaryRecord,
    EntryKind,
    EntryRecord,
    EntrySummary,
    KeyWrap,
    RecoveryRecord,
    VaultFile,
    VaultHeader,
)

MAGIC = b"CKPR"
SUPPORTED_VERSIONS = (FORMAT_VERSION,)

_ENTRY_AD_PREFIX = b"CKPR-entry\x00"

_U8 = struct.Struct(">B")
_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")


# ── Writing ──────────────────────────────────────────────────────────


class _Writer:
    def __init__(self):
        self._parts: List[bytes] = []

    def raw(self, data: bytes) -> "_Writer":
        self._parts.append(bytes(data))
        return self

    def u8(self, value: int) -> "_Writer":
        return self.raw(_U8.pack(value))

    def u16(self, value: int) -> "_Writer":
        return self.raw(_U16.pack(value))

    def u32(self, value: int) -> "_Writer":
        return self.raw(_U32.pack(value))

    def blob(self, data: bytes, width: struct.Struct) -> "_Writer":
        data = bytes(data)
        limit = 1 << (8 * width.size)
        if len(data) >= limit:
            raise ValueError(f"field too long for {width.size}-byte length prefix: {len(data)} bytes")
        self._parts.append(width.pack(len(data)))
        self._parts.append(data)
        return self

    def text(self, value: str, width: struct.Struct) -> "_Writer":
        return self.blob(value.encode("utf-8"), width)

    def getvalue(self) -> bytes:
        return b"".join(self._parts)


def _kdf_fields(writer: _Writer, params: KdfParams) -> _Writer:
    return (
        writer
        .text(params.kdf_id, _U8)
        .u32(params.memory_cost)
        .u32(params.time_cost)
        .u32(params.parallelism)
    )


def _wrap_fields(writer: _Writer, wrap: KeyWrap) -> _Writer:
    return _kdf_fields(writer, wrap.kdf).blob(wrap.salt, _U16).blob(wrap.nonce, _U8).blob(wrap.wrapped_key, _U16)


def header_bytes(header: VaultHeader) -> bytes:
    """Encode the header body. Also used as associated data for the canary."""
    writer = _kdf_fields(_Writer(), header.kdf).blob(header.salt, _U16).text(header.cipher_id, _U8)
    if header.recovery is None:
        return writer.u8(0).getvalue()
    writer.u8(1).text(header.recovery.question, _U16)
    return _wrap_fields(writer, header.recovery.wrap).getvalue()


def _record_cleartext(writer: _Writer, record: EntryRecord) -> _Writer:
    writer = (
        writer
        .text(record.id, _U16)
        .text(record.label, _U16)
        .text(record.kind.value, _U8)
        .text(record.network, _U16)
        .text(record.public_address or "", _U16)
        .text(record.metadata, _U32)
        .text(record.created_at.isoformat(), _U8)
        .text(record.updated_at.isoformat(), _U8)
    )
    if record.protection is None:
        return writer.u8(0)
    return _wrap_fields(writer.u8(1), record.protection)


def entry_associated_data(record: EntryRecord) -> bytes:
    """
    Bytes bound to an entry's ciphertext as AEAD associated data.

    Covers every cleartext field and the view-password wrap, so relabelling,
    re-dating or unprotecting an entry on disk makes it fail authentication.
    """
    return _record_cleartext(_Writer().raw(_ENTRY_AD_PREFIX), record).getvalue()


def _record_bytes(record: EntryRecord) -> bytes:
    writer = _record_cleartext(_Writer(), record)
    return writer.blob(record.nonce, _U8).blob(record.ciphertext, _U32).getvalue()


def signed_portion(vault_file: VaultFile) -> bytes:
    """Everything the manifest MAC covers (the whole file minus the MAC)."""
    writer = _Writer().raw(MAGIC).u16(vault_file.header.format_version)
    writer.blob(header_bytes(vault_file.header), _U32)
    writer.raw(vault_file.canary.nonce).blob(vault_file.canary.ciphertext, _U32)
    writer.u32(len(vault_file.records))
    for record in vault_file.records:
        writer.blob(_record_bytes(record), _U32)
    return writer.getvalue()


def serialize(vault_file: VaultFile) -> bytes:
    """
    Encode a VaultFile to bytes.

    Raises:
        ValueError: If the MAC has not been computed or a field is oversized
    """
    if len(vault_file.mac) != MAC_LENGTH:
        raise ValueError("vault_file.mac must be computed before serializing")
    if len(vault_file.canary.nonce) != NONCE_LENGTH:
        raise ValueError("canary nonce has the wrong length")
    return signed_portion(vault_file) + vault_file.mac


# ── Reading ──────────────────────────────────────────────────────────


class _Reader:
    def __init__(self, data: bytes, what: str = "vault"):
        self._data = memoryview(data)
        self._pos = 0
        self._what = what

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def raw(self, size: int) -> bytes:
        if size > self.remaining:
            raise CorruptVaultError(f"Truncated {self._what}: expected {size} more bytes")
        chunk = self._data[self._pos:self._pos + size].tobytes()
        self._pos += size
        return chunk

    def _int(self, width: struct.Struct) -> int:
        return width.unpack(self.raw(width.size))[0]

    def u8(self) -> int:
        return self._int(_U8)

    def u16(self) -> int:
        return self._int(_U16)

    def u32(self) -> int:
        return self._int(_U32)

    def blob(self, width: struct.Struct) -> bytes:
        return self.raw(self._int(width))

    def text(self, width: struct.Struct, name: str) -> str:
        data = self.blob(width)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            raise CorruptVaultError(f"Invalid UTF-8 in {self._what} field '{name}'") from None

    def expect_end(self) -> None:
        if self.remaining:
            raise CorruptVaultError(f"{self.remaining} unexpected trailing bytes in {self._what}")


def _read_kdf(reader: _Reader, entry_ids: Iterable[str] = ()) -> KdfParams:
    kdf_id = reader.text(_U8, "kdf_id")
    memory_cost = reader.u32()
    time_cost = reader.u32()
    parallelism = reader.u32()
    if kdf_id != KDF_ARGON2ID:
        raise CorruptVaultError(f"Unknown KDF identifier {kdf_id!r}", entry_ids)
    return KdfParams(
        memory_cost=memory_cost,
        time_cost=time_cost,
        parallelism=parallelism,
        kdf_id=kdf_id,
    )


def _read_flag(reader: _Reader, name: str, entry_ids: Iterable[str] = ()) -> bool:
    flag = reader.u8()
    if flag not in (0, 1):
        raise CorruptVaultError(f"Invalid {name} flag {flag}", entry_ids)
    return flag == 1


def _read_wrap(reader: _Reader, entry_ids: Iterable[str] = ()) -> KeyWrap:
    kdf = _read_kdf(reader, entry_ids)
    salt = reader.blob(_U16)
    nonce = reader.blob(_U8)
    wrapped_key = reader.blob(_U16)
    if len(salt) != SALT_LENGTH:
        raise CorruptVaultError(f"Key wrap salt must be {SALT_LENGTH} bytes", entry_ids)
    if len(nonce) != NONCE_LENGTH:
        raise CorruptVaultError(f"Key wrap nonce must be {NONCE_LENGTH} bytes", entry_ids)
    if len(wrapped_key) != KEY_LENGTH + TAG_LENGTH:
        raise CorruptVaultError("Wrapped key has the wrong length", entry_ids)
    return KeyWrap(kdf=kdf, salt=salt, nonce=nonce, wrapped_key=wrapped_key)


def _parse_header(data: bytes, version: int) -> VaultHeader:
    reader = _Reader(data, "header")
    kdf = _read_kdf(reader)
    salt = reader.blob(_U16)
    cipher_id = reader.text(_U8, "cipher_id")
    recovery = None
    if _read_flag(reader, "recovery"):
        question = reader.text(_U16, "recovery question")
        recovery = RecoveryRecord(question=question, wrap=_read_wrap(reader))
    reader.expect_end()

    if cipher_id != CIPHER_XCHACHA20_POLY1305:
        raise CorruptVaultError(f"Unknown cipher identifier {cipher_id!r}")
    if len(salt) != SALT_LENGTH:
        raise CorruptVaultError(f"Salt must be {SALT_LENGTH} bytes, got {len(salt)}")

    return VaultHeader(
        kdf=kdf,
        salt=salt,
        format_version=version,
        cipher_id=cipher_id,
        recovery=recovery,
    )


def _parse_timestamp(value: str, name: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise CorruptVaultError(f"Invalid timestamp in record field '{name}'") from None
    if parsed.tzinfo is None:
        raise CorruptVaultError(f"Timestamp without timezone in record field '{name}'")
    return parsed


def _parse_record(data: bytes) -> EntryRecord:
    reader = _Reader(data, "entry record")
    entry_id = reader.text(_U16, "id")
    label = reader.text(_U16, "label")
    kind_value = reader.text(_U8, "kind")
    network = reader.text(_U16, "network")
    public_address = reader.text(_U16, "public_address")
    metadata = reader.text(_U32, "metadata")
    created_at = _parse_timestamp(reader.text(_U8, "created_at"), "created_at")
    updated_at = _parse_timestamp(reader.text(_U8, "updated_at"), "updated_at")
    protection = _read_wrap(reader, [entry_id]) if _read_flag(reader, "protected", [entry_id]) else None
    nonce = reader.blob(_U8)
    ciphertext = reader.blob(_U32)
    reader.expect_end()

    if not entry_id:
        raise CorruptVaultError("Entry record without id")
    try:
        kind = EntryKind(kind_value)
    except ValueError:
        raise CorruptVaultError(f"Unknown entry kind {kind_value!r}", [entry_id]) from None
    if len(nonce) != NONCE_LENGTH:
        raise CorruptVaultError(f"Entry nonce must be {NONCE_LENGTH} bytes", [entry_id])
    if len(ciphertext) < TAG_LENGTH:
        raise CorruptVaultError("Entry ciphertext shorter than its tag", [entry_id])

    return EntryRecord(
        id=entry_id,
        label=label,
        kind=kind,
        nonce=nonce,
        ciphertext=ciphertext,
        created_at=created_at,
        updated_at=updated_at,
        metadata=metadata,
        network=network,
        public_address=public_address or None,
        protection=protection,
    )


def deserialize(data: bytes) -> VaultFile:
    """
    Decode bytes into a VaultFile. Performs no cryptography.

    Raises:
        UnsupportedFormatError: Version is not one this build understands
        CorruptVaultError: Anything truncated, malformed or trailing
    """
    reader = _Reader(data)
    if reader.raw(len(MAGIC)) != MAGIC:
        raise CorruptVaultError("Invalid vault file - corrupted or wrong format.")
    version = reader.u16()
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedFormatError(version)

    header = _parse_header(reader.blob(_U32), version)

    canary_nonce = reader.raw(NONCE_LENGTH)
    canary_ct = reader.blob(_U32)
    if len(canary_ct) < TAG_LENGTH:
        raise CorruptVaultError("Canary ciphertext shorter than its tag")

    count = reader.u32()
    records: List[EntryRecord] = []
    seen: Set[str] = set()
    for _ in range(count):
        record = _parse_record(reader.blob(_U32))
        if record.id in seen:
            raise CorruptVaultError(f"Duplicate entry id {record.id}", [record.id])
        seen.add(record.id)
        records.append(record)

    mac = reader.raw(MAC_LENGTH)
    reader.expect_end()

    return VaultFile(
        header=header,
        canary=CanaryRecord(nonce=canary_nonce, ciphertext=canary_ct),
        records=records,
        mac=mac,
    )


def peek_summaries(data: bytes) -> List[EntrySummary]:
    """Entry summaries from cleartext metadata; no password needed, nothing verified."""
    return [record.summary() for record in deserialize(data).records]


def is_vault_data(data: bytes) -> bool:
    return data[:len(MAGIC)] == MAGIC


