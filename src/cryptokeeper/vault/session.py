# Vault - Session
#
# One unlocked vault bound to one master key.
#
#   Session.create() / Session.unlock() / Session.recover()  -> Session
#   add / get / update / delete / list / search / resolve
#   set_view_password / set_recovery / clear_recovery
#   change_password / export / import_vault
#   lock()  -> master key, subkeys and every cached secret zeroed
#
# Every mutation re-seals the touched entry with a fresh nonce and saves the
# whole file before returning (write-through). If the save fails, the
# in-memory state is exactly what it was before the call.
#
# Not thread-safe: one caller per session. No global instance; tests open
# as many independent sessions as they like.

import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..core.audit_log import EventSeverity, EventType, get_audit_logger
from . import key_wrap, vault_format
from .encryption import Cipher, KdfParams, KeyDerivation, ManifestMac
from .errors import (
    AmbiguousEntryError,
    AuthenticationError,
    CorruptVaultError,
    EntryNotFoundError,
    KeyDerivationError,
    RecoveryFailedError,
    RecoveryNotConfiguredError,
    SessionLockedError,
    VaultError,
    VaultExistsError,
    ViewPasswordRequiredError,
    WrongPasswordError,
    WrongViewPasswordError,
)
from .models import (
    CanaryRecord,
    Entry,
    EntryKind,
    EntryRecord,
    EntrySummary,
    ImportReport,
    VaultFile,
    VaultHeader,
    new_entry_id,
    utc_now,
)
from .secure_memory import SecretBuffer
from .vault_store import VaultStore

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]
Password = Union[str, bytes]
SecretInput = Union[str, bytes, bytearray, SecretBuffer]

CANARY_PLAINTEXT = b"CRYPTOKEEPER_VAULT_OK"


class _Keys:
    """Master key plus the two subkeys expanded from it."""

    __slots__ = ("master", "entry", "manifest")

    def __init__(self, master: SecretBuffer):
        self.master = master
        self.entry, self.manifest = KeyDerivation.split(master)

    @classmethod
    def derive(cls, password: Password, salt: bytes, params: KdfParams) -> "_Keys":
        return cls(KeyDerivation.derive(password, salt, params))

    def wipe(self) -> None:
        self.master.wipe()
        self.entry.wipe()
        self.manifest.wipe()


def _to_secret(secret: SecretInput) -> SecretBuffer:
    if isinstance(secret, SecretBuffer):
        return secret.copy()
    if isinstance(secret, str):
        return SecretBuffer.from_text(secret)
    return SecretBuffer(secret)


def _seal(keys: _Keys, entry: Entry) -> EntryRecord:
    """Seal an entry under a fresh nonce, binding its cleartext fields."""
    record = EntryRecord(
        id=entry.id,
        label=entry.label,
        kind=entry.kind,
        nonce=Cipher.generate_nonce(),
        ciphertext=b"",
        created_at=entry.created_at,
        updated_at=entry.updated_at,
        metadata=entry.metadata,
        network=entry.network,
        public_address=entry.public_address,
        protection=entry.protection,
    )
    ciphertext = Cipher.seal(
        keys.entry,
        record.nonce,
        entry.secret.view(),
        vault_format.entry_associated_data(record),
    )
    return replace(record, ciphertext=ciphertext)


def _seal_new(keys: _Keys, entry: Entry) -> EntryRecord:
    """_seal for an entry nothing else owns yet: its secret is zeroed if sealing fails."""
    try:
        return _seal(keys, entry)
    except ValueError:
        entry.wipe()
        raise


def _open(keys: _Keys, record: EntryRecord) -> Entry:
    secret = Cipher.open(
        keys.entry,
        record.nonce,
        record.ciphertext,
        vault_format.entry_associated_data(record),
    )
    return Entry(
        id=record.id,
        label=record.label,
        kind=record.kind,
        secret=secret,
        created_at=record.created_at,
        updated_at=record.updated_at,
        metadata=record.metadata,
        network=record.network,
        public_address=record.public_address,
        protection=record.protection,
    )


def _new_canary(keys: _Keys, header: VaultHeader) -> CanaryRecord:
    nonce = Cipher.generate_nonce()
    return CanaryRecord(
        nonce=nonce,
        ciphertext=Cipher.seal(
            keys.entry, nonce, CANARY_PLAINTEXT, vault_format.header_bytes(header)
        ),
    )


def _build_file(
    keys: _Keys, header: VaultHeader, canary: CanaryRecord, records: Iterable[EntryRecord]
) -> VaultFile:
    vault_file = VaultFile(header=header, canary=canary, records=list(records))
    vault_file.mac = ManifestMac.compute(keys.manifest, vault_format.signed_portion(vault_file))
    return vault_file


def _fresh_vault(password: Password, params: KdfParams) -> Tuple[_Keys, VaultHeader, CanaryRecord]:
    """New salt, new key, new canary. No recovery."""
    params.validate()
    header = VaultHeader(kdf=params, salt=KeyDerivation.generate_salt())
    keys = _Keys.derive(password, header.salt, header.kdf)
    return keys, header, _new_canary(keys, header)


def _open_vault(vault_file: VaultFile, password: Password) -> Tuple[_Keys, Dict[str, Entry]]:
    header = vault_file.header
    try:
        keys = _Keys.derive(password, header.salt, header.kdf)
    except KeyDerivationError as e:
        raise CorruptVaultError(f"Vault header holds unusable KDF parameters: {e}") from e
    return keys, _authenticate(vault_file, keys)


def _authenticate(vault_file: VaultFile, keys: _Keys) -> Dict[str, Entry]:
    """
    Authenticate a whole VaultFile under `keys`. All or nothing.

    Order: canary (password check), every entry, then the manifest MAC.
    Wipes `keys` on failure.

    Raises:
        WrongPasswordError: Canary does not open under the key
        CorruptVaultError: Header, entries or manifest fail to verify
    """
    try:
        try:
            canary = Cipher.open(
                keys.entry,
                vault_file.canary.nonce,
                vault_file.canary.ciphertext,
                vault_format.header_bytes(vault_file.header),
            )
        except AuthenticationError:
            raise WrongPasswordError() from None
        with canary:
            if not canary.equals(CANARY_PLAINTEXT):
                raise CorruptVaultError("Vault canary holds unexpected content")

        entries: Dict[str, Entry] = {}
        failed: List[str] = []
        for record in vault_file.records:
            try:
                entries[record.id] = _open(keys, record)
            except AuthenticationError:
                failed.append(record.id)
        if failed:
            _wipe_entries(entries.values())
            raise CorruptVaultError(
                f"{len(failed)} entr{'y' if len(failed) == 1 else 'ies'} failed authentication. "
                "Restore from an export.",
                failed,
            )

        if not ManifestMac.verify(keys.manifest, vault_format.signed_portion(vault_file), vault_file.mac):
            _wipe_entries(entries.values())
            raise CorruptVaultError("Vault manifest does not verify: records were added, removed or reordered")
    except VaultError:
        keys.wipe()
        raise

    return entries


def _wipe_entries(entries: Iterable[Entry]) -> None:
    for entry in entries:
        entry.wipe()


class Session:
    """
    An unlocked vault.

    Usage:
        with Session.unlock(path, password) as session:
            for summary in session.list():
                print(summary.label)
        # keys and secrets are zeroed here

    Construct only through create(), unlock() or recover().
    """

    def __init__(
        self,
        path: Path,
        store: VaultStore,
        header: VaultHeader,
        canary: CanaryRecord,
        keys: _Keys,
        records: Dict[str, EntryRecord],
        entries: Dict[str, Entry],
    ):
        self._path = path
        self._store = store
        self._header = header
        self._canary = canary
        self._keys: Optional[_Keys] = keys
        self._records = records
        self._entries = entries
        self.logger = get_audit_logger()

    # ── Construction ─────────────────────────────────────────────────

    @classmethod
    def create(
        cls,
        path: PathLike,
        password: Password,
        kdf_params: Optional[KdfParams] = None,
        store: Optional[VaultStore] = None,
    ) -> "Session":
        """
        Create an empty vault at `path` and return it unlocked.

        Raises:
            VaultExistsError: A vault already exists at path
            KeyDerivationError: kdf_params below the safe floor
            VaultIOError: The file could not be written
        """
        path = Path(path)
        store = store or VaultStore()
        if store.exists(path):
            raise VaultExistsError(f"Vault already exists at {path}. Unlock it instead.")

        keys, header, canary = _fresh_vault(password, kdf_params or KdfParams())
        try:
            store.save(path, _build_file(keys, header, canary, []))
        except VaultError as e:
            keys.wipe()
            get_audit_logger().log_event(
                event_type=EventType.VAULT_ERROR,
                severity=EventSeverity.CRITICAL,
                message=f"Failed to initialize vault: {e}",
                details={"path": str(path)},
            )
            raise

        get_audit_logger().log_vault_event(
            EventType.VAULT_CREATED,
            "Vault initialized with master password",
            details={"path": str(path), "kdf": header.kdf.to_dict()},
        )
        return cls(path, store, header, canary, keys, {}, {})

    @classmethod
    def unlock(
        cls,
        path: PathLike,
        password: Password,
        store: Optional[VaultStore] = None,
    ) -> "Session":
        """
        Open an existing vault.

        Raises:
            VaultMissingError: Nothing at path
            WrongPasswordError: Password does not open the vault
            CorruptVaultError: Structure or authentication failure (entry_ids
                               names the entries that failed)
            UnsupportedFormatError: Written by a newer format version
        """
        path = Path(path)
        store = store or VaultStore()
        audit = get_audit_logger()

        try:
            vault_file = store.load(path)
            keys, entries = _open_vault(vault_file, password)
        except WrongPasswordError:
            audit.log_vault_event(
                EventType.VAULT_UNLOCK_FAILED,
                "Vault unlock failed: incorrect password",
                details={"path": str(path)},
                severity=EventSeverity.ALERT,
            )
            raise
        except CorruptVaultError as e:
            audit.log_vault_event(
                EventType.VAULT_CORRUPT,
                f"Vault failed integrity check: {e}",
                details={"path": str(path), "entry_ids": e.entry_ids},
                severity=EventSeverity.CRITICAL,
            )
            raise

        audit.log_vault_event(
            EventType.VAULT_UNLOCKED,
            "Vault unlocked successfully",
            details={"path": str(path), "entries": len(entries)},
        )
        records = {record.id: record for record in vault_file.records}
        return cls(path, store, vault_file.header, vault_file.canary, keys, records, entries)

    @classmethod
    def recover(
        cls,
        path: PathLike,
        answer: str,
        new_password: Password,
        kdf_params: Optional[KdfParams] = None,
        store: Optional[VaultStore] = None,
    ) -> "Session":
        """
        Reset a forgotten master password with the recovery answer.

        The answer unwraps the master key, the whole vault is authenticated
        under it, then everything is re-keyed under new_password in one save.
        Recovery stays configured with the same question and answer.

        Raises:
            RecoveryNotConfiguredError: The vault has no recovery question
            RecoveryFailedError: Wrong answer
            CorruptVaultError: Recovery data or vault fail to verify
        """
        path = Path(path)
        store = store or VaultStore()
        audit = get_audit_logger()

        vault_file = store.load(path)
        recovery = vault_file.header.recovery
        if recovery is None:
            raise RecoveryNotConfiguredError()

        try:
            try:
                master = key_wrap.recover_master_key(recovery, answer)
            except AuthenticationError:
                raise RecoveryFailedError() from None
            except KeyDerivationError as e:
                raise CorruptVaultError(f"Recovery data holds unusable KDF parameters: {e}") from e
            keys = _Keys(master)
            try:
                entries = _authenticate(vault_file, keys)
            except WrongPasswordError:
                raise CorruptVaultError("Recovery data does not match this vault") from None
        except RecoveryFailedError:
            audit.log_vault_event(
                EventType.VAULT_RECOVERY_FAILED,
                "Vault recovery failed: incorrect answer",
                details={"path": str(path)},
                severity=EventSeverity.ALERT,
            )
            raise
        except CorruptVaultError as e:
            audit.log_vault_event(
                EventType.VAULT_CORRUPT,
                f"Vault failed integrity check during recovery: {e}",
                details={"path": str(path), "entry_ids": e.entry_ids},
                severity=EventSeverity.CRITICAL,
            )
            raise

        records = {record.id: record for record in vault_file.records}
        session = cls(path, store, vault_file.header, vault_file.canary, keys, records, entries)
        try:
            session._rekey(new_password, kdf_params, recovery_answer=answer)
        except BaseException:
            session.lock()
            raise

        audit.log_vault_event(
            EventType.VAULT_RECOVERED,
            "Master password reset with recovery answer",
            details={"path": str(path), "entries": len(entries)},
            severity=EventSeverity.ALERT,
        )
        return session

    @staticmethod
    def read_recovery_question(path: PathLike, store: Optional[VaultStore] = None) -> str:
        """
        Recovery question from the cleartext header. No password needed,
        nothing is verified.

        Raises:
            RecoveryNotConfiguredError: The vault has no recovery question
        """
        recovery = (store or VaultStore()).load(Path(path)).header.recovery
        if recovery is None:
            raise RecoveryNotConfiguredError()
        return recovery.question

    # ── Lifecycle ────────────────────────────────────────────────────

    @property
    def path(self) -> Path:
        return self._path

    @property
    def kdf_params(self) -> KdfParams:
        return self._header.kdf

    @property
    def recovery_question(self) -> Optional[str]:
        """The configured security question, or None."""
        recovery = self._header.recovery
        return recovery.question if recovery is not None else None

    @property
    def locked(self) -> bool:
        return self._keys is None

    def lock(self) -> None:
        """Zero every key and cached secret. Idempotent."""
        if self._keys is None:
            return
        _wipe_entries(self._entries.values())
        self._entries = {}
        self._records = {}
        self._keys.wipe()
        self._keys = None
        self.logger.log_vault_event(EventType.VAULT_LOCKED, "Vault locked")

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.lock()

    def __len__(self) -> int:
        self._require_unlocked()
        return len(self._entries)

    def __repr__(self) -> str:
        state = "locked" if self.locked else f"{len(self._entries)} entries"
        return f"<Session {self._path} {state}>"

    def _require_unlocked(self) -> _Keys:
        if self._keys is None:
            raise SessionLockedError()
        return self._keys

    def _lookup(self, entry_id: str) -> Entry:
        entry = self._entries.get(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        return entry

    # ── Reading ──────────────────────────────────────────────────────

    def list(self) -> List[EntrySummary]:
        """All entries in insertion order, without secrets."""
        self._require_unlocked()
        return [entry.summary() for entry in self._entries.values()]

    def get(self, entry_id: str, view_password: Optional[Password] = None) -> Entry:
        """
        Return a copy of a decrypted entry.

        The caller owns the copy; use it as a context manager so its secret
        is zeroed afterwards. Protected entries need their view password.

        Raises:
            ViewPasswordRequiredError: Entry is protected and no password given
            WrongViewPasswordError: view_password does not open the entry
        """
        self._require_unlocked()
        entry = self._lookup(entry_id)
        if entry.protected:
            with self._entry_key(entry, view_password) as entry_key:
                result = replace(entry, secret=key_wrap.open_secret(entry_key, entry.secret, entry.id))
        else:
            result = entry.copy()

        self.logger.log_vault_event(
            EventType.ENTRY_ACCESSED,
            f"Entry accessed: {entry.label}",
            details={"entry_id": entry.id, "kind": entry.kind.value, "protected": entry.protected},
        )
        return result

    def search(self, query: str) -> List[EntrySummary]:
        """Case-insensitive substring match on label, network and notes."""
        self._require_unlocked()
        needle = query.casefold()
        return [
            entry.summary()
            for entry in self._entries.values()
            if needle in entry.label.casefold()
            or needle in entry.network.casefold()
            or needle in entry.metadata.casefold()
        ]

    def resolve(self, ref: str) -> EntrySummary:
        """
        Find one entry by 1-based index (as shown by list), exact id, or
        case-insensitive label.

        Raises:
            EntryNotFoundError: Nothing matches
            AmbiguousEntryError: The label matches several entries
        """
        self._require_unlocked()
        ref = ref.strip()
        entries = list(self._entries.values())

        if ref.isdigit():
            index = int(ref)
            if 1 <= index <= len(entries):
                return entries[index - 1].summary()

        if ref in self._entries:
            return self._entries[ref].summary()

        folded = ref.casefold()
        matches = [entry for entry in entries if entry.label.casefold() == folded]
        if len(matches) > 1:
            raise AmbiguousEntryError(ref, [entry.id for entry in matches])
        if not matches:
            raise EntryNotFoundError(ref)
        return matches[0].summary()

    # ── Mutations ────────────────────────────────────────────────────

    def add(
        self,
        label: str,
        kind: EntryKind,
        secret: SecretInput,
        metadata: str = "",
        network: str = "",
        public_address: Optional[str] = None,
        view_password: Optional[Password] = None,
    ) -> EntrySummary:
        """
        Seal and persist a new entry, optionally behind its own view password.

        Raises:
            ValueError: Empty label, secret or view password, or an oversized field
            VaultIOError: Save failed (nothing changed)
        """
        keys = self._require_unlocked()
        label = _clean_label(label)
        kind = EntryKind(kind)
        _check_view_password(view_password)
        entry_secret = _to_secret(secret)
        if not len(entry_secret):
            entry_secret.wipe()
            raise ValueError("secret must not be empty")

        entry_id = new_entry_id()
        protection = None
        if view_password is not None:
            plain = entry_secret
            try:
                entry_secret, protection = key_wrap.protect_secret(
                    plain, view_password, self._header.kdf, entry_id
                )
            finally:
                plain.wipe()

        now = utc_now()
        entry = Entry(
            id=entry_id,
            label=label,
            kind=kind,
            secret=entry_secret,
            created_at=now,
            updated_at=now,
            metadata=metadata or "",
            network=(network or "").strip(),
            public_address=(public_address or "").strip() or None,
            protection=protection,
        )

        records = dict(self._records)
        records[entry.id] = _seal_new(keys, entry)
        entries = dict(self._entries)
        entries[entry.id] = entry
        self._commit(records, entries, discard_on_failure=[entry], action="add entry")

        self.logger.log_vault_event(
            EventType.ENTRY_ADDED,
            f"Entry added: {entry.label}",
            details={
                "entry_id": entry.id,
                "kind": entry.kind.value,
                "network": entry.network,
                "protected": entry.protected,
            },
        )
        return entry.summary()

    def update(
        self,
        entry_id: str,
        *,
        label: Optional[str] = None,
        kind: Optional[EntryKind] = None,
        secret: Optional[SecretInput] = None,
        metadata: Optional[str] = None,
        network: Optional[str] = None,
        public_address: Optional[str] = None,
        view_password: Optional[Password] = None,
    ) -> EntrySummary:
        """
        Change any subset of an entry's fields. The id and created_at never
        change; None leaves a field as is, and public_address="" clears it.

        Replacing the secret of a protected entry needs its view_password;
        the other fields never do.
        """
        keys = self._require_unlocked()
        current = self._lookup(entry_id)

        if secret is not None:
            new_secret = _to_secret(secret)
            if not len(new_secret):
                new_secret.wipe()
                raise ValueError("secret must not be empty")
            if current.protected:
                plain = new_secret
                try:
                    with self._entry_key(current, view_password) as entry_key:
                        new_secret = key_wrap.seal_secret(entry_key, plain, current.id)
                finally:
                    plain.wipe()
        else:
            new_secret = current.secret.copy()

        try:
            updated = Entry(
                id=current.id,
                label=_clean_label(label) if label is not None else current.label,
                kind=EntryKind(kind) if kind is not None else current.kind,
                secret=new_secret,
                created_at=current.created_at,
                updated_at=utc_now(),
                metadata=metadata if metadata is not None else current.metadata,
                network=network.strip() if network is not None else current.network,
                public_address=(
                    (public_address.strip() or None) if public_address is not None
                    else current.public_address
                ),
                protection=current.protection,
            )
        except ValueError:
            new_secret.wipe()
            raise

        records = dict(self._records)
        records[entry_id] = _seal_new(keys, updated)
        entries = dict(self._entries)
        entries[entry_id] = updated
        self._commit(records, entries, discard_on_failure=[updated], action="update entry")
        current.wipe()

        requested = {
            "label": label, "kind": kind, "secret": secret, "metadata": metadata,
            "network": network, "public_address": public_address,
        }
        changed = [name for name, value in requested.items() if value is not None]
        self.logger.log_vault_event(
            EventType.ENTRY_UPDATED,
            f"Entry updated: {updated.label}",
            details={"entry_id": entry_id, "fields": changed},
        )
        return updated.summary()

    def set_view_password(
        self,
        entry_id: str,
        new_password: Optional[Password],
        current_password: Optional[Password] = None,
    ) -> EntrySummary:
        """
        Protect, re-protect or unprotect one entry.

        new_password=None removes the view password. Changing or removing
        an existing one needs current_password. A new view password always
        gets a new entry key.

        Raises:
            ViewPasswordRequiredError: Entry is protected and no current_password
            WrongViewPasswordError: current_password is wrong
        """
        keys = self._require_unlocked()
        current = self._lookup(entry_id)
        _check_view_password(new_password)

        if current.protected:
            with self._entry_key(current, current_password) as entry_key:
                plain = key_wrap.open_secret(entry_key, current.secret, current.id)
        elif new_password is None:
            return current.summary()
        else:
            plain = current.secret.copy()

        try:
            if new_password is None:
                payload, protection = plain.copy(), None
            else:
                payload, protection = key_wrap.protect_secret(
                    plain, new_password, self._header.kdf, current.id
                )
        finally:
            plain.wipe()

        updated = replace(current, secret=payload, protection=protection, updated_at=utc_now())
        records = dict(self._records)
        records[entry_id] = _seal_new(keys, updated)
        entries = dict(self._entries)
        entries[entry_id] = updated
        self._commit(records, entries, discard_on_failure=[updated], action="set view password")
        current.wipe()

        if protection is None:
            event, message = EventType.VIEW_PASSWORD_REMOVED, f"View password removed: {updated.label}"
        else:
            event, message = EventType.VIEW_PASSWORD_SET, f"View password set: {updated.label}"
        self.logger.log_vault_event(event, message, details={"entry_id": entry_id})
        return updated.summary()

    def delete(self, entry_id: str) -> EntrySummary:
        """Remove an entry permanently. There is no undo."""
        self._require_unlocked()
        current = self._lookup(entry_id)

        records = {k: v for k, v in self._records.items() if k != entry_id}
        entries = {k: v for k, v in self._entries.items() if k != entry_id}
        self._commit(records, entries, action="delete entry")

        summary = current.summary()
        current.wipe()
        self.logger.log_vault_event(
            EventType.ENTRY_DELETED,
            f"Entry deleted: {summary.label}",
            details={"entry_id": entry_id},
        )
        return summary

    # ── Master password and recovery ─────────────────────────────────

    def change_password(
        self,
        old_password: Password,
        new_password: Password,
        kdf_params: Optional[KdfParams] = None,
        recovery_answer: Optional[str] = None,
    ) -> None:
        """
        Re-key the vault: new salt, new key, every entry re-sealed, one save.

        The recovery blob wraps the old master key, so recovery is kept only
        when recovery_answer is given (and correct); otherwise it is cleared.

        Raises:
            WrongPasswordError: old_password is not the current password
            RecoveryFailedError: recovery_answer is wrong
            KeyDerivationError: kdf_params below the safe floor
        """
        keys = self._require_unlocked()
        with KeyDerivation.derive(old_password, self._header.salt, self._header.kdf) as candidate:
            if not candidate.equals(keys.master):
                self.logger.log_vault_event(
                    EventType.VAULT_UNLOCK_FAILED,
                    "Password change refused: incorrect current password",
                    severity=EventSeverity.ALERT,
                )
                raise WrongPasswordError("Current master password is incorrect.")

        had_recovery = self._header.recovery is not None
        if had_recovery and recovery_answer is not None:
            self._check_recovery_answer(recovery_answer)

        self._rekey(new_password, kdf_params, recovery_answer)

        self.logger.log_vault_event(
            EventType.PASSWORD_CHANGED,
            "Master password changed",
            details={
                "entries": len(self._records),
                "kdf": self._header.kdf.to_dict(),
                "recovery": self._header.recovery is not None,
            },
        )
        if had_recovery and self._header.recovery is None:
            self.logger.log_vault_event(
                EventType.RECOVERY_CLEARED,
                "Recovery question cleared: it was bound to the old master password",
            )

    def set_recovery(self, question: str, answer: str, kdf_params: Optional[KdfParams] = None) -> None:
        """
        Configure (or replace) the security question used by recover().

        The answer is normalized (trimmed, lowercased, inner whitespace
        collapsed) before key derivation.

        Raises:
            ValueError: Empty question or too short an answer
            KeyDerivationError: kdf_params below the safe floor
        """
        keys = self._require_unlocked()
        recovery = key_wrap.create_recovery(keys.master, question, answer, kdf_params or self._header.kdf)
        self._replace_header(replace(self._header, recovery=recovery), "configure recovery")
        self.logger.log_vault_event(
            EventType.RECOVERY_CONFIGURED,
            "Recovery question configured",
            details={"question": recovery.question},
        )

    def clear_recovery(self) -> bool:
        """Remove the security question. Returns False if none was set."""
        self._require_unlocked()
        if self._header.recovery is None:
            return False
        self._replace_header(replace(self._header, recovery=None), "clear recovery")
        self.logger.log_vault_event(EventType.RECOVERY_CLEARED, "Recovery question cleared")
        return True

    # ── Backup ───────────────────────────────────────────────────────

    def export(self, path: PathLike, password: Optional[Password] = None) -> None:
        """
        Write all entries to `path` in the vault format.

        With a password the copy gets its own salt and key and no recovery
        question; without one it keeps the live header and opens with the
        current master password. Every entry is re-sealed with fresh nonces
        either way. View-password protection travels with each entry.

        Raises:
            VaultExistsError: path is the live vault
        """
        keys = self._require_unlocked()
        target = Path(path)
        if _same_file(target, self._path):
            raise VaultExistsError("Refusing to export over the live vault. Choose another path.")

        if password is None:
            export_keys, header, canary = keys, self._header, _new_canary(keys, self._header)
        else:
            export_keys, header, canary = _fresh_vault(password, self._header.kdf)

        try:
            records = [_seal(export_keys, entry) for entry in self._entries.values()]
            self._store.save(target, _build_file(export_keys, header, canary, records))
        except VaultError as e:
            self._log_failure("export vault", e)
            raise
        finally:
            if export_keys is not keys:
                export_keys.wipe()

        self.logger.log_vault_event(
            EventType.VAULT_EXPORTED,
            f"Vault exported to {target}",
            details={"path": str(target), "entries": len(records), "rekeyed": password is not None},
        )

    def import_vault(
        self,
        path: PathLike,
        password: Password,
        overwrite: bool = False,
    ) -> ImportReport:
        """
        Merge a backup into this vault, matching entries by id.

        By default an id already present here is left untouched and reported
        in `conflicts`. With overwrite=True the backup's version replaces it
        and the id is reported in `overwritten`.

        The backup is fully authenticated first; one save covers the merge.

        Raises:
            WrongPasswordError / CorruptVaultError: From the backup
        """
        keys = self._require_unlocked()
        source = Path(path)
        backup_keys, incoming = _open_vault(self._store.load(source), password)
        backup_keys.wipe()

        report = ImportReport(source=str(source))
        records = dict(self._records)
        entries = dict(self._entries)
        adopted: List[Entry] = []
        replaced: List[Entry] = []
        try:
            for entry_id, entry in incoming.items():
                if entry_id in entries and not overwrite:
                    report.conflicts.append(entry_id)
                    entry.wipe()
                    continue
                if entry_id in entries:
                    replaced.append(entries[entry_id])
                    report.overwritten.append(entry_id)
                else:
                    report.imported.append(entry_id)
                records[entry_id] = _seal(keys, entry)
                entries[entry_id] = entry
                adopted.append(entry)

            if report.changed:
                self._commit(records, entries, discard_on_failure=adopted, action="import vault")
        except BaseException:
            _wipe_entries(incoming.values())
            raise

        _wipe_entries(replaced)
        self.logger.log_vault_event(
            EventType.VAULT_IMPORTED,
            f"Imported backup {source}",
            details={
                "path": str(source),
                "imported": len(report.imported),
                "conflicts": len(report.conflicts),
                "overwritten": len(report.overwritten),
            },
        )
        return report

    # ── Keys ─────────────────────────────────────────────────────────

    def _entry_key(self, entry: Entry, view_password: Optional[Password]) -> SecretBuffer:
        """Unwrap a protected entry's own key."""
        if view_password is None:
            raise ViewPasswordRequiredError(entry.label)
        try:
            return key_wrap.unwrap_entry_key(entry.protection, view_password, entry.id)
        except AuthenticationError:
            self.logger.log_vault_event(
                EventType.VIEW_PASSWORD_FAILED,
                f"Incorrect view password for entry: {entry.label}",
                details={"entry_id": entry.id},
                severity=EventSeverity.ALERT,
            )
            raise WrongViewPasswordError() from None
        except KeyDerivationError as e:
            raise CorruptVaultError(f"Entry key wrap holds unusable KDF parameters: {e}", [entry.id]) from e

    def _check_recovery_answer(self, answer: str) -> None:
        keys = self._require_unlocked()
        try:
            with key_wrap.recover_master_key(self._header.recovery, answer) as master:
                matches = master.equals(keys.master)
        except AuthenticationError:
            matches = False
        if not matches:
            self.logger.log_vault_event(
                EventType.VAULT_RECOVERY_FAILED,
                "Recovery answer rejected",
                severity=EventSeverity.ALERT,
            )
            raise RecoveryFailedError()

    def _rekey(
        self,
        new_password: Password,
        kdf_params: Optional[KdfParams],
        recovery_answer: Optional[str] = None,
    ) -> None:
        """New salt, new key, every entry re-sealed, one save. Recovery is re-wrapped when answered."""
        keys = self._require_unlocked()
        recovery = self._header.recovery
        new_keys, header, canary = _fresh_vault(new_password, kdf_params or self._header.kdf)
        try:
            if recovery is not None and recovery_answer is not None:
                header = replace(
                    header,
                    recovery=key_wrap.create_recovery(
                        new_keys.master, recovery.question, recovery_answer, recovery.wrap.kdf
                    ),
                )
                canary = _new_canary(new_keys, header)
            records = {entry_id: _seal(new_keys, entry) for entry_id, entry in self._entries.items()}
            self._save(_build_file(new_keys, header, canary, records.values()), "change password")
        except BaseException:
            new_keys.wipe()
            raise

        keys.wipe()
        self._keys = new_keys
        self._header = header
        self._canary = canary
        self._records = records

    # ── Persistence ──────────────────────────────────────────────────

    def _replace_header(self, header: VaultHeader, action: str) -> None:
        """Save with a new header (and so a new canary). Entries untouched."""
        keys = self._require_unlocked()
        canary = _new_canary(keys, header)
        self._save(_build_file(keys, header, canary, self._records.values()), action)
        self._header = header
        self._canary = canary

    def _commit(
        self,
        records: Dict[str, EntryRecord],
        entries: Dict[str, Entry],
        action: str,
        discard_on_failure: Iterable[Entry] = (),
    ) -> None:
        """Save first, adopt second. A failed save changes nothing."""
        keys = self._require_unlocked()
        try:
            self._save(_build_file(keys, self._header, self._canary, records.values()), action)
        except BaseException:
            _wipe_entries(discard_on_failure)
            raise
        self._records = records
        self._entries = entries

    def _save(self, vault_file: VaultFile, action: str) -> None:
        try:
            self._store.save(self._path, vault_file)
        except VaultError as e:
            self._log_failure(action, e)
            raise

    def _log_failure(self, action: str, error: Exception) -> None:
        logger.error("Failed to %s: %s", action, error)
        self.logger.log_event(
            event_type=EventType.VAULT_ERROR,
            severity=EventSeverity.CRITICAL,
            message=f"Failed to {action}: {error}",
            details={"path": str(self._path)},
        )


def _clean_label(label: str) -> str:
    label = (label or "").strip()
    if not label:
        raise ValueError("label must not be empty")
    return label


def _check_view_password(view_password: Optional[Password]) -> None:
    if view_password is not None and not view_password:
        raise ValueError("view password must not be empty")


def _same_file(a: Path, b: Path) -> bool:
    if a.exists() and b.exists():
        return os.path.samefile(a, b)
    return a.expanduser().resolve() == b.expanduser().resolve()
