# Tests for VaultStore: load/save, atomic replace, crash safety, permissions

import os
import stat

import pytest

from cryptokeeper.vault import vault_store
from cryptokeeper.vault.errors import VaultIOError, VaultMissingError
from cryptokeeper.vault.models import EntryKind
from cryptokeeper.vault.session import Session
from cryptokeeper.vault.vault_store import VaultStore, atomic_write


def _temp_files(directory):
    return [p for p in directory.iterdir() if p.name.endswith(".tmp")]


class TestAtomicWrite:
    def test_writes_and_replaces(self, tmp_path):
        target = tmp_path / "file.bin"
        atomic_write(target, b"one")
        atomic_write(target, b"two")
        assert target.read_bytes() == b"two"
        assert _temp_files(tmp_path) == []

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    def test_file_is_owner_only(self, tmp_path):
        target = tmp_path / "private" / "file.bin"
        atomic_write(target, b"data")
        assert stat.S_IMODE(target.stat().st_mode) == 0o600
        assert stat.S_IMODE(target.parent.stat().st_mode) == 0o700

    def test_crash_before_rename_leaves_original_intact(self, tmp_path, monkeypatch):
        target = tmp_path / "vault.ck"
        atomic_write(target, b"original contents")
        before = target.read_bytes()

        def crash(src, dst):
            raise OSError("simulated power loss")

        monkeypatch.setattr(vault_store.os, "replace", crash)
        with pytest.raises(VaultIOError, match="simulated power loss"):
            atomic_write(target, b"new contents that never land")

        assert target.read_bytes() == before
        assert _temp_files(tmp_path) == []

    def test_interrupt_during_write_cleans_up(self, tmp_path, monkeypatch):
        target = tmp_path / "vault.ck"
        atomic_write(target, b"original")

        def interrupted(fd):
            raise KeyboardInterrupt

        monkeypatch.setattr(vault_store.os, "fsync", interrupted)
        with pytest.raises(KeyboardInterrupt):
            atomic_write(target, b"partial")

        assert target.read_bytes() == b"original"
        assert _temp_files(tmp_path) == []


class TestVaultStore:
    def test_missing_vault(self, tmp_path):
        with pytest.raises(VaultMissingError):
            VaultStore().load(tmp_path / "nope.ck")

    def test_empty_file_is_missing(self, tmp_path):
        path = tmp_path / "vault.ck"
        path.write_bytes(b"")
        assert not VaultStore.exists(path)
        with pytest.raises(VaultMissingError):
            VaultStore().load(path)

    def test_directory_is_io_error(self, tmp_path):
        with pytest.raises(VaultIOError):
            VaultStore().load(tmp_path)

    def test_save_load_roundtrip(self, session, vault_path, btc_key):
        session.add("BTC cold key", EntryKind.PRIVATE_KEY, btc_key)
        store = VaultStore()
        loaded = store.load(vault_path)
        store.save(vault_path, loaded)
        assert store.load(vault_path) == loaded

    def test_peek(self, populated, vault_path):
        labels = [s.label for s in VaultStore().peek(vault_path)]
        assert labels == ["BTC cold key", "Ledger seed", "ETH hot wallet"]

    def test_failed_session_save_keeps_file_and_state(self, populated, vault_path, monkeypatch):
        before = vault_path.read_bytes()
        listing = populated.list()

        def crash(src, dst):
            raise OSError("disk full")

        with monkeypatch.context() as m:
            m.setattr(vault_store.os, "replace", crash)
            with pytest.raises(VaultIOError):
                populated.add("new", EntryKind.OTHER, "x")
            with pytest.raises(VaultIOError):
                populated.delete(listing[0].id)

        assert vault_path.read_bytes() == before
        assert populated.list() == listing

        populated.lock()
        with Session.unlock(vault_path, "correct-horse") as reopened:
            assert reopened.list() == listing
