# Tests for key wrapping: per-entry view passwords and master key recovery

import pytest

from cryptokeeper.vault import key_wrap
from cryptokeeper.vault.encryption import KEY_LENGTH, NONCE_LENGTH
from cryptokeeper.vault.errors import AuthenticationError
from cryptokeeper.vault.secure_memory import SecretBuffer

ENTRY_ID = "e" * 32


def test_entry_keys_are_random():
    with key_wrap.generate_entry_key() as a, key_wrap.generate_entry_key() as b:
        assert len(a) == KEY_LENGTH
        assert not a.equals(b.value)


class TestWrap:
    def test_roundtrip(self, fast_kdf):
        with key_wrap.generate_entry_key() as key:
            wrap = key_wrap.wrap_key(key, "view-pass", fast_kdf, b"ad")
            with key_wrap.unwrap_key(wrap, "view-pass", b"ad") as opened:
                assert opened.equals(key.value)
        assert wrap.kdf == fast_kdf
        assert len(wrap.nonce) == NONCE_LENGTH

    def test_wrong_password(self, fast_kdf):
        with key_wrap.generate_entry_key() as key:
            wrap = key_wrap.wrap_key(key, "view-pass", fast_kdf)
        with pytest.raises(AuthenticationError):
            key_wrap.unwrap_key(wrap, "wrong-pass")

    def test_wrong_associated_data(self, fast_kdf):
        with key_wrap.generate_entry_key() as key:
            wrap = key_wrap.wrap_key(key, "view-pass", fast_kdf, b"one")
        with pytest.raises(AuthenticationError):
            key_wrap.unwrap_key(wrap, "view-pass", b"two")

    def test_same_key_wraps_differently(self, fast_kdf):
        with key_wrap.generate_entry_key() as key:
            a = key_wrap.wrap_key(key, "view-pass", fast_kdf)
            b = key_wrap.wrap_key(key, "view-pass", fast_kdf)
        assert a.salt != b.salt
        assert a.wrapped_key != b.wrapped_key


class TestProtectedSecret:
    def test_full_flow(self, fast_kdf):
        with SecretBuffer.from_text("my secret private key") as secret:
            payload, wrap = key_wrap.protect_secret(secret, "view-pass", fast_kdf, ENTRY_ID)
            assert secret.text() == "my secret private key"
        assert b"my secret private key" not in payload.value

        with key_wrap.unwrap_entry_key(wrap, "view-pass", ENTRY_ID) as entry_key:
            with key_wrap.open_secret(entry_key, payload, ENTRY_ID) as opened:
                assert opened.text() == "my secret private key"

    def test_wrong_view_password(self, fast_kdf):
        with SecretBuffer.from_text("secret") as secret:
            _, wrap = key_wrap.protect_secret(secret, "correct", fast_kdf, ENTRY_ID)
        with pytest.raises(AuthenticationError):
            key_wrap.unwrap_entry_key(wrap, "wrong", ENTRY_ID)

    def test_bound_to_entry_id(self, fast_kdf):
        with SecretBuffer.from_text("secret") as secret:
            payload, wrap = key_wrap.protect_secret(secret, "view-pass", fast_kdf, ENTRY_ID)
        with pytest.raises(AuthenticationError):
            key_wrap.unwrap_entry_key(wrap, "view-pass", "f" * 32)
        with key_wrap.unwrap_entry_key(wrap, "view-pass", ENTRY_ID) as entry_key:
            with pytest.raises(AuthenticationError):
                key_wrap.open_secret(entry_key, payload, "f" * 32)

    def test_short_payload(self):
        with key_wrap.generate_entry_key() as entry_key:
            with pytest.raises(AuthenticationError, match="short"):
                key_wrap.open_secret(entry_key, SecretBuffer(b"\x00" * NONCE_LENGTH), ENTRY_ID)


class TestRecovery:
    @pytest.mark.parametrize("answer, expected", [
        ("  Fluffy  ", "fluffy"),
        ("New  York  City", "new york city"),
        ("", ""),
        ("  a  b  c  ", "a b c"),
        ("TAB\tand\nnewline", "tab and newline"),
    ])
    def test_normalize_answer(self, answer, expected):
        assert key_wrap.normalize_answer(answer) == expected

    def test_roundtrip_with_normalized_answer(self, fast_kdf):
        question = key_wrap.RECOVERY_QUESTIONS[0]
        with key_wrap.generate_entry_key() as master:
            recovery = key_wrap.create_recovery(master, question, "Fluffy", fast_kdf)
            with key_wrap.recover_master_key(recovery, "  FLUFFY ") as recovered:
                assert recovered.equals(master.value)
        assert recovery.question == question

    def test_wrong_answer(self, fast_kdf):
        with key_wrap.generate_entry_key() as master:
            recovery = key_wrap.create_recovery(master, "Favourite colour?", "blue", fast_kdf)
        with pytest.raises(AuthenticationError):
            key_wrap.recover_master_key(recovery, "red")

    def test_answer_bound_to_question(self, fast_kdf):
        with key_wrap.generate_entry_key() as master:
            recovery = key_wrap.create_recovery(master, "Favourite colour?", "blue", fast_kdf)
        swapped = type(recovery)(question="Other question?", wrap=recovery.wrap)
        with pytest.raises(AuthenticationError):
            key_wrap.recover_master_key(swapped, "blue")

    @pytest.mark.parametrize("question, answer", [
        ("", "fluffy"),
        ("   ", "fluffy"),
        ("Pet?", "ab"),
        ("Pet?", "  a   "),
    ])
    def test_rejects_empty_question_or_short_answer(self, fast_kdf, question, answer):
        with key_wrap.generate_entry_key() as master:
            with pytest.raises(ValueError):
                key_wrap.create_recovery(master, question, answer, fast_kdf)
