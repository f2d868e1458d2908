# Vault - Key Wrapping
#
# Two features on the same primitives:
#
#   View passwords: a protected entry's secret is sealed under its own
#   random 256-bit key, and that key is wrapped under Argon2id(view password).
#   The vault key still seals the result, so both are needed to read it.
#
#   Recovery: the master key is wrapped under Argon2id(normalized answer to
#   a security question), so a forgotten master password can be reset.
#
# Wrap = XChaCha20-Poly1305(Argon2id(password, fresh salt), fresh nonce, key).
# A wrong password and a tampered wrap look the same: AuthenticationError.

import os
from typing import Tuple, Union

from .encryption import KEY_LENGTH, NONCE_LENGTH, Cipher, KdfParams, KeyDerivation
from .errors import AuthenticationError
from .models import KeyWrap, RecoveryRecord
from .secure_memory import SecretBuffer

Password = Union[str, bytes]

MIN_ANSWER_LENGTH = 3

RECOVERY_QUESTIONS = (
    "What was the name of your first pet?",
    "What city were you born in?",
    "What was your childhood nickname?",
)

_PROTECTED_AD_PREFIX = b"CKPR-protected\x00"
_RECOVERY_AD_PREFIX = b"CKPR-recovery\x00"


def generate_entry_key() -> SecretBuffer:
    """Fresh random 256-bit key for one protected entry."""
    return SecretBuffer(os.urandom(KEY_LENGTH))


def wrap_key(key: SecretBuffer, password: Password, params: KdfParams, associated_data: bytes = b"") -> KeyWrap:
    """
    Seal `key` under a key derived from `password` with a fresh salt.

    Raises:
        KeyDerivationError: params below the safe floor
    """
    salt = KeyDerivation.generate_salt()
    nonce = Cipher.generate_nonce()
    with KeyDerivation.derive(password, salt, params) as wrapping_key:
        wrapped = Cipher.seal(wrapping_key, nonce, key.view(), associated_data)
    return KeyWrap(kdf=params, salt=salt, nonce=nonce, wrapped_key=wrapped)


def unwrap_key(wrap: KeyWrap, password: Password, associated_data: bytes = b"") -> SecretBuffer:
    """
    Open a KeyWrap.

    Raises:
        AuthenticationError: Wrong password or tampered wrap
        KeyDerivationError: The wrap holds unusable KDF parameters
    """
    with KeyDerivation.derive(password, wrap.salt, wrap.kdf) as wrapping_key:
        key = Cipher.open(wrapping_key, wrap.nonce, wrap.wrapped_key, associated_data)
    if len(key) != KEY_LENGTH:
        key.wipe()
        raise AuthenticationError("Unwrapped key has the wrong length")
    return key


# ── View passwords ───────────────────────────────────────────────────


def _protected_ad(entry_id: str) -> bytes:
    return _PROTECTED_AD_PREFIX + entry_id.encode("utf-8")


def seal_secret(entry_key: SecretBuffer, secret: SecretBuffer, entry_id: str) -> SecretBuffer:
    """Seal a secret under its entry key. Returns nonce || ciphertext."""
    nonce = Cipher.generate_nonce()
    sealed = Cipher.seal(entry_key, nonce, secret.view(), _protected_ad(entry_id))
    return SecretBuffer(nonce + sealed)


def open_secret(entry_key: SecretBuffer, payload: SecretBuffer, entry_id: str) -> SecretBuffer:
    """
    Raises:
        AuthenticationError: Wrong entry key or tampered payload
    """
    data = payload.value
    if len(data) <= NONCE_LENGTH:
        raise AuthenticationError("Protected payload is too short")
    return Cipher.open(entry_key, data[:NONCE_LENGTH], data[NONCE_LENGTH:], _protected_ad(entry_id))


def protect_secret(
    secret: SecretBuffer, view_password: Password, params: KdfParams, entry_id: str
) -> Tuple[SecretBuffer, KeyWrap]:
    """
    Seal a secret under a new entry key wrapped by `view_password`.

    Returns:
        (payload, wrap). The caller keeps ownership of `secret`.
    """
    with generate_entry_key() as entry_key:
        wrap = wrap_key(entry_key, view_password, params, _protected_ad(entry_id))
        return seal_secret(entry_key, secret, entry_id), wrap


def unwrap_entry_key(wrap: KeyWrap, view_password: Password, entry_id: str) -> SecretBuffer:
    """
    Raises:
        AuthenticationError: Wrong view password or tampered wrap
        KeyDerivationError: The wrap holds unusable KDF parameters
    """
    return unwrap_key(wrap, view_password, _protected_ad(entry_id))


# ── Recovery ─────────────────────────────────────────────────────────


def normalize_answer(answer: str) -> str:
    """Trim, lowercase and collapse inner whitespace."""
    return " ".join(answer.split()).lower()


def _recovery_ad(question: str) -> bytes:
    return _RECOVERY_AD_PREFIX + question.encode("utf-8")


def create_recovery(master_key: SecretBuffer, question: str, answer: str, params: KdfParams) -> RecoveryRecord:
    """
    Wrap the master key under the normalized answer.

    Raises:
        ValueError: Empty question or an answer shorter than MIN_ANSWER_LENGTH
    """
    question = (question or "").strip()
    if not question:
        raise ValueError("recovery question must not be empty")
    normalized = normalize_answer(answer or "")
    if len(normalized) < MIN_ANSWER_LENGTH:
        raise ValueError(f"recovery answer must be at least {MIN_ANSWER_LENGTH} characters")
    return RecoveryRecord(
        question=question,
        wrap=wrap_key(master_key, normalized, params, _recovery_ad(question)),
    )


def recover_master_key(recovery: RecoveryRecord, answer: str) -> SecretBuffer:
    """
    Raises:
        AuthenticationError: Wrong answer or tampered recovery data
        KeyDerivationError: The recovery data holds unusable KDF parameters
    """
    return unwrap_key(recovery.wrap, normalize_answer(answer or ""), _recovery_ad(recovery.question))
