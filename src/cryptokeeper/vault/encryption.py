# Vault - Encryption Service
#
# Master password -> master key (Argon2id, memory-hard)
# Master key -> entry key + manifest key (HKDF-SHA256)
# Entry encryption (XChaCha20-Poly1305, 192-bit random nonce per seal)
# Whole-file integrity (HMAC-SHA256 over the serialized vault)

import os
from dataclasses import asdict, dataclass
from typing import Optional, Tuple, Union

from argon2.low_level import Type, hash_secret_raw
from argon2.exceptions import HashingError
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from nacl import bindings as sodium
from nacl.exceptions import CryptoError

from .errors import AuthenticationError, KeyDerivationError
from .secure_memory import SecretBuffer

KeyMaterial = Union[SecretBuffer, bytes]

KDF_ARGON2ID = "argon2id"
CIPHER_XCHACHA20_POLY1305 = "xchacha20-poly1305"

KEY_LENGTH = 32  # 256-bit master key and subkeys
SALT_LENGTH = 32
NONCE_LENGTH = sodium.crypto_aead_xchacha20poly1305_ietf_NPUBBYTES  # 24 bytes / 192 bits
TAG_LENGTH = sodium.crypto_aead_xchacha20poly1305_ietf_ABYTES  # 16 bytes
MAC_LENGTH = 32

# Argon2id defaults (64 MiB, 3 passes, 4 lanes)
DEFAULT_MEMORY_COST = 65536
DEFAULT_TIME_COST = 3
DEFAULT_PARALLELISM = 4

# Anything below these is refused outright
MIN_MEMORY_COST = 8192
MIN_TIME_COST = 1
MIN_PARALLELISM = 1
MAX_PARALLELISM = 64
MAX_MEMORY_COST = 4 * 1024 * 1024  # 4 GiB, guards against hostile headers

_ENTRY_KEY_INFO = b"cryptokeeper/v1/entries"
_MANIFEST_KEY_INFO = b"cryptokeeper/v1/manifest"


@dataclass(frozen=True)
class KdfParams:
    """Argon2id cost parameters, stored in the vault header."""
    memory_cost: int = DEFAULT_MEMORY_COST  # KiB
    time_cost: int = DEFAULT_TIME_COST
    parallelism: int = DEFAULT_PARALLELISM
    kdf_id: str = KDF_ARGON2ID

    def validate(self) -> None:
        """
        Reject parameters below the safe floor.

        Raises:
            KeyDerivationError: On unknown KDF id or out-of-range costs
        """
        if self.kdf_id != KDF_ARGON2ID:
            raise KeyDerivationError(f"Unsupported KDF: {self.kdf_id!r}")
        if not MIN_PARALLELISM <= self.parallelism <= MAX_PARALLELISM:
            raise KeyDerivationError(
                f"parallelism must be between {MIN_PARALLELISM} and {MAX_PARALLELISM}"
            )
        if self.time_cost < MIN_TIME_COST:
            raise KeyDerivationError(f"time_cost must be at least {MIN_TIME_COST}")
        if self.memory_cost < MIN_MEMORY_COST:
            raise KeyDerivationError(f"memory_cost must be at least {MIN_MEMORY_COST} KiB")
        if self.memory_cost < 8 * self.parallelism:
            raise KeyDerivationError("memory_cost must be at least 8 KiB per lane")
        if self.memory_cost > MAX_MEMORY_COST:
            raise KeyDerivationError(f"memory_cost must not exceed {MAX_MEMORY_COST} KiB")

    def to_dict(self) -> dict:
        return asdict(self)


class KeyDerivation:
    """
    Turns a password + salt + params into the 32-byte master key.

    Deterministic: same inputs always give the same key. Never fails on
    password content; only on invalid parameters.
    """

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt (once per vault / password change)."""
        return os.urandom(SALT_LENGTH)

    @staticmethod
    def derive(password: Union[str, bytes], salt: bytes, params: KdfParams) -> SecretBuffer:
        """
        Derive the master key with Argon2id.

        Args:
            password: Master password (str is encoded as UTF-8)
            salt: 32-byte salt from the vault header
            params: Cost parameters from the vault header

        Returns:
            SecretBuffer holding the 32-byte key. Caller owns and wipes it.

        Raises:
            KeyDerivationError: If params or salt are invalid
        """
        params.validate()
        if len(salt) != SALT_LENGTH:
            raise KeyDerivationError(f"salt must be {SALT_LENGTH} bytes, got {len(salt)}")

        secret = password.encode("utf-8") if isinstance(password, str) else bytes(password)
        try:
            raw = hash_secret_raw(
                secret=secret,
                salt=bytes(salt),
                time_cost=params.time_cost,
                memory_cost=params.memory_cost,
                parallelism=params.parallelism,
                hash_len=KEY_LENGTH,
                type=Type.ID,
            )
        except HashingError as e:
            raise KeyDerivationError(f"Argon2 derivation error: {e}") from e

        return SecretBuffer(raw)

    @staticmethod
    def split(master_key: SecretBuffer) -> Tuple[SecretBuffer, SecretBuffer]:
        """
        Expand the master key into (entry_key, manifest_key) with HKDF-SHA256.

        Keeping the AEAD key and the MAC key apart means the master key
        itself never touches a cipher.
        """
        return (
            _hkdf(master_key.value, _ENTRY_KEY_INFO),
            _hkdf(master_key.value, _MANIFEST_KEY_INFO),
        )


def _hkdf(ikm: bytes, info: bytes) -> SecretBuffer:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,  # ikm is already uniformly random
        info=info,
    )
    return SecretBuffer(hkdf.derive(ikm))


class Cipher:
    """
    XChaCha20-Poly1305 authenticated encryption.

    seal() output is ciphertext || 16-byte Poly1305 tag. open() fails closed:
    any change to key, nonce, ciphertext, tag or associated data raises
    AuthenticationError and returns nothing.
    """

    @staticmethod
    def generate_nonce() -> bytes:
        """Fresh random 192-bit nonce. Call once per seal."""
        return os.urandom(NONCE_LENGTH)

    @staticmethod
    def seal(
        key: KeyMaterial,
        nonce: bytes,
        plaintext: Union[bytes, bytearray, memoryview],
        associated_data: Optional[bytes] = None,
    ) -> bytes:
        """Encrypt and authenticate plaintext."""
        raw_key = _key_bytes(key)
        _check_nonce(nonce)
        return sodium.crypto_aead_xchacha20poly1305_ietf_encrypt(
            bytes(plaintext), associated_data, bytes(nonce), raw_key
        )

    @staticmethod
    def open(
        key: KeyMaterial,
        nonce: bytes,
        sealed: bytes,
        associated_data: Optional[bytes] = None,
    ) -> SecretBuffer:
        """
        Verify and decrypt.

        Returns:
            SecretBuffer with the plaintext

        Raises:
            AuthenticationError: If authentication fails for any reason
        """
        raw_key = _key_bytes(key)
        _check_nonce(nonce)
        if len(sealed) < TAG_LENGTH:
            raise AuthenticationError("ciphertext shorter than authentication tag")
        try:
            plaintext = sodium.crypto_aead_xchacha20poly1305_ietf_decrypt(
                bytes(sealed), associated_data, bytes(nonce), raw_key
            )
        except CryptoError:
            raise AuthenticationError("decryption failed: authentication tag mismatch") from None
        return SecretBuffer(plaintext)


class ManifestMac:
    """HMAC-SHA256 over the serialized vault body."""

    @staticmethod
    def compute(key: KeyMaterial, data: bytes) -> bytes:
        mac = hmac.HMAC(_key_bytes(key), hashes.SHA256())
        mac.update(data)
        return mac.finalize()

    @staticmethod
    def verify(key: KeyMaterial, data: bytes, tag: bytes) -> bool:
        mac = hmac.HMAC(_key_bytes(key), hashes.SHA256())
        mac.update(data)
        try:
            mac.verify(tag)
        except InvalidSignature:
            return False
        return True


def _key_bytes(key: KeyMaterial) -> bytes:
    raw = key.value if isinstance(key, SecretBuffer) else bytes(key)
    if len(raw) != KEY_LENGTH:
        raise ValueError(f"key must be {KEY_LENGTH} bytes, got {len(raw)}")
    return raw


def _check_nonce(nonce: bytes) -> None:
    if len(nonce) != NONCE_LENGTH:
        raise ValueError(f"nonce must be {NONCE_LENGTH} bytes, got {len(nonce)}")


MIN_PASSWORD_LENGTH = 8

_COMMON_PASSWORDS = frozenset({
    "password", "password1", "12345678", "123456789", "qwertyuiop",
    "iloveyou", "letmein1", "bitcoin1", "satoshi1",
})


def check_master_password(password: str) -> Tuple[bool, str]:
    """
    Policy for new master passwords (init / passwd only).

    Unlocking never applies this: any string can derive a key.

    Returns:
        (is_valid, error_message)
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Master password must be at least {MIN_PASSWORD_LENGTH} characters long"
    if password.strip() != password:
        return False, "Master password must not start or end with whitespace"
    if password.lower() in _COMMON_PASSWORDS:
        return False, "This password is too common. Please choose a stronger password."
    return True, ""
