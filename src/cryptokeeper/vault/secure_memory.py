# Vault - Secret Buffers
#
# Decrypted secrets and key material live in a mutable bytearray that is
# overwritten with zeros when released. Release happens on every exit path
# of a `with` block, on explicit wipe(), and as a last resort on GC.
#
# Limitation: Python may still hold transient immutable copies (bytes/str)
# created while calling into C libraries. Those cannot be zeroed from here.

import ctypes
import hmac
from typing import Optional, Union

BytesLike = Union[bytes, bytearray, memoryview]


class SecretBuffer:
    """
    Mutable container for secret bytes with guaranteed zeroing on release.

    Usage:
        with SecretBuffer(raw) as secret:
            use(secret.value)
        # buffer is zeroed here, even if use() raised
    """

    __slots__ = ("_data", "_wiped", "__weakref__")

    def __init__(self, data: BytesLike = b""):
        self._data = bytearray(data)
        self._wiped = False
        # Caller handed us a mutable buffer: scrub their copy too
        if isinstance(data, bytearray):
            _zero(data)

    @classmethod
    def from_text(cls, text: str) -> "SecretBuffer":
        """Build from a str (UTF-8). The str itself cannot be zeroed."""
        return cls(text.encode("utf-8"))

    @property
    def value(self) -> bytes:
        """Return an immutable copy. Keep its lifetime short."""
        self._check()
        return bytes(self._data)

    def view(self) -> memoryview:
        """Return a read-only view without copying."""
        self._check()
        return memoryview(self._data).toreadonly()

    def text(self) -> str:
        """Decode as UTF-8 (for clipboard/display)."""
        self._check()
        return self._data.decode("utf-8")

    def copy(self) -> "SecretBuffer":
        self._check()
        return SecretBuffer(bytes(self._data))

    @property
    def wiped(self) -> bool:
        return self._wiped

    def wipe(self) -> None:
        """Overwrite the buffer with zeros. Idempotent."""
        if self._wiped:
            return
        _zero(self._data)
        self._data = bytearray()
        self._wiped = True

    def equals(self, other: Union["SecretBuffer", BytesLike]) -> bool:
        """Constant-time comparison."""
        self._check()
        other_bytes = other.value if isinstance(other, SecretBuffer) else bytes(other)
        return hmac.compare_digest(bytes(self._data), other_bytes)

    def _check(self) -> None:
        if self._wiped:
            raise ValueError("SecretBuffer already wiped")

    def __len__(self) -> int:
        return len(self._data)

    def __enter__(self) -> "SecretBuffer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __del__(self):
        if hasattr(self, "_wiped"):
            self.wipe()

    def __repr__(self) -> str:
        state = "wiped" if self._wiped else f"{len(self._data)} bytes"
        return f"<SecretBuffer [REDACTED] {state}>"

    __str__ = __repr__

    def __eq__(self, other) -> bool:
        if isinstance(other, (SecretBuffer, bytes, bytearray, memoryview)):
            return self.equals(other)
        return NotImplemented

    __hash__ = None  # mutable, never a dict key


def _zero(buf: Optional[bytearray]) -> None:
    """Overwrite a bytearray in place."""
    if not buf:
        return
    size = len(buf)
    try:
        ctypes.memset((ctypes.c_char * size).from_buffer(buf), 0, size)
    except (TypeError, ValueError, BufferError):
        # Exported buffers (live memoryviews) refuse from_buffer; fall back
        buf[:] = bytes(size)
