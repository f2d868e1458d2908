# Clipboard Guard
#
# Puts a secret on the system clipboard and clears it after a timeout,
# but only if the clipboard still holds that secret: anything the user
# copied in the meantime is left alone.
#
# One daemon threading.Timer per copy. A generation counter and a lock make
# copy() and timer expiry mutually exclusive, so a superseded timer can
# never clear a newer value.

import logging
import threading
from typing import Optional, Protocol, Union

import pyperclip

from .core.audit_log import EventType, get_audit_logger
from .vault.errors import ClipboardError
from .vault.secure_memory import SecretBuffer

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class ClipboardBackend(Protocol):
    """The two calls we need. The pyperclip module satisfies this."""

    def copy(self, text: str) -> None: ...

    def paste(self) -> str: ...


class ClipboardGuard:
    """
    Copy-with-auto-clear.

    Usage:
        guard = ClipboardGuard(timeout=10)
        guard.copy(entry.secret)
        ...
        guard.cancel()   # on lock/quit: clear now if still ours
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, backend: Optional[ClipboardBackend] = None):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.timeout = float(timeout)
        self._backend = backend if backend is not None else pyperclip
        self._lock = threading.Lock()
        self._generation = 0
        self._timer: Optional[threading.Timer] = None
        self._value: Optional[SecretBuffer] = None
        self._idle = threading.Event()
        self._idle.set()
        self.logger = get_audit_logger()

    @property
    def pending(self) -> bool:
        """True while a clear is scheduled."""
        with self._lock:
            return self._timer is not None

    def copy(self, secret: Union[SecretBuffer, str, bytes], label: Optional[str] = None) -> None:
        """
        Write secret to the clipboard and (re)start the countdown.

        Raises:
            ClipboardError: Clipboard unavailable. A clear already scheduled
                            for the previous value still runs.
        """
        if isinstance(secret, SecretBuffer):
            value = secret.copy()
        elif isinstance(secret, str):
            value = SecretBuffer.from_text(secret)
        else:
            value = SecretBuffer(secret)

        with self._lock:
            # A failed write leaves the previous value and its countdown in place
            try:
                self._backend.copy(value.text())
            except pyperclip.PyperclipException as e:
                value.wipe()
                raise ClipboardError(f"Clipboard unavailable: {e}") from e

            self._stop_timer()
            self._forget()
            self._value = value
            self._generation += 1
            timer = threading.Timer(self.timeout, self._expire, args=(self._generation,))
            timer.daemon = True
            self._timer = timer
            self._idle.clear()
            timer.start()

        self.logger.log_vault_event(
            EventType.CLIPBOARD_COPIED,
            f"Secret copied to clipboard (auto-clear in {self.timeout:g}s)",
            details={"label": label, "timeout": self.timeout},
        )

    def cancel(self) -> bool:
        """
        Stop the countdown and clear now, but only if the clipboard still
        holds the guarded value. Anything copied since is left alone, so this
        is not an unconditional wipe.

        Returns:
            True if the clipboard was cleared
        """
        with self._lock:
            self._generation += 1
            self._stop_timer()
            if self._value is None:
                return False
            try:
                cleared = self._clear_if_ours()
            finally:
                self._forget()
        self._log_outcome(cleared, "cancelled")
        return cleared

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until no clear is pending. Returns False on timeout."""
        return self._idle.wait(timeout)

    def __enter__(self) -> "ClipboardGuard":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()

    def _expire(self, generation: int) -> None:
        """Timer thread entry point."""
        with self._lock:
            if generation != self._generation:
                return  # superseded by a later copy() or cancel()
            self._timer = None
            if self._value is None:
                self._idle.set()
                return
            try:
                cleared = self._clear_if_ours()
            except ClipboardError as e:
                logger.warning("Clipboard auto-clear failed: %s", e)
                return
            finally:
                self._forget()
        self._log_outcome(cleared, "expired")

    # Callers hold self._lock

    def _clear_if_ours(self) -> bool:
        try:
            current = self._backend.paste() or ""
            if not self._value.equals(current.encode("utf-8")):
                return False
            self._backend.copy("")
        except pyperclip.PyperclipException as e:
            raise ClipboardError(f"Clipboard unavailable: {e}") from e
        return True

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _forget(self) -> None:
        if self._value is not None:
            self._value.wipe()
            self._value = None
        if self._timer is None:
            self._idle.set()

    def _log_outcome(self, cleared: bool, reason: str) -> None:
        if cleared:
            self.logger.log_vault_event(
                EventType.CLIPBOARD_CLEARED, f"Clipboard cleared ({reason})"
            )
        else:
            self.logger.log_vault_event(
                EventType.CLIPBOARD_SKIPPED,
                f"Clipboard left alone ({reason}): content changed since copy",
            )
