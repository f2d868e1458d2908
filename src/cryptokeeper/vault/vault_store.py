# Vault - File Store
#
# Owns the vault file on disk.
#   load(): read + decode (no cryptography)
#   save(): atomic replace - temp file in the same directory, flush, fsync,
#           rename over the target, fsync the directory.
# A crash at any point leaves either the old file or the new one, never a mix.

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import List, Union

from . import vault_format
from .errors import VaultIOError, VaultMissingError
from .models import EntrySummary, VaultFile

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

FILE_MODE = 0o600
DIR_MODE = 0o700


def ensure_private_dir(directory: Path) -> None:
    """Create a directory (and parents) with owner-only permissions."""
    if directory.exists():
        return
    try:
        directory.mkdir(parents=True, exist_ok=True)
        if os.name == "posix":
            os.chmod(directory, DIR_MODE)
    except OSError as e:
        raise VaultIOError(f"Cannot create directory {directory}: {e}") from e


def atomic_write(path: PathLike, data: bytes, mode: int = FILE_MODE) -> None:
    """
    Replace `path` with `data` atomically.

    Raises:
        VaultIOError: On any filesystem failure. The target is untouched and
                      the temp file is removed.
    """
    target = Path(path)
    ensure_private_dir(target.parent)

    try:
        fd, tmp_name = tempfile.mkstemp(
            dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
        )
    except OSError as e:
        raise VaultIOError(f"Cannot create temporary file beside {target}: {e}") from e

    try:
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, target)
    except OSError as e:
        _discard(tmp_name)
        raise VaultIOError(f"Failed to write {target}: {e}") from e
    except BaseException:
        _discard(tmp_name)
        raise

    _fsync_dir(target.parent)


def _discard(tmp_name: str) -> None:
    try:
        os.unlink(tmp_name)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove temporary file %s: %s", tmp_name, e)


def _fsync_dir(directory: Path) -> None:
    """Persist the rename itself. Not supported on Windows."""
    if os.name != "posix":
        return
    try:
        dir_fd = os.open(str(directory), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError as e:
        logger.debug("Directory fsync failed for %s: %s", directory, e)
    finally:
        os.close(dir_fd)


class VaultStore:
    """
    Reads and atomically writes vault files.

    Writes through one store are serialized with a lock; callers must not
    write the same path from two stores at once.
    """

    def __init__(self):
        self._lock = threading.Lock()

    @staticmethod
    def exists(path: PathLike) -> bool:
        """A zero-byte file is not a vault."""
        target = Path(path)
        return target.is_file() and target.stat().st_size > 0

    def read_bytes(self, path: PathLike) -> bytes:
        target = Path(path)
        try:
            return target.read_bytes()
        except FileNotFoundError:
            raise VaultMissingError(target) from None
        except IsADirectoryError as e:
            raise VaultIOError(f"{target} is a directory") from e
        except OSError as e:
            raise VaultIOError(f"Failed to read {target}: {e}") from e

    def load(self, path: PathLike) -> VaultFile:
        """
        Read and decode a vault file.

        Raises:
            VaultMissingError: Nothing at path (or an empty file)
            VaultIOError: Filesystem failure
            CorruptVaultError / UnsupportedFormatError: From the decoder
        """
        data = self.read_bytes(path)
        if not data:
            raise VaultMissingError(Path(path))
        return vault_format.deserialize(data)

    def save(self, path: PathLike, vault_file: VaultFile) -> None:
        """Encode and atomically replace the vault file."""
        data = vault_format.serialize(vault_file)
        with self._lock:
            atomic_write(path, data)
        logger.debug("Saved vault %s (%d entries, %d bytes)", path, len(vault_file.records), len(data))

    def peek(self, path: PathLike) -> List[EntrySummary]:
        """List entry metadata without a password. Nothing is authenticated."""
        return vault_format.peek_summaries(self.read_bytes(path))
