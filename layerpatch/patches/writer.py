import hashlib
import logging
import os
import shutil
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock

from layerpatch.patches.exceptions import PatchIOError

logger = logging.getLogger(__name__)

# Target files are treated as UTF-8; undecodable bytes survive a read/write round trip
TARGET_ENCODING = "utf-8"
TARGET_ERRORS = "surrogateescape"


def default_lock_dir() -> Path:
    return Path(tempfile.gettempdir()) / "layerpatch-locks"


class PathLocks:
    """
    Write locks keyed by absolute target path.

    A thread lock serialises workers of this process; a FileLock kept
    outside the patched tree does the same for other processes.
    """

    def __init__(self, lock_dir: Path | None = None):
        self.lock_dir = Path(lock_dir) if lock_dir else default_lock_dir()
        self._guard = threading.Lock()
        self._thread_locks: dict[str, threading.Lock] = {}

    def _thread_lock(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._thread_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._thread_locks[key] = lock
            return lock

    @contextmanager
    def hold(self, path: Path) -> Iterator[None]:
        key = str(Path(path).absolute())
        digest = hashlib.sha256(key.encode("utf-8", TARGET_ERRORS)).hexdigest()[:32]
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        with self._thread_lock(key):
            with FileLock(str(self.lock_dir / f"{digest}.lock")):
                logger.debug("Holding write lock for %s", key)
                yield


def read_target(path: Path) -> str | None:
    """Current text of a target file, or None if it does not exist."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise PatchIOError(f"cannot read {path}: {e}", path=str(path)) from e
    return data.decode(TARGET_ENCODING, TARGET_ERRORS)


def atomic_write(path: Path, text: str) -> None:
    """
    Replace ``path`` with ``text`` via a temporary file in the same directory.

    The temporary file is fsynced and takes over the original's mode before
    ``os.replace``, so a crash leaves either the old or the new file.
    """

    path = Path(path)
    data = text.encode(TARGET_ENCODING, TARGET_ERRORS)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".layerpatch", dir=path.parent)
    except OSError as e:
        raise PatchIOError(f"cannot create temporary file next to {path}: {e}", path=str(path)) from e

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            shutil.copymode(path, tmp_path)
        else:
            os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, path)
    except OSError as e:
        raise PatchIOError(f"cannot write {path}: {e}", path=str(path)) from e
    finally:
        if tmp_path.exists():
            tmp_path.unlink()

    logger.debug("Wrote %d bytes to %s", len(data), path)


def remove_target(path: Path) -> None:
    path = Path(path)
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as e:
        raise PatchIOError(f"cannot delete {path}: {e}", path=str(path)) from e
    logger.debug("Removed %s", path)
