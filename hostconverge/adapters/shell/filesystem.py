"""
Transactional file writer — atomic writes with scoped cleanup.

Writes go to a temp file in the destination directory, are fsynced and
chmodded, then renamed over the destination. A reader sees either the
old or the new full content, never a mix.

Temp files are tracked process-wide so an interruption (SIGINT,
SIGTERM, SIGHUP) still removes them before the process exits.
"""

from __future__ import annotations

import atexit
import hashlib
import logging
import os
import shutil
import signal
import stat
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType

from hostconverge.core.errors import FileWriteError

logger = logging.getLogger(__name__)

# ── Pending temp file registry ──────────────────────────────────

_pending: set[Path] = set()
_pending_lock = threading.Lock()


def _track(path: Path) -> None:
    with _pending_lock:
        _pending.add(path)


def _untrack(path: Path) -> None:
    with _pending_lock:
        _pending.discard(path)


def pending_temp_files() -> list[Path]:
    """Temp files created by atomic_write and not yet renamed or removed."""
    with _pending_lock:
        return sorted(_pending)


def cleanup_pending() -> int:
    """Remove every tracked temp file. Returns how many were removed."""
    with _pending_lock:
        paths = list(_pending)
        _pending.clear()
    removed = 0
    for path in paths:
        try:
            path.unlink(missing_ok=True)
            removed += 1
        except OSError as e:
            logger.warning("Could not remove temp file %s: %s", path, e)
    if removed:
        logger.debug("Removed %d pending temp file(s)", removed)
    return removed


atexit.register(cleanup_pending)


def _raise_interrupt(signum: int, _frame: object) -> None:
    cleanup_pending()
    raise KeyboardInterrupt(f"received signal {signum}")


def install_signal_handlers() -> None:
    """Turn SIGTERM/SIGHUP into KeyboardInterrupt so cleanup paths run.

    SIGINT already raises KeyboardInterrupt. Only callable from the
    main thread.
    """
    for signame in ("SIGTERM", "SIGHUP"):
        signum = getattr(signal, signame, None)
        if signum is not None:
            signal.signal(signum, _raise_interrupt)


# ── Primitives ──────────────────────────────────────────────────


@dataclass
class WriteResult:
    """Outcome of an atomic write."""

    path: Path
    changed: bool = True
    bytes_written: int = 0
    dry_run: bool = False


def file_digest(path: Path) -> str:
    """sha256 hex digest of a file's content."""
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def content_digest(content: str) -> str:
    """sha256 hex digest of text as it would be written."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def file_mode(path: Path) -> int:
    """Permission bits of ``path``."""
    return stat.S_IMODE(path.stat().st_mode)


def atomic_write(
    path: Path,
    content: str | bytes,
    mode: int = 0o644,
    *,
    dry_run: bool = False,
) -> WriteResult:
    """Write ``content`` to ``path`` atomically.

    Unchanged content with unchanged mode is a no-op.

    Raises:
        FileWriteError: If any stage fails. The temp file is removed
            on every exit path, including interruption.
    """
    path = Path(path)
    data = content if isinstance(content, bytes) else content.encode("utf-8")

    if path.is_file():
        try:
            if file_mode(path) == mode and path.read_bytes() == data:
                logger.debug("Unchanged: %s", path)
                return WriteResult(path=path, changed=False)
        except OSError:
            pass

    if dry_run:
        logger.info("[dry-run] would write %d bytes to %s (mode %o)", len(data), path, mode)
        return WriteResult(path=path, bytes_written=len(data), dry_run=True)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise FileWriteError(f"Cannot create temp file for {path}: {e}", resource=str(path)) from e

    tmp = Path(tmp_name)
    _track(tmp)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except OSError as e:
        raise FileWriteError(f"Cannot write {path}: {e}", resource=str(path)) from e
    finally:
        if tmp.exists():
            tmp.unlink(missing_ok=True)
        _untrack(tmp)

    logger.debug("Wrote %d bytes to %s", len(data), path)
    return WriteResult(path=path, bytes_written=len(data))


def remove_path(path: Path, *, dry_run: bool = False) -> bool:
    """Remove a file, symlink or directory tree. Returns whether it existed."""
    path = Path(path)
    if not path.exists() and not path.is_symlink():
        return False
    if dry_run:
        logger.info("[dry-run] would remove %s", path)
        return True
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except OSError as e:
        raise FileWriteError(f"Cannot remove {path}: {e}", resource=str(path)) from e
    return True


# ── Transactions ────────────────────────────────────────────────


@dataclass
class _Backup:
    path: Path
    existed: bool
    content: bytes = b""
    mode: int = 0o644


@dataclass
class FileTransaction:
    """Group file changes that must be undone together.

    Usage:
        with FileTransaction() as txn:
            txn.write(unit_path, unit_text)
            reload_daemon()  # raising here restores the previous unit
    """

    dry_run: bool = False
    _backups: dict[Path, _Backup] = field(default_factory=dict)
    committed: bool = False
    rolled_back: bool = False

    def __enter__(self) -> FileTransaction:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if exc_type is not None:
            logger.warning("File transaction failed (%s) — rolling back", exc_type.__name__)
            self.rollback()
            return False
        self.commit()
        return False

    def _remember(self, path: Path) -> None:
        if path in self._backups:
            return
        if path.is_file():
            self._backups[path] = _Backup(
                path=path,
                existed=True,
                content=path.read_bytes(),
                mode=file_mode(path),
            )
        else:
            self._backups[path] = _Backup(path=path, existed=False)

    def write(self, path: Path, content: str, mode: int = 0o644) -> WriteResult:
        path = Path(path)
        if not self.dry_run:
            self._remember(path)
        return atomic_write(path, content, mode, dry_run=self.dry_run)

    def remove(self, path: Path) -> bool:
        path = Path(path)
        if not self.dry_run:
            self._remember(path)
        return remove_path(path, dry_run=self.dry_run)

    def commit(self) -> None:
        self._backups.clear()
        self.committed = True

    def rollback(self) -> None:
        """Restore every touched path to its state before the transaction."""
        for backup in reversed(list(self._backups.values())):
            try:
                if backup.existed:
                    atomic_write(
                        backup.path,
                        backup.content,
                        backup.mode,
                    )
                else:
                    remove_path(backup.path)
                logger.info("Rolled back %s", backup.path)
            except FileWriteError as e:
                logger.error("Rollback of %s failed: %s", backup.path, e)
        self._backups.clear()
        self.rolled_back = True
