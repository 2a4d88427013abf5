"""Scratch space and guaranteed cleanup for in-flight downloads.

A ``TempDownload`` is registered with the process-wide ``CleanupRegistry``
*before* any byte is written to it.  The registry removes every registered
path on normal interpreter exit (``atexit``), and on SIGINT, SIGTERM and
SIGHUP.  The owning ``with`` block removes it on error exit.  Registration is
released only after the file has been promoted to its destination by an
atomic rename.

Only one download scope may be open per process at a time: nested scopes
would compose signal handling unreliably.
"""

from __future__ import annotations

import atexit
import errno
import logging
import os
import shutil
import signal
import threading
import time
from pathlib import Path
from types import FrameType
from typing import Any

from artiguard.errors import ReentrantDownloadError

logger = logging.getLogger(__name__)

HANDLED_SIGNALS: tuple[signal.Signals, ...] = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGHUP") if hasattr(signal, name)
)


def unique_name(stem: str, suffix: str = ".part") -> str:
    """Invocation-unique file name: ``<pid>-<time_ns>-<stem><suffix>``."""
    safe_stem = stem.replace(os.sep, "_") or "download"
    return f"{os.getpid()}-{time.time_ns()}-{safe_stem}{suffix}"


def _unlink_quietly(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


class CleanupRegistry:
    """Paths to delete if the process ends before they are released."""

    def __init__(self) -> None:
        self._paths: list[Path] = []
        self._installed = False
        self._previous_handlers: dict[int, Any] = {}

    @property
    def pending(self) -> list[Path]:
        return list(self._paths)

    def register(self, path: Path) -> None:
        self._install_hooks()
        self._paths.append(Path(path))

    def release(self, path: Path) -> None:
        path = Path(path)
        if path in self._paths:
            self._paths.remove(path)

    def run(self) -> list[Path]:
        """Delete every registered path.  Returns the paths removed."""
        removed: list[Path] = []
        while self._paths:
            path = self._paths.pop()
            try:
                if _unlink_quietly(path):
                    removed.append(path)
            except OSError as e:
                logger.error("Could not remove %s during cleanup: %s", path, e)
        if removed:
            logger.debug("Cleaned up %d in-flight download(s)", len(removed))
        return removed

    # ------------------------------------------------------------------
    # Process hooks
    # ------------------------------------------------------------------

    def _install_hooks(self) -> None:
        if self._installed:
            return
        self._installed = True
        atexit.register(self.run)
        # signal.signal only works from the main thread
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in HANDLED_SIGNALS:
            previous = signal.getsignal(signum)
            if previous == signal.SIG_IGN:
                continue  # e.g. SIGHUP under nohup
            self._previous_handlers[signum] = previous
            signal.signal(signum, self._handle_signal)

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        self.run()
        previous = self._previous_handlers.get(signum, signal.SIG_DFL)
        if callable(previous):
            previous(signum, frame)
        elif previous == signal.SIG_DFL:
            # Re-deliver with the default disposition so the exit status
            # still reports death by this signal.
            signal.signal(signum, signal.SIG_DFL)
            os.kill(os.getpid(), signum)


_registry = CleanupRegistry()


def get_registry() -> CleanupRegistry:
    """Return the process-wide cleanup registry."""
    return _registry


class TempDownload:
    """An ephemeral file owned by exactly one download invocation.

    Use as a context manager: on exit the file is removed unless
    ``promote()`` has committed it to its destination.
    """

    def __init__(self, path: Path, registry: CleanupRegistry) -> None:
        self.path = path
        self._registry = registry
        self.promoted = False

    def __enter__(self) -> TempDownload:
        self._registry.register(self.path)
        return self

    def __exit__(self, *exc_info: object) -> None:
        if not self.promoted:
            _unlink_quietly(self.path)
        self._registry.release(self.path)

    def promote(self, dest: Path) -> Path:
        """Atomically move the verified file to *dest*.

        When scratch and destination are on different filesystems, the bytes
        are copied to a registered staging file beside *dest* first, so that
        the final step is still a same-filesystem rename.
        """
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(self.path, dest)
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise
            staging = dest.with_name(f".{unique_name(dest.name)}")
            self._registry.register(staging)
            try:
                shutil.copyfile(self.path, staging)
                os.replace(staging, dest)
            finally:
                _unlink_quietly(staging)
                self._registry.release(staging)
            _unlink_quietly(self.path)
        self.promoted = True
        self._registry.release(self.path)
        return dest


class ScratchDirectory:
    """Process-local scratch space for TempDownloads.

    The directory may be shared by sequential invocations and by other build
    processes; names are made unique per invocation instead of locking.

    Parameters
    ----------
    root:
        Directory to hold in-flight files.  Created with mode 0700.
    registry:
        Cleanup registry; defaults to the process-wide one.
    """

    def __init__(self, root: Path, registry: CleanupRegistry | None = None) -> None:
        self.root = Path(root)
        self._registry = registry or get_registry()

    @property
    def registry(self) -> CleanupRegistry:
        return self._registry

    def allocate(self, stem: str) -> TempDownload:
        """Return an unregistered TempDownload; registration happens on enter."""
        self.root.mkdir(mode=0o700, parents=True, exist_ok=True)
        return TempDownload(self.root / unique_name(stem), self._registry)

    def files(self) -> list[Path]:
        """In-flight files currently in the scratch directory."""
        if not self.root.exists():
            return []
        return sorted(p for p in self.root.iterdir() if p.is_file())


class DownloadScope:
    """Guards against nested download invocations within one process."""

    _active = False

    def __enter__(self) -> DownloadScope:
        if DownloadScope._active:
            raise ReentrantDownloadError(
                "a download is already in progress in this process; "
                "downloads must run sequentially"
            )
        DownloadScope._active = True
        return self

    def __exit__(self, *exc_info: object) -> None:
        DownloadScope._active = False
