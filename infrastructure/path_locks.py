"""
Per-path locking for read-patch-write operations.

Two callers saving the same document would otherwise interleave their reads
and writes and the last writer would silently drop the other's patch. Every
write the repository performs holds the lock of the path it writes; moves
hold both paths, acquired in sorted order so two opposite moves cannot
deadlock.

Locks are re-entrant: a repository edit() holds the lock across read and
write and the nested write() re-acquires it.
"""
from contextlib import contextmanager, ExitStack
from pathlib import Path
from typing import Dict, Iterator, Union
import os
import threading


PathLike = Union[str, Path]


class PathLockRegistry:
    """Hands out one RLock per normalized absolute path."""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    @staticmethod
    def _key(path: PathLike) -> str:
        return os.path.normcase(os.path.abspath(str(path)))

    def lock_for(self, path: PathLike) -> threading.RLock:
        key = self._key(path)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *paths: PathLike) -> Iterator[None]:
        """Hold the locks of every given path for the duration of the block."""
        keys = sorted({self._key(p) for p in paths})
        with ExitStack() as stack:
            for key in keys:
                stack.enter_context(self.lock_for(key))
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
