"""
Unit tests for infrastructure.path_locks.
"""
import threading
import time

from infrastructure.path_locks import PathLockRegistry


class TestPathLockRegistry:
    """Tests for PathLockRegistry."""

    def test_same_path_same_lock(self, temp_dir):
        registry = PathLockRegistry()
        assert registry.lock_for(temp_dir / "a.md") is registry.lock_for(str(temp_dir / "x" / ".." / "a.md"))
        assert len(registry) == 1

    def test_reentrant(self, temp_dir):
        registry = PathLockRegistry()
        with registry.hold(temp_dir / "a.md"):
            with registry.hold(temp_dir / "a.md", temp_dir / "b.md"):
                pass

    def test_serializes_writers(self, temp_dir):
        registry = PathLockRegistry()
        path = temp_dir / "a.md"
        active = []
        overlaps = []

        def worker():
            for _ in range(10):
                with registry.hold(path):
                    active.append(1)
                    if len(active) > 1:
                        overlaps.append(True)
                    time.sleep(0.001)
                    active.pop()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert overlaps == []

    def test_opposite_moves_do_not_deadlock(self, temp_dir):
        registry = PathLockRegistry()
        a, b = temp_dir / "a.md", temp_dir / "b.md"

        def move(src, dst):
            for _ in range(50):
                with registry.hold(src, dst):
                    pass

        threads = [threading.Thread(target=move, args=(a, b)), threading.Thread(target=move, args=(b, a))]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        assert not any(t.is_alive() for t in threads)
