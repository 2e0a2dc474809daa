"""每个村庄一把可重入锁。

同一村庄上的 tick / 事件处理 / 玩家选择 / 贸易必须串行；
不同村庄互不阻塞。
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class VillageLockRegistry:
    """按村庄 ID 发放锁（线程安全）。"""

    _lock = threading.Lock()

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}

    def lock_for(self, village_id: str) -> threading.RLock:
        with self._lock:
            lock = self._locks.get(village_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[village_id] = lock
            return lock

    @contextmanager
    def hold(self, village_id: str) -> Iterator[None]:
        """在 with 块内独占该村庄。"""
        lock = self.lock_for(village_id)
        with lock:
            yield

    def discard(self, village_id: str) -> None:
        with self._lock:
            self._locks.pop(village_id, None)
