"""Per-key asyncio locks for in-process serialization.

Locks are held in a WeakValueDictionary, so an entry lives only while some
coroutine holds or waits on it. Idle keys are evicted automatically.

Usage:
    _user_locks = KeyedLocks()

    async with _user_locks.get(user_id):
        ...
"""

import asyncio
import weakref


class KeyedLocks:
    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def get(self, key: str) -> asyncio.Lock:
        # No await between lookup and insert, so no guard lock is needed
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: object) -> bool:
        return key in self._locks
