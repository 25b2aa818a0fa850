"""
Per-session serialization.

Every operation on a decision session (eliminate, skip, status read, the
lazy timeout sweep) reads and writes shared turn state, so operations on
the same session run one at a time. Different sessions never contend.

Locks live only as long as someone holds or waits on them; nothing here
needs to survive a restart.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from weakref import WeakValueDictionary


class SessionLockRegistry:
    """Hands out one asyncio.Lock per session id."""

    def __init__(self) -> None:
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        """Hold the session's lock for the duration of the block."""
        lock = self.lock_for(session_id)
        async with lock:
            yield


# Global registry instance
_lock_registry: SessionLockRegistry | None = None


def get_lock_registry() -> SessionLockRegistry:
    """Get the global lock registry instance."""
    global _lock_registry
    if _lock_registry is None:
        _lock_registry = SessionLockRegistry()
    return _lock_registry


def reset_lock_registry() -> None:
    """Reset the global lock registry (for testing)."""
    global _lock_registry
    _lock_registry = None
