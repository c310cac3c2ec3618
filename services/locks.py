import threading

import redis
from redis.exceptions import LockError

from core.config import settings

STORE_FILES_LOCK_PREFIX = "lock:store-files:"


# In-process stand-in for Redis locks while testing
class _FakeRedis:
    def __init__(self):
        self._locks = {}
        self._guard = threading.Lock()

    def lock(self, name, timeout=None, blocking_timeout=None, thread_local=True):
        with self._guard:
            inner = self._locks.setdefault(name, threading.Lock())
        return _FakeLock(name, inner, blocking_timeout)


class _FakeLock:
    def __init__(self, name, inner, blocking_timeout):
        self.name = name
        self._inner = inner
        self._blocking_timeout = blocking_timeout
        self._owned = False

    def acquire(self, blocking=True):
        timeout = -1 if self._blocking_timeout is None else self._blocking_timeout
        self._owned = self._inner.acquire(blocking, timeout) if blocking else self._inner.acquire(False)
        return self._owned

    def release(self):
        if not self._owned:
            raise LockError("Cannot release an unlocked lock")
        self._owned = False
        self._inner.release()

    def locked(self):
        return self._inner.locked()

    def __enter__(self):
        if self.acquire():
            return self
        raise LockError("Unable to acquire lock within the time specified")

    def __exit__(self, exc_type, exc, tb):
        self.release()


redis_client = _FakeRedis() if settings.TESTING else redis.from_url(settings.REDIS_URL, decode_responses=True)


def store_lock(store_id: int, blocking_timeout: float | None = None):
    """Lock serializing file generation for one store.

    Use as a context manager, which raises ``redis.exceptions.LockError`` when the
    lock cannot be acquired within ``blocking_timeout`` seconds, or call
    ``acquire()`` and check the result. The token is shared across threads so the
    lock can be acquired and released from different worker threads.
    """
    return redis_client.lock(
        f"{STORE_FILES_LOCK_PREFIX}{store_id}",
        timeout=settings.REGENERATE_LOCK_TIMEOUT,
        blocking_timeout=settings.REGENERATE_LOCK_WAIT if blocking_timeout is None else blocking_timeout,
        thread_local=False,
    )
