import logging
import time
import uuid
from contextlib import contextmanager

from django.core.cache import cache

logger = logging.getLogger(__name__)


class DistributedLock:
    """
    A distributed lock implementation using Django's cache backend.

    This lock can be used to prevent race conditions in distributed environments
    where multiple processes or servers might try to access the same resource
    simultaneously.
    """

    def __init__(self, key, expires=60, timeout=10, poll_interval=0.1):
        """
        Initialize a distributed lock.

        Args:
            key (str): The unique identifier for the lock
            expires (int): The number of seconds after which the lock expires
            timeout (int): The maximum number of seconds to wait to acquire the lock
            poll_interval (float): The interval in seconds to check if lock can be acquired
        """
        self.key = f"lock:{key}"
        self.expires = expires
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._lock_id = str(uuid.uuid4())

    def acquire(self):
        """
        Attempt to acquire the lock.

        Returns:
            bool: True if the lock was acquired, False otherwise
        """
        logger.debug(f"Attempting to acquire lock for {self.key}")
        start_time = time.monotonic()

        while True:
            # Try to add the key to the cache only if it doesn't exist
            if cache.add(self.key, self._lock_id, self.expires):
                logger.debug(f"Lock acquired for {self.key}")
                return True

            if time.monotonic() - start_time >= self.timeout:
                break

            # If we can't acquire the lock, wait before trying again
            time.sleep(self.poll_interval)

        logger.warning(f"Failed to acquire lock for {self.key} after {self.timeout} seconds")
        return False

    def release(self):
        """
        Release the lock if it's owned by this instance.

        Returns:
            bool: True if the lock was released, False otherwise
        """
        logger.debug(f"Attempting to release lock for {self.key}")

        # Only release the lock if it's owned by this instance
        if cache.get(self.key) == self._lock_id:
            cache.delete(self.key)
            logger.debug(f"Lock released for {self.key}")
            return True

        logger.warning(f"Failed to release lock for {self.key} - lock not owned by this instance")
        return False


@contextmanager
def distributed_lock(key, expires=60, timeout=10, poll_interval=0.1):
    """
    Context manager for acquiring and releasing a distributed lock.

    Args:
        key (str): The unique identifier for the lock
        expires (int): The number of seconds after which the lock expires
        timeout (int): The maximum number of seconds to wait to acquire the lock
        poll_interval (float): The interval in seconds to check if lock can be acquired

    Yields:
        bool: True if the lock was acquired, False otherwise
    """
    lock = DistributedLock(key, expires, timeout, poll_interval)
    acquired = lock.acquire()
    try:
        yield acquired
    finally:
        if acquired:
            lock.release()


@contextmanager
def distributed_locks(keys, expires=60, timeout=10, poll_interval=0.1):
    """
    Context manager acquiring several distributed locks as one unit.

    Keys are de-duplicated and acquired in sorted order so that two callers
    locking overlapping key sets cannot deadlock. If any lock cannot be
    acquired, the ones already held are released.

    Args:
        keys (Iterable[str]): Lock identifiers
        expires (int): The number of seconds after which each lock expires
        timeout (int): The maximum number of seconds to wait for each lock
        poll_interval (float): The interval in seconds to check if a lock can be acquired

    Yields:
        bool: True if every lock was acquired, False otherwise
    """
    held = []
    acquired = True
    for key in sorted(set(keys)):
        lock = DistributedLock(key, expires, timeout, poll_interval)
        if not lock.acquire():
            acquired = False
            break
        held.append(lock)

    try:
        yield acquired
    finally:
        for lock in reversed(held):
            lock.release()
