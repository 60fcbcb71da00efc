"""Exclusive per-(space, branch) merge locks."""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Tuple

from src.core.errors import LockTimeoutError

logger = logging.getLogger(__name__)


class BranchLockManager:
    """Hands out one exclusive lock per (space, target branch).

    Only change request merges take these locks; every other operation on
    the branch's pages proceeds without them.

    Example:
        >>> locks = BranchLockManager()
        >>> with locks.hold("space-1", "main", timeout=5.0):
        ...     merge()
    """

    def __init__(self):
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, space_id: str, branch: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks.setdefault((space_id, branch), threading.Lock())

    @contextmanager
    def hold(self, space_id: str, branch: str, timeout: float = 30.0) -> Iterator[None]:
        """Hold the lock of (space_id, branch) for the duration of the block.

        Args:
            space_id: Space of the change request
            branch: Target branch
            timeout: Maximum time to wait for the lock (seconds)

        Raises:
            LockTimeoutError: If the lock cannot be acquired within timeout
        """
        lock = self._lock_for(space_id, branch)
        name = f"{space_id}:{branch}"

        logger.debug(f"Acquiring merge lock {name}")
        if not lock.acquire(timeout=timeout):
            raise LockTimeoutError(name, timeout)
        logger.debug(f"Merge lock {name} acquired")
        try:
            yield
        finally:
            lock.release()
            logger.debug(f"Merge lock {name} released")

    def is_locked(self, space_id: str, branch: str) -> bool:
        return self._lock_for(space_id, branch).locked()
