"""Background thread sweeping stuck syncs."""

import logging
import threading
from typing import Optional

from src.core.errors import DocSyncError

from .sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class SyncWatchdog:
    """Calls SyncEngine.sweep_stuck_syncs every interval seconds.

    Args:
        engine: Sync engine to sweep
        interval: Seconds between sweeps (settings.watchdog_interval_seconds
            when omitted)

    Example:
        >>> watchdog = SyncWatchdog(sync_engine)
        >>> watchdog.start()
        >>> watchdog.stop()
    """

    def __init__(self, engine: SyncEngine, interval: Optional[float] = None):
        self.engine = engine
        self.interval = interval or engine.settings.watchdog_interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="docsync-watchdog", daemon=True
        )
        self._thread.start()
        logger.debug(f"Sync watchdog started, sweeping every {self.interval:g}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                swept = self.engine.sweep_stuck_syncs()
            except DocSyncError as e:
                logger.error(f"Watchdog sweep failed: {e}")
                continue
            if swept:
                logger.warning(f"Watchdog timed out {len(swept)} sync(s)")
