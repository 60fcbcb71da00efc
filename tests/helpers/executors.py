"""Executors and clocks that make background syncs deterministic."""

from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Tuple


class ImmediateExecutor(Executor):
    """Runs every submitted callable synchronously inside submit()."""

    def submit(self, fn, *args, **kwargs) -> Future:
        future: Future = Future()
        future.set_running_or_notify_cancel()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class DeferredExecutor(Executor):
    """Queues submitted callables until run_pending() is called.

    Lets a test observe a sync while it is still 'syncing'.
    """

    def __init__(self):
        self.pending: List[Tuple[Future, Callable, tuple, dict]] = []

    def submit(self, fn, *args, **kwargs) -> Future:
        future: Future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_pending(self) -> int:
        """Run queued callables (skipping cancelled ones) and return how many ran."""
        ran = 0
        queue, self.pending = self.pending, []
        for future, fn, args, kwargs in queue:
            if not future.set_running_or_notify_cancel():
                continue
            ran += 1
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                future.set_exception(e)
        return ran

    def run_ignoring_cancel(self) -> None:
        """Run queued callables even if their future was cancelled.

        Simulates a worker that was already running when the watchdog fired.
        """
        queue, self.pending = self.pending, []
        for future, fn, args, kwargs in queue:
            fn(*args, **kwargs)


class TickingClock:
    """Clock advancing by step on every call, so timestamps are strictly ordered."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc),
                 step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)
