import heapq
import itertools
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from timers import TimerScheduler


class ManualHandle:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualTimers(TimerScheduler):
    """Fake clock: time only moves when advance() is called."""
    def __init__(self):
        self.time = 0.0
        self._queue = []
        self._seq = itertools.count()

    def now(self):
        return self.time

    def call_later(self, delay, callback):
        handle = ManualHandle(self.time + delay, callback)
        heapq.heappush(self._queue, (handle.when, next(self._seq), handle))
        return handle

    def advance(self, seconds):
        """Move the clock forward, firing every due timer in order."""
        target = self.time + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            self.time = when
            if not handle.cancelled:
                handle.callback()
        self.time = target

    def run_until(self, t):
        self.advance(t - self.time)

    @property
    def pending(self):
        return sum(1 for _, _, h in self._queue if not h.cancelled)


@pytest.fixture
def timers():
    return ManualTimers()
