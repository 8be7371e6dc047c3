import asyncio


class TimerScheduler:
    """
    Clock and one-shot timer source used by the schedulers.

    Production code runs on the asyncio loop; tests substitute a manual
    implementation that advances time explicitly.
    """
    def now(self):
        raise NotImplementedError

    def call_later(self, delay, callback):
        """Run `callback()` after `delay` seconds. Returns a handle with cancel()."""
        raise NotImplementedError


class AsyncioTimers(TimerScheduler):
    """Timers backed by loop.call_later; callbacks run on the loop thread."""
    def __init__(self, loop=None):
        self._loop = loop

    @property
    def loop(self):
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self):
        return self.loop.time()

    def call_later(self, delay, callback):
        return self.loop.call_later(delay, callback)
