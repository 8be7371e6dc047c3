import logging
from enum import Enum

from config import POSTURE_ALERT_MESSAGE, NotificationSettings

logger = logging.getLogger(__name__)


class NotificationState(Enum):
    IDLE = 'idle'
    PENDING = 'pending'
    COOLDOWN = 'cooldown'
    CONTINUOUS = 'continuous'


class NotificationScheduler:
    """
    Decides when a threshold breach becomes a user-visible alert.

    States:
        IDLE        score at or below threshold, nothing scheduled
        PENDING     score above threshold, waiting `trigger_delay` seconds;
                    dropping back below threshold cancels the wait
        COOLDOWN    one alert delivered, further alerts suppressed for
                    `cooldown_time` seconds, then back to IDLE
        CONTINUOUS  alert every `continuous_interval` seconds until the
                    score drops back below threshold

    Exactly one timer handle is live at a time. Pausing or disabling cancels
    it and returns to IDLE without a final alert. Settings changes apply from
    the next transition onwards; an in-flight cycle is never aborted.
    """
    def __init__(self, deliver, timers, settings=None, message=POSTURE_ALERT_MESSAGE):
        """
        Args:
            deliver: callable(message) invoked for each alert, fire-and-forget
            timers: TimerScheduler providing call_later()
            settings: NotificationSettings (defaults if omitted)
            message: text passed to deliver()
        """
        self.deliver = deliver
        self.timers = timers
        self.settings = settings or NotificationSettings()
        self.message = message

        self.state = NotificationState.IDLE
        self.paused = False
        self.enabled = True
        self.alert_count = 0
        self.last_alert_time = None

        self._timer = None

    def configure(self, settings):
        """Replace settings. Takes effect at the next transition."""
        self.settings = settings

    def update(self, score):
        """
        Feed the latest smoothed score.

        Returns:
            NotificationState: state after the update
        """
        if self.paused or not self.enabled:
            return self.state

        is_above = score > self.settings.threshold

        if self.state is NotificationState.IDLE:
            if is_above:
                self._enter_pending()
        elif self.state is NotificationState.PENDING:
            if not is_above:
                # Debounce: a dip below threshold resets the wait entirely
                self._enter_idle()
        elif self.state is NotificationState.CONTINUOUS:
            if not is_above:
                self._enter_idle()
        # COOLDOWN is purely time-based

        return self.state

    def set_paused(self, paused):
        if paused:
            self._enter_idle()
        self.paused = paused

    def set_enabled(self, enabled):
        if not enabled:
            self._enter_idle()
        self.enabled = enabled

    def stop(self):
        """Cancel everything and return to IDLE."""
        self._enter_idle()

    # ---- transitions ----

    def _enter_idle(self):
        self._cancel_timer()
        if self.state is not NotificationState.IDLE:
            logger.debug("[Notification] %s -> idle", self.state.value)
        self.state = NotificationState.IDLE

    def _enter_pending(self):
        self.state = NotificationState.PENDING
        self._schedule(self.settings.trigger_delay, self._on_trigger_delay_elapsed)

    def _on_trigger_delay_elapsed(self):
        if self.settings.mode == 'continuous':
            self.state = NotificationState.CONTINUOUS
            self._schedule(self.settings.continuous_interval, self._on_continuous_interval)
        else:
            self.state = NotificationState.COOLDOWN
            self._schedule(self.settings.cooldown_time, self._on_cooldown_elapsed)
        self._alert()

    def _on_cooldown_elapsed(self):
        # Next tick decides whether a fresh PENDING cycle starts
        self.state = NotificationState.IDLE

    def _on_continuous_interval(self):
        self._schedule(self.settings.continuous_interval, self._on_continuous_interval)
        self._alert()

    # ---- timer handling ----

    def _schedule(self, delay, callback):
        self._cancel_timer()
        handle = None

        def fire():
            # Stale handle: cancelled or superseded after it was queued
            if self._timer is not handle:
                return
            self._timer = None
            callback()

        handle = self.timers.call_later(delay, fire)
        self._timer = handle

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _alert(self):
        self.alert_count += 1
        self.last_alert_time = self.timers.now()
        logger.info("[Notification] Alert #%d (%s mode)", self.alert_count, self.state.value)
        try:
            self.deliver(self.message)
        except Exception as e:
            logger.error("[Notification] Alert delivery failed: %s", e)
