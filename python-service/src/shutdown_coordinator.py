import asyncio
import inspect
import logging
from enum import Enum

from config import CLEANUP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

CLEANUP_REQUEST = 'before_quit_cleanup'
CLEANUP_COMPLETE = 'cleanup_complete'


class HandshakeState(Enum):
    RUNNING = 'running'
    CLEANUP_REQUESTED = 'cleanup_requested'
    CLEANUP_ACKNOWLEDGED = 'cleanup_acknowledged'
    FORCED_TERMINATION = 'forced_termination'


TERMINAL_STATES = (HandshakeState.CLEANUP_ACKNOWLEDGED, HandshakeState.FORCED_TERMINATION)


class ShutdownCoordinator:
    """
    Supervisor side of the cleanup handshake.

    request_cleanup() sends the cleanup signal and arms a timeout. Whichever
    comes first, the worker's acknowledgement or the timeout, decides the
    terminal state; terminate(state) is then called exactly once. Anything
    arriving after that is ignored.
    """
    def __init__(self, send, terminate, timers, timeout=CLEANUP_TIMEOUT_SECONDS):
        """
        Args:
            send: callable(msg_type) delivering the cleanup signal to the worker;
                may return an awaitable
            terminate: callable(HandshakeState) run once the handshake resolves
            timers: TimerScheduler for the timeout
            timeout: seconds to wait for the acknowledgement
        """
        self.send = send
        self.terminate = terminate
        self.timers = timers
        self.timeout = timeout

        self.state = HandshakeState.RUNNING
        self.requested_at = None
        self.resolved_at = None

        self._timeout_handle = None
        self._resolved = None

    @property
    def is_resolved(self):
        return self.state in TERMINAL_STATES

    def request_cleanup(self):
        """Start the handshake. Repeated requests are no-ops."""
        if self.state is not HandshakeState.RUNNING:
            return self.state

        self.state = HandshakeState.CLEANUP_REQUESTED
        self.requested_at = self.timers.now()
        self._timeout_handle = self.timers.call_later(self.timeout, self._on_timeout)
        logger.info("[Shutdown] Cleanup requested, waiting up to %.1fs", self.timeout)

        try:
            result = self.send(CLEANUP_REQUEST)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                task.add_done_callback(self._on_send_done)
        except Exception as e:
            # Worker unreachable; the timeout still ends the handshake
            logger.warning("[Shutdown] Could not send cleanup signal: %s", e)

        return self.state

    def acknowledge(self):
        """Worker finished cleanup. Late or duplicate acknowledgements are ignored."""
        if self.state is not HandshakeState.CLEANUP_REQUESTED:
            logger.debug("[Shutdown] Ignoring acknowledgement in state %s", self.state.value)
            return self.state
        self._resolve(HandshakeState.CLEANUP_ACKNOWLEDGED)
        return self.state

    async def wait(self):
        """Wait until the handshake reaches a terminal state and return it."""
        if self.is_resolved:
            return self.state
        if self._resolved is None:
            self._resolved = asyncio.get_running_loop().create_future()
        return await asyncio.shield(self._resolved)

    def _on_send_done(self, task):
        if not task.cancelled() and task.exception() is not None:
            logger.warning("[Shutdown] Could not send cleanup signal: %s", task.exception())

    def _on_timeout(self):
        self._timeout_handle = None
        if self.state is not HandshakeState.CLEANUP_REQUESTED:
            return
        logger.warning("[Shutdown] Handshake timeout: no cleanup acknowledgement after %.1fs, forcing termination",
                       self.timeout)
        self._resolve(HandshakeState.FORCED_TERMINATION)

    def _resolve(self, state):
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

        self.state = state
        self.resolved_at = self.timers.now()
        logger.info("[Shutdown] Handshake resolved: %s", state.value)

        if self._resolved is not None and not self._resolved.done():
            self._resolved.set_result(state)

        try:
            self.terminate(state)
        except Exception as e:
            logger.error("[Shutdown] Termination callback failed: %s", e)
