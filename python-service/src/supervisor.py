import asyncio
import logging
import os
import signal
import sys

import websockets

from config import CLEANUP_TIMEOUT_SECONDS, WEBSOCKET_HOST, WEBSOCKET_PORT
from errors import ResourceAcquisitionFailed
from message_channel import MessageChannel
from shutdown_coordinator import CLEANUP_COMPLETE, ShutdownCoordinator
from timers import AsyncioTimers

logger = logging.getLogger(__name__)


class ServiceSupervisor:
    """
    Launches the posture service as a child process, relays its alerts,
    and shuts it down through the cleanup handshake.
    """
    def __init__(self, host=WEBSOCKET_HOST, port=WEBSOCKET_PORT, command=None,
                 timeout=CLEANUP_TIMEOUT_SECONDS, timers=None, on_alert=None):
        self.uri = f"ws://{host}:{port}"
        if command is None:
            script_dir = os.path.dirname(os.path.abspath(__file__))
            command = [sys.executable, os.path.join(script_dir, 'main.py')]
        self.command = command
        self.on_alert = on_alert

        self.process = None
        self.websocket = None
        self._reader_task = None

        self.timers = timers or AsyncioTimers()
        self.coordinator = ShutdownCoordinator(
            send=self.send,
            terminate=self.terminate,
            timers=self.timers,
            timeout=timeout
        )

        self.channel = MessageChannel()
        self.channel.subscribe(CLEANUP_COMPLETE, self.handle_cleanup_complete)
        self.channel.subscribe('alert', self.handle_alert)

    async def start(self):
        """Spawn the worker and connect to it."""
        self.process = await asyncio.create_subprocess_exec(*self.command)
        self.websocket = await self.connect()
        self._reader_task = asyncio.create_task(self.read_messages())

    async def connect(self, retries=50, delay=0.2):
        """Connect to the worker, retrying while it starts up."""
        for _ in range(retries):
            try:
                return await websockets.connect(self.uri)
            except OSError:
                await asyncio.sleep(delay)
        raise ResourceAcquisitionFailed(f"Could not connect to posture service at {self.uri}")

    async def read_messages(self):
        try:
            async for message in self.websocket:
                try:
                    await self.channel.dispatch(message)
                except ValueError as e:
                    logger.warning("[Supervisor] Bad message from service: %s", e)
        except websockets.exceptions.ConnectionClosed:
            logger.info("[Supervisor] Connection to service closed")

    async def send(self, msg_type, **payload):
        if self.websocket is None:
            raise ConnectionError("Not connected to posture service")
        await self.websocket.send(MessageChannel.encode(msg_type, **payload))

    def handle_cleanup_complete(self, data):
        self.coordinator.acknowledge()

    def handle_alert(self, data):
        message = data.get('message', '')
        if self.on_alert is not None:
            self.on_alert(message)
        else:
            print(f"[Alert] {message}", flush=True)

    def terminate(self, state):
        """Stop the child process. Runs once the handshake has resolved either way."""
        logger.info("[Supervisor] Terminating service (%s)", state.value)
        if self.process is not None and self.process.returncode is None:
            self.process.terminate()

    async def shutdown(self):
        """
        Ask the worker to clean up, then terminate it.

        Returns:
            HandshakeState: CLEANUP_ACKNOWLEDGED or FORCED_TERMINATION
        """
        self.coordinator.request_cleanup()
        state = await self.coordinator.wait()

        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        if self.websocket is not None:
            await self.websocket.close()
            self.websocket = None
        if self.process is not None:
            await self.process.wait()
        return state


async def run_supervised():
    supervisor = ServiceSupervisor()
    await supervisor.start()
    await supervisor.send('start_monitoring')

    quit_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, quit_requested.set)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    try:
        await quit_requested.wait()
    finally:
        state = await supervisor.shutdown()
        print(f"Service terminated ({state.value})", flush=True)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, stream=sys.stdout,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    try:
        asyncio.run(run_supervised())
    except KeyboardInterrupt:
        print("Supervisor stopped by user", flush=True)
