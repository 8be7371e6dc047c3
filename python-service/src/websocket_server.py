import asyncio
import json
import logging
import time

import cv2
import websockets

from config import (ANALYSIS_INTERVAL_SECONDS, CAMERA_HEIGHT, CAMERA_WIDTH, DROWSINESS_ALERT_MESSAGE,
                    POSTURE_ALERT_MESSAGE, WEBSOCKET_HOST, WEBSOCKET_PORT, DrowsinessSettings,
                    NotificationSettings, load_settings, merge_settings, save_settings)
from drowsiness_detector import DrowsinessDetector
from errors import CalibrationFailed, DetectionUnavailable, ResourceAcquisitionFailed
from message_channel import MessageChannel
from notification_scheduler import NotificationScheduler
from posture_scorer import PostureScoreEngine
from shutdown_coordinator import CLEANUP_COMPLETE, CLEANUP_REQUEST
from timers import AsyncioTimers

logger = logging.getLogger(__name__)


def open_camera(camera_id):
    """Open a capture device at the analysis resolution."""
    camera = cv2.VideoCapture(camera_id)
    camera.set(cv2.CAP_PROP_FRAME_WIDTH, CAMERA_WIDTH)
    camera.set(cv2.CAP_PROP_FRAME_HEIGHT, CAMERA_HEIGHT)
    camera.set(cv2.CAP_PROP_BUFFERSIZE, 1)  # Reduce buffer to get latest frames
    return camera


class WebSocketServer:
    """
    Worker side of the service: owns the camera, keypoint source, score
    engine and notification schedulers, and talks JSON to the front end.

    All state changes happen on the event loop. Analysis ticks are
    serialized by `tick_lock`; model inference runs in a worker thread.
    """
    def __init__(self, host=WEBSOCKET_HOST, port=WEBSOCKET_PORT, settings=None,
                 settings_path=None, timers=None, camera_factory=open_camera,
                 interval=ANALYSIS_INTERVAL_SECONDS):
        self.host = host
        self.port = port
        self.clients = set()
        self.source = None  # Keypoint source, set externally
        self.camera = None
        self.camera_factory = camera_factory
        self.interval = interval

        self.settings_path = settings_path
        self.settings = merge_settings(settings) if settings is not None else load_settings(settings_path)

        self.timers = timers or AsyncioTimers()
        self.engine = PostureScoreEngine()
        self.scheduler = NotificationScheduler(
            deliver=self.deliver_posture_alert,
            timers=self.timers,
            settings=NotificationSettings.from_dict(self.settings['threshold']),
            message=POSTURE_ALERT_MESSAGE
        )
        self.drowsiness = DrowsinessDetector(DrowsinessSettings.from_dict(self.settings['drowsiness']))
        self.drowsiness_enabled = bool(self.settings['drowsiness'].get('enabled', False))

        self.is_monitoring = False
        self.is_paused = False
        self.monitoring_task = None
        self.tick_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._background_tasks = set()

        self.channel = MessageChannel()
        self.channel.subscribe('start_monitoring', self.handle_start_monitoring)
        self.channel.subscribe('stop_monitoring', self.handle_stop_monitoring)
        self.channel.subscribe('calibrate', self.handle_calibrate)
        self.channel.subscribe('pause', self.handle_pause)
        self.channel.subscribe('resume', self.handle_resume)
        self.channel.subscribe('set_settings', self.handle_set_settings)
        self.channel.subscribe('get_status', self.handle_get_status)
        self.channel.subscribe('get_history', self.handle_get_history)
        self.channel.subscribe('clear_history', self.handle_clear_history)
        self.channel.subscribe('set_recording', self.handle_set_recording)
        self.channel.subscribe(CLEANUP_REQUEST, self.handle_before_quit_cleanup)

    # ---- client management ----

    async def register(self, websocket):
        self.clients.add(websocket)

    async def unregister(self, websocket):
        self.clients.discard(websocket)

    async def send(self, data):
        """Send data to all connected clients."""
        if not self.clients:
            return
        message = json.dumps(data)
        await asyncio.gather(
            *[client.send(message) for client in self.clients],
            return_exceptions=True
        )

    @staticmethod
    async def reply(websocket, data):
        await websocket.send(json.dumps(data))

    async def handler(self, websocket):
        await self.register(websocket)
        try:
            async for message in websocket:
                await self.process_message(websocket, message)
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            await self.unregister(websocket)

    async def process_message(self, websocket, message):
        """Process incoming message from client."""
        try:
            handled = await self.channel.dispatch(message, websocket)
            if not handled:
                await self.reply(websocket, {
                    'type': 'error',
                    'message': 'Unknown message type'
                })
        except Exception as e:
            logger.warning("[Server] Request failed: %s", e)
            await self.reply(websocket, {
                'type': 'error',
                'message': str(e)
            })

    def _spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    # ---- alert delivery ----

    def deliver_posture_alert(self, message):
        self._spawn(self.send({'type': 'alert', 'kind': 'posture', 'message': message}))

    def deliver_drowsiness_alert(self, message):
        self._spawn(self.send({'type': 'alert', 'kind': 'drowsiness', 'message': message}))

    # ---- detection lifecycle ----

    async def start_monitoring(self):
        """
        Acquire the camera and start the analysis loop.

        Raises:
            ResourceAcquisitionFailed: camera could not be opened
        """
        # Waits behind a disable that is still releasing the previous camera
        async with self.tick_lock:
            if self.is_monitoring:
                return

            camera = self.camera_factory(self.settings['camera'].get('id', 0))
            if camera is None or not camera.isOpened():
                if camera is not None:
                    camera.release()
                raise ResourceAcquisitionFailed('Failed to open camera')

            self.camera = camera
            self.is_monitoring = True
            self._stop_event.clear()
            self.scheduler.set_enabled(True)
            self.monitoring_task = asyncio.create_task(self.monitoring_loop())
        logger.info("[Server] Monitoring started")

    async def disable_detection(self):
        """
        Stop monitoring and release everything detection holds.

        Notification timers are cancelled before the first await, so no alert
        can fire once this has been called. The baseline is dropped: scoring
        resumes only after a fresh calibration.

        The camera is released under `tick_lock`, after any tick or
        calibration that is still reading from it has finished.
        """
        was_monitoring = self.is_monitoring
        self.is_monitoring = False
        self.scheduler.set_enabled(False)
        self.engine.clear_calibration()
        self.drowsiness.reset()
        self._stop_event.set()

        async with self.tick_lock:
            if self.monitoring_task:
                await self.monitoring_task
                self.monitoring_task = None

            if self.camera:
                self.camera.release()
                self.camera = None

        if was_monitoring:
            logger.info("[Server] Monitoring stopped")
        return was_monitoring

    async def monitoring_loop(self):
        """Run one analysis tick every `interval` seconds until disabled."""
        while self.is_monitoring:
            try:
                await self.analyze_once()
            except Exception as e:
                logger.error("[Server] Analysis tick failed: %s", e)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def _capture_and_estimate(self):
        """Blocking: grab a frame and run both keypoint models on it."""
        if self.camera is None or self.source is None:
            raise DetectionUnavailable('Camera or keypoint source not ready')
        ret, frame = self.camera.read()
        if not ret:
            raise DetectionUnavailable('Failed to capture frame')
        timestamp_ms = int(time.time() * 1000)
        pose = self.source.estimate_pose(frame, timestamp_ms)
        face = self.source.estimate_face(frame, timestamp_ms)
        return pose, face

    async def analyze_once(self):
        """
        One analysis tick: capture, score, smooth, evaluate notifications.

        Returns the published score, or None if the tick was skipped.
        """
        async with self.tick_lock:
            if not self.is_monitoring or self.is_paused:
                return None

            try:
                pose, face = await asyncio.to_thread(self._capture_and_estimate)
            except DetectionUnavailable as e:
                logger.debug("[Server] Tick skipped: %s", e)
                return None
            except Exception as e:
                logger.warning("[Server] Keypoint estimation failed: %s", e)
                return None

            # Detection may have been disabled or paused while inference ran
            if not self.is_monitoring or self.is_paused:
                return None

            score = self.engine.update(pose, face)
            if score is not None:
                self.scheduler.update(score)

            if self.drowsiness_enabled:
                was_drowsy = self.drowsiness.is_drowsy
                if self.drowsiness.update(face, time.time()) and not was_drowsy:
                    self.deliver_drowsiness_alert(DROWSINESS_ALERT_MESSAGE)

            await self.send({
                'type': 'posture_result',
                'data': {
                    'slouch_score': self.engine.slouch_score,
                    'scored': score is not None,
                    'is_calibrated': self.engine.is_calibrated,
                    'recording': self.engine.is_recording,
                    'notification_state': self.scheduler.state.value,
                    'is_drowsy': self.drowsiness.is_drowsy,
                    'ear': self.drowsiness.ear,
                    'timestamp': time.time()
                }
            })
            return score

    # ---- message handlers ----

    async def handle_start_monitoring(self, data, websocket):
        await self.start_monitoring()
        await self.send({
            'type': 'monitoring_started',
            'success': True
        })

    async def handle_stop_monitoring(self, data, websocket):
        await self.disable_detection()
        await self.send({
            'type': 'monitoring_stopped',
            'success': True
        })

    async def handle_calibrate(self, data, websocket):
        """Save good posture baseline from current camera frame."""
        if not self.is_monitoring or not self.camera or not self.camera.isOpened():
            raise CalibrationFailed('Camera not active')

        async with self.tick_lock:
            try:
                pose, face = await asyncio.to_thread(self._capture_and_estimate)
            except DetectionUnavailable as e:
                raise CalibrationFailed(str(e)) from e
            # Detection may have been disabled while inference ran
            if not self.is_monitoring:
                raise CalibrationFailed('Detection disabled')
            self.engine.calibrate(pose, face)

        await self.reply(websocket, {
            'type': 'calibrated',
            'success': True,
            'timestamp': time.time()
        })

    async def handle_pause(self, data, websocket):
        self.is_paused = True
        self.scheduler.set_paused(True)
        self.drowsiness.reset()
        await self.send({'type': 'paused'})

    async def handle_resume(self, data, websocket):
        self.is_paused = False
        self.scheduler.set_paused(False)
        await self.send({'type': 'resumed'})

    async def handle_set_settings(self, data, websocket):
        """Merge a partial settings dict, apply it, and persist it."""
        updates = data.get('settings') or {}
        if not isinstance(updates, dict):
            raise ValueError("'settings' must be an object")
        merged = merge_settings(updates, base=self.settings)

        # Validate everything before touching live state
        notification_settings = NotificationSettings.from_dict(merged['threshold'])
        drowsiness_settings = DrowsinessSettings.from_dict(merged['drowsiness'])

        self.settings = merged
        self.scheduler.configure(notification_settings)
        self.drowsiness.configure(drowsiness_settings)
        self.drowsiness_enabled = bool(merged['drowsiness'].get('enabled', False))
        if self.settings_path:
            save_settings(self.settings, self.settings_path)

        await self.reply(websocket, {
            'type': 'settings_updated',
            'success': True,
            'settings': self.settings
        })

    async def handle_get_status(self, data, websocket):
        await self.reply(websocket, {
            'type': 'status',
            'data': {
                'is_monitoring': self.is_monitoring,
                'is_paused': self.is_paused,
                'is_calibrated': self.engine.is_calibrated,
                'recording': self.engine.is_recording,
                'slouch_score': self.engine.slouch_score,
                'notification_state': self.scheduler.state.value,
                'alert_count': self.scheduler.alert_count,
                'last_alert_time': self.scheduler.last_alert_time
            }
        })

    async def handle_get_history(self, data, websocket):
        history = self.engine.history
        payload = {
            'samples': history.to_list(),
            'statistics': history.get_statistics()
        }
        if data.get('format') == 'csv':
            payload['csv'] = history.to_csv()
        await self.reply(websocket, {
            'type': 'history',
            'data': payload
        })

    async def handle_set_recording(self, data, websocket):
        """Turn score history recording on or off."""
        enabled = data.get('enabled')
        if not isinstance(enabled, bool):
            raise ValueError("'enabled' must be true or false")
        self.engine.is_recording = enabled
        logger.info("[Server] Recording %s", 'enabled' if enabled else 'disabled')
        await self.send({
            'type': 'recording_updated',
            'recording': enabled
        })

    async def handle_clear_history(self, data, websocket):
        self.engine.history.clear()
        await self.reply(websocket, {
            'type': 'history_cleared',
            'success': True
        })

    async def handle_before_quit_cleanup(self, data, websocket):
        """Release detection resources, then acknowledge so the supervisor can exit."""
        try:
            await self.disable_detection()
        except Exception as e:
            logger.error("[Server] Error during cleanup: %s", e)
        await self.reply(websocket, {'type': CLEANUP_COMPLETE})

    async def close(self):
        await self.disable_detection()
        if self.source is not None:
            self.source.close()

    async def start(self):
        async with websockets.serve(self.handler, self.host, self.port):
            await asyncio.Future()
