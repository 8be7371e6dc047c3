"""
Worker message handling, driven through fake camera, keypoint source and
websocket objects.
"""

import asyncio
import json
import os
import sys
import threading

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from frames import make_face, make_pose
from notification_scheduler import NotificationState
from websocket_server import WebSocketServer


class FakeCamera:
    def __init__(self, opened=True):
        self.opened = opened
        self.released = False

    def isOpened(self):
        return self.opened and not self.released

    def read(self):
        return True, 'frame'

    def release(self):
        self.released = True


class FakeSource:
    def __init__(self):
        self.pose = make_pose()
        self.face = make_face()
        self.closed = False

    def estimate_pose(self, frame, timestamp_ms):
        return self.pose

    def estimate_face(self, frame, timestamp_ms):
        return self.face

    def close(self):
        self.closed = True


class FakeWebSocket:
    def __init__(self):
        self.messages = []

    async def send(self, message):
        self.messages.append(json.loads(message))

    def of_type(self, msg_type):
        return [m for m in self.messages if m['type'] == msg_type]


def make_server(timers, settings=None, camera=None, **kwargs):
    cameras = []

    def camera_factory(camera_id):
        cam = camera or FakeCamera()
        cameras.append(cam)
        return cam

    server = WebSocketServer(settings=settings or {}, timers=timers,
                             camera_factory=camera_factory, interval=3600, **kwargs)
    server.source = FakeSource()
    return server, cameras


def run(coro):
    return asyncio.run(coro)


def test_unknown_and_malformed_messages(timers):
    async def scenario():
        server, _ = make_server(timers)
        ws = FakeWebSocket()
        await server.process_message(ws, json.dumps({'type': 'dance'}))
        await server.process_message(ws, 'not json')
        return ws.messages

    messages = run(scenario())
    assert messages[0] == {'type': 'error', 'message': 'Unknown message type'}
    assert messages[1]['type'] == 'error'


def test_camera_failure_is_reported(timers):
    camera = FakeCamera(opened=False)

    async def scenario():
        server, _ = make_server(timers, camera=camera)
        ws = FakeWebSocket()
        await server.register(ws)
        await server.process_message(ws, json.dumps({'type': 'start_monitoring'}))
        return server, ws

    server, ws = run(scenario())
    assert ws.messages == [{'type': 'error', 'message': 'Failed to open camera'}]
    assert not server.is_monitoring
    assert camera.released


def test_calibrate_without_camera_fails(timers):
    async def scenario():
        server, _ = make_server(timers)
        ws = FakeWebSocket()
        await server.process_message(ws, json.dumps({'type': 'calibrate'}))
        return server, ws

    server, ws = run(scenario())
    assert ws.messages == [{'type': 'error', 'message': 'Camera not active'}]
    assert not server.engine.is_calibrated


def test_before_quit_cleanup_releases_camera_and_acknowledges(timers):
    async def scenario():
        server, cameras = make_server(timers)
        ws = FakeWebSocket()
        await server.register(ws)
        await server.process_message(ws, json.dumps({'type': 'start_monitoring'}))
        await server.process_message(ws, json.dumps({'type': 'calibrate'}))
        assert server.engine.is_calibrated
        await server.process_message(ws, json.dumps({'type': 'before_quit_cleanup'}))
        return server, cameras[0], ws

    server, camera, ws = run(scenario())
    assert ws.messages[-1] == {'type': 'cleanup_complete'}
    assert ws.of_type('monitoring_started')
    assert ws.of_type('calibrated')
    assert camera.released
    assert server.camera is None
    assert server.monitoring_task is None
    assert not server.is_monitoring
    assert not server.engine.is_calibrated
    assert server.scheduler.state is NotificationState.IDLE
    assert not server.scheduler.enabled


def test_cleanup_when_idle_still_acknowledges(timers):
    async def scenario():
        server, _ = make_server(timers)
        ws = FakeWebSocket()
        await server.process_message(ws, json.dumps({'type': 'before_quit_cleanup'}))
        return ws

    assert run(scenario()).messages == [{'type': 'cleanup_complete'}]


def test_tick_scores_and_alerts(timers):
    settings = {'threshold': {'slouch': 50, 'duration': 5, 'reNotificationMode': 'cooldown'}}

    async def scenario():
        server, _ = make_server(timers, settings=settings)
        ws = FakeWebSocket()
        await server.register(ws)
        server.camera = FakeCamera()
        server.is_monitoring = True

        await server.handle_calibrate({'type': 'calibrate'}, ws)
        server.source.pose = make_pose(ear_y=150, eye_y=155)
        score = await server.analyze_once()

        timers.advance(5)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        return server, ws, score

    server, ws, score = run(scenario())
    assert score == pytest.approx(100.0)

    result = ws.of_type('posture_result')[-1]['data']
    assert result['slouch_score'] == pytest.approx(100.0)
    assert result['scored'] is True
    assert result['is_calibrated'] is True
    assert result['notification_state'] == 'pending'

    alerts = ws.of_type('alert')
    assert len(alerts) == 1
    assert alerts[0]['kind'] == 'posture'
    assert server.scheduler.state is NotificationState.COOLDOWN


def test_uncalibrated_tick_publishes_unscored_result(timers):
    async def scenario():
        server, _ = make_server(timers)
        ws = FakeWebSocket()
        await server.register(ws)
        server.camera = FakeCamera()
        server.is_monitoring = True
        score = await server.analyze_once()
        return ws, score

    ws, score = run(scenario())
    assert score is None
    data = ws.of_type('posture_result')[0]['data']
    assert data['scored'] is False
    assert data['is_calibrated'] is False


def test_paused_ticks_are_skipped(timers):
    async def scenario():
        server, _ = make_server(timers)
        ws = FakeWebSocket()
        await server.register(ws)
        server.camera = FakeCamera()
        server.is_monitoring = True
        await server.process_message(ws, json.dumps({'type': 'pause'}))
        skipped = await server.analyze_once()
        await server.process_message(ws, json.dumps({'type': 'resume'}))
        return ws, skipped

    ws, skipped = run(scenario())
    assert skipped is None
    assert [m['type'] for m in ws.messages] == ['paused', 'resumed']


def test_set_settings_applies_and_persists(timers, tmp_path):
    path = str(tmp_path / 'settings.json')

    async def scenario():
        server, _ = make_server(timers, settings_path=path)
        ws = FakeWebSocket()
        await server.process_message(ws, json.dumps({
            'type': 'set_settings',
            'settings': {'threshold': {'slouch': 45, 'reNotificationMode': 'continuous'}},
        }))
        return server, ws

    server, ws = run(scenario())
    reply = ws.messages[0]
    assert reply['type'] == 'settings_updated'
    assert reply['settings']['threshold']['slouch'] == 45
    assert server.scheduler.settings.threshold == 45
    assert server.scheduler.settings.mode == 'continuous'
    # Untouched keys keep their defaults
    assert server.scheduler.settings.trigger_delay == 10

    with open(path, encoding='utf-8') as f:
        assert json.load(f)['threshold']['reNotificationMode'] == 'continuous'


def test_invalid_settings_leave_live_state_untouched(timers):
    async def scenario():
        server, _ = make_server(timers)
        ws = FakeWebSocket()
        await server.process_message(ws, json.dumps({
            'type': 'set_settings',
            'settings': {'threshold': {'reNotificationMode': 'hourly'}},
        }))
        return server, ws

    server, ws = run(scenario())
    assert ws.messages[0]['type'] == 'error'
    assert server.settings['threshold']['reNotificationMode'] == 'cooldown'
    assert server.scheduler.settings.mode == 'cooldown'


def test_history_and_status(timers):
    async def scenario():
        server, _ = make_server(timers)
        ws = FakeWebSocket()
        server.engine.history.append(0.0, 20)
        server.engine.history.append(1.5, 40)
        await server.process_message(ws, json.dumps({'type': 'get_history', 'format': 'csv'}))
        await server.process_message(ws, json.dumps({'type': 'clear_history'}))
        await server.process_message(ws, json.dumps({'type': 'get_status'}))
        return server, ws

    server, ws = run(scenario())
    history = ws.messages[0]['data']
    assert history['statistics']['average_score'] == pytest.approx(30.0)
    assert history['csv'].startswith('time,score\n')
    assert ws.messages[1] == {'type': 'history_cleared', 'success': True}
    assert len(server.engine.history) == 0

    status = ws.messages[2]['data']
    assert status['is_monitoring'] is False
    assert status['notification_state'] == 'idle'


def test_close_releases_source(timers):
    async def scenario():
        server, _ = make_server(timers)
        await server.close()
        return server

    assert run(scenario()).source.closed


class GatedSource(FakeSource):
    """Blocks inference until `gate` is set, like a slow model."""
    def __init__(self, camera):
        super().__init__()
        self.camera = camera
        self.entered = threading.Event()
        self.gate = threading.Event()
        self.camera_released_after_read = []

    def estimate_pose(self, frame, timestamp_ms):
        self.entered.set()
        self.gate.wait(5)
        self.camera_released_after_read.append(self.camera.released)
        return self.pose


async def wait_for_thread(event):
    while not event.is_set():
        await asyncio.sleep(0.01)


def test_stop_during_calibration_discards_baseline(timers):
    async def scenario():
        server, _ = make_server(timers)
        camera = FakeCamera()
        source = GatedSource(camera)
        server.source, server.camera, server.is_monitoring = source, camera, True
        calibrating_client, stopping_client = FakeWebSocket(), FakeWebSocket()
        await server.register(stopping_client)

        calibrating = asyncio.ensure_future(
            server.process_message(calibrating_client, json.dumps({'type': 'calibrate'})))
        await wait_for_thread(source.entered)
        stopping = asyncio.ensure_future(
            server.process_message(stopping_client, json.dumps({'type': 'stop_monitoring'})))
        await asyncio.sleep(0.05)
        released_while_reading = camera.released

        source.gate.set()
        await asyncio.wait_for(asyncio.gather(calibrating, stopping), 5)
        return server, camera, source, calibrating_client, stopping_client, released_while_reading

    server, camera, source, calibrating_client, stopping_client, released_while_reading = run(scenario())
    assert not released_while_reading
    assert source.camera_released_after_read == [False]
    assert camera.released
    assert not server.is_monitoring
    assert not server.engine.is_calibrated
    assert calibrating_client.messages == [{'type': 'error', 'message': 'Detection disabled'}]
    assert stopping_client.of_type('monitoring_stopped')


def test_start_queued_behind_stop_keeps_its_camera(timers):
    async def scenario():
        server, cameras = make_server(timers)
        first_camera = FakeCamera()
        source = GatedSource(first_camera)
        server.source, server.camera, server.is_monitoring = source, first_camera, True
        ws = FakeWebSocket()
        await server.register(ws)

        calibrating = asyncio.ensure_future(
            server.process_message(FakeWebSocket(), json.dumps({'type': 'calibrate'})))
        await wait_for_thread(source.entered)
        stopping = asyncio.ensure_future(
            server.process_message(ws, json.dumps({'type': 'stop_monitoring'})))
        await asyncio.sleep(0)
        starting = asyncio.ensure_future(
            server.process_message(ws, json.dumps({'type': 'start_monitoring'})))
        await asyncio.sleep(0.05)

        source.gate.set()
        await asyncio.wait_for(asyncio.gather(calibrating, stopping, starting), 5)
        state = (server.is_monitoring, server.camera, server.monitoring_task is not None)

        await server.disable_detection()
        return first_camera, cameras, ws, state

    first_camera, cameras, ws, (monitoring, camera, has_task) = run(scenario())
    assert first_camera.released
    assert monitoring
    assert camera is cameras[0]
    assert has_task
    assert [m['type'] for m in ws.messages if m['type'] != 'posture_result'] == [
        'monitoring_stopped', 'monitoring_started']


def test_recording_toggle(timers):
    async def scenario():
        server, _ = make_server(timers)
        ws = FakeWebSocket()
        await server.register(ws)
        server.camera = FakeCamera()
        server.is_monitoring = True
        await server.handle_calibrate({'type': 'calibrate'}, ws)

        await server.analyze_once()
        recorded_before = len(server.engine.history)

        await server.process_message(ws, json.dumps({'type': 'set_recording', 'enabled': True}))
        await server.analyze_once()
        await server.process_message(ws, json.dumps({'type': 'get_status'}))
        await server.process_message(ws, json.dumps({'type': 'set_recording', 'enabled': 'yes'}))
        return server, ws, recorded_before

    server, ws, recorded_before = run(scenario())
    assert recorded_before == 0
    assert len(server.engine.history) == 1
    assert ws.of_type('recording_updated') == [{'type': 'recording_updated', 'recording': True}]
    assert ws.of_type('posture_result')[-1]['data']['recording'] is True
    assert ws.of_type('status')[0]['data']['recording'] is True
    assert ws.of_type('error')[0]['message'] == "'enabled' must be true or false"
    assert server.engine.is_recording
