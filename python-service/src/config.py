# Slouch Score Service Configuration

import copy
import json
import os
from dataclasses import dataclass

# Analysis loop
ANALYSIS_INTERVAL_SECONDS = 1.5  # One scoring pass every 1.5s

# Smoothing Filter Settings
SMOOTHING_WINDOW_SIZE = 3  # Number of raw scores to average (3 = ~4.5s at 1.5s cadence)

# Confidence Filtering
MIN_KEYPOINT_CONFIDENCE = 0.4  # Body keypoints at or below this are ignored

# Scoring constants
SHOULDER_FALLBACK_RATIO = 2.2  # shoulderY = eyeY + (eyeY - earY) * ratio when shoulders are out of frame
MIN_BODY_HEIGHT_PX = 40        # Eye-to-shoulder extent below this is treated as noise
SCORE_SENSITIVITY = 0.35       # Deviation that maps to a score of 100

# Score history
HISTORY_CAPACITY = 2400  # ~1 hour of samples at 1.5s

# Shutdown handshake
CLEANUP_TIMEOUT_SECONDS = 5.0

# Camera
CAMERA_INDEX = 0
CAMERA_WIDTH = 480
CAMERA_HEIGHT = 360

# WebSocket
WEBSOCKET_HOST = 'localhost'
WEBSOCKET_PORT = 8765

# Alert messages
POSTURE_ALERT_MESSAGE = "You are slouching. Please straighten your back."
DROWSINESS_ALERT_MESSAGE = "You look drowsy. Time for a short break."

NOTIFICATION_MODES = ('cooldown', 'continuous')

# Default user settings (persisted in settings.json)
DEFAULT_SETTINGS = {
    'threshold': {
        'slouch': 60,
        'duration': 10,
        'reNotificationMode': 'cooldown',
        'cooldownTime': 5,
        'continuousInterval': 10,
    },
    'drowsiness': {
        'enabled': False,
        'earThreshold': 0.2,
        'timeThreshold': 2,
    },
    'camera': {
        'id': CAMERA_INDEX,
    },
}

SETTINGS_FILENAME = 'settings.json'


@dataclass
class NotificationSettings:
    """Threshold and pacing configuration for the notification scheduler."""
    threshold: float = 60.0
    trigger_delay: float = 10.0
    mode: str = 'cooldown'
    cooldown_time: float = 5.0
    continuous_interval: float = 10.0

    def __post_init__(self):
        if self.mode not in NOTIFICATION_MODES:
            raise ValueError(f"Unknown notification mode: {self.mode!r}")
        if not 0 <= self.threshold <= 100:
            raise ValueError(f"threshold must be within 0-100, got {self.threshold}")
        for name in ('trigger_delay', 'cooldown_time', 'continuous_interval'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.continuous_interval == 0:
            raise ValueError("continuous_interval must be positive")

    @classmethod
    def from_dict(cls, data):
        """Build from the 'threshold' section of the settings file."""
        return cls(
            threshold=float(data.get('slouch', cls.threshold)),
            trigger_delay=float(data.get('duration', cls.trigger_delay)),
            mode=data.get('reNotificationMode', cls.mode),
            cooldown_time=float(data.get('cooldownTime', cls.cooldown_time)),
            continuous_interval=float(data.get('continuousInterval', cls.continuous_interval)),
        )


@dataclass
class DrowsinessSettings:
    ear_threshold: float = 0.2
    time_threshold: float = 2.0

    @classmethod
    def from_dict(cls, data):
        return cls(
            ear_threshold=float(data.get('earThreshold', cls.ear_threshold)),
            time_threshold=float(data.get('timeThreshold', cls.time_threshold)),
        )


def default_settings_path():
    """settings.json lives next to the service unless SLOUCH_SETTINGS_PATH overrides it."""
    override = os.environ.get('SLOUCH_SETTINGS_PATH')
    if override:
        return override
    script_dir = os.path.dirname(os.path.abspath(__file__))
    return os.path.join(script_dir, SETTINGS_FILENAME)


def merge_settings(overrides, base=None):
    """Merge a (possibly partial) settings dict over `base` (the defaults), section by section."""
    merged = copy.deepcopy(DEFAULT_SETTINGS if base is None else base)
    for section, values in (overrides or {}).items():
        if isinstance(values, dict) and isinstance(merged.get(section), dict):
            merged[section].update(values)
        else:
            merged[section] = values
    return merged


def load_settings(path=None):
    """
    Load settings from disk, falling back to defaults.

    A missing or unreadable file yields the defaults; new keys added to
    DEFAULT_SETTINGS are filled in for older files.
    """
    path = path or default_settings_path()
    if not os.path.exists(path):
        return merge_settings(None)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return merge_settings(json.load(f))
    except (OSError, ValueError) as e:
        print(f"Failed to read settings, using defaults: {e}", flush=True)
        return merge_settings(None)


def save_settings(settings, path=None):
    path = path or default_settings_path()
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(settings, f, indent=2)
