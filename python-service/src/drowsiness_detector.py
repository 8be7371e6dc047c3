import logging

import numpy as np

from config import DrowsinessSettings

logger = logging.getLogger(__name__)

# Face mesh indices for eye-aspect-ratio: outer corner, two upper lid points,
# inner corner, two lower lid points
LEFT_EYE_INDICES = [33, 160, 158, 133, 153, 144]
RIGHT_EYE_INDICES = [362, 385, 387, 263, 373, 380]


def eye_aspect_ratio(mesh, eye_indices):
    """
    EAR = (|p2 - p6| + |p3 - p5|) / (2 * |p1 - p4|).

    Args:
        mesh: (N, 2) or (N, 3) array of face mesh landmarks
        eye_indices: six mesh indices ordered p1..p6

    Returns:
        float, or None if the eye width is zero
    """
    p1, p2, p3, p4, p5, p6 = (np.asarray(mesh[i], dtype=np.float64) for i in eye_indices)
    vertical = np.linalg.norm(p2 - p6) + np.linalg.norm(p3 - p5)
    horizontal = np.linalg.norm(p1 - p4)
    if horizontal == 0:
        return None
    return float(vertical / (2 * horizontal))


class DrowsinessDetector:
    """
    Flags drowsiness when the averaged EAR stays below `ear_threshold` for
    longer than `time_threshold` seconds. Opening the eyes resets the timer.
    """
    def __init__(self, settings=None):
        self.settings = settings or DrowsinessSettings()
        self.is_drowsy = False
        self.ear = None
        self.eye_closed_start_time = None

    def configure(self, settings):
        self.settings = settings

    def update(self, face, now):
        """
        Args:
            face: FaceFrame with a full mesh, or None
            now: current time in seconds

        Returns:
            bool: drowsiness state after this sample
        """
        if face is None or face.mesh is None:
            return self.is_drowsy

        mesh = face.mesh
        needed = max(max(LEFT_EYE_INDICES), max(RIGHT_EYE_INDICES))
        if len(mesh) <= needed:
            return self.is_drowsy

        left_ear = eye_aspect_ratio(mesh, LEFT_EYE_INDICES)
        right_ear = eye_aspect_ratio(mesh, RIGHT_EYE_INDICES)
        if left_ear is None or right_ear is None:
            return self.is_drowsy

        self.ear = (left_ear + right_ear) / 2

        if self.ear < self.settings.ear_threshold:
            if self.eye_closed_start_time is None:
                self.eye_closed_start_time = now
            elif now - self.eye_closed_start_time > self.settings.time_threshold:
                if not self.is_drowsy:
                    logger.info("[Drowsiness] Eyes closed for %.1fs", now - self.eye_closed_start_time)
                self.is_drowsy = True
        else:
            self.eye_closed_start_time = None
            self.is_drowsy = False

        return self.is_drowsy

    def reset(self):
        self.is_drowsy = False
        self.ear = None
        self.eye_closed_start_time = None
