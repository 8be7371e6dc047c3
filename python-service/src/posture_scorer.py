import logging
import time

from calibration_store import CalibrationStore
from config import (MIN_BODY_HEIGHT_PX, MIN_KEYPOINT_CONFIDENCE, SCORE_SENSITIVITY,
                    SHOULDER_FALLBACK_RATIO, SMOOTHING_WINDOW_SIZE)
from keypoints import interocular_distance
from score_history import ScoreHistory
from smoothing_filter import SmoothingFilter

logger = logging.getLogger(__name__)


def _mean_y(a, b):
    return (a.y + b.y) / 2


def compute_slouch_score(pose, face, baseline, sensitivity=SCORE_SENSITIVITY,
                         min_confidence=MIN_KEYPOINT_CONFIDENCE):
    """
    Raw slouch score (0-100) for one frame pair relative to the baseline.

    Compares how far the ears sit above the shoulders, as a fraction of the
    eye-to-shoulder height, against the same ratio at calibration time. The
    current ratio is divided by the change in interocular distance so that
    leaning towards the camera is not mistaken for slouching.

    Returns None when the frame cannot be scored: no baseline, ears/eyes not
    confidently detected, eye-to-shoulder extent too small, eye landmarks
    missing from the face frame, or a degenerate ratio.
    """
    if baseline is None or pose is None:
        return None

    left_ear = pose.usable('left_ear', min_confidence)
    right_ear = pose.usable('right_ear', min_confidence)
    left_eye = pose.usable('left_eye', min_confidence)
    right_eye = pose.usable('right_eye', min_confidence)
    if not all((left_ear, right_ear, left_eye, right_eye)):
        return None

    ear_y = _mean_y(left_ear, right_ear)
    eye_y = _mean_y(left_eye, right_eye)

    left_shoulder = pose.usable('left_shoulder', min_confidence)
    right_shoulder = pose.usable('right_shoulder', min_confidence)
    if left_shoulder and right_shoulder:
        shoulder_y = _mean_y(left_shoulder, right_shoulder)
    else:
        # Shoulders out of frame: estimate from the ear-eye offset
        shoulder_y = eye_y + (eye_y - ear_y) * SHOULDER_FALLBACK_RATIO

    body_height = abs(shoulder_y - eye_y)
    if body_height < MIN_BODY_HEIGHT_PX:
        return None

    current_face_size = interocular_distance(face)
    if not current_face_size:
        return None
    face_size_ratio = current_face_size / baseline.face_interocular_distance

    calib = baseline.pose
    calib_ear_y = _mean_y(calib.get('left_ear'), calib.get('right_ear'))
    calib_shoulder_y = _mean_y(calib.get('left_shoulder'), calib.get('right_shoulder'))
    # Current eye height, so both ratios share the same reference
    calib_body_height = abs(calib_shoulder_y - eye_y)
    if calib_body_height == 0:
        return None
    calib_posture_ratio = (calib_shoulder_y - calib_ear_y) / calib_body_height

    current_posture_ratio = (shoulder_y - ear_y) / body_height

    deviation = calib_posture_ratio - (current_posture_ratio / face_size_ratio)
    return min(1.0, max(0.0, deviation / sensitivity)) * 100


class PostureScoreEngine:
    """
    Turns frame pairs into the published, smoothed slouch score.

    Owns its CalibrationStore and SmoothingFilter exclusively. A frame that
    cannot be scored leaves the published score unchanged.
    """
    def __init__(self, sensitivity=SCORE_SENSITIVITY, window_size=SMOOTHING_WINDOW_SIZE,
                 history=None, clock=time.time):
        self.sensitivity = sensitivity
        self.calibration = CalibrationStore()
        self.smoothing_filter = SmoothingFilter(window_size=window_size)
        self.history = history if history is not None else ScoreHistory()
        self.is_recording = False  # History is only kept once the user opts in
        self.slouch_score = 0.0
        self._clock = clock

    @property
    def is_calibrated(self):
        return self.calibration.is_calibrated

    def calibrate(self, pose, face):
        """Store a new baseline and restart smoothing. Raises CalibrationFailed."""
        baseline = self.calibration.calibrate(pose, face)
        self.smoothing_filter.reset()
        return baseline

    def clear_calibration(self):
        """Forget the baseline; scoring stays off until the next calibration."""
        self.calibration.clear()
        self.reset()

    def update(self, pose, face):
        """
        Score one frame pair.

        Returns:
            float: the new published score, or None if the frame was skipped.
        """
        raw_score = compute_slouch_score(pose, face, self.calibration.get(),
                                         sensitivity=self.sensitivity)
        if raw_score is None:
            logger.debug("[Scorer] Frame skipped, holding score at %.1f", self.slouch_score)
            return None

        self.slouch_score = self.smoothing_filter.add_score(raw_score)
        if self.is_recording:
            self.history.append(self._clock(), self.slouch_score)
        return self.slouch_score

    def reset(self):
        """Reset the published score and smoothing buffer."""
        self.slouch_score = 0.0
        self.smoothing_filter.reset()
