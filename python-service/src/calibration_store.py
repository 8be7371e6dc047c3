import logging

from config import MIN_KEYPOINT_CONFIDENCE
from errors import CalibrationFailed
from keypoints import CalibrationBaseline, interocular_distance

logger = logging.getLogger(__name__)

REQUIRED_BASELINE_KEYPOINTS = ('left_ear', 'right_ear', 'left_shoulder', 'right_shoulder')


class CalibrationStore:
    """
    Holds the most recent good-posture baseline.

    Written once per calibration action, read by the scorer on every tick.
    Re-calibration replaces the previous baseline outright.
    """
    def __init__(self, min_confidence=MIN_KEYPOINT_CONFIDENCE):
        self.min_confidence = min_confidence
        self._baseline = None

    @property
    def is_calibrated(self):
        return self._baseline is not None

    def calibrate(self, pose, face):
        """
        Store the current frame pair as the new baseline.

        Raises:
            CalibrationFailed: ears/shoulders unusable or eye landmarks missing.
                The previous baseline is left untouched.
        """
        if pose is None:
            raise CalibrationFailed("No body detected")

        missing = [name for name in REQUIRED_BASELINE_KEYPOINTS
                   if pose.usable(name, self.min_confidence) is None]
        if missing:
            raise CalibrationFailed(f"Keypoints not detected: {', '.join(missing)}")

        distance = interocular_distance(face)
        if distance is None:
            raise CalibrationFailed("Eye landmarks not detected")
        if distance <= 0:
            raise CalibrationFailed("Eye landmarks overlap")

        self._baseline = CalibrationBaseline(pose=pose, face_interocular_distance=distance)
        logger.info("[Calibration] Baseline stored (interocular distance %.1fpx)", distance)
        return self._baseline

    def get(self):
        return self._baseline

    def clear(self):
        if self._baseline is not None:
            logger.info("[Calibration] Baseline cleared")
        self._baseline = None
