class PostureServiceError(Exception):
    """Base class for errors raised by the posture service."""


class DetectionUnavailable(PostureServiceError):
    """Keypoints missing or below confidence for this tick. Never surfaced to the user."""


class CalibrationFailed(PostureServiceError):
    """The current frame cannot be used as a good-posture baseline."""


class ResourceAcquisitionFailed(PostureServiceError):
    """Camera (or another exclusive resource) could not be opened."""
