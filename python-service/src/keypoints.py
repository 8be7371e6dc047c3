from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np

from config import MIN_KEYPOINT_CONFIDENCE


@dataclass(frozen=True)
class Keypoint:
    """A single labeled 2D point in pixel coordinates."""
    name: str
    x: float
    y: float
    confidence: float = 1.0

    def is_usable(self, min_confidence=MIN_KEYPOINT_CONFIDENCE):
        return self.confidence > min_confidence


@dataclass(frozen=True)
class PoseFrame:
    """
    Body keypoints for one analysis tick.

    Names follow the MoveNet/COCO convention (left_eye, right_ear,
    left_shoulder, ...). Not retained beyond one scoring pass.
    """
    keypoints: Dict[str, Keypoint] = field(default_factory=dict)

    def get(self, name) -> Optional[Keypoint]:
        return self.keypoints.get(name)

    def usable(self, name, min_confidence=MIN_KEYPOINT_CONFIDENCE) -> Optional[Keypoint]:
        kp = self.keypoints.get(name)
        if kp is None or not kp.is_usable(min_confidence):
            return None
        return kp

    @classmethod
    def from_keypoints(cls, keypoints):
        return cls({kp.name: kp for kp in keypoints})


@dataclass(frozen=True)
class FaceFrame:
    """
    Face landmarks for one analysis tick.

    `keypoints` holds the named landmarks of interest (leftEye, rightEye eye
    centres). `mesh` optionally carries every landmark as an (N, 2) pixel
    array for detectors that index the raw face mesh.
    """
    keypoints: Dict[str, Keypoint] = field(default_factory=dict)
    mesh: Optional[np.ndarray] = field(default=None, compare=False, repr=False)

    def get(self, name) -> Optional[Keypoint]:
        return self.keypoints.get(name)

    @classmethod
    def from_keypoints(cls, keypoints, mesh=None):
        return cls({kp.name: kp for kp in keypoints}, mesh)


@dataclass(frozen=True)
class CalibrationBaseline:
    pose: PoseFrame
    face_interocular_distance: float


@dataclass(frozen=True)
class ScoreSample:
    timestamp: float  # epoch seconds
    score: float


def euclidean_distance(p1, p2):
    """Pixel distance between two keypoints."""
    return float(np.hypot(p1.x - p2.x, p1.y - p2.y))


def interocular_distance(face) -> Optional[float]:
    """Distance between the two eye centres, or None if either eye is missing."""
    if face is None:
        return None
    left_eye = face.get('leftEye')
    right_eye = face.get('rightEye')
    if left_eye is None or right_eye is None:
        return None
    return euclidean_distance(left_eye, right_eye)
