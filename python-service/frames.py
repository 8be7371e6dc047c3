"""Synthetic keypoint frames shared by the tests."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from keypoints import FaceFrame, Keypoint, PoseFrame


def make_pose(ear_y=80.0, eye_y=100.0, shoulder_y=200.0, confidence=0.9,
              shoulder_confidence=None, ear_confidence=None):
    """Upright-ish frontal pose: ears above eyes above shoulders (image y grows downward)."""
    shoulder_confidence = confidence if shoulder_confidence is None else shoulder_confidence
    ear_confidence = confidence if ear_confidence is None else ear_confidence
    return PoseFrame.from_keypoints([
        Keypoint('nose', 160.0, eye_y + 15, confidence),
        Keypoint('left_eye', 170.0, eye_y, confidence),
        Keypoint('right_eye', 150.0, eye_y, confidence),
        Keypoint('left_ear', 190.0, ear_y, ear_confidence),
        Keypoint('right_ear', 130.0, ear_y, ear_confidence),
        Keypoint('left_shoulder', 240.0, shoulder_y, shoulder_confidence),
        Keypoint('right_shoulder', 80.0, shoulder_y, shoulder_confidence),
    ])


def make_face(interocular=20.0, y=100.0):
    return FaceFrame.from_keypoints([
        Keypoint('leftEye', 160.0 + interocular / 2, y),
        Keypoint('rightEye', 160.0 - interocular / 2, y),
    ])
