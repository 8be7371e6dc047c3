import os

import cv2
import mediapipe as mp
import numpy as np

from keypoints import FaceFrame, Keypoint, PoseFrame

# MediaPipe pose landmark index -> MoveNet-style keypoint name
POSE_LANDMARK_NAMES = {
    0: 'nose',
    2: 'left_eye',
    5: 'right_eye',
    7: 'left_ear',
    8: 'right_ear',
    11: 'left_shoulder',
    12: 'right_shoulder',
}

# Iris centres (478-landmark face model)
LEFT_IRIS_CENTER = 473
RIGHT_IRIS_CENTER = 468
# Eye corners, used when the model has no iris landmarks
LEFT_EYE_CORNERS = (362, 263)
RIGHT_EYE_CORNERS = (33, 133)


class MediaPipeKeypointSource:
    """
    Produces PoseFrame / FaceFrame objects from BGR camera frames.

    Wraps the MediaPipe pose and face landmarkers in VIDEO mode. Coordinates
    are converted to pixels so the scorer's pixel thresholds apply.
    """
    def __init__(self, model_dir=None):
        self.BaseOptions = mp.tasks.BaseOptions
        self.VisionRunningMode = mp.tasks.vision.RunningMode
        self.FaceLandmarker = mp.tasks.vision.FaceLandmarker
        self.FaceLandmarkerOptions = mp.tasks.vision.FaceLandmarkerOptions
        self.PoseLandmarker = mp.tasks.vision.PoseLandmarker
        self.PoseLandmarkerOptions = mp.tasks.vision.PoseLandmarkerOptions

        # Model files live next to this script unless told otherwise
        model_dir = model_dir or os.path.dirname(os.path.abspath(__file__))
        face_model_path = os.path.join(model_dir, 'face_landmarker.task')
        pose_model_path = os.path.join(model_dir, 'pose_landmarker.task')

        face_options = self.FaceLandmarkerOptions(
            base_options=self.BaseOptions(model_asset_path=face_model_path),
            running_mode=self.VisionRunningMode.VIDEO,
            num_faces=1,
            min_face_detection_confidence=0.5,
            min_tracking_confidence=0.5
        )
        self.face_landmarker = self.FaceLandmarker.create_from_options(face_options)

        pose_options = self.PoseLandmarkerOptions(
            base_options=self.BaseOptions(model_asset_path=pose_model_path),
            running_mode=self.VisionRunningMode.VIDEO,
            num_poses=1,
            min_pose_detection_confidence=0.5,
            min_tracking_confidence=0.5
        )
        self.pose_landmarker = self.PoseLandmarker.create_from_options(pose_options)

        self._last_timestamp = {'pose': -1, 'face': -1}

    def _monotonic_timestamp(self, kind, timestamp_ms):
        # VIDEO mode rejects timestamps that do not strictly increase
        timestamp_ms = max(int(timestamp_ms), self._last_timestamp[kind] + 1)
        self._last_timestamp[kind] = timestamp_ms
        return timestamp_ms

    @staticmethod
    def _to_mp_image(frame):
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)

    def estimate_pose(self, frame, timestamp_ms):
        """Detect body keypoints. Returns a PoseFrame, or None if nobody is visible."""
        height, width = frame.shape[:2]
        result = self.pose_landmarker.detect_for_video(
            self._to_mp_image(frame), self._monotonic_timestamp('pose', timestamp_ms))

        if not result.pose_landmarks:
            return None

        landmarks = result.pose_landmarks[0]
        keypoints = []
        for idx, name in POSE_LANDMARK_NAMES.items():
            lm = landmarks[idx]
            # visibility can be None on some builds; treat as unseen
            confidence = lm.visibility if lm.visibility is not None else 0.0
            keypoints.append(Keypoint(name, lm.x * width, lm.y * height, float(confidence)))
        return PoseFrame.from_keypoints(keypoints)

    def estimate_face(self, frame, timestamp_ms):
        """Detect face landmarks. Returns a FaceFrame with eye centres and the full mesh."""
        height, width = frame.shape[:2]
        result = self.face_landmarker.detect_for_video(
            self._to_mp_image(frame), self._monotonic_timestamp('face', timestamp_ms))

        if not result.face_landmarks:
            return None

        landmarks = result.face_landmarks[0]
        mesh = np.array([[lm.x * width, lm.y * height] for lm in landmarks], dtype=np.float64)

        if len(mesh) > LEFT_IRIS_CENTER:
            left_eye = mesh[LEFT_IRIS_CENTER]
            right_eye = mesh[RIGHT_IRIS_CENTER]
        else:
            left_eye = mesh[list(LEFT_EYE_CORNERS)].mean(axis=0)
            right_eye = mesh[list(RIGHT_EYE_CORNERS)].mean(axis=0)

        keypoints = [
            Keypoint('leftEye', float(left_eye[0]), float(left_eye[1])),
            Keypoint('rightEye', float(right_eye[0]), float(right_eye[1])),
        ]
        return FaceFrame.from_keypoints(keypoints, mesh=mesh)

    def close(self):
        """Release model resources."""
        self.face_landmarker.close()
        self.pose_landmarker.close()
