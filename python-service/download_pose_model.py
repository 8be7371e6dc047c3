"""
Download the MediaPipe models used by the keypoint source.
Fetches pose_landmarker_lite.task and face_landmarker.task from Google's servers.
"""

import urllib.request
import os

MODELS = {
    'pose_landmarker.task': "https://storage.googleapis.com/mediapipe-models/pose_landmarker/pose_landmarker_lite/float16/1/pose_landmarker_lite.task",
    'face_landmarker.task': "https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker/float16/1/face_landmarker.task",
}


def download_model(filename, model_url):
    """Download a single model into src/ next to the service modules."""
    script_dir = os.path.dirname(os.path.abspath(__file__))
    model_path = os.path.join(script_dir, 'src', filename)

    if os.path.exists(model_path):
        print(f"{filename} already present, skipping")
        return True

    print(f"Downloading {filename}...")
    print(f"URL: {model_url}")
    print(f"Destination: {model_path}")

    try:
        urllib.request.urlretrieve(model_url, model_path)

        file_size = os.path.getsize(model_path) / (1024 * 1024)  # Size in MB
        print(f"Download successful ({file_size:.2f} MB)")
        return True
    except Exception as e:
        print(f"Download failed: {e}")
        print("\nYou can manually download the models from:")
        print("https://developers.google.com/mediapipe/solutions/vision/pose_landmarker")
        print("https://developers.google.com/mediapipe/solutions/vision/face_landmarker")
        print(f"Save it as: {model_path}")
        return False


def download_models():
    results = [download_model(filename, url) for filename, url in MODELS.items()]
    return all(results)


if __name__ == "__main__":
    raise SystemExit(0 if download_models() else 1)
