from collections import deque
import numpy as np

from config import SMOOTHING_WINDOW_SIZE


class SmoothingFilter:
    """
    Applies moving average smoothing to raw slouch scores.
    Damps single-frame detection noise without adding perceptible lag.
    """
    def __init__(self, window_size=SMOOTHING_WINDOW_SIZE):
        """
        Args:
            window_size: Number of raw scores to average (default: 3)
        """
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        self.window_size = window_size
        self.score_buffer = deque(maxlen=window_size)

    def add_score(self, score):
        """Push a raw score; the oldest one is evicted once the window is full."""
        self.score_buffer.append(float(score))
        return self.get_smoothed_score()

    def get_smoothed_score(self):
        """
        Arithmetic mean of the buffered scores.
        Returns None when nothing has been buffered yet.
        """
        if len(self.score_buffer) == 0:
            return None
        return float(np.mean(list(self.score_buffer)))

    def is_ready(self):
        """True once the window is saturated."""
        return len(self.score_buffer) >= self.window_size

    def reset(self):
        """Clear the buffer."""
        self.score_buffer.clear()

    def __len__(self):
        return len(self.score_buffer)
