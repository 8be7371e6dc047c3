import csv
import io
from collections import deque
from datetime import datetime, timezone

import numpy as np

from config import HISTORY_CAPACITY
from keypoints import ScoreSample


class ScoreHistory:
    """
    Bounded, append-only log of published scores for the posture report.
    Oldest samples are dropped once capacity is reached.
    """
    def __init__(self, capacity=HISTORY_CAPACITY):
        self.capacity = capacity
        self.samples = deque(maxlen=capacity)

    def append(self, timestamp, score):
        sample = ScoreSample(timestamp=float(timestamp), score=float(score))
        self.samples.append(sample)
        return sample

    def get_statistics(self):
        """
        Summary of the recorded session.

        Returns:
            dict: {
                'average_score': float,
                'max_score': float,
                'total_time': float (seconds between first and last sample),
                'sample_count': int
            }
        """
        if len(self.samples) == 0:
            return {
                'average_score': 0.0,
                'max_score': 0.0,
                'total_time': 0.0,
                'sample_count': 0
            }

        scores = np.array([s.score for s in self.samples], dtype=np.float64)
        total_time = 0.0
        if len(self.samples) > 1:
            total_time = self.samples[-1].timestamp - self.samples[0].timestamp

        return {
            'average_score': float(scores.mean()),
            'max_score': float(scores.max()),
            'total_time': float(total_time),
            'sample_count': len(self.samples)
        }

    def to_list(self):
        return [{'timestamp': s.timestamp, 'score': s.score} for s in self.samples]

    def to_csv(self):
        """Export as 'time,score' CSV with ISO-8601 UTC timestamps."""
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator='\n')
        writer.writerow(['time', 'score'])
        for s in self.samples:
            iso_time = datetime.fromtimestamp(s.timestamp, tz=timezone.utc).isoformat()
            writer.writerow([iso_time, f"{s.score:.2f}"])
        return buffer.getvalue()

    def clear(self):
        self.samples.clear()

    def __len__(self):
        return len(self.samples)
