"""
Presence classification from pose keypoints.
"""

import logging
from typing import Iterable, Optional

import numpy as np

from config import Config
from exceptions import DetectorError
from models import Detection, PresenceSignal
from pose_estimator import PoseEstimator

logger = logging.getLogger(__name__)


class PresenceClassifier:
    """Turns raw keypoints into a presence signal.

    A keypoint counts only when its score is strictly above the threshold;
    presence requires at least ``min_keypoints`` of them.
    """

    def __init__(self, config: Config):
        self.threshold = config.detection.keypoint_threshold
        self.min_keypoints = config.detection.min_keypoints

    def classify(self, detections: Optional[Iterable[Detection]]) -> PresenceSignal:
        if not detections:
            return PresenceSignal(present=False)

        keypoints = [d for d in detections if d.score > self.threshold]
        max_score = max((d.score for d in keypoints), default=0.0)
        return PresenceSignal(
            present=len(keypoints) >= self.min_keypoints,
            keypoints=keypoints,
            max_score=max_score,
        )

    def classify_frame(self, estimator: PoseEstimator,
                       frame: Optional[np.ndarray]) -> PresenceSignal:
        """Run the estimator on a frame and classify the result."""
        try:
            detections = estimator.estimate(frame)
        except DetectorError:
            raise
        except Exception as e:
            raise DetectorError(f"Error detecting poses: {e}") from e
        return self.classify(detections)
