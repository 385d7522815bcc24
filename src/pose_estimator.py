"""
Pose estimation backends.

Each backend wraps a black-box keypoint model behind the same
``estimate(frame) -> list[Detection]`` call. Models are lazy-loaded on first
use; backend packages are optional extras and are imported only when the
corresponding estimator is loaded.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import cv2
import numpy as np

from config import Config
from exceptions import ConfigurationError, DetectorError
from models import Detection

logger = logging.getLogger(__name__)

COCO_KEYPOINTS = (
    "nose", "left_eye", "right_eye", "left_ear", "right_ear",
    "left_shoulder", "right_shoulder", "left_elbow", "right_elbow",
    "left_wrist", "right_wrist", "left_hip", "right_hip",
    "left_knee", "right_knee", "left_ankle", "right_ankle",
)


class PoseEstimator(ABC):
    """Black-box keypoint estimator."""

    name = "pose"

    def __init__(self, config: Config):
        self.config = config
        self._model: Any = None
        self._model_loaded = False

    def load(self) -> None:
        """Lazy-load the model on first use."""
        if self._model_loaded:
            return

        start = time.time()
        try:
            logger.info(f"Loading {self.name} model...")
            self._model = self._load_model()
        except Exception as e:
            logger.error(f"Failed to load {self.name} model: {e}")
            raise DetectorError(f"{self.name} model initialization failed: {e}") from e

        self._model_loaded = True
        logger.info(f"{self.name} model loaded in {time.time() - start:.2f}s")

    def estimate(self, frame: Optional[np.ndarray]) -> List[Detection]:
        """Return detected keypoints for a BGR frame."""
        if frame is None:
            return []
        self.load()
        return self._infer(frame)

    def close(self) -> None:
        self._model = None
        self._model_loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._model_loaded

    @abstractmethod
    def _load_model(self) -> Any:
        pass

    @abstractmethod
    def _infer(self, frame: np.ndarray) -> List[Detection]:
        pass


class MoveNetEstimator(PoseEstimator):
    """Single-pose MoveNet Lightning (TFLite)."""

    name = "movenet"
    default_model_path = "models/movenet_singlepose_lightning.tflite"

    def _load_model(self):
        import tensorflow as tf

        model_path = self.config.detection.model_path or self.default_model_path
        interpreter = tf.lite.Interpreter(model_path=str(model_path))
        interpreter.allocate_tensors()
        return interpreter

    def _infer(self, frame: np.ndarray) -> List[Detection]:
        interpreter = self._model
        input_details = interpreter.get_input_details()[0]
        output_details = interpreter.get_output_details()[0]
        _, in_h, in_w, _ = input_details['shape']

        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        resized = cv2.resize(rgb, (int(in_w), int(in_h)))
        tensor = np.expand_dims(resized, axis=0).astype(input_details['dtype'])

        interpreter.set_tensor(input_details['index'], tensor)
        interpreter.invoke()
        # [1, 1, 17, 3] as (y, x, score), normalized
        keypoints = interpreter.get_tensor(output_details['index'])[0][0]

        height, width = frame.shape[:2]
        return [
            Detection(name=name, x=float(kp[1]) * width, y=float(kp[0]) * height,
                      score=float(kp[2]))
            for name, kp in zip(COCO_KEYPOINTS, keypoints)
        ]


class BlazePoseEstimator(PoseEstimator):
    """MediaPipe Pose (BlazePose full), 33 landmarks scored by visibility."""

    name = "blazepose"

    def _load_model(self):
        import mediapipe as mp

        self._landmark_names = [lm.name.lower() for lm in mp.solutions.pose.PoseLandmark]
        return mp.solutions.pose.Pose(static_image_mode=False, model_complexity=1)

    def _infer(self, frame: np.ndarray) -> List[Detection]:
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        results = self._model.process(rgb)
        if not results.pose_landmarks:
            return []

        height, width = frame.shape[:2]
        return [
            Detection(name=name, x=lm.x * width, y=lm.y * height, score=float(lm.visibility))
            for name, lm in zip(self._landmark_names, results.pose_landmarks.landmark)
        ]

    def close(self) -> None:
        if self._model is not None:
            self._model.close()
        super().close()


class YoloPoseEstimator(PoseEstimator):
    """Multi-person keypoint model (Ultralytics YOLOv8-pose)."""

    name = "yolo-pose"
    default_model_path = "yolov8n-pose.pt"

    def _load_model(self):
        from ultralytics import YOLO

        return YOLO(str(self.config.detection.model_path or self.default_model_path))

    def _infer(self, frame: np.ndarray) -> List[Detection]:
        detections: List[Detection] = []
        pose_index = 0
        for result in self._model(frame, verbose=False):
            keypoints = result.keypoints
            if keypoints is None or keypoints.xy is None:
                continue
            xy = keypoints.xy.cpu().numpy()
            conf = (keypoints.conf.cpu().numpy() if keypoints.conf is not None
                    else np.ones(xy.shape[:2], dtype=np.float32))
            for person_xy, person_conf in zip(xy, conf):
                for name, (x, y), score in zip(COCO_KEYPOINTS, person_xy, person_conf):
                    detections.append(Detection(name=name, x=float(x), y=float(y),
                                                score=float(score), pose_index=pose_index))
                pose_index += 1
        return detections


ESTIMATORS = {
    MoveNetEstimator.name: MoveNetEstimator,
    BlazePoseEstimator.name: BlazePoseEstimator,
    YoloPoseEstimator.name: YoloPoseEstimator,
}


def create_pose_estimator(config: Config, name: Optional[str] = None) -> PoseEstimator:
    """Return the estimator selected by name (defaults to the configured model)."""
    name = (name or config.detection.model_name).lower()
    try:
        estimator_cls = ESTIMATORS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown pose model '{name}', expected one of: {', '.join(ESTIMATORS)}")
    return estimator_cls(config)
