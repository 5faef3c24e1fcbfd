"""
Pytest configuration and shared fixtures.
"""

import os
import sys
import threading
import time

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from inference.backend import ModelBackend  # noqa: E402
from models.frame import FrameData  # noqa: E402
from observation.base import ObservationSource  # noqa: E402
from pipeline.listener import ResultListener  # noqa: E402


DETECTION_INPUT = [1, 64, 64, 3]
CLASSIFICATION_INPUT = [1, 3, 32, 32]


def make_detection_grid(candidates, num_classes, num_elements=None):
    """
    Build a [1, 4 + num_classes, elements] output tensor.

    candidates: list of ((cx, cy, w, h), [score per class]).
    Unused elements are zero.
    """
    num_elements = num_elements or len(candidates)
    grid = np.zeros((1, 4 + num_classes, num_elements), dtype=np.float32)
    for c, (geometry, scores) in enumerate(candidates):
        grid[0, :4, c] = geometry
        grid[0, 4:, c] = scores
    return grid


class FakeBackend(ModelBackend):
    """
    In-memory backend returning a preset output.

    Records lifecycle violations (run on a released handle, release during
    a run) so concurrency tests can assert none happened.
    """

    def __init__(self, input_shape, output_shape, output=None, delay=0.0, fail=False):
        super().__init__()
        self.input_shape = input_shape
        self.output_shape = output_shape
        self.output = output
        self.delay = delay
        self.fail = fail
        self.run_count = 0
        self.release_count = 0
        self.violations = []
        self.last_input = None
        self._in_run = threading.Event()

    def _load(self, model_bytes, num_threads):
        return {"bytes": model_bytes, "threads": num_threads}, self.input_shape, self.output_shape, np.float32

    def _execute(self, handle, input_tensor):
        if handle is None:
            self.violations.append("run on released handle")
        self._in_run.set()
        try:
            self.run_count += 1
            self.last_input = input_tensor
            if self.delay:
                time.sleep(self.delay)
            if self.fail:
                raise RuntimeError("runtime exploded")
            return self.output
        finally:
            self._in_run.clear()

    def _release(self, handle):
        if self._in_run.is_set():
            self.violations.append("release during run")
        self.release_count += 1


class RecordingListener(ResultListener):
    """Collects every callback for assertions."""

    def __init__(self):
        self.detections = []
        self.categories = []
        self.empty_count = 0
        self.empty_kinds = []
        self.lock = threading.Lock()

    def on_detect(self, boxes, elapsed_ms):
        with self.lock:
            self.detections.append((boxes, elapsed_ms))

    def on_classify(self, category, elapsed_ms):
        with self.lock:
            self.categories.append((category, elapsed_ms))

    def on_empty(self, kind="detection"):
        with self.lock:
            self.empty_count += 1
            self.empty_kinds.append(kind)

    @property
    def call_count(self):
        return len(self.detections) + len(self.categories) + self.empty_count


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def rgba_frame():
    """A 480x640 RGBA frame with a gradient so resizing is observable."""
    frame = np.zeros((480, 640, 4), dtype=np.uint8)
    frame[..., 0] = np.linspace(0, 255, 640, dtype=np.uint8)[None, :]
    frame[..., 1] = 128
    frame[..., 2] = 255
    frame[..., 3] = 255
    return frame


@pytest.fixture
def detection_output():
    """One strong 'paper' candidate inside the frame, one weak candidate."""
    return make_detection_grid(
        [
            ((0.5, 0.5, 0.2, 0.2), [0.1, 0.9, 0.3]),
            ((0.3, 0.3, 0.1, 0.1), [0.2, 0.1, 0.4]),
        ],
        num_classes=3,
    )


@pytest.fixture
def labels():
    return ["plastic", "paper", "metal"]


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory with default.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
mode: "detection"

models:
  detection:
    model_path: "assets/detector.onnx"
    labels_path: "assets/labels.txt"

detector:
  threshold: 0.5
  max_results: 3

backend:
  num_threads: 2

camera:
  device_id: 0

log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir


@pytest.fixture
def valid_config():
    """Return a valid configuration dictionary."""
    return {
        "mode": "detection",
        "models": {
            "detection": {
                "model_path": "assets/detector.onnx",
                "labels_path": "assets/labels.txt",
            },
            "classification": {
                "model_path": "assets/classifier.onnx",
            },
        },
        "detector": {
            "threshold": 0.5,
            "max_results": 3,
            "iou_threshold": 0.5,
        },
        "backend": {
            "num_threads": 2,
            "provider": "auto",
        },
        "camera": {
            "device_id": 0,
            "resolution": [640, 480],
            "fps": 30,
            "rotate": 0,
        },
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }




class MockSource(ObservationSource):
    """Observation source replaying a list of frames, then exhausted."""

    def __init__(self, config, frames=None, delay=0.0):
        super().__init__(config)
        self._frames = frames or []
        self._pos = 0
        self._delay = delay

    def open(self) -> None:
        self._is_open = True
        self._is_exhausted = False
        self._pos = 0
        self._frame_index = 0

    def read(self):
        if not self._is_open:
            return None
        if self._pos >= len(self._frames):
            self._is_exhausted = True
            return None
        if self._delay:
            time.sleep(self._delay)

        frame = self._frames[self._pos]
        self._pos += 1
        self._frame_index += 1

        return FrameData(
            frame=frame,
            width=frame.shape[1],
            height=frame.shape[0],
            timestamp=time.time(),
            frame_index=self._frame_index,
            source=self.source_id,
        )

    def close(self) -> None:
        self._is_open = False
