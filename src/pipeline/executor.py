"""
Model executors: the per-frame preprocess -> run -> postprocess -> deliver
sequence for each model variant.

Concurrency contract:
- process() is called from a single inference worker and is single-flight.
- close() may be called from any other thread at any time.
- One lock guards the closed flag and the whole inference-and-deliver
  section, so close() waits for an in-flight frame and no frame starts or
  delivers after close() returns.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence, Union

import numpy as np

from inference.backend import ModelBackend
from inference.onnx_backend import OnnxModelBackend
from models.config import BackendConfig, DetectorConfig
from models.detection import CLASSIFICATION, DETECTION
from models.frame import FrameData
from models.shape import TensorShape
from .listener import ResultListener
from .postprocess.classification import ClassificationPostprocessor
from .postprocess.detection import DetectionPostprocessor
from .preprocess import preprocess

Frame = Union[FrameData, np.ndarray]


class ModelExecutor(ABC):
    """A model variant that can process frames and be closed."""

    kind: str = ""

    def __init__(self, backend: ModelBackend, labels: Sequence[str], listener: ResultListener):
        self._backend = backend
        self._labels = list(labels)
        self._listener = listener
        self._shape = backend.shape
        self._lock = threading.Lock()
        self._closed = False

    @property
    def shape(self) -> TensorShape:
        return self._shape

    @property
    def labels(self) -> Sequence[str]:
        return tuple(self._labels)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def setup(self, model_bytes: bytes, num_threads: int = 2) -> TensorShape:
        """
        (Re)load the model; waits for any in-flight frame first.

        The backend releases its previous model before loading, so a failed
        load leaves the executor closed.
        """
        with self._lock:
            try:
                self._shape = self._backend.setup(model_bytes, num_threads)
            except Exception:
                self._closed = True
                self._shape = TensorShape()
                raise
            self._closed = False
        return self._shape

    def process(self, frame: Frame) -> bool:
        """
        Run one frame through the model and deliver the result.

        Returns True when a result (possibly empty) reached the listener.
        Frames arriving while the model is not ready or after close() are
        skipped silently. A failure on one frame is logged and the frame is
        dropped; later frames are unaffected.
        """
        if self._closed:
            return False

        pixels = frame.frame if isinstance(frame, FrameData) else frame
        try:
            with self._lock:
                if self._closed or not self.is_ready():
                    return False
                return self._infer(pixels)
        except Exception:
            logging.exception(f"{type(self).__name__}: error processing frame")
            return False

    def close(self) -> None:
        """Release the model. Blocks until an in-flight frame finishes."""
        with self._lock:
            self._closed = True
            self._backend.close()

    def _run_timed(self, pixels: np.ndarray):
        """Preprocess and run; elapsed time covers resize through run completion."""
        start = time.perf_counter()
        tensor = preprocess(pixels, self._shape, self._backend.input_dtype)
        output = self._backend.run(tensor)
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        return output, elapsed_ms

    @abstractmethod
    def is_ready(self) -> bool:
        """True when every shape field this variant needs is known."""

    @abstractmethod
    def _infer(self, pixels: np.ndarray) -> bool:
        """Process one frame; called with the lock held. True if delivered."""


class DetectorExecutor(ModelExecutor):
    """Object detector: decoded, suppressed and truncated boxes."""

    kind = DETECTION

    def __init__(
        self,
        backend: ModelBackend,
        labels: Sequence[str],
        listener: ResultListener,
        config: Optional[DetectorConfig] = None,
    ):
        super().__init__(backend, labels, listener)
        config = config or DetectorConfig()
        self._postprocessor = DetectionPostprocessor(
            labels=self._labels,
            threshold=config.threshold,
            iou_threshold=config.iou_threshold,
            max_results=config.max_results,
        )

    def is_ready(self) -> bool:
        return self._shape.is_ready_for_detection()

    def _infer(self, pixels: np.ndarray) -> bool:
        output, elapsed_ms = self._run_timed(pixels)
        if output is None:
            return False

        boxes = self._postprocessor.process(
            output, self._shape.output_channels, self._shape.output_elements
        )
        if boxes:
            self._listener.on_detect(boxes, elapsed_ms)
        else:
            self._listener.on_empty(self.kind)
        return True


class ClassifierExecutor(ModelExecutor):
    """Image classifier: the single best category."""

    kind = CLASSIFICATION

    def __init__(self, backend: ModelBackend, labels: Sequence[str], listener: ResultListener):
        super().__init__(backend, labels, listener)
        self._postprocessor = ClassificationPostprocessor(self._labels)

    def is_ready(self) -> bool:
        return self._shape.is_ready_for_classification()

    def _infer(self, pixels: np.ndarray) -> bool:
        output, elapsed_ms = self._run_timed(pixels)
        if output is None:
            return False

        category = self._postprocessor.process(output, self._shape.output_categories)
        if category is None:
            self._listener.on_empty(self.kind)
        else:
            self._listener.on_classify(category, elapsed_ms)
        return True


def create_executor(
    kind: str,
    model_bytes: bytes,
    labels: Sequence[str],
    listener: ResultListener,
    detector_config: Optional[DetectorConfig] = None,
    backend_config: Optional[BackendConfig] = None,
    backend_factory: Optional[Callable[[], ModelBackend]] = None,
) -> ModelExecutor:
    """
    Build and set up an executor for the given model variant.

    Raises:
        ValueError: If kind is not a known model variant.
        ModelLoadError: If the model blob cannot be loaded.
    """
    backend_config = backend_config or BackendConfig()
    if backend_factory is None:
        backend_factory = lambda: OnnxModelBackend(provider=backend_config.provider)

    if kind == DETECTION:
        executor: ModelExecutor = DetectorExecutor(
            backend_factory(), labels, listener, detector_config
        )
    elif kind == CLASSIFICATION:
        executor = ClassifierExecutor(backend_factory(), labels, listener)
    else:
        raise ValueError(f"Unknown model kind: {kind}")

    executor.setup(model_bytes, backend_config.num_threads)
    logging.info(f"{type(executor).__name__} created with {len(labels)} labels")
    return executor
