"""
Inference backend interface.

A backend owns a loaded model and its compute context. It exposes the shape
metadata read from the model and a single blocking run() call mapping an
input tensor to the model's first output tensor.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence, Tuple

import numpy as np

from models.shape import TensorShape


class BackendError(RuntimeError):
    """Base class for backend failures."""


class ModelLoadError(BackendError):
    """Raised when a model blob cannot be loaded or introspected."""


class BackendClosedError(BackendError):
    """Raised when run() is called on a backend that has been closed."""


class InferenceError(BackendError):
    """Raised when the runtime fails while executing a frame."""


# (handle, declared input shape, declared output shape, input dtype)
LoadedModel = Tuple[Any, Sequence[Any], Sequence[Any], np.dtype]


class ModelBackend(ABC):
    """
    Base class for model backends.

    Lifecycle:
        1. Call setup() with the model blob; it returns the TensorShape
        2. Call run() any number of times from the inference worker
        3. Call close() (from any thread) to release the compute context

    One lock guards the closed flag together with run() and close(), so
    close() waits for a run in progress and no run starts after close().
    setup() may be called again to load a different model.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handle: Any = None
        self._closed = True
        self._shape = TensorShape()
        self._input_dtype: np.dtype = np.dtype(np.float32)

    @property
    def shape(self) -> TensorShape:
        return self._shape

    @property
    def input_dtype(self) -> np.dtype:
        return self._input_dtype

    @property
    def is_closed(self) -> bool:
        return self._closed

    def setup(self, model_bytes: bytes, num_threads: int = 2) -> TensorShape:
        """
        Load a model blob and derive its tensor shape metadata.

        Raises:
            ModelLoadError: If the blob is empty, corrupt or its shapes
                cannot be read.
        """
        if not model_bytes:
            raise ModelLoadError("Model blob is empty")

        with self._lock:
            self._release_locked()
            try:
                handle, input_shape, output_shape, dtype = self._load(model_bytes, num_threads)
            except ModelLoadError:
                raise
            except Exception as e:
                raise ModelLoadError(f"Failed to load model: {e}") from e

            try:
                shape = TensorShape.from_model_shapes(input_shape, output_shape)
            except Exception as e:
                self._release(handle)
                raise ModelLoadError(f"Failed to read model shapes: {e}") from e

            self._handle = handle
            self._shape = shape
            self._input_dtype = np.dtype(dtype)
            self._closed = False

        logging.info(
            f"{type(self).__name__} ready: input={shape.input_width}x{shape.input_height} "
            f"channels_first={shape.input_channels_first} output_channels={shape.output_channels} "
            f"output_elements={shape.output_elements} output_categories={shape.output_categories}"
        )
        return shape

    def run(self, input_tensor: np.ndarray) -> Optional[np.ndarray]:
        """
        Execute the model on one input tensor.

        Returns None when the input dimensions are not known yet, including
        before the first setup().

        Raises:
            BackendClosedError: If close() has already been called.
            InferenceError: If the runtime fails on this tensor.
        """
        with self._lock:
            if not (self._shape.input_width and self._shape.input_height):
                return None
            if self._closed:
                raise BackendClosedError(f"{type(self).__name__} is closed")
            try:
                return self._execute(self._handle, input_tensor)
            except Exception as e:
                raise InferenceError(f"Inference failed: {e}") from e

    def close(self) -> None:
        """Release the compute context. Safe to call multiple times."""
        with self._lock:
            self._release_locked()

    def _release_locked(self) -> None:
        if self._closed:
            return
        self._closed = True
        handle, self._handle = self._handle, None
        try:
            self._release(handle)
        except Exception as e:
            logging.error(f"Error releasing {type(self).__name__}: {e}")

    def __enter__(self) -> "ModelBackend":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @abstractmethod
    def _load(self, model_bytes: bytes, num_threads: int) -> LoadedModel:
        """Create the runtime handle for a model blob."""

    @abstractmethod
    def _execute(self, handle: Any, input_tensor: np.ndarray) -> np.ndarray:
        """Run the handle on a tensor and return the first output."""

    def _release(self, handle: Any) -> None:
        """Free runtime resources held by handle."""
