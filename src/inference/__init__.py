"""
Inference backends.

Backends wrap an inference runtime behind ModelBackend so the pipeline does
not depend on which runtime or execution provider is in use.
"""

from .backend import (
    BackendClosedError,
    BackendError,
    InferenceError,
    ModelBackend,
    ModelLoadError,
)
from .labels import load_labels, parse_labels, read_model_bytes
from .onnx_backend import OnnxModelBackend, select_providers

__all__ = [
    "BackendClosedError",
    "BackendError",
    "InferenceError",
    "ModelBackend",
    "ModelLoadError",
    "OnnxModelBackend",
    "select_providers",
    "load_labels",
    "parse_labels",
    "read_model_bytes",
]
