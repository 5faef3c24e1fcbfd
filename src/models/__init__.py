"""
Typed models for the waste detector application.

Frames in, results out: these models are the only types that cross the
boundary between the inference core and its collaborators.
"""

from .frame import FrameData
from .detection import (
    CLASSIFICATION,
    DETECTION,
    BoundingBox,
    CategoryScore,
    DetectionBox,
    InferenceResult,
)
from .shape import TensorShape
from .config import (
    Config,
    CameraConfig,
    DetectorConfig,
    BackendConfig,
    ModelSpec,
)

__all__ = [
    # Frame
    "FrameData",
    # Results
    "DETECTION",
    "CLASSIFICATION",
    "BoundingBox",
    "CategoryScore",
    "DetectionBox",
    "InferenceResult",
    # Shape
    "TensorShape",
    # Config
    "Config",
    "CameraConfig",
    "DetectorConfig",
    "BackendConfig",
    "ModelSpec",
]
