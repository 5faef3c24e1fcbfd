"""
Post-processing of raw model outputs into result models.
"""

from .detection import (
    DetectionPostprocessor,
    apply_nms,
    calculate_iou,
    decode_detections,
)
from .classification import ClassificationPostprocessor, best_category

__all__ = [
    "DetectionPostprocessor",
    "apply_nms",
    "calculate_iou",
    "decode_detections",
    "ClassificationPostprocessor",
    "best_category",
]
