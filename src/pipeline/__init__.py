"""
Inference pipeline for the waste detector.

The pipeline turns frames into results:
- Preprocessing of raw frames into model input tensors
- Model execution through a ModelBackend
- Post-processing (detection decode + NMS, or best category)
- Delivery to a ResultListener
- Runtime switching between detector and classifier
"""

from .executor import (
    ClassifierExecutor,
    DetectorExecutor,
    ModelExecutor,
    create_executor,
)
from .listener import LoggingListener, QueueListener, ResultListener
from .preprocess import preprocess
from .switcher import ModelSwitcher, load_assets
from .engine import LatestFrameSlot, PipelineConfig, PipelineEngine, create_engine_from_config

__all__ = [
    "ClassifierExecutor",
    "DetectorExecutor",
    "ModelExecutor",
    "create_executor",
    "LoggingListener",
    "QueueListener",
    "ResultListener",
    "preprocess",
    "ModelSwitcher",
    "load_assets",
    "LatestFrameSlot",
    "PipelineConfig",
    "PipelineEngine",
    "create_engine_from_config",
]
