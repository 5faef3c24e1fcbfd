"""
Observation layer for pluggable frame sources.

This layer abstracts where frames come from (camera, video file) from the
inference pipeline. Each source implements the ObservationSource interface
and returns FrameData objects.
"""

from .base import ObservationSource, ObservationConfig
from .opencv_source import OpenCVSource, OpenCVSourceConfig, create_source_from_config

__all__ = [
    "ObservationSource",
    "ObservationConfig",
    "OpenCVSource",
    "OpenCVSourceConfig",
    "create_source_from_config",
]
