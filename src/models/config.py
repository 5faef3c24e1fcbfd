"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .detection import CLASSIFICATION, DETECTION

MODES = (DETECTION, CLASSIFICATION)


@dataclass
class CameraConfig:
    """Camera configuration."""
    device_id: Union[int, str] = 0
    resolution: List[int] = field(default_factory=lambda: [640, 480])
    fps: int = 30
    rotate: int = 0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CameraConfig":
        """Adapter: Create from config dictionary."""
        return cls(
            device_id=d.get("device_id", 0),
            resolution=d.get("resolution", [640, 480]),
            fps=d.get("fps", 30),
            rotate=d.get("rotate", 0) or 0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "resolution": self.resolution,
            "fps": self.fps,
            "rotate": self.rotate,
        }


@dataclass
class DetectorConfig:
    """Detection post-processing configuration."""
    threshold: float = 0.5
    max_results: int = 3
    iou_threshold: float = 0.5

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DetectorConfig":
        return cls(
            threshold=d.get("threshold", 0.5),
            max_results=d.get("max_results", 3),
            iou_threshold=d.get("iou_threshold", 0.5),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threshold": self.threshold,
            "max_results": self.max_results,
            "iou_threshold": self.iou_threshold,
        }


@dataclass
class BackendConfig:
    """Inference runtime configuration."""
    num_threads: int = 2
    provider: str = "auto"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BackendConfig":
        return cls(
            num_threads=d.get("num_threads", 2),
            provider=d.get("provider", "auto"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "num_threads": self.num_threads,
            "provider": self.provider,
        }


@dataclass
class ModelSpec:
    """Asset locations for one model variant."""
    model_path: str = ""
    labels_path: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ModelSpec":
        return cls(
            model_path=d.get("model_path", ""),
            labels_path=d.get("labels_path"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"model_path": self.model_path}
        if self.labels_path is not None:
            d["labels_path"] = self.labels_path
        return d


@dataclass
class Config:
    """
    Complete application configuration.

    This is a typed representation of the YAML config structure.
    """
    mode: str = DETECTION
    detection_model: Optional[ModelSpec] = None
    classification_model: Optional[ModelSpec] = None
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    camera: CameraConfig = field(default_factory=CameraConfig)
    log_path: str = "logs/waste_detector.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        models = d.get("models", {}) or {}
        det_dict = models.get(DETECTION)
        cls_dict = models.get(CLASSIFICATION)

        return cls(
            mode=d.get("mode", DETECTION),
            detection_model=ModelSpec.from_dict(det_dict) if det_dict else None,
            classification_model=ModelSpec.from_dict(cls_dict) if cls_dict else None,
            detector=DetectorConfig.from_dict(d.get("detector", {}) or {}),
            backend=BackendConfig.from_dict(d.get("backend", {}) or {}),
            camera=CameraConfig.from_dict(d.get("camera", {}) or {}),
            log_path=d.get("log_path", "logs/waste_detector.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def model_specs(self) -> Dict[str, ModelSpec]:
        specs: Dict[str, ModelSpec] = {}
        if self.detection_model:
            specs[DETECTION] = self.detection_model
        if self.classification_model:
            specs[CLASSIFICATION] = self.classification_model
        return specs

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to dictionary (for saving or passing to existing code)."""
        return {
            "mode": self.mode,
            "models": {kind: spec.to_dict() for kind, spec in self.model_specs().items()},
            "detector": self.detector.to_dict(),
            "backend": self.backend.to_dict(),
            "camera": self.camera.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
        }
