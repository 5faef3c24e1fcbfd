"""
Command line runner for the waste detector.

Runs the detector or the classifier over a camera or video file and logs
every result.

Usage:
    python src/main.py --config config/config.yaml --mode detection --source 0

Arguments:
    --config: Path to configuration file
    --mode: Initial model (detection or classification)
    --source: Camera index or video file path (overrides camera.device_id)
    --max-frames: Stop after this many frames
"""

import argparse
import logging
import os
import sys
from typing import Any, Dict, Optional, Tuple

import yaml

from inference.backend import ModelLoadError
from models.config import MODES, Config
from ops.logging import setup_logging
from pipeline.engine import create_engine_from_config
from pipeline.listener import LoggingListener
from pipeline.switcher import ModelSwitcher


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def _read_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)
    """
    try:
        config_dir = os.path.dirname(config_path)
        base_path = os.path.join(config_dir, "default.yaml")
        merged: Dict[str, Any] = _read_yaml(base_path) if os.path.exists(base_path) else {}

        local_overrides_path = os.path.join(config_dir, "config.yaml")
        if os.path.exists(local_overrides_path):
            merged = _deep_merge(merged, _read_yaml(local_overrides_path))

        # Finally apply explicit config_path if it's not one of the files above
        explicit = os.path.abspath(config_path)
        if os.path.exists(config_path) and explicit not in (
            os.path.abspath(local_overrides_path),
            os.path.abspath(base_path),
        ):
            merged = _deep_merge(merged, _read_yaml(config_path))

        return merged
    except Exception as e:
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(1)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    required_sections = ["models", "log_level"]
    for section in required_sections:
        if section not in config:
            return False, f"Missing required configuration section: {section}"

    mode = config.get("mode", "detection")
    if mode not in MODES:
        return False, f"mode must be one of: {', '.join(MODES)}"

    models = config.get("models") or {}
    if not isinstance(models, dict) or not models:
        return False, "models must define at least one of: detection, classification"
    for kind, spec in models.items():
        if kind not in MODES:
            return False, f"models.{kind} is not a known model; use one of: {', '.join(MODES)}"
        if not isinstance(spec, dict) or not isinstance(spec.get("model_path"), str) or not spec.get("model_path"):
            return False, f"models.{kind}.model_path is required"
        if "labels_path" in spec and spec["labels_path"] is not None and not isinstance(spec["labels_path"], str):
            return False, f"models.{kind}.labels_path must be a string"
    if mode not in models:
        return False, f"mode is '{mode}' but models.{mode} is not configured"

    detector = config.get("detector", {}) or {}
    if "threshold" in detector:
        if not _is_number(detector["threshold"]) or not (0 <= detector["threshold"] <= 1):
            return False, "detector.threshold must be between 0 and 1"
    if "iou_threshold" in detector:
        if not _is_number(detector["iou_threshold"]) or not (0 < detector["iou_threshold"] <= 1):
            return False, "detector.iou_threshold must be between 0 and 1"
    if "max_results" in detector:
        mr = detector["max_results"]
        if not isinstance(mr, int) or isinstance(mr, bool) or mr <= 0:
            return False, "detector.max_results must be a positive integer"

    backend = config.get("backend", {}) or {}
    if "num_threads" in backend:
        nt = backend["num_threads"]
        if not isinstance(nt, int) or isinstance(nt, bool) or nt <= 0:
            return False, "backend.num_threads must be a positive integer"
    if backend.get("provider", "auto") not in ("auto", "cpu"):
        return False, "backend.provider must be one of: auto, cpu"

    camera = config.get("camera", {}) or {}
    if "device_id" in camera:
        if not isinstance(camera["device_id"], (int, str)) or isinstance(camera["device_id"], bool):
            return False, "camera.device_id must be an integer (index) or string (file path)"
        if isinstance(camera["device_id"], int) and camera["device_id"] < 0:
            return False, "camera.device_id integer must be non-negative"
    if camera.get("rotate", 0) not in (0, 90, 180, 270, None):
        return False, "camera.rotate must be one of: 0, 90, 180, 270"

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config["log_level"] not in valid_log_levels:
        return False, f"log_level must be one of: {', '.join(valid_log_levels)}"

    return True, None


def _parse_source(value: Optional[str]):
    if value is None:
        return None
    return int(value) if value.isdigit() else value


def main():
    """Main application function."""
    parser = argparse.ArgumentParser(description="Waste Detector - real-time detection/classification")
    parser.add_argument("--config", type=str, default="config/config.yaml",
                        help="Path to configuration file")
    parser.add_argument("--mode", choices=MODES, default=None,
                        help="Initial model (overrides config mode)")
    parser.add_argument("--source", type=str, default=None,
                        help="Camera index or video file (overrides camera.device_id)")
    parser.add_argument("--max-frames", type=int, default=0,
                        help="Stop after this many frames (0 = run until stopped)")
    args = parser.parse_args()

    raw_config = load_config(args.config)
    if args.mode:
        raw_config["mode"] = args.mode

    is_valid, error = validate_config(raw_config)
    if not is_valid:
        print(f"Configuration error: {error}", file=sys.stderr)
        sys.exit(1)

    config = Config.from_dict(raw_config)
    setup_logging(config.log_path, config.log_level)
    logging.info(f"Starting waste detector: mode={config.mode}")

    switcher = ModelSwitcher(
        config.model_specs(),
        LoggingListener(),
        detector_config=config.detector,
        backend_config=config.backend,
    )
    try:
        switcher.switch(config.mode)
    except ModelLoadError as e:
        logging.error(f"Could not load {config.mode} model: {e}")
        sys.exit(1)

    engine = create_engine_from_config(
        config,
        switcher,
        device_id=_parse_source(args.source),
        max_frames=args.max_frames,
    )
    try:
        engine.run()
    finally:
        switcher.close()


if __name__ == "__main__":
    main()
