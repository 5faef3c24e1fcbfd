"""
Label and model asset loading.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .backend import ModelLoadError


def parse_labels(text: str) -> List[str]:
    """One label per line; blank lines are skipped and order is preserved."""
    return [line.strip() for line in text.splitlines() if line.strip()]


def load_labels(path: Optional[str]) -> List[str]:
    """
    Load a newline-delimited UTF-8 label file.

    A missing or unreadable file yields an empty list; detections are then
    reported without labels.
    """
    if not path:
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            return parse_labels(f.read())
    except (OSError, UnicodeDecodeError) as e:
        logging.warning(f"Could not read labels from {path}: {e}")
        return []


def read_model_bytes(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise ModelLoadError(f"Could not read model file {path}: {e}") from e
