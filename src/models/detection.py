"""
Result models produced by the inference pipeline.

Coordinates are normalized to [0, 1] relative to the frame the model saw;
renderers scale them back to pixels with BoundingBox.to_pixels().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class CategoryScore:
    """
    A single category prediction.

    Attributes:
        label: Human-readable label, or None when the label set has no entry.
        score: Confidence score (0-1).
        index: Category id (position in the label set).
    """
    label: Optional[str]
    score: float
    index: int = -1

    @property
    def display_name(self) -> str:
        if self.label is not None:
            return self.label
        return f"class_{self.index}"


@dataclass(frozen=True)
class BoundingBox:
    """
    A bounding box in normalized coordinates.

    Attributes:
        x1: Left edge x coordinate.
        y1: Top edge y coordinate.
        x2: Right edge x coordinate.
        y2: Bottom edge y coordinate.
    """
    x1: float
    y1: float
    x2: float
    y2: float

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.x1 + self.x2) / 2, (self.y1 + self.y2) / 2)

    @property
    def area(self) -> float:
        return self.width * self.height

    def is_normalized(self) -> bool:
        """True when x1<=x2, y1<=y2 and every corner lies in [0, 1]."""
        return (
            0.0 <= self.x1 <= self.x2 <= 1.0
            and 0.0 <= self.y1 <= self.y2 <= 1.0
        )

    def as_tuple(self) -> Tuple[float, float, float, float]:
        """Return as (x1, y1, x2, y2) tuple."""
        return (self.x1, self.y1, self.x2, self.y2)

    def to_pixels(self, width: int, height: int) -> Tuple[int, int, int, int]:
        """Scale to integer pixel coordinates for a width x height image."""
        return (
            int(self.x1 * width),
            int(self.y1 * height),
            int(self.x2 * width),
            int(self.y2 * height),
        )

    @classmethod
    def from_center(cls, cx: float, cy: float, w: float, h: float) -> "BoundingBox":
        """Create from center-form (cx, cy, w, h)."""
        return cls(
            x1=cx - w / 2,
            y1=cy - h / 2,
            x2=cx + w / 2,
            y2=cy + h / 2,
        )


@dataclass(frozen=True)
class DetectionBox:
    """
    A decoded detection.

    Attributes:
        bounding_box: Normalized box in corner form.
        categories: Every category score, sorted descending by score.
    """
    bounding_box: BoundingBox
    categories: Tuple[CategoryScore, ...] = ()

    @property
    def top(self) -> Optional[CategoryScore]:
        return self.categories[0] if self.categories else None

    @property
    def score(self) -> float:
        top = self.top
        return top.score if top is not None else 0.0

    @property
    def label(self) -> Optional[str]:
        top = self.top
        return top.label if top is not None else None


DETECTION = "detection"
CLASSIFICATION = "classification"


@dataclass
class InferenceResult:
    """
    Output of one pipeline invocation.

    Exactly one of detections (detection mode) or category (classification
    mode) carries the payload.
    """
    kind: str
    inference_time_ms: float
    detections: List[DetectionBox] = field(default_factory=list)
    category: Optional[CategoryScore] = None

    @property
    def is_empty(self) -> bool:
        if self.kind == DETECTION:
            return not self.detections
        return self.category is None

    @classmethod
    def empty(cls, kind: str) -> "InferenceResult":
        return cls(kind=kind, inference_time_ms=0.0)
