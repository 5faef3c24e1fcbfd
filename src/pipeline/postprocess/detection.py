"""
Detection post-processing: decode the raw detection grid, then apply
confidence thresholding, non-max suppression and result truncation.

The model output is a [channels, elements] grid stored channel-major: the
value of channel j for candidate c sits at flat offset c + elements * j.
Channels 0..3 are (cx, cy, w, h) in normalized center form; channel j >= 4
is the score of category j - 4.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

from models.detection import BoundingBox, CategoryScore, DetectionBox
from models.shape import BOX_CHANNELS

DEFAULT_THRESHOLD = 0.5
DEFAULT_IOU_THRESHOLD = 0.5
DEFAULT_MAX_RESULTS = 3


def _label(labels: Sequence[str], index: int) -> Optional[str]:
    return labels[index] if 0 <= index < len(labels) else None


def decode_detections(
    output: np.ndarray,
    num_channels: int,
    num_elements: int,
    labels: Sequence[str],
    threshold: float = DEFAULT_THRESHOLD,
) -> List[DetectionBox]:
    """
    Turn a raw detection grid into candidate boxes.

    A candidate is kept when its best score exceeds threshold and all four
    corners of its box lie in [0, 1]. Out-of-range boxes are dropped, not
    clamped. Candidates are returned in grid order.

    Raises:
        ValueError: If output holds fewer than num_channels * num_elements values.
    """
    flat = np.asarray(output, dtype=np.float32).reshape(-1)
    size = num_channels * num_elements
    if flat.size < size:
        raise ValueError(
            f"Detection output has {flat.size} values, expected {num_channels}x{num_elements}"
        )
    if num_channels <= BOX_CHANNELS or num_elements <= 0:
        return []

    grid = flat[:size].reshape(num_channels, num_elements)
    geometry = grid[:BOX_CHANNELS]
    scores = grid[BOX_CHANNELS:]
    top_scores = scores.max(axis=0)

    detections: List[DetectionBox] = []
    for c in np.flatnonzero(top_scores > threshold):
        cx, cy, w, h = (float(v) for v in geometry[:, c])
        box = BoundingBox.from_center(cx, cy, w, h)
        if not box.is_normalized():
            continue

        order = np.argsort(-scores[:, c], kind="stable")
        categories = tuple(
            CategoryScore(label=_label(labels, int(k)), score=float(scores[k, c]), index=int(k))
            for k in order
        )
        detections.append(DetectionBox(bounding_box=box, categories=categories))

    return detections


def calculate_iou(box1: BoundingBox, box2: BoundingBox) -> float:
    """Intersection-over-Union of two boxes; 0.0 when they do not overlap."""
    left = max(box1.x1, box2.x1)
    top = max(box1.y1, box2.y1)
    right = min(box1.x2, box2.x2)
    bottom = min(box1.y2, box2.y2)
    intersection = max(0.0, right - left) * max(0.0, bottom - top)
    union = box1.area + box2.area - intersection
    if union <= 0.0:
        return 0.0
    return intersection / union


def apply_nms(
    boxes: Sequence[DetectionBox],
    iou_threshold: float = DEFAULT_IOU_THRESHOLD,
) -> List[DetectionBox]:
    """
    Greedy non-max suppression.

    Repeatedly keeps the highest-scoring remaining box and drops every
    remaining box whose IoU with it is >= iou_threshold. Ties keep input
    order. The result is sorted by descending score.
    """
    remaining = sorted(boxes, key=lambda d: d.score, reverse=True)
    selected: List[DetectionBox] = []

    while remaining:
        first = remaining.pop(0)
        selected.append(first)
        remaining = [
            box for box in remaining
            if calculate_iou(first.bounding_box, box.bounding_box) < iou_threshold
        ]

    return selected


class DetectionPostprocessor:
    """Decode + NMS + truncation with a fixed label set and thresholds."""

    def __init__(
        self,
        labels: Sequence[str],
        threshold: float = DEFAULT_THRESHOLD,
        iou_threshold: float = DEFAULT_IOU_THRESHOLD,
        max_results: int = DEFAULT_MAX_RESULTS,
    ):
        self.labels = tuple(labels)
        self.threshold = threshold
        self.iou_threshold = iou_threshold
        self.max_results = max_results

    def process(self, output: np.ndarray, num_channels: int, num_elements: int) -> List[DetectionBox]:
        candidates = decode_detections(
            output, num_channels, num_elements, self.labels, self.threshold
        )
        return apply_nms(candidates, self.iou_threshold)[: max(0, self.max_results)]
