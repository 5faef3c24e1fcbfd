"""
Result delivery.

The executor pushes results into a ResultListener from the inference worker
thread. Listeners must return quickly; any handoff to a UI thread is the
listener's job.
"""

from __future__ import annotations

import logging
import queue
from typing import List, Optional

from models.detection import (
    CLASSIFICATION,
    DETECTION,
    CategoryScore,
    DetectionBox,
    InferenceResult,
)


class ResultListener:
    """Receives pipeline output. Every callback is a no-op by default."""

    def on_detect(self, boxes: List[DetectionBox], elapsed_ms: float) -> None:
        pass

    def on_classify(self, category: CategoryScore, elapsed_ms: float) -> None:
        pass

    def on_empty(self, kind: str = DETECTION) -> None:
        """Called when a frame produced no result; kind names the model variant."""


class QueueListener(ResultListener):
    """
    Result channel keeping only the newest InferenceResult.

    Puts never block: an unread result is replaced by the next one.
    """

    def __init__(self):
        self._queue: "queue.Queue[InferenceResult]" = queue.Queue(maxsize=1)

    def _put(self, result: InferenceResult) -> None:
        while True:
            try:
                self._queue.put_nowait(result)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def on_detect(self, boxes: List[DetectionBox], elapsed_ms: float) -> None:
        self._put(InferenceResult(kind=DETECTION, inference_time_ms=elapsed_ms, detections=list(boxes)))

    def on_classify(self, category: CategoryScore, elapsed_ms: float) -> None:
        self._put(InferenceResult(kind=CLASSIFICATION, inference_time_ms=elapsed_ms, category=category))

    def on_empty(self, kind: str = DETECTION) -> None:
        self._put(InferenceResult.empty(kind))

    def get(self, timeout: Optional[float] = None) -> Optional[InferenceResult]:
        """Return the latest result, or None if nothing arrives within timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None


class LoggingListener(ResultListener):
    """Logs every result; used by the command line runner."""

    def __init__(self):
        self.result_count = 0

    def on_detect(self, boxes: List[DetectionBox], elapsed_ms: float) -> None:
        self.result_count += 1
        summary = ", ".join(
            f"{box.top.display_name} {box.score:.2f} {tuple(round(v, 3) for v in box.bounding_box.as_tuple())}"
            for box in boxes
            if box.top is not None
        )
        logging.info(f"[DETECT] {len(boxes)} object(s) in {elapsed_ms:.1f} ms: {summary}")

    def on_classify(self, category: CategoryScore, elapsed_ms: float) -> None:
        self.result_count += 1
        logging.info(f"[CLASSIFY] {category.display_name} {category.score:.2f} in {elapsed_ms:.1f} ms")

    def on_empty(self, kind: str = DETECTION) -> None:
        logging.debug(f"[EMPTY] no {kind} result")
