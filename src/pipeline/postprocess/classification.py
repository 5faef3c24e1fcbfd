"""
Classification post-processing: pick the best category from a score vector.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from models.detection import CategoryScore


def best_category(scores: np.ndarray, labels: Sequence[str]) -> Optional[CategoryScore]:
    """
    Return the highest-scoring category, or None for an empty vector.

    Ties go to the lowest index. Indices without a label get label None.
    """
    flat = np.asarray(scores, dtype=np.float32).reshape(-1)
    if flat.size == 0:
        return None
    index = int(np.argmax(flat))
    label = labels[index] if index < len(labels) else None
    return CategoryScore(label=label, score=float(flat[index]), index=index)


class ClassificationPostprocessor:
    def __init__(self, labels: Sequence[str]):
        self.labels = tuple(labels)

    def process(self, output: np.ndarray, num_categories: int) -> Optional[CategoryScore]:
        flat = np.asarray(output, dtype=np.float32).reshape(-1)
        return best_category(flat[:num_categories], self.labels)
