"""
Frame preprocessing: raw RGBA/RGB frame to model input tensor.
"""

from __future__ import annotations

import cv2
import numpy as np

from models.shape import TensorShape

# value' = (value - INPUT_MEAN) / INPUT_STD maps [0, 255] to [0, 1]
INPUT_MEAN = 0.0
INPUT_STD = 255.0


def _to_rgb(frame: np.ndarray) -> np.ndarray:
    if frame.ndim == 2 or frame.shape[2] == 1:
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2RGB)
    if frame.shape[2] == 4:
        return cv2.cvtColor(frame, cv2.COLOR_RGBA2RGB)
    return frame


def preprocess(
    frame: np.ndarray,
    shape: TensorShape,
    dtype: np.dtype = np.dtype(np.float32),
) -> np.ndarray:
    """
    Build the model input tensor for one frame.

    The frame is stretched to the model input size (no letterboxing),
    normalized and cast to dtype. The result has a leading batch axis and is
    channel-first when the model declares that layout. The input frame is
    not modified or retained.
    """
    rgb = _to_rgb(frame)
    resized = cv2.resize(
        rgb,
        (shape.input_width, shape.input_height),
        interpolation=cv2.INTER_NEAREST,
    )
    tensor = (resized.astype(np.float32) - INPUT_MEAN) / INPUT_STD
    if shape.input_channels_first:
        tensor = tensor.transpose(2, 0, 1)
    return np.ascontiguousarray(tensor[np.newaxis], dtype=dtype)
