"""
Tensor shape metadata derived from a loaded model.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence

# Channels 0..3 of a detection candidate hold box geometry (cx, cy, w, h).
BOX_CHANNELS = 4


def _dim(shape: Sequence[Any], index: int) -> int:
    """Return a positive integer dimension, or 0 for missing/dynamic ones."""
    if index >= len(shape):
        return 0
    value = shape[index]
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return 0
    return value


@dataclass(frozen=True)
class TensorShape:
    """
    Input/output tensor layout of a model.

    A zero in any field means the value is not known yet; the pipeline
    refuses to run until every field its mode needs is non-zero.
    """
    input_width: int = 0
    input_height: int = 0
    input_channels_first: bool = False
    output_channels: int = 0
    output_elements: int = 0
    output_categories: int = 0

    @property
    def num_classes(self) -> int:
        return max(0, self.output_channels - BOX_CHANNELS)

    def is_ready_for_detection(self) -> bool:
        return all((
            self.input_width,
            self.input_height,
            self.output_channels,
            self.output_elements,
        ))

    def is_ready_for_classification(self) -> bool:
        return all((
            self.input_width,
            self.input_height,
            self.output_categories,
        ))

    @classmethod
    def from_model_shapes(
        cls,
        input_shape: Optional[Sequence[Any]],
        output_shape: Optional[Sequence[Any]],
    ) -> "TensorShape":
        """
        Derive metadata from declared model shapes.

        Input is [batch, height, width, channels] or, when dimension 1 equals
        3, channel-first [batch, channels, height, width]. A rank-3 output is
        a detection grid [batch, channels, elements]; a rank-2 output is a
        score vector [batch, categories].
        """
        width = height = 0
        channels_first = False
        if input_shape:
            height = _dim(input_shape, 1)
            width = _dim(input_shape, 2)
            if _dim(input_shape, 1) == 3:
                channels_first = True
                height = _dim(input_shape, 2)
                width = _dim(input_shape, 3)

        out_channels = out_elements = out_categories = 0
        if output_shape:
            if len(output_shape) >= 3:
                out_channels = _dim(output_shape, 1)
                out_elements = _dim(output_shape, 2)
            else:
                out_categories = _dim(output_shape, 1)

        return cls(
            input_width=width,
            input_height=height,
            input_channels_first=channels_first,
            output_channels=out_channels,
            output_elements=out_elements,
            output_categories=out_categories,
        )
