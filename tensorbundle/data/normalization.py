# data/normalization.py

"""
Pixel normalization for image layers.

A normalizer maps ``[0, 255]`` pixel values to the range a model expects,
``value * scale + bias``, with an optional bias per RGB channel. The
denormalizer applies the inverse transform.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class PixelNormalizer:
    scale: float
    bias: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    def __call__(self, pixels, channel_axis: int = -1) -> np.ndarray:
        arr = np.asarray(pixels, dtype=np.float32)
        return arr * self.scale + _broadcast_bias(self.bias, arr, channel_axis)

    @classmethod
    def single_bias(cls, scale: float, bias: float) -> "PixelNormalizer":
        return cls(scale=scale, bias=(bias, bias, bias))

    @classmethod
    def per_channel_bias(
        cls, scale: float, red: float, green: float, blue: float
    ) -> "PixelNormalizer":
        return cls(scale=scale, bias=(red, green, blue))

    @classmethod
    def zero_to_one(cls) -> "PixelNormalizer":
        """Normalizes pixel values from ``[0, 255]`` to ``[0, 1]``."""
        return cls.single_bias(1.0 / 255.0, 0.0)

    @classmethod
    def negative_one_to_one(cls) -> "PixelNormalizer":
        """Normalizes pixel values from ``[0, 255]`` to ``[-1, 1]``."""
        return cls.single_bias(2.0 / 255.0, -1.0)


@dataclass(frozen=True)
class PixelDenormalizer:
    scale: float
    bias: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    def __call__(self, values, channel_axis: int = -1) -> np.ndarray:
        arr = np.asarray(values, dtype=np.float32)
        pixels = (arr + _broadcast_bias(self.bias, arr, channel_axis)) * self.scale
        return np.clip(np.rint(pixels), 0, 255).astype(np.uint8)

    @classmethod
    def single_bias(cls, scale: float, bias: float) -> "PixelDenormalizer":
        return cls(scale=scale, bias=(bias, bias, bias))

    @classmethod
    def zero_to_one(cls) -> "PixelDenormalizer":
        """Denormalizes values from ``[0, 1]`` to ``[0, 255]``."""
        return cls.single_bias(255.0, 0.0)

    @classmethod
    def negative_one_to_one(cls) -> "PixelDenormalizer":
        """Denormalizes values from ``[-1, 1]`` to ``[0, 255]``."""
        return cls.single_bias(255.0 / 2.0, 1.0)


def _broadcast_bias(bias, arr: np.ndarray, channel_axis: int) -> np.ndarray:
    b = np.asarray(bias, dtype=np.float32)
    if b[0] == b[1] == b[2] or arr.ndim == 0:
        return b[0]
    channels = arr.shape[channel_axis]
    b = b[:channels] if channels <= 3 else np.resize(b, channels)
    shape = [1] * arr.ndim
    shape[channel_axis] = channels
    return b.reshape(shape)


STANDARD_NORMALIZERS = {
    "[0,1]": PixelNormalizer.zero_to_one,
    "[-1,1]": PixelNormalizer.negative_one_to_one,
}

STANDARD_DENORMALIZERS = {
    "[0,1]": PixelDenormalizer.zero_to_one,
    "[-1,1]": PixelDenormalizer.negative_one_to_one,
}
