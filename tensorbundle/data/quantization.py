# data/quantization.py

"""
Quantization of float inputs to 8 bit values and dequantization of 8 bit outputs.

    quantized   = (value + bias) * scale
    dequantized = value * scale + bias
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class Quantizer:
    """Maps float values into the ``[0, 255]`` range of a quantized layer."""

    scale: float
    bias: float = 0.0

    def __call__(self, values) -> np.ndarray:
        arr = np.asarray(values, dtype=np.float32)
        out = np.trunc((arr + self.bias) * self.scale)
        return np.clip(out, 0, 255).astype(np.uint8)

    @classmethod
    def zero_to_one(cls) -> "Quantizer":
        """Converts values from ``[0, 1]`` to ``[0, 255]``."""
        return cls(scale=255.0, bias=0.0)

    @classmethod
    def negative_one_to_one(cls) -> "Quantizer":
        """Converts values from ``[-1, 1]`` to ``[0, 255]``."""
        return cls(scale=255.0 / 2.0, bias=1.0)


@dataclass(frozen=True)
class Dequantizer:
    """Maps ``[0, 255]`` outputs of a quantized layer back to floats."""

    scale: float
    bias: float = 0.0

    def __call__(self, values) -> np.ndarray:
        arr = np.asarray(values, dtype=np.float32)
        return (arr * self.scale + self.bias).astype(np.float32)

    @classmethod
    def zero_to_one(cls) -> "Dequantizer":
        """Converts values from ``[0, 255]`` to ``[0, 1]``."""
        return cls(scale=1.0 / 255.0, bias=0.0)

    @classmethod
    def negative_one_to_one(cls) -> "Dequantizer":
        """Converts values from ``[0, 255]`` to ``[-1, 1]``."""
        return cls(scale=2.0 / 255.0, bias=-1.0)


STANDARD_QUANTIZERS = {
    "[0,1]": Quantizer.zero_to_one,
    "[-1,1]": Quantizer.negative_one_to_one,
}

STANDARD_DEQUANTIZERS = {
    "[0,1]": Dequantizer.zero_to_one,
    "[-1,1]": Dequantizer.negative_one_to_one,
}
