"""
Element-wise transforms applied to layer data: quantization and pixel normalization.
"""

from .normalization import PixelDenormalizer, PixelNormalizer
from .quantization import Dequantizer, Quantizer

__all__ = ["Quantizer", "Dequantizer", "PixelNormalizer", "PixelDenormalizer"]
