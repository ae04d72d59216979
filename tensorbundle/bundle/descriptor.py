# bundle/descriptor.py

"""
Immutable description of a model bundle, built from its ``model.json``.

A bundle is a directory (conventionally ``<name>.tiobundle``) holding::

    model.json      metadata, input and output layer descriptions
    <model file>    the serialized model, e.g. model.pt or model.onnx
    assets/         optional extra files such as labels.txt
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, FrozenSet, Mapping, Optional, Tuple

import numpy as np

from tensorbundle.data.normalization import (
    STANDARD_DENORMALIZERS,
    STANDARD_NORMALIZERS,
    PixelDenormalizer,
    PixelNormalizer,
)
from tensorbundle.data.quantization import (
    STANDARD_DEQUANTIZERS,
    STANDARD_QUANTIZERS,
    Dequantizer,
    Quantizer,
)
from tensorbundle.errors import MalformedBundleError
from tensorbundle.utils import get_logger

from .validator import validate_info

logger = get_logger(__name__)

MODEL_INFO_FILE = "model.json"
ASSETS_DIRECTORY = "assets"
BUNDLE_EXTENSIONS = (".tiobundle", ".tfbundle")


@dataclass(frozen=True)
class LayerDescription:
    """Describes one input or output layer of a model."""

    name: str
    kind: str
    shape: Tuple[int, ...]
    dtype: str = "float32"
    labels: Optional[Tuple[str, ...]] = None
    quantizer: Optional[Quantizer] = None
    dequantizer: Optional[Dequantizer] = None
    normalizer: Optional[PixelNormalizer] = None
    denormalizer: Optional[PixelDenormalizer] = None
    pixel_format: Optional[str] = None
    channels_first: bool = False

    @property
    def batched(self) -> bool:
        return self.shape[0] == -1

    @property
    def element_shape(self) -> Tuple[int, ...]:
        """The declared shape without the batch dimension."""
        return self.shape[1:] if self.batched else self.shape

    @property
    def image_volume(self) -> Tuple[int, int, int]:
        """``(height, width, channels)`` of an image layer."""
        dims = self.element_shape
        if self.channels_first:
            return dims[1], dims[2], dims[0]
        return dims[0], dims[1], dims[2]

    @property
    def channel_axis(self) -> int:
        return -3 if self.channels_first else -1

    def matches(self, shape: Tuple[int, ...]) -> bool:
        """True if an array of ``shape`` conforms to the declared shape."""
        if len(shape) != len(self.shape):
            return False
        return all(d == -1 or d == s for d, s in zip(self.shape, shape))

    def prepare(self, arr: np.ndarray) -> np.ndarray:
        """Apply the input transforms declared for this layer.

        Raw ``uint8`` pixels are normalized when the layer declares a
        normalizer; float data for a quantized layer is quantized.
        """
        if self.normalizer is not None and np.issubdtype(arr.dtype, np.unsignedinteger):
            arr = self.normalizer(arr, channel_axis=self.channel_axis)
        if self.quantizer is not None and np.issubdtype(arr.dtype, np.floating):
            arr = self.quantizer(arr)
        return arr.astype(self.dtype, copy=False)

    def finish(self, arr: np.ndarray):
        """Apply output transforms; labeled outputs become ``{label: score}``."""
        arr = np.asarray(arr)
        if self.dequantizer is not None:
            arr = self.dequantizer(arr)
        elif self.denormalizer is not None:
            arr = self.denormalizer(arr, channel_axis=self.channel_axis)

        if self.labels is None:
            return arr

        flat = arr
        while flat.ndim > 1 and flat.shape[0] == 1:
            flat = flat[0]
        if flat.ndim != 1 or flat.shape[0] != len(self.labels):
            raise ValueError(
                f"Output '{self.name}' has shape {arr.shape}, "
                f"which does not match {len(self.labels)} labels"
            )
        return {label: float(score) for label, score in zip(self.labels, flat)}


@dataclass(frozen=True)
class BundleDescriptor:
    """Everything known about a model without loading it."""

    identifier: str
    location: Path
    name: str
    version: str
    model_file: str
    inputs: Tuple[LayerDescription, ...]
    outputs: Tuple[LayerDescription, ...]
    details: str = ""
    author: str = ""
    license: str = ""
    backend: Optional[str] = None
    model_type: str = "unknown"
    quantized: bool = False
    modes: FrozenSet[str] = frozenset({"predict"})
    info: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def model_path(self) -> Path:
        return self.location / self.model_file

    def input(self, name: str) -> LayerDescription:
        for layer in self.inputs:
            if layer.name == name:
                return layer
        raise KeyError(name)

    def output(self, name: str) -> LayerDescription:
        for layer in self.outputs:
            if layer.name == name:
                return layer
        raise KeyError(name)

    @property
    def classification_output(self) -> Optional[LayerDescription]:
        """The first output that carries labels, if any."""
        for layer in self.outputs:
            if layer.labels is not None:
                return layer
        return None


def _scale_bias(spec: Mapping[str, Any], standards, factory):
    if "standard" in spec:
        return standards[spec["standard"]]()
    return factory(scale=float(spec["scale"]), bias=float(spec["bias"]))


def _pixel_transform(spec: Mapping[str, Any], standards, cls):
    if "standard" in spec:
        return standards[spec["standard"]]()
    bias = spec.get("bias", 0.0)
    if isinstance(bias, Mapping):
        channels = (float(bias["r"]), float(bias["g"]), float(bias["b"]))
    else:
        channels = (float(bias),) * 3
    return cls(scale=float(spec["scale"]), bias=channels)


def _read_labels(location: Path, filename: str) -> Tuple[str, ...]:
    path = location / ASSETS_DIRECTORY / filename
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise MalformedBundleError(
            location, [f"labels file '{filename}' could not be read: {e}"]
        ) from e

    labels = tuple(line.strip() for line in text.strip().splitlines())
    problems = []
    if any(not label for label in labels):
        problems.append(f"labels file '{filename}' contains blank lines")
    duplicates = sorted({label for label in labels if label and labels.count(label) > 1})
    if duplicates:
        problems.append(f"labels file '{filename}' repeats labels {duplicates}")
    if problems:
        raise MalformedBundleError(location, problems)
    return labels


def parse_layer(
    spec: Mapping[str, Any], location: Path, direction: str, quantized: bool
) -> LayerDescription:
    kind = spec["type"]
    default_dtype = "uint8" if quantized else "float32"
    labels = _read_labels(location, spec["labels"]) if "labels" in spec else None

    quantizer = dequantizer = normalizer = denormalizer = None
    if direction == "inputs":
        if "quantize" in spec:
            quantizer = _scale_bias(spec["quantize"], STANDARD_QUANTIZERS, Quantizer)
        if kind == "image" and "normalize" in spec:
            normalizer = _pixel_transform(
                spec["normalize"], STANDARD_NORMALIZERS, PixelNormalizer
            )
    else:
        if "dequantize" in spec:
            dequantizer = _scale_bias(
                spec["dequantize"], STANDARD_DEQUANTIZERS, Dequantizer
            )
        if kind == "image" and "denormalize" in spec:
            denormalizer = _pixel_transform(
                spec["denormalize"], STANDARD_DENORMALIZERS, PixelDenormalizer
            )

    return LayerDescription(
        name=spec["name"],
        kind=kind,
        shape=tuple(int(d) for d in spec["shape"]),
        dtype=spec.get("dtype", default_dtype),
        labels=labels,
        quantizer=quantizer,
        dequantizer=dequantizer,
        normalizer=normalizer,
        denormalizer=denormalizer,
        pixel_format=spec.get("format") if kind == "image" else None,
        channels_first=kind == "image" and spec.get("layout", "HWC") == "CHW",
    )


def descriptor_from_info(info: Mapping[str, Any], location: Path) -> BundleDescriptor:
    """Validate a parsed ``model.json`` and build its descriptor."""
    location = Path(location)
    validate_info(info, location)

    model = info["model"]
    quantized = bool(model.get("quantized", False))

    inputs = tuple(parse_layer(s, location, "inputs", quantized) for s in info["inputs"])
    outputs = tuple(
        parse_layer(s, location, "outputs", quantized) for s in info["outputs"]
    )

    return BundleDescriptor(
        identifier=info["id"],
        location=location,
        name=info["name"],
        version=info["version"],
        model_file=model["file"],
        inputs=inputs,
        outputs=outputs,
        details=info.get("details", ""),
        author=info.get("author", ""),
        license=info.get("license", ""),
        backend=model.get("backend"),
        model_type=model.get("type", "unknown"),
        quantized=quantized,
        modes=frozenset(model.get("modes", ["predict"])),
        info=MappingProxyType(dict(info)),
    )


def read_info(location: Path) -> Mapping[str, Any]:
    """Read and decode ``model.json`` from a bundle directory."""
    info_path = Path(location) / MODEL_INFO_FILE
    try:
        with open(info_path, "r", encoding="utf-8") as f:
            return json.load(f)
    except UnicodeDecodeError as e:
        raise MalformedBundleError(location, [f"{MODEL_INFO_FILE} is not valid UTF-8: {e}"]) from e
    except json.JSONDecodeError as e:
        raise MalformedBundleError(location, [f"{MODEL_INFO_FILE} is not valid JSON: {e}"]) from e


def load_descriptor(location: Path) -> BundleDescriptor:
    logger.debug("Reading bundle descriptor from %s", location)
    return descriptor_from_info(read_info(location), Path(location))
