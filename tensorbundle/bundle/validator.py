# bundle/validator.py

"""
Structural validation of a bundle's ``model.json``.

Validation collects every problem it finds instead of stopping at the first
one, so a malformed bundle is reported in a single ``MalformedBundleError``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping

from tensorbundle.errors import MalformedBundleError
from tensorbundle.inference.modelType import ModelType

LAYER_TYPES = ("array", "image")
PIXEL_FORMATS = ("RGB", "BGR")
LAYOUTS = ("HWC", "CHW")
MODES = ("predict", "train", "eval")
STANDARD_RANGES = ("[0,1]", "[-1,1]")
DTYPES = ("float32", "float64", "float16", "uint8", "int32", "int64")


def _is_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_scale_bias(spec: Any, where: str, problems: List[str]) -> None:
    if not isinstance(spec, Mapping):
        problems.append(f"{where} must be an object")
        return
    if "standard" in spec:
        if spec["standard"] not in STANDARD_RANGES:
            problems.append(
                f"{where}.standard must be one of {list(STANDARD_RANGES)}, "
                f"got {spec['standard']!r}"
            )
        return
    if not (_is_number(spec.get("scale")) and _is_number(spec.get("bias"))):
        problems.append(f"{where} requires a standard range or numeric scale and bias")


def _check_normalize(spec: Any, where: str, problems: List[str]) -> None:
    if not isinstance(spec, Mapping):
        problems.append(f"{where} must be an object")
        return
    if "standard" in spec:
        if spec["standard"] not in STANDARD_RANGES:
            problems.append(
                f"{where}.standard must be one of {list(STANDARD_RANGES)}, "
                f"got {spec['standard']!r}"
            )
        return
    if not _is_number(spec.get("scale")):
        problems.append(f"{where} requires a standard range or a numeric scale")
        return
    bias = spec.get("bias")
    if _is_number(bias):
        return
    if isinstance(bias, Mapping) and all(_is_number(bias.get(c)) for c in "rgb"):
        return
    problems.append(f"{where}.bias must be a number or an object with r, g and b")


def _check_shape(shape: Any, where: str, problems: List[str]) -> bool:
    if not isinstance(shape, list) or not shape:
        problems.append(f"{where}.shape must be a non-empty list of integers")
        return False
    for dim in shape:
        if not isinstance(dim, int) or isinstance(dim, bool) or (dim <= 0 and dim != -1):
            problems.append(
                f"{where}.shape elements must be positive integers or -1, got {shape}"
            )
            return False
    if -1 in shape[1:]:
        problems.append(f"{where}.shape may only use -1 for the leading batch dimension")
        return False
    return True


def _check_layer(layer: Any, where: str, direction: str, problems: List[str]) -> None:
    if not isinstance(layer, Mapping):
        problems.append(f"{where} must be an object")
        return

    if not _is_str(layer.get("name")):
        problems.append(f"{where}.name is required")

    kind = layer.get("type")
    if kind not in LAYER_TYPES:
        problems.append(f"{where}.type must be one of {list(LAYER_TYPES)}, got {kind!r}")

    shape_ok = _check_shape(layer.get("shape"), where, problems)

    if "dtype" in layer and layer["dtype"] not in DTYPES:
        problems.append(f"{where}.dtype must be one of {list(DTYPES)}")

    if kind == "image":
        if shape_ok:
            dims = layer["shape"][1:] if layer["shape"][0] == -1 else layer["shape"]
            if len(dims) != 3:
                problems.append(
                    f"{where}.shape of an image layer needs three dimensions "
                    f"plus an optional -1 batch dimension"
                )
        if layer.get("format") not in PIXEL_FORMATS:
            problems.append(f"{where}.format must be one of {list(PIXEL_FORMATS)}")
        if "layout" in layer and layer["layout"] not in LAYOUTS:
            problems.append(f"{where}.layout must be one of {list(LAYOUTS)}")
        if direction == "inputs" and "normalize" in layer:
            _check_normalize(layer["normalize"], f"{where}.normalize", problems)
        if direction == "outputs" and "denormalize" in layer:
            _check_normalize(layer["denormalize"], f"{where}.denormalize", problems)

    if "labels" in layer and not _is_str(layer["labels"]):
        problems.append(f"{where}.labels must be a file name")

    if direction == "inputs" and "quantize" in layer:
        _check_scale_bias(layer["quantize"], f"{where}.quantize", problems)
    if direction == "outputs" and "dequantize" in layer:
        _check_scale_bias(layer["dequantize"], f"{where}.dequantize", problems)


def collect_problems(info: Any) -> List[str]:
    """Return every structural problem found in a parsed ``model.json``."""
    problems: List[str] = []

    if not isinstance(info, Mapping):
        return ["model.json must contain a JSON object"]

    for key in ("id", "name", "version"):
        if not _is_str(info.get(key)):
            problems.append(f"'{key}' is required and must be a non-empty string")

    for key in ("details", "author", "license"):
        if key in info and not isinstance(info[key], str):
            problems.append(f"'{key}' must be a string")

    model = info.get("model")
    if not isinstance(model, Mapping):
        problems.append("'model' is required and must be an object")
    else:
        if not _is_str(model.get("file")):
            problems.append("'model.file' is required")
        backend = model.get("backend")
        if backend is not None and backend not in ModelType.names():
            problems.append(
                f"'model.backend' must be one of {ModelType.names()}, got {backend!r}"
            )
        if "quantized" in model and not isinstance(model["quantized"], bool):
            problems.append("'model.quantized' must be a boolean")
        modes = model.get("modes", ["predict"])
        if not isinstance(modes, list) or any(m not in MODES for m in modes):
            problems.append(f"'model.modes' entries must be in {list(MODES)}")

    for direction in ("inputs", "outputs"):
        layers = info.get(direction)
        if not isinstance(layers, list) or not layers:
            problems.append(f"'{direction}' is required and must be a non-empty list")
            continue
        names: Dict[str, int] = {}
        for i, layer in enumerate(layers):
            _check_layer(layer, f"{direction}[{i}]", direction, problems)
            if isinstance(layer, Mapping) and _is_str(layer.get("name")):
                if layer["name"] in names:
                    problems.append(f"{direction} name '{layer['name']}' is duplicated")
                names[layer["name"]] = i

    return problems


def validate_info(info: Any, location) -> None:
    """Raise ``MalformedBundleError`` if ``info`` fails structural validation."""
    problems = collect_problems(info)
    if problems:
        raise MalformedBundleError(location, problems)
