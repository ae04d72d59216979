# inference/model/wrapper.py

"""
Main entry point for model inference.

A ``Model`` is instantiated from a bundle descriptor in the unloaded state.
``load`` selects a backend from the bundle's declared backend or the model
file extension, ``run`` validates inputs against the declared layers and
delegates to the backend, ``unload`` releases the backend.
"""

from __future__ import annotations

import os
import threading
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence

import numpy as np
import torch

from tensorbundle.errors import (
    BusyError,
    InferenceError,
    InvalidStateError,
    LoadError,
    NotLoadedError,
    ShapeMismatchError,
)
from tensorbundle.general import Profiler
from tensorbundle.utils import get_logger

from ..model.backends.base import Feeds, InferenceBackend, to_numpy
from ..modelType import ModelType

logger = get_logger(__name__)


def make_backend(
    model_path: str,
    device: str,
    backend: Optional[str] = None,
    *,
    input_names: Sequence[str] = (),
    output_names: Sequence[str] = (),
) -> InferenceBackend:
    """Factory function to create appropriate inference backend.

    The backend is taken from ``backend`` when given, otherwise detected
    from the model file extension:

        - .onnx → ONNX Runtime backend
        - .pts/.torchscript → TorchScript backend
        - .pt/.pth → PyTorch backend (tries TorchScript first)
        - .xml/.bin or a directory of them → OpenVINO backend

    Args:
        model_path (str): Path to the model file.
        device (str): Target device, "cpu" or "cuda".
        backend (str, optional): Explicit backend name from ``model.json``.
        input_names: Declared input names in order.
        output_names: Declared output names in order.

    Returns:
        InferenceBackend: Initialized backend instance ready for inference.

    Raises:
        ValueError: If the backend cannot be determined.
        FileNotFoundError: If model_path does not exist.
        ImportError: If required backend dependencies are not installed.
    """

    model_type = (
        ModelType.from_name(backend) if backend else ModelType.from_extension(model_path)
    )
    logger.info(f"Creating {model_type.value} backend for model: {model_path}")
    names = dict(input_names=input_names, output_names=output_names)

    if model_type == ModelType.ONNX:
        from .backends.onnx_backend import OnnxBackend

        return OnnxBackend(model_path, device, **names)

    if model_type == ModelType.TORCHSCRIPT:
        from .backends.torchscript_backend import TorchScriptBackend

        return TorchScriptBackend(model_path, device, **names)

    if model_type == ModelType.PYTORCH:
        from .backends.torch_backend import TorchBackend

        return TorchBackend(model_path, device, **names)

    if model_type == ModelType.OPENVINO:
        from .backends.openvino_backend import OpenVinoBackend

        return OpenVinoBackend(model_path, device, **names)

    raise NotImplementedError(f"ModelType {model_type} is not supported.")


class LoadState(Enum):
    UNLOADED = "unloaded"
    LOADED = "loaded"
    FAILED = "failed"


class Model:
    """
    A loadable, runnable model instantiated from a bundle descriptor.

    Models are not thread safe: only one ``run`` may be in flight per
    instance, and a concurrent call fails fast with ``BusyError``. ``unload``
    waits for an in-flight run to finish before releasing the backend.

    Lifecycle::

        UNLOADED --load ok--> LOADED --unload--> UNLOADED
        UNLOADED --load fails--> FAILED --load (retry)--> LOADED | FAILED
    """

    def __init__(self, descriptor, device: str = "cpu", warmup: bool = False):
        self.descriptor = descriptor
        self.device = device
        self.warmup_on_load = warmup
        self._backend: Optional[InferenceBackend] = None
        self._state = LoadState.UNLOADED
        self._last_error: Optional[BaseException] = None
        self._lock = threading.Lock()
        self._run_lock = threading.Lock()

    @property
    def identifier(self) -> str:
        return self.descriptor.identifier

    @property
    def state(self) -> LoadState:
        with self._lock:
            return self._state

    @property
    def loaded(self) -> bool:
        return self.state is LoadState.LOADED

    @property
    def last_error(self) -> Optional[BaseException]:
        """The cause of the most recent failed load, if any."""
        return self._last_error

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Acquire the backend.

        Raises:
            InvalidStateError: If the model is already loaded.
            LoadError: If the backend could not be created. The model is left
                in ``FAILED`` with nothing acquired.
        """
        with self._lock:
            if self._state is LoadState.LOADED:
                raise InvalidStateError(f"Model '{self.identifier}' is already loaded")

            if self._state is LoadState.FAILED:
                logger.info("Retrying load: model_id=%s", self.identifier)

            backend = None
            profiler = Profiler()
            try:
                with profiler:
                    model_path = str(self.descriptor.model_path)
                    if not os.path.exists(model_path):
                        raise FileNotFoundError(f"Model file not found: {model_path}")
                    backend = make_backend(
                        model_path,
                        self.device,
                        self.descriptor.backend,
                        input_names=[l.name for l in self.descriptor.inputs],
                        output_names=[l.name for l in self.descriptor.outputs],
                    )
                    if self.warmup_on_load:
                        self._warmup(backend)
            except Exception as e:
                if backend is not None:
                    self._release(backend)
                self._state = LoadState.FAILED
                self._last_error = e
                logger.error(
                    "Model load failed: model_id=%s error=%s", self.identifier, e
                )
                raise LoadError(f"Failed to load model '{self.identifier}': {e}") from e

            self._backend = backend
            self._state = LoadState.LOADED
            self._last_error = None

        logger.info(
            "Model loaded: model_id=%s backend=%s device=%s duration_ms=%.2f",
            self.identifier,
            type(backend).__name__,
            self.device,
            profiler.elapsed_ms,
        )

    def unload(self) -> None:
        """Release the backend. Safe to call repeatedly; releases at most once."""
        with self._run_lock, self._lock:
            backend, self._backend = self._backend, None
            if self._state is LoadState.LOADED:
                self._state = LoadState.UNLOADED
            if backend is None:
                return
            self._release(backend, raise_errors=True)

        logger.info("Model unloaded: model_id=%s", self.identifier)

    close = unload

    def _release(self, backend: InferenceBackend, raise_errors: bool = False) -> None:
        try:
            backend.close()
        except Exception:
            if raise_errors:
                raise
            logger.exception("Error while releasing backend of %s", self.identifier)

    def _warmup(self, backend: InferenceBackend, runs: int = 2) -> None:
        feeds = {
            layer.name: np.zeros(
                tuple(1 if d == -1 else d for d in layer.shape), dtype=layer.dtype
            )
            for layer in self.descriptor.inputs
        }
        if hasattr(backend, "warmup"):
            backend.warmup(feeds, runs=runs)
        else:
            logger.info(f"{backend.__class__.__name__} does not support warm-up. Skipping.")

    def __enter__(self) -> "Model":
        if not self.loaded:
            self.load()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.unload()

    def __del__(self):
        backend = getattr(self, "_backend", None)
        if backend is not None:
            self._backend = None
            self._release(backend)

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def run(self, inputs) -> Dict[str, Any]:
        """
        Run inference synchronously.

        Args:
            inputs: A single array for single-input models, or a mapping of
                input name to array. Torch tensors are accepted.

        Returns:
            Output name to value. Outputs that declare labels are returned as
            ``{label: score}`` dicts, other outputs as numpy arrays.

        Raises:
            BusyError: Another run is in flight on this instance.
            NotLoadedError: The model is not loaded.
            ShapeMismatchError: An input does not match its declared shape.
            InferenceError: The backend failed.
        """
        if not self._run_lock.acquire(blocking=False):
            raise BusyError(f"Model '{self.identifier}' is already running")
        try:
            with self._lock:
                if self._state is not LoadState.LOADED:
                    raise NotLoadedError(
                        f"Model '{self.identifier}' is {self._state.value}, not loaded"
                    )
                backend = self._backend

            feeds = self._prepare(inputs)

            profiler = Profiler()
            try:
                with profiler:
                    raw = backend.run(feeds)
            except Exception as e:
                logger.error("Inference failed: model_id=%s error=%s", self.identifier, e)
                raise InferenceError(f"Inference failed for '{self.identifier}': {e}") from e

            outputs = self._finish(raw)
            logger.info(
                "Inference completed: model_id=%s duration_ms=%.2f",
                self.identifier,
                profiler.elapsed_ms,
            )
            return outputs
        finally:
            self._run_lock.release()

    def _prepare(self, inputs) -> Feeds:
        layers = self.descriptor.inputs

        if isinstance(inputs, Mapping):
            named = dict(inputs)
        else:
            if len(layers) != 1:
                raise ShapeMismatchError(
                    f"Model '{self.identifier}' declares {len(layers)} inputs; "
                    f"pass a mapping of input name to array"
                )
            named = {layers[0].name: inputs}

        declared = {layer.name for layer in layers}
        unexpected = sorted(set(named) - declared)
        if unexpected:
            raise ShapeMismatchError(f"Unexpected inputs {unexpected}")

        feeds: Feeds = {}
        for layer in layers:
            if layer.name not in named:
                raise ShapeMismatchError(f"Missing input '{layer.name}'")

            value = named[layer.name]
            try:
                arr = to_numpy(value) if isinstance(value, torch.Tensor) else np.asarray(value)
            except (TypeError, ValueError) as e:
                raise ShapeMismatchError(f"Input '{layer.name}' is not an array: {e}") from e
            if layer.batched and arr.ndim == len(layer.shape) - 1:
                arr = arr[np.newaxis, ...]
            if not layer.matches(arr.shape):
                raise ShapeMismatchError(
                    f"Input '{layer.name}' has shape {tuple(arr.shape)}, "
                    f"expected {layer.shape}"
                )
            try:
                feeds[layer.name] = layer.prepare(arr)
            except (TypeError, ValueError) as e:
                raise ShapeMismatchError(
                    f"Input '{layer.name}' cannot be converted to {layer.dtype}: {e}"
                ) from e
        return feeds

    def _finish(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        outputs: Dict[str, Any] = {}
        for layer in self.descriptor.outputs:
            if layer.name not in raw:
                raise InferenceError(
                    f"Backend did not produce declared output '{layer.name}'"
                )
            try:
                outputs[layer.name] = layer.finish(raw[layer.name])
            except (TypeError, ValueError) as e:
                raise InferenceError(str(e)) from e

        for name, value in raw.items():
            outputs.setdefault(name, value)
        return outputs

    def __repr__(self) -> str:
        return f"Model({self.identifier!r}, state={self._state.value})"
