# inference/model/backends/onnx_backend.py

from __future__ import annotations

from typing import List, Sequence

import onnxruntime as ort

from tensorbundle.utils import get_logger

from .base import Feeds, InferenceBackend, NamedOutputs

logger = get_logger(__name__)


class OnnxBackend(InferenceBackend):
    """
    ONNX Runtime backend implementation.

    Features:
        - Automatic provider selection ("cuda" → CUDAExecutionProvider).
        - Declared input/output names are matched against the session's own
          names; when they differ, inputs and outputs are paired by position.

    Example:
        >>> backend = OnnxBackend("model.onnx", "cpu", input_names=["image"])
        >>> outputs = backend.run({"image": batch})
    """

    def __init__(
        self,
        model_path: str,
        device: str = "cpu",
        *,
        input_names: Sequence[str] = (),
        output_names: Sequence[str] = (),
    ):
        """
        Initialize ONNX Runtime backend for model inference.

        Args:
            model_path (str): Path to the ONNX model file (.onnx extension).
            device (str, optional): Target device ("cuda" or "cpu").
            input_names: Input names declared by the bundle.
            output_names: Output names declared by the bundle.
        """
        sess_options = ort.SessionOptions()
        sess_options.graph_optimization_level = (
            ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        )
        sess_options.enable_cpu_mem_arena = True

        if device.lower().startswith("cuda"):
            # GPU execution: avoid hidden CPU fallback
            providers = ["CUDAExecutionProvider"]
            sess_options.intra_op_num_threads = 1
            sess_options.inter_op_num_threads = 1
        else:
            providers = ["CPUExecutionProvider"]

        logger.info("Initializing ONNX Runtime with providers=%s", providers)

        self.session = ort.InferenceSession(
            model_path, sess_options=sess_options, providers=providers
        )
        logger.info(f"ONNX Runtime providers: {self.session.get_providers()}")

        self.session_inputs: List[str] = [inp.name for inp in self.session.get_inputs()]
        self.session_outputs: List[str] = [out.name for out in self.session.get_outputs()]
        self.input_names = list(input_names) or list(self.session_inputs)
        self.output_names = list(output_names) or list(self.session_outputs)
        self.device = device.lower()

    def _session_feed_name(self, index: int, name: str) -> str:
        if name in self.session_inputs:
            return name
        return self.session_inputs[index]

    def run(self, feeds: Feeds) -> NamedOutputs:
        """
        Run ONNX inference on named inputs.

        Returns:
            Outputs keyed by the declared output names (falling back to
            positional pairing with the session outputs).
        """
        session_feeds = {
            self._session_feed_name(i, name): feeds[name]
            for i, name in enumerate(self.input_names)
        }

        ort_outputs = self.session.run(self.session_outputs, session_feeds)

        named: NamedOutputs = {}
        for i, value in enumerate(ort_outputs):
            session_name = self.session_outputs[i]
            if session_name in self.output_names:
                named[session_name] = value
            elif i < len(self.output_names):
                named[self.output_names[i]] = value
            else:
                named[session_name] = value

        logger.debug("ONNX output shapes: %s", {k: v.shape for k, v in named.items()})
        return named

    def close(self) -> None:
        """Release ONNX Runtime session resources."""

        self.session = None

    def warmup(self, feeds: Feeds, runs: int = 2) -> None:
        """Warm up ONNX Runtime to reduce first-inference latency."""
        for _ in range(max(1, runs)):
            self.run(feeds)

        logger.info("OnnxBackend warm-up completed (runs=%d).", runs)
