# inference/model/backends/torchscript_backend.py

"""
TorchScript backend implementation.
"""

from __future__ import annotations

from typing import Sequence

import torch

from tensorbundle.utils import get_logger

from .base import Feeds, InferenceBackend, NamedOutputs, name_outputs

logger = get_logger(__name__)


class TorchScriptBackend(InferenceBackend):
    """Inference backend based on TorchScript."""

    def __init__(
        self,
        model_path: str,
        device: str = "cpu",
        *,
        input_names: Sequence[str] = ("input",),
        output_names: Sequence[str] = ("output",),
        num_threads: int | None = None,
    ):
        """Initialize TorchScript backend.

        Args:
            model_path (str): Path to a TorchScript archive (.pt, .pts, .torchscript).
            device (str, optional): Target device. Falls back to CPU if CUDA
                unavailable. Defaults to "cpu".
            input_names: Declared input names, passed positionally in this order.
            output_names: Declared output names, used to label tuple outputs.
            num_threads (int | None, optional): Number of CPU threads for inference.
                Only applied when using CPU device.
        """

        req = str(device or "cpu").lower()
        if req.startswith("cuda") and torch.cuda.is_available():
            self.device = torch.device(req)
        else:
            if req.startswith("cuda"):
                logger.warning("CUDA requested but not available; falling back to CPU.")
            self.device = torch.device("cpu")

        if num_threads and self.device.type == "cpu":
            torch.set_num_threads(num_threads)

        logger.info("Loading TorchScript model %s with device=%s", model_path, self.device)

        self.model = torch.jit.load(model_path, map_location=self.device)
        self.model.eval()
        self.input_names = list(input_names)
        self.output_names = list(output_names)

    def run(self, feeds: Feeds) -> NamedOutputs:
        """Run the scripted module on the named inputs.

        Inputs are passed positionally in declared order. Tuple outputs are
        named in declared output order.
        """
        args = [
            torch.as_tensor(feeds[name]).to(self.device) for name in self.input_names
        ]
        logger.debug("TorchScript input shapes: %s", [tuple(a.shape) for a in args])

        with torch.inference_mode():
            outputs = self.model(*args)

        named = name_outputs(outputs, self.output_names)
        logger.debug(
            "TorchScript output shapes: %s", {k: v.shape for k, v in named.items()}
        )
        return named

    def close(self) -> None:
        """Release TorchScript model and clear GPU cache."""

        self.model = None
        if self.device.type == "cuda":
            torch.cuda.empty_cache()

    def warmup(self, feeds: Feeds, runs: int = 2) -> None:
        """Warm up the scripted module so the first real run has stable latency."""

        for _ in range(max(1, runs)):
            self.run(feeds)

        logger.info("TorchScriptBackend warm-up completed (runs=%d).", runs)
