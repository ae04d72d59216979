# inference/model/backends/torch_backend.py
"""
PyTorch backend implementation.
"""

from __future__ import annotations

from contextlib import nullcontext
from typing import Sequence

import torch

from tensorbundle.utils import get_logger

from .base import Feeds, InferenceBackend, NamedOutputs, name_outputs

logger = get_logger(__name__)


class TorchBackend(InferenceBackend):
    """Inference backend based on PyTorch."""

    def __init__(
        self,
        model_path: str,
        device: str = "cpu",
        *,
        input_names: Sequence[str] = ("input",),
        output_names: Sequence[str] = ("output",),
        use_amp: bool = False,
    ):
        """Initialize PyTorch backend with automatic model type detection.

        Tries TorchScript first, then falls back to ``torch.load`` for a
        pickled ``nn.Module``.

        Args:
            model_path (str): Path to PyTorch model file (.pt, .pth).
            device (str, optional): Target device. Automatically falls back to CPU
                if CUDA is requested but unavailable. Defaults to "cpu".
            input_names: Declared input names, passed positionally in this order.
            output_names: Declared output names, used to label tuple outputs.
            use_amp (bool, optional): Enable automatic mixed precision (FP16) on
                CUDA. Defaults to False.

        Raises:
            TypeError: If the file holds something other than a callable module.
        """

        # --- Device selection: CPU-first; use CUDA only if requested & available
        req = str(device or "cpu").lower()
        if req.startswith("cuda") and torch.cuda.is_available():
            self.device = torch.device("cuda")
        else:
            if req.startswith("cuda") and not torch.cuda.is_available():
                logger.warning("CUDA requested but not available; falling back to CPU.")
            self.device = torch.device("cpu")

        loaded_obj = None

        # 1) Try TorchScript first
        try:
            logger.info("Trying torch.jit.load: %s", model_path)
            loaded_obj = torch.jit.load(model_path, map_location=self.device)
            logger.info("Loaded TorchScript model from %s", model_path)
        except Exception as e_jit:
            logger.info(
                "torch.jit.load failed (%s). Falling back to torch.load.", str(e_jit)
            )

        # 2) Fallback: raw torch.load of a pickled module
        if loaded_obj is None:
            logger.info("Trying torch.load: %s", model_path)
            loaded_obj = torch.load(
                model_path, map_location=self.device, weights_only=False
            )
            logger.info("Loaded object type: %s", type(loaded_obj).__name__)

        model = loaded_obj

        # 3) Unwrap DataParallel if present
        if isinstance(model, torch.nn.DataParallel):
            logger.info("Unwrapping DataParallel container.")
            model = model.module

        if not callable(model):
            raise TypeError(
                f"{model_path} does not contain a runnable module "
                f"(got {type(model).__name__})"
            )

        # 4) Finalize
        if hasattr(model, "eval"):
            model.eval()
        if hasattr(model, "parameters"):
            for p in model.parameters():
                p.requires_grad_(False)

        self.model = model
        self.input_names = list(input_names)
        self.output_names = list(output_names)
        # AMP only makes sense on CUDA
        self.use_amp = bool(use_amp and self.device.type == "cuda")

    def run(self, feeds: Feeds) -> NamedOutputs:
        """Run PyTorch inference with optional mixed precision.

        Args:
            feeds: Named input arrays, passed positionally in declared order.

        Returns:
            Named numpy outputs.
        """

        args = [
            torch.as_tensor(feeds[name]).to(self.device, non_blocking=True)
            for name in self.input_names
        ]
        logger.debug("Torch input shapes: %s", [tuple(a.shape) for a in args])

        autocast_ctx = (
            torch.autocast(device_type=self.device.type, dtype=torch.float16)
            if self.use_amp
            else nullcontext()
        )

        with torch.inference_mode(), autocast_ctx:
            outputs = self.model(*args)

        named = name_outputs(outputs, self.output_names)
        logger.debug("Torch output shapes: %s", {k: v.shape for k, v in named.items()})
        return named

    def close(self) -> None:
        """Release PyTorch model and clear GPU memory."""

        self.model = None
        if self.device.type == "cuda":
            torch.cuda.empty_cache()

    def warmup(self, feeds: Feeds, runs: int = 2) -> None:
        """Warm up PyTorch backend using the same settings as production runs."""

        for _ in range(max(1, runs)):
            self.run(feeds)

        logger.info("TorchBackend warm-up completed (runs=%d).", runs)
