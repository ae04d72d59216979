# inference/model/backends/openvino_backend.py

"""
OpenVINO backend implementation.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

from tensorbundle.utils import get_logger

from .base import Feeds, InferenceBackend, NamedOutputs

logger = get_logger(__name__)

try:
    import openvino as ov

    OPENVINO_AVAILABLE = True
except ImportError:
    OPENVINO_AVAILABLE = False


class OpenVinoBackend(InferenceBackend):
    """Inference backend based on OpenVINO Runtime."""

    def __init__(
        self,
        model_path: str,
        device: str = "CPU",
        *,
        input_names: Sequence[str] = (),
        output_names: Sequence[str] = (),
        num_threads: int | None = None,
    ):
        """Initialize OpenVINO backend for optimized CPU/GPU inference.

        Args:
            model_path (str): Path to OpenVINO model. Can be:
                - Directory containing .xml and .bin files
                - Direct path to .xml file
            device (str, optional): "cpu"/"CPU", "GPU" or "AUTO". "cuda" maps to "GPU".
            input_names: Input names declared by the bundle, paired by position.
            output_names: Output names declared by the bundle, paired by position.
            num_threads (int | None, optional): Number of CPU streams.

        Raises:
            ImportError: If OpenVINO is not installed.
            FileNotFoundError: If no .xml file found in directory.
        """

        if not OPENVINO_AVAILABLE:
            raise ImportError(
                "OpenVINO is not installed. Install with: pip install openvino"
            )

        device = device.upper()
        self.device = "GPU" if device.startswith("CUDA") else device
        self.core = ov.Core()

        if self.device == "CPU" and num_threads:
            self.core.set_property("CPU", {"NUM_STREAMS": str(num_threads)})

        logger.info("Initializing OpenVINO with device=%s", self.device)

        model_path = Path(model_path)

        if model_path.is_dir():
            xml_files = list(model_path.glob("*.xml"))
            if not xml_files:
                raise FileNotFoundError(f"No .xml model file found in {model_path}")
            model_file = xml_files[0]
        else:
            model_file = model_path

        self.model = self.core.read_model(model_file)
        self.compiled_model = self.core.compile_model(self.model, self.device)

        self.output_layers: List = [
            self.compiled_model.output(i)
            for i in range(len(self.compiled_model.outputs))
        ]
        self.input_names = list(input_names)
        self.output_names = list(output_names) or [
            layer.any_name for layer in self.output_layers
        ]

    def run(self, feeds: Feeds) -> NamedOutputs:
        """Run the compiled model; inputs and outputs are paired by position."""

        inputs = [feeds[name] for name in self.input_names] or list(feeds.values())
        logger.debug("OpenVINO input shapes: %s", [a.shape for a in inputs])

        outputs = self.compiled_model(inputs)

        named = {
            name: outputs[layer] for name, layer in zip(self.output_names, self.output_layers)
        }
        logger.debug("OpenVINO output shapes: %s", {k: v.shape for k, v in named.items()})
        return named

    def close(self) -> None:
        """Release OpenVINO runtime resources."""

        self.compiled_model = None
        self.model = None
        self.core = None

    def warmup(self, feeds: Feeds, runs: int = 2) -> None:
        """Warm up OpenVINO runtime for consistent performance."""

        for _ in range(max(1, runs)):
            self.run(feeds)

        logger.info("OpenVinoBackend warm-up completed (runs=%d).", runs)
