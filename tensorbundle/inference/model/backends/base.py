# inference/model/backends/base.py

"""
Abstract base protocol for inference backends.
"""

from __future__ import annotations

from typing import Dict, Protocol, Sequence, Union

import numpy as np
import torch

Tensor = Union[torch.Tensor, np.ndarray]
Feeds = Dict[str, np.ndarray]
NamedOutputs = Dict[str, np.ndarray]


class InferenceBackend(Protocol):
    """Protocol for all inference backend classes."""

    def run(self, feeds: Feeds) -> NamedOutputs:
        """Run inference on named inputs and return named outputs."""
        ...

    def close(self) -> None:
        """Release backend resources."""
        ...


def to_numpy(value: Tensor) -> np.ndarray:
    if isinstance(value, torch.Tensor):
        return value.detach().cpu().numpy()
    return np.asarray(value)


def name_outputs(outputs, output_names: Sequence[str]) -> NamedOutputs:
    """Attach names to the raw outputs of a torch module.

    Modules may return a single tensor, a tuple/list of tensors in declared
    output order, or a dict already keyed by output name.
    """
    if isinstance(outputs, dict):
        return {str(k): to_numpy(v) for k, v in outputs.items()}
    if isinstance(outputs, (list, tuple)):
        if len(outputs) < len(output_names):
            raise RuntimeError(
                f"Expected {len(output_names)} outputs {list(output_names)}, got {len(outputs)}"
            )
        return {name: to_numpy(v) for name, v in zip(output_names, outputs)}
    return {output_names[0]: to_numpy(outputs)}
