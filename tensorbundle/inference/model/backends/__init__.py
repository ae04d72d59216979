# inference/model/backends/__init__.py

"""
Inference backend implementations.

Concrete backends are imported lazily by ``make_backend`` so a missing
optional runtime only matters for bundles that need it.
"""

from .base import Feeds, InferenceBackend, NamedOutputs

__all__ = ["InferenceBackend", "Feeds", "NamedOutputs"]
