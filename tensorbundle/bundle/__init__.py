"""
Model bundle descriptors, validation and resolution.
"""

from .descriptor import BundleDescriptor, LayerDescription
from .resolver import (
    BundleRegistry,
    BundleResolver,
    DirectoryRegistry,
    InMemoryRegistry,
    ModelBundle,
)

__all__ = [
    "BundleDescriptor",
    "LayerDescription",
    "BundleRegistry",
    "BundleResolver",
    "DirectoryRegistry",
    "InMemoryRegistry",
    "ModelBundle",
]
