# bundle/resolver.py

"""
Resolution of model identifiers and bundle locations into descriptors.

Two modes converge on the same ``BundleDescriptor``:

- lookup by identifier through a ``BundleRegistry``
- direct construction from an explicit bundle location

Resolution reads ``model.json`` and validates it. It never loads a model.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Union

from tensorbundle.errors import MalformedBundleError, NotFoundError
from tensorbundle.inference.model.wrapper import Model
from tensorbundle.utils import get_logger

from .descriptor import (
    BUNDLE_EXTENSIONS,
    MODEL_INFO_FILE,
    BundleDescriptor,
    load_descriptor,
)

logger = get_logger(__name__)

PathLike = Union[str, Path]


class BundleRegistry(Protocol):
    """Maps model identifiers to bundle locations."""

    def locate(self, identifier: str) -> Path:
        """Return the bundle directory for ``identifier`` or raise ``NotFoundError``."""
        ...

    def identifiers(self) -> List[str]:
        """All identifiers known to the registry."""
        ...


class InMemoryRegistry:
    """Registry backed by an explicit identifier → location mapping."""

    def __init__(self, bundles: Optional[Mapping[str, PathLike]] = None):
        self._bundles: Dict[str, Path] = {
            k: Path(v) for k, v in (bundles or {}).items()
        }

    def register(self, identifier: str, location: PathLike) -> None:
        self._bundles[identifier] = Path(location)

    def locate(self, identifier: str) -> Path:
        try:
            return self._bundles[identifier]
        except KeyError:
            raise NotFoundError(f"No bundle registered for '{identifier}'") from None

    def identifiers(self) -> List[str]:
        return sorted(self._bundles)


class DirectoryRegistry:
    """
    Registry of the bundles found in a models directory.

    Every ``*.tiobundle`` (or legacy ``*.tfbundle``) directory below ``root``
    is indexed by the ``id`` in its ``model.json``. Bundles whose
    ``model.json`` is unreadable or has no ``id`` cannot be addressed and are
    skipped with a warning; any other structural problem is reported when the
    bundle is resolved.
    """

    def __init__(self, root: PathLike):
        self.root = Path(root)
        self._bundles: Dict[str, Path] = {}
        self.reload()

    def reload(self) -> None:
        """Rescan the models directory."""
        if not self.root.is_dir():
            raise NotFoundError(f"Models directory not found: {self.root}")

        bundles: Dict[str, Path] = {}
        candidates = sorted(
            p for p in self.root.rglob("*") if p.is_dir() and p.suffix in BUNDLE_EXTENSIONS
        )
        for path in candidates:
            info_path = path / MODEL_INFO_FILE
            try:
                with open(info_path, "r", encoding="utf-8") as f:
                    identifier = json.load(f).get("id")
            except (OSError, ValueError, AttributeError) as e:
                logger.warning("Skipping bundle %s: unreadable %s (%s)", path, MODEL_INFO_FILE, e)
                continue

            if not isinstance(identifier, str) or not identifier:
                logger.warning("Skipping bundle %s: no 'id' in %s", path, MODEL_INFO_FILE)
                continue
            if identifier in bundles:
                logger.warning(
                    "Duplicate bundle id '%s' at %s, keeping %s",
                    identifier,
                    path,
                    bundles[identifier],
                )
                continue
            bundles[identifier] = path

        self._bundles = bundles
        logger.info("Indexed %d bundle(s) in %s", len(bundles), self.root)

    def locate(self, identifier: str) -> Path:
        try:
            return self._bundles[identifier]
        except KeyError:
            raise NotFoundError(
                f"No bundle with id '{identifier}' in {self.root}"
            ) from None

    def identifiers(self) -> List[str]:
        return sorted(self._bundles)


class ModelBundle:
    """A resolved bundle that acts as a factory for ``Model`` instances."""

    def __init__(self, descriptor: BundleDescriptor):
        self._descriptor = descriptor

    @property
    def descriptor(self) -> BundleDescriptor:
        return self._descriptor

    @property
    def identifier(self) -> str:
        return self._descriptor.identifier

    def instantiate(self, device: str = "cpu", warmup: bool = False) -> Model:
        """Create an unloaded ``Model``. Loading errors surface in ``Model.load``."""
        return Model(self._descriptor, device=device, warmup=warmup)

    def __repr__(self) -> str:
        return f"ModelBundle({self.identifier!r}, {str(self._descriptor.location)!r})"


class BundleResolver:
    """Turns identifiers or locations into validated ``BundleDescriptor`` objects."""

    def __init__(self, registry: Optional[BundleRegistry] = None):
        self.registry = registry

    def resolve(self, identifier: str) -> BundleDescriptor:
        """Resolve a model identifier through the registry.

        Raises:
            NotFoundError: If the identifier is unknown or there is no registry.
            MalformedBundleError: If the bundle fails structural validation.
        """
        if self.registry is None:
            raise NotFoundError(f"Cannot resolve '{identifier}': no registry configured")

        location = self.registry.locate(identifier)
        descriptor = self.resolve_location(location)

        if descriptor.identifier != identifier:
            raise MalformedBundleError(
                location,
                [f"id '{descriptor.identifier}' does not match registered id '{identifier}'"],
            )
        return descriptor

    def resolve_location(self, location: PathLike) -> BundleDescriptor:
        """Build a descriptor from a bundle directory or its ``model.json``.

        Raises:
            NotFoundError: If the location or its ``model.json`` does not exist.
            MalformedBundleError: If the bundle fails structural validation.
        """
        path = Path(location)
        if path.is_file() and path.name == MODEL_INFO_FILE:
            path = path.parent

        if not path.is_dir():
            raise NotFoundError(f"Bundle location not found: {path}")
        if not (path / MODEL_INFO_FILE).is_file():
            raise NotFoundError(f"No {MODEL_INFO_FILE} in bundle at {path}")

        try:
            descriptor = load_descriptor(path)
        except MalformedBundleError as e:
            logger.error("Bundle validation failed: location=%s problems=%s", path, e.problems)
            raise

        logger.info(
            "Resolved bundle: model_id=%s version=%s location=%s",
            descriptor.identifier,
            descriptor.version,
            path,
        )
        return descriptor

    def bundle(self, identifier: str) -> ModelBundle:
        return ModelBundle(self.resolve(identifier))

    def bundle_at(self, location: PathLike) -> ModelBundle:
        return ModelBundle(self.resolve_location(location))

    def identifiers(self) -> List[str]:
        if self.registry is None:
            return []
        return sorted(self.registry.identifiers())
