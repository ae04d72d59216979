"""
Exception types raised by tensorbundle.

Resolution and lifecycle errors are raised to the caller. Errors produced by
``Model.run`` derive from :class:`RunError` so the executor can hand them back
as values instead of raising them across threads.
"""

from __future__ import annotations

from typing import Iterable, List, Optional


class TensorBundleError(Exception):
    """Base class for all tensorbundle errors."""


class NotFoundError(TensorBundleError, LookupError):
    """A model identifier or bundle location could not be resolved."""


class MalformedBundleError(TensorBundleError, ValueError):
    """A bundle failed structural validation.

    ``problems`` lists every issue found, so a bundle author can fix them in
    one pass.
    """

    def __init__(self, location, problems: Optional[Iterable[str]] = None):
        self.location = str(location)
        self.problems: List[str] = list(problems or [])
        detail = "; ".join(self.problems) if self.problems else "invalid bundle"
        super().__init__(f"Malformed bundle at {self.location}: {detail}")


class LoadError(TensorBundleError):
    """Acquiring the underlying model resources failed."""


class InvalidStateError(TensorBundleError):
    """An operation was called in a lifecycle state that does not allow it."""


class InvalidArgumentError(TensorBundleError, ValueError):
    """A parameter is outside its accepted range."""


class RunError(TensorBundleError):
    """Base class for failures of a single inference run."""


class ShapeMismatchError(RunError, ValueError):
    """An input does not match the layer shape declared by the bundle."""


class NotLoadedError(RunError):
    """``run`` was called on a model that is not loaded."""


class InferenceError(RunError):
    """The underlying inference engine failed."""


class BusyError(RunError):
    """Another run is already in flight on the same model instance."""
