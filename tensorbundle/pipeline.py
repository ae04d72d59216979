"""
End-to-end classification: resolve a bundle, load it, run inference off the
calling thread and hand the ranked labels back through an ``OriginQueue``.
"""

from __future__ import annotations

from typing import Callable, Optional

from tensorbundle.bundle.resolver import BundleResolver, ModelBundle
from tensorbundle.errors import InvalidArgumentError, InvalidStateError, RunError
from tensorbundle.inference.executor import (
    InferenceExecutor,
    InferenceResult,
    OriginQueue,
    Submission,
)
from tensorbundle.inference.model.wrapper import Model
from tensorbundle.ranking import Ranking, check_rank_arguments, rank
from tensorbundle.utils import get_logger

logger = get_logger(__name__)

ResultSink = Callable[[Ranking, InferenceResult], None]
ErrorSink = Callable[[RunError], None]


class ClassificationPipeline:
    """
    Glue between the resolver, a loaded ``Model``, the executor and a result sink.

    Example:
        >>> origin = OriginQueue()
        >>> pipeline = ClassificationPipeline(BundleResolver(registry), origin=origin)
        >>> pipeline.open("mobilenet-v2")
        >>> pipeline.classify(image, on_result=show)
        >>> origin.run_until(1, timeout=5.0)
        >>> pipeline.close()
    """

    def __init__(
        self,
        resolver: BundleResolver,
        executor: Optional[InferenceExecutor] = None,
        origin: Optional[OriginQueue] = None,
        top_n: int = 5,
        threshold: float = 0.0,
        output_name: Optional[str] = None,
        device: str = "cpu",
        warmup: bool = False,
    ):
        self.threshold = check_rank_arguments(top_n, threshold)
        self.top_n = int(top_n)
        self.resolver = resolver
        self._owns_executor = executor is None
        self.executor = executor if executor is not None else InferenceExecutor()
        self.origin = origin if origin is not None else OriginQueue()
        self.output_name = output_name
        self.device = device
        self.warmup = warmup
        self.model: Optional[Model] = None

    def open(self, identifier: Optional[str] = None, location=None) -> Model:
        """Resolve and load a bundle on the calling thread.

        Exactly one of ``identifier`` and ``location`` must be given.
        Resolution and load errors propagate; on failure no model is kept.
        """
        if (identifier is None) == (location is None):
            raise InvalidArgumentError("Pass exactly one of identifier or location")

        if identifier is not None:
            descriptor = self.resolver.resolve(identifier)
        else:
            descriptor = self.resolver.resolve_location(location)

        if self.output_name is not None:
            try:
                layer = descriptor.output(self.output_name)
            except KeyError:
                raise InvalidArgumentError(
                    f"Bundle '{descriptor.identifier}' has no output '{self.output_name}'"
                ) from None
            if layer.labels is None:
                raise InvalidArgumentError(f"Output '{layer.name}' declares no labels")
        else:
            layer = descriptor.classification_output
            if layer is None:
                raise InvalidArgumentError(
                    f"Bundle '{descriptor.identifier}' has no labeled output to rank"
                )

        model = ModelBundle(descriptor).instantiate(device=self.device, warmup=self.warmup)
        model.load()

        if self.model is not None:
            self.model.unload()
        self.model = model
        self._ranked_output = layer.name
        return model

    def _require_model(self) -> Model:
        if self.model is None:
            raise InvalidStateError("No model is open; call open() first")
        return self.model

    def _rank(self, result: InferenceResult) -> Ranking:
        ranking = rank(result.outputs[self._ranked_output], self.top_n, self.threshold)
        logger.info(
            "Classification ranked: model_id=%s ranking_size=%d",
            result.identifier,
            len(ranking),
        )
        return ranking

    def classify(
        self,
        inputs,
        on_result: ResultSink,
        on_error: Optional[ErrorSink] = None,
    ) -> Submission:
        """Submit ``inputs`` for classification.

        Ranking happens on the worker. ``on_result(ranking, result)`` is then
        posted to the origin queue; a failed run posts ``on_error(error)``
        instead. Nothing is delivered for a cancelled submission.
        """
        model = self._require_model()
        handle = {}

        def deliver(fn, *args):
            submission = handle.get("submission")
            if submission is not None and submission.discarded:
                logger.debug("Dropping discarded result: model_id=%s", model.identifier)
                return
            fn(*args)

        def on_complete(result: InferenceResult) -> None:
            if not result.ok:
                if on_error is not None:
                    self.origin.post(deliver, on_error, result.error)
                return
            self.origin.post(deliver, on_result, self._rank(result), result)

        submission = self.executor.submit(model, inputs, on_complete)
        handle["submission"] = submission
        return submission

    def classify_sync(self, inputs, timeout: Optional[float] = None) -> Ranking:
        """Run on the executor and wait. Raises the run error on failure."""
        model = self._require_model()
        result = self.executor.submit(model, inputs).result(timeout=timeout)
        result.unwrap()
        return self._rank(result)

    def close(self) -> None:
        if self.model is not None:
            self.model.unload()
            self.model = None
        if self._owns_executor:
            self.executor.shutdown()

    def __enter__(self) -> "ClassificationPipeline":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()
