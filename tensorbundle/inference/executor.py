# inference/executor.py

"""
Asynchronous dispatch of model runs.

``InferenceExecutor`` runs ``Model.run`` on a worker thread and reports the
outcome as an ``InferenceResult`` through a completion callback that executes
on that worker. Getting a result back to the submitting thread is a separate,
explicit step: the worker posts to an ``OriginQueue`` and the origin thread
drains it.

Example:
    >>> origin = OriginQueue()
    >>> with InferenceExecutor() as executor:
    ...     executor.submit(model, image, lambda r: origin.post(show, r))
    ...     origin.run_until(1, timeout=5.0)
"""

from __future__ import annotations

import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from tensorbundle.errors import InferenceError, InvalidStateError, RunError
from tensorbundle.general import Profiler
from tensorbundle.utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class InferenceResult:
    """Outcome of one submitted run. Exactly one of ``outputs`` and ``error`` is set."""

    identifier: str
    outputs: Optional[Dict[str, Any]] = None
    error: Optional[RunError] = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Dict[str, Any]:
        """Return the outputs, or raise the run error."""
        if self.error is not None:
            raise self.error
        return self.outputs


class Submission:
    """Handle for a run queued on an ``InferenceExecutor``."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        self._future: Optional[Future] = None
        self._discarded = threading.Event()

    def _attach(self, future: Future) -> None:
        self._future = future

    def cancel(self) -> bool:
        """Cancel the submission.

        A run that has not started yet is prevented from starting. A run that
        is executing or finished cannot be stopped; its result is marked
        discarded instead so it is not handed off.

        Returns:
            True if the run was prevented from starting.
        """
        self._discarded.set()
        prevented = self._future.cancel()
        logger.debug(
            "Submission cancelled: model_id=%s prevented=%s", self.identifier, prevented
        )
        return prevented

    @property
    def cancelled(self) -> bool:
        return self._future.cancelled()

    @property
    def discarded(self) -> bool:
        return self._discarded.is_set()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> InferenceResult:
        """Wait for the run to finish.

        Raises:
            concurrent.futures.CancelledError: If the run never started.
            concurrent.futures.TimeoutError: If ``timeout`` elapses first.
        """
        return self._future.result(timeout=timeout)


class InferenceExecutor:
    """
    Worker pool for ``Model.run``.

    With the default single worker, runs complete in submission order. With
    more workers there is no ordering guarantee between submissions.
    """

    def __init__(self, max_workers: int = 1, name: str = "tensorbundle"):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self.name = name
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=name
        )
        self._lock = threading.Lock()
        self._closed = False

    def submit(
        self,
        model,
        inputs,
        on_complete: Optional[Callable[[InferenceResult], None]] = None,
    ) -> Submission:
        """Queue ``model.run(inputs)`` on a worker. Never blocks.

        ``on_complete`` receives the ``InferenceResult`` on the worker thread,
        unless the submission was cancelled or discarded first.

        Raises:
            InvalidStateError: If the executor has been shut down.
        """
        submission = Submission(model.identifier)
        with self._lock:
            if self._closed:
                raise InvalidStateError(f"Executor '{self.name}' has been shut down")
            submission._attach(
                self._pool.submit(self._execute, submission, model, inputs, on_complete)
            )
        logger.debug("Run submitted: model_id=%s", model.identifier)
        return submission

    def _execute(self, submission: Submission, model, inputs, on_complete):
        profiler = Profiler()
        try:
            with profiler:
                outputs = model.run(inputs)
            result = InferenceResult(
                model.identifier, outputs=outputs, duration_ms=profiler.elapsed_ms
            )
        except RunError as e:
            result = InferenceResult(
                model.identifier, error=e, duration_ms=profiler.elapsed_ms
            )
        except Exception as e:
            logger.exception("Unexpected run failure: model_id=%s", model.identifier)
            error = InferenceError(f"Inference failed for '{model.identifier}': {e}")
            error.__cause__ = e
            result = InferenceResult(
                model.identifier, error=error, duration_ms=profiler.elapsed_ms
            )

        logger.info(
            "Run finished: model_id=%s ok=%s duration_ms=%.2f",
            result.identifier,
            result.ok,
            result.duration_ms,
        )

        if on_complete is None or submission.discarded:
            return result
        try:
            on_complete(result)
        except Exception:
            logger.exception("Completion callback failed: model_id=%s", result.identifier)
        return result

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        """Stop accepting submissions and release the workers."""
        with self._lock:
            self._closed = True
        self._pool.shutdown(wait=wait, cancel_futures=cancel_pending)
        logger.debug("Executor shut down: name=%s", self.name)

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "InferenceExecutor":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.shutdown()


class OriginQueue:
    """
    FIFO of callables to be run on the origin thread.

    Any thread may ``post``; the thread that owns the queue calls
    ``process_pending``, ``process`` or ``run_until`` to execute posted
    callables in posting order.
    """

    def __init__(self):
        self._queue: "queue.Queue" = queue.Queue()

    def post(self, fn: Callable[..., Any], *args, **kwargs) -> None:
        self._queue.put((fn, args, kwargs))

    def __len__(self) -> int:
        return self._queue.qsize()

    def _run(self, item) -> None:
        fn, args, kwargs = item
        fn(*args, **kwargs)

    def process_pending(self) -> int:
        """Run everything posted so far. Returns the number of callables run."""
        count = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return count
            self._run(item)
            count += 1

    def process(self, timeout: Optional[float] = None) -> bool:
        """Wait for one posted callable and run it. False on timeout."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return False
        self._run(item)
        return True

    def run_until(self, count: int, timeout: Optional[float] = None) -> int:
        """Run posted callables until ``count`` have run or ``timeout`` elapses."""
        deadline = None if timeout is None else time.monotonic() + timeout
        done = 0
        while done < count:
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
            if not self.process(timeout=remaining):
                break
            done += 1
        return done
