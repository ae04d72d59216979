# tests/test_executor.py
"""
Tests for asynchronous dispatch and the origin hand-off queue.
"""
import threading
from concurrent.futures import CancelledError

import numpy as np
import pytest

from conftest import image_with_channels
from tensorbundle.errors import (
    InferenceError,
    InvalidStateError,
    NotLoadedError,
    ShapeMismatchError,
)
from tensorbundle.inference.executor import (
    InferenceExecutor,
    InferenceResult,
    OriginQueue,
)
from tensorbundle.inference.model.wrapper import Model

X = image_with_channels(255, 0, 0)
Y = image_with_channels(0, 0, 0)


def _echo_red_channel(feeds):
    red = float(feeds["image"][0, 0, 0, 0])
    return {"classification": np.array([[red, 0.0, 0.0]], dtype=np.float32)}


@pytest.fixture
def loaded_model(descriptor, fake_runtime):
    model = Model(descriptor)
    model.load()
    yield model
    model.unload()


@pytest.fixture
def executor():
    with InferenceExecutor(name="test-worker") as ex:
        yield ex


class TestInferenceResult:
    def test_ok_result(self):
        result = InferenceResult("m", outputs={"a": 1})
        assert result.ok
        assert result.unwrap() == {"a": 1}

    def test_error_result(self):
        error = InferenceError("bad")
        result = InferenceResult("m", error=error)
        assert not result.ok
        with pytest.raises(InferenceError):
            result.unwrap()


class TestInferenceExecutor:
    """Worker dispatch, ordering and cancellation."""

    def test_completion_runs_on_worker(self, executor, loaded_model):
        seen = []
        done = threading.Event()

        def on_complete(result):
            seen.append((threading.current_thread().name, result))
            done.set()

        executor.submit(loaded_model, X, on_complete)
        assert done.wait(5)
        thread_name, result = seen[0]
        assert thread_name.startswith("test-worker")
        assert thread_name != threading.current_thread().name
        assert result.ok
        assert result.identifier == "tiny-classifier"
        assert result.duration_ms >= 0.0

    def test_submit_does_not_block(self, executor, loaded_model, fake_runtime):
        fake_runtime.gate = threading.Event()
        submission = executor.submit(loaded_model, X)
        assert not submission.done()
        fake_runtime.gate.set()
        assert submission.result(timeout=5).ok

    def test_single_worker_completes_in_submission_order(
        self, executor, loaded_model, fake_runtime
    ):
        # X takes much longer than Y
        fake_runtime.delay = lambda feeds: 0.2 if feeds["image"][0, 0, 0, 0] > 0.5 else 0.0
        fake_runtime.outputs = _echo_red_channel
        origin = OriginQueue()
        completed, delivered = [], []

        def on_complete(tag):
            def _complete(result):
                completed.append(tag)
                origin.post(delivered.append, tag)

            return _complete

        executor.submit(loaded_model, X, on_complete("X"))
        executor.submit(loaded_model, Y, on_complete("Y"))

        assert origin.run_until(2, timeout=5) == 2
        assert completed == ["X", "Y"]
        assert delivered == ["X", "Y"]

    def test_run_errors_are_values(self, executor, loaded_model, fake_runtime):
        fake_runtime.fail_on_run = RuntimeError("engine failure")
        results = []
        submission = executor.submit(loaded_model, X, results.append)
        result = submission.result(timeout=5)
        assert not result.ok
        assert isinstance(result.error, InferenceError)
        assert result.outputs is None
        assert results == [result]

    def test_not_loaded_is_a_value(self, executor, descriptor, fake_runtime):
        model = Model(descriptor)
        result = executor.submit(model, X).result(timeout=5)
        assert isinstance(result.error, NotLoadedError)

    def test_unconvertible_input_reaches_callback(self, executor, loaded_model, fake_runtime):
        results = []
        done = threading.Event()

        def on_complete(result):
            results.append(result)
            done.set()

        submission = executor.submit(loaded_model, np.full((3, 4, 4), "x"), on_complete)
        assert done.wait(5)
        assert not results[0].ok
        assert isinstance(results[0].error, ShapeMismatchError)
        assert submission.result(timeout=5) is results[0]
        assert fake_runtime.created[0].calls == []

    def test_unexpected_exception_becomes_error_result(self, executor):
        class Exploding:
            identifier = "exploding"

            def run(self, inputs):
                raise KeyError("missing")

        results = []
        result = executor.submit(Exploding(), X, results.append).result(timeout=5)
        assert isinstance(result.error, InferenceError)
        assert isinstance(result.error.__cause__, KeyError)
        assert results == [result]

    def test_retry_after_failed_run(self, executor, loaded_model, fake_runtime):
        fake_runtime.fail_on_run = RuntimeError("transient")
        assert not executor.submit(loaded_model, X).result(timeout=5).ok
        fake_runtime.fail_on_run = None
        assert executor.submit(loaded_model, X).result(timeout=5).ok

    def test_cancel_prevents_pending_run(self, executor, loaded_model, fake_runtime):
        fake_runtime.gate = threading.Event()
        called = []
        first = executor.submit(loaded_model, X, called.append)
        assert fake_runtime.started.wait(5)
        second = executor.submit(loaded_model, Y, called.append)

        assert second.cancel() is True
        assert second.cancelled
        assert second.discarded

        fake_runtime.gate.set()
        assert first.result(timeout=5).ok
        with pytest.raises(CancelledError):
            second.result(timeout=5)
        assert len(called) == 1
        assert len(fake_runtime.created[0].calls) == 1

    def test_cancel_running_submission_skips_callback(
        self, executor, loaded_model, fake_runtime
    ):
        fake_runtime.gate = threading.Event()
        called = []
        submission = executor.submit(loaded_model, X, called.append)
        assert fake_runtime.started.wait(5)

        assert submission.cancel() is False
        fake_runtime.gate.set()

        assert submission.result(timeout=5).ok
        assert not submission.cancelled
        assert submission.discarded
        assert called == []

    def test_cancel_after_completion_marks_discarded(self, executor, loaded_model):
        submission = executor.submit(loaded_model, X)
        submission.result(timeout=5)
        assert submission.cancel() is False
        assert submission.discarded

    def test_callback_error_does_not_break_worker(self, executor, loaded_model):
        def explode(result):
            raise RuntimeError("sink bug")

        first = executor.submit(loaded_model, X, explode)
        assert first.result(timeout=5).ok
        assert executor.submit(loaded_model, Y).result(timeout=5).ok

    def test_submit_after_shutdown(self, loaded_model):
        executor = InferenceExecutor()
        executor.shutdown()
        assert executor.closed
        with pytest.raises(InvalidStateError):
            executor.submit(loaded_model, X)

    def test_shutdown_cancels_pending(self, loaded_model, fake_runtime):
        fake_runtime.gate = threading.Event()
        executor = InferenceExecutor()
        executor.submit(loaded_model, X)
        assert fake_runtime.started.wait(5)
        pending = executor.submit(loaded_model, Y)

        executor.shutdown(wait=False, cancel_pending=True)
        assert pending.cancelled
        fake_runtime.gate.set()
        executor.shutdown(wait=True)

    def test_invalid_worker_count(self):
        with pytest.raises(ValueError):
            InferenceExecutor(max_workers=0)


class TestOriginQueue:
    """FIFO hand-off to the origin thread."""

    def test_process_pending_runs_in_posting_order(self):
        origin = OriginQueue()
        seen = []
        for i in range(5):
            origin.post(seen.append, i)
        assert len(origin) == 5
        assert origin.process_pending() == 5
        assert seen == [0, 1, 2, 3, 4]
        assert origin.process_pending() == 0

    def test_runs_on_calling_thread(self):
        origin = OriginQueue()
        threads = []
        poster = threading.Thread(
            target=origin.post,
            args=(lambda: threads.append(threading.current_thread()),),
        )
        poster.start()
        poster.join(5)
        origin.process_pending()
        assert threads == [threading.current_thread()]

    def test_kwargs_forwarded(self):
        origin = OriginQueue()
        seen = {}
        origin.post(seen.update, a=1, b=2)
        assert origin.process(timeout=1)
        assert seen == {"a": 1, "b": 2}

    def test_process_timeout(self):
        assert OriginQueue().process(timeout=0.01) is False

    def test_run_until_timeout(self):
        origin = OriginQueue()
        origin.post(lambda: None)
        assert origin.run_until(3, timeout=0.05) == 1

    def test_posts_from_worker_threads(self):
        origin = OriginQueue()
        seen = []
        workers = [
            threading.Thread(target=origin.post, args=(seen.append, i)) for i in range(10)
        ]
        for w in workers:
            w.start()
        assert origin.run_until(10, timeout=5) == 10
        for w in workers:
            w.join(5)
        assert sorted(seen) == list(range(10))
