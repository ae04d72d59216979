# tests/conftest.py
"""
Pytest configuration and shared fixtures for tensorbundle tests.
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import copy
import json
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Optional

import numpy as np
import pytest
import torch

from tensorbundle.bundle.descriptor import load_descriptor
from tensorbundle.inference.model import wrapper as wrapper_module

LABELS = ("bird", "cat", "dog")


# ---------------------------------------------------------------------------
# Bundle helpers
# ---------------------------------------------------------------------------


def make_info(
    identifier: str = "tiny-classifier",
    backend: Optional[str] = "torchscript",
    model_file: str = "model.pt",
) -> dict:
    """A valid model.json for a 3-class classifier over 4x4 CHW images."""
    model = {
        "file": model_file,
        "quantized": False,
        "type": "image.classification",
        "modes": ["predict"],
    }
    if backend is not None:
        model["backend"] = backend
    return {
        "id": identifier,
        "name": "Tiny Classifier",
        "version": "1",
        "details": "Softmax over per-channel means",
        "author": "tests",
        "license": "MIT",
        "model": model,
        "inputs": [
            {
                "name": "image",
                "type": "image",
                "shape": [-1, 3, 4, 4],
                "format": "RGB",
                "layout": "CHW",
                "normalize": {"standard": "[0,1]"},
            }
        ],
        "outputs": [
            {
                "name": "classification",
                "type": "array",
                "shape": [-1, len(LABELS)],
                "labels": "labels.txt",
            }
        ],
    }


def write_bundle(
    root: Path,
    info: dict,
    dirname: Optional[str] = None,
    labels=LABELS,
    model_bytes: Optional[bytes] = b"placeholder",
) -> Path:
    """Write a bundle directory under ``root`` and return its path."""
    bundle = Path(root) / (dirname or f"{info.get('id', 'bundle')}.tiobundle")
    bundle.mkdir(parents=True, exist_ok=True)
    (bundle / "model.json").write_text(json.dumps(info), encoding="utf-8")

    if labels is not None:
        (bundle / "assets").mkdir(exist_ok=True)
        (bundle / "assets" / "labels.txt").write_text(
            "\n".join(labels) + "\n", encoding="utf-8"
        )

    model_file = (info.get("model") or {}).get("file")
    if model_bytes is not None and isinstance(model_file, str):
        (bundle / model_file).write_bytes(model_bytes)
    return bundle


def image_with_channels(r: int, g: int, b: int) -> np.ndarray:
    """A 3x4x4 uint8 CHW image whose channels are filled with r, g and b."""
    img = np.zeros((3, 4, 4), dtype=np.uint8)
    img[0], img[1], img[2] = r, g, b
    return img


# ---------------------------------------------------------------------------
# Fake backend with an acquisition counter
# ---------------------------------------------------------------------------


class FakeBackend:
    """Stand-in backend that records calls and returns canned scores."""

    def __init__(self, runtime: "FakeRuntime", input_names, output_names):
        self.runtime = runtime
        self.input_names = list(input_names)
        self.output_names = list(output_names)
        self.calls = []
        self.closed = False
        runtime.acquired += 1

    def run(self, feeds):
        rt = self.runtime
        self.calls.append(feeds)
        rt.started.set()
        if rt.gate is not None:
            rt.gate.wait(5)
        delay = rt.delay(feeds) if callable(rt.delay) else rt.delay
        if delay:
            time.sleep(delay)
        if rt.fail_on_run is not None:
            raise rt.fail_on_run
        if rt.outputs is not None:
            return rt.outputs(feeds)
        return {
            name: np.array([[0.1, 0.7, 0.2]], dtype=np.float32)
            for name in self.output_names
        }

    def warmup(self, feeds, runs=2):
        self.runtime.warmups += 1
        if self.runtime.fail_on_warmup is not None:
            raise self.runtime.fail_on_warmup

    def close(self):
        self.runtime.released += 1
        self.closed = True


class FakeRuntime:
    """Replaces ``make_backend`` and counts acquired vs released backends."""

    def __init__(self):
        self.acquired = 0
        self.released = 0
        self.warmups = 0
        self.created = []
        self.fail_on_create: Optional[Exception] = None
        self.fail_on_warmup: Optional[Exception] = None
        self.fail_on_run: Optional[Exception] = None
        self.delay = 0.0
        self.outputs: Optional[Callable[[Dict[str, np.ndarray]], dict]] = None
        self.gate: Optional[threading.Event] = None
        self.started = threading.Event()

    @property
    def live(self) -> int:
        return self.acquired - self.released

    def make_backend(
        self, model_path, device, backend=None, *, input_names=(), output_names=()
    ):
        if self.fail_on_create is not None:
            raise self.fail_on_create
        instance = FakeBackend(self, input_names, output_names)
        self.created.append(instance)
        return instance


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def models_dir(tmp_path: Path) -> Path:
    """Empty models directory."""
    path = tmp_path / "models"
    path.mkdir()
    return path


@pytest.fixture
def bundle_dir(models_dir: Path) -> Path:
    """A valid bundle with a placeholder model file."""
    return write_bundle(models_dir, make_info())


@pytest.fixture
def descriptor(bundle_dir: Path):
    return load_descriptor(bundle_dir)


@pytest.fixture
def fake_runtime(monkeypatch) -> FakeRuntime:
    """Monkeypatch a counting fake into the model wrapper's backend factory."""
    runtime = FakeRuntime()
    monkeypatch.setattr(wrapper_module, "make_backend", runtime.make_backend)
    return runtime


class ChannelMeanClassifier(torch.nn.Module):
    """Scores each class by the mean of the matching image channel."""

    def forward(self, image: torch.Tensor) -> torch.Tensor:
        return torch.softmax(image.mean(dim=[2, 3]), dim=1)


@pytest.fixture
def torchscript_bundle(models_dir: Path) -> Path:
    """A bundle holding a real scripted module."""
    bundle = write_bundle(
        models_dir, make_info("torchscript-classifier"), model_bytes=None
    )
    scripted = torch.jit.script(ChannelMeanClassifier().eval())
    torch.jit.save(scripted, str(bundle / "model.pt"))
    return bundle


@pytest.fixture
def info_factory():
    """Fresh copies of the default model.json, for tests that mutate it."""

    def _factory(**kwargs):
        return copy.deepcopy(make_info(**kwargs))

    return _factory
