"""Shared pytest fixtures: stub backends and small images, no OCR engine required."""
from __future__ import annotations

import threading
import time

import numpy as np
import pytest
from PIL import Image

from textlens.image_source import ImageBuffer
from textlens.ocr_engine import EngineKind, RecognitionBackend
from textlens.results import RecognitionResult

WAIT_SECONDS = 5.0


def make_image(marker: int = 0, mode: str = "L") -> ImageBuffer:
    """Tiny solid image; the marker is the value of every pixel."""
    if mode == "L":
        pixels = np.full((8, 12), marker, dtype=np.uint8)
    else:
        channels = 4 if mode == "RGBA" else 3
        pixels = np.full((8, 12, channels), marker, dtype=np.uint8)
    return ImageBuffer(pixels=pixels, mode=mode)


def marker_of(image: ImageBuffer) -> int:
    return int(np.asarray(image.pixels).flat[0])


def drain(dispatcher, count: int = 1, timeout: float = WAIT_SECONDS):
    """Poll until `count` deliveries arrived or the timeout passed."""
    deliveries = []
    deadline = time.monotonic() + timeout
    while len(deliveries) < count and time.monotonic() < deadline:
        deliveries.extend(dispatcher.poll())
        time.sleep(0.01)
    return deliveries


# ---------------------------------------------------------------------------
# Stub backends
# ---------------------------------------------------------------------------

class StubBackend(RecognitionBackend):
    """Returns a fixed result and records every image it was called with."""

    kind = EngineKind.TESSERACT

    def __init__(self, text="HELLO", confidence=0.95, elapsed_ms=10.0, kind=None):
        super().__init__()
        if kind is not None:
            self.kind = kind
        self.text = text
        self.confidence = confidence
        self.elapsed_ms = elapsed_ms
        self.calls = []

    def recognize(self, image):
        self.calls.append(marker_of(image))
        return RecognitionResult(text=self.text, confidence=self.confidence, elapsed_ms=self.elapsed_ms)


class GatedBackend(RecognitionBackend):
    """Blocks each call until the test opens the gate for the image's marker."""

    kind = EngineKind.TESSERACT

    def __init__(self):
        super().__init__()
        self.calls = []
        self._lock = threading.Lock()
        self._gates = {}
        self._started = {}

    def _event(self, table, marker):
        with self._lock:
            return table.setdefault(marker, threading.Event())

    def release(self, marker: int) -> None:
        self._event(self._gates, marker).set()

    def wait_started(self, marker: int, timeout: float = WAIT_SECONDS) -> bool:
        return self._event(self._started, marker).wait(timeout)

    def recognize(self, image):
        marker = marker_of(image)
        with self._lock:
            self.calls.append(marker)
        self._event(self._started, marker).set()
        if not self._event(self._gates, marker).wait(WAIT_SECONDS):
            raise RuntimeError(f"gate {marker} never opened")
        return RecognitionResult(text=f"image-{marker}", confidence=0.5)


class FlakyBackend(RecognitionBackend):
    """Raises on the first `failures` calls, then succeeds."""

    kind = EngineKind.TESSERACT

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures
        self.calls = 0

    def recognize(self, image):
        self.calls += 1
        if self.calls <= self.failures:
            raise ValueError("engine crashed")
        return RecognitionResult(text="recovered", confidence=0.8)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def stub_backend():
    return StubBackend()


@pytest.fixture
def gated_backend():
    backend = GatedBackend()
    yield backend
    # Unblock anything a failing test left waiting
    for marker in range(256):
        backend.release(marker)


@pytest.fixture
def png_path(tmp_path):
    path = tmp_path / "sample.png"
    Image.new("RGB", (40, 20), color=(255, 255, 255)).save(path)
    return path


@pytest.fixture
def corrupt_png(tmp_path):
    path = tmp_path / "broken.png"
    path.write_bytes(b"definitely not a png")
    return path


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Run with no config file on disk and no $TEXTLENS_CONFIG."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("TEXTLENS_CONFIG", raising=False)
    return tmp_path
