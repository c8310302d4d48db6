"""Dispatcher tests: delivery, supersession and failure isolation with stub backends."""
from __future__ import annotations

import math
import threading

import pytest

from conftest import WAIT_SECONDS, FlakyBackend, StubBackend, drain, make_image
from textlens.dispatcher import STATE_HISTORY, Dispatcher, RequestState
from textlens.engine_registry import EngineRegistry
from textlens.exceptions import (
    ImageDecodeError, MemoryLimitError, RecognitionError, SupersededError
)
from textlens.ocr_engine import EngineKind


def registry_for(backend) -> EngineRegistry:
    return EngineRegistry({backend.kind: backend})


# ---------------------------------------------------------------------------
# Single requests
# ---------------------------------------------------------------------------

def test_result_is_delivered_to_sink(stub_backend) -> None:
    received = []
    with Dispatcher(registry_for(stub_backend), sink=received.append) as dispatcher:
        handle = dispatcher.submit(make_image())
        deliveries = drain(dispatcher)

    assert received == deliveries
    assert len(received) == 1
    delivery = received[0]
    assert delivery.ok
    assert delivery.request_id == handle.request_id
    assert delivery.result.text == "HELLO"
    assert delivery.result.confidence == pytest.approx(0.95)
    assert delivery.result.elapsed_ms == pytest.approx(10.0)
    assert dispatcher.state(handle.request_id) is RequestState.COMPLETED


def test_poll_without_work_returns_nothing(stub_backend) -> None:
    with Dispatcher(registry_for(stub_backend)) as dispatcher:
        assert dispatcher.poll() == []


def test_submit_path_decodes_and_recognizes(stub_backend, png_path) -> None:
    with Dispatcher(registry_for(stub_backend)) as dispatcher:
        handle = dispatcher.submit_path(png_path)
        delivery = dispatcher.wait(handle, timeout=WAIT_SECONDS)

    assert delivery.ok
    assert delivery.source == png_path
    assert stub_backend.calls == [255]


def test_same_image_twice_gets_distinct_ids(stub_backend) -> None:
    image = make_image()
    with Dispatcher(registry_for(stub_backend)) as dispatcher:
        first = dispatcher.submit(image)
        second = dispatcher.submit(image)

    assert first.request_id != second.request_id
    assert second.request_id == first.request_id + 1
    assert dispatcher.latest_request_id == second.request_id


def test_confidence_is_clamped_at_boundary() -> None:
    with Dispatcher(registry_for(StubBackend(confidence=1.7))) as dispatcher:
        delivery = dispatcher.wait(dispatcher.submit(make_image()), timeout=WAIT_SECONDS)
    assert delivery.result.confidence == 1.0

    with Dispatcher(registry_for(StubBackend(confidence=math.nan))) as dispatcher:
        delivery = dispatcher.wait(dispatcher.submit(make_image()), timeout=WAIT_SECONDS)
    assert delivery.result.confidence == 0.0


def test_elapsed_time_filled_when_backend_omits_it() -> None:
    with Dispatcher(registry_for(StubBackend(elapsed_ms=None))) as dispatcher:
        delivery = dispatcher.wait(dispatcher.submit(make_image()), timeout=WAIT_SECONDS)

    assert delivery.result.elapsed_ms is not None
    assert delivery.result.elapsed_ms >= 0
    assert delivery.result.engine == EngineKind.TESSERACT.value


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

def test_corrupt_file_never_reaches_backend(stub_backend, corrupt_png) -> None:
    with Dispatcher(registry_for(stub_backend)) as dispatcher:
        handle = dispatcher.submit_path(corrupt_png)
        delivery = dispatcher.wait(handle, timeout=WAIT_SECONDS)

    assert not delivery.ok
    assert isinstance(delivery.error, ImageDecodeError)
    assert delivery.result is None
    assert stub_backend.calls == []
    assert dispatcher.state(handle.request_id) is RequestState.FAILED


def test_backend_error_does_not_end_session() -> None:
    backend = FlakyBackend(failures=1)
    with Dispatcher(registry_for(backend)) as dispatcher:
        failed = dispatcher.wait(dispatcher.submit(make_image()), timeout=WAIT_SECONDS)
        retried = dispatcher.wait(dispatcher.submit(make_image()), timeout=WAIT_SECONDS)

    assert isinstance(failed.error, RecognitionError)
    assert isinstance(failed.error.original_error, ValueError)
    assert retried.ok
    assert retried.result.text == "recovered"
    assert backend.calls == 2


def test_memory_limit_fails_request(stub_backend) -> None:
    # Any running interpreter uses more than 1 MB
    with Dispatcher(registry_for(stub_backend), memory_limit_mb=1) as dispatcher:
        delivery = dispatcher.wait(dispatcher.submit(make_image()), timeout=WAIT_SECONDS)

    assert isinstance(delivery.error, MemoryLimitError)
    assert stub_backend.calls == []


# ---------------------------------------------------------------------------
# Supersession
# ---------------------------------------------------------------------------

def test_newer_request_wins_when_older_finishes_last(gated_backend) -> None:
    received = []
    with Dispatcher(registry_for(gated_backend), sink=received.append, max_workers=2) as dispatcher:
        first = dispatcher.submit(make_image(1))
        assert gated_backend.wait_started(1)
        second = dispatcher.submit(make_image(2))
        assert gated_backend.wait_started(2)

        gated_backend.release(2)
        assert [d.request_id for d in drain(dispatcher)] == [second.request_id]

        gated_backend.release(1)
        first.future.result(timeout=WAIT_SECONDS)
        assert dispatcher.poll() == []

    assert [d.result.text for d in received] == ["image-2"]
    assert dispatcher.state(first.request_id) is RequestState.SUPERSEDED
    assert dispatcher.state(second.request_id) is RequestState.COMPLETED


def test_older_result_finishing_first_is_discarded(gated_backend) -> None:
    received = []
    with Dispatcher(registry_for(gated_backend), sink=received.append, max_workers=2) as dispatcher:
        first = dispatcher.submit(make_image(1))
        assert gated_backend.wait_started(1)
        second = dispatcher.submit(make_image(2))

        gated_backend.release(1)
        first.future.result(timeout=WAIT_SECONDS)
        assert dispatcher.poll() == []

        gated_backend.release(2)
        deliveries = drain(dispatcher)

    assert [d.request_id for d in deliveries] == [second.request_id]
    assert [d.result.text for d in received] == ["image-2"]


def test_pending_superseded_request_is_cancelled(gated_backend) -> None:
    with Dispatcher(registry_for(gated_backend), max_workers=1) as dispatcher:
        running = dispatcher.submit(make_image(1))
        assert gated_backend.wait_started(1)
        pending = dispatcher.submit(make_image(2))
        latest = dispatcher.submit(make_image(3))

        assert pending.future.cancelled()
        assert dispatcher.state(pending.request_id) is RequestState.SUPERSEDED

        gated_backend.release(1)
        gated_backend.release(3)
        delivery = dispatcher.wait(latest, timeout=WAIT_SECONDS)

    assert delivery.result.text == "image-3"
    assert 2 not in gated_backend.calls
    assert dispatcher.state(running.request_id) is RequestState.SUPERSEDED


def test_wait_on_superseded_request_raises(gated_backend) -> None:
    with Dispatcher(registry_for(gated_backend), max_workers=1) as dispatcher:
        running = dispatcher.submit(make_image(1))
        assert gated_backend.wait_started(1)
        pending = dispatcher.submit(make_image(2))
        dispatcher.submit(make_image(3))

        with pytest.raises(SupersededError) as excinfo:
            dispatcher.wait(pending, timeout=WAIT_SECONDS)
        assert excinfo.value.request_id == pending.request_id

        gated_backend.release(1)
        gated_backend.release(3)
        with pytest.raises(SupersededError):
            dispatcher.wait(running, timeout=WAIT_SECONDS)


def test_shutdown_discards_in_flight_work(gated_backend) -> None:
    dispatcher = Dispatcher(registry_for(gated_backend), max_workers=1)
    running = dispatcher.submit(make_image(1))
    assert gated_backend.wait_started(1)

    dispatcher.shutdown(wait=False)
    assert dispatcher.state(running.request_id) is RequestState.SUPERSEDED

    gated_backend.release(1)
    running.future.result(timeout=WAIT_SECONDS)
    assert dispatcher.poll() == []


def test_superseding_queued_request_does_not_block_submitter(gated_backend) -> None:
    with Dispatcher(registry_for(gated_backend)) as dispatcher:
        dispatcher.submit(make_image(1))
        assert gated_backend.wait_started(1)
        dispatcher.submit(make_image(2))
        assert gated_backend.wait_started(2)
        queued = dispatcher.submit(make_image(3))

        handles = []
        submitter = threading.Thread(target=lambda: handles.append(dispatcher.submit(make_image(4))))
        submitter.start()
        submitter.join(timeout=WAIT_SECONDS)

        assert not submitter.is_alive()
        assert queued.future.cancelled()

        for marker in (1, 2, 4):
            gated_backend.release(marker)
        delivery = dispatcher.wait(handles[0], timeout=WAIT_SECONDS)

    assert delivery.result.text == "image-4"
    assert 3 not in gated_backend.calls


def test_request_table_stays_bounded(stub_backend) -> None:
    with Dispatcher(registry_for(stub_backend)) as dispatcher:
        for _ in range(STATE_HISTORY * 3):
            last = dispatcher.submit(make_image())
        delivery = dispatcher.wait(last, timeout=WAIT_SECONDS)

        assert delivery.ok
        assert len(dispatcher._states) <= STATE_HISTORY
        assert dispatcher._futures == {}
        assert dispatcher.state(last.request_id) is RequestState.COMPLETED
