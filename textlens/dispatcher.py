#!/usr/bin/env python3
"""
Dispatch Module

Runs recognition requests on a background thread pool and hands their
outcomes back to the interactive thread, which polls without blocking.

Each request moves through SUBMITTED -> RUNNING -> COMPLETED | FAILED, or to
SUPERSEDED as soon as a newer request is submitted. Only the most recently
submitted request is ever delivered to the sink: work that has not started
yet is cancelled, work that is already running finishes and its outcome is
dropped.
"""

import itertools
import logging
import queue
import threading
from collections import OrderedDict
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from .engine_registry import EngineRegistry
from .exceptions import OCRError, RecognitionError, SupersededError
from .image_source import ImageBuffer, load_image
from .memory_manager import MemoryManager
from .results import RecognitionResult

logger = logging.getLogger(__name__)


class RequestState(Enum):
    SUBMITTED = "submitted"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SUPERSEDED = "superseded"


# Number of request states kept for state() lookups
STATE_HISTORY = 64


@dataclass(frozen=True)
class Delivery:
    """Outcome of one request, tagged with its id. Exactly one of result/error is set."""

    request_id: int
    result: Optional[RecognitionResult] = None
    error: Optional[OCRError] = None
    source: Optional[Path] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RequestHandle:
    request_id: int
    source: Optional[Path] = None
    future: Optional[Future] = field(default=None, repr=False)


class Dispatcher:
    """
    Asynchronous front end to the active recognition backend.

    Args:
        registry: Engine registry providing the active backend
        sink: Called with each Delivery on the thread that calls poll()
        max_workers: Size of the background thread pool
        memory_limit_mb: Fail requests when process memory exceeds this
    """

    def __init__(self,
                 registry: EngineRegistry,
                 sink: Optional[Callable[[Delivery], None]] = None,
                 max_workers: int = 2,
                 memory_limit_mb: Optional[int] = None):
        self.registry = registry
        self.sink = sink
        self.memory_manager = MemoryManager(memory_limit_mb)

        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="textlens-ocr")
        self._outcomes: "queue.Queue[Delivery]" = queue.Queue()
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._latest_id = 0
        self._states: "OrderedDict[int, RequestState]" = OrderedDict()
        self._futures: Dict[int, Future] = {}
        self._delivered: Dict[int, Delivery] = {}

    @property
    def latest_request_id(self) -> int:
        return self._latest_id

    def state(self, request_id: int) -> Optional[RequestState]:
        with self._lock:
            return self._states.get(request_id)

    def submit(self, image: ImageBuffer) -> RequestHandle:
        """Queue recognition of a decoded image and return immediately."""
        return self._submit(image=image, path=image.source)

    def submit_path(self, path: Union[str, Path]) -> RequestHandle:
        """
        Queue decoding and recognition of an image file and return immediately.

        Decoding happens on the worker; a file that cannot be decoded is
        delivered as ImageDecodeError without reaching the backend.
        """
        return self._submit(image=None, path=Path(path))

    def _submit(self, image: Optional[ImageBuffer], path: Optional[Path]) -> RequestHandle:
        with self._lock:
            request_id = next(self._ids)
            superseded = self._supersede_in_flight()
            self._latest_id = request_id
            self._record(request_id, RequestState.SUBMITTED)
            future = self._executor.submit(self._run, request_id, image, path)
            self._futures[request_id] = future

        # Future.cancel() runs done callbacks inline, so it must not run under self._lock
        for old_id, old_future in superseded:
            if old_future.cancel():
                logger.debug(f"Cancelled pending request {old_id}")
            else:
                logger.debug(f"Request {old_id} superseded while running, its result will be discarded")

        logger.debug(f"Submitted request {request_id} for {path or 'in-memory image'}")
        return RequestHandle(request_id=request_id, source=path, future=future)

    def _record(self, request_id: int, state: RequestState) -> None:
        # Caller holds self._lock
        self._states[request_id] = state
        self._states.move_to_end(request_id)
        while len(self._states) > STATE_HISTORY:
            self._states.popitem(last=False)

    def _supersede_in_flight(self) -> List[Tuple[int, Future]]:
        # Caller holds self._lock. self._futures holds exactly the in-flight requests.
        superseded = list(self._futures.items())
        for request_id, _future in superseded:
            self._record(request_id, RequestState.SUPERSEDED)
        self._futures.clear()
        return superseded

    def _run(self, request_id: int, image: Optional[ImageBuffer], path: Optional[Path]) -> None:
        with self._lock:
            if request_id not in self._futures:
                return
            self._record(request_id, RequestState.RUNNING)

        try:
            if image is None:
                image = load_image(path)
            backend = self.registry.active_engine()
            with self.memory_manager.memory_context(f"{backend.name} recognition"):
                result = backend.run(image)
            delivery = Delivery(request_id=request_id, result=result, source=path)
        except OCRError as e:
            logger.error(f"Request {request_id} failed: {e}")
            delivery = Delivery(request_id=request_id, error=e, source=path)
        except Exception as e:
            logger.exception(f"Unexpected error in request {request_id}")
            delivery = Delivery(
                request_id=request_id,
                error=RecognitionError(file_path=str(path) if path else None, original_error=e),
                source=path,
            )

        with self._lock:
            if self._futures.pop(request_id, None) is None:
                logger.debug(f"Discarding stale outcome of request {request_id}")
                return
            self._record(request_id, RequestState.COMPLETED if delivery.ok else RequestState.FAILED)
        self._outcomes.put(delivery)

    def poll(self) -> List[Delivery]:
        """
        Drain finished requests without blocking.

        Outcomes of requests that are no longer the latest are dropped. The
        rest are passed to the sink on the calling thread and returned.
        """
        deliveries = []
        while True:
            try:
                delivery = self._outcomes.get_nowait()
            except queue.Empty:
                break

            with self._lock:
                stale = delivery.request_id != self._latest_id
                if stale:
                    self._record(delivery.request_id, RequestState.SUPERSEDED)
                else:
                    # Only the latest delivery can still be waited on
                    self._delivered.clear()
                    self._delivered[delivery.request_id] = delivery
            if stale:
                logger.debug(f"Dropping outcome of superseded request {delivery.request_id}")
                continue

            deliveries.append(delivery)
            if self.sink is not None:
                self.sink(delivery)
        return deliveries

    def wait(self, handle: RequestHandle, timeout: Optional[float] = None) -> Delivery:
        """
        Block until a request finishes and return its delivery.

        For non-interactive callers such as the CLI; the GUI uses poll().

        Raises:
            SupersededError: If a newer request replaced this one
            concurrent.futures.TimeoutError: If timeout elapses first
        """
        if handle.future is not None:
            try:
                handle.future.result(timeout=timeout)
            except CancelledError:
                raise SupersededError(handle.request_id) from None

        self.poll()
        with self._lock:
            delivery = self._delivered.pop(handle.request_id, None)
        if delivery is None:
            raise SupersededError(handle.request_id)
        return delivery

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._supersede_in_flight()
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
