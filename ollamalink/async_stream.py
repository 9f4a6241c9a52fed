"""Background generation with a cancellable handle."""

import queue
import threading
from typing import Iterator

import httpx

from ollamalink.logger import get_logger
from ollamalink.models import Chunk, OllamaResult
from ollamalink.stream import EndpointCaller

log = get_logger(__name__)

_DONE = object()


class AsyncResultStreamer:
    """Runs one streamed request on a worker thread.

    Iterate the streamer to receive text fragments as they arrive, call
    ``result()`` to wait for the final OllamaResult, or ``cancel()`` to close
    the connection.
    """

    def __init__(self, caller: EndpointCaller, payload: dict):
        self._caller = caller
        self._payload = payload
        self.stream: queue.Queue = queue.Queue()
        self._cancel = threading.Event()
        self._lock = threading.Lock()
        self._response: httpx.Response | None = None
        self._result: OllamaResult | None = None
        self._error: BaseException | None = None
        self._thread = threading.Thread(target=self._run, daemon=True)

    def start(self) -> "AsyncResultStreamer":
        self._thread.start()
        return self

    # ── Worker ────────────────────────────────────────────────────────────────

    def _on_open(self, resp: httpx.Response) -> None:
        with self._lock:
            self._response = resp
        if self._cancel.is_set():
            resp.close()

    def _on_chunk(self, chunk: Chunk) -> None:
        if chunk.text and not self._cancel.is_set():
            self.stream.put(chunk.text)

    def _run(self) -> None:
        try:
            self._result = self._caller.call_streamed(
                self._payload,
                on_chunk=self._on_chunk,
                cancel_event=self._cancel,
                on_open=self._on_open,
            )
        except Exception as e:
            log.debug("Async request ended with %s", type(e).__name__)
            self._error = e
        finally:
            self.stream.put(_DONE)

    # ── Caller side ───────────────────────────────────────────────────────────

    def cancel(self) -> None:
        self._cancel.set()
        with self._lock:
            resp = self._response
        if resp is not None:
            resp.close()
        log.debug("Cancelled request to %s", self._caller.url)

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def __iter__(self) -> Iterator[str]:
        while True:
            item = self.stream.get()
            if item is _DONE:
                # Leave the marker for any other reader.
                self.stream.put(_DONE)
                return
            yield item

    def result(self, timeout: float | None = None) -> OllamaResult:
        self._thread.join(timeout)
        if self._thread.is_alive():
            raise TimeoutError("Request is still running")
        if self._error is not None:
            raise self._error
        return self._result
