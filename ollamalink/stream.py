"""Streaming and buffered calls to the /api/generate and /api/chat endpoints."""

import json
import threading
import time
from typing import Callable, Iterable, Iterator

import httpx

from ollamalink.errors import (
    DecodeError,
    RequestCancelledError,
    TransportError,
    UpstreamError,
)
from ollamalink.logger import get_logger
from ollamalink.models import Chunk, OllamaResult

log = get_logger(__name__)

TextOf = Callable[[dict], str]


def generate_text(data: dict) -> str:
    return data.get("response") or ""


def chat_text(data: dict) -> str:
    return (data.get("message") or {}).get("content") or ""


def iter_chunks(
    lines: Iterable[str | bytes],
    text_of: TextOf = generate_text,
    status_code: int = 200,
) -> Iterator[Chunk]:
    """Decode newline-delimited JSON into Chunk records, lazily.

    Blank lines are skipped.  A line that is not valid JSON raises DecodeError;
    chunks already yielded stay yielded.
    """
    for line in lines:
        if isinstance(line, bytes):
            try:
                line = line.decode("utf-8")
            except UnicodeDecodeError as e:
                raise DecodeError("Malformed stream line", repr(line)) from e
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise DecodeError("Malformed stream line", line) from e
        if not isinstance(data, dict):
            raise DecodeError("Stream line is not a JSON object", line)
        if data.get("error"):
            raise UpstreamError(status_code, line)
        yield Chunk(text=text_of(data), done=bool(data.get("done")), data=data)


def _metadata(data: dict) -> dict:
    return {k: v for k, v in data.items() if k not in ("response", "message")}


def _tool_calls(data: dict) -> list[dict]:
    return list((data.get("message") or {}).get("tool_calls") or [])


class EndpointCaller:
    """Issues one request against a generation endpoint and builds its result."""

    def __init__(
        self,
        http: httpx.Client,
        host: str,
        path: str,
        text_of: TextOf,
        verbose: bool = False,
    ):
        self._http = http
        self.url = f"{host}{path}"
        self.text_of = text_of
        self.verbose = verbose

    def call_sync(self, payload: dict) -> OllamaResult:
        payload = {**payload, "stream": False}
        log.debug("POST %s (sync) model=%s", self.url, payload.get("model"))
        start = time.monotonic()
        try:
            resp = self._http.request("POST", self.url, json=payload)
        except httpx.RequestError as e:
            raise TransportError(f"Request to {self.url} failed: {e}") from e
        if not 200 <= resp.status_code < 300:
            log.warning("%s returned %s", self.url, resp.status_code)
            raise UpstreamError(resp.status_code, resp.text)
        try:
            data = resp.json()
        except json.JSONDecodeError as e:
            raise DecodeError("Malformed response body", resp.text) from e
        elapsed = int((time.monotonic() - start) * 1000)
        if self.verbose:
            log.info("%s answered in %d ms", self.url, elapsed)
        return OllamaResult(
            response=self.text_of(data),
            http_status_code=resp.status_code,
            response_time=elapsed,
            metadata=_metadata(data),
            tool_calls=_tool_calls(data),
        )

    def call_streamed(
        self,
        payload: dict,
        on_chunk: Callable[[Chunk], None] | None = None,
        cancel_event: threading.Event | None = None,
        on_open: Callable[[httpx.Response], None] | None = None,
    ) -> OllamaResult:
        """Stream the response, folding every chunk into one result.

        ``on_chunk`` is called once per chunk; anything it raises aborts the
        stream.  ``on_open`` receives the live response so another thread can
        close it.  Setting ``cancel_event`` stops the stream before the next
        callback and raises RequestCancelledError.
        """
        payload = {**payload, "stream": True}
        log.debug("POST %s (stream) model=%s", self.url, payload.get("model"))
        start = time.monotonic()
        parts: list[str] = []
        tool_calls: list[dict] = []
        try:
            with self._http.stream("POST", self.url, json=payload) as resp:
                if on_open:
                    on_open(resp)
                if not 200 <= resp.status_code < 300:
                    resp.read()
                    log.warning("%s returned %s", self.url, resp.status_code)
                    raise UpstreamError(resp.status_code, resp.text)
                for chunk in iter_chunks(resp.iter_lines(), self.text_of, resp.status_code):
                    if cancel_event is not None and cancel_event.is_set():
                        raise RequestCancelledError(f"Request to {self.url} cancelled")
                    parts.append(chunk.text)
                    tool_calls.extend(_tool_calls(chunk.data))
                    if on_chunk:
                        on_chunk(chunk)
                    if chunk.done:
                        elapsed = int((time.monotonic() - start) * 1000)
                        if self.verbose:
                            log.info("%s streamed %d chunks in %d ms", self.url, len(parts), elapsed)
                        return OllamaResult(
                            response="".join(parts),
                            http_status_code=resp.status_code,
                            response_time=elapsed,
                            metadata=_metadata(chunk.data),
                            tool_calls=tool_calls,
                        )
        except httpx.RequestError as e:
            if cancel_event is not None and cancel_event.is_set():
                raise RequestCancelledError(f"Request to {self.url} cancelled") from e
            raise TransportError(f"Request to {self.url} failed: {e}") from e
        except httpx.StreamError as e:
            # Raised when the response is closed from another thread.
            if cancel_event is not None and cancel_event.is_set():
                raise RequestCancelledError(f"Request to {self.url} cancelled") from e
            raise TransportError(f"Stream from {self.url} failed: {e}") from e

        if cancel_event is not None and cancel_event.is_set():
            raise RequestCancelledError(f"Request to {self.url} cancelled")
        raise DecodeError(f"Stream from {self.url} ended before the final chunk")
