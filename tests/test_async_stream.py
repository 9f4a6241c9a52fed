"""Unit tests for async_stream.py — background generation and cancellation."""

import sys
import json
import threading
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from ollamalink.async_stream import AsyncResultStreamer
from ollamalink.client import OllamaClient
from ollamalink.errors import RequestCancelledError, UpstreamError
from ollamalink.stream import EndpointCaller, generate_text


# ── Helpers ────────────────────────────────────────────────────────────────────

def make_stream_response(lines, status_code: int = 200, body: str = ""):
    ctx = MagicMock()
    ctx.__enter__ = MagicMock(return_value=ctx)
    ctx.__exit__ = MagicMock(return_value=False)
    ctx.status_code = status_code
    ctx.text = body
    ctx.iter_lines = MagicMock(return_value=iter(lines))
    return ctx


def make_streamer(ctx) -> AsyncResultStreamer:
    http = MagicMock()
    http.stream.return_value = ctx
    caller = EndpointCaller(http, "http://localhost:11434", "/api/generate", generate_text)
    return AsyncResultStreamer(caller, {"model": "m", "prompt": "p"})


def line(text: str, done: bool = False) -> str:
    return json.dumps({"response": text, "done": done})


# ── AsyncResultStreamer ────────────────────────────────────────────────────────

class TestAsyncResultStreamer:
    def test_yields_fragments_and_result(self):
        streamer = make_streamer(make_stream_response([line("Hel"), line("lo", done=True)])).start()
        assert list(streamer) == ["Hel", "lo"]
        result = streamer.result(timeout=5)
        assert result.response == "Hello"
        assert not streamer.is_alive()

    def test_empty_fragments_not_queued(self):
        streamer = make_streamer(make_stream_response([line("a"), line("", done=True)])).start()
        assert list(streamer) == ["a"]

    def test_worker_error_reraised(self):
        streamer = make_streamer(make_stream_response([], status_code=500, body="boom")).start()
        assert list(streamer) == []
        with pytest.raises(UpstreamError):
            streamer.result(timeout=5)

    def test_cancel_closes_response_and_stops_callbacks(self):
        released = threading.Event()

        def lines():
            yield line("a")
            released.wait(5)
            yield line("b")
            yield line("c", done=True)

        ctx = make_stream_response([])
        ctx.iter_lines = MagicMock(return_value=lines())
        ctx.close.side_effect = released.set
        streamer = make_streamer(ctx).start()

        assert streamer.stream.get(timeout=5) == "a"
        streamer.cancel()
        assert streamer.cancelled

        with pytest.raises(RequestCancelledError):
            streamer.result(timeout=5)
        ctx.close.assert_called()
        assert list(streamer) == []

    def test_cancel_during_blocked_read(self):
        released = threading.Event()

        def lines():
            yield line("a")
            released.wait(5)
            raise httpx.ReadError("connection closed")

        ctx = make_stream_response([])
        ctx.iter_lines = MagicMock(return_value=lines())
        ctx.close.side_effect = released.set
        streamer = make_streamer(ctx).start()

        assert streamer.stream.get(timeout=5) == "a"
        streamer.cancel()
        with pytest.raises(RequestCancelledError):
            streamer.result(timeout=5)

    def test_result_timeout_while_running(self):
        released = threading.Event()

        def lines():
            released.wait(5)
            yield line("x", done=True)

        ctx = make_stream_response([])
        ctx.iter_lines = MagicMock(return_value=lines())
        streamer = make_streamer(ctx).start()
        with pytest.raises(TimeoutError):
            streamer.result(timeout=0.05)
        released.set()
        assert streamer.result(timeout=5).response == "x"


# ── OllamaClient.generate_async ────────────────────────────────────────────────

class TestGenerateAsync:
    def test_streams_from_generate_endpoint(self):
        client = OllamaClient()
        client._http = MagicMock()
        client._http.stream.return_value = make_stream_response([line("4"), line("2", done=True)])

        streamer = client.generate_async("llama3.2", "answer?")
        assert "".join(streamer) == "42"
        assert streamer.result(timeout=5).response == "42"

        args, kwargs = client._http.stream.call_args
        assert args == ("POST", "http://localhost:11434/api/generate")
        assert kwargs["json"]["stream"] is True
        assert kwargs["json"]["prompt"] == "answer?"
