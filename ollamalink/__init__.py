"""Client for the Ollama HTTP API."""

from ollamalink.client import OllamaClient
from ollamalink.errors import (
    DecodeError,
    MalformedToolCallError,
    OllamaError,
    RequestCancelledError,
    StructuredResponseError,
    ToolInvocationError,
    ToolNotFoundError,
    TransportError,
    UpstreamError,
)
from ollamalink.models import ChatResult, Chunk, OllamaResult, ToolCallSpec, ToolSpec
from ollamalink.tools import ToolRegistry

__all__ = [
    "OllamaClient",
    "ToolRegistry",
    "Chunk",
    "OllamaResult",
    "ChatResult",
    "ToolCallSpec",
    "ToolSpec",
    "OllamaError",
    "TransportError",
    "UpstreamError",
    "DecodeError",
    "RequestCancelledError",
    "StructuredResponseError",
    "ToolNotFoundError",
    "MalformedToolCallError",
    "ToolInvocationError",
]

__version__ = "0.1.0"
