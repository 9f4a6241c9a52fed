"""Request, chunk and result types shared by the client and the stream reader."""

from dataclasses import dataclass, field
from typing import Any, Callable

from pydantic import TypeAdapter, ValidationError

from ollamalink.errors import StructuredResponseError

DEFAULT_ROLES = ("system", "user", "assistant", "tool")


# ── Structured responses ───────────────────────────────────────────────────────

def json_schema_for(response_type: Any) -> dict:
    """JSON schema sent as ``format`` so the model answers in that shape."""
    return TypeAdapter(response_type).json_schema()


def parse_structured(text: str, response_type: Any) -> Any:
    if text is None:
        raise StructuredResponseError("Response is empty; cannot structure it", text)
    try:
        return TypeAdapter(response_type).validate_json(text)
    except ValidationError as e:
        name = getattr(response_type, "__name__", str(response_type))
        raise StructuredResponseError(
            f"Failed to parse response into type: {name}: {e}", text
        ) from e


# ── Requests ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GenerateRequest:
    model: str
    prompt: str
    images: list[str] | None = None
    system: str | None = None
    context: list[int] | None = None
    raw: bool = False
    options: dict = field(default_factory=dict)
    format: str | dict | None = None
    keep_alive: str | int | None = None
    stream: bool = False
    response_type: Any = None

    def to_payload(self) -> dict:
        payload: dict = {
            "model": self.model,
            "prompt": self.prompt,
            "stream": self.stream,
        }
        if self.images:
            payload["images"] = list(self.images)
        if self.system:
            payload["system"] = self.system
        if self.context is not None:
            payload["context"] = list(self.context)
        if self.raw:
            payload["raw"] = True
        _add_common(payload, self.options, self.format, self.response_type, self.keep_alive)
        return payload


@dataclass(frozen=True)
class ChatRequest:
    model: str
    messages: list[dict] = field(default_factory=list)
    options: dict = field(default_factory=dict)
    format: str | dict | None = None
    tools: list[dict] | None = None
    keep_alive: str | int | None = None
    stream: bool = False
    response_type: Any = None

    def to_payload(self) -> dict:
        payload: dict = {
            "model": self.model,
            "messages": [dict(m) for m in self.messages],
            "stream": self.stream,
        }
        if self.tools:
            payload["tools"] = list(self.tools)
        _add_common(payload, self.options, self.format, self.response_type, self.keep_alive)
        return payload


def _add_common(payload: dict, options, fmt, response_type, keep_alive) -> None:
    if options:
        payload["options"] = dict(options)
    if fmt is None and response_type is not None:
        fmt = json_schema_for(response_type)
    if fmt is not None:
        payload["format"] = fmt
    if keep_alive is not None:
        payload["keep_alive"] = keep_alive


# ── Streaming ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Chunk:
    """One decoded line of a streamed response."""

    text: str
    done: bool
    data: dict = field(default_factory=dict, repr=False)


# ── Results ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OllamaResult:
    response: str
    http_status_code: int
    response_time: int = 0
    metadata: dict = field(default_factory=dict, repr=False)
    tool_calls: list[dict] = field(default_factory=list)
    response_type: Any = None
    structured_value: Any = field(default=None, repr=False)
    structured_error: StructuredResponseError | None = field(default=None, repr=False)

    def structured_response(self) -> Any:
        """Return the response deserialized into ``response_type``.

        Raises StructuredResponseError when no type was requested or when the
        text did not match it.
        """
        if self.response_type is None:
            raise StructuredResponseError(
                "Response type was not set in the request; response cannot be structured",
                self.response,
            )
        if self.structured_error is not None:
            raise self.structured_error
        return self.structured_value


@dataclass(frozen=True)
class ChatResult(OllamaResult):
    chat_history: list[dict] = field(default_factory=list)


# ── Tools ──────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ToolCallSpec:
    name: str
    arguments: dict = field(default_factory=dict)

    def __hash__(self):
        # Keys only: equal dicts share keys, while equal values (1 and 1.0) may
        # serialise differently.
        return hash((self.name, frozenset(self.arguments)))


@dataclass
class ToolSpec:
    name: str
    handler: Callable[..., Any]
    description: str = ""
    parameters: dict = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ToolsResult:
    model_result: OllamaResult
    tool_results: dict[ToolCallSpec, Any] = field(default_factory=dict)
