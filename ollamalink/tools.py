"""Tool registry and dispatch of tool calls found in model output."""

import json
import threading
from typing import Any, Callable, Iterable

from ollamalink.errors import (
    MalformedToolCallError,
    ToolInvocationError,
    ToolNotFoundError,
)
from ollamalink.logger import get_logger
from ollamalink.models import ToolCallSpec, ToolSpec

log = get_logger(__name__)

TOOL_CALLS_MARKER = "[TOOL_CALLS]"


# ── Parsing ────────────────────────────────────────────────────────────────────

def _spec_from_obj(obj: Any, text: str) -> ToolCallSpec:
    if not isinstance(obj, dict):
        raise MalformedToolCallError(f"Tool call is not an object: {obj!r}", text)
    # Native chat tool calls nest the call under "function"
    if "function" in obj and isinstance(obj["function"], dict):
        obj = obj["function"]
    name = obj.get("name")
    if not isinstance(name, str) or not name:
        raise MalformedToolCallError(f"Tool call has no name: {obj!r}", text)

    # Arguments may come as a JSON string or already a dict
    args = obj.get("arguments", {})
    if args is None:
        args = {}
    if isinstance(args, str):
        try:
            args = json.loads(args) if args.strip() else {}
        except json.JSONDecodeError as e:
            raise MalformedToolCallError(f"Bad arguments for {name}: {e}", text) from e
    if not isinstance(args, dict):
        raise MalformedToolCallError(f"Arguments for {name} are not an object", text)
    return ToolCallSpec(name=name, arguments=args)


def parse_tool_calls(text: str) -> list[ToolCallSpec]:
    """Parse model output such as ``[TOOL_CALLS][{"name": ..., "arguments": {...}}]``."""
    stripped = text.replace(TOOL_CALLS_MARKER, "").strip()
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError as e:
        raise MalformedToolCallError(f"Tool calls are not valid JSON: {e}", text) from e
    if isinstance(parsed, dict):
        parsed = [parsed]
    if not isinstance(parsed, list):
        raise MalformedToolCallError("Tool calls must be a JSON list", text)
    return [_spec_from_obj(obj, text) for obj in parsed]


def build_tool_prompt(prompt: str, schemas: Iterable[dict]) -> str:
    """Wrap ``prompt`` in the raw-mode template that advertises tools."""
    tools_json = json.dumps(list(schemas))
    return f"[AVAILABLE_TOOLS] {tools_json} [/AVAILABLE_TOOLS][INST] {prompt} [/INST]"


# ── Registry ───────────────────────────────────────────────────────────────────

class ToolRegistry:
    """Name → handler mapping owned by one client.

    Safe to register and resolve from several threads.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: dict[str, Callable[..., Any]] = {}
        self._specs: dict[str, ToolSpec] = {}

    def register(self, name: str, handler: Callable[..., Any]) -> None:
        with self._lock:
            self._handlers[name] = handler
            self._specs.pop(name, None)
        log.debug("Registered tool %s", name)

    def register_tool(self, spec: ToolSpec) -> None:
        with self._lock:
            self._handlers[spec.name] = spec.handler
            self._specs[spec.name] = spec
        log.debug("Registered tool %s", spec.name)

    def resolve(self, name: str) -> Callable[..., Any]:
        with self._lock:
            handler = self._handlers.get(name)
        if handler is None:
            raise ToolNotFoundError(name)
        return handler

    def names(self) -> list[str]:
        with self._lock:
            return list(self._handlers)

    def schemas(self) -> list[dict]:
        """Function schemas for tools registered with a ToolSpec."""
        with self._lock:
            return [spec.schema() for spec in self._specs.values()]

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._handlers

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    def dispatch(self, specs: Iterable[ToolCallSpec]) -> dict[ToolCallSpec, Any]:
        """Invoke each call in order; the first failure stops the batch."""
        results: dict[ToolCallSpec, Any] = {}
        for spec in specs:
            handler = self.resolve(spec.name)
            log.debug("Invoking tool %s with arguments %s", spec.name, spec.arguments)
            try:
                results[spec] = handler(**spec.arguments)
            except Exception as e:
                log.warning("Tool %s failed: %s", spec.name, e)
                raise ToolInvocationError(spec.name, e) from e
        return results

    def dispatch_all(self, model_text: str) -> dict[ToolCallSpec, Any]:
        return self.dispatch(parse_tool_calls(model_text))
