"""Ollama API client: models, generation, chat, embeddings and tools."""

import base64
import warnings
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Callable

import httpx

from ollamalink.async_stream import AsyncResultStreamer
from ollamalink.errors import (
    DecodeError,
    RoleNotFoundError,
    StructuredResponseError,
    TransportError,
    UpstreamError,
)
from ollamalink.logger import get_logger
from ollamalink.models import (
    DEFAULT_ROLES,
    ChatRequest,
    ChatResult,
    Chunk,
    GenerateRequest,
    OllamaResult,
    ToolSpec,
    ToolsResult,
    parse_structured,
)
from ollamalink.stream import EndpointCaller, chat_text, generate_text, iter_chunks
from ollamalink.tools import ToolRegistry, build_tool_prompt

log = get_logger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_TIMEOUT = 10.0

OnChunk = Callable[[Chunk], None]


def basic_auth_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def encode_file(path: str | Path) -> str:
    return base64.b64encode(Path(path).expanduser().read_bytes()).decode("ascii")


class OllamaClient:
    def __init__(
        self,
        host: str = DEFAULT_BASE_URL,
        request_timeout: float = DEFAULT_TIMEOUT,
        verbose: bool = False,
        basic_auth: tuple[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.host = host.rstrip("/")
        self.request_timeout = request_timeout
        self.verbose = verbose
        self.tools = ToolRegistry()
        self._roles: list[str] = list(DEFAULT_ROLES)
        self._http = httpx.Client(
            timeout=request_timeout,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            transport=transport,
        )
        if basic_auth is not None:
            self.set_basic_auth(*basic_auth)

    def set_basic_auth(self, username: str, password: str) -> None:
        self._http.headers["Authorization"] = basic_auth_header(username, password)

    # ── Plumbing ──────────────────────────────────────────────────────────────

    def _request(self, method: str, path: str, payload: dict | None = None) -> httpx.Response:
        url = f"{self.host}{path}"
        log.debug("%s %s", method, url)
        try:
            return self._http.request(method, url, json=payload)
        except httpx.RequestError as e:
            raise TransportError(f"Cannot reach Ollama at {self.host}: {e}") from e

    def _json(self, method: str, path: str, payload: dict | None = None) -> dict:
        resp = self._request(method, path, payload)
        if resp.status_code != 200:
            log.warning("%s %s returned %s", method, path, resp.status_code)
            raise UpstreamError(resp.status_code, resp.text)
        try:
            return resp.json()
        except ValueError as e:
            raise DecodeError(f"Malformed response from {path}", resp.text) from e

    def _caller(self, path: str) -> EndpointCaller:
        text_of = chat_text if path == "/api/chat" else generate_text
        return EndpointCaller(self._http, self.host, path, text_of, self.verbose)

    # ── Server and models ─────────────────────────────────────────────────────

    def ping(self) -> bool:
        try:
            resp = self._http.request("GET", f"{self.host}/api/tags")
        except (httpx.ConnectError, httpx.ConnectTimeout):
            return False
        except httpx.RequestError as e:
            raise TransportError(f"Cannot reach Ollama at {self.host}: {e}") from e
        return resp.status_code == 200

    def ps(self) -> dict:
        """Models currently loaded into memory."""
        return self._json("GET", "/api/ps")

    def list_models(self) -> list[dict]:
        return self._json("GET", "/api/tags").get("models", [])

    def get_model_details(self, model_name: str) -> dict:
        return self._json("POST", "/api/show", {"name": model_name})

    def pull_model(self, model_name: str) -> None:
        url = f"{self.host}/api/pull"
        log.debug("POST %s model=%s", url, model_name)
        try:
            with self._http.stream("POST", url, json={"name": model_name}) as resp:
                if resp.status_code != 200:
                    resp.read()
                    raise UpstreamError(resp.status_code, resp.text)
                for chunk in iter_chunks(resp.iter_lines(), _pull_status, resp.status_code):
                    if self.verbose:
                        log.info("pull %s: %s", model_name, chunk.text)
        except httpx.RequestError as e:
            raise TransportError(f"Cannot reach Ollama at {self.host}: {e}") from e

    def create_model_with_file_path(self, model_name: str, model_file_path: str) -> None:
        self._create({"name": model_name, "path": model_file_path})

    def create_model_with_modelfile_contents(self, model_name: str, modelfile: str) -> None:
        self._create({"name": model_name, "modelfile": modelfile})

    def _create(self, payload: dict) -> None:
        resp = self._request("POST", "/api/create", payload)
        body = resp.text
        if resp.status_code != 200:
            raise UpstreamError(resp.status_code, body)
        # The server answers 200 for some failed creations; the body names the error.
        if "error" in body:
            raise UpstreamError(resp.status_code, body)
        if self.verbose:
            log.info(body)

    def delete_model(self, model_name: str, ignore_if_not_present: bool = True) -> None:
        resp = self._request("DELETE", "/api/delete", {"name": model_name})
        body = resp.text
        if (
            ignore_if_not_present
            and resp.status_code == 404
            and "model" in body
            and "not found" in body
        ):
            log.debug("Model %s not present, nothing to delete", model_name)
            return
        if resp.status_code != 200:
            raise UpstreamError(resp.status_code, body)

    # ── Embeddings ────────────────────────────────────────────────────────────

    def embed(self, model: str, inputs: str | list[str]) -> dict:
        if isinstance(inputs, str):
            inputs = [inputs]
        return self._json("POST", "/api/embed", {"model": model, "input": list(inputs)})

    def generate_embeddings(self, model: str, prompt: str) -> list[float]:
        """Single embedding from /api/embeddings.  Prefer :meth:`embed`."""
        warnings.warn(
            "generate_embeddings() is deprecated, use embed()",
            DeprecationWarning,
            stacklevel=2,
        )
        return self._json("POST", "/api/embeddings", {"model": model, "prompt": prompt})["embedding"]

    # ── Generate ──────────────────────────────────────────────────────────────

    def generate(
        self,
        model: str,
        prompt: str,
        raw: bool = False,
        options: dict | None = None,
        on_chunk: OnChunk | None = None,
        response_type: Any = None,
        format: str | dict | None = None,
        images: list[str] | None = None,
        system: str | None = None,
    ) -> OllamaResult:
        """
        Run a completion.  Streams when ``on_chunk`` is given (called once per
        chunk), otherwise makes a single buffered call.

        With ``response_type`` the schema of that type is sent as ``format``
        and the text is parsed into it; see OllamaResult.structured_response().
        """
        request = GenerateRequest(
            model=model,
            prompt=prompt,
            images=images,
            system=system,
            raw=raw,
            options=dict(options or {}),
            format=format,
            response_type=response_type,
        )
        return self.run_generate(request, on_chunk)

    def run_generate(self, request: GenerateRequest, on_chunk: OnChunk | None = None) -> OllamaResult:
        caller = self._caller("/api/generate")
        if on_chunk is not None:
            request = replace(request, stream=True)
            result = caller.call_streamed(request.to_payload(), on_chunk)
        else:
            request = replace(request, stream=False)
            result = caller.call_sync(request.to_payload())
        return _with_structure(result, request.response_type)

    def generate_with_image_files(
        self,
        model: str,
        prompt: str,
        image_files: list[str | Path],
        options: dict | None = None,
        on_chunk: OnChunk | None = None,
    ) -> OllamaResult:
        images = [encode_file(p) for p in image_files]
        return self.generate(model, prompt, options=options, on_chunk=on_chunk, images=images)

    def generate_with_image_urls(
        self,
        model: str,
        prompt: str,
        image_urls: list[str],
        options: dict | None = None,
        on_chunk: OnChunk | None = None,
    ) -> OllamaResult:
        images = [self._fetch_image(url) for url in image_urls]
        return self.generate(model, prompt, options=options, on_chunk=on_chunk, images=images)

    def _fetch_image(self, url: str) -> str:
        try:
            resp = httpx.get(url, follow_redirects=True, timeout=self.request_timeout)
        except httpx.RequestError as e:
            raise TransportError(f"Cannot fetch image {url}: {e}") from e
        if resp.status_code != 200:
            raise UpstreamError(resp.status_code, resp.text)
        return base64.b64encode(resp.content).decode("ascii")

    def generate_async(
        self,
        model: str,
        prompt: str,
        raw: bool = False,
        options: dict | None = None,
    ) -> AsyncResultStreamer:
        request = GenerateRequest(
            model=model, prompt=prompt, raw=raw, options=dict(options or {}), stream=True
        )
        return AsyncResultStreamer(self._caller("/api/generate"), request.to_payload()).start()

    # ── Tools ─────────────────────────────────────────────────────────────────

    def register_tool(self, spec: ToolSpec) -> None:
        self.tools.register_tool(spec)

    def register_function(self, name: str, handler: Callable[..., Any]) -> None:
        self.tools.register(name, handler)

    def tool_prompt(self, prompt: str) -> str:
        """Prompt advertising every tool registered with a ToolSpec."""
        return build_tool_prompt(prompt, self.tools.schemas())

    def generate_with_tools(self, model: str, prompt: str, options: dict | None = None) -> ToolsResult:
        """Generate in raw mode and run the tool calls found in the answer."""
        result = self.generate(model, prompt, raw=True, options=options)
        tool_results = self.tools.dispatch_all(result.response)
        return ToolsResult(model_result=result, tool_results=tool_results)

    # ── Chat ──────────────────────────────────────────────────────────────────

    def chat(
        self,
        model: str,
        messages: list[dict],
        on_chunk: OnChunk | None = None,
        options: dict | None = None,
        response_type: Any = None,
        format: str | dict | None = None,
        tools: list[dict] | None = None,
    ) -> ChatResult:
        request = ChatRequest(
            model=model,
            messages=list(messages),
            options=dict(options or {}),
            format=format,
            tools=tools,
            response_type=response_type,
        )
        return self.run_chat(request, on_chunk)

    def run_chat(self, request: ChatRequest, on_chunk: OnChunk | None = None) -> ChatResult:
        caller = self._caller("/api/chat")
        if on_chunk is not None:
            request = replace(request, stream=True)
            result = caller.call_streamed(request.to_payload(), on_chunk)
        else:
            request = replace(request, stream=False)
            result = caller.call_sync(request.to_payload())

        history = [dict(m) for m in request.messages]
        history.append({"role": "assistant", "content": result.response})
        chat_result = ChatResult(
            **{f.name: getattr(result, f.name) for f in fields(result)},
            chat_history=history,
        )
        return _with_structure(chat_result, request.response_type)

    # ── Roles ─────────────────────────────────────────────────────────────────

    def add_custom_role(self, role_name: str) -> str:
        if role_name not in self._roles:
            self._roles.append(role_name)
        return role_name

    def list_roles(self) -> list[str]:
        return list(self._roles)

    def get_role(self, role_name: str) -> str:
        if role_name not in self._roles:
            raise RoleNotFoundError(role_name)
        return role_name

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.close()


def _pull_status(data: dict) -> str:
    return data.get("status") or ""


def _with_structure(result: OllamaResult, response_type: Any) -> OllamaResult:
    if response_type is None:
        return result
    try:
        value = parse_structured(result.response, response_type)
    except StructuredResponseError as e:
        log.warning("%s", e)
        return replace(result, response_type=response_type, structured_error=e)
    return replace(result, response_type=response_type, structured_value=value)
