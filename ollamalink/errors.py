"""Exception types raised by the Ollama client."""


class OllamaError(Exception):
    """Base class for every error raised by ollamalink."""


class TransportError(OllamaError):
    """Connection failure, timeout or I/O error talking to the server."""


class UpstreamError(OllamaError):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"{status_code} - {body}")
        self.status_code = status_code
        self.body = body


class DecodeError(OllamaError):
    def __init__(self, message: str, line: str | None = None):
        if line is not None:
            message = f"{message}: {line!r}"
        super().__init__(message)
        self.line = line


class RequestCancelledError(OllamaError):
    """The request was cancelled before the terminal chunk arrived."""


class RoleNotFoundError(OllamaError):
    def __init__(self, name: str):
        super().__init__(f"No such role: {name}")
        self.name = name


class StructuredResponseError(OllamaError):
    """The response text could not be turned into the requested type.

    The raw text stays available on ``response``.
    """

    def __init__(self, message: str, response: str | None = None):
        super().__init__(message)
        self.response = response


# ── Tool errors ────────────────────────────────────────────────────────────────

class ToolError(OllamaError):
    pass


class ToolNotFoundError(ToolError):
    def __init__(self, name: str):
        super().__init__(f"No such tool: {name}")
        self.name = name


class MalformedToolCallError(ToolError):
    def __init__(self, message: str, text: str):
        super().__init__(message)
        self.text = text


class ToolInvocationError(ToolError):
    def __init__(self, name: str, cause: BaseException):
        super().__init__(f"Failed to invoke tool: {name} ({cause})")
        self.name = name
        self.cause = cause
