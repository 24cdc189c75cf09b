"""Exception types for the MCP tool server and streaming bridge."""
from typing import Iterable


class ConfigurationError(Exception):
    """Required configuration is missing or invalid. Fatal at startup."""

    def __init__(self, message: str, missing: Iterable[str] = ()):
        super().__init__(message)
        self.missing = tuple(missing)


class UpstreamError(Exception):
    """The remote API answered with a non-success status code."""

    def __init__(self, status_code: int, status_text: str, body: str = ""):
        self.status_code = status_code
        self.status_text = status_text
        self.body = body
        message = f"{status_code} {status_text}"
        if body:
            message = f"{message} - {body}"
        super().__init__(message)


class UnknownToolError(Exception):
    """A tool name was invoked that was never registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class RelayError(Exception):
    """The upstream stream failed after the relay had started."""
