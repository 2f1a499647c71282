from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class GatewayError(Exception):
    status_code: int
    message: str
    code: str | None = None

    def __str__(self) -> str:
        return self.message

    def to_error(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "code": self.code,
        }


class TransportError(GatewayError):
    """The inference server could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: int = 502, code: str = "transport_error"):
        super().__init__(status_code=status_code, message=message, code=code)


class ParseError(GatewayError):
    def __init__(self, message: str, raw: str = ""):
        super().__init__(status_code=502, message=message, code="parse_error")
        self.raw = raw


class GenerationCancelled(GatewayError):
    def __init__(self, message: str = "Generation stopped by user"):
        super().__init__(status_code=499, message=message, code="cancelled")


class ToolExecutionError(GatewayError):
    def __init__(self, message: str, code: str = "tool_error"):
        super().__init__(status_code=500, message=message, code=code)


class ConfigurationError(ToolExecutionError):
    """A tool is missing configuration it needs (an API key, a provider)."""

    def __init__(self, message: str):
        super().__init__(message, code="configuration_error")


class ValidationError(GatewayError):
    def __init__(self, message: str, code: str = "invalid_request"):
        super().__init__(status_code=400, message=message, code=code)
