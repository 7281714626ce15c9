"""
Confluence MCP exceptions and failure kinds.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    CONFIGURATION_INVALID = "configuration_invalid"
    UPSTREAM_ERROR = "upstream_error"
    TRANSPORT_FAILURE = "transport_failure"
    BAD_ARGUMENT = "bad_argument"
    MISSING_ARGUMENT = "missing_argument"
    NOT_FOUND = "not_found"
    HANDLER_ERROR = "handler_error"


class ConfluenceError(RuntimeError):
    """Base class for gateway errors."""

    kind: ErrorKind = ErrorKind.HANDLER_ERROR


class ConfigurationInvalidError(ConfluenceError):
    """Raised before any transport call when the deployment profile is incomplete."""

    kind = ErrorKind.CONFIGURATION_INVALID


class ConfluenceConnectionError(ConfluenceError):
    """Raised when the Confluence instance cannot be reached (DNS, connect, timeout)."""

    kind = ErrorKind.TRANSPORT_FAILURE


class ConfluenceAPIError(ConfluenceError):
    """Raised when Confluence answers with a non-2xx status."""

    kind = ErrorKind.UPSTREAM_ERROR

    def __init__(
        self,
        status_code: int,
        body: str,
        *,
        path: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.path = path
        super().__init__(f"Confluence API error ({status_code}): {body}")
