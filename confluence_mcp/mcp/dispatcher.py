"""
Confluence MCP Dispatcher
-------------------------
Resolves a tool identifier or resource URI to its registered handler,
binds and coerces arguments against the declared parameters, runs the
handler under an optional timeout and folds every outcome into an
``InvocationResult``. Nothing raised by a handler escapes ``invoke`` or
``resolve`` except cancellation.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from confluence_mcp.mcp.registry import (
    DEFAULT_MIME_TYPE,
    ParameterSpec,
    Registry,
    ValueType,
)
from confluence_mcp.sdk.errors import ConfluenceError, ErrorKind

logger = logging.getLogger("ConfluenceMCP.mcp.dispatcher")

_INTEGER_RE = re.compile(r"^[+-]?\d+$")


@dataclass(frozen=True)
class Success:
    payload: str
    mime_type: str = DEFAULT_MIME_TYPE

    @property
    def ok(self) -> bool:
        return True

    @property
    def text(self) -> str:
        return self.payload


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    mime_type: str = DEFAULT_MIME_TYPE
    context: Optional[str] = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def text(self) -> str:
        """Render the failure as the content an agent will read."""
        if self.mime_type == "application/json":
            return json.dumps({"error": self.message})
        if self.mime_type == "text/html":
            return f"<!-- Error: {self.message} -->"
        if self.context:
            return f"{self.context}: {self.message}"
        return self.message


InvocationResult = Union[Success, Failure]


class ArgumentError(Exception):
    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


def coerce_value(spec: ParameterSpec, value: Any) -> Any:
    """Strictly coerce a wire value to the declared parameter type."""
    vt = spec.value_type
    expected = f"Invalid value for parameter '{spec.name}': expected {vt.json_type}"

    if vt in (ValueType.STRING, ValueType.OPTIONAL_STRING):
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        raise ArgumentError(ErrorKind.BAD_ARGUMENT, f"{expected}, got {type(value).__name__}")

    if vt is ValueType.INTEGER:
        if isinstance(value, bool):
            raise ArgumentError(ErrorKind.BAD_ARGUMENT, f"{expected}, got boolean")
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and _INTEGER_RE.match(value.strip()):
            return int(value.strip())
        raise ArgumentError(ErrorKind.BAD_ARGUMENT, f"{expected}, got {value!r}")

    if vt is ValueType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered == "true":
                return True
            if lowered == "false":
                return False
        raise ArgumentError(ErrorKind.BAD_ARGUMENT, f"{expected}, got {value!r}")

    raise ArgumentError(ErrorKind.BAD_ARGUMENT, f"{expected}: unsupported type")


def bind_arguments(parameters: Sequence[ParameterSpec], arguments: Mapping[str, Any]) -> List[Any]:
    """Return handler arguments in declared order; raises ArgumentError."""
    bound: List[Any] = []
    for spec in parameters:
        value = arguments.get(spec.name)
        if value is None:
            if spec.required:
                raise ArgumentError(
                    ErrorKind.MISSING_ARGUMENT,
                    f"Missing required parameter '{spec.name}'",
                )
            bound.append(spec.default)
            continue
        bound.append(coerce_value(spec, value))

    extra = set(arguments) - {spec.name for spec in parameters}
    if extra:
        logger.debug("Ignoring undeclared arguments: %s", sorted(extra))
    return bound


async def _call_handler(handler: Callable[..., Any], bound: Sequence[Any]) -> Any:
    result = handler(*bound)
    if inspect.isawaitable(result):
        result = await result
    return result


class Dispatcher:
    """Call-time front end over an immutable ``Registry``."""

    def __init__(self, registry: Registry, default_timeout: Optional[float] = None):
        self.registry = registry
        self.default_timeout = default_timeout

    def list_operations(self) -> List[Dict[str, Any]]:
        return [op.summary() for op in self.registry.operations.values()]

    def list_resources(self) -> List[Dict[str, Any]]:
        return [res.summary() for res in self.registry.resources]

    def list_static_resources(self) -> List[Dict[str, Any]]:
        return [res.summary() for res in self.registry.resources if not res.is_template]

    def list_resource_templates(self) -> List[Dict[str, Any]]:
        return [res.summary() for res in self.registry.resources if res.is_template]

    async def invoke(
        self,
        identifier: str,
        arguments: Optional[Mapping[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> InvocationResult:
        started = time.monotonic()
        result = await self._invoke(identifier, arguments, timeout)
        self._log_telemetry("Tool call telemetry: name=%s", identifier, result, started)
        return result

    async def resolve(self, uri: str, *, timeout: Optional[float] = None) -> InvocationResult:
        started = time.monotonic()
        result = await self._resolve(uri, timeout)
        self._log_telemetry("Resource read telemetry: uri=%s", uri, result, started)
        return result

    async def _invoke(
        self,
        identifier: str,
        arguments: Optional[Mapping[str, Any]],
        timeout: Optional[float],
    ) -> InvocationResult:
        op = self.registry.get_operation(identifier)
        if op is None:
            return Failure(ErrorKind.NOT_FOUND, f"Unknown tool: {identifier}")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, Mapping):
            return Failure(ErrorKind.BAD_ARGUMENT, "Tool arguments must be an object")
        try:
            bound = bind_arguments(op.parameters, arguments)
        except ArgumentError as exc:
            return Failure(exc.kind, exc.message)
        return await self._run(
            identifier,
            op.handler,
            bound,
            DEFAULT_MIME_TYPE,
            op.error_prefix,
            timeout,
        )

    async def _resolve(self, uri: str, timeout: Optional[float]) -> InvocationResult:
        match = self.registry.match_resource(uri)
        if match is None:
            return Failure(ErrorKind.NOT_FOUND, f"no resource matches {uri}")
        res, variables = match
        try:
            bound = bind_arguments(res.parameters, variables)
        except ArgumentError as exc:
            return Failure(exc.kind, exc.message, res.mime_type)
        return await self._run(uri, res.handler, bound, res.mime_type, None, timeout)

    async def _run(
        self,
        label: str,
        handler: Callable[..., Any],
        bound: Sequence[Any],
        mime_type: str,
        context: Optional[str],
        timeout: Optional[float],
    ) -> InvocationResult:
        effective_timeout = timeout if timeout is not None else self.default_timeout
        call = self._guarded(label, handler, bound, mime_type, context)
        if effective_timeout is None:
            return await call
        try:
            # Handler exceptions are already folded into a Failure, so only
            # wait_for itself can raise TimeoutError here.
            return await asyncio.wait_for(call, effective_timeout)
        except asyncio.TimeoutError:
            logger.warning("Call to %s timed out after %.1fs", label, effective_timeout)
            return Failure(
                ErrorKind.TRANSPORT_FAILURE,
                f"Timed out after {effective_timeout:g}s",
                mime_type,
                context,
            )

    async def _guarded(
        self,
        label: str,
        handler: Callable[..., Any],
        bound: Sequence[Any],
        mime_type: str,
        context: Optional[str],
    ) -> InvocationResult:
        try:
            result = await _call_handler(handler, bound)
        except ConfluenceError as exc:
            logger.warning("Call to %s failed (%s): %s", label, exc.kind.value, exc)
            return Failure(exc.kind, str(exc), mime_type, context)
        except Exception as exc:
            logger.exception("Handler for %s raised", label)
            return Failure(ErrorKind.HANDLER_ERROR, str(exc), mime_type, context)

        if not isinstance(result, str):
            return Failure(
                ErrorKind.HANDLER_ERROR,
                f"Handler returned {type(result).__name__}, expected str",
                mime_type,
                context,
            )
        return Success(result, mime_type)

    @staticmethod
    def _log_telemetry(prefix: str, label: str, result: InvocationResult, started: float) -> None:
        elapsed_ms = max(0.0, (time.monotonic() - started) * 1000.0)
        kind = "-" if result.ok else result.kind.value
        logger.info(
            prefix + " outcome=%s kind=%s elapsed_ms=%.1f",
            label,
            "success" if result.ok else "error",
            kind,
            elapsed_ms,
        )
