"""Tests for the dispatcher: binding, coercion, failure conversion, timeouts."""

import asyncio
import json
import logging
from typing import Any, List

import pytest

from confluence_mcp.mcp.dispatcher import Dispatcher, Failure, Success
from confluence_mcp.mcp.registry import (
    OperationDescriptor,
    Registry,
    ValueType,
    optional_param,
    param,
    resource,
)
from confluence_mcp.sdk.errors import ConfigurationInvalidError, ConfluenceAPIError, ErrorKind


class _Spy:
    def __init__(self, result: Any = "done"):
        self.result = result
        self.calls: List[tuple] = []

    async def __call__(self, *args):
        self.calls.append(args)
        return self.result


def _dispatcher(*ops: OperationDescriptor, resources=(), timeout=None) -> Dispatcher:
    return Dispatcher(Registry(ops, resources), default_timeout=timeout)


def _op(name, handler, *params, prefix="Error doing thing") -> OperationDescriptor:
    return OperationDescriptor(
        identifier=name,
        description=name,
        parameters=tuple(params),
        handler=handler,
        error_prefix=prefix,
    )


@pytest.mark.asyncio
async def test_unknown_tool_is_not_found():
    result = await _dispatcher().invoke("nope", {})
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.NOT_FOUND
    assert "nope" in result.text


@pytest.mark.asyncio
async def test_missing_required_argument_never_calls_handler():
    spy = _Spy()
    dispatcher = _dispatcher(_op("t", spy, param("pageId", "id")))
    result = await dispatcher.invoke("t", {})
    assert result.kind is ErrorKind.MISSING_ARGUMENT
    assert "pageId" in result.message
    assert spy.calls == []


@pytest.mark.asyncio
async def test_optional_arguments_receive_declared_defaults():
    spy = _Spy()
    dispatcher = _dispatcher(
        _op(
            "t",
            spy,
            param("pageId", "id"),
            optional_param("limit", "max", 25, ValueType.INTEGER),
            optional_param("parentId", "parent", None, ValueType.OPTIONAL_STRING),
            optional_param("purge", "purge", False, ValueType.BOOLEAN),
        )
    )
    result = await dispatcher.invoke("t", {"pageId": "5", "parentId": None})
    assert result == Success("done", "text/plain")
    assert spy.calls == [("5", 25, None, False)]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "value_type,raw,expected",
    [
        (ValueType.INTEGER, "42", 42),
        (ValueType.INTEGER, " -3 ", -3),
        (ValueType.INTEGER, 7.0, 7),
        (ValueType.BOOLEAN, "TRUE", True),
        (ValueType.BOOLEAN, "false", False),
        (ValueType.STRING, 12345, "12345"),
    ],
)
async def test_coercion_accepts_strict_forms(value_type, raw, expected):
    spy = _Spy()
    dispatcher = _dispatcher(_op("t", spy, param("v", "v", value_type)))
    result = await dispatcher.invoke("t", {"v": raw})
    assert result.ok
    assert spy.calls == [(expected,)]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "value_type,raw",
    [
        (ValueType.INTEGER, "4.5"),
        (ValueType.INTEGER, "ten"),
        (ValueType.INTEGER, True),
        (ValueType.INTEGER, 2.5),
        (ValueType.BOOLEAN, "yes"),
        (ValueType.BOOLEAN, 1),
        (ValueType.STRING, {"a": 1}),
    ],
)
async def test_coercion_rejects_loose_forms(value_type, raw):
    spy = _Spy()
    dispatcher = _dispatcher(_op("t", spy, param("versionNumber", "v", value_type)))
    result = await dispatcher.invoke("t", {"versionNumber": raw})
    assert result.kind is ErrorKind.BAD_ARGUMENT
    assert "versionNumber" in result.message
    assert value_type.json_type in result.message
    assert spy.calls == []


@pytest.mark.asyncio
async def test_undeclared_arguments_are_ignored():
    spy = _Spy()
    dispatcher = _dispatcher(_op("t", spy, param("a", "a")))
    result = await dispatcher.invoke("t", {"a": "x", "extra": 1})
    assert result.ok
    assert spy.calls == [("x",)]


@pytest.mark.asyncio
async def test_non_mapping_arguments_rejected():
    result = await _dispatcher(_op("t", _Spy())).invoke("t", ["a"])
    assert result.kind is ErrorKind.BAD_ARGUMENT


@pytest.mark.asyncio
async def test_gateway_errors_keep_their_kind_and_get_prefixed():
    async def handler(page_id):
        raise ConfluenceAPIError(404, '{"message":"not found"}', path=f"content/{page_id}")

    dispatcher = _dispatcher(_op("get", handler, param("pageId", "id"), prefix="Error getting page"))
    result = await dispatcher.invoke("get", {"pageId": "1"})
    assert result.kind is ErrorKind.UPSTREAM_ERROR
    assert result.text == 'Error getting page: Confluence API error (404): {"message":"not found"}'


@pytest.mark.asyncio
async def test_configuration_errors_surface_as_text():
    async def handler():
        raise ConfigurationInvalidError("Confluence base URL not set (CONFLUENCE_BASE_URL)")

    result = await _dispatcher(_op("t", handler, prefix="Error listing spaces")).invoke("t")
    assert result.kind is ErrorKind.CONFIGURATION_INVALID
    assert result.text.startswith("Error listing spaces: Confluence base URL not set")


@pytest.mark.asyncio
async def test_unexpected_exceptions_become_handler_errors(caplog):
    def handler():
        raise KeyError("body")

    with caplog.at_level(logging.ERROR, logger="ConfluenceMCP.mcp.dispatcher"):
        result = await _dispatcher(_op("t", handler)).invoke("t", {})
    assert result.kind is ErrorKind.HANDLER_ERROR
    assert "body" in result.message
    assert "Handler for t raised" in caplog.text


@pytest.mark.asyncio
async def test_sync_handlers_are_supported():
    result = await _dispatcher(_op("t", lambda v: v.upper(), param("v", "v"))).invoke("t", {"v": "ab"})
    assert result == Success("AB")


@pytest.mark.asyncio
async def test_non_string_result_is_a_handler_error():
    result = await _dispatcher(_op("t", _Spy(result={"a": 1}))).invoke("t", {})
    assert result.kind is ErrorKind.HANDLER_ERROR
    assert "expected str" in result.message


@pytest.mark.asyncio
async def test_timeout_cancels_handler_and_reports_transport_failure():
    cancelled = asyncio.Event()

    async def slow():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return "late"

    dispatcher = _dispatcher(_op("slow", slow, prefix="Error waiting"), timeout=5)
    result = await dispatcher.invoke("slow", {}, timeout=0.01)
    assert result.kind is ErrorKind.TRANSPORT_FAILURE
    assert result.text.startswith("Error waiting: Timed out")
    assert cancelled.is_set()


@pytest.mark.asyncio
@pytest.mark.parametrize("timeout", [None, 5])
async def test_handler_raised_timeout_error_is_a_handler_error(timeout):
    async def handler():
        raise TimeoutError("socket read timed out")

    dispatcher = _dispatcher(_op("t", handler, prefix="Error reading"), timeout=timeout)
    result = await dispatcher.invoke("t", {})
    assert result.kind is ErrorKind.HANDLER_ERROR
    assert result.text == "Error reading: socket read timed out"


@pytest.mark.asyncio
async def test_caller_cancellation_propagates():
    started = asyncio.Event()

    async def slow():
        started.set()
        await asyncio.sleep(10)
        return "late"

    dispatcher = _dispatcher(_op("slow", slow))
    task = asyncio.create_task(dispatcher.invoke("slow", {}))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_concurrent_invocations_do_not_share_arguments():
    seen = {}

    async def first(value):
        await asyncio.sleep(0.01)
        seen["first"] = value
        return f"first:{value}"

    async def second(value):
        await asyncio.sleep(0)
        seen["second"] = value
        return f"second:{value}"

    dispatcher = _dispatcher(
        _op("first", first, param("value", "v")),
        _op("second", second, param("value", "v")),
    )
    a, b = await asyncio.gather(
        dispatcher.invoke("first", {"value": "A"}),
        dispatcher.invoke("second", {"value": "B"}),
    )
    assert (a.text, b.text) == ("first:A", "second:B")
    assert seen == {"first": "A", "second": "B"}


@pytest.mark.asyncio
async def test_telemetry_line_is_logged(caplog):
    with caplog.at_level(logging.INFO, logger="ConfluenceMCP.mcp.dispatcher"):
        await _dispatcher(_op("t", _Spy())).invoke("t", {})
        await _dispatcher().invoke("missing", {})
    assert "Tool call telemetry: name=t outcome=success kind=-" in caplog.text
    assert "Tool call telemetry: name=missing outcome=error kind=not_found" in caplog.text


class TestResolve:
    def _dispatcher(self, body_handler=None):
        async def page(page_id):
            return json.dumps({"id": page_id})

        async def failing(page_id):
            raise ConfluenceAPIError(500, "boom")

        return _dispatcher(
            resources=[
                resource("confluence://config", "Config", "cfg", lambda: '{"ok": true}'),
                resource("confluence://page/{pageId}", "Page", "p", page, parameters=(param("pageId", "id"),)),
                resource(
                    "confluence://page/{pageId}/body",
                    "Body",
                    "b",
                    body_handler or failing,
                    mime_type="text/html",
                    parameters=(param("pageId", "id"),),
                ),
                resource(
                    "confluence://broken/{pageId}",
                    "Broken",
                    "b",
                    failing,
                    parameters=(param("pageId", "id"),),
                ),
            ]
        )

    @pytest.mark.asyncio
    async def test_static_resource(self):
        result = await self._dispatcher().resolve("confluence://config")
        assert result == Success('{"ok": true}', "application/json")

    @pytest.mark.asyncio
    async def test_template_variables_are_bound(self):
        result = await self._dispatcher().resolve("confluence://page/123")
        assert json.loads(result.text) == {"id": "123"}

    @pytest.mark.asyncio
    async def test_unmatched_uri(self):
        result = await self._dispatcher().resolve("confluence://page/1/body/extra")
        assert result.kind is ErrorKind.NOT_FOUND
        assert result.text == "no resource matches confluence://page/1/body/extra"

    @pytest.mark.asyncio
    async def test_json_resource_failure_renders_error_object(self):
        result = await self._dispatcher().resolve("confluence://broken/1")
        assert result.kind is ErrorKind.UPSTREAM_ERROR
        assert json.loads(result.text) == {"error": "Confluence API error (500): boom"}

    @pytest.mark.asyncio
    async def test_html_resource_failure_renders_comment(self):
        result = await self._dispatcher().resolve("confluence://page/1/body")
        assert result.text == "<!-- Error: Confluence API error (500): boom -->"


def test_listing():
    dispatcher = _dispatcher(
        _op("a", _Spy()),
        resources=[
            resource("x://static", "S", "s", _Spy()),
            resource("x://t/{id}", "T", "t", _Spy(), parameters=(param("id", "id"),)),
        ],
    )
    assert [op["name"] for op in dispatcher.list_operations()] == ["a"]
    listed = dispatcher.list_resources()
    assert listed[0]["uri"] == "x://static"
    assert listed[1]["uriTemplate"] == "x://t/{id}"
    assert [r["name"] for r in dispatcher.list_resource_templates()] == ["T"]
    assert [r["name"] for r in dispatcher.list_static_resources()] == ["S"]
