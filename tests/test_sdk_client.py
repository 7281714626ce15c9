"""Tests for the Confluence gateway and its pure helpers."""

from __future__ import annotations

import asyncio
import base64
import json
from typing import Any, Dict, List

import httpx
import pytest
import requests

from confluence_mcp.core.config import (
    ConfluenceConfig,
    ConnectionConfig,
    DeploymentMode,
    DeploymentProfile,
)
from confluence_mcp.core.types import AttachmentUpload, PageDraft
from confluence_mcp.sdk import (
    ConfluenceGateway,
    api_base_path,
    authorization_header,
    build_url,
    extract_results_summary,
    format_json_response,
    probe_current_user,
)
from confluence_mcp.sdk.errors import (
    ConfigurationInvalidError,
    ConfluenceAPIError,
    ConfluenceConnectionError,
    ErrorKind,
)

CLOUD = ConfluenceConfig(
    connection=ConnectionConfig(
        base_url="https://acme.atlassian.net/",
        email="dev@acme.io",
        api_token="cloud-token",
    )
)
DATACENTER = ConfluenceConfig(
    connection=ConnectionConfig(
        base_url="https://wiki.example.com",
        deployment_type="datacenter",
        api_token="pat-token",
    )
)


def _profile(mode: DeploymentMode, base_url: str = "https://x.atlassian.net/wiki") -> DeploymentProfile:
    email = "me@x.io" if mode is DeploymentMode.CLOUD else None
    return DeploymentProfile(base_url=base_url, mode=mode, email=email, secret="s3cret")


class _Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def _gateway(config: ConfluenceConfig, handler) -> ConfluenceGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), headers={"Accept": "application/json"})
    return ConfluenceGateway(config, http_client=client)


class TestAuthorizationHeader:
    def test_cloud_uses_basic_auth(self):
        header = authorization_header(_profile(DeploymentMode.CLOUD))
        expected = base64.b64encode(b"me@x.io:s3cret").decode("ascii")
        assert header == f"Basic {expected}"

    def test_self_hosted_uses_bearer(self):
        assert authorization_header(_profile(DeploymentMode.SELF_HOSTED)) == "Bearer s3cret"


class TestEndpointBuilder:
    @pytest.mark.parametrize(
        "mode,use_v2,expected",
        [
            (DeploymentMode.CLOUD, False, "/wiki/rest/api"),
            (DeploymentMode.CLOUD, True, "/wiki/api/v2"),
            (DeploymentMode.SELF_HOSTED, False, "/rest/api"),
            (DeploymentMode.SELF_HOSTED, True, "/rest/api"),
        ],
    )
    def test_base_path_table(self, mode, use_v2, expected):
        assert api_base_path(mode, use_v2) == expected

    def test_base_url_used_literally(self):
        profile = _profile(DeploymentMode.CLOUD, "https://x.atlassian.net/wiki")
        assert build_url(profile, "pages/5", use_v2=True) == "https://x.atlassian.net/wiki/wiki/api/v2/pages/5"

    def test_slashes_are_normalized_at_the_join(self):
        profile = _profile(DeploymentMode.SELF_HOSTED, "https://wiki.example.com/")
        assert build_url(profile, "/content/5") == "https://wiki.example.com/rest/api/content/5"
        assert build_url(profile, "content/5") == "https://wiki.example.com/rest/api/content/5"

    def test_query_string_is_kept(self):
        profile = _profile(DeploymentMode.CLOUD, "https://x.atlassian.net")
        url = build_url(profile, "content/5?expand=version")
        assert url == "https://x.atlassian.net/wiki/rest/api/content/5?expand=version"


class TestFormatting:
    def test_pretty_print(self):
        assert format_json_response('{"a":1}') == '{\n  "a": 1\n}'

    def test_pretty_print_falls_back_on_invalid_json(self):
        assert format_json_response("not json") == "not json"
        assert format_json_response("") == ""

    def test_summary_keeps_links(self):
        text = json.dumps({"results": [1, 2, 3], "size": 3, "_links": {"next": "x"}})
        summary = json.loads(extract_results_summary(text, "results"))
        assert summary == {"totalCount": 3, "results": [1, 2, 3], "_links": {"next": "x"}}

    def test_summary_custom_key_without_links(self):
        summary = json.loads(extract_results_summary('{"items": []}', "items"))
        assert summary == {"totalCount": 0, "items": []}

    def test_summary_returns_input_when_key_missing(self):
        text = '{"size": 0}'
        assert extract_results_summary(text) == text
        assert extract_results_summary("[1, 2]") == "[1, 2]"
        assert extract_results_summary("garbage") == "garbage"


@pytest.mark.asyncio
async def test_cloud_get_attaches_auth_per_request():
    recorder = _Recorder(httpx.Response(200, json={"id": "5"}))
    async with _gateway(CLOUD, recorder) as gateway:
        text = await gateway.get("content/5?expand=version")

    assert json.loads(text) == {"id": "5"}
    request = recorder.requests[0]
    assert str(request.url) == "https://acme.atlassian.net/wiki/rest/api/content/5?expand=version"
    expected = base64.b64encode(b"dev@acme.io:cloud-token").decode("ascii")
    assert request.headers["Authorization"] == f"Basic {expected}"
    assert request.headers["Accept"] == "application/json"


@pytest.mark.asyncio
async def test_datacenter_uses_bearer_and_rest_api_path():
    recorder = _Recorder(httpx.Response(200, text="{}"))
    async with _gateway(DATACENTER, recorder) as gateway:
        await gateway.get("space", use_v2=True)

    request = recorder.requests[0]
    assert str(request.url) == "https://wiki.example.com/rest/api/space"
    assert request.headers["Authorization"] == "Bearer pat-token"


@pytest.mark.asyncio
async def test_non_success_status_raises_upstream_error_with_body():
    recorder = _Recorder(httpx.Response(404, text='{"message":"not found"}'))
    async with _gateway(CLOUD, recorder) as gateway:
        with pytest.raises(ConfluenceAPIError) as excinfo:
            await gateway.get("content/missing")

    err = excinfo.value
    assert err.kind is ErrorKind.UPSTREAM_ERROR
    assert err.status_code == 404
    assert err.path == "content/missing"
    assert "404" in str(err)
    assert '{"message":"not found"}' in str(err)


@pytest.mark.asyncio
async def test_invalid_configuration_never_reaches_transport():
    recorder = _Recorder(httpx.Response(200, text="{}"))
    config = ConfluenceConfig(connection=ConnectionConfig(base_url="https://acme.atlassian.net"))
    async with _gateway(config, recorder) as gateway:
        with pytest.raises(ConfigurationInvalidError, match="API token not set"):
            await gateway.get("content/5")
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_transport_errors_are_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with _gateway(CLOUD, handler) as gateway:
        with pytest.raises(ConfluenceConnectionError, match="Failed to reach Confluence") as excinfo:
            await gateway.get("content/5")
    assert excinfo.value.kind is ErrorKind.TRANSPORT_FAILURE


@pytest.mark.asyncio
async def test_draft_bodies_are_encoded_with_to_wire():
    recorder = _Recorder(httpx.Response(200, json={"id": "9"}))
    draft = PageDraft(title="Hello", content="<p>x</p>", space_key="DEV")
    async with _gateway(CLOUD, recorder) as gateway:
        await gateway.post("content", draft)
        await gateway.put("content/9", {"plain": True})

    create, update = recorder.requests
    assert create.method == "POST"
    assert json.loads(create.content) == draft.to_wire()
    assert update.method == "PUT"
    assert json.loads(update.content) == {"plain": True}


@pytest.mark.asyncio
async def test_delete_with_empty_body_reports_success():
    recorder = _Recorder(httpx.Response(204))
    async with _gateway(CLOUD, recorder) as gateway:
        assert await gateway.delete("content/5") == "Deleted successfully"
    assert recorder.requests[0].method == "DELETE"


@pytest.mark.asyncio
async def test_get_bytes_returns_raw_content_and_maps_errors():
    recorder = _Recorder(httpx.Response(200, content=b"\x89PNG"), httpx.Response(500, text="boom"))
    async with _gateway(CLOUD, recorder) as gateway:
        assert await gateway.get_bytes("download/1") == b"\x89PNG"
        with pytest.raises(ConfluenceAPIError, match="500"):
            await gateway.get_bytes("download/2")
    assert recorder.requests[0].headers["Accept"] == "*/*"


@pytest.mark.asyncio
async def test_multipart_headers_do_not_leak_into_later_calls():
    recorder = _Recorder(httpx.Response(200, json={"results": []}))
    upload = AttachmentUpload(filename="a.txt", data=b"hello", media_type="text/plain", comment="v1")
    async with _gateway(CLOUD, recorder) as gateway:
        await gateway.post_multipart("content/5/child/attachment", upload)
        await gateway.get("content/5")

    multipart, follow_up = recorder.requests
    assert multipart.headers["X-Atlassian-Token"] == "no-check"
    assert multipart.headers["Content-Type"].startswith("multipart/form-data")
    assert b'filename="a.txt"' in multipart.content
    assert b"hello" in multipart.content
    assert "X-Atlassian-Token" not in follow_up.headers
    assert follow_up.headers["Accept"] == "application/json"


@pytest.mark.asyncio
async def test_timeout_is_forwarded_to_transport():
    seen: List[Dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.extensions["timeout"])
        return httpx.Response(200, text="{}")

    async with _gateway(CLOUD, handler) as gateway:
        await gateway.get("content/1")
        await gateway.get("content/2", timeout=2.5)

    assert seen[0]["read"] == 30.0
    assert seen[1]["read"] == 2.5


@pytest.mark.asyncio
async def test_concurrent_calls_use_their_own_headers():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0)
        return httpx.Response(200, json={"auth": request.headers["Authorization"]})

    cloud = _gateway(CLOUD, handler)
    dc = _gateway(DATACENTER, handler)
    try:
        first, second = await asyncio.gather(cloud.get("a"), dc.get("b"))
    finally:
        await cloud._client.aclose()
        await dc._client.aclose()

    assert json.loads(first)["auth"].startswith("Basic ")
    assert json.loads(second)["auth"] == "Bearer pat-token"


@pytest.mark.asyncio
async def test_shared_client_headers_are_never_mutated():
    recorder = _Recorder(httpx.Response(200, text="{}"))
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    gateway = ConfluenceGateway(CLOUD, http_client=client)
    await gateway.get("content/1")
    await gateway.post_multipart("content/1/child/attachment", {"file": ("a", b"x", "text/plain")})
    assert "Authorization" not in client.headers
    assert "X-Atlassian-Token" not in client.headers
    await gateway.close()
    assert not client.is_closed
    await client.aclose()


class _StubSession:
    def __init__(self, response: Any):
        self.response = response
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def get(self, url: str, *, headers: Dict[str, str], timeout: float, verify: bool):
        self.calls.append({"url": url, "headers": headers, "timeout": timeout, "verify": verify})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    def close(self) -> None:
        self.closed = True


def _requests_response(status_code: int, payload: Any) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(payload).encode("utf-8") if not isinstance(payload, str) else payload.encode()
    return response


def test_probe_current_user_success():
    stub = _StubSession(_requests_response(200, {"displayName": "Dev"}))
    result = probe_current_user(DATACENTER, session=stub, timeout=4.0)
    assert result == {"displayName": "Dev"}
    call = stub.calls[0]
    assert call["url"] == "https://wiki.example.com/rest/api/user/current"
    assert call["headers"]["Authorization"] == "Bearer pat-token"
    assert call["timeout"] == 4.0
    assert stub.closed is False


def test_probe_current_user_errors():
    stub = _StubSession(_requests_response(401, "Unauthorized"))
    with pytest.raises(ConfluenceAPIError, match="401"):
        probe_current_user(CLOUD, session=stub)

    failing = _StubSession(requests.ConnectionError("dns"))
    with pytest.raises(ConfluenceConnectionError):
        probe_current_user(CLOUD, session=failing)

    with pytest.raises(ConfigurationInvalidError):
        probe_current_user(ConfluenceConfig(), session=stub)
