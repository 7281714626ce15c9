"""Resource reads through the full registry against a mocked Confluence."""

import json
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from confluence_mcp.core.config import ConfluenceConfig, ConnectionConfig
from confluence_mcp.mcp.definitions import build_registry
from confluence_mcp.mcp.dispatcher import Dispatcher
from confluence_mcp.sdk.client import ConfluenceGateway
from confluence_mcp.sdk.errors import ErrorKind


def _dispatcher(config, handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return Dispatcher(build_registry(ConfluenceGateway(config, http_client=client)))


def _datacenter_config():
    return ConfluenceConfig(
        connection=ConnectionConfig(
            base_url="https://wiki.corp.local/",
            deployment_type="datacenter",
            api_token="pat-secret",
        )
    )


class TestConfigurationResource:
    pytestmark = pytest.mark.asyncio

    async def test_configured_summary_hides_credentials(self):
        config = ConfluenceConfig(
            connection=ConnectionConfig(
                base_url="https://acme.atlassian.net",
                email="dev@acme.io",
                api_token="super-secret",
            )
        )
        result = await _dispatcher(config, lambda r: httpx.Response(500)).resolve("confluence://config")
        assert result.mime_type == "application/json"
        payload = json.loads(result.text)
        assert payload == {
            "baseUrl": "https://acme.atlassian.net",
            "deploymentType": "cloud",
            "isCloud": True,
            "isDatacenter": False,
            "isConfigured": True,
            "apiBasePath": "/wiki/rest/api",
        }
        assert "super-secret" not in result.text
        assert "dev@acme.io" not in result.text

    async def test_datacenter_summary(self):
        result = await _dispatcher(_datacenter_config(), lambda r: httpx.Response(500)).resolve(
            "confluence://config"
        )
        payload = json.loads(result.text)
        assert payload["isDatacenter"] is True
        assert payload["apiBasePath"] == "/rest/api"
        assert "pat-secret" not in result.text

    async def test_unconfigured_summary_reports_reason(self):
        result = await _dispatcher(ConfluenceConfig(), lambda r: httpx.Response(500)).resolve("confluence://config")
        payload = json.loads(result.text)
        assert payload["isConfigured"] is False
        assert payload["configurationError"] == "Confluence base URL not set (CONFLUENCE_BASE_URL)"


@pytest.mark.asyncio
async def test_page_body_returns_raw_storage_html():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"body": {"storage": {"value": "<p>Hello</p>"}}})

    result = await _dispatcher(_datacenter_config(), handler).resolve("confluence://page/42/body")
    assert result.ok
    assert result.mime_type == "text/html"
    assert result.text == "<p>Hello</p>"
    assert seen[0].url.path == "/rest/api/content/42"
    assert seen[0].headers["Authorization"] == "Bearer pat-secret"


@pytest.mark.asyncio
async def test_page_body_failure_is_an_html_comment():
    result = await _dispatcher(_datacenter_config(), lambda r: httpx.Response(404, text="gone")).resolve(
        "confluence://page/42/body"
    )
    assert result.kind is ErrorKind.UPSTREAM_ERROR
    assert result.text == "<!-- Error: Confluence API error (404): gone -->"


@pytest.mark.asyncio
async def test_json_resource_failure_is_an_error_object():
    result = await _dispatcher(_datacenter_config(), lambda r: httpx.Response(403, text="denied")).resolve(
        "confluence://space/DEV"
    )
    assert json.loads(result.text) == {"error": "Confluence API error (403): denied"}


@pytest.mark.asyncio
async def test_space_root_pages_path():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"results": []})

    await _dispatcher(_datacenter_config(), handler).resolve("confluence://space/OPS/root-pages")
    request = seen[0]
    assert request.url.path == "/rest/api/space/OPS/content/page"
    assert parse_qs(urlsplit(str(request.url)).query)["depth"] == ["root"]


@pytest.mark.asyncio
async def test_label_resource_quotes_cql():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"results": []})

    await _dispatcher(_datacenter_config(), handler).resolve("confluence://label/how-to")
    query = parse_qs(urlsplit(str(seen[0].url)).query)
    assert query["cql"] == ['label="how-to"']


@pytest.mark.asyncio
async def test_recent_blog_posts_ordered_by_creation():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"results": []})

    await _dispatcher(_datacenter_config(), handler).resolve("confluence://recent-blogposts")
    query = parse_qs(urlsplit(str(seen[0].url)).query)
    assert query["cql"] == ["type=blogpost ORDER BY created DESC"]


@pytest.mark.parametrize(
    "uri",
    ["confluence://page/1/body/x", "confluence://page/1/unknown", "confluence://nothing", "file:///etc/passwd"],
)
@pytest.mark.asyncio
async def test_unmatched_uris(uri):
    result = await _dispatcher(_datacenter_config(), lambda r: httpx.Response(500)).resolve(uri)
    assert result.kind is ErrorKind.NOT_FOUND
