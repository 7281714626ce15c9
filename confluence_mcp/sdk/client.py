"""
Confluence REST gateway (async) plus the pure helpers it is built from.

The gateway never mutates the shared ``httpx.AsyncClient``: the
Authorization header and any per-call content negotiation are attached to
each outgoing request individually, so concurrent calls cannot observe one
another's headers.
"""

from __future__ import annotations

import base64
import copy
import json
import logging
from typing import Any, Dict, Mapping, Optional

import httpx
import requests

from confluence_mcp.core.config import (
    ConfluenceConfig,
    DeploymentMode,
    DeploymentProfile,
    resolve_profile,
)
from confluence_mcp.sdk.errors import (
    ConfigurationInvalidError,
    ConfluenceAPIError,
    ConfluenceConnectionError,
)

logger = logging.getLogger("ConfluenceMCP.sdk.client")

CLOUD_V1_BASE_PATH = "/wiki/rest/api"
CLOUD_V2_BASE_PATH = "/wiki/api/v2"
SELF_HOSTED_BASE_PATH = "/rest/api"
DELETED_MESSAGE = "Deleted successfully"


def authorization_header(profile: DeploymentProfile) -> str:
    if profile.mode is DeploymentMode.CLOUD:
        raw = f"{profile.email}:{profile.secret}".encode("utf-8")
        return f"Basic {base64.b64encode(raw).decode('ascii')}"
    return f"Bearer {profile.secret}"


def api_base_path(mode: DeploymentMode, use_v2: bool = False) -> str:
    if mode is DeploymentMode.CLOUD:
        return CLOUD_V2_BASE_PATH if use_v2 else CLOUD_V1_BASE_PATH
    # Server/Data Center exposes a single REST API version.
    return SELF_HOSTED_BASE_PATH


def build_url(profile: DeploymentProfile, path: str, use_v2: bool = False) -> str:
    base = profile.base_url.rstrip("/")
    return f"{base}{api_base_path(profile.mode, use_v2)}/{path.lstrip('/')}"


def format_json_response(text: str) -> str:
    """Pretty-print a JSON document; return the input unchanged if it is not JSON."""
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return text
    return json.dumps(parsed, indent=2, ensure_ascii=False)


def extract_results_summary(text: str, results_key: str = "results") -> str:
    """
    Reduce a paged collection to ``{totalCount, <results_key>, _links?}``.

    Falls back to returning ``text`` unchanged when it is not JSON or has
    no list under ``results_key``.
    """
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return text
    if not isinstance(parsed, dict) or not isinstance(parsed.get(results_key), list):
        return text

    results = parsed[results_key]
    summary: Dict[str, Any] = {"totalCount": len(results), results_key: results}
    if "_links" in parsed:
        summary["_links"] = copy.deepcopy(parsed["_links"])
    return json.dumps(summary, indent=2, ensure_ascii=False)


def _encode_body(body: Any) -> Any:
    to_wire = getattr(body, "to_wire", None)
    if callable(to_wire):
        return to_wire()
    return body


class ConfluenceGateway:
    """
    Async gateway for the Confluence REST API.

    Usage:
        async with ConfluenceGateway(ConfluenceConfig.from_env()) as gateway:
            text = await gateway.get("content/12345?expand=version")
    """

    def __init__(
        self,
        config: ConfluenceConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.config = config
        self.timeout = float(timeout if timeout is not None else config.http.timeout_seconds)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            headers={"Accept": "application/json"},
            verify=config.http.verify_ssl,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ConfluenceGateway":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def profile(self) -> DeploymentProfile:
        """Re-validate the configuration; raises ConfigurationInvalidError."""
        resolution = resolve_profile(self.config)
        if not resolution.ok:
            raise ConfigurationInvalidError(resolution.error)
        return resolution.profile

    def _headers(
        self,
        profile: DeploymentProfile,
        accept: str = "application/json",
        extra: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, str]:
        headers = {"Authorization": authorization_header(profile), "Accept": accept}
        if extra:
            headers.update(extra)
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        *,
        use_v2: bool = False,
        timeout: Optional[float] = None,
        accept: str = "application/json",
        extra_headers: Optional[Mapping[str, str]] = None,
        **request_kwargs: Any,
    ) -> httpx.Response:
        profile = self.profile()
        url = build_url(profile, path, use_v2)
        effective_timeout = float(timeout if timeout is not None else self.timeout)
        logger.debug("Confluence %s %s", method, url)
        try:
            response = await self._client.request(
                method,
                url,
                headers=self._headers(profile, accept, extra_headers),
                timeout=effective_timeout,
                **request_kwargs,
            )
        except httpx.HTTPError as exc:
            raise ConfluenceConnectionError(
                f"Failed to reach Confluence at {profile.base_url}: {exc}"
            ) from exc

        if not response.is_success:
            raise ConfluenceAPIError(response.status_code, response.text, path=path)
        return response

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        use_v2: bool = False,
        timeout: Optional[float] = None,
    ) -> str:
        kwargs: Dict[str, Any] = {}
        if body is not None:
            kwargs["json"] = _encode_body(body)
        response = await self._send(method, path, use_v2=use_v2, timeout=timeout, **kwargs)
        return response.text

    async def get(self, path: str, *, use_v2: bool = False, timeout: Optional[float] = None) -> str:
        return await self.request("GET", path, use_v2=use_v2, timeout=timeout)

    async def post(
        self,
        path: str,
        body: Any = None,
        *,
        use_v2: bool = False,
        timeout: Optional[float] = None,
    ) -> str:
        return await self.request("POST", path, body, use_v2=use_v2, timeout=timeout)

    async def put(
        self,
        path: str,
        body: Any = None,
        *,
        use_v2: bool = False,
        timeout: Optional[float] = None,
    ) -> str:
        return await self.request("PUT", path, body, use_v2=use_v2, timeout=timeout)

    async def delete(self, path: str, *, use_v2: bool = False, timeout: Optional[float] = None) -> str:
        text = await self.request("DELETE", path, use_v2=use_v2, timeout=timeout)
        return text if text else DELETED_MESSAGE

    async def get_bytes(
        self,
        path: str,
        *,
        use_v2: bool = False,
        timeout: Optional[float] = None,
    ) -> bytes:
        response = await self._send("GET", path, use_v2=use_v2, timeout=timeout, accept="*/*")
        return response.content

    async def post_multipart(
        self,
        path: str,
        files: Any,
        data: Optional[Mapping[str, str]] = None,
        *,
        use_v2: bool = False,
        timeout: Optional[float] = None,
    ) -> str:
        """
        POST ``multipart/form-data``. ``files`` may be an ``AttachmentUpload``
        draft or an httpx ``files`` mapping.
        """
        to_wire = getattr(files, "to_wire", None)
        if callable(to_wire):
            files, draft_data = to_wire()
            data = {**draft_data, **(data or {})}
        response = await self._send(
            "POST",
            path,
            use_v2=use_v2,
            timeout=timeout,
            extra_headers={"X-Atlassian-Token": "no-check"},
            files=files,
            data=dict(data or {}),
        )
        return response.text


def probe_current_user(
    config: ConfluenceConfig,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Synchronous connectivity check against ``user/current``.

    Used by the ``doctor`` command, which runs outside any event loop.
    """
    resolution = resolve_profile(config)
    if not resolution.ok:
        raise ConfigurationInvalidError(resolution.error)
    profile = resolution.profile

    owns_session = session is None
    session = session or requests.Session()
    try:
        try:
            response = session.get(
                build_url(profile, "user/current"),
                headers={
                    "Authorization": authorization_header(profile),
                    "Accept": "application/json",
                },
                timeout=timeout if timeout is not None else config.http.timeout_seconds,
                verify=config.http.verify_ssl,
            )
        except requests.RequestException as exc:
            raise ConfluenceConnectionError(
                f"Failed to reach Confluence at {profile.base_url}: {exc}"
            ) from exc
        if response.status_code >= 400:
            raise ConfluenceAPIError(response.status_code, response.text, path="user/current")
        try:
            payload = response.json()
        except ValueError:
            payload = {"raw": response.text}
        return payload if isinstance(payload, dict) else {"result": payload}
    finally:
        if owns_session:
            session.close()
