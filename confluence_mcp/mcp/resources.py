"""
Confluence MCP resource handlers (read-only views).
"""

import json

from confluence_mcp.core.config import DeploymentMode, resolve_profile
from confluence_mcp.mcp.utils import build_cql, cql_quote, encode_query_value
from confluence_mcp.sdk.client import ConfluenceGateway, api_base_path, format_json_response


def get_configuration(gateway: ConfluenceGateway) -> str:
    """Connection summary; never includes the email or token."""
    conn = gateway.config.connection
    resolution = resolve_profile(gateway.config)
    summary = {
        "baseUrl": conn.base_url,
        "deploymentType": conn.deployment_type,
        "isCloud": conn.mode is DeploymentMode.CLOUD,
        "isDatacenter": conn.mode is DeploymentMode.SELF_HOSTED,
        "isConfigured": resolution.ok,
        "apiBasePath": api_base_path(conn.mode),
    }
    if not resolution.ok:
        summary["configurationError"] = resolution.error
    return json.dumps(summary, indent=2)


async def _get(gateway: ConfluenceGateway, path: str) -> str:
    return format_json_response(await gateway.get(path))


async def _search(gateway: ConfluenceGateway, cql: str, query: str) -> str:
    return await _get(gateway, f"search?cql={encode_query_value(cql)}&{query}")


# --- Pages ---


async def page(gateway: ConfluenceGateway, page_id: str) -> str:
    return await _get(gateway, f"content/{page_id}?expand=body.storage,version,space,ancestors,metadata.labels")


async def page_body(gateway: ConfluenceGateway, page_id: str) -> str:
    document = json.loads(await gateway.get(f"content/{page_id}?expand=body.storage"))
    value = ((document.get("body") or {}).get("storage") or {}).get("value")
    return value if isinstance(value, str) else ""


async def page_children(gateway: ConfluenceGateway, page_id: str) -> str:
    return await _get(gateway, f"content/{page_id}/child/page?expand=version&limit=50")


async def page_comments(gateway: ConfluenceGateway, page_id: str) -> str:
    return await _get(gateway, f"content/{page_id}/child/comment?expand=body.storage,version&depth=all&limit=50")


async def page_attachments(gateway: ConfluenceGateway, page_id: str) -> str:
    return await _get(gateway, f"content/{page_id}/child/attachment?expand=version,metadata.mediaType&limit=50")


async def page_labels(gateway: ConfluenceGateway, page_id: str) -> str:
    return await _get(gateway, f"content/{page_id}/label")


async def page_history(gateway: ConfluenceGateway, page_id: str) -> str:
    return await _get(gateway, f"content/{page_id}/history?expand=lastUpdated,previousVersion,contributors")


# --- Spaces ---


async def all_spaces(gateway: ConfluenceGateway) -> str:
    return await _get(gateway, "space?limit=100&expand=description.plain,homepage")


async def space(gateway: ConfluenceGateway, space_key: str) -> str:
    return await _get(gateway, f"space/{space_key}?expand=description.plain,homepage,metadata.labels")


async def space_pages(gateway: ConfluenceGateway, space_key: str) -> str:
    return await _get(gateway, f"space/{space_key}/content/page?limit=100&expand=version")


async def space_blog_posts(gateway: ConfluenceGateway, space_key: str) -> str:
    return await _get(gateway, f"space/{space_key}/content/blogpost?limit=50&expand=version")


async def space_root_pages(gateway: ConfluenceGateway, space_key: str) -> str:
    return await _get(gateway, f"space/{space_key}/content/page?depth=root&limit=50&expand=version")


async def space_templates(gateway: ConfluenceGateway, space_key: str) -> str:
    return await _get(gateway, f"template/page?spaceKey={encode_query_value(space_key)}&expand=body&limit=50")


# --- Users and activity ---


async def current_user(gateway: ConfluenceGateway) -> str:
    return await _get(gateway, "user/current")


async def my_recent_work(gateway: ConfluenceGateway) -> str:
    cql = build_cql(["contributor=currentUser()"], order_by="lastmodified DESC")
    return await _search(gateway, cql, "limit=25&expand=content.space")


async def recent_pages(gateway: ConfluenceGateway) -> str:
    cql = build_cql(["type=page"], order_by="lastmodified DESC")
    return await _search(gateway, cql, "limit=25&expand=content.space,content.version")


async def recent_blog_posts(gateway: ConfluenceGateway) -> str:
    cql = build_cql(["type=blogpost"], order_by="created DESC")
    return await _search(gateway, cql, "limit=25&expand=content.space,content.version")


async def global_templates(gateway: ConfluenceGateway) -> str:
    return await _get(gateway, "template/page?expand=body&limit=50")


# --- Search ---


async def search(gateway: ConfluenceGateway, query: str) -> str:
    return await _search(gateway, f"text~{cql_quote(query)}", "limit=25&expand=content.space,excerpt")


async def content_by_label(gateway: ConfluenceGateway, label: str) -> str:
    return await _search(
        gateway,
        f"label={cql_quote(label)}",
        "limit=50&expand=content.space,content.metadata.labels",
    )
