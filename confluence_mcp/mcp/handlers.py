"""
Confluence MCP tool handlers.

Each handler takes the gateway as its first argument (bound at
registration time) followed by the tool's declared parameters in order,
issues its upstream call(s) and returns the text the agent will read.
Errors propagate to the dispatcher, which renders them with the tool's
error prefix.
"""

import base64
import json
import logging
from typing import Any, Dict, Optional

from confluence_mcp.core.types import (
    AttachmentUpload,
    CommentDraft,
    ContentPropertyDraft,
    ContentType,
    LabelDraft,
    PageDraft,
    SpaceDraft,
)
from confluence_mcp.mcp.utils import build_cql, cql_quote, encode_query_value, is_blank
from confluence_mcp.sdk.client import ConfluenceGateway, format_json_response

logger = logging.getLogger("ConfluenceMCP.mcp.handlers")


def _storage_value(document: Dict[str, Any]) -> str:
    body = document.get("body") or {}
    storage = body.get("storage") or {}
    value = storage.get("value")
    return value if isinstance(value, str) else ""


async def _search(gateway: ConfluenceGateway, cql: str, query: str) -> str:
    text = await gateway.get(f"search?cql={encode_query_value(cql)}&{query}")
    return format_json_response(text)


# --- Pages ---


async def get_page(gateway: ConfluenceGateway, page_id: str, include_body: bool, body_format: str) -> str:
    expand = "version,space,ancestors"
    if include_body:
        expand = f"body.{encode_query_value(body_format)},{expand}"
    return format_json_response(await gateway.get(f"content/{page_id}?expand={expand}"))


async def get_page_by_title(gateway: ConfluenceGateway, space_key: str, title: str) -> str:
    text = await gateway.get(
        f"content?spaceKey={encode_query_value(space_key)}&title={encode_query_value(title)}"
        "&expand=body.storage,version,space,ancestors"
    )
    return format_json_response(text)


async def create_page(
    gateway: ConfluenceGateway,
    space_key: str,
    title: str,
    content: str,
    parent_id: Optional[str],
    content_type: str,
) -> str:
    draft = PageDraft(
        title=title,
        content=content,
        content_type=content_type,
        space_key=space_key,
        parent_id=parent_id,
    )
    return format_json_response(await gateway.post("content", draft))


async def update_page(
    gateway: ConfluenceGateway,
    page_id: str,
    title: str,
    content: str,
    version_number: int,
    version_message: Optional[str],
) -> str:
    draft = PageDraft.for_update(page_id, title, content, version_number, version_message)
    return format_json_response(await gateway.put(f"content/{page_id}", draft))


async def delete_page(gateway: ConfluenceGateway, page_id: str, purge: bool) -> str:
    path = f"content/{page_id}?status=trashed" if purge else f"content/{page_id}"
    await gateway.delete(path)
    return f"Page {page_id} deleted successfully"


async def get_page_children(gateway: ConfluenceGateway, page_id: str, limit: int, start: int) -> str:
    text = await gateway.get(f"content/{page_id}/child/page?limit={limit}&start={start}&expand=version")
    return format_json_response(text)


async def get_page_ancestors(gateway: ConfluenceGateway, page_id: str) -> str:
    return format_json_response(await gateway.get(f"content/{page_id}?expand=ancestors"))


async def get_page_history(gateway: ConfluenceGateway, page_id: str, limit: int) -> str:
    text = await gateway.get(
        f"content/{page_id}/history?expand=lastUpdated,previousVersion,contributors&limit={limit}"
    )
    return format_json_response(text)


async def get_page_version(gateway: ConfluenceGateway, page_id: str, version_number: int) -> str:
    text = await gateway.get(
        f"content/{page_id}?status=historical&version={version_number}&expand=body.storage,version"
    )
    return format_json_response(text)


async def copy_page(
    gateway: ConfluenceGateway,
    source_page_id: str,
    destination_space_key: str,
    new_title: str,
    parent_id: Optional[str],
) -> str:
    source = json.loads(await gateway.get(f"content/{source_page_id}?expand=body.storage"))
    draft = PageDraft(
        title=new_title,
        content=_storage_value(source),
        space_key=destination_space_key,
        parent_id=parent_id,
    )
    return format_json_response(await gateway.post("content", draft))


async def move_page(gateway: ConfluenceGateway, page_id: str, new_parent_id: str) -> str:
    current = json.loads(await gateway.get(f"content/{page_id}?expand=version,body.storage"))
    version = (current.get("version") or {}).get("number") or 1
    draft = PageDraft(
        page_id=page_id,
        title=current.get("title") or "",
        content=_storage_value(current),
        parent_id=new_parent_id,
        version_number=int(version) + 1,
    )
    return format_json_response(await gateway.put(f"content/{page_id}", draft))


# --- Spaces ---


async def list_spaces(gateway: ConfluenceGateway, space_type: str, limit: int, start: int) -> str:
    path = f"space?limit={limit}&start={start}&expand=description.plain,homepage"
    if space_type != "all":
        path += f"&type={encode_query_value(space_type)}"
    return format_json_response(await gateway.get(path))


async def get_space(gateway: ConfluenceGateway, space_key: str) -> str:
    text = await gateway.get(f"space/{space_key}?expand=description.plain,homepage,metadata.labels")
    return format_json_response(text)


async def create_space(
    gateway: ConfluenceGateway,
    space_key: str,
    name: str,
    description: Optional[str],
    space_type: str,
) -> str:
    draft = SpaceDraft(key=space_key, name=name, description=description, type=space_type)
    return format_json_response(await gateway.post("space", draft))


async def delete_space(gateway: ConfluenceGateway, space_key: str) -> str:
    await gateway.delete(f"space/{space_key}")
    return f"Space {space_key} deleted successfully"


async def get_space_content(
    gateway: ConfluenceGateway,
    space_key: str,
    content_type: str,
    limit: int,
    start: int,
    depth: str,
) -> str:
    text = await gateway.get(
        f"space/{space_key}/content/{content_type}?limit={limit}&start={start}"
        f"&depth={encode_query_value(depth)}&expand=version"
    )
    return format_json_response(text)


# --- Search ---


async def search(gateway: ConfluenceGateway, cql: str, limit: int, start: int, include_excerpt: bool) -> str:
    expand = "content.space,content.version,excerpt" if include_excerpt else "content.space,content.version"
    return await _search(gateway, cql, f"limit={limit}&start={start}&expand={expand}")


async def search_content(
    gateway: ConfluenceGateway,
    search_text: str,
    space_key: Optional[str],
    content_type: str,
    limit: int,
) -> str:
    parts = [f"text~{cql_quote(search_text)}"]
    if not is_blank(space_key):
        parts.append(f"space={cql_quote(space_key)}")
    if content_type != "all":
        parts.append(f"type={cql_quote(content_type)}")
    return await _search(gateway, build_cql(parts), f"limit={limit}&expand=content.space,excerpt")


async def search_by_label(gateway: ConfluenceGateway, label: str, space_key: Optional[str], limit: int) -> str:
    parts = [f"label={cql_quote(label)}"]
    if not is_blank(space_key):
        parts.append(f"space={cql_quote(space_key)}")
    return await _search(
        gateway,
        build_cql(parts),
        f"limit={limit}&expand=content.space,content.metadata.labels",
    )


# --- Comments ---


async def get_page_comments(gateway: ConfluenceGateway, page_id: str, depth: str, limit: int) -> str:
    text = await gateway.get(
        f"content/{page_id}/child/comment?depth={encode_query_value(depth)}&limit={limit}"
        "&expand=body.storage,version"
    )
    return format_json_response(text)


async def add_comment(
    gateway: ConfluenceGateway,
    page_id: str,
    comment_text: str,
    parent_comment_id: Optional[str],
) -> str:
    draft = CommentDraft(page_id=page_id, text=comment_text, parent_comment_id=parent_comment_id)
    return format_json_response(await gateway.post("content", draft))


async def delete_comment(gateway: ConfluenceGateway, comment_id: str) -> str:
    await gateway.delete(f"content/{comment_id}")
    return f"Comment {comment_id} deleted successfully"


# --- Attachments ---


async def get_attachments(gateway: ConfluenceGateway, page_id: str, limit: int) -> str:
    text = await gateway.get(
        f"content/{page_id}/child/attachment?limit={limit}&expand=version,metadata.mediaType"
    )
    return format_json_response(text)


async def get_attachment_info(gateway: ConfluenceGateway, attachment_id: str) -> str:
    text = await gateway.get(f"content/{attachment_id}?expand=version,container,metadata.mediaType")
    return format_json_response(text)


async def delete_attachment(gateway: ConfluenceGateway, attachment_id: str) -> str:
    await gateway.delete(f"content/{attachment_id}")
    return f"Attachment {attachment_id} deleted successfully"


async def upload_attachment(
    gateway: ConfluenceGateway,
    page_id: str,
    file_path: str,
    comment: Optional[str],
) -> str:
    upload = AttachmentUpload.from_path(file_path, comment=comment)
    logger.info("Uploading %s (%d bytes) to page %s", upload.filename, len(upload.data), page_id)
    return format_json_response(
        await gateway.post_multipart(f"content/{page_id}/child/attachment", upload)
    )


async def download_attachment(
    gateway: ConfluenceGateway,
    page_id: str,
    attachment_id: str,
    save_path: Optional[str],
) -> str:
    data = await gateway.get_bytes(f"content/{page_id}/child/attachment/{attachment_id}/download")
    if not is_blank(save_path):
        with open(save_path, "wb") as fh:
            fh.write(data)
        return f"Attachment {attachment_id} saved to {save_path} ({len(data)} bytes)"
    return json.dumps(
        {
            "attachmentId": attachment_id,
            "size": len(data),
            "base64": base64.b64encode(data).decode("ascii"),
        },
        indent=2,
    )


# --- Labels ---


async def get_labels(gateway: ConfluenceGateway, page_id: str) -> str:
    return format_json_response(await gateway.get(f"content/{page_id}/label"))


async def add_labels(gateway: ConfluenceGateway, page_id: str, labels: str) -> str:
    draft = LabelDraft.from_csv(labels)
    if not draft.names:
        raise ValueError("No label names given")
    return format_json_response(await gateway.post(f"content/{page_id}/label", draft))


async def remove_label(gateway: ConfluenceGateway, page_id: str, label: str) -> str:
    await gateway.delete(f"content/{page_id}/label/{label.lower()}")
    return f"Label '{label}' removed from page {page_id}"


# --- Users ---


async def get_current_user(gateway: ConfluenceGateway) -> str:
    return format_json_response(await gateway.get("user/current"))


async def search_users(gateway: ConfluenceGateway, query: str, limit: int) -> str:
    quoted = cql_quote(query)
    cql = f"user.fullname~{quoted} OR user.email~{quoted}"
    text = await gateway.get(f"search/user?cql={encode_query_value(cql)}&limit={limit}")
    return format_json_response(text)


async def get_user_content(gateway: ConfluenceGateway, user_key: str, limit: int) -> str:
    cql = build_cql([f"creator={cql_quote(user_key)}"], order_by="lastmodified DESC")
    return await _search(gateway, cql, f"limit={limit}&expand=content.space")


# --- Blog posts ---


async def create_blog_post(gateway: ConfluenceGateway, space_key: str, title: str, content: str) -> str:
    draft = PageDraft(
        title=title,
        content=content,
        content_type=ContentType.BLOGPOST.value,
        space_key=space_key,
    )
    return format_json_response(await gateway.post("content", draft))


async def get_blog_posts(gateway: ConfluenceGateway, space_key: str, limit: int) -> str:
    text = await gateway.get(f"space/{space_key}/content/blogpost?limit={limit}&expand=version,body.storage")
    return format_json_response(text)


# --- Templates ---


async def get_templates(gateway: ConfluenceGateway, space_key: Optional[str]) -> str:
    if is_blank(space_key):
        path = "template/page?expand=body"
    else:
        path = f"template/page?spaceKey={encode_query_value(space_key)}&expand=body"
    return format_json_response(await gateway.get(path))


async def create_page_from_template(
    gateway: ConfluenceGateway,
    space_key: str,
    title: str,
    template_id: str,
    parent_id: Optional[str],
) -> str:
    template = json.loads(await gateway.get(f"template/{template_id}?expand=body"))
    draft = PageDraft(
        title=title,
        content=_storage_value(template),
        space_key=space_key,
        parent_id=parent_id,
    )
    return format_json_response(await gateway.post("content", draft))


# --- Permissions ---


async def get_page_restrictions(gateway: ConfluenceGateway, page_id: str) -> str:
    return format_json_response(await gateway.get(f"content/{page_id}/restriction"))


async def get_space_permissions(gateway: ConfluenceGateway, space_key: str) -> str:
    return format_json_response(await gateway.get(f"space/{space_key}?expand=permissions"))


# --- Watching ---


async def watch_page(gateway: ConfluenceGateway, page_id: str) -> str:
    await gateway.post(f"user/watch/content/{page_id}", {})
    return f"Now watching page {page_id}"


async def unwatch_page(gateway: ConfluenceGateway, page_id: str) -> str:
    await gateway.delete(f"user/watch/content/{page_id}")
    return f"Stopped watching page {page_id}"


async def watch_space(gateway: ConfluenceGateway, space_key: str) -> str:
    await gateway.post(f"user/watch/space/{space_key}", {})
    return f"Now watching space {space_key}"


# --- Content properties ---


async def get_content_properties(gateway: ConfluenceGateway, page_id: str) -> str:
    return format_json_response(await gateway.get(f"content/{page_id}/property"))


async def set_content_property(gateway: ConfluenceGateway, page_id: str, key: str, value: str) -> str:
    draft = ContentPropertyDraft.from_json_text(key, value)
    return format_json_response(await gateway.post(f"content/{page_id}/property", draft))


# --- Recent activity ---


async def get_recent_content(gateway: ConfluenceGateway, space_key: Optional[str], limit: int) -> str:
    parts = ["type=page"]
    if not is_blank(space_key):
        parts.append(f"space={cql_quote(space_key)}")
    cql = build_cql(parts, order_by="lastmodified DESC")
    return await _search(gateway, cql, f"limit={limit}&expand=content.space,content.version")


async def get_my_recent_work(gateway: ConfluenceGateway, limit: int) -> str:
    cql = build_cql(["contributor=currentUser()"], order_by="lastmodified DESC")
    return await _search(gateway, cql, f"limit={limit}&expand=content.space")


# --- Server ---


async def get_server_info(gateway: ConfluenceGateway) -> str:
    return format_json_response(await gateway.get("settings/lookandfeel"))
