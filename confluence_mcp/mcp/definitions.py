"""
Confluence MCP Tool & Resource Definitions
------------------------------------------
The complete, hand-written registration table. ``build_registry`` binds
every handler to one gateway instance and returns the immutable registry
the dispatcher serves from.
"""

from functools import partial
from typing import Callable, List, Tuple

from confluence_mcp.mcp import handlers, resources
from confluence_mcp.mcp.registry import (
    OperationDescriptor,
    ParameterSpec,
    Registry,
    ResourceDescriptor,
    ValueType,
    optional_param,
    param,
    resource,
)
from confluence_mcp.sdk.client import ConfluenceGateway

INT = ValueType.INTEGER
BOOL = ValueType.BOOLEAN
OPT = ValueType.OPTIONAL_STRING

PAGE_ID = param("pageId", "The page ID")
SPACE_KEY = param("spaceKey", "The space key (e.g., DEV, HR)")
LIMIT = optional_param("limit", "Maximum results (default: 25)", 25, INT)
START = optional_param("start", "Start index for pagination (default: 0)", 0, INT)
OPTIONAL_SPACE_KEY = optional_param("spaceKey", "Space key to limit results (optional)", None, OPT)

# Each entry: (name, description, error prefix, handler, parameters)
ToolEntry = Tuple[str, str, str, Callable[..., object], Tuple[ParameterSpec, ...]]

TOOL_TABLE: List[ToolEntry] = [
    # Pages
    (
        "confluence_get_page",
        "Get a Confluence page by ID",
        "Error getting page",
        handlers.get_page,
        (
            PAGE_ID,
            optional_param("includeBody", "Include page body content (default: true)", True, BOOL),
            optional_param(
                "bodyFormat",
                "Body format: storage, atlas_doc_format, view, export_view (default: storage)",
                "storage",
            ),
        ),
    ),
    (
        "confluence_get_page_by_title",
        "Get a Confluence page by its title and space key",
        "Error getting page by title",
        handlers.get_page_by_title,
        (SPACE_KEY, param("title", "The page title")),
    ),
    (
        "confluence_create_page",
        "Create a new Confluence page",
        "Error creating page",
        handlers.create_page,
        (
            param("spaceKey", "The space key where the page will be created"),
            param("title", "The page title"),
            param("content", "The page content in Confluence storage format (XHTML)"),
            optional_param("parentId", "Parent page ID (optional - creates as child page)", None, OPT),
            optional_param("contentType", "Content type: page or blogpost (default: page)", "page"),
        ),
    ),
    (
        "confluence_update_page",
        "Update an existing Confluence page",
        "Error updating page",
        handlers.update_page,
        (
            param("pageId", "The page ID to update"),
            param("title", "The new page title"),
            param("content", "The new page content in Confluence storage format (XHTML)"),
            param("versionNumber", "Current version number (required for update)", INT),
            optional_param("versionMessage", "Version message/comment (optional)", None, OPT),
        ),
    ),
    (
        "confluence_delete_page",
        "Delete a Confluence page",
        "Error deleting page",
        handlers.delete_page,
        (
            param("pageId", "The page ID to delete"),
            optional_param("purge", "Purge permanently (true) or move to trash (false, default)", False, BOOL),
        ),
    ),
    (
        "confluence_get_page_children",
        "Get child pages of a Confluence page",
        "Error getting child pages",
        handlers.get_page_children,
        (param("pageId", "The parent page ID"), LIMIT, START),
    ),
    (
        "confluence_get_page_ancestors",
        "Get ancestor (parent) pages of a Confluence page",
        "Error getting page ancestors",
        handlers.get_page_ancestors,
        (PAGE_ID,),
    ),
    (
        "confluence_get_page_history",
        "Get version history of a Confluence page",
        "Error getting page history",
        handlers.get_page_history,
        (PAGE_ID, LIMIT),
    ),
    (
        "confluence_get_page_version",
        "Get a specific version of a Confluence page",
        "Error getting page version",
        handlers.get_page_version,
        (PAGE_ID, param("versionNumber", "The version number", INT)),
    ),
    (
        "confluence_copy_page",
        "Copy a Confluence page to a new location",
        "Error copying page",
        handlers.copy_page,
        (
            param("sourcePageId", "The source page ID to copy"),
            param("destinationSpaceKey", "Destination space key"),
            param("newTitle", "New page title"),
            optional_param("parentId", "Parent page ID in destination (optional)", None, OPT),
        ),
    ),
    (
        "confluence_move_page",
        "Move a Confluence page to a new parent",
        "Error moving page",
        handlers.move_page,
        (param("pageId", "The page ID to move"), param("newParentId", "New parent page ID")),
    ),
    # Spaces
    (
        "confluence_list_spaces",
        "List all Confluence spaces",
        "Error listing spaces",
        handlers.list_spaces,
        (
            optional_param("type", "Space type filter: global, personal, all (default: all)", "all"),
            LIMIT,
            START,
        ),
    ),
    (
        "confluence_get_space",
        "Get details of a Confluence space",
        "Error getting space",
        handlers.get_space,
        (SPACE_KEY,),
    ),
    (
        "confluence_create_space",
        "Create a new Confluence space",
        "Error creating space",
        handlers.create_space,
        (
            param("spaceKey", "The space key (unique identifier, e.g., DEV)"),
            param("name", "The space name"),
            optional_param("description", "Space description (optional)", None, OPT),
            optional_param("type", "Space type: global or personal (default: global)", "global"),
        ),
    ),
    (
        "confluence_delete_space",
        "Delete a Confluence space",
        "Error deleting space",
        handlers.delete_space,
        (param("spaceKey", "The space key to delete"),),
    ),
    (
        "confluence_get_space_content",
        "Get all content in a space",
        "Error getting space content",
        handlers.get_space_content,
        (
            SPACE_KEY,
            optional_param("contentType", "Content type: page, blogpost, or all (default: page)", "page"),
            LIMIT,
            START,
            optional_param("depth", "Depth: root (top-level only) or all (default: all)", "all"),
        ),
    ),
    # Search
    (
        "confluence_search",
        "Search Confluence using CQL (Confluence Query Language)",
        "Error searching",
        handlers.search,
        (
            param("cql", "CQL query string (e.g., 'type=page AND space=DEV AND text~\"search term\"')"),
            LIMIT,
            START,
            optional_param("includeExcerpt", "Include content excerpt in results (default: true)", True, BOOL),
        ),
    ),
    (
        "confluence_search_content",
        "Simple text search across Confluence content",
        "Error searching content",
        handlers.search_content,
        (
            param("searchText", "Search text"),
            OPTIONAL_SPACE_KEY,
            optional_param(
                "contentType",
                "Content type: page, blogpost, attachment, or all (default: all)",
                "all",
            ),
            LIMIT,
        ),
    ),
    (
        "confluence_search_by_label",
        "Search Confluence content by label",
        "Error searching by label",
        handlers.search_by_label,
        (param("label", "Label name to search for"), OPTIONAL_SPACE_KEY, LIMIT),
    ),
    # Comments
    (
        "confluence_get_page_comments",
        "Get comments on a Confluence page",
        "Error getting comments",
        handlers.get_page_comments,
        (
            PAGE_ID,
            optional_param("depth", "Comment depth: root (top-level) or all (default: all)", "all"),
            LIMIT,
        ),
    ),
    (
        "confluence_add_comment",
        "Add a comment to a Confluence page",
        "Error adding comment",
        handlers.add_comment,
        (
            param("pageId", "The page ID to comment on"),
            param("commentText", "Comment text (plain text, HTML-escaped before posting)"),
            optional_param("parentCommentId", "Parent comment ID for replies (optional)", None, OPT),
        ),
    ),
    (
        "confluence_delete_comment",
        "Delete a comment from a Confluence page",
        "Error deleting comment",
        handlers.delete_comment,
        (param("commentId", "The comment ID to delete"),),
    ),
    # Attachments
    (
        "confluence_get_attachments",
        "Get attachments on a Confluence page",
        "Error getting attachments",
        handlers.get_attachments,
        (PAGE_ID, LIMIT),
    ),
    (
        "confluence_get_attachment_info",
        "Get information about a specific attachment",
        "Error getting attachment info",
        handlers.get_attachment_info,
        (param("attachmentId", "The attachment ID"),),
    ),
    (
        "confluence_delete_attachment",
        "Delete an attachment from a Confluence page",
        "Error deleting attachment",
        handlers.delete_attachment,
        (param("attachmentId", "The attachment ID to delete"),),
    ),
    (
        "confluence_upload_attachment",
        "Upload a local file as an attachment to a Confluence page",
        "Error uploading attachment",
        handlers.upload_attachment,
        (
            param("pageId", "The page ID to attach the file to"),
            param("filePath", "Path of the local file to upload"),
            optional_param("comment", "Attachment comment (optional)", None, OPT),
        ),
    ),
    (
        "confluence_download_attachment",
        "Download an attachment; saves it to a path or returns base64 content",
        "Error downloading attachment",
        handlers.download_attachment,
        (
            param("pageId", "The page ID that holds the attachment"),
            param("attachmentId", "The attachment ID"),
            optional_param("savePath", "Local path to write the file to (optional)", None, OPT),
        ),
    ),
    # Labels
    (
        "confluence_get_labels",
        "Get labels on a Confluence page",
        "Error getting labels",
        handlers.get_labels,
        (PAGE_ID,),
    ),
    (
        "confluence_add_labels",
        "Add labels to a Confluence page",
        "Error adding labels",
        handlers.add_labels,
        (PAGE_ID, param("labels", "Comma-separated label names to add")),
    ),
    (
        "confluence_remove_label",
        "Remove a label from a Confluence page",
        "Error removing label",
        handlers.remove_label,
        (PAGE_ID, param("label", "Label name to remove")),
    ),
    # Users
    (
        "confluence_get_current_user",
        "Get information about the currently authenticated user",
        "Error getting current user",
        handlers.get_current_user,
        (),
    ),
    (
        "confluence_search_users",
        "Search for Confluence users",
        "Error searching users",
        handlers.search_users,
        (param("query", "Search query (name or email)"), LIMIT),
    ),
    (
        "confluence_get_user_content",
        "Get content created or contributed by a user",
        "Error getting user content",
        handlers.get_user_content,
        (param("userKey", "Username or account ID"), LIMIT),
    ),
    # Blog posts
    (
        "confluence_create_blog_post",
        "Create a new blog post",
        "Error creating blog post",
        handlers.create_blog_post,
        (
            param("spaceKey", "The space key"),
            param("title", "The blog post title"),
            param("content", "The blog post content in storage format"),
        ),
    ),
    (
        "confluence_get_blog_posts",
        "Get blog posts from a space",
        "Error getting blog posts",
        handlers.get_blog_posts,
        (param("spaceKey", "The space key"), LIMIT),
    ),
    # Templates
    (
        "confluence_get_templates",
        "Get available content templates",
        "Error getting templates",
        handlers.get_templates,
        (
            optional_param(
                "spaceKey",
                "Space key (optional - if not provided, returns global templates)",
                None,
                OPT,
            ),
        ),
    ),
    (
        "confluence_create_page_from_template",
        "Create a page from a template",
        "Error creating page from template",
        handlers.create_page_from_template,
        (
            param("spaceKey", "The space key"),
            param("title", "The page title"),
            param("templateId", "Template ID"),
            optional_param("parentId", "Parent page ID (optional)", None, OPT),
        ),
    ),
    # Permissions
    (
        "confluence_get_page_restrictions",
        "Get restrictions (permissions) on a page",
        "Error getting page restrictions",
        handlers.get_page_restrictions,
        (PAGE_ID,),
    ),
    (
        "confluence_get_space_permissions",
        "Get permissions for a space",
        "Error getting space permissions",
        handlers.get_space_permissions,
        (param("spaceKey", "The space key"),),
    ),
    # Watching
    (
        "confluence_watch_page",
        "Watch a page to receive notifications",
        "Error watching page",
        handlers.watch_page,
        (param("pageId", "The page ID to watch"),),
    ),
    (
        "confluence_unwatch_page",
        "Stop watching a page",
        "Error unwatching page",
        handlers.unwatch_page,
        (param("pageId", "The page ID to unwatch"),),
    ),
    (
        "confluence_watch_space",
        "Watch a space to receive notifications",
        "Error watching space",
        handlers.watch_space,
        (param("spaceKey", "The space key to watch"),),
    ),
    # Content properties
    (
        "confluence_get_content_properties",
        "Get custom properties on a page",
        "Error getting content properties",
        handlers.get_content_properties,
        (PAGE_ID,),
    ),
    (
        "confluence_set_content_property",
        "Set a custom property on a page",
        "Error setting content property",
        handlers.set_content_property,
        (PAGE_ID, param("key", "Property key"), param("value", "Property value (JSON string)")),
    ),
    # Recent activity
    (
        "confluence_get_recent_content",
        "Get recently modified content",
        "Error getting recent content",
        handlers.get_recent_content,
        (optional_param("spaceKey", "Space key to filter (optional)", None, OPT), LIMIT),
    ),
    (
        "confluence_get_my_recent_work",
        "Get content recently modified by current user",
        "Error getting recent work",
        handlers.get_my_recent_work,
        (LIMIT,),
    ),
    # Server
    (
        "confluence_get_server_info",
        "Get Confluence server information",
        "Error getting server info",
        handlers.get_server_info,
        (),
    ),
]

# Mapping for tool categorized hints
READ_ONLY_TOOLS = {
    "confluence_get_page", "confluence_get_page_by_title", "confluence_get_page_children",
    "confluence_get_page_ancestors", "confluence_get_page_history", "confluence_get_page_version",
    "confluence_list_spaces", "confluence_get_space", "confluence_get_space_content",
    "confluence_search", "confluence_search_content", "confluence_search_by_label",
    "confluence_get_page_comments", "confluence_get_attachments", "confluence_get_attachment_info",
    "confluence_get_labels", "confluence_get_current_user", "confluence_search_users",
    "confluence_get_user_content", "confluence_get_blog_posts", "confluence_get_templates",
    "confluence_get_page_restrictions", "confluence_get_space_permissions",
    "confluence_get_content_properties", "confluence_get_recent_content",
    "confluence_get_my_recent_work", "confluence_get_server_info",
}

DESTRUCTIVE_TOOLS = {
    "confluence_delete_page", "confluence_delete_space", "confluence_delete_comment",
    "confluence_delete_attachment", "confluence_remove_label", "confluence_update_page",
    "confluence_move_page",
}

IDEMPOTENT_TOOLS = READ_ONLY_TOOLS.union({
    "confluence_delete_page", "confluence_delete_space", "confluence_delete_comment",
    "confluence_delete_attachment", "confluence_remove_label", "confluence_add_labels",
    "confluence_watch_page", "confluence_unwatch_page", "confluence_watch_space",
    "confluence_set_content_property", "confluence_download_attachment",
})

PAGE_ID_VAR = param("pageId", "The page ID")
SPACE_KEY_VAR = param("spaceKey", "The space key")


def build_operations(gateway: ConfluenceGateway) -> List[OperationDescriptor]:
    return [
        OperationDescriptor(
            identifier=name,
            description=description,
            parameters=tuple(params),
            handler=partial(handler, gateway),
            error_prefix=error_prefix,
            read_only=name in READ_ONLY_TOOLS,
            destructive=name in DESTRUCTIVE_TOOLS,
            idempotent=name in IDEMPOTENT_TOOLS,
        )
        for name, description, error_prefix, handler, params in TOOL_TABLE
    ]


def build_resources(gateway: ConfluenceGateway) -> List[ResourceDescriptor]:
    return [
        # Static
        resource(
            "confluence://config",
            "Confluence Configuration",
            "Returns current Confluence connection configuration (without sensitive data)",
            partial(resources.get_configuration, gateway),
        ),
        resource(
            "confluence://spaces",
            "All Spaces",
            "Returns list of all accessible Confluence spaces",
            partial(resources.all_spaces, gateway),
        ),
        resource(
            "confluence://current-user",
            "Current User",
            "Returns information about the authenticated user",
            partial(resources.current_user, gateway),
        ),
        resource(
            "confluence://my-recent-work",
            "My Recent Work",
            "Returns content recently modified by current user",
            partial(resources.my_recent_work, gateway),
        ),
        resource(
            "confluence://recent-pages",
            "Recent Pages",
            "Returns recently modified pages across all spaces",
            partial(resources.recent_pages, gateway),
        ),
        resource(
            "confluence://recent-blogposts",
            "Recent Blog Posts",
            "Returns recently published blog posts",
            partial(resources.recent_blog_posts, gateway),
        ),
        resource(
            "confluence://templates",
            "Global Templates",
            "Returns available global content templates",
            partial(resources.global_templates, gateway),
        ),
        # Pages
        resource(
            "confluence://page/{pageId}",
            "Confluence Page",
            "Returns details of a specific Confluence page",
            partial(resources.page, gateway),
            parameters=(PAGE_ID_VAR,),
        ),
        resource(
            "confluence://page/{pageId}/body",
            "Confluence Page Body",
            "Returns only the body content of a Confluence page",
            partial(resources.page_body, gateway),
            mime_type="text/html",
            parameters=(PAGE_ID_VAR,),
        ),
        resource(
            "confluence://page/{pageId}/children",
            "Page Children",
            "Returns child pages of a Confluence page",
            partial(resources.page_children, gateway),
            parameters=(PAGE_ID_VAR,),
        ),
        resource(
            "confluence://page/{pageId}/comments",
            "Page Comments",
            "Returns comments on a Confluence page",
            partial(resources.page_comments, gateway),
            parameters=(PAGE_ID_VAR,),
        ),
        resource(
            "confluence://page/{pageId}/attachments",
            "Page Attachments",
            "Returns attachments on a Confluence page",
            partial(resources.page_attachments, gateway),
            parameters=(PAGE_ID_VAR,),
        ),
        resource(
            "confluence://page/{pageId}/labels",
            "Page Labels",
            "Returns labels on a Confluence page",
            partial(resources.page_labels, gateway),
            parameters=(PAGE_ID_VAR,),
        ),
        resource(
            "confluence://page/{pageId}/history",
            "Page History",
            "Returns version history of a Confluence page",
            partial(resources.page_history, gateway),
            parameters=(PAGE_ID_VAR,),
        ),
        # Spaces
        resource(
            "confluence://space/{spaceKey}",
            "Confluence Space",
            "Returns details of a specific Confluence space",
            partial(resources.space, gateway),
            parameters=(SPACE_KEY_VAR,),
        ),
        resource(
            "confluence://space/{spaceKey}/pages",
            "Space Pages",
            "Returns all pages in a Confluence space",
            partial(resources.space_pages, gateway),
            parameters=(SPACE_KEY_VAR,),
        ),
        resource(
            "confluence://space/{spaceKey}/blogposts",
            "Space Blog Posts",
            "Returns all blog posts in a Confluence space",
            partial(resources.space_blog_posts, gateway),
            parameters=(SPACE_KEY_VAR,),
        ),
        resource(
            "confluence://space/{spaceKey}/root-pages",
            "Space Root Pages",
            "Returns top-level pages in a Confluence space",
            partial(resources.space_root_pages, gateway),
            parameters=(SPACE_KEY_VAR,),
        ),
        resource(
            "confluence://space/{spaceKey}/templates",
            "Space Templates",
            "Returns content templates in a space",
            partial(resources.space_templates, gateway),
            parameters=(SPACE_KEY_VAR,),
        ),
        # Search
        resource(
            "confluence://search/{query}",
            "Search Results",
            "Returns search results for a query",
            partial(resources.search, gateway),
            parameters=(param("query", "Search query"),),
        ),
        resource(
            "confluence://label/{label}",
            "Content by Label",
            "Returns content with a specific label",
            partial(resources.content_by_label, gateway),
            parameters=(param("label", "Label name"),),
        ),
    ]


def build_registry(gateway: ConfluenceGateway) -> Registry:
    return Registry(build_operations(gateway), build_resources(gateway))
