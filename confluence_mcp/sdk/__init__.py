"""
Confluence gateway public exports.
"""

from confluence_mcp.sdk.client import (
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
    ConfluenceError,
    ErrorKind,
)

__all__ = [
    "ConfluenceGateway",
    "api_base_path",
    "authorization_header",
    "build_url",
    "extract_results_summary",
    "format_json_response",
    "probe_current_user",
    "ConfluenceError",
    "ConfigurationInvalidError",
    "ConfluenceAPIError",
    "ConfluenceConnectionError",
    "ErrorKind",
]
