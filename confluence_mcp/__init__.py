"""
Confluence MCP: Confluence Cloud and Data Center exposed as MCP tools and resources.
"""

from confluence_mcp.version import __version__
from confluence_mcp.core.config import ConfluenceConfig
from confluence_mcp.sdk.client import ConfluenceGateway

__all__ = ["__version__", "ConfluenceConfig", "ConfluenceGateway"]
