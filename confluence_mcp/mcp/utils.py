import logging
from typing import Iterable, Optional
from urllib.parse import quote_plus

logger = logging.getLogger("ConfluenceMCP.mcp.utils")

TRUNCATION_SUFFIX = "\n\n[Response truncated due to size limits]"


def cql_quote(value: str) -> str:
    """Quote a CQL string literal, escaping backslashes and double quotes."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_cql(parts: Iterable[str], order_by: Optional[str] = None) -> str:
    cql = " AND ".join(part for part in parts if part)
    if order_by:
        cql = f"{cql} ORDER BY {order_by}" if cql else f"ORDER BY {order_by}"
    return cql


def encode_query_value(value: str) -> str:
    """Form-encode a query string value (spaces become ``+``)."""
    return quote_plus(value)


def is_blank(value: Optional[str]) -> bool:
    return value is None or value.strip() == ""


def truncate_tool_text(text: str, name: str, max_chars: int) -> str:
    """Apply the configured length limit to a tool response (0 disables it)."""
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    logger.info("Truncating response for tool '%s' (%d -> %d chars)", name, len(text), max_chars)
    cutoff = max(0, max_chars - len(TRUNCATION_SUFFIX))
    return text[:cutoff] + TRUNCATION_SUFFIX
