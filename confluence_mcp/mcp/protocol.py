"""
JSON-RPC envelope helpers and the MCP revisions this server speaks.
"""

from typing import Any, Dict, Optional

JSONRPC_VERSION = "2.0"

# Newest first; an initialize without a version gets the newest.
SUPPORTED_PROTOCOL_VERSIONS = ("2025-11-25", "2025-06-18", "2024-11-05")

INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


def negotiate_protocol_version(requested: Optional[str]) -> Optional[str]:
    """Return the revision to use for ``requested``, or None if unsupported."""
    if not requested:
        return SUPPORTED_PROTOCOL_VERSIONS[0]
    return requested if requested in SUPPORTED_PROTOCOL_VERSIONS else None


def rpc_result(msg_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": msg_id, "result": result}


def rpc_error(msg_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": msg_id, "error": {"code": code, "message": message}}
