import sys
import json
import asyncio
import logging
import threading
from typing import Any, BinaryIO, Dict, Optional, Set, TextIO

from confluence_mcp.core.config import ConfluenceConfig
from confluence_mcp.mcp.dispatcher import Dispatcher
from confluence_mcp.mcp.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    SUPPORTED_PROTOCOL_VERSIONS,
    negotiate_protocol_version,
    rpc_error,
    rpc_result,
)
from confluence_mcp.mcp.utils import truncate_tool_text

logger = logging.getLogger("ConfluenceMCP.mcp.server")

NOT_INITIALIZED = "Server not initialized. Send initialize then notifications/initialized."


class McpServer:
    """
    Handles JSON-RPC communication over stdio. Every inbound request runs
    as its own asyncio task; responses are written under a lock.
    """

    def __init__(
        self,
        config: ConfluenceConfig,
        dispatcher: Dispatcher,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[TextIO] = None,
    ):
        self.config = config
        self.dispatcher = dispatcher
        self.stdin = stdin if stdin is not None else sys.stdin.buffer
        self.stdout = stdout if stdout is not None else sys.stdout
        self.transport_closed = threading.Event()
        self.write_lock = threading.Lock()
        self.session: Dict[str, Any] = {
            "negotiated": False,
            "initialized": False,
            "protocol_version": None,
            "client_capabilities": {},
        }

    # --- transport ---

    def send_rpc(self, message: Dict[str, Any]) -> None:
        """Serialize and send a JSON-RPC message to stdout."""
        if self.transport_closed.is_set():
            return
        try:
            serialized = json.dumps(message)
            with self.write_lock:
                if self.transport_closed.is_set():
                    return
                self.stdout.write(serialized + "\n")
                self.stdout.flush()
        except (BrokenPipeError, OSError) as exc:
            self.transport_closed.set()
            logger.warning("MCP stdio transport closed while sending: %s", exc)

    def read_message(self, stream: BinaryIO) -> Optional[Dict[str, Any]]:
        """
        Read one inbound JSON-RPC message from a binary stream.
        Supports Content-Length framing and newline-delimited JSON.
        """
        while True:
            line = stream.readline()
            if not line:
                return None
            if not line.strip():
                continue

            if line.lower().startswith(b"content-length:"):
                try:
                    content_length = int(line.split(b":", 1)[1].strip())
                    if content_length <= 0:
                        raise ValueError("content length must be positive")
                except ValueError:
                    logger.warning("Invalid Content-Length header: %r", line)
                    if not self._consume_framing_headers(stream):
                        return None
                    continue

                if not self._consume_framing_headers(stream):
                    return None
                payload = stream.read(content_length)
                if not payload or len(payload) != content_length:
                    return None
                msg = self._decode(payload)
            else:
                msg = self._decode(line)

            if isinstance(msg, dict):
                return msg

    @staticmethod
    def _decode(raw: bytes) -> Any:
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("Discarding undecodable inbound message")
            return None

    @staticmethod
    def _consume_framing_headers(stream: BinaryIO) -> bool:
        while True:
            header_line = stream.readline()
            if not header_line:
                return False
            if header_line in (b"\r\n", b"\n"):
                return True

    async def serve(self) -> None:
        """Read until EOF, dispatching each message on its own task."""
        loop = asyncio.get_running_loop()
        pending: Set[asyncio.Task] = set()
        logger.info("Confluence MCP server listening on stdio")
        while not self.transport_closed.is_set():
            msg = await loop.run_in_executor(None, self.read_message, self.stdin)
            if msg is None:
                break
            task = asyncio.create_task(self._dispatch_guarded(msg))
            pending.add(task)
            task.add_done_callback(pending.discard)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Confluence MCP server stopped")

    async def _dispatch_guarded(self, msg: Dict[str, Any]) -> None:
        try:
            response = await self.handle_message(msg)
        except Exception:
            logger.exception("Unexpected error during RPC dispatch")
            msg_id = msg.get("id")
            if msg_id is not None:
                self.send_rpc(rpc_error(msg_id, INTERNAL_ERROR, "Internal error during request dispatch."))
            return
        if response is not None:
            self.send_rpc(response)

    # --- protocol ---

    async def handle_message(self, msg: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Handle a single parsed JSON-RPC message and return the response, if any.

        - Unknown request methods (with id) return -32601.
        - Unknown notifications (no id) are ignored.
        - tools/* and resources/* require a completed initialize handshake.
        """
        msg_id = msg.get("id")
        method = msg.get("method")
        params = msg.get("params")
        if params is None:
            params = {}

        if not isinstance(method, str):
            if msg_id is not None:
                return rpc_error(msg_id, INVALID_REQUEST, "Invalid Request: missing method")
            return None

        if method == "notifications/initialized":
            if self.session["negotiated"]:
                self.session["initialized"] = True
                logger.info("Client initialized connection")
            else:
                logger.warning("Ignored notifications/initialized before successful initialize")
            return None

        if msg_id is None:
            logger.debug("Ignoring notification: %s", method)
            return None

        if not isinstance(params, dict):
            return rpc_error(msg_id, INVALID_PARAMS, f"Invalid params: {method} params must be an object")

        if method == "initialize":
            return self._handle_initialize(msg_id, params)
        if method == "ping":
            return rpc_result(msg_id, {})

        handler = {
            "tools/list": self._handle_list_tools,
            "tools/call": self._handle_call_tool,
            "resources/list": self._handle_list_resources,
            "resources/templates/list": self._handle_list_resource_templates,
            "resources/read": self._handle_read_resource,
        }.get(method)
        if handler is None:
            return rpc_error(msg_id, METHOD_NOT_FOUND, f"Method not found: {method}")
        if not self.session["initialized"]:
            return rpc_error(msg_id, INVALID_REQUEST, NOT_INITIALIZED)
        return await handler(msg_id, params)

    def _handle_initialize(self, msg_id: Any, params: Dict[str, Any]) -> Dict[str, Any]:
        requested = params.get("protocolVersion")
        negotiated = negotiate_protocol_version(requested)
        if negotiated is None:
            return rpc_error(
                msg_id,
                INVALID_PARAMS,
                f"Unsupported protocol version: {requested}. "
                f"Supported versions: {', '.join(SUPPORTED_PROTOCOL_VERSIONS)}",
            )
        capabilities = params.get("capabilities")
        self.session.update(
            negotiated=True,
            initialized=False,
            protocol_version=negotiated,
            client_capabilities=capabilities if isinstance(capabilities, dict) else {},
        )
        return rpc_result(
            msg_id,
            {
                "protocolVersion": negotiated,
                "capabilities": {
                    "tools": {"listChanged": False},
                    "resources": {"subscribe": False, "listChanged": False},
                },
                "serverInfo": {
                    "name": self.config.server.name,
                    "version": self.config.server.version,
                },
            },
        )

    async def _handle_list_tools(self, msg_id: Any, params: Dict[str, Any]) -> Dict[str, Any]:
        return rpc_result(msg_id, {"tools": self.dispatcher.list_operations()})

    async def _handle_list_resources(self, msg_id: Any, params: Dict[str, Any]) -> Dict[str, Any]:
        return rpc_result(msg_id, {"resources": self.dispatcher.list_static_resources()})

    async def _handle_list_resource_templates(self, msg_id: Any, params: Dict[str, Any]) -> Dict[str, Any]:
        return rpc_result(msg_id, {"resourceTemplates": self.dispatcher.list_resource_templates()})

    async def _handle_call_tool(self, msg_id: Any, params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            return rpc_error(msg_id, INVALID_PARAMS, "Invalid params: tools/call requires non-empty string name")
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            return rpc_error(msg_id, INVALID_PARAMS, "Invalid params: arguments must be an object")

        result = await self.dispatcher.invoke(name, arguments)
        text = truncate_tool_text(result.text, name, self.config.server.tool_response_max_chars)
        return rpc_result(msg_id, {"content": [{"type": "text", "text": text}]})

    async def _handle_read_resource(self, msg_id: Any, params: Dict[str, Any]) -> Dict[str, Any]:
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            return rpc_error(msg_id, INVALID_PARAMS, "Invalid params: resources/read requires non-empty string uri")
        result = await self.dispatcher.resolve(uri)
        return rpc_result(
            msg_id,
            {"contents": [{"uri": uri, "mimeType": result.mime_type, "text": result.text}]},
        )
