"""Stateless JSON-RPC 2.0 dispatch of MCP requests to the local tool registry."""
import logging
from typing import Any, Dict, List, Optional, Union

from .tools import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


def error_response(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {
            "code": code,
            "message": message
        }
    }


class JsonRpcDispatcher:
    """
    Answers ``initialize``, ``ping``, ``tools/list`` and ``tools/call``.

    Tool failures come back as a normal result with ``isError`` set; only
    protocol problems produce a JSON-RPC error object.
    """

    def __init__(self, registry: ToolRegistry, server_name: str, server_version: str):
        self.registry = registry
        self.server_name = server_name
        self.server_version = server_version

    async def handle(self, payload: Union[Dict[str, Any], List[Any]]) -> Optional[Union[Dict, List]]:
        """Handle a single message or a batch. Returns None when nothing needs an answer."""
        if isinstance(payload, list):
            if not payload:
                return error_response(None, INVALID_REQUEST, "Invalid Request")
            responses = [await self.handle_message(message) for message in payload]
            responses = [r for r in responses if r is not None]
            return responses or None
        return await self.handle_message(payload)

    async def handle_message(self, message: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(message, dict) or not isinstance(message.get("method"), str):
            request_id = message.get("id") if isinstance(message, dict) else None
            return error_response(request_id, INVALID_REQUEST, "Invalid Request")

        method = message["method"]

        # Notifications (no id) never get a response
        if "id" not in message:
            logger.debug(f"Notification received: {method}")
            return None

        request_id = message["id"]
        params = message.get("params") or {}

        logger.debug(f"Handling request: {method}")

        try:
            if method == "initialize":
                result = self._initialize(params)
            elif method == "ping":
                result = {}
            elif method == "tools/list":
                result = {
                    "tools": [
                        d.to_tool().model_dump(by_alias=True, exclude_none=True)
                        for d in self.registry.list()
                    ]
                }
            elif method == "tools/call":
                tool_result = await self.registry.call(params.get("name"), params.get("arguments"))
                result = tool_result.to_dict()
            else:
                return error_response(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
        except Exception as e:
            logger.error(f"Request handling error: {e}")
            return error_response(request_id, INTERNAL_ERROR, f"Internal error: {str(e)}")

        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "result": result
        }

    def _initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "protocolVersion": params.get("protocolVersion") or DEFAULT_PROTOCOL_VERSION,
            "capabilities": {
                "tools": {}
            },
            "serverInfo": {
                "name": self.server_name,
                "version": self.server_version
            }
        }
