"""
JSON-RPC dispatcher for messages posted on the SSE transport.

Takes one decoded JSON-RPC message, runs it, and returns the response
message to push down the session's stream (or None for notifications and
for responses sent by the client). Message shapes come from mcp.types.

Supported methods: initialize, ping, tools/list, tools/call.

Error policy:
- Protocol problems (malformed message, unknown method, unknown tool,
  arguments not matching the schema) become JSON-RPC error responses.
- Tool failures are not protocol problems: the tool handlers return an
  isError result, which is delivered as a normal response.
"""

import logging
from typing import Any, Awaitable, Callable

from mcp import types
from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS
from pydantic import ValidationError

from tmdb_mcp.errors import UnknownTool
from tmdb_mcp.tools import ToolRegistry

logger = logging.getLogger("tmdb-mcp.dispatcher")

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json", exclude_none=True)


def error_response(request_id: Any, code: int, message: str) -> dict[str, Any]:
    # id is null when the request id couldn't be read, which JSONRPCError won't model.
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": _dump(types.ErrorData(code=code, message=message)),
    }


class ToolDispatcher:
    """
    Routes JSON-RPC requests to the tool registry.

    Args:
        registry: The active tools
        server_name / server_version: Reported in the initialize result
        instructions: Optional usage hint for the client's model
    """

    def __init__(
        self,
        registry: ToolRegistry,
        server_name: str,
        server_version: str,
        instructions: str | None = None,
    ):
        self.registry = registry
        self.server_info = types.Implementation(name=server_name, version=server_version)
        self.instructions = instructions
        self._methods: dict[str, Handler] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    async def handle(self, payload: Any) -> dict[str, Any] | None:
        """
        Process one message and return the response message, if any.

        Never raises for anything the client sent; every request gets either
        a result or an error response.
        """
        try:
            message = types.JSONRPCMessage.model_validate(payload).root
        except ValidationError:
            request_id = payload.get("id") if isinstance(payload, dict) else None
            return error_response(request_id, types.INVALID_REQUEST, "Invalid JSON-RPC message")

        if isinstance(message, types.JSONRPCNotification):
            logger.debug("Notification received", extra={"log_data": {"method": message.method}})
            return None
        if not isinstance(message, types.JSONRPCRequest):
            # Responses/errors to server-initiated requests; we send none.
            return None

        handler = self._methods.get(message.method)
        if handler is None:
            return error_response(
                message.id, types.METHOD_NOT_FOUND, f"Method not found: {message.method}"
            )

        params = message.params or {}
        try:
            result = await handler(params)
        except UnknownTool as e:
            return error_response(message.id, types.INVALID_PARAMS, e.message)
        except ValidationError as e:
            return error_response(
                message.id, types.INVALID_PARAMS, f"Invalid params for {message.method}: {e}"
            )
        except Exception:
            logger.exception(
                "Unhandled error in request handler",
                extra={"log_data": {"method": message.method}},
            )
            return error_response(message.id, types.INTERNAL_ERROR, "Internal error")

        return _dump(types.JSONRPCResponse(jsonrpc="2.0", id=message.id, result=result))

    async def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        request = types.InitializeRequestParams.model_validate(params)
        requested = request.protocolVersion
        if requested in SUPPORTED_PROTOCOL_VERSIONS:
            version = requested
        else:
            version = types.LATEST_PROTOCOL_VERSION
        logger.info(
            "Client initialized",
            extra={
                "log_data": {
                    "client": request.clientInfo.name,
                    "requested_version": requested,
                    "protocol_version": version,
                }
            },
        )
        return _dump(
            types.InitializeResult(
                protocolVersion=version,
                capabilities=types.ServerCapabilities(
                    tools=types.ToolsCapability(listChanged=False)
                ),
                serverInfo=self.server_info,
                instructions=self.instructions,
            )
        )

    async def _ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _list_tools(self, params: dict[str, Any]) -> dict[str, Any]:
        return _dump(types.ListToolsResult(tools=self.registry.list_tools()))

    async def _call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        request = types.CallToolRequestParams.model_validate(params)
        result = await self.registry.call(request.name, request.arguments)
        return _dump(result)
