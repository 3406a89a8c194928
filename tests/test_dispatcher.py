"""
Unit tests for the JSON-RPC dispatcher used by the SSE transport
(tmdb_mcp/dispatcher.py).

Each test hands one decoded message to ToolDispatcher.handle() and checks
the response message it would push down the stream.
"""

import json

import pytest
from mcp import types

from tmdb_mcp.dispatcher import ToolDispatcher
from tmdb_mcp.tools import ToolRegistry


@pytest.fixture
def dispatcher(tool_context):
    registry = ToolRegistry.from_names(tool_context, ["search", "fetch"])
    return ToolDispatcher(registry, "tmdb-mcp", "1.0.0", instructions="Search movies.")


def request(method: str, params: dict | None = None, request_id: int = 1) -> dict:
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


class TestLifecycle:
    async def test_initialize_reports_server_and_tools_capability(self, dispatcher):
        response = await dispatcher.handle(
            request(
                "initialize",
                {
                    "protocolVersion": "2025-03-26",
                    "capabilities": {},
                    "clientInfo": {"name": "test-client", "version": "1.0"},
                },
            )
        )

        result = response["result"]
        assert response["id"] == 1
        assert result["protocolVersion"] == "2025-03-26"
        assert result["serverInfo"] == {"name": "tmdb-mcp", "version": "1.0.0"}
        assert "tools" in result["capabilities"]
        assert result["instructions"] == "Search movies."

    async def test_initialize_with_unknown_version_gets_latest(self, dispatcher):
        response = await dispatcher.handle(
            request(
                "initialize",
                {
                    "protocolVersion": "1999-01-01",
                    "capabilities": {},
                    "clientInfo": {"name": "old-client", "version": "0.1"},
                },
            )
        )

        assert response["result"]["protocolVersion"] == types.LATEST_PROTOCOL_VERSION

    async def test_initialize_with_malformed_client_info_is_invalid_params(self, dispatcher):
        response = await dispatcher.handle(
            request(
                "initialize",
                {"protocolVersion": "2025-03-26", "capabilities": {}, "clientInfo": "oops"},
            )
        )

        assert response["error"]["code"] == types.INVALID_PARAMS

    async def test_ping(self, dispatcher):
        response = await dispatcher.handle(request("ping", request_id=7))

        assert response == {"jsonrpc": "2.0", "id": 7, "result": {}}

    async def test_notification_gets_no_response(self, dispatcher):
        response = await dispatcher.handle(
            {"jsonrpc": "2.0", "method": "notifications/initialized"}
        )

        assert response is None


class TestTools:
    async def test_list_tools_returns_enabled_tools_with_schemas(self, dispatcher):
        response = await dispatcher.handle(request("tools/list"))

        tools = {tool["name"]: tool for tool in response["result"]["tools"]}
        assert sorted(tools) == ["fetch", "search"]
        assert tools["search"]["inputSchema"]["required"] == ["query"]
        assert tools["fetch"]["inputSchema"]["required"] == ["id"]

    async def test_call_search(self, dispatcher):
        response = await dispatcher.handle(
            request("tools/call", {"name": "search", "arguments": {"query": "fight club"}})
        )

        result = response["result"]
        assert result["isError"] is False
        payload = json.loads(result["content"][0]["text"])
        assert payload["results"][0]["title"] == "Fight Club (1999)"

    async def test_tool_failure_is_a_result_not_an_error(self, dispatcher, tmdb):
        tmdb.add("/search/movie", {"status_message": "Invalid API key"}, status=401)

        response = await dispatcher.handle(
            request("tools/call", {"name": "search", "arguments": {"query": "fight club"}})
        )

        assert "error" not in response
        assert response["result"]["isError"] is True

    async def test_unknown_tool_is_invalid_params(self, dispatcher):
        response = await dispatcher.handle(
            request("tools/call", {"name": "get_trending", "arguments": {"timeWindow": "day"}})
        )

        assert response["error"]["code"] == types.INVALID_PARAMS
        assert "get_trending" in response["error"]["message"]

    async def test_missing_arguments_are_invalid_params(self, dispatcher):
        response = await dispatcher.handle(
            request("tools/call", {"name": "search", "arguments": {}})
        )

        assert response["error"]["code"] == types.INVALID_PARAMS


class TestProtocolErrors:
    async def test_unknown_method(self, dispatcher):
        response = await dispatcher.handle(request("resources/list", request_id=3))

        assert response["id"] == 3
        assert response["error"]["code"] == types.METHOD_NOT_FOUND

    async def test_malformed_message(self, dispatcher):
        response = await dispatcher.handle({"id": 4, "hello": "world"})

        assert response["id"] == 4
        assert response["error"]["code"] == types.INVALID_REQUEST

    async def test_non_object_message(self, dispatcher):
        response = await dispatcher.handle("not a message")

        assert response["id"] is None
        assert response["error"]["code"] == types.INVALID_REQUEST

    async def test_client_response_gets_no_reply(self, dispatcher):
        response = await dispatcher.handle({"jsonrpc": "2.0", "id": 9, "result": {}})

        assert response is None
