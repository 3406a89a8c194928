"""
TMDB MCP gateway: FastMCP host, OAuth endpoints and the SSE session transport.

This module wires the components into one ASGI application:

    /.well-known/oauth-authorization-server   discovery (RFC 8414)
    /.well-known/oauth-protected-resource     resource metadata (RFC 9728)
    /oauth/authorize   (/authorize)           authorization endpoint, auto-approves
    /oauth/token       (/token)               token endpoint
    /oauth/register    (/register)            dynamic client registration
    /sse                                      SSE stream, server -> client
    /messages?sessionId=<id>                  JSON-RPC messages, client -> server
    /mcp                                      streamable HTTP transport (FastMCP)
    /, /health, /ready                        status and probes

Architecture:
    The auth flow for every MCP request:

    1. Client obtains a token through /oauth/authorize + /oauth/token
    2. CORSMiddleware answers preflights and decorates responses
    3. BearerAuthMiddleware (auth.py) rejects requests to /sse, /messages and
       /mcp without a valid token, and stores the AccessToken on request.state
    4. SSE transport: the session registry (transport.py) binds the stream to
       a session id; posted messages go through the ToolDispatcher and the
       responses are pushed down the stream
    5. Streamable HTTP transport: FastMCP serves the same tool registry;
       ToolAuditMiddleware logs each call with the calling client

All state (credential store, clients, sessions) hangs off a Gateway object
built by build_gateway(), so tests get a fresh gateway each time.

Running the server:
    MCP_TMDB_API_KEY=... python -m tmdb_mcp.server
"""

import base64
import logging
import sys
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Sequence

import httpx
import uvicorn
from fastmcp import FastMCP
from fastmcp.server.dependencies import get_http_request
from fastmcp.server.middleware import CallNext, Middleware, MiddlewareContext
from fastmcp.tools.tool import ToolResult
from mcp.types import CallToolRequestParams
from sse_starlette.sse import EventSourceResponse
from starlette.applications import Starlette
from starlette.middleware import Middleware as ASGIMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from tmdb_mcp.auth import BearerAuthMiddleware
from tmdb_mcp.config import Settings
from tmdb_mcp.dispatcher import ToolDispatcher
from tmdb_mcp.errors import (
    ConfigurationError,
    GatewayError,
    InvalidRequest,
    SessionNotFound,
)
from tmdb_mcp.log import configure_logging
from tmdb_mcp.oauth import AuthorizationServer
from tmdb_mcp.store import Client, ClientRegistry, CredentialStore
from tmdb_mcp.tmdb import TMDBClient
from tmdb_mcp.tools import ToolContext, ToolRegistry
from tmdb_mcp.transport import SessionRegistry

logger = logging.getLogger("tmdb-mcp")

SERVER_NAME = "tmdb-mcp"
SERVER_VERSION = "1.0.0"
INSTRUCTIONS = (
    "Movie information from The Movie Database (TMDB). Use `search` to find "
    "movies by title or keywords, then `fetch` with a result id for details."
)

NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


# ---------------------------------------------------------------------------
# FastMCP middleware
# ---------------------------------------------------------------------------


class ToolAuditMiddleware(Middleware):
    """
    Logs every tool call on the streamable HTTP transport with the client
    that made it.

    Authentication has already happened by the time FastMCP sees the request
    (BearerAuthMiddleware runs at the HTTP layer); this middleware only reads
    the AccessToken it left on request.state.
    """

    def _client_id(self) -> str | None:
        try:
            request = get_http_request()
        except RuntimeError:
            return None
        token = getattr(request.state, "access_token", None)
        return token.client_id if token is not None else None

    async def on_call_tool(
        self,
        context: MiddlewareContext[CallToolRequestParams],
        call_next: CallNext[CallToolRequestParams, ToolResult],
    ) -> ToolResult:
        logger.info(
            "Tool call received",
            extra={
                "log_data": {
                    "request_id": str(uuid.uuid4())[:8],
                    "transport": "streamable-http",
                    "client_id": self._client_id(),
                    "tool": context.message.name,
                }
            },
        )
        return await call_next(context)


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


@dataclass
class Gateway:
    """Everything one running gateway owns."""

    settings: Settings
    store: CredentialStore
    clients: ClientRegistry
    oauth: AuthorizationServer
    sessions: SessionRegistry
    tools: ToolRegistry
    dispatcher: ToolDispatcher
    mcp: FastMCP

    def http_middleware(self) -> list[ASGIMiddleware]:
        # Listed outermost first: CORS must see the auth gate's 401s.
        return [
            ASGIMiddleware(
                CORSMiddleware,
                allow_origins=self.settings.cors_allow_origins,
                allow_credentials=True,
                allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
                allow_headers=[
                    "Authorization",
                    "Content-Type",
                    "Accept",
                    "Cache-Control",
                    "Mcp-Session-Id",
                    "Mcp-Protocol-Version",
                ],
                expose_headers=["Mcp-Session-Id", "WWW-Authenticate"],
            ),
            ASGIMiddleware(
                BearerAuthMiddleware,
                store=self.store,
                required=self.settings.auth_required,
            ),
        ]

    def http_app(self) -> Starlette:
        """The ASGI app: FastMCP's streamable HTTP app plus our custom routes."""
        app = self.mcp.http_app(transport="streamable-http", middleware=self.http_middleware())
        inner_lifespan = app.router.lifespan_context

        @asynccontextmanager
        async def lifespan(app: Starlette):
            async with inner_lifespan(app) as state:
                try:
                    yield state
                finally:
                    self.sessions.close_all()
                    await self.tools.context.tmdb.aclose()

        app.router.lifespan_context = lifespan
        return app


def build_gateway(
    settings: Settings,
    tmdb_transport: httpx.AsyncBaseTransport | None = None,
    clock=time.time,
) -> Gateway:
    """
    Construct a gateway from settings.

    Args:
        settings: Configuration
        tmdb_transport: Optional httpx transport for the TMDB client (tests)
        clock: Time source shared by the stores (tests)

    Raises:
        ConfigurationError: Missing TMDB API key or unknown tool names
    """
    if not settings.tmdb_api_key:
        raise ConfigurationError("MCP_TMDB_API_KEY environment variable is required")

    store = CredentialStore(max_entries=settings.max_credentials, clock=clock)
    clients = ClientRegistry(
        default_client=Client(
            client_id=settings.default_client_id,
            client_secret=settings.default_client_secret,
            redirect_uris=("*",),
            scope=settings.default_scope,
            client_name="Default MCP client",
        ),
        strict=settings.strict_client_validation,
    )
    oauth = AuthorizationServer(
        store,
        clients,
        default_scope=settings.default_scope,
        code_ttl=settings.authorization_code_ttl,
        token_ttl=settings.access_token_ttl,
    )

    tmdb = TMDBClient(
        api_key=settings.tmdb_api_key,
        base_url=settings.tmdb_base_url,
        timeout=settings.tmdb_timeout,
        transport=tmdb_transport,
    )
    tools = ToolRegistry.from_names(
        ToolContext(tmdb=tmdb, site_url=settings.tmdb_site_url),
        settings.enabled_tools,
    )

    mcp = FastMCP(
        name=SERVER_NAME,
        instructions=INSTRUCTIONS,
        middleware=[ToolAuditMiddleware()],
    )
    for tool in tools.fastmcp_tools():
        mcp.add_tool(tool)

    gateway = Gateway(
        settings=settings,
        store=store,
        clients=clients,
        oauth=oauth,
        sessions=SessionRegistry(clock=clock),
        tools=tools,
        dispatcher=ToolDispatcher(tools, SERVER_NAME, SERVER_VERSION, INSTRUCTIONS),
        mcp=mcp,
    )
    _register_routes(gateway)
    return gateway


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def error_response(error: GatewayError) -> JSONResponse:
    return JSONResponse(error.to_dict(), status_code=error.status_code, headers=NO_STORE)


def issuer_url(request: Request, settings: Settings) -> str:
    """Configured issuer, or one derived from the request (proxy aware)."""
    if settings.issuer_url:
        return settings.issuer_url.rstrip("/")
    scheme = request.headers.get("x-forwarded-proto", request.url.scheme)
    host = request.headers.get("x-forwarded-host", request.url.netloc)
    return f"{scheme}://{host}"


async def read_token_request(request: Request) -> dict[str, str]:
    """
    Token request fields from a form or JSON body, plus HTTP Basic client
    credentials if present.

    Raises:
        InvalidRequest: If the body can't be parsed
    """
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            raise InvalidRequest("Request body is not valid JSON")
        if not isinstance(body, dict):
            raise InvalidRequest("Request body must be a JSON object")
        params = {key: str(value) for key, value in body.items() if value is not None}
    else:
        form = await request.form()
        params = {key: value for key, value in form.items() if isinstance(value, str)}

    auth_header = request.headers.get("authorization", "")
    if auth_header[:6].lower() == "basic ":
        try:
            decoded = base64.b64decode(auth_header[6:]).decode("utf-8")
            client_id, client_secret = decoded.split(":", 1)
        except ValueError:
            raise InvalidRequest("Malformed Basic authorization header")
        params["client_id"] = client_id
        params["client_secret"] = client_secret
    return params


def requested_session_id(request: Request) -> str | None:
    return (
        request.query_params.get("sessionId")
        or request.query_params.get("session_id")
        or request.headers.get("mcp-session-id")
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def _register_routes(gateway: Gateway) -> None:
    mcp = gateway.mcp
    settings = gateway.settings

    # --- Status and probes (no authentication) ---

    @mcp.custom_route("/", methods=["GET"])
    async def status(request: Request) -> Response:
        return JSONResponse(
            {
                "name": SERVER_NAME,
                "version": SERVER_VERSION,
                "status": "running",
                "transports": ["sse", "streamable-http"],
                "auth": "oauth2" if settings.auth_required else "optional",
                "tools": gateway.tools.names,
                "endpoints": {
                    "sse": "/sse",
                    "messages": "/messages",
                    "mcp": "/mcp",
                    "oauth_authorize": "/oauth/authorize",
                    "oauth_token": "/oauth/token",
                },
            }
        )

    @mcp.custom_route("/health", methods=["GET"])
    async def health_check(request: Request) -> Response:
        """Liveness probe."""
        return JSONResponse({"status": "healthy", "active_sessions": len(gateway.sessions)})

    @mcp.custom_route("/ready", methods=["GET"])
    async def readiness_check(request: Request) -> Response:
        """Readiness probe: can this instance answer tool calls?"""
        if not settings.tmdb_api_key:
            return JSONResponse(
                {"status": "not_ready", "reason": "TMDB API key missing"},
                status_code=503,
            )
        return JSONResponse({"status": "ready"})

    # --- OAuth ---

    @mcp.custom_route("/.well-known/oauth-authorization-server", methods=["GET"])
    async def oauth_metadata(request: Request) -> Response:
        issuer = issuer_url(request, settings)
        return JSONResponse(
            gateway.oauth.metadata(issuer, registration_enabled=settings.allow_dynamic_registration)
        )

    @mcp.custom_route("/.well-known/oauth-protected-resource", methods=["GET"])
    async def protected_resource_metadata(request: Request) -> Response:
        issuer = issuer_url(request, settings)
        return JSONResponse(
            {
                "resource": issuer,
                "authorization_servers": [issuer],
                "bearer_methods_supported": ["header"],
                "scopes_supported": [settings.default_scope],
            }
        )

    async def oauth_authorize(request: Request) -> Response:
        try:
            location = gateway.oauth.authorize(request.query_params)
        except GatewayError as e:
            logger.warning(
                "Authorization request rejected",
                extra={"log_data": {"error": e.error_code, "reason": e.message}},
            )
            return error_response(e)
        return RedirectResponse(location, status_code=302, headers={"Cache-Control": "no-store"})

    async def oauth_token(request: Request) -> Response:
        params: dict[str, str] = {}
        try:
            params = await read_token_request(request)
            body = gateway.oauth.exchange(params)
        except GatewayError as e:
            logger.warning(
                "Token request rejected",
                extra={
                    "log_data": {
                        "grant_type": params.get("grant_type"),
                        "error": e.error_code,
                        "reason": e.message,
                    }
                },
            )
            return error_response(e)
        return JSONResponse(body, headers=NO_STORE)

    async def oauth_register(request: Request) -> Response:
        if not settings.allow_dynamic_registration:
            return JSONResponse({"error": "registration_not_supported"}, status_code=403)
        try:
            metadata = await request.json()
        except ValueError:
            return error_response(InvalidRequest("Request body is not valid JSON"))
        if not isinstance(metadata, dict):
            return error_response(InvalidRequest("Request body must be a JSON object"))
        try:
            client = gateway.oauth.register(metadata)
        except GatewayError as e:
            return error_response(e)
        return JSONResponse(
            {
                "client_id": client.client_id,
                "client_secret": client.client_secret,
                "client_id_issued_at": int(gateway.store.clock()),
                "client_secret_expires_at": 0,
                "client_name": client.client_name,
                "redirect_uris": list(client.redirect_uris),
                "scope": client.scope,
                "grant_types": ["authorization_code", "client_credentials"],
                "response_types": ["code"],
                "token_endpoint_auth_method": "client_secret_post",
            },
            status_code=201,
            headers=NO_STORE,
        )

    for prefix in ("/oauth", ""):
        mcp.custom_route(f"{prefix}/authorize", methods=["GET"])(oauth_authorize)
        mcp.custom_route(f"{prefix}/token", methods=["POST"])(oauth_token)
        mcp.custom_route(f"{prefix}/register", methods=["POST"])(oauth_register)

    # --- SSE transport ---

    @mcp.custom_route("/sse", methods=["GET"])
    async def sse_stream(request: Request) -> Response:
        session = gateway.sessions.open(requested_session_id(request))
        root_path = request.scope.get("root_path", "")
        endpoint = f"{root_path}/messages?sessionId={session.session_id}"
        return EventSourceResponse(
            gateway.sessions.stream(session, endpoint),
            ping=settings.sse_ping_interval,
            headers={"Mcp-Session-Id": session.session_id},
        )

    async def post_message(request: Request) -> Response:
        try:
            session = gateway.sessions.get(requested_session_id(request))
        except SessionNotFound as e:
            logger.warning(
                "Message for unknown session",
                extra={"log_data": {"session_id": (requested_session_id(request) or "")[:8]}},
            )
            return error_response(e)

        try:
            payload = await request.json()
        except ValueError:
            return JSONResponse(
                {"error": "parse_error", "error_description": "Request body is not valid JSON"},
                status_code=400,
            )

        token = getattr(request.state, "access_token", None)
        messages: Sequence[Any] = payload if isinstance(payload, list) else [payload]
        if not messages:
            return error_response(InvalidRequest("Empty JSON-RPC batch"))
        for message in messages:
            session.message_count += 1
            logger.info(
                "Message received",
                extra={
                    "log_data": {
                        "session_id": session.session_id[:8],
                        "client_id": token.client_id if token is not None else None,
                        "method": message.get("method") if isinstance(message, dict) else None,
                    }
                },
            )
            response = await gateway.dispatcher.handle(message)
            if response is not None:
                session.send(response)
        return Response("Accepted", status_code=202)

    mcp.custom_route("/messages", methods=["POST"])(post_message)
    mcp.custom_route("/messages/", methods=["POST"])(post_message)


# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------


def main() -> None:
    from tmdb_mcp.config import settings

    configure_logging(settings.log_level)
    try:
        gateway = build_gateway(settings)
    except ConfigurationError as e:
        logger.critical("Invalid configuration: %s", e)
        sys.exit(1)

    logger.info(
        "Starting MCP gateway on %s:%d (transports=sse,streamable-http, auth=%s, tools=%s)",
        settings.host,
        settings.port,
        "required" if settings.auth_required else "optional",
        ",".join(gateway.tools.names),
    )
    uvicorn.run(
        gateway.http_app(),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
