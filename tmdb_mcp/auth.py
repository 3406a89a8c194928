"""
Bearer token validation for the MCP transports.

This module is the gate in front of /sse, /messages and /mcp:
- Extracts the Bearer token from the HTTP Authorization header
- Looks the token up in the CredentialStore (the gateway issued it itself,
  see oauth.py), which treats expired tokens as absent
- Attaches the resolved AccessToken to the request state so downstream
  handlers can see which client is calling

Two failure modes are kept apart, matching RFC 6750:
- Unauthorized: no credentials were presented at all (missing header or a
  scheme other than Bearer)
- InvalidToken: a Bearer token was presented but is unknown or expired

The gate can run in optional mode (auth_required = False) for local testing.
Requests without credentials are then admitted anonymously, but a Bearer
token that is presented must still be valid.
"""

import logging
from typing import Iterable

from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from tmdb_mcp.errors import GatewayError, InvalidToken, Unauthorized
from tmdb_mcp.log import redact
from tmdb_mcp.store import AccessToken, CredentialKind, CredentialStore

logger = logging.getLogger("tmdb-mcp.auth")

PROTECTED_PATHS = ("/sse", "/messages", "/mcp")


def extract_bearer_token(authorization_header: str | None) -> str:
    """
    Pull the token out of a "Bearer <token>" header value.

    The scheme is matched case-insensitively per RFC 6750.

    Raises:
        Unauthorized: If the header is missing or uses another scheme
    """
    if not authorization_header:
        raise Unauthorized("Missing Authorization header")

    parts = authorization_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise Unauthorized("Invalid Authorization header format, expected 'Bearer <token>'")

    return parts[1].strip()


def validate_token(authorization_header: str | None, store: CredentialStore) -> AccessToken:
    """
    Validate a Bearer token from the Authorization header.

    Args:
        authorization_header: The raw Authorization header value
        store: The credential store the token was issued into

    Returns:
        The live AccessToken record

    Raises:
        Unauthorized: No Bearer credentials presented
        InvalidToken: Token unknown or expired
    """
    token = extract_bearer_token(authorization_header)

    record = store.get(CredentialKind.ACCESS_TOKEN, token)
    if record is None:
        raise InvalidToken("Access token is invalid or expired")

    return record


class BearerAuthMiddleware:
    """
    ASGI middleware enforcing Bearer authentication on the protected paths.

    Everything else (OAuth endpoints, discovery, health) passes through
    untouched. CORS preflight requests are never challenged.
    """

    def __init__(
        self,
        app: ASGIApp,
        store: CredentialStore,
        required: bool = True,
        protected_paths: Iterable[str] = PROTECTED_PATHS,
    ):
        self.app = app
        self.store = store
        self.required = required
        self.protected_paths = tuple(protected_paths)

    def is_protected(self, path: str) -> bool:
        return any(
            path == prefix or path.startswith(prefix + "/") for prefix in self.protected_paths
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            scope["type"] != "http"
            or scope["method"] == "OPTIONS"
            or not self.is_protected(scope["path"])
        ):
            await self.app(scope, receive, send)
            return

        header = Headers(scope=scope).get("authorization")
        try:
            token: AccessToken | None = validate_token(header, self.store)
        except Unauthorized as e:
            if self.required:
                await self._reject(scope, receive, send, e)
                return
            token = None
        except InvalidToken as e:
            await self._reject(scope, receive, send, e)
            return

        if token is not None:
            logger.debug(
                "Request authenticated",
                extra={
                    "log_data": {
                        "path": scope["path"],
                        "client_id": token.client_id,
                        "decision": "authenticated",
                    }
                },
            )
        scope.setdefault("state", {})["access_token"] = token
        await self.app(scope, receive, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send, error: GatewayError) -> None:
        header = Headers(scope=scope).get("authorization") or ""
        logger.warning(
            "Authentication failed",
            extra={
                "log_data": {
                    "path": scope["path"],
                    "decision": "rejected",
                    "reason": error.error_code,
                    "token": redact(header.partition(" ")[2]),
                }
            },
        )
        challenge = "Bearer"
        if isinstance(error, InvalidToken):
            challenge = f'Bearer error="{error.error_code}", error_description="{error.message}"'
        response = JSONResponse(
            error.to_dict(),
            status_code=error.status_code,
            headers={"WWW-Authenticate": challenge},
        )
        await response(scope, receive, send)
