"""
Self-issued OAuth 2.0 authorization server.

The gateway has a single expected caller (an AI-agent connector), so instead
of delegating to an external identity provider it issues its own credentials:

    1. GET  /oauth/authorize  -> approve automatically, redirect with ?code=...
    2. POST /oauth/token      -> exchange the code (or client credentials)
                                 for an opaque bearer token
    3. Bearer token is presented to the MCP transports (see auth.py)

There is no consent screen: approval is automatic. PKCE (RFC 7636) is
honoured when the client sends a code_challenge, which binds the code to the
client that started the flow.

Client validation is permissive by default (unknown client ids fall back to
the default client, any redirect URI is accepted, response_type is not
enforced). With strict client validation the usual checks apply.

The AuthorizationServer here only deals with plain mappings and domain
errors; the Starlette handlers in server.py translate requests and errors.
"""

import base64
import hashlib
import logging
import secrets
from typing import Any, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from tmdb_mcp.errors import (
    InvalidClientMetadata,
    InvalidGrant,
    InvalidRedirect,
    UnsupportedGrantType,
)
from tmdb_mcp.log import redact
from tmdb_mcp.store import (
    AccessToken,
    AuthorizationCode,
    Client,
    ClientRegistry,
    CredentialKind,
    CredentialStore,
)

logger = logging.getLogger("tmdb-mcp.oauth")

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_CLIENT_CREDENTIALS = "client_credentials"

SUPPORTED_GRANT_TYPES = [GRANT_AUTHORIZATION_CODE, GRANT_CLIENT_CREDENTIALS]
SUPPORTED_CHALLENGE_METHODS = ["S256", "plain"]


# ---------------------------------------------------------------------------
# PKCE helpers
# ---------------------------------------------------------------------------


def s256_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding, as defined by RFC 7636."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def verify_code_verifier(
    code_verifier: str | None, code_challenge: str, method: str | None
) -> bool:
    """Check a PKCE verifier against the challenge stored with a code."""
    # RFC 7636 verifiers are unreserved ASCII characters only.
    if not code_verifier or not code_verifier.isascii():
        return False
    if method == "plain":
        computed = code_verifier
    else:
        computed = s256_challenge(code_verifier)
    # The challenge came from a query string and may hold any characters.
    return secrets.compare_digest(computed.encode("utf-8"), code_challenge.encode("utf-8"))


def parse_redirect_uri(redirect_uri: str | None) -> str:
    """
    Make sure the redirect URI is an absolute URL we can redirect to.

    Raises:
        InvalidRedirect: If the URI is missing, relative, or unparsable
    """
    if not redirect_uri:
        raise InvalidRedirect("redirect_uri is required")
    try:
        parts = urlsplit(redirect_uri)
    except ValueError as e:
        raise InvalidRedirect(f"redirect_uri is not a valid URL: {e}")
    if not parts.scheme or not parts.netloc:
        raise InvalidRedirect("redirect_uri must be an absolute URL")
    return redirect_uri


def append_query(url: str, params: Mapping[str, str]) -> str:
    """Add query parameters to a URL, keeping the ones already present."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


# ---------------------------------------------------------------------------
# Authorization server
# ---------------------------------------------------------------------------


class AuthorizationServer:
    """
    Issues authorization codes and access tokens into a CredentialStore.

    Args:
        store: Where codes and tokens are kept
        clients: Registered clients (and the permissive fallback)
        default_scope: Scope used when the request doesn't name one
        code_ttl: Authorization code lifetime in seconds
        token_ttl: Access token lifetime in seconds
    """

    def __init__(
        self,
        store: CredentialStore,
        clients: ClientRegistry,
        default_scope: str = "read",
        code_ttl: int = 600,
        token_ttl: int = 3600,
    ):
        self.store = store
        self.clients = clients
        self.default_scope = default_scope
        self.code_ttl = code_ttl
        self.token_ttl = token_ttl

    @property
    def strict(self) -> bool:
        return self.clients.strict

    # --- Authorization endpoint ---

    def authorize(self, params: Mapping[str, str]) -> str:
        """
        Handle an authorization request and return the URL to redirect to.

        Args:
            params: Query parameters of the request (client_id, redirect_uri,
                    scope, state, response_type, code_challenge,
                    code_challenge_method)

        Returns:
            redirect_uri with `code` (and `state`, if given) appended

        Raises:
            InvalidRedirect: If redirect_uri is missing or malformed, or (strict
                             mode) not registered for the client
            InvalidClient: Strict mode, unknown client
        """
        redirect_uri = parse_redirect_uri(params.get("redirect_uri"))
        client = self.clients.resolve(params.get("client_id"))

        if self.strict and not client.allows_redirect(redirect_uri):
            raise InvalidRedirect("redirect_uri is not registered for this client")

        response_type = params.get("response_type")
        if response_type != "code":
            logger.info(
                "Tolerating unexpected response_type",
                extra={"log_data": {"response_type": response_type}},
            )

        code_challenge = params.get("code_challenge") or None
        code_challenge_method = None
        if code_challenge:
            code_challenge_method = params.get("code_challenge_method") or "S256"

        now = self.store.clock()
        code = AuthorizationCode(
            code=secrets.token_urlsafe(32),
            client_id=client.client_id,
            redirect_uri=redirect_uri,
            scope=params.get("scope") or self.default_scope,
            issued_at=now,
            expires_at=now + self.code_ttl,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
        self.store.put(CredentialKind.AUTHORIZATION_CODE, code.code, code, self.code_ttl)

        callback = {"code": code.code}
        state = params.get("state")
        if state:
            callback["state"] = state

        logger.info(
            "Authorization code issued",
            extra={
                "log_data": {
                    "client_id": client.client_id,
                    "scope": code.scope,
                    "pkce": code_challenge is not None,
                    "code": redact(code.code),
                }
            },
        )
        return append_query(redirect_uri, callback)

    # --- Token endpoint ---

    def exchange(self, params: Mapping[str, str]) -> dict[str, Any]:
        """
        Handle a token request.

        Args:
            params: Token request fields (grant_type, code, redirect_uri,
                    client_id, client_secret, code_verifier, scope)

        Returns:
            The token response body

        Raises:
            InvalidGrant: Unknown, expired or already-used code; PKCE failure
            UnsupportedGrantType: Missing or unsupported grant_type
            InvalidClient: Strict mode, bad client credentials
        """
        grant_type = params.get("grant_type")

        if grant_type == GRANT_AUTHORIZATION_CODE:
            token = self._exchange_code(params)
        elif grant_type == GRANT_CLIENT_CREDENTIALS:
            client = self.clients.authenticate(
                params.get("client_id"), params.get("client_secret")
            )
            token = self.issue_access_token(
                client.client_id, params.get("scope") or client.scope
            )
        else:
            raise UnsupportedGrantType(f"Unsupported grant_type: {grant_type!r}")

        return self.token_response(token)

    def _exchange_code(self, params: Mapping[str, str]) -> AccessToken:
        code_value = params.get("code") or ""
        code: AuthorizationCode | None = self.store.get(
            CredentialKind.AUTHORIZATION_CODE, code_value
        )
        if code is None:
            logger.warning(
                "Token request with unknown or expired code",
                extra={"log_data": {"code": redact(code_value), "decision": "rejected"}},
            )
            raise InvalidGrant("Authorization code is invalid or expired")

        if code.code_challenge is not None and not verify_code_verifier(
            params.get("code_verifier"), code.code_challenge, code.code_challenge_method
        ):
            logger.warning(
                "PKCE verification failed",
                extra={"log_data": {"client_id": code.client_id, "decision": "rejected"}},
            )
            raise InvalidGrant("code_verifier does not match code_challenge")

        if self.strict:
            redirect_uri = params.get("redirect_uri")
            if redirect_uri and redirect_uri != code.redirect_uri:
                raise InvalidGrant("redirect_uri does not match the authorization request")
            client_id = params.get("client_id")
            if client_id and client_id != code.client_id:
                raise InvalidGrant("Authorization code was issued to another client")

        # Single use: the code is gone before the token exists.
        self.store.delete(CredentialKind.AUTHORIZATION_CODE, code.code)
        return self.issue_access_token(code.client_id, code.scope)

    def issue_access_token(self, client_id: str, scope: str) -> AccessToken:
        now = self.store.clock()
        token = AccessToken(
            token=secrets.token_urlsafe(32),
            client_id=client_id,
            scope=scope,
            issued_at=now,
            expires_at=now + self.token_ttl,
        )
        self.store.put(CredentialKind.ACCESS_TOKEN, token.token, token, self.token_ttl)
        logger.info(
            "Access token issued",
            extra={
                "log_data": {
                    "client_id": client_id,
                    "scope": scope,
                    "expires_in": self.token_ttl,
                    "token": redact(token.token),
                }
            },
        )
        return token

    def token_response(self, token: AccessToken) -> dict[str, Any]:
        return {
            "access_token": token.token,
            "token_type": "Bearer",
            "expires_in": self.token_ttl,
            "scope": token.scope,
        }

    # --- Dynamic client registration ---

    def register(self, metadata: Mapping[str, Any]) -> Client:
        """
        Register a client from RFC 7591 client metadata.

        Raises:
            InvalidClientMetadata: If redirect_uris is missing or malformed
        """
        redirect_uris = metadata.get("redirect_uris")
        if not isinstance(redirect_uris, list) or not redirect_uris:
            raise InvalidClientMetadata("redirect_uris must be a non-empty list")
        for uri in redirect_uris:
            if not isinstance(uri, str):
                raise InvalidClientMetadata("redirect_uris entries must be strings")
            try:
                parse_redirect_uri(uri)
            except InvalidRedirect as e:
                raise InvalidClientMetadata(f"Invalid redirect URI {uri!r}: {e.message}")

        client = self.clients.register(
            redirect_uris=redirect_uris,
            client_name=str(metadata.get("client_name") or ""),
            scope=metadata.get("scope") or self.default_scope,
        )
        logger.info(
            "Client registered",
            extra={
                "log_data": {
                    "client_id": client.client_id,
                    "client_name": client.client_name,
                    "redirect_uris": list(client.redirect_uris),
                }
            },
        )
        return client

    # --- Discovery ---

    def metadata(self, issuer: str, registration_enabled: bool = True) -> dict[str, Any]:
        """RFC 8414 authorization server metadata."""
        document = {
            "issuer": issuer,
            "authorization_endpoint": f"{issuer}/oauth/authorize",
            "token_endpoint": f"{issuer}/oauth/token",
            "scopes_supported": [self.default_scope],
            "response_types_supported": ["code"],
            "grant_types_supported": SUPPORTED_GRANT_TYPES,
            "token_endpoint_auth_methods_supported": [
                "none",
                "client_secret_post",
                "client_secret_basic",
            ],
            "code_challenge_methods_supported": SUPPORTED_CHALLENGE_METHODS,
        }
        if registration_enabled:
            document["registration_endpoint"] = f"{issuer}/oauth/register"
        return document
