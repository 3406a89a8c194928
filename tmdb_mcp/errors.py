"""
Error taxonomy for the gateway.

Every failure the gateway can report to a caller is a subclass of
GatewayError. Each class carries two pieces of wire information:

- error_code: the short machine-readable code placed in the JSON body
  (mirrors the OAuth 2.0 / RFC 6750 bearer-token error vocabulary)
- status_code: the HTTP status used when the error reaches the HTTP surface

The core components (store, oauth, auth gate, session registry, tools) only
raise these exceptions. Translation into HTTP responses happens in server.py,
and into JSON-RPC errors in dispatcher.py.
"""


class GatewayError(Exception):
    """
    Base class for all errors reported to a caller.

    Attributes:
        message: Human-readable description (sent as error_description)
        error_code: Short error code for the JSON body
        status_code: HTTP status code to return
    """

    error_code = "server_error"
    status_code = 500

    def __init__(self, message: str = ""):
        self.message = message or self.error_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error_code, "error_description": self.message}


# ---------------------------------------------------------------------------
# Authorization / token errors
# ---------------------------------------------------------------------------


class InvalidRequest(GatewayError):
    """The request is missing a parameter or can't be parsed."""

    error_code = "invalid_request"
    status_code = 400


class InvalidRedirect(InvalidRequest):
    """The redirect_uri is missing, unparsable, or not registered."""


class InvalidGrant(GatewayError):
    """Authorization code is unknown, expired, already used, or fails PKCE."""

    error_code = "invalid_grant"
    status_code = 400


class UnsupportedGrantType(GatewayError):
    error_code = "unsupported_grant_type"
    status_code = 400


class InvalidClient(GatewayError):
    """Unknown client or bad client secret (strict client validation only)."""

    error_code = "invalid_client"
    status_code = 401


class InvalidClientMetadata(GatewayError):
    error_code = "invalid_client_metadata"
    status_code = 400


# ---------------------------------------------------------------------------
# Bearer auth gate errors
# ---------------------------------------------------------------------------


class Unauthorized(GatewayError):
    """No credentials presented (missing header or wrong scheme)."""

    error_code = "unauthorized"
    status_code = 401


class InvalidToken(GatewayError):
    """Credentials presented, but the token is unknown or expired."""

    error_code = "invalid_token"
    status_code = 401


# ---------------------------------------------------------------------------
# Session and tool errors
# ---------------------------------------------------------------------------


class SessionNotFound(GatewayError):
    error_code = "session_not_found"
    status_code = 404


class UnknownTool(GatewayError):
    error_code = "unknown_tool"
    status_code = 400


class UpstreamFailure(GatewayError):
    """
    The external content API failed (network error, timeout, non-2xx status,
    or a payload we can't interpret).

    Tool handlers catch this and return an in-band error result, so it never
    reaches the transport.
    """

    error_code = "upstream_failure"
    status_code = 502


class ConfigurationError(Exception):
    """Fatal startup misconfiguration (e.g. missing TMDB API key)."""
