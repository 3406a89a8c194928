"""
Application configuration loaded from environment variables.

Uses pydantic-settings to define typed configuration that automatically reads
from environment variables (prefix MCP_) or a local .env file. All the
variation points of the gateway live here rather than in separate entrypoints:

- auth_required: enforce bearer tokens on the MCP transports, or admit
  anonymous requests for local testing
- strict_client_validation: reject unknown OAuth clients and unregistered
  redirect URIs, or fall back to the default client (permissive)
- enabled_tools: which tools from the registry are published to clients

The only setting without a usable default is the TMDB API key. It is not
validated here, so that the module can be imported without one; the server
refuses to start when it is missing.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Gateway configuration with environment variable bindings.

    Each field maps to an environment variable with the MCP_ prefix, for
    example `tmdb_api_key` reads from MCP_TMDB_API_KEY and `port` from
    MCP_PORT. List fields are given as JSON (MCP_ENABLED_TOOLS='["search"]').
    """

    # --- Server settings ---

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"

    # Public base URL used as the OAuth issuer. When unset, the issuer is
    # derived from each request (honouring X-Forwarded-* headers).
    issuer_url: str | None = None

    # Origins allowed by the CORS middleware. Browser-based MCP clients need
    # the Authorization and Mcp-Session-Id headers to pass through.
    cors_allow_origins: list[str] = ["*"]

    # --- Authorization server settings ---

    auth_required: bool = True
    strict_client_validation: bool = False
    allow_dynamic_registration: bool = True

    # The well-known client used by the single expected caller.
    default_client_id: str = "chatgpt"
    default_client_secret: str = "change-me"
    default_scope: str = "read"

    # Lifetimes in seconds.
    authorization_code_ttl: int = 600
    access_token_ttl: int = 3600

    # Upper bound on stored records per credential kind.
    max_credentials: int = 10_000

    # --- Transport settings ---

    # Seconds between SSE keep-alive comments on idle streams.
    sse_ping_interval: int = 15

    # --- Tool settings ---

    enabled_tools: list[str] = ["search", "fetch"]

    tmdb_api_key: str | None = None
    tmdb_base_url: str = "https://api.themoviedb.org/3"
    # Public site used to build the human-facing URLs in tool results.
    tmdb_site_url: str = "https://www.themoviedb.org"
    tmdb_timeout: float = 30.0

    model_config = {
        "env_prefix": "MCP_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


# Singleton instance used by the process entrypoint.
# Tests construct their own Settings(...) instead of mutating this one.
settings = Settings()
