"""Tests for environment-driven configuration (tmdb_mcp/config.py)."""

from tmdb_mcp.config import Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("MCP_TMDB_API_KEY", raising=False)

        settings = Settings(_env_file=None)

        assert settings.port == 8080
        assert settings.auth_required is True
        assert settings.strict_client_validation is False
        assert settings.enabled_tools == ["search", "fetch"]
        assert settings.authorization_code_ttl == 600
        assert settings.access_token_ttl == 3600
        assert settings.tmdb_api_key is None

    def test_reads_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("MCP_TMDB_API_KEY", "from-env")
        monkeypatch.setenv("MCP_AUTH_REQUIRED", "false")
        monkeypatch.setenv("MCP_ENABLED_TOOLS", '["search", "get_trending"]')
        monkeypatch.setenv("MCP_ACCESS_TOKEN_TTL", "60")

        settings = Settings(_env_file=None)

        assert settings.tmdb_api_key == "from-env"
        assert settings.auth_required is False
        assert settings.enabled_tools == ["search", "get_trending"]
        assert settings.access_token_ttl == 60

    def test_reads_env_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MCP_TMDB_API_KEY", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("MCP_TMDB_API_KEY=from-file\nMCP_PORT=9000\n")

        settings = Settings(_env_file=env_file)

        assert settings.tmdb_api_key == "from-file"
        assert settings.port == 9000
