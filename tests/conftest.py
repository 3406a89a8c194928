"""
Shared test fixtures for the gateway test suite.

Key fixtures:
- clock: A fake clock shared by the stores, so expiry can be tested by
  advancing time instead of sleeping
- tmdb: A stub of the TMDB API served through httpx.MockTransport; tests add
  or override routes with tmdb.add(path, body, status)
- settings / gateway: A fresh Settings and Gateway per test (no shared state)
- async_client: An httpx.AsyncClient wired to the gateway's ASGI app
- make_token / make_auth_header: Factories that issue real tokens into the
  gateway's credential store

Testing approach:
- test_store.py, test_oauth.py, test_auth.py, test_transport.py,
  test_dispatcher.py and test_tools.py unit-test one module each.
- test_server.py sends real HTTP requests to the ASGI app (in-memory, no
  network) and covers the OAuth flow, the auth gate and both transports.
"""

import httpx
import pytest

from tmdb_mcp.config import Settings
from tmdb_mcp.server import build_gateway
from tmdb_mcp.store import ClientRegistry, Client, CredentialStore
from tmdb_mcp.tmdb import TMDBClient
from tmdb_mcp.tools import ToolContext

TEST_API_KEY = "test-tmdb-key"

FIGHT_CLUB_SEARCH = {
    "page": 1,
    "results": [
        {
            "id": 550,
            "title": "Fight Club",
            "release_date": "1999-10-15",
            "popularity": 61.4,
        }
    ],
    "total_pages": 1,
    "total_results": 1,
}

FIGHT_CLUB_DETAILS = {
    "id": 550,
    "title": "Fight Club",
    "release_date": "1999-10-15",
    "vote_average": 8.4,
    "overview": "A ticking-time-bomb insomniac and a slippery soap salesman channel primal male aggression.",
    "genres": [{"id": 18, "name": "Drama"}, {"id": 53, "name": "Thriller"}],
    "runtime": 139,
    "popularity": 61.4,
    "budget": 63000000,
    "revenue": 100853753,
    "credits": {
        "cast": [
            {"name": "Edward Norton"},
            {"name": "Brad Pitt"},
            {"name": "Helena Bonham Carter"},
            {"name": "Meat Loaf"},
            {"name": "Jared Leto"},
            {"name": "Zach Grenier"},
        ],
        "crew": [
            {"name": "Jim Uhls", "job": "Screenplay"},
            {"name": "David Fincher", "job": "Director"},
        ],
    },
}

NOT_FOUND = {
    "status_code": 34,
    "status_message": "The resource you requested could not be found.",
}


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------
class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# TMDB stub
# ---------------------------------------------------------------------------
class TMDBStub:
    """
    In-memory TMDB API.

    Routes are keyed by path below the API root ("/search/movie"). A body
    that is an exception instance is raised from the transport instead, which
    is how httpx reports network failures.
    """

    def __init__(self):
        self.routes: dict[str, tuple[int, object]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, body: object, status: int = 200) -> None:
        self.routes[path] = (status, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/3")
        status, body = self.routes.get(path, (404, NOT_FOUND))
        if isinstance(body, Exception):
            raise body
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def tmdb():
    stub = TMDBStub()
    stub.add("/search/movie", FIGHT_CLUB_SEARCH)
    stub.add("/movie/550", FIGHT_CLUB_DETAILS)
    return stub


@pytest.fixture
async def tool_context(tmdb):
    client = TMDBClient(api_key=TEST_API_KEY, transport=tmdb.transport)
    yield ToolContext(tmdb=client)
    await client.aclose()


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------
@pytest.fixture
def store(clock):
    return CredentialStore(clock=clock)


@pytest.fixture
def default_client():
    return Client(client_id="chatgpt", client_secret="change-me", scope="read")


@pytest.fixture
def clients(default_client):
    return ClientRegistry(default_client=default_client)


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------
@pytest.fixture
def make_settings():
    """
    Factory for Settings that ignore the environment's .env file.

    Usage in tests:
        def test_something(make_settings):
            settings = make_settings(auth_required=False)
    """

    def _make_settings(**overrides) -> Settings:
        values = {"tmdb_api_key": TEST_API_KEY}
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make_settings


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def gateway(settings, tmdb, clock):
    return build_gateway(settings, tmdb_transport=tmdb.transport, clock=clock)


@pytest.fixture
def app(gateway):
    return gateway.http_app()


@pytest.fixture
async def async_client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


# ---------------------------------------------------------------------------
# Token factory fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def make_token(gateway):
    """
    Factory fixture issuing access tokens into the gateway's store.

    Usage in tests:
        def test_something(make_token):
            token = make_token(client_id="chatgpt")
            # token is the raw token string (not "Bearer ..." prefixed)
    """

    def _make_token(client_id: str = "chatgpt", scope: str = "read") -> str:
        return gateway.oauth.issue_access_token(client_id, scope).token

    return _make_token


@pytest.fixture
def make_auth_header(make_token):
    """Convenience fixture that returns a full "Bearer <token>" string."""

    def _make_auth_header(**kwargs) -> str:
        return f"Bearer {make_token(**kwargs)}"

    return _make_auth_header
