"""
In-memory credential store and OAuth client registry.

The gateway is its own authorization server, so it needs somewhere to keep
the authorization codes and access tokens it issues. Both live in a
CredentialStore: a dictionary per credential kind, with a time-to-live on
every record.

Expiry is enforced on read: get() treats a record past its expiry as absent
and drops it on the spot. Nothing depends on a background sweeper to be
correct. To keep a long-running process bounded, every kind also has a
maximum size; when a put() would exceed it, expired records are swept and,
if that is not enough, the oldest records are evicted.

Concurrency: the server runs on a single asyncio event loop and none of these
methods await, so each call runs to completion without interleaving. Do not
add an await inside a read-modify-write sequence here.

Store objects are created once per gateway (see server.build_gateway) and
passed to the handlers that need them, so every test can use fresh stores.
"""

import enum
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from tmdb_mcp.errors import InvalidClient

logger = logging.getLogger("tmdb-mcp.store")

Clock = Callable[[], float]


class CredentialKind(str, enum.Enum):
    AUTHORIZATION_CODE = "authorization_code"
    ACCESS_TOKEN = "access_token"


@dataclass(frozen=True)
class AuthorizationCode:
    """
    A short-lived, single-use code issued by the authorization endpoint.

    Attributes:
        code: Opaque random value handed to the client
        client_id: Client the code was issued to
        redirect_uri: Redirect URI from the authorization request
        scope: Space-separated scopes granted
        code_challenge: PKCE challenge, if the client sent one
        code_challenge_method: "S256" or "plain" (None without a challenge)
        issued_at / expires_at: Unix timestamps
    """

    code: str
    client_id: str
    redirect_uri: str
    scope: str
    issued_at: float
    expires_at: float
    code_challenge: str | None = None
    code_challenge_method: str | None = None


@dataclass(frozen=True)
class AccessToken:
    """An opaque bearer token. Read-only once issued; never revoked."""

    token: str
    client_id: str
    scope: str
    issued_at: float
    expires_at: float

    @property
    def scopes(self) -> list[str]:
        return self.scope.split()


@dataclass
class _Entry:
    record: Any
    expires_at: float


class CredentialStore:
    """
    Keyed records with expiry, partitioned by CredentialKind.

    Args:
        max_entries: Maximum records kept per kind
        clock: Returns the current Unix time; injectable for tests
    """

    def __init__(self, max_entries: int = 10_000, clock: Clock = time.time):
        self.max_entries = max_entries
        self.clock = clock
        self._buckets: dict[CredentialKind, dict[str, _Entry]] = {
            kind: {} for kind in CredentialKind
        }

    def put(self, kind: CredentialKind, key: str, record: Any, ttl: float) -> None:
        """Store `record` under `key` for `ttl` seconds, replacing any previous one."""
        bucket = self._buckets[kind]
        bucket.pop(key, None)
        if len(bucket) >= self.max_entries:
            self._make_room(kind)
        bucket[key] = _Entry(record=record, expires_at=self.clock() + ttl)

    def get(self, kind: CredentialKind, key: str) -> Any | None:
        """Return the live record for `key`, or None if absent or expired."""
        bucket = self._buckets[kind]
        entry = bucket.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self.clock():
            del bucket[key]
            return None
        return entry.record

    def delete(self, kind: CredentialKind, key: str) -> None:
        self._buckets[kind].pop(key, None)

    def sweep(self) -> int:
        """Drop every expired record. Returns how many were removed."""
        now = self.clock()
        removed = 0
        for bucket in self._buckets.values():
            expired = [key for key, entry in bucket.items() if entry.expires_at <= now]
            for key in expired:
                del bucket[key]
            removed += len(expired)
        return removed

    def count(self, kind: CredentialKind) -> int:
        """Number of records physically held, expired or not."""
        return len(self._buckets[kind])

    def _make_room(self, kind: CredentialKind) -> None:
        bucket = self._buckets[kind]
        swept = self.sweep()
        evicted = 0
        # Dicts keep insertion order, so the first keys are the oldest.
        while len(bucket) >= self.max_entries:
            del bucket[next(iter(bucket))]
            evicted += 1
        if evicted:
            logger.warning(
                "Credential store full, evicted oldest records",
                extra={
                    "log_data": {
                        "kind": kind.value,
                        "swept": swept,
                        "evicted": evicted,
                        "max_entries": self.max_entries,
                    }
                },
            )


# ---------------------------------------------------------------------------
# OAuth clients
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Client:
    """
    A registered OAuth client.

    redirect_uris may contain "*", which allows any redirect URI.
    """

    client_id: str
    client_secret: str
    redirect_uris: tuple[str, ...] = ("*",)
    scope: str = "read"
    client_name: str = ""

    def allows_redirect(self, redirect_uri: str) -> bool:
        return "*" in self.redirect_uris or redirect_uri in self.redirect_uris


@dataclass
class ClientRegistry:
    """
    Known OAuth clients, seeded with the default client.

    In permissive mode (strict=False) unknown client ids resolve to the
    default client, which tolerates callers that are sloppy about
    re-registration. In strict mode they are rejected.
    """

    default_client: Client
    strict: bool = False
    _clients: dict[str, Client] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self._clients[self.default_client.client_id] = self.default_client

    def get(self, client_id: str | None) -> Client | None:
        if not client_id:
            return None
        return self._clients.get(client_id)

    def resolve(self, client_id: str | None) -> Client:
        """
        Look up a client, applying the permissive fallback.

        Raises:
            InvalidClient: In strict mode, for a missing or unknown client id
        """
        client = self.get(client_id)
        if client is not None:
            return client
        if self.strict:
            raise InvalidClient(f"Unknown client_id: {client_id!r}")
        if client_id:
            logger.info(
                "Unknown client_id, falling back to default client",
                extra={
                    "log_data": {
                        "client_id": client_id,
                        "default_client_id": self.default_client.client_id,
                    }
                },
            )
        return self.default_client

    def authenticate(self, client_id: str | None, client_secret: str | None) -> Client:
        """
        Resolve a client and, in strict mode, verify its secret.

        Raises:
            InvalidClient: In strict mode, for an unknown client or wrong secret
        """
        client = self.resolve(client_id)
        if self.strict and not secrets.compare_digest(
            client.client_secret, client_secret or ""
        ):
            raise InvalidClient("Client authentication failed")
        return client

    def register(
        self,
        redirect_uris: list[str],
        client_name: str = "",
        scope: str | None = None,
    ) -> Client:
        """Create a new client with generated credentials (dynamic registration)."""
        client = Client(
            client_id=f"client_{secrets.token_urlsafe(12)}",
            client_secret=secrets.token_urlsafe(32),
            redirect_uris=tuple(redirect_uris),
            scope=scope or self.default_client.scope,
            client_name=client_name,
        )
        self._clients[client.client_id] = client
        return client

    def __len__(self) -> int:
        return len(self._clients)
