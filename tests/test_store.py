"""
Unit tests for the credential store and client registry (tmdb_mcp/store.py).

Time is controlled through the FakeClock fixture: records are put with a
TTL, the clock is advanced, and the test checks what get() sees.
"""

import pytest

from tmdb_mcp.errors import InvalidClient
from tmdb_mcp.store import (
    AccessToken,
    ClientRegistry,
    CredentialKind,
    CredentialStore,
)

TOKEN = CredentialKind.ACCESS_TOKEN
CODE = CredentialKind.AUTHORIZATION_CODE


class TestCredentialStore:
    """Tests for put/get/delete and expiry."""

    def test_get_returns_stored_record(self, store):
        store.put(TOKEN, "abc", "record", ttl=60)

        assert store.get(TOKEN, "abc") == "record"

    def test_get_unknown_key_returns_none(self, store):
        assert store.get(TOKEN, "missing") is None

    def test_kinds_are_separate(self, store):
        """A code and a token with the same key don't see each other."""
        store.put(CODE, "same", "code-record", ttl=60)

        assert store.get(TOKEN, "same") is None
        assert store.get(CODE, "same") == "code-record"

    def test_record_expires_after_ttl(self, store, clock):
        store.put(TOKEN, "abc", "record", ttl=60)

        clock.advance(59)
        assert store.get(TOKEN, "abc") == "record"

        clock.advance(1)
        assert store.get(TOKEN, "abc") is None

    def test_expired_record_is_removed_on_read(self, store, clock):
        """Reading an expired record also drops it from the store."""
        store.put(TOKEN, "abc", "record", ttl=10)
        clock.advance(11)

        store.get(TOKEN, "abc")

        assert store.count(TOKEN) == 0

    def test_put_replaces_existing_record(self, store):
        store.put(TOKEN, "abc", "first", ttl=60)
        store.put(TOKEN, "abc", "second", ttl=60)

        assert store.get(TOKEN, "abc") == "second"
        assert store.count(TOKEN) == 1

    def test_delete_is_idempotent(self, store):
        store.put(CODE, "abc", "record", ttl=60)

        store.delete(CODE, "abc")
        store.delete(CODE, "abc")

        assert store.get(CODE, "abc") is None

    def test_sweep_removes_only_expired_records(self, store, clock):
        store.put(TOKEN, "short", "a", ttl=10)
        store.put(CODE, "short", "b", ttl=10)
        store.put(TOKEN, "long", "c", ttl=100)
        clock.advance(20)

        assert store.sweep() == 2
        assert store.count(TOKEN) == 1
        assert store.count(CODE) == 0
        assert store.get(TOKEN, "long") == "c"


class TestCredentialStoreCapacity:
    """Tests for the per-kind size cap."""

    def test_full_store_sweeps_expired_records_first(self, clock):
        store = CredentialStore(max_entries=2, clock=clock)
        store.put(TOKEN, "old", "a", ttl=5)
        store.put(TOKEN, "live", "b", ttl=100)
        clock.advance(10)

        store.put(TOKEN, "new", "c", ttl=100)

        assert store.get(TOKEN, "live") == "b"
        assert store.get(TOKEN, "new") == "c"
        assert store.count(TOKEN) == 2

    def test_full_store_evicts_oldest_live_record(self, clock):
        store = CredentialStore(max_entries=2, clock=clock)
        store.put(TOKEN, "first", "a", ttl=100)
        store.put(TOKEN, "second", "b", ttl=100)

        store.put(TOKEN, "third", "c", ttl=100)

        assert store.get(TOKEN, "first") is None
        assert store.get(TOKEN, "second") == "b"
        assert store.get(TOKEN, "third") == "c"

    def test_cap_applies_per_kind(self, clock):
        """Filling up codes doesn't evict tokens."""
        store = CredentialStore(max_entries=1, clock=clock)
        store.put(TOKEN, "token", "a", ttl=100)

        store.put(CODE, "code-1", "b", ttl=100)
        store.put(CODE, "code-2", "c", ttl=100)

        assert store.get(TOKEN, "token") == "a"
        assert store.get(CODE, "code-1") is None


class TestAccessToken:
    def test_scopes_splits_scope_string(self):
        token = AccessToken(
            token="t", client_id="chatgpt", scope="read write", issued_at=0, expires_at=1
        )

        assert token.scopes == ["read", "write"]


class TestClientRegistry:
    """Tests for client lookup, the permissive fallback and strict mode."""

    def test_known_client_resolves_to_itself(self, clients, default_client):
        assert clients.resolve("chatgpt") is default_client

    def test_unknown_client_falls_back_to_default(self, clients, default_client):
        assert clients.resolve("someone-else") is default_client

    def test_missing_client_falls_back_to_default(self, clients, default_client):
        assert clients.resolve(None) is default_client

    def test_strict_mode_rejects_unknown_client(self, default_client):
        clients = ClientRegistry(default_client=default_client, strict=True)

        with pytest.raises(InvalidClient, match="Unknown client_id"):
            clients.resolve("someone-else")

    def test_permissive_authenticate_ignores_secret(self, clients, default_client):
        assert clients.authenticate("chatgpt", "wrong") is default_client

    def test_strict_authenticate_checks_secret(self, default_client):
        clients = ClientRegistry(default_client=default_client, strict=True)

        assert clients.authenticate("chatgpt", "change-me") is default_client
        with pytest.raises(InvalidClient, match="authentication failed"):
            clients.authenticate("chatgpt", "wrong")
        with pytest.raises(InvalidClient):
            clients.authenticate("chatgpt", None)

    def test_register_creates_resolvable_client(self, clients):
        client = clients.register(
            redirect_uris=["https://app.example.com/callback"], client_name="Example"
        )

        assert client.client_id.startswith("client_")
        assert client.client_secret
        assert client.scope == "read"
        assert clients.get(client.client_id) is client
        assert len(clients) == 2

    def test_registered_client_only_allows_its_redirects(self, clients):
        client = clients.register(redirect_uris=["https://app.example.com/callback"])

        assert client.allows_redirect("https://app.example.com/callback")
        assert not client.allows_redirect("https://evil.example.com/callback")

    def test_default_client_allows_any_redirect(self, default_client):
        assert default_client.allows_redirect("https://anything.example.com/cb")
