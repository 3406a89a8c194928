"""
CLI utility to obtain an access token from a running gateway.

Walks through the same OAuth flow a connector does: an authorization request
with a PKCE challenge (the gateway approves it automatically and redirects
with a code), then a token request redeeming the code with the verifier.
Nothing is opened in a browser; the redirect is read straight off the
response.

Usage examples:

    # Token for the default client against a local server
    python -m scripts.get_token

    # Against a deployed gateway, with a specific client
    python -m scripts.get_token --url https://movies.example.com --client-id chatgpt

    # Client credentials instead of the authorization code flow
    python -m scripts.get_token --client-credentials --client-secret change-me

The token can be used with curl:

    curl -N http://localhost:8080/sse -H "Authorization: Bearer <token>"

or with Claude Code:

    claude mcp add --transport http tmdb http://localhost:8080/mcp \\
      --header "Authorization: Bearer <token>"
"""

import argparse
import asyncio
import secrets
from urllib.parse import parse_qs, urlsplit

import httpx

from tmdb_mcp.oauth import s256_challenge

DEFAULT_REDIRECT_URI = "http://localhost:8976/callback"


async def obtain_token(
    client: httpx.AsyncClient,
    base_url: str,
    client_id: str = "chatgpt",
    redirect_uri: str = DEFAULT_REDIRECT_URI,
    scope: str = "read",
) -> dict:
    """
    Run the authorization code flow with PKCE and return the token response.

    Args:
        client: HTTP client used for both requests
        base_url: Root URL of the gateway
        client_id: OAuth client id
        redirect_uri: Where the code is sent; never actually visited
        scope: Requested scope

    Raises:
        httpx.HTTPStatusError: If the gateway rejects either request
        ValueError: If the redirect carries no code or the wrong state
    """
    base_url = base_url.rstrip("/")
    verifier = secrets.token_urlsafe(48)
    state = secrets.token_urlsafe(8)

    response = await client.get(
        f"{base_url}/oauth/authorize",
        params={
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "scope": scope,
            "state": state,
            "code_challenge": s256_challenge(verifier),
            "code_challenge_method": "S256",
        },
        follow_redirects=False,
    )
    if not response.is_redirect:
        response.raise_for_status()
        raise ValueError(f"Expected a redirect, got HTTP {response.status_code}")

    callback = parse_qs(urlsplit(response.headers["location"]).query)
    if callback.get("state") != [state]:
        raise ValueError("State in the redirect does not match the request")
    if "code" not in callback:
        raise ValueError("Redirect carries no authorization code")

    response = await client.post(
        f"{base_url}/oauth/token",
        data={
            "grant_type": "authorization_code",
            "code": callback["code"][0],
            "redirect_uri": redirect_uri,
            "client_id": client_id,
            "code_verifier": verifier,
        },
    )
    response.raise_for_status()
    return response.json()


async def obtain_client_token(
    client: httpx.AsyncClient,
    base_url: str,
    client_id: str,
    client_secret: str,
    scope: str = "read",
) -> dict:
    """Client credentials grant: one token request, no redirect."""
    response = await client.post(
        f"{base_url.rstrip('/')}/oauth/token",
        data={
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
            "scope": scope,
        },
    )
    response.raise_for_status()
    return response.json()


async def _run(args: argparse.Namespace) -> dict:
    async with httpx.AsyncClient(timeout=30.0) as client:
        if args.client_credentials:
            return await obtain_client_token(
                client, args.url, args.client_id, args.client_secret or "", args.scope
            )
        return await obtain_token(
            client, args.url, args.client_id, args.redirect_uri, args.scope
        )


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Obtain an access token from the TMDB MCP gateway.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Local server, default client:
    %(prog)s

  Deployed server:
    %(prog)s --url https://movies.example.com

  Client credentials:
    %(prog)s --client-credentials --client-secret change-me
        """,
    )
    parser.add_argument("--url", default="http://localhost:8080", help="Gateway base URL")
    parser.add_argument("--client-id", default="chatgpt", help="OAuth client id (default: chatgpt)")
    parser.add_argument("--client-secret", help="Client secret (client credentials grant only)")
    parser.add_argument("--scope", default="read", help="Requested scope (default: read)")
    parser.add_argument(
        "--redirect-uri",
        default=DEFAULT_REDIRECT_URI,
        help="Redirect URI sent with the authorization request",
    )
    parser.add_argument(
        "--client-credentials",
        action="store_true",
        help="Use the client_credentials grant instead of authorization code + PKCE",
    )

    args = parser.parse_args()

    try:
        body = asyncio.run(_run(args))
    except (httpx.HTTPError, ValueError) as e:
        parser.exit(1, f"Failed to obtain a token: {e}\n")

    token = body["access_token"]
    print(f"Client:     {args.client_id}")
    print(f"Scope:      {body.get('scope')}")
    print(f"Expires in: {body.get('expires_in')}s")
    print()
    print(f"Token: {token}")

    print()
    print("Usage with curl (open the SSE stream):")
    print(f'  curl -N {args.url.rstrip("/")}/sse \\')
    print(f'    -H "Authorization: Bearer {token}"')


if __name__ == "__main__":
    main()
