"""
Client for The Movie Database (TMDB) v3 API.

A thin async wrapper over httpx. Each method makes exactly one request and
returns the decoded JSON object. Every way a request can go wrong (network
error, timeout, non-2xx status, body that isn't a JSON object) surfaces as
UpstreamFailure, so tool handlers only have one exception to deal with.
"""

import logging
import re
from typing import Any

import httpx

from tmdb_mcp.errors import UpstreamFailure

logger = logging.getLogger("tmdb-mcp.tmdb")

MOVIE_ID = re.compile(r"[0-9]+")


class TMDBClient:
    """
    Async TMDB API client.

    Args:
        api_key: TMDB v3 API key, sent as the api_key query parameter
        base_url: API root, e.g. https://api.themoviedb.org/3
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests pass an httpx.MockTransport)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.themoviedb.org/3",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            params={"api_key": api_key},
            timeout=timeout,
            transport=transport,
        )

    async def search_movies(self, query: str) -> dict[str, Any]:
        return await self._get("/search/movie", params={"query": query})

    async def get_movie(self, movie_id: str, append: tuple[str, ...] = ("credits",)) -> dict[str, Any]:
        """Movie details, with sub-resources (credits, reviews, ...) in the same call."""
        params = {"append_to_response": ",".join(append)} if append else None
        return await self._get(f"/movie/{_movie_id(movie_id)}", params=params)

    async def get_recommendations(self, movie_id: str) -> dict[str, Any]:
        return await self._get(f"/movie/{_movie_id(movie_id)}/recommendations")

    async def get_trending(self, time_window: str) -> dict[str, Any]:
        return await self._get(f"/trending/movie/{time_window}")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as e:
            raise UpstreamFailure(f"TMDB request timed out: {path}") from e
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"TMDB request failed: {e}") from e

        if response.is_error:
            logger.warning(
                "TMDB returned an error status",
                extra={"log_data": {"path": path, "status": response.status_code}},
            )
            raise UpstreamFailure(
                f"TMDB returned HTTP {response.status_code}: {_status_message(response)}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamFailure("TMDB returned a body that is not JSON") from e
        if not isinstance(data, dict):
            raise UpstreamFailure("TMDB returned an unexpected payload")
        return data


def _status_message(response: httpx.Response) -> str:
    # TMDB error bodies look like {"status_code": 34, "status_message": "..."}
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase
    if isinstance(body, dict) and body.get("status_message"):
        return str(body["status_message"])
    return response.reason_phrase


def _movie_id(movie_id: str | int) -> str:
    # Ids go into the URL path; anything but digits could address another endpoint.
    value = str(movie_id)
    if not MOVIE_ID.fullmatch(value):
        raise UpstreamFailure(f"Invalid TMDB movie id: {value!r}")
    return value
