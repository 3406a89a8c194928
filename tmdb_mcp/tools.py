"""
Tool registry and the TMDB tool handlers.

A tool is a ToolSpec: a name, a description, a pydantic model describing its
arguments (which doubles as the JSON schema published to clients), and an
async handler. The registry holds every known tool; the configuration picks
which of them are active:

    TOOLS = {
        "search": ...,               # ChatGPT connector contract
        "fetch": ...,                # ChatGPT connector contract
        "get_recommendations": ...,
        "get_trending": ...,
    }

Handlers never let an upstream failure escape. A TMDB error becomes a
CallToolResult with isError=True and a readable message, so the protocol
round trip always completes with a result envelope.

The same registry is served on both MCP transports: the SSE transport calls
it through dispatcher.ToolDispatcher, and the streamable HTTP transport
through RegistryTool, a FastMCP Tool wrapping one registry entry.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Literal

from fastmcp.exceptions import ToolError
from fastmcp.tools.tool import Tool, ToolResult
from mcp import types
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tmdb_mcp.errors import ConfigurationError, UnknownTool, UpstreamFailure
from tmdb_mcp.tmdb import TMDBClient

logger = logging.getLogger("tmdb-mcp.tools")

# TMDB caps a page at 20 results; connectors work better with fewer.
MAX_RESULTS = 10


@dataclass
class ToolContext:
    """What a handler gets besides its arguments."""

    tmdb: TMDBClient
    site_url: str = "https://www.themoviedb.org"

    def movie_url(self, movie_id: Any) -> str:
        return f"{self.site_url.rstrip('/')}/movie/{movie_id}"


ToolHandler = Callable[[ToolContext, Any], Awaitable[types.CallToolResult]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    arguments: type[BaseModel]
    handler: ToolHandler

    def input_schema(self) -> dict[str, Any]:
        return self.arguments.model_json_schema(by_alias=True)

    def to_mcp_tool(self) -> types.Tool:
        return types.Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.input_schema(),
        )


# ---------------------------------------------------------------------------
# Result helpers
# ---------------------------------------------------------------------------


def text_result(payload: Any) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=json.dumps(payload))],
        isError=False,
    )


def error_result(message: str) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=message)],
        isError=True,
    )


def result_text(result: types.CallToolResult) -> str:
    return "\n".join(
        block.text for block in result.content if isinstance(block, types.TextContent)
    )


def movie_title(movie: dict[str, Any]) -> str:
    """Format as 'Fight Club (1999)', with year 'Unknown' when there is no release date."""
    title = movie.get("title") or movie.get("name") or "Untitled"
    year = (movie.get("release_date") or "").split("-")[0] or "Unknown"
    return f"{title} ({year})"


def movie_results(data: dict[str, Any], ctx: ToolContext) -> dict[str, list[dict[str, str]]]:
    """Map a TMDB paged movie list to [{id, title, url}]."""
    results = data.get("results")
    if not isinstance(results, list):
        raise UpstreamFailure("TMDB response has no results list")

    entries = []
    for movie in results:
        if not isinstance(movie, dict) or movie.get("id") is None:
            continue
        entries.append(
            {
                "id": str(movie["id"]),
                "title": movie_title(movie),
                "url": ctx.movie_url(movie["id"]),
            }
        )
        if len(entries) == MAX_RESULTS:
            break
    return {"results": entries}


def movie_document(data: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    """Map TMDB movie details (with credits) to the connector document shape."""
    if data.get("id") is None:
        raise UpstreamFailure("TMDB response has no movie id")

    credits = data.get("credits") or {}
    director = next(
        (person.get("name") for person in credits.get("crew") or [] if person.get("job") == "Director"),
        None,
    )
    cast = [actor.get("name") for actor in (credits.get("cast") or [])[:5] if actor.get("name")]
    genres = [genre.get("name") for genre in data.get("genres") or [] if genre.get("name")]

    text = "\n".join(
        [
            f"Title: {data.get('title')}",
            f"Release Date: {data.get('release_date') or 'Unknown'}",
            f"Rating: {data.get('vote_average')}/10",
            f"Overview: {data.get('overview') or ''}",
            f"Genres: {', '.join(genres) or 'Unknown'}",
            f"Runtime: {data.get('runtime')} minutes",
            f"Director: {director or 'Unknown'}",
            f"Cast: {', '.join(cast) or 'Unknown'}",
        ]
    )
    return {
        "id": str(data["id"]),
        "title": movie_title(data),
        "text": text,
        "url": ctx.movie_url(data["id"]),
        "metadata": {
            "tmdb_id": data["id"],
            "popularity": data.get("popularity"),
            "budget": data.get("budget"),
            "revenue": data.get("revenue"),
        },
    }


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class SearchArguments(BaseModel):
    query: str = Field(description="Movie title, keywords, or search terms")


async def search(ctx: ToolContext, args: SearchArguments) -> types.CallToolResult:
    try:
        data = await ctx.tmdb.search_movies(args.query)
        return text_result(movie_results(data, ctx))
    except UpstreamFailure as e:
        logger.warning("search failed", extra={"log_data": {"query": args.query, "error": e.message}})
        return error_result(f"Error searching movies: {e.message}")


class FetchArguments(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str = Field(pattern=r"^[0-9]+$", description="TMDB movie ID (from search results)")


async def fetch(ctx: ToolContext, args: FetchArguments) -> types.CallToolResult:
    try:
        data = await ctx.tmdb.get_movie(args.id, append=("credits",))
        return text_result(movie_document(data, ctx))
    except UpstreamFailure as e:
        logger.warning("fetch failed", extra={"log_data": {"id": args.id, "error": e.message}})
        return error_result(f"Error fetching movie details: {e.message}")


class RecommendationsArguments(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, populate_by_name=True)

    movie_id: str = Field(
        alias="movieId", pattern=r"^[0-9]+$", description="TMDB movie ID to base recommendations on"
    )


async def get_recommendations(ctx: ToolContext, args: RecommendationsArguments) -> types.CallToolResult:
    try:
        data = await ctx.tmdb.get_recommendations(args.movie_id)
        return text_result(movie_results(data, ctx))
    except UpstreamFailure as e:
        return error_result(f"Error fetching recommendations: {e.message}")


class TrendingArguments(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time_window: Literal["day", "week"] = Field(
        alias="timeWindow", description="Time period for trending movies"
    )


async def get_trending(ctx: ToolContext, args: TrendingArguments) -> types.CallToolResult:
    try:
        data = await ctx.tmdb.get_trending(args.time_window)
        return text_result(movie_results(data, ctx))
    except UpstreamFailure as e:
        return error_result(f"Error fetching trending movies: {e.message}")


TOOLS: dict[str, ToolSpec] = {
    spec.name: spec
    for spec in [
        ToolSpec(
            name="search",
            description=(
                "Search for movies by title or keywords using TMDB. Returns a list "
                "of results with IDs, titles, and URLs."
            ),
            arguments=SearchArguments,
            handler=search,
        ),
        ToolSpec(
            name="fetch",
            description=(
                "Fetch detailed movie information by TMDB movie ID. Returns plot, "
                "cast, director, genres, runtime, and metadata."
            ),
            arguments=FetchArguments,
            handler=fetch,
        ),
        ToolSpec(
            name="get_recommendations",
            description="Get movies similar to a specific movie, by TMDB movie ID.",
            arguments=RecommendationsArguments,
            handler=get_recommendations,
        ),
        ToolSpec(
            name="get_trending",
            description="Get currently trending movies for the day or the week.",
            arguments=TrendingArguments,
            handler=get_trending,
        ),
    ]
}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ToolRegistry:
    """The active tools, bound to a ToolContext."""

    def __init__(self, context: ToolContext, specs: Iterable[ToolSpec]):
        self.context = context
        self._specs = {spec.name: spec for spec in specs}

    @classmethod
    def from_names(cls, context: ToolContext, names: Iterable[str]) -> "ToolRegistry":
        """
        Build a registry from configured tool names.

        Raises:
            ConfigurationError: If a name doesn't match any known tool
        """
        unknown = [name for name in names if name not in TOOLS]
        if unknown:
            raise ConfigurationError(
                f"Unknown tools in configuration: {unknown}; available: {sorted(TOOLS)}"
            )
        return cls(context, [TOOLS[name] for name in names])

    @property
    def names(self) -> list[str]:
        return list(self._specs)

    def get(self, name: str) -> ToolSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise UnknownTool(f"Unknown tool: {name}") from None

    def list_tools(self) -> list[types.Tool]:
        return [spec.to_mcp_tool() for spec in self._specs.values()]

    async def call(self, name: str, arguments: dict[str, Any] | None) -> types.CallToolResult:
        """
        Validate the arguments and run the tool.

        Raises:
            UnknownTool: If `name` isn't an active tool
            pydantic.ValidationError: If the arguments don't match the schema
        """
        spec = self.get(name)
        args = spec.arguments.model_validate(arguments or {})
        result = await spec.handler(self.context, args)
        logger.info(
            "Tool executed",
            extra={"log_data": {"tool": name, "is_error": bool(result.isError)}},
        )
        return result

    def fastmcp_tools(self) -> list["RegistryTool"]:
        return [RegistryTool.from_spec(spec, self) for spec in self._specs.values()]


class RegistryTool(Tool):
    """
    A registry entry published through FastMCP.

    FastMCP reports errors raised from a tool as an isError result, so an
    in-band error result from the registry is re-raised as ToolError.
    """

    registry: Any = Field(exclude=True)

    @classmethod
    def from_spec(cls, spec: ToolSpec, registry: ToolRegistry) -> "RegistryTool":
        return cls(
            name=spec.name,
            description=spec.description,
            parameters=spec.input_schema(),
            registry=registry,
        )

    async def run(self, arguments: dict[str, Any]) -> ToolResult:
        try:
            result = await self.registry.call(self.name, arguments)
        except ValidationError as e:
            raise ToolError(f"Invalid arguments for {self.name}: {e}") from e
        if result.isError:
            raise ToolError(result_text(result))
        return ToolResult(content=result.content)
