"""
Session transport registry for the split SSE transport.

An MCP client on the SSE transport uses two HTTP requests:

    GET  /sse                      long-lived event stream, server -> client
    POST /messages?sessionId=<id>  one JSON-RPC message per request, client -> server

The registry ties them together. Opening a stream binds a session id to a
Session object holding an outbound queue; posted messages look the session up
by id, and their responses are queued and written to the stream.

Per-session lifecycle:

    UNBOUND --open--> STREAM_OPEN --stream closes--> CLOSED (terminal)

Rules:
- At most one live stream per session id. Opening a stream with an id that
  is already live is a takeover: the old stream is ended and the id now
  points at the new session, so a reconnecting client resumes without a new
  handshake.
- The registry entry is removed by the stream itself when it ends (client
  disconnect, takeover, shutdown) from the `finally` block of its event
  generator. Nothing polls for dead sessions.
- A message sent to a CLOSED session is dropped. Results of tool calls that
  were in flight when the client went away are simply discarded.
"""

import asyncio
import enum
import json
import logging
import time
import uuid
from typing import Any, AsyncIterator

from tmdb_mcp.errors import SessionNotFound

logger = logging.getLogger("tmdb-mcp.transport")


class SessionState(str, enum.Enum):
    UNBOUND = "unbound"
    STREAM_OPEN = "stream_open"
    CLOSED = "closed"


# Queued to wake the stream up when the session closes.
_CLOSE = object()


class Session:
    """One client connection: a session id bound to an outbound message queue."""

    def __init__(self, session_id: str, created_at: float):
        self.session_id = session_id
        self.created_at = created_at
        self.state = SessionState.UNBOUND
        self.message_count = 0
        self._outbound: asyncio.Queue[Any] = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.STREAM_OPEN

    def send(self, message: dict[str, Any]) -> bool:
        """
        Queue a JSON-RPC message for delivery on the stream.

        Returns False (and drops the message) if the session is closed.
        """
        if self.state is SessionState.CLOSED:
            logger.info(
                "Dropping message for closed session",
                extra={"log_data": {"session_id": self.session_id[:8]}},
            )
            return False
        self._outbound.put_nowait(message)
        return True

    def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self._outbound.put_nowait(_CLOSE)

    async def outbound(self) -> AsyncIterator[dict[str, Any]]:
        """Yield queued messages in order until the session closes."""
        while True:
            message = await self._outbound.get()
            if message is _CLOSE:
                return
            yield message


class SessionRegistry:
    """
    Maps session ids to live sessions.

    Args:
        clock: Returns the current Unix time; injectable for tests
    """

    def __init__(self, clock=time.time):
        self.clock = clock
        self._sessions: dict[str, Session] = {}

    def open(self, session_id: str | None = None) -> Session:
        """
        Bind a new stream to `session_id` (generated when None).

        If the id is already live, the previous session is closed and
        replaced.
        """
        session_id = session_id or uuid.uuid4().hex
        session = Session(session_id, created_at=self.clock())
        session.state = SessionState.STREAM_OPEN

        previous = self._sessions.get(session_id)
        self._sessions[session_id] = session
        if previous is not None:
            previous.close()
            logger.info(
                "Session taken over by a new stream",
                extra={"log_data": {"session_id": session_id[:8]}},
            )

        logger.info(
            "Session opened",
            extra={
                "log_data": {
                    "session_id": session_id[:8],
                    "active_sessions": len(self._sessions),
                }
            },
        )
        return session

    def get(self, session_id: str | None) -> Session:
        """
        Return the live session for `session_id`.

        Raises:
            SessionNotFound: If the id is missing, unknown, or closed
        """
        session = self._sessions.get(session_id) if session_id else None
        if session is None or session.state is SessionState.CLOSED:
            raise SessionNotFound(f"No active session for id {session_id!r}")
        return session

    def release(self, session: Session) -> None:
        """
        Close `session` and drop its registry entry.

        The entry is only removed while it still points at this session, so
        a stream ended by a takeover doesn't unregister its replacement.
        """
        session.close()
        if self._sessions.get(session.session_id) is session:
            del self._sessions[session.session_id]
            logger.info(
                "Session closed",
                extra={
                    "log_data": {
                        "session_id": session.session_id[:8],
                        "duration": round(self.clock() - session.created_at, 1),
                        "messages": session.message_count,
                        "active_sessions": len(self._sessions),
                    }
                },
            )

    def close_all(self) -> None:
        """Close every live session (server shutdown)."""
        for session in list(self._sessions.values()):
            self.release(session)

    async def stream(self, session: Session, endpoint: str) -> AsyncIterator[dict[str, str]]:
        """
        Event generator for the SSE response of `session`.

        The first event tells the client where to post its messages; each
        later event carries one JSON-RPC message. Ending the generator, for
        whatever reason, releases the session.
        """
        try:
            yield {"event": "endpoint", "data": endpoint}
            async for message in session.outbound():
                yield {"event": "message", "data": json.dumps(message)}
        finally:
            self.release(session)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
