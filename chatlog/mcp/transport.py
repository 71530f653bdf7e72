"""Server-sent-event sessions and the request queue behind the MCP endpoints."""

from __future__ import annotations

import json
import threading
import uuid
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from http import HTTPStatus
from typing import Any

from chatlog.mcp.protocol import (
    ERR_INVALID_REQUEST,
    ERR_INVALID_SESSION_ID,
    ERR_SESSION_NOT_FOUND,
    ERR_TOO_MANY_REQUESTS,
    ClientInfo,
    Request,
    Response,
    new_error_response,
    new_response,
)

PROCESS_QUEUE_CAPACITY = 1000
SSE_PING_INTERVAL = 30.0
SSE_CONTENT_TYPE = "text/event-stream; charset=utf-8"
SSE_HEADERS: dict[str, str] = {
    "Content-Type": SSE_CONTENT_TYPE,
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
}

Sink = Callable[[str], Any]


def _format_ping_time(now: datetime) -> str:
    if now.tzinfo is None:
        now = now.astimezone()
    text = now.strftime("%Y-%m-%d %H:%M:%S")
    fraction = f"{now.microsecond:06d}".rstrip("0")
    if fraction:
        text += "." + fraction
    offset = now.strftime("%z") or "+0000"
    return f"{text}{offset[:3]}:{offset[3:5]}"


class SSEWriter:
    """Writes server-sent events for one session to a text sink.

    The endpoint event telling the client where to post messages is written
    as soon as the writer is created.
    """

    def __init__(self, session_id: str, sink: Sink) -> None:
        self.session_id = session_id
        self._sink = sink
        self._lock = threading.Lock()
        self.write_endpoint()

    def _emit(self, text: str) -> None:
        with self._lock:
            self._sink(text)

    def write(self, data: bytes | str) -> int:
        """Send ``data`` as a message event and return its length."""
        text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
        self.write_message(text)
        return len(data)

    def write_message(self, data: str) -> None:
        self.write_event("message", data)

    def write_event(self, event: str, data: str) -> None:
        self._emit(f"event: {event}\ndata: {data}\n\n")

    def write_endpoint(self) -> None:
        self._emit(f"event: endpoint\ndata: /message?sessionId={self.session_id}\n\n")

    def write_ping(self, now: datetime | None = None) -> None:
        """Send a keep-alive comment stamped with ``now`` (the current time by default)."""
        stamp = _format_ping_time(now if now is not None else datetime.now().astimezone())
        self._emit(f": ping - {stamp}\n\n")

    def ping_forever(self, stop: threading.Event, interval: float = SSE_PING_INTERVAL) -> None:
        """Send a ping every ``interval`` seconds until ``stop`` is set."""
        while not stop.wait(interval):
            self.write_ping()


class Session:
    """One connected MCP client and the channel back to it."""

    def __init__(self, session_id: str, writer: Any) -> None:
        self.id = session_id
        self._writer = writer
        self.client_info: ClientInfo | None = None

    def write(self, data: bytes | str) -> int:
        return self._writer.write(data)

    def write_error(self, request: Request, err: BaseException) -> None:
        """Send an error response (code 500) for ``request``."""
        self._send(new_error_response(request.id, 500, err))

    def write_response(self, request: Request, data: Any) -> None:
        """Send a successful response for ``request``; raises if it cannot be encoded."""
        self._send(new_response(request.id, data))

    def _send(self, response: Response) -> None:
        self.write(response.to_json().encode("utf-8"))

    def save_client_info(self, info: ClientInfo | None) -> None:
        self.client_info = info


@dataclass
class ProcessCtx:
    """A request waiting to be processed, with the session that sent it."""

    session: Session
    request: Request


class MCP:
    """Tracks SSE sessions and queues incoming JSON-RPC requests."""

    def __init__(self, capacity: int = PROCESS_QUEUE_CAPACITY) -> None:
        self._sessions: dict[str, Session] = {}
        self._sessions_lock = threading.Lock()
        self._capacity = capacity
        self._pending: deque[ProcessCtx] = deque()
        self._cond = threading.Condition()
        self._closed = False

    def open_session(self, write: Sink) -> Session:
        """Register a new session whose events go to ``write``."""
        session_id = str(uuid.uuid4())
        session = Session(session_id, SSEWriter(session_id, write))
        with self._sessions_lock:
            self._sessions[session_id] = session
        return session

    def close_session(self, session_id: str) -> None:
        with self._sessions_lock:
            self._sessions.pop(session_id, None)

    def get_session(self, session_id: str) -> Session | None:
        with self._sessions_lock:
            return self._sessions.get(session_id)

    def handle_message(
        self, query: Mapping[str, str], body: bytes | str
    ) -> tuple[HTTPStatus, Response | str]:
        """Queue a posted request and return the HTTP status and body to answer with.

        The session id may be given as ``session_id``, ``sessionId`` or ``sessionid``.
        """
        session_id = query.get("session_id") or query.get("sessionId") or query.get("sessionid")
        if not session_id:
            return HTTPStatus.BAD_REQUEST, ERR_INVALID_SESSION_ID.json_rpc()

        session = self.get_session(session_id)
        if session is None:
            return HTTPStatus.NOT_FOUND, ERR_SESSION_NOT_FOUND.json_rpc()

        try:
            request = Request.from_dict(json.loads(body))
        except (ValueError, TypeError):
            return HTTPStatus.BAD_REQUEST, ERR_INVALID_REQUEST.json_rpc()

        with self._cond:
            if self._closed:
                raise RuntimeError("request queue is closed")
            if len(self._pending) >= self._capacity:
                return HTTPStatus.TOO_MANY_REQUESTS, ERR_TOO_MANY_REQUESTS.json_rpc()
            self._pending.append(ProcessCtx(session=session, request=request))
            self._cond.notify()
        return HTTPStatus.ACCEPTED, "Accepted"

    def next_request(self, timeout: float | None = None) -> ProcessCtx | None:
        """Take the next queued request.

        Returns None once the queue is closed and drained; raises TimeoutError
        if nothing arrives within ``timeout`` seconds.
        """
        with self._cond:
            ready = self._cond.wait_for(lambda: self._pending or self._closed, timeout)
            if not ready:
                raise TimeoutError("no request arrived in time")
            if self._pending:
                return self._pending.popleft()
            return None

    def close(self) -> None:
        """Stop accepting requests; queued ones can still be taken."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()