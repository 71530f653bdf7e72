import json
import threading
import time
from datetime import datetime, timezone
from http import HTTPStatus

import pytest

from chatlog.mcp.protocol import ClientInfo, Request
from chatlog.mcp.transport import MCP, ProcessCtx, Session, SSEWriter


def _data_of(chunk):
    lines = chunk.split("\n")
    return next(line[len("data: "):] for line in lines if line.startswith("data: "))


def test_writer_sends_endpoint_first():
    chunks = []
    SSEWriter("abc", chunks.append)
    assert chunks == ["event: endpoint\ndata: /message?sessionId=abc\n\n"]


def test_write_event_format():
    chunks = []
    writer = SSEWriter("s", chunks.append)
    writer.write_event("custom", "payload")
    assert chunks[-1] == "event: custom\ndata: payload\n\n"


def test_write_returns_length_and_sends_message():
    chunks = []
    writer = SSEWriter("s", chunks.append)
    data = b'{"a":1}'
    assert writer.write(data) == len(data)
    assert chunks[-1] == 'event: message\ndata: {"a":1}\n\n'


def test_write_ping_format():
    chunks = []
    writer = SSEWriter("s", chunks.append)
    writer.write_ping(datetime(2025, 3, 16, 6, 41, 51, 280928, tzinfo=timezone.utc))
    assert chunks[-1] == ": ping - 2025-03-16 06:41:51.280928+00:00\n\n"


def test_write_ping_without_fraction_has_no_dot():
    chunks = []
    writer = SSEWriter("s", chunks.append)
    writer.write_ping(datetime(2025, 3, 16, 6, 41, 51, tzinfo=timezone.utc))
    assert chunks[-1] == ": ping - 2025-03-16 06:41:51+00:00\n\n"


def test_ping_forever_stops_when_set():
    chunks = []
    writer = SSEWriter("s", chunks.append)
    stop = threading.Event()
    stop.set()
    writer.ping_forever(stop, interval=0.01)
    assert len(chunks) == 1


def test_ping_forever_pings():
    chunks = []
    writer = SSEWriter("s", chunks.append)
    stop = threading.Event()
    thread = threading.Thread(target=writer.ping_forever, args=(stop, 0.01))
    thread.start()
    time.sleep(0.1)
    stop.set()
    thread.join(timeout=2)
    assert not thread.is_alive()
    assert any(c.startswith(": ping - ") for c in chunks[1:])


def test_session_write_response():
    chunks = []
    session = Session("s", SSEWriter("s", chunks.append))
    session.write_response(Request(id=3, method="prompts/list"), {"prompts": []})
    payload = json.loads(_data_of(chunks[-1]))
    assert payload == {"jsonrpc": "2.0", "id": 3, "result": {"prompts": []}}


def test_session_write_error():
    chunks = []
    session = Session("s", SSEWriter("s", chunks.append))
    session.write_error(Request(id=7, method="x"), ValueError("boom"))
    payload = json.loads(_data_of(chunks[-1]))
    assert payload["id"] == 7
    assert payload["error"] == {"code": 500, "message": "boom"}


def test_session_write_response_unencodable_raises():
    session = Session("s", SSEWriter("s", lambda _: None))
    with pytest.raises(TypeError):
        session.write_response(Request(id=1), {"x": object()})


def test_session_save_client_info():
    session = Session("s", SSEWriter("s", lambda _: None))
    info = ClientInfo(name="mcp-inspector", version="0.0.1")
    session.save_client_info(info)
    assert session.client_info == info


def test_open_get_close_session():
    mcp = MCP()
    chunks = []
    session = mcp.open_session(chunks.append)
    assert mcp.get_session(session.id) is session
    assert chunks[0] == f"event: endpoint\ndata: /message?sessionId={session.id}\n\n"
    mcp.close_session(session.id)
    assert mcp.get_session(session.id) is None


def test_handle_message_missing_session_id():
    mcp = MCP()
    status, body = mcp.handle_message({}, b"{}")
    assert status == HTTPStatus.BAD_REQUEST
    assert body.to_dict()["error"] == {"code": 400, "message": "Invalid session ID"}


def test_handle_message_unknown_session():
    mcp = MCP()
    status, body = mcp.handle_message({"sessionId": "nope"}, b"{}")
    assert status == HTTPStatus.NOT_FOUND
    assert body.to_dict()["error"]["code"] == 404


@pytest.mark.parametrize("body", [b"not json", b"[1,2]", b'{"method": 5}'])
def test_handle_message_bad_body(body):
    mcp = MCP()
    session = mcp.open_session(lambda _: None)
    status, resp = mcp.handle_message({"session_id": session.id}, body)
    assert status == HTTPStatus.BAD_REQUEST
    assert resp.to_dict()["error"] == {"code": -32600, "message": "Invalid Request"}


@pytest.mark.parametrize("key", ["session_id", "sessionId", "sessionid"])
def test_handle_message_queues_request(key):
    mcp = MCP()
    session = mcp.open_session(lambda _: None)
    body = json.dumps({"jsonrpc": "2.0", "id": 3, "method": "prompts/list", "params": {}})
    status, resp = mcp.handle_message({key: session.id}, body)
    assert status == HTTPStatus.ACCEPTED
    assert resp == "Accepted"
    ctx = mcp.next_request(timeout=1)
    assert isinstance(ctx, ProcessCtx)
    assert ctx.session is session
    assert ctx.request.method == "prompts/list"
    assert ctx.request.id == 3


def test_handle_message_queue_full():
    mcp = MCP(capacity=1)
    session = mcp.open_session(lambda _: None)
    body = b'{"jsonrpc":"2.0","id":1,"method":"ping"}'
    assert mcp.handle_message({"sessionId": session.id}, body)[0] == HTTPStatus.ACCEPTED
    status, resp = mcp.handle_message({"sessionId": session.id}, body)
    assert status == HTTPStatus.TOO_MANY_REQUESTS
    assert resp.to_dict()["error"] == {"code": 429, "message": "Too many requests"}


def test_next_request_timeout():
    mcp = MCP()
    with pytest.raises(TimeoutError):
        mcp.next_request(timeout=0.01)


def test_close_drains_then_returns_none():
    mcp = MCP()
    session = mcp.open_session(lambda _: None)
    mcp.handle_message({"sessionId": session.id}, b'{"jsonrpc":"2.0","id":1,"method":"ping"}')
    mcp.close()
    first = mcp.next_request(timeout=1)
    assert first.request.method == "ping"
    assert mcp.next_request(timeout=1) is None


def test_handle_message_after_close_raises():
    mcp = MCP()
    session = mcp.open_session(lambda _: None)
    mcp.close()
    with pytest.raises(RuntimeError):
        mcp.handle_message({"sessionId": session.id}, b'{"method":"ping"}')


def test_next_request_wakes_on_close():
    mcp = MCP()
    holder = {}

    def wait_for_request():
        holder["result"] = mcp.next_request(timeout=5)

    thread = threading.Thread(target=wait_for_request)
    thread.start()
    time.sleep(0.05)
    mcp.close()
    thread.join(timeout=2)
    assert not thread.is_alive()
    assert holder == {"result": None}
    after = mcp.next_request(timeout=0.01)
    assert after is None