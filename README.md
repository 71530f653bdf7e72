# chatlog

`chatlog` provides the pieces needed to serve a chat history to AI
assistants over the Model Context Protocol (MCP). It uses only the standard
library.

| Module                   | What it holds                                                   |
|--------------------------|-----------------------------------------------------------------|
| `chatlog.errors`         | `ChatlogError` and factory functions for common failures        |
| `chatlog.config`         | `Config`, `ProcessConfig`, `FileRecord`: stored account history  |
| `chatlog.mcp.protocol`   | JSON-RPC 2.0 and MCP message types and standard error objects   |
| `chatlog.mcp.transport`  | `SSEWriter`, `Session`, `ProcessCtx` and the `MCP` request hub   |
| `chatlog.mcp.service`    | `ChatlogMCPService`, the tools and resources, `parse_params`    |

## Errors

`ChatlogError` is an exception with a `message`, an optional `cause` and an
HTTP status `code`. `str()` gives `"message: cause"`, or just the message
when there is no cause.

```python
from chatlog import errors

try:
    raise errors.talker_not_found("alice")
except errors.ChatlogError as exc:
    print(exc.code)   # 404
    print(exc)        # talker not found: alice

errors.get_code(None)                # HTTPStatus.OK (200)
errors.get_code(ValueError("boom"))  # HTTPStatus.INTERNAL_SERVER_ERROR (500)
```

- `new(cause, code, message)` and `newf(cause, code, fmt, *args)` build
  errors; `newf` formats with `%`.
- `wrap(err, message, code)` returns `None` for `None`. For a
  `ChatlogError` it returns a new error with the new message that keeps the
  old cause, code and stack. Any other exception becomes the cause of a new
  error with the given code.
- `get_code(err)` returns the code of the first `ChatlogError` in the chain
  of causes, and 500 when there is none.
- `root_cause(err)` follows the chain of causes to the innermost error.
- `ChatlogError.with_stack()` records the caller's stack (at most 32 frames,
  innermost first) in `stack` and returns the error.

Most factory functions record a stack. They cover invalid arguments
(`invalid_arg`), file access (`open_file_failed`, `read_file_failed`, ...),
decryption and process access (`decode_key_failed`, `read_memory_failed`,
`platform_unsupported`, ...) and database lookups (`db_connect_failed`,
`query_failed`, `contact_not_found`, `time_range_not_found`, ...). Fixed
errors such as `ERR_ALREADY_DECRYPTED`, `ERR_KEY_EMPTY` and
`ERR_MEDIA_NOT_FOUND` are module constants.

## Configuration history

```python
from chatlog.config import Config, ProcessConfig

saved = {}
config = Config.from_dict({"last_account": "", "history": []})
config.persist = saved.__setitem__

config.update_history("alice", ProcessConfig(account="alice", version=4))
config.parse_history()["alice"].version   # 4
config.last_account                       # "alice"
saved["last_account"]                     # "alice"
```

`update_history` replaces the entry for the account, or appends one, and
marks the account as the last used. If `persist` is set, it is called with
`"last_account"` and with `"history"` (as plain dictionaries). The key names
in `to_dict` / `from_dict` are snake case (`data_dir`, `http_addr`,
`modified_time`, ...). `parse_history` maps account names to their
settings, and a later entry wins.

## MCP messages

```python
from chatlog.mcp.protocol import Request, new_response, ERR_INVALID_PARAMS

request = Request.from_dict({"jsonrpc": "2.0", "id": 1, "method": "ping"})
new_response(request.id, {}).to_json()
# '{"jsonrpc":"2.0","id":1,"result":{}}'

ERR_INVALID_PARAMS.json_rpc().to_dict()
# {'jsonrpc': '2.0', 'id': None, 'error': {'code': -32602, 'message': 'Invalid params'}}
```

Each payload type has a `to_dict` method. Optional fields are left out when
they are empty. Request-side types (`InitializeRequest`, `ToolsCallRequest`,
`ResourcesReadRequest`, `PromptsGetRequest`, `ClientInfo`) have a
`from_dict` method, which raises `TypeError` on values of the wrong type.
`MCPError` is both an exception and a JSON-RPC error object.

## Sessions and the request queue

```python
from chatlog.mcp.transport import MCP

hub = MCP()
chunks = []
session = hub.open_session(chunks.append)
# chunks[0] == f"event: endpoint\ndata: /message?sessionId={session.id}\n\n"

status, body = hub.handle_message(
    {"sessionId": session.id},
    b'{"jsonrpc":"2.0","id":1,"method":"ping"}',
)
# status == HTTPStatus.ACCEPTED, body == "Accepted"

item = hub.next_request(timeout=1.0)   # ProcessCtx(session=..., request=...)
```

`handle_message` takes the session id from `session_id`, `sessionId` or
`sessionid`. It returns a status and a body for the HTTP reply:

- 400 with `ERR_INVALID_SESSION_ID` when no id is given;
- 404 with `ERR_SESSION_NOT_FOUND` for an unknown session;
- 400 with `ERR_INVALID_REQUEST` for a body that is not a JSON-RPC object;
- 429 with `ERR_TOO_MANY_REQUESTS` when the queue is full (1000 by default).

After `close()` it raises `RuntimeError`. `next_request` returns `None`
once the queue is closed and drained, and raises `TimeoutError` when the
timeout runs out first.

Replies go back as `message` events through `Session.write_response` and
`Session.write_error`. Errors are sent with code 500.
`SSEWriter.ping_forever(stop, interval)` sends `: ping - <time>` comments
until the `threading.Event` is set. It runs in whatever thread calls it.
`transport.SSE_HEADERS` lists the response headers that an event stream
should be sent with.

## The chat-log service

`ChatlogMCPService` answers requests from a queue. You supply three things:

- a database object with `get_contacts`, `get_chat_rooms`, `get_sessions`
  and `get_messages`, as described by the `ChatDatabase` protocol;
- `time_range_of(text)`, which returns a `(start, end)` pair, or `None` when
  the text cannot be parsed;
- `time_format_for(start, end)`, which returns the time format passed to
  each message's `plain_text`.

```python
from chatlog.mcp.service import ChatlogMCPService

service = ChatlogMCPService(db, time_range_of=parse_range, time_format_for=pick_format)
service.start()              # creates service.mcp and a worker thread
session = service.mcp.open_session(stream_write)
# ... feed posted bodies to service.mcp.handle_message(...)
service.stop()
```

You can also call `service.process(session, request)` directly. It handles
`initialize`, `ping`, `tools/list`, `tools/call`, `prompts/list` (always
empty), `resources/list`, `resources/templates/list` and `resources/read`.
It gives no reply to other methods. If a handler fails, the error goes back
to the client through `Session.write_error`.

| Tool                | Result text                                                        |
|---------------------|--------------------------------------------------------------------|
| `query_contact`     | CSV: `UserName,Alias,Remark,NickName`                              |
| `query_chat_room`   | CSV: `Name,Remark,NickName,Owner,UserCount`                        |
| `query_recent_chat` | One line per session (`plain_text(120)`)                           |
| `chatlog`           | Messages for `time`, `talker`, `sender`, `keyword`, `limit`, `offset` |
| `current_time`      | The clock's time in RFC 3339 form                                  |

The resources are `session://recent`, `contact://{username}`,
`chatroom://{roomid}` and `chatlog://{talker}/{timeframe}?limit,offset`.
`parse_params(params, target)` decodes params into any class with a
`from_dict` method, and raises `ValueError` when the params are missing or
do not fit.

## What this package does not do

- It has no HTTP server and no command line. You connect
  `MCP.open_session`, `MCP.handle_message` and the SSE sink to a web
  framework yourself.
- It does not read chat databases. It also does not parse time expressions
  such as `2023-04-18/14:30~2023-04-18/15:45`. The database and both time
  functions must be passed to `ChatlogMCPService`.
- It does not locate, read from or decrypt a chat client's data files, and
  it does not save `Config` to disk. Saving goes through the `persist`
  callback that you provide.

## Running the tests

Install the `test` extra, then run `pytest` from the project root.