"""Application errors carrying an HTTP status code, an optional cause and a stack."""

from __future__ import annotations

import traceback
from datetime import datetime
from http import HTTPStatus

_STACK_DEPTH = 32


class ChatlogError(Exception):
    """An error with a message, an HTTP status code and an optional cause."""

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        code: int = HTTPStatus.INTERNAL_SERVER_ERROR,
        stack: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.code = int(code)
        self.stack: list[str] = list(stack) if stack else []
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message

    def __repr__(self) -> str:
        return f"ChatlogError(message={self.message!r}, code={self.code}, cause={self.cause!r})"

    def with_stack(self) -> ChatlogError:
        """Record the caller's stack, innermost frame first, and return self."""
        frames = traceback.extract_stack()[:-1]
        frames = frames[-_STACK_DEPTH:]
        self.stack = [
            f"{frame.filename}:{frame.lineno} {frame.name}"
            for frame in reversed(frames)
        ]
        return self


def new(cause: BaseException | None, code: int, message: str) -> ChatlogError:
    """Create an error from a cause, a status code and a message."""
    return ChatlogError(message, cause=cause, code=code)


def newf(cause: BaseException | None, code: int, fmt: str, *args: object) -> ChatlogError:
    """Create an error whose message is ``fmt % args``."""
    message = fmt % args if args else fmt
    return ChatlogError(message, cause=cause, code=code)


def wrap(err: BaseException | None, message: str, code: int) -> ChatlogError | None:
    """Give an error a new message.

    A ChatlogError keeps its cause, code and stack; any other error becomes the
    cause of a new ChatlogError with the given code.
    """
    if err is None:
        return None
    if isinstance(err, ChatlogError):
        return ChatlogError(message, cause=err.cause, code=err.code, stack=err.stack)
    return new(err, code, message)


def _unwrap(err: BaseException) -> BaseException | None:
    if isinstance(err, ChatlogError):
        return err.cause
    return err.__cause__


def _chain(err: BaseException | None):
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = _unwrap(err)


def get_code(err: BaseException | None) -> int:
    """Return the HTTP status code for an error: 200 for none, 500 when unknown."""
    if err is None:
        return HTTPStatus.OK
    for link in _chain(err):
        if isinstance(link, ChatlogError):
            return link.code
    return HTTPStatus.INTERNAL_SERVER_ERROR


def root_cause(err: BaseException | None) -> BaseException | None:
    """Follow the chain of causes to the innermost error."""
    last = None
    for link in _chain(err):
        last = link
    return last


# HTTP errors

def invalid_arg(arg: str) -> ChatlogError:
    return newf(None, HTTPStatus.BAD_REQUEST, "invalid argument: %s", arg)


def http_shutdown(cause: BaseException | None) -> ChatlogError:
    return newf(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "http server shut down")


# File system errors

def open_file_failed(path: str, cause: BaseException | None) -> ChatlogError:
    return newf(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "failed to open file: %s", path).with_stack()


def stat_file_failed(path: str, cause: BaseException | None) -> ChatlogError:
    return newf(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "failed to stat file: %s", path).with_stack()


def read_file_failed(path: str, cause: BaseException | None) -> ChatlogError:
    return newf(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "failed to read file: %s", path).with_stack()


def incomplete_read(cause: BaseException | None) -> ChatlogError:
    return new(
        cause, HTTPStatus.INTERNAL_SERVER_ERROR, "incomplete header read during decryption"
    ).with_stack()


def write_output_failed(cause: BaseException | None) -> ChatlogError:
    return new(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "failed to write output").with_stack()


# WeChat errors

ERR_ALREADY_DECRYPTED = new(None, HTTPStatus.BAD_REQUEST, "database file is already decrypted")
ERR_DECRYPT_HASH_VERIFICATION_FAILED = new(
    None, HTTPStatus.BAD_REQUEST, "hash verification failed during decryption"
)
ERR_DECRYPT_INCORRECT_KEY = new(None, HTTPStatus.BAD_REQUEST, "incorrect decryption key")
ERR_DECRYPT_OPERATION_CANCELED = new(
    None, HTTPStatus.BAD_REQUEST, "decryption operation was canceled"
)
ERR_NO_MEMORY_REGIONS_FOUND = new(None, HTTPStatus.BAD_REQUEST, "no memory regions found")
ERR_READ_MEMORY_TIMEOUT = new(None, HTTPStatus.INTERNAL_SERVER_ERROR, "read memory timeout")
ERR_WECHAT_OFFLINE = new(None, HTTPStatus.BAD_REQUEST, "WeChat is offline")
ERR_SIP_ENABLED = new(None, HTTPStatus.BAD_REQUEST, "SIP is enabled")
ERR_VALIDATOR_NOT_SET = new(None, HTTPStatus.BAD_REQUEST, "validator not set")
ERR_NO_VALID_KEY = new(None, HTTPStatus.BAD_REQUEST, "no valid key found")
ERR_WECHAT_DLL_NOT_FOUND = new(None, HTTPStatus.BAD_REQUEST, "WeChatWin.dll module not found")


def platform_unsupported(platform: str, version: int) -> ChatlogError:
    return newf(
        None, HTTPStatus.BAD_REQUEST, "unsupported platform: %s v%d", platform, version
    ).with_stack()


def decrypt_create_cipher_failed(cause: BaseException | None) -> ChatlogError:
    return new(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "failed to create cipher").with_stack()


def decode_key_failed(cause: BaseException | None) -> ChatlogError:
    return new(cause, HTTPStatus.BAD_REQUEST, "failed to decode hex key").with_stack()


def create_pipe_file_failed(cause: BaseException | None) -> ChatlogError:
    return new(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "failed to create pipe file").with_stack()


def open_pipe_file_failed(cause: BaseException | None) -> ChatlogError:
    return new(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "failed to open pipe file").with_stack()


def read_pipe_file_failed(cause: BaseException | None) -> ChatlogError:
    return new(
        cause, HTTPStatus.INTERNAL_SERVER_ERROR, "failed to read from pipe file"
    ).with_stack()


def run_cmd_failed(cause: BaseException | None) -> ChatlogError:
    return new(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "failed to run command").with_stack()


def read_memory_failed(cause: BaseException | None) -> ChatlogError:
    return new(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "failed to read memory").with_stack()


def open_process_failed(cause: BaseException | None) -> ChatlogError:
    return new(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "failed to open process").with_stack()


def wechat_account_not_found(name: str) -> ChatlogError:
    return newf(None, HTTPStatus.BAD_REQUEST, "WeChat account not found: %s", name).with_stack()


def wechat_account_not_online(name: str) -> ChatlogError:
    return newf(
        None, HTTPStatus.BAD_REQUEST, "WeChat account is not online: %s", name
    ).with_stack()


def refresh_process_status_failed(cause: BaseException | None) -> ChatlogError:
    return new(
        cause, HTTPStatus.INTERNAL_SERVER_ERROR, "failed to refresh process status"
    ).with_stack()


# Database errors

ERR_TALKER_EMPTY = new(None, HTTPStatus.BAD_REQUEST, "talker empty").with_stack()
ERR_KEY_EMPTY = new(None, HTTPStatus.BAD_REQUEST, "key empty").with_stack()
ERR_MEDIA_NOT_FOUND = new(None, HTTPStatus.NOT_FOUND, "media not found").with_stack()
ERR_KEY_LENGTH_MUST_32 = new(
    None, HTTPStatus.BAD_REQUEST, "key length must be 32 bytes"
).with_stack()


def db_file_not_found(path: str, pattern: str, cause: BaseException | None) -> ChatlogError:
    return newf(
        cause, HTTPStatus.NOT_FOUND, "db file not found %s: %s", path, pattern
    ).with_stack()


def db_connect_failed(path: str, cause: BaseException | None) -> ChatlogError:
    return newf(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "db connect failed: %s", path).with_stack()


def db_init_failed(cause: BaseException | None) -> ChatlogError:
    return new(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "db init failed").with_stack()


def talker_not_found(talker: str) -> ChatlogError:
    return newf(None, HTTPStatus.NOT_FOUND, "talker not found: %s", talker).with_stack()


def db_close_failed(cause: BaseException | None) -> ChatlogError:
    return new(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "db close failed").with_stack()


def query_failed(query: str, cause: BaseException | None) -> ChatlogError:
    return newf(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "query failed: %s", query).with_stack()


def scan_row_failed(cause: BaseException | None) -> ChatlogError:
    return new(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "scan row failed").with_stack()


def time_range_not_found(start: datetime, end: datetime) -> ChatlogError:
    return newf(
        None, HTTPStatus.NOT_FOUND, "time range not found: %s - %s", start, end
    ).with_stack()


def media_type_unsupported(media_type: str) -> ChatlogError:
    return newf(
        None, HTTPStatus.BAD_REQUEST, "unsupported media type: %s", media_type
    ).with_stack()


def chat_room_not_found(key: str) -> ChatlogError:
    return newf(None, HTTPStatus.NOT_FOUND, "chat room not found: %s", key).with_stack()


def contact_not_found(key: str) -> ChatlogError:
    return newf(None, HTTPStatus.NOT_FOUND, "contact not found: %s", key).with_stack()


def init_cache_failed(cause: BaseException | None) -> ChatlogError:
    return new(cause, HTTPStatus.INTERNAL_SERVER_ERROR, "init cache failed").with_stack()


def file_group_not_found(name: str) -> ChatlogError:
    return newf(None, HTTPStatus.NOT_FOUND, "file group not found: %s", name).with_stack()