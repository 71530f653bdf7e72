from datetime import datetime

import pytest

from chatlog import errors
from chatlog.errors import ChatlogError


def test_str_without_cause_is_message():
    err = errors.new(None, 400, "bad input")
    assert str(err) == "bad input"
    assert err.code == 400
    assert err.cause is None


def test_str_with_cause_joins_message_and_cause():
    cause = ValueError("boom")
    err = errors.new(cause, 500, "failed")
    assert str(err) == "failed: boom"
    assert err.__cause__ is cause


def test_newf_formats_message():
    err = errors.newf(None, 404, "missing %s in %d", "item", 7)
    assert err.message == "missing item in 7"
    assert err.code == 404


def test_invalid_arg():
    err = errors.invalid_arg("time")
    assert str(err) == "invalid argument: time"
    assert err.code == 400


def test_http_shutdown_keeps_cause():
    cause = OSError("closed")
    err = errors.http_shutdown(cause)
    assert err.message == "http server shut down"
    assert err.code == 500
    assert errors.root_cause(err) is cause


def test_wrap_none_returns_none():
    assert errors.wrap(None, "anything", 400) is None


def test_wrap_plain_exception_uses_given_code():
    cause = KeyError("k")
    wrapped = errors.wrap(cause, "context", 418)
    assert wrapped.message == "context"
    assert wrapped.code == 418
    assert wrapped.cause is cause


def test_wrap_chatlog_error_keeps_code_cause_and_stack():
    inner_cause = RuntimeError("inner")
    original = errors.new(inner_cause, 404, "first").with_stack()
    wrapped = errors.wrap(original, "second", 500)
    assert wrapped.message == "second"
    assert wrapped.code == 404
    assert wrapped.cause is inner_cause
    assert wrapped.stack == original.stack


def test_get_code_none_plain_and_chained():
    assert errors.get_code(None) == 200
    assert errors.get_code(ValueError("x")) == 500
    app_err = errors.new(None, 404, "nf")
    try:
        try:
            raise app_err
        except ChatlogError as exc:
            raise RuntimeError("outer") from exc
    except RuntimeError as outer:
        assert errors.get_code(outer) == 404


def test_root_cause_follows_chain():
    base = ValueError("base")
    middle = errors.new(base, 500, "middle")
    top = errors.new(middle, 500, "top")
    assert errors.root_cause(top) is base
    assert errors.root_cause(base) is base
    assert errors.root_cause(None) is None


def test_with_stack_records_caller_first():
    err = errors.new(None, 500, "x").with_stack()
    assert err.stack
    assert "test_with_stack_records_caller_first" in err.stack[0]
    assert len(err.stack) <= 32


def test_factory_functions_record_stack():
    err = errors.open_file_failed("/tmp/a.db", OSError("denied"))
    assert str(err) == "failed to open file: /tmp/a.db: denied"
    assert err.stack


def test_platform_unsupported():
    err = errors.platform_unsupported("darwin", 3)
    assert err.message == "unsupported platform: darwin v3"
    assert err.code == 400


def test_db_file_not_found_message_and_code():
    err = errors.db_file_not_found("/data", r".*\.db$", None)
    assert err.message == "db file not found /data: .*\\.db$"
    assert err.code == 404


def test_time_range_not_found_includes_both_times():
    start = datetime(2023, 4, 1, 9, 30)
    end = datetime(2023, 4, 2, 10, 0)
    err = errors.time_range_not_found(start, end)
    assert err.message == f"time range not found: {start} - {end}"
    assert err.code == 404


@pytest.mark.parametrize(
    "factory, arg, expected, code",
    [
        (errors.talker_not_found, "alice", "talker not found: alice", 404),
        (errors.chat_room_not_found, "room", "chat room not found: room", 404),
        (errors.contact_not_found, "bob", "contact not found: bob", 404),
        (errors.file_group_not_found, "g", "file group not found: g", 404),
        (errors.media_type_unsupported, "gif", "unsupported media type: gif", 400),
        (errors.wechat_account_not_found, "acc", "WeChat account not found: acc", 400),
        (errors.wechat_account_not_online, "acc", "WeChat account is not online: acc", 400),
    ],
)
def test_named_factories(factory, arg, expected, code):
    err = factory(arg)
    assert err.message == expected
    assert err.code == code


@pytest.mark.parametrize(
    "factory, expected, code",
    [
        (errors.incomplete_read, "incomplete header read during decryption", 500),
        (errors.write_output_failed, "failed to write output", 500),
        (errors.decrypt_create_cipher_failed, "failed to create cipher", 500),
        (errors.decode_key_failed, "failed to decode hex key", 400),
        (errors.create_pipe_file_failed, "failed to create pipe file", 500),
        (errors.open_pipe_file_failed, "failed to open pipe file", 500),
        (errors.read_pipe_file_failed, "failed to read from pipe file", 500),
        (errors.run_cmd_failed, "failed to run command", 500),
        (errors.read_memory_failed, "failed to read memory", 500),
        (errors.open_process_failed, "failed to open process", 500),
        (errors.refresh_process_status_failed, "failed to refresh process status", 500),
        (errors.db_init_failed, "db init failed", 500),
        (errors.db_close_failed, "db close failed", 500),
        (errors.scan_row_failed, "scan row failed", 500),
        (errors.init_cache_failed, "init cache failed", 500),
    ],
)
def test_cause_factories(factory, expected, code):
    cause = OSError("why")
    err = factory(cause)
    assert err.message == expected
    assert err.code == code
    assert err.cause is cause


def test_path_factories():
    cause = OSError("why")
    assert errors.stat_file_failed("p", cause).message == "failed to stat file: p"
    assert errors.read_file_failed("p", cause).message == "failed to read file: p"
    assert errors.db_connect_failed("p", cause).message == "db connect failed: p"
    assert errors.query_failed("SELECT 1", cause).message == "query failed: SELECT 1"


def test_sentinels_are_raisable_with_codes():
    with pytest.raises(ChatlogError) as info:
        raise errors.ERR_ALREADY_DECRYPTED
    assert str(info.value) == "database file is already decrypted"
    assert errors.get_code(errors.ERR_MEDIA_NOT_FOUND) == 404
    assert errors.get_code(errors.ERR_READ_MEMORY_TIMEOUT) == 500
    assert errors.ERR_KEY_LENGTH_MUST_32.message == "key length must be 32 bytes"