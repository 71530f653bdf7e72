import json

from chatlog.config import Config, FileRecord, ProcessConfig


def _sample_process(account="alice", work_dir="/work/alice"):
    return ProcessConfig(
        type="wechat",
        account=account,
        platform="windows",
        version=3,
        full_version="3.9.12",
        data_dir=f"/data/{account}",
        data_key="placeholder",
        work_dir=work_dir,
        http_enabled=True,
        http_addr="127.0.0.1:5030",
        last_time=1700000000,
        files=[FileRecord(path="a.db", modified_time=1700000001, size=4096)],
    )


def test_file_record_round_trip():
    record = FileRecord(path="x/y.db", modified_time=12, size=34)
    assert FileRecord.from_dict(record.to_dict()) == record


def test_process_config_json_keys():
    data = _sample_process().to_dict()
    assert set(data) == {
        "type", "account", "platform", "version", "full_version", "data_dir",
        "data_key", "work_dir", "http_enabled", "http_addr", "last_time", "files",
    }
    assert data["files"][0]["path"] == "a.db"


def test_process_config_round_trip_through_json():
    original = _sample_process()
    restored = ProcessConfig.from_dict(json.loads(json.dumps(original.to_dict())))
    assert restored == original


def test_process_config_from_partial_dict_uses_defaults():
    conf = ProcessConfig.from_dict({"account": "bob"})
    assert conf.account == "bob"
    assert conf.version == 0
    assert conf.http_enabled is False
    assert conf.files == []


def test_config_round_trip_excludes_config_dir():
    config = Config(config_dir="/etc/x", last_account="alice", history=[_sample_process()])
    data = config.to_dict()
    assert "config_dir" not in data
    restored = Config.from_dict(data)
    assert restored.last_account == "alice"
    assert restored.history == config.history


def test_parse_history_maps_account_to_entry_last_wins():
    first = _sample_process("alice", "/w1")
    second = _sample_process("bob")
    dup = _sample_process("alice", "/w2")
    config = Config(history=[first, second, dup])
    parsed = config.parse_history()
    assert set(parsed) == {"alice", "bob"}
    assert parsed["alice"].work_dir == "/w2"


def test_update_history_appends_when_empty():
    config = Config()
    conf = _sample_process("alice")
    config.update_history("alice", conf)
    assert config.history == [conf]
    assert config.last_account == "alice"


def test_update_history_replaces_existing_entry_in_place():
    config = Config(history=[_sample_process("alice", "/old"), _sample_process("bob")])
    config.update_history("alice", _sample_process("alice", "/new"))
    assert [h.account for h in config.history] == ["alice", "bob"]
    assert config.history[0].work_dir == "/new"


def test_update_history_appends_new_account():
    config = Config(history=[_sample_process("alice")])
    config.update_history("carol", _sample_process("carol"))
    assert [h.account for h in config.history] == ["alice", "carol"]
    assert config.last_account == "carol"


def test_update_history_persists_keys():
    saved = {}
    config = Config(persist=lambda key, value: saved.__setitem__(key, value))
    config.update_history("alice", _sample_process("alice"))
    assert saved["last_account"] == "alice"
    assert saved["history"] == [_sample_process("alice").to_dict()]