"""Persistent configuration: the last account and per-account history."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

Persist = Callable[[str, Any], None]


@dataclass
class FileRecord:
    """A data file seen in an account's data directory."""

    path: str = ""
    modified_time: int = 0
    size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "modified_time": self.modified_time, "size": self.size}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FileRecord:
        return cls(
            path=str(data.get("path", "")),
            modified_time=int(data.get("modified_time", 0)),
            size=int(data.get("size", 0)),
        )


@dataclass
class ProcessConfig:
    """Settings remembered for one account."""

    type: str = ""
    account: str = ""
    platform: str = ""
    version: int = 0
    full_version: str = ""
    data_dir: str = ""
    data_key: str = ""
    work_dir: str = ""
    http_enabled: bool = False
    http_addr: str = ""
    last_time: int = 0
    files: list[FileRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "account": self.account,
            "platform": self.platform,
            "version": self.version,
            "full_version": self.full_version,
            "data_dir": self.data_dir,
            "data_key": self.data_key,
            "work_dir": self.work_dir,
            "http_enabled": self.http_enabled,
            "http_addr": self.http_addr,
            "last_time": self.last_time,
            "files": [f.to_dict() for f in self.files],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProcessConfig:
        return cls(
            type=str(data.get("type", "")),
            account=str(data.get("account", "")),
            platform=str(data.get("platform", "")),
            version=int(data.get("version", 0)),
            full_version=str(data.get("full_version", "")),
            data_dir=str(data.get("data_dir", "")),
            data_key=str(data.get("data_key", "")),
            work_dir=str(data.get("work_dir", "")),
            http_enabled=bool(data.get("http_enabled", False)),
            http_addr=str(data.get("http_addr", "")),
            last_time=int(data.get("last_time", 0)),
            files=[FileRecord.from_dict(f) for f in data.get("files") or []],
        )


@dataclass
class Config:
    """Top-level configuration.

    ``persist``, when given, is called with each key and its serialisable
    value whenever the configuration changes.
    """

    config_dir: str = ""
    last_account: str = ""
    history: list[ProcessConfig] = field(default_factory=list)
    persist: Persist | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_account": self.last_account,
            "history": [h.to_dict() for h in self.history],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Config:
        return cls(
            last_account=str(data.get("last_account", "")),
            history=[ProcessConfig.from_dict(h) for h in data.get("history") or []],
        )

    def parse_history(self) -> dict[str, ProcessConfig]:
        """Map account names to their settings; a later entry wins."""
        return {entry.account: entry for entry in self.history}

    def update_history(self, account: str, conf: ProcessConfig) -> None:
        """Replace the account's entry (or append one) and mark it as last used."""
        for index, entry in enumerate(self.history):
            if entry.account == account:
                self.history[index] = conf
                break
        else:
            self.history.append(conf)
        self.last_account = account
        if self.persist is not None:
            self.persist("last_account", account)
            self.persist("history", [h.to_dict() for h in self.history])