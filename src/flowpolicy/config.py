from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import StrEnum
import logging
from pathlib import Path
from typing import TypeAlias
import tomllib

from flowpolicy.exceptions import ConfigError
from flowpolicy.selector import UnknownMarkerPolicy

DEFAULT_CONFIG_NAME = "flowpolicy.toml"

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


class RunMode(StrEnum):
    FAIL_FAST = "fail_fast"
    EXHAUSTIVE = "exhaustive"


@dataclass(frozen=True)
class RunnerSettings:
    mode: RunMode = RunMode.FAIL_FAST
    unknown_markers: UnknownMarkerPolicy = UnknownMarkerPolicy.ERROR
    workers: int = 1

    @property
    def exhaustive(self) -> bool:
        return self.mode is RunMode.EXHAUSTIVE


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path} is not valid TOML: {exc}") from exc
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def runner_defaults(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get("runner", {})
    return section if isinstance(section, dict) else {}


def logging_defaults(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get("logging", {})
    return section if isinstance(section, dict) else {}


def merge_payload(payload: TomlTable, defaults: TomlTable) -> TomlTable:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged


def _choice(section: TomlTable, key: str, enum_type: type[StrEnum], default: StrEnum) -> StrEnum:
    value = section.get(key)
    if value is None:
        return default
    if isinstance(value, str):
        normalized = value.strip().lower().replace("-", "_")
        for member in enum_type:
            if member.value == normalized:
                return member
    choices = ", ".join(member.value for member in enum_type)
    raise ConfigError(f"{key} must be one of {choices}; got {value!r}")


def runner_settings(section: TomlTable | None) -> RunnerSettings:
    if not section:
        return RunnerSettings()
    mode = _choice(section, "mode", RunMode, RunMode.FAIL_FAST)
    unknown = _choice(section, "unknown_markers", UnknownMarkerPolicy, UnknownMarkerPolicy.ERROR)
    workers = section.get("workers", 1)
    if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
        raise ConfigError(f"workers must be a positive integer; got {workers!r}")
    return RunnerSettings(mode=RunMode(mode), unknown_markers=UnknownMarkerPolicy(unknown), workers=workers)


def logging_level(section: TomlTable | None, default: str = "WARNING") -> int:
    value = (section or {}).get("level", default)
    names = logging.getLevelNamesMapping()
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            value = int(text)
        elif text.upper() in names:
            return names[text.upper()]
    if isinstance(value, int) and not isinstance(value, bool) and value in names.values():
        return value
    choices = ", ".join(sorted(names, key=names.__getitem__))
    raise ConfigError(f"level must be one of {choices} or their numeric values; got {value!r}")
