from __future__ import annotations

import logging
from pathlib import Path
import textwrap

import pytest

from flowpolicy.config import (
    RunMode,
    RunnerSettings,
    load_config,
    logging_defaults,
    logging_level,
    merge_payload,
    runner_defaults,
    runner_settings,
)
from flowpolicy.exceptions import ConfigError
from flowpolicy.selector import UnknownMarkerPolicy


def test_runner_defaults_reads_toml(tmp_path: Path) -> None:
    (tmp_path / "flowpolicy.toml").write_text(
        textwrap.dedent(
            """
            [runner]
            mode = "exhaustive"
            unknown_markers = "empty"
            workers = 3

            [logging]
            level = "debug"
            """
        ).strip()
        + "\n"
    )
    defaults = runner_defaults(root=tmp_path)
    assert defaults == {"mode": "exhaustive", "unknown_markers": "empty", "workers": 3}
    assert logging_defaults(root=tmp_path) == {"level": "debug"}
    settings = runner_settings(defaults)
    assert settings == RunnerSettings(
        mode=RunMode.EXHAUSTIVE, unknown_markers=UnknownMarkerPolicy.EMPTY, workers=3
    )
    assert settings.exhaustive


def test_missing_config_is_empty(tmp_path: Path) -> None:
    assert load_config(root=tmp_path) == {}
    assert runner_settings(runner_defaults(root=tmp_path)) == RunnerSettings()


def test_invalid_toml_is_reported(tmp_path: Path) -> None:
    path = tmp_path / "custom.toml"
    path.write_text("[runner\nmode = 1\n")
    with pytest.raises(ConfigError, match="not valid TOML"):
        load_config(config_path=path)


def test_merge_payload_prefers_explicit_values() -> None:
    defaults = {"mode": "exhaustive", "workers": 2}
    payload = {"mode": None, "workers": 5, "unknown_markers": "empty"}
    assert merge_payload(payload, defaults) == {
        "mode": "exhaustive",
        "workers": 5,
        "unknown_markers": "empty",
    }


def test_mode_spelling_is_normalized() -> None:
    assert runner_settings({"mode": "Fail-Fast"}).mode is RunMode.FAIL_FAST


@pytest.mark.parametrize(
    ("section", "message"),
    [
        ({"mode": "eventually"}, "mode must be one of"),
        ({"unknown_markers": 1}, "unknown_markers must be one of"),
        ({"workers": 0}, "workers must be a positive integer"),
        ({"workers": True}, "workers must be a positive integer"),
        ({"workers": "4"}, "workers must be a positive integer"),
    ],
)
def test_runner_settings_rejects_bad_values(section, message) -> None:
    with pytest.raises(ConfigError, match=message):
        runner_settings(section)


@pytest.mark.parametrize(
    ("section", "expected"),
    [
        (None, logging.WARNING),
        ({}, logging.WARNING),
        ({"level": "debug"}, logging.DEBUG),
        ({"level": " Error "}, logging.ERROR),
        ({"level": 10}, logging.DEBUG),
        ({"level": "20"}, logging.INFO),
    ],
)
def test_logging_level_accepts_names_and_numbers(section, expected) -> None:
    assert logging_level(section) == expected


@pytest.mark.parametrize("level", ["loud", 15, True, "", 1.5])
def test_logging_level_rejects_unknown_values(level) -> None:
    with pytest.raises(ConfigError, match="level must be one of"):
        logging_level({"level": level})
