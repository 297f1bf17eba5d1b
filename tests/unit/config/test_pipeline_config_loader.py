"""Unit tests for layered config loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from agent_pipeline.config.loader import (
    ENV_BINDINGS,
    ConfigLoadError,
    dump_effective_config,
    env_overrides,
    load_config,
)
from agent_pipeline.config.schema import DEFAULT_CONFIG, ConfigValidationError


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_apply_without_a_config_file(tmp_path: Path) -> None:
    config = load_config(environ={})

    assert config["pipeline"]["parallel_execution"] is True
    assert config["observability"]["log_dir"] == (tmp_path.resolve() / "logs").as_posix()


def test_missing_explicit_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})


def test_invalid_toml_is_reported(tmp_path: Path) -> None:
    path = _write(tmp_path / "pipeline.toml", "[pipeline\n")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(path, environ={})


def test_file_values_override_defaults_and_paths_resolve_next_to_the_file(
    tmp_path: Path,
) -> None:
    nested = tmp_path / "conf"
    nested.mkdir()
    path = _write(
        nested / "pipeline.toml",
        '[pipeline]\nresult_grace_seconds = 1.5\n\n[observability]\nlog_dir = "../run-logs"\n',
    )

    config = load_config(path, environ={})

    assert config["pipeline"]["result_grace_seconds"] == 1.5
    assert config["observability"]["log_dir"] == (tmp_path.resolve() / "run-logs").as_posix()


def test_file_values_are_validated(tmp_path: Path) -> None:
    path = _write(tmp_path / "pipeline.toml", "[pipeline]\nparallel_execution = 3\n")

    with pytest.raises(ConfigValidationError, match="pipeline.parallel_execution"):
        load_config(path, environ={})


def test_precedence_cli_over_env_over_profile_over_file(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "pipeline.toml",
        "[pipeline]\nresult_grace_seconds = 1.0\n\n"
        "[profiles.slow.pipeline]\nresult_grace_seconds = 2.0\n"
        "default_stage_timeout_seconds = 60.0\n",
    )

    from_profile = load_config(path, profile="slow", environ={})
    from_env = load_config(
        path,
        profile="slow",
        environ={"AGENT_PIPELINE_PIPELINE_RESULT_GRACE_SECONDS": "3"},
    )
    from_cli = load_config(
        path,
        profile="slow",
        environ={"AGENT_PIPELINE_PIPELINE_RESULT_GRACE_SECONDS": "3"},
        cli_overrides={"pipeline.result_grace_seconds": 4.0},
    )

    assert from_profile["pipeline"]["result_grace_seconds"] == 2.0
    assert from_profile["pipeline"]["default_stage_timeout_seconds"] == 60.0
    assert from_env["pipeline"]["result_grace_seconds"] == 3.0
    assert from_cli["pipeline"]["result_grace_seconds"] == 4.0


def test_profile_can_come_from_the_environment() -> None:
    config = load_config(
        None,
        environ={"AGENT_PIPELINE_PROFILE": "sequential"},
    )

    assert config["pipeline"]["parallel_execution"] is False


def test_undefined_profile_is_rejected() -> None:
    with pytest.raises(ConfigValidationError, match="profile 'turbo' is not defined"):
        load_config(profile="turbo", environ={})


@pytest.mark.parametrize(
    ("name", "raw", "section", "key", "expected"),
    [
        ("AGENT_PIPELINE_PIPELINE_PARALLEL_EXECUTION", "off", "pipeline", "parallel_execution",
         False),
        ("AGENT_PIPELINE_OBSERVABILITY_LOG_TO_STDOUT", "Yes", "observability", "log_to_stdout",
         True),
        ("AGENT_PIPELINE_OBSERVABILITY_EVENT_HISTORY_LIMIT", " 64 ", "observability",
         "event_history_limit", 64),
        ("AGENT_PIPELINE_PIPELINE_RESULT_SUBJECT_SUFFIX", "done", "pipeline",
         "result_subject_suffix", "done"),
    ],
)
def test_environment_values_are_coerced_to_the_default_type(
    name: str, raw: str, section: str, key: str, expected: object
) -> None:
    config = load_config(environ={name: raw})

    assert config[section][key] == expected


@pytest.mark.parametrize(
    ("name", "message"),
    [
        ("AGENT_PIPELINE_PIPELINE_PARALLEL_EXECUTION", "must be a boolean"),
        ("AGENT_PIPELINE_OBSERVABILITY_EVENT_HISTORY_LIMIT", "must be an integer"),
        ("AGENT_PIPELINE_PIPELINE_RESULT_GRACE_SECONDS", "must be a number"),
    ],
)
def test_uncoercible_environment_values_fail(name: str, message: str) -> None:
    with pytest.raises(ConfigLoadError, match=message):
        load_config(environ={name: "plenty"})


def test_environment_cannot_reach_profiles_or_meta() -> None:
    config = load_config(
        environ={
            "AGENT_PIPELINE_META_SCHEMA_VERSION": "7",
            "AGENT_PIPELINE_PROFILES_SEQUENTIAL_PIPELINE_PARALLEL_EXECUTION": "true",
        }
    )

    assert config["meta"]["schema_version"] == 1
    assert config["profiles"]["sequential"]["pipeline"]["parallel_execution"] is False


def test_nested_cli_overrides_are_merged() -> None:
    config = load_config(
        environ={},
        cli_overrides={"observability": {"log_level": "warning"}, "profile": "debug"},
    )

    assert config["observability"]["log_level"] == "WARNING"
    assert config["observability"]["log_to_stdout"] is True


def test_dump_is_deterministic_json() -> None:
    config = load_config(environ={})

    dumped = dump_effective_config(config)

    assert json.loads(dumped) == config
    assert dumped == dump_effective_config(json.loads(dumped))


def test_environment_bindings_cover_every_pipeline_and_observability_setting() -> None:
    bound = {(binding.section, binding.key) for binding in ENV_BINDINGS}

    expected = {
        (section, key)
        for section in ("pipeline", "observability")
        for key in DEFAULT_CONFIG[section]
    }
    assert bound == expected
    assert "AGENT_PIPELINE_PIPELINE_DEFAULT_STAGE_TIMEOUT_SECONDS" in {
        binding.env_name for binding in ENV_BINDINGS
    }


def test_literal_log_level_is_read_as_text_and_validated() -> None:
    assert env_overrides({"AGENT_PIPELINE_OBSERVABILITY_LOG_LEVEL": " debug "}) == {
        "observability": {"log_level": "debug"}
    }
    assert load_config(environ={"AGENT_PIPELINE_OBSERVABILITY_LOG_LEVEL": "debug"})[
        "observability"
    ]["log_level"] == "DEBUG"
    with pytest.raises(ConfigValidationError, match="observability.log_level"):
        load_config(environ={"AGENT_PIPELINE_OBSERVABILITY_LOG_LEVEL": "chatty"})


@pytest.mark.parametrize("key", ["pipeline.", ".parallel_execution", "pipeline..suffix"])
def test_malformed_dotted_cli_keys_are_rejected(key: str) -> None:
    with pytest.raises(ConfigLoadError, match="invalid CLI override key"):
        load_config(environ={}, cli_overrides={key: True})


def test_non_string_cli_profile_is_rejected() -> None:
    with pytest.raises(ConfigLoadError, match="'profile' must be a string"):
        load_config(environ={}, cli_overrides={"profile": 3})
