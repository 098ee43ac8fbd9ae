#!/usr/bin/env python3

from __future__ import annotations

from pathlib import Path

import pytest

from vulngate.exceptions import ConfigurationError
from vulngate.utils.config import Settings, env_overrides, load_settings, parse_bool


def test_defaults_without_file_or_env(tmp_path):
    settings = load_settings(config_path=tmp_path / "absent.yaml", environ={})
    assert settings.api_key == ""
    assert settings.offline is False
    assert settings.db_path.name == "vulngate.db"


def test_yaml_then_env_precedence(tmp_path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        "api_key: from-file\n"
        "fail_on: medium\n"
        "ignore_ids: [CVE-1, CVE-2]\n"
        f"db_path: {tmp_path / 'db.sqlite'}\n"
    )
    env = {"VULNGATE_FAIL_ON": "critical", "VULNGATE_OFFLINE": "yes", "VULNGATE_API_KEY": ""}
    settings = load_settings(config_path=cfg, environ=env)
    # Empty env values do not clobber the file
    assert settings.api_key == "from-file"
    assert settings.fail_on == "critical"
    assert settings.offline is True
    assert settings.ignore_ids == ("CVE-1", "CVE-2")
    assert settings.db_path == tmp_path / "db.sqlite"


def test_config_path_from_env(tmp_path):
    cfg = tmp_path / "alt.yaml"
    cfg.write_text("enable_ai_score: true\n")
    settings = load_settings(environ={"VULNGATE_CONFIG": str(cfg)})
    assert settings.enable_ai_score is True


def test_broken_yaml_is_a_warning(tmp_path, caplog):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("api_key: [unclosed\n")
    settings = load_settings(config_path=cfg, environ={"VULNGATE_API_KEY": "env-key"})
    assert settings.api_key == "env-key"
    assert "Could not read config file" in caplog.text


def test_ignore_ids_from_env_are_split():
    settings = load_settings(
        config_path=Path("/nonexistent/config.yaml"),
        environ={"VULNGATE_IGNORE_IDS": "CVE-1, CVE-2,,"},
    )
    assert settings.ignore_ids == ("CVE-1", "CVE-2")


def test_invalid_boolean_is_configuration_error():
    with pytest.raises(ConfigurationError):
        load_settings(
            config_path=Path("/nonexistent/config.yaml"), environ={"VULNGATE_OFFLINE": "maybe"}
        )


def test_env_overrides_filters_prefix():
    env = {
        "VULNGATE_OFFLINE": "1",
        "OTHER": "x",
        "VULNGATE_CONFIG": "/x.yaml",
        "VULNGATE_DB_PATH": " ",
    }
    assert env_overrides(env) == {"offline": "1"}


@pytest.mark.parametrize("value, expected", [("TRUE", True), ("off", False), (True, True)])
def test_parse_bool(value, expected):
    assert parse_bool(value, "flag") is expected


def test_settings_repr_hides_api_key():
    assert "secret" not in repr(Settings(api_key="secret"))


def test_match_concurrency_from_env():
    settings = load_settings(
        config_path=Path("/nonexistent/config.yaml"), environ={"VULNGATE_MATCH_CONCURRENCY": "4"}
    )
    assert settings.match_concurrency == 4
    assert Settings().match_concurrency == 1


@pytest.mark.parametrize("value", ["four", "0", "-2"])
def test_invalid_match_concurrency_is_configuration_error(value):
    with pytest.raises(ConfigurationError):
        load_settings(
            config_path=Path("/nonexistent/config.yaml"),
            environ={"VULNGATE_MATCH_CONCURRENCY": value},
        )


def test_importing_constants_ignores_concurrency_env(monkeypatch):
    import importlib

    import vulngate.constants as constants

    monkeypatch.setenv("VULNGATE_MATCH_CONCURRENCY", "not-a-number")
    reloaded = importlib.reload(constants)
    assert reloaded.DEFAULT_MATCH_CONCURRENCY == 1
