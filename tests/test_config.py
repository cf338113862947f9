import pytest

from delivery_baseline.core.config import DEFAULT_SETTINGS, ConfigError, load_settings


def test_defaults():
    s = load_settings(env={})
    assert s.db_path == DEFAULT_SETTINGS["db_path"]
    assert s.log_level == "WARNING"
    assert s.atomic_cascades is True


def test_file_then_env(tmp_path):
    p = tmp_path / "settings.yaml"
    p.write_text("db_path: from-file.sqlite3\nlog_level: info\natomic_cascades: false\n", encoding="utf-8")

    s = load_settings(str(p), env={})
    assert s.db_path == "from-file.sqlite3"
    assert s.log_level == "INFO"
    assert s.atomic_cascades is False

    s = load_settings(str(p), env={"DELIVERY_BASELINE_DB": "from-env.sqlite3", "DELIVERY_BASELINE_ATOMIC_CASCADES": "yes"})
    assert s.db_path == "from-env.sqlite3"
    assert s.atomic_cascades is True


def test_config_file_from_env(tmp_path):
    p = tmp_path / "settings.yaml"
    p.write_text("log_level: DEBUG\n", encoding="utf-8")
    s = load_settings(env={"DELIVERY_BASELINE_CONFIG": str(p)})
    assert s.log_level == "DEBUG"


def test_empty_file_keeps_defaults(tmp_path):
    p = tmp_path / "settings.yaml"
    p.write_text("", encoding="utf-8")
    assert load_settings(str(p), env={}).db_path == DEFAULT_SETTINGS["db_path"]


def test_unknown_key(tmp_path):
    p = tmp_path / "settings.yaml"
    p.write_text("colour: blue\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="unknown setting"):
        load_settings(str(p), env={})


def test_bad_values(tmp_path):
    with pytest.raises(ConfigError, match="log_level"):
        load_settings(env={"DELIVERY_BASELINE_LOG_LEVEL": "chatty"})

    p = tmp_path / "settings.yaml"
    p.write_text("atomic_cascades: sometimes\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="atomic_cascades"):
        load_settings(str(p), env={})


def test_settings_file_must_be_mapping(tmp_path):
    p = tmp_path / "settings.yaml"
    p.write_text("- a\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(str(p), env={})
