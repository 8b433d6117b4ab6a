"""Tests for settings loading and environment overrides."""
import pytest
from pydantic import ValidationError

from retrochat.config import AppSettings, get_config, load_config, reset_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("PORT", "HOST", "RETROCHAT_LOG_LEVEL", "RETROCHAT_SETTINGS"):
        monkeypatch.delenv(var, raising=False)


def test_defaults_when_file_missing(tmp_path):
    cfg = load_config(settings_path=tmp_path / "missing.yaml")
    assert cfg == AppSettings()
    assert cfg.server.port == 8080
    assert cfg.chat.max_message_length == 500
    assert cfg.chat.max_username_length == 20
    assert cfg.chat.history_capacity == 100
    assert cfg.chat.join_history_limit == 20
    assert cfg.chat.fetch_history_limit == 50
    assert cfg.chat.default_room_id == "general"


def test_values_from_yaml(tmp_path):
    settings_file = tmp_path / "retrochat.settings.yaml"
    settings_file.write_text(
        "server:\n"
        "  port: 9001\n"
        "chat:\n"
        "  max_message_length: 280\n"
        "  history_capacity: 30\n"
        "logging:\n"
        "  level: DEBUG\n",
        encoding="utf-8",
    )

    cfg = load_config(settings_path=settings_file)
    assert cfg.server.port == 9001
    assert cfg.chat.max_message_length == 280
    assert cfg.chat.history_capacity == 30
    assert cfg.logging.level == "debug"


def test_empty_yaml_file(tmp_path):
    settings_file = tmp_path / "retrochat.settings.yaml"
    settings_file.write_text("", encoding="utf-8")
    assert load_config(settings_path=settings_file) == AppSettings()


def test_env_overrides_file(tmp_path, monkeypatch):
    settings_file = tmp_path / "retrochat.settings.yaml"
    settings_file.write_text("server:\n  port: 9001\n", encoding="utf-8")
    monkeypatch.setenv("PORT", "3000")
    monkeypatch.setenv("HOST", "127.0.0.1")
    monkeypatch.setenv("RETROCHAT_LOG_LEVEL", "warning")

    cfg = load_config(settings_path=settings_file)
    assert cfg.server.port == 3000
    assert cfg.server.host == "127.0.0.1"
    assert cfg.logging.level == "warning"


def test_settings_path_from_env(tmp_path, monkeypatch):
    settings_file = tmp_path / "custom.yaml"
    settings_file.write_text("chat:\n  default_room_name: Lobby\n", encoding="utf-8")
    monkeypatch.setenv("RETROCHAT_SETTINGS", str(settings_file))

    assert load_config().chat.default_room_name == "Lobby"


def test_replay_limits_clamped_to_capacity(tmp_path):
    settings_file = tmp_path / "retrochat.settings.yaml"
    settings_file.write_text(
        "chat:\n"
        "  history_capacity: 10\n"
        "  join_history_limit: 20\n"
        "  fetch_history_limit: 50\n",
        encoding="utf-8",
    )

    cfg = load_config(settings_path=settings_file)
    assert cfg.chat.join_history_limit == 10
    assert cfg.chat.fetch_history_limit == 10


@pytest.mark.parametrize("content", [
    "chat:\n  max_message_length: 0\n",
    "server:\n  port: not-a-port\n",
    "logging:\n  level: chatty\n",
])
def test_invalid_values_rejected(tmp_path, content):
    settings_file = tmp_path / "retrochat.settings.yaml"
    settings_file.write_text(content, encoding="utf-8")
    with pytest.raises(ValidationError):
        load_config(settings_path=settings_file)


def test_get_config_is_cached(tmp_path, monkeypatch):
    monkeypatch.setenv("RETROCHAT_SETTINGS", str(tmp_path / "missing.yaml"))
    first = get_config()
    assert get_config() is first
    reset_config()
    assert get_config() is not first


@pytest.mark.parametrize("level", ["warn", "fatal", "notset"])
def test_log_level_limited_to_uvicorn_names(monkeypatch, tmp_path, level):
    """Aliases known to the logging module but not to uvicorn are rejected."""
    monkeypatch.setenv("RETROCHAT_LOG_LEVEL", level)
    with pytest.raises(ValidationError):
        load_config(settings_path=tmp_path / "missing.yaml")


def test_trace_log_level_accepted(monkeypatch, tmp_path):
    monkeypatch.setenv("RETROCHAT_LOG_LEVEL", "TRACE")
    assert load_config(settings_path=tmp_path / "missing.yaml").logging.level == "trace"
