import pytest

from vitrus.config import VitrusSettings, get_settings


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in ("VITRUS_API_KEY", "VITRUS_WORLD_ID", "VITRUS_BASE_URL", "VITRUS_CONFIG_FILE", "VITRUS_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults():
    settings = VitrusSettings()

    assert settings.api_key is None
    assert str(settings.base_url).startswith("ws://localhost:3001")
    assert settings.request_timeout_seconds is None
    assert settings.reply_unknown_commands is False
    assert settings.handler_exec_mode == "auto"


def test_api_key_is_hidden_from_repr():
    settings = VitrusSettings(api_key="secret-key")

    assert "secret-key" not in repr(settings)


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("VITRUS_API_KEY", "env-key")
    monkeypatch.setenv("VITRUS_WORLD_ID", "world-env")
    monkeypatch.setenv("VITRUS_LOG_LEVEL", "debug")

    settings = get_settings()

    assert settings.api_key == "env-key"
    assert settings.world_id == "world-env"
    assert settings.log_level == "DEBUG"
    assert get_settings() is settings


def test_yaml_config_file(monkeypatch, tmp_path):
    config = tmp_path / "vitrus.yaml"
    config.write_text("api_key: file-key\nworld_id: world-file\nrequest_timeout_seconds: 2.5\n", encoding="utf-8")
    monkeypatch.setenv("VITRUS_CONFIG_FILE", str(config))

    settings = VitrusSettings()

    assert settings.api_key == "file-key"
    assert settings.world_id == "world-file"
    assert settings.request_timeout_seconds == 2.5
    assert settings.config_path == config


def test_default_config_location(tmp_path):
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "vitrus.yml").write_text("transport: dummy\n", encoding="utf-8")

    settings = VitrusSettings()

    assert settings.transport == "dummy"


def test_init_kwargs_beat_config_file(monkeypatch, tmp_path):
    config = tmp_path / "vitrus.json"
    config.write_text('{"api_key": "file-key"}', encoding="utf-8")
    monkeypatch.setenv("VITRUS_CONFIG_FILE", str(config))

    assert VitrusSettings(api_key="init-key").api_key == "init-key"


def test_non_mapping_config_is_rejected(monkeypatch, tmp_path):
    config = tmp_path / "vitrus.yaml"
    config.write_text("- just\n- a list\n", encoding="utf-8")
    monkeypatch.setenv("VITRUS_CONFIG_FILE", str(config))

    with pytest.raises(ValueError):
        VitrusSettings()
