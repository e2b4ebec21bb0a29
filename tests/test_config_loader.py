import pytest

from streamsub.config_loader import DEFAULT_CONFIG, ConfigLoader
from streamsub.exceptions import ConfigurationError


def test_missing_keys_fall_back_to_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text("wserver_port: 18080\ntranscriber_mode: openai\n", encoding="utf-8")
    config = ConfigLoader().load_config(str(path))
    assert config["wserver_port"] == 18080
    assert config["transcriber_mode"] == "openai"
    assert config["wserver_host"] == DEFAULT_CONFIG["wserver_host"]
    assert config["chunk_seconds"] == 10


def test_empty_file_gives_defaults_and_env_api_key(tmp_path, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")
    config = ConfigLoader().load_config(str(path))
    assert config["openai_api_key"] == "sk-env"
    assert config["wserver_port"] == 17896


def test_non_mapping_root_is_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        ConfigLoader().load_config(str(path))


def test_invalid_yaml_is_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("key: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        ConfigLoader().load_config(str(path))


def test_missing_file_raises_file_not_found(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigLoader().load_config(str(tmp_path / "absent.yaml"))
