from pathlib import Path

import pytest

from iptvdeck.config import (
    ENV_BASE_URL,
    PanelConfig,
    apply_environment,
    load_config,
    normalize_base_url,
    save_config,
)


def test_load_config_returns_defaults_when_missing(tmp_path: Path) -> None:
    config = load_config(tmp_path / "config.yaml")
    assert config == PanelConfig()
    assert config.poll_interval == 3.0
    assert config.display_limit == 200


def test_load_and_save_round_trip(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "config.yaml"
    config = PanelConfig(
        base_url="http://panel.example:8080",
        poll_interval=5.0,
        display_limit=50,
        request_timeout=2.5,
        user_agent="iptvdeck/1.0",
    )
    save_config(config, config_path)
    raw = config_path.read_text()
    assert raw.splitlines()[0] == "base_url: http://panel.example:8080"
    assert load_config(config_path) == config


def test_load_config_accepts_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text('{"base_url": "panel.local/", "display_limit": 25}')
    config = load_config(config_path)
    assert config.base_url == "http://panel.local"
    assert config.display_limit == 25


def test_invalid_values_fall_back_to_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "# panel settings\n"
        "poll_interval: soon\n"
        "display_limit: -4\n"
        "request_timeout: 0\n"
        "not a setting\n"
    )
    config = load_config(config_path)
    assert config.poll_interval == 3.0
    assert config.display_limit == 200
    assert config.request_timeout == 10.0


def test_environment_overrides_base_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(ENV_BASE_URL, "https://override.example/")
    config = apply_environment(PanelConfig())
    assert config.base_url == "https://override.example"


def test_environment_without_override_keeps_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(ENV_BASE_URL, raising=False)
    config = apply_environment(PanelConfig(base_url="http://kept"))
    assert config.base_url == "http://kept"


def test_normalize_base_url() -> None:
    assert normalize_base_url(" panel:8080/ ") == "http://panel:8080"
    assert normalize_base_url("https://panel/") == "https://panel"
    with pytest.raises(ValueError):
        normalize_base_url("  ")
