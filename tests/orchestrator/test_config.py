from __future__ import annotations

import json

from orchestrator import config


def test_environment_overrides_file(monkeypatch) -> None:
    monkeypatch.setenv("MARKETPLACE_REFRESH_DELAY", "2.5")
    monkeypatch.setenv("MARKETPLACE_LIFECYCLE_STRICT", "yes")
    monkeypatch.setenv("MARKETPLACE_API_URL", "http://marketplace.test/api")
    config.reset_settings()

    settings = config.get_settings()

    assert settings.refresh_delay_seconds == 2.5
    assert settings.lifecycle_strict is True
    assert settings.api_base_url == "http://marketplace.test/api"
    assert settings.database_url == "sqlite:///:memory:"


def test_file_values_used_when_environment_is_silent(monkeypatch, tmp_path) -> None:
    (tmp_path / "marketplace.json").write_text(
        json.dumps({"refreshDelaySeconds": 4, "lifecycle": {"strict": True}, "logLevel": "debug"}),
        encoding="utf-8",
    )
    monkeypatch.setattr(config, "_CONFIG_DIR", str(tmp_path))
    for key in ("MARKETPLACE_REFRESH_DELAY", "MARKETPLACE_LOG_LEVEL", "MARKETPLACE_LIFECYCLE_STRICT"):
        monkeypatch.delenv(key, raising=False)
    config.reset_settings()

    settings = config.get_settings()

    assert settings.refresh_delay_seconds == 4.0
    assert settings.lifecycle_strict is True
    assert settings.log_level == "DEBUG"
    assert settings.api_base_url == "http://localhost:3001/api"


def test_invalid_values_fall_back_to_defaults(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(config, "_CONFIG_DIR", str(tmp_path))
    monkeypatch.setenv("MARKETPLACE_REFRESH_DELAY", "-3")
    monkeypatch.setenv("MARKETPLACE_LIFECYCLE_STRICT", "maybe")
    config.reset_settings()

    settings = config.get_settings()

    assert settings.refresh_delay_seconds == 1.0
    assert settings.lifecycle_strict is False
