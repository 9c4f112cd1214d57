from __future__ import annotations

import json
import logging
from pathlib import Path

from config import JsonConfigStore, RealtimeSettings, remember_api_key, resolve_api_key


def test_config_read_write(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    store = JsonConfigStore(path=path)

    assert store.get_api_key() == ""

    store.set_api_key("sk-abc")

    reloaded = JsonConfigStore(path=path)
    assert reloaded.get_api_key() == "sk-abc"
    assert json.loads(path.read_text(encoding="utf-8")) == {"openai": {"api_key": "sk-abc"}}


def test_config_write_preserves_other_keys(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"theme": "dark", "openai": {"org": "o-1"}}), encoding="utf-8")

    JsonConfigStore(path=path).set_api_key("sk-new")

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["theme"] == "dark"
    assert data["openai"] == {"org": "o-1", "api_key": "sk-new"}


def test_config_invalid_json_fallback(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{invalid", encoding="utf-8")

    store = JsonConfigStore(path=path)
    assert store.get_api_key() == ""


def test_config_unexpected_shape_reads_empty(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"openai": "not-an-object"}), encoding="utf-8")

    assert JsonConfigStore(path=path).get_api_key() == ""


def test_resolve_api_key_falls_back_to_env(tmp_path: Path, monkeypatch) -> None:  # noqa: ANN001
    store = JsonConfigStore(path=tmp_path / "config.json")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    assert resolve_api_key(store) == "sk-env"

    store.set_api_key("sk-file")
    assert resolve_api_key(store) == "sk-file"


def test_remember_api_key_logs_write_failure(tmp_path: Path, monkeypatch, caplog) -> None:  # noqa: ANN001
    store = JsonConfigStore(path=tmp_path / "config.json")

    def read_only(data: dict) -> None:
        raise PermissionError(13, "Permission denied", str(store.path))

    monkeypatch.setattr(store, "_write_all", read_only)

    with caplog.at_level(logging.WARNING, logger="config"):
        assert remember_api_key(store, "sk-abc") is False
    assert "Could not save API key" in caplog.text
    assert not store.path.exists()


def test_remember_api_key_saves_and_skips_blank(tmp_path: Path) -> None:
    store = JsonConfigStore(path=tmp_path / "config.json")

    assert remember_api_key(store, "   ") is False
    assert not store.path.exists()
    assert remember_api_key(store, "sk-abc") is True
    assert store.get_api_key() == "sk-abc"


def test_settings_url_carries_model_query() -> None:
    settings = RealtimeSettings(model="gpt-4o-mini-realtime-preview")
    assert settings.build_url() == (
        "wss://api.openai.com/v1/realtime?model=gpt-4o-mini-realtime-preview"
    )


def test_settings_headers_include_bearer_and_beta() -> None:
    headers = RealtimeSettings().headers("sk-secret")
    assert "Authorization: Bearer sk-secret" in headers
    assert "OpenAI-Beta: realtime=v1" in headers


def test_settings_from_env(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setenv("REALTIME_MODEL", "gpt-4o-realtime-preview")
    monkeypatch.delenv("REALTIME_ENDPOINT", raising=False)
    settings = RealtimeSettings.from_env()
    assert settings.model == "gpt-4o-realtime-preview"
    assert settings.endpoint == "wss://api.openai.com/v1/realtime"
