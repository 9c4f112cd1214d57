"""Simple JSON-based config store and connection settings."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlencode

from interfaces import KeyStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "voicestream" / "config.json"
API_KEY_ENV = "OPENAI_API_KEY"


@dataclass(frozen=True)
class RealtimeSettings:
    endpoint: str = "wss://api.openai.com/v1/realtime"
    model: str = "gpt-4o-mini-realtime-preview"
    beta_header: str = "realtime=v1"
    connect_timeout_s: float = 10.0
    close_timeout_s: float = 2.0

    @classmethod
    def from_env(cls) -> "RealtimeSettings":
        defaults = cls()
        return cls(
            endpoint=os.getenv("REALTIME_ENDPOINT", defaults.endpoint),
            model=os.getenv("REALTIME_MODEL", defaults.model),
        )

    def build_url(self) -> str:
        return f"{self.endpoint}?{urlencode({'model': self.model})}"

    def headers(self, credential: str) -> list[str]:
        return [
            f"Authorization: Bearer {credential}",
            f"OpenAI-Beta: {self.beta_header}",
        ]


class JsonConfigStore:
    """Persists the API key under ``openai.api_key`` in a JSON document."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or DEFAULT_CONFIG_PATH
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def get_api_key(self) -> str:
        section = self._read_all().get("openai")
        if not isinstance(section, dict):
            return ""
        return str(section.get("api_key", "") or "").strip()

    def set_api_key(self, key: str) -> None:
        data = self._read_all()
        section = data.get("openai")
        if not isinstance(section, dict):
            section = {}
        section["api_key"] = key.strip()
        data["openai"] = section
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable config %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def resolve_api_key(store: KeyStore) -> str:
    return store.get_api_key() or os.getenv(API_KEY_ENV, "").strip()


def remember_api_key(store: KeyStore, key: str) -> bool:
    """Persist ``key``; a write failure is logged and reported as ``False``."""
    if not key.strip():
        return False
    try:
        store.set_api_key(key)
    except OSError as exc:
        logger.warning("Could not save API key: %s", exc)
        return False
    return True
