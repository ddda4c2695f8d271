"""Simple JSON-based config store."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path

from errors import ConfigurationError
from models import AudioConfig, RateLimitConfig

logger = logging.getLogger(__name__)


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "ai_input" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def get_api_key(self) -> str:
        data = self._read_all()
        return str(data.get("api_key", ""))

    def set_api_key(self, key: str) -> None:
        data = self._read_all()
        data["api_key"] = key
        self._write_all(data)

    def get_rate_limit(self) -> RateLimitConfig:
        return self._load_section("rate_limit", RateLimitConfig)

    def set_rate_limit(self, config: RateLimitConfig) -> None:
        data = self._read_all()
        data["rate_limit"] = asdict(config)
        self._write_all(data)

    def get_audio_config(self) -> AudioConfig:
        return self._load_section("audio", AudioConfig)

    def set_audio_config(self, config: AudioConfig) -> None:
        data = self._read_all()
        section = asdict(config)
        section["mime_types"] = list(config.mime_types)
        data["audio"] = section
        self._write_all(data)

    def _load_section(self, name: str, factory):  # noqa: ANN001, ANN202
        section = self._read_all().get(name)
        if not isinstance(section, dict):
            return factory()
        known = factory.__dataclass_fields__
        values = {key: value for key, value in section.items() if key in known}
        try:
            return factory(**values)
        except (ConfigurationError, TypeError) as exc:
            logger.warning("ignoring invalid %r section in %s: %s", name, self._path, exc)
            return factory()

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
