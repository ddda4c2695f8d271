from __future__ import annotations

import json
from pathlib import Path

from config import JsonConfigStore
from models import AudioConfig, RateLimitConfig


def test_config_read_write(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    store = JsonConfigStore(path=path)

    assert store.get_api_key() == ""
    assert store.get_rate_limit() == RateLimitConfig()
    assert store.get_audio_config() == AudioConfig()

    store.set_api_key("abc")
    store.set_rate_limit(RateLimitConfig(cooldown_ms=500, max_requests=3, window_ms=10000))
    store.set_audio_config(AudioConfig(max_duration_ms=30000, mime_types=("audio/pcm",)))

    reloaded = JsonConfigStore(path=path)
    assert reloaded.get_api_key() == "abc"
    assert reloaded.get_rate_limit() == RateLimitConfig(cooldown_ms=500, max_requests=3, window_ms=10000)
    audio = reloaded.get_audio_config()
    assert audio.max_duration_ms == 30000
    assert audio.mime_types == ("audio/pcm",)


def test_partial_section_keeps_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"rate_limit": {"cooldown_ms": 250, "unknown": 1}}), encoding="utf-8")

    store = JsonConfigStore(path=path)

    assert store.get_rate_limit() == RateLimitConfig(cooldown_ms=250)


def test_invalid_section_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"rate_limit": {"max_requests": 0}, "audio": {"max_duration_ms": "long"}}),
        encoding="utf-8",
    )

    store = JsonConfigStore(path=path)

    assert store.get_rate_limit() == RateLimitConfig()
    assert store.get_audio_config() == AudioConfig()


def test_config_invalid_json_fallback(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{invalid", encoding="utf-8")

    store = JsonConfigStore(path=path)
    assert store.get_api_key() == ""
    assert store.get_rate_limit() == RateLimitConfig()
