from __future__ import annotations

import importlib

import gridtycoon.config as config


def _reload_with(monkeypatch, **env):  # noqa: ANN001, ANN003
    for name, value in env.items():
        if value is None:
            monkeypatch.delenv(name, raising=False)
        else:
            monkeypatch.setenv(name, value)
    return importlib.reload(config)


def test_settings_prefers_service_role_key(monkeypatch):
    reloaded = _reload_with(monkeypatch, SUPABASE_ANON_KEY="anon", SUPABASE_SERVICE_ROLE_KEY="service")

    try:
        assert reloaded.settings.supabase_key == "service"
    finally:
        monkeypatch.undo()
        importlib.reload(config)


def test_settings_falls_back_to_anon_key(monkeypatch):
    reloaded = _reload_with(monkeypatch, SUPABASE_ANON_KEY="anon", SUPABASE_SERVICE_ROLE_KEY=None)

    try:
        assert reloaded.settings.supabase_key == "anon"
    finally:
        monkeypatch.undo()
        importlib.reload(config)


def test_settings_reads_overpass_options(monkeypatch):
    reloaded = _reload_with(
        monkeypatch,
        OVERPASS_SERVERS="https://a.example/api, https://b.example/api",
        OVERPASS_TIMEOUT="60",
        OVERPASS_RETRY_DELAY="not-a-number",
    )

    try:
        settings = reloaded.get_settings()
        assert settings.overpass_servers == ["https://a.example/api", "https://b.example/api"]
        assert settings.overpass_timeout == 60.0
        assert settings.overpass_retry_delay == 2.0
    finally:
        monkeypatch.undo()
        importlib.reload(config)


def test_settings_default_overpass_servers(monkeypatch):
    reloaded = _reload_with(monkeypatch, OVERPASS_SERVERS=None)

    try:
        assert reloaded.settings.overpass_servers == list(config.DEFAULT_OVERPASS_SERVERS)
    finally:
        monkeypatch.undo()
        importlib.reload(config)
