import pytest

import docredact.settings as settings
from docredact.pipeline import RunConfig


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DOCREDACT_SPACY_MODEL", "en_core_web_sm")
    monkeypatch.setenv("DOCREDACT_WORKERS", "4")
    monkeypatch.setenv("DOCREDACT_TIER", "pro")
    monkeypatch.setenv("DOCREDACT_REGEX_TIMEOUT", "0.5")
    monkeypatch.setenv("DOCREDACT_USE_MODEL", "yes")
    settings.reset_settings_cache()

    s = settings.get_settings()
    assert s.spacy_model == "en_core_web_sm"
    assert s.workers == 4
    assert s.tier == "pro"
    assert s.regex_timeout == 0.5
    assert s.use_model is True
    assert settings.get_settings() is s


def test_invalid_values_fall_back(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DOCREDACT_WORKERS", "many")
    monkeypatch.setenv("DOCREDACT_REGEX_TIMEOUT", "soon")
    monkeypatch.setenv("DOCREDACT_PROGRESS", "maybe")
    s = settings.Settings.from_env()
    assert s.workers == 2
    assert s.regex_timeout == 2.0
    assert s.show_progress is True


def test_workers_are_at_least_one(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DOCREDACT_WORKERS", "0")
    assert settings.Settings.from_env().workers == 1


def test_run_config_from_settings():
    cfg = RunConfig.from_settings(settings.Settings(workers=3, use_model=False))
    assert cfg.workers == 3
    assert cfg.use_model is False
    assert cfg.use_regex is True
