import pytest
from pydantic import ValidationError

from prd_engine.core.config import DEFAULT_EXTERNAL_PROVIDERS
from prd_engine.core.config import load_settings


def test_config_defaults(settings):
    assert settings.quality_target == 85.0
    assert settings.max_refine_iterations == 3
    assert settings.codebase_confidence_threshold == 0.70
    assert settings.mockup_confidence_threshold == 0.60
    assert settings.max_context_on_device == 1500
    assert settings.max_context_private_cloud == 6000
    assert settings.history_window == 5
    assert settings.allow_external_providers is False
    assert settings.prefer_privacy is True
    assert settings.external_providers == DEFAULT_EXTERNAL_PROVIDERS


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("PRD_ALLOW_EXTERNAL_PROVIDERS", "true")
    monkeypatch.setenv("PRD_QUALITY_TARGET", "70")
    settings = load_settings(_env_file=None)
    assert settings.allow_external_providers is True
    assert settings.quality_target == 70.0


def test_external_providers_accepts_comma_separated_string(make_settings):
    settings = make_settings(external_providers="OpenAI, Gemini")
    assert settings.external_providers == ["openai", "gemini"]
    assert make_settings(external_providers="").external_providers == DEFAULT_EXTERNAL_PROVIDERS


def test_thresholds_must_be_fractions(make_settings):
    with pytest.raises(ValidationError):
        make_settings(codebase_confidence_threshold=1.5)


def test_overrides_win_over_environment(monkeypatch):
    monkeypatch.setenv("PRD_HISTORY_WINDOW", "9")
    assert load_settings(_env_file=None, history_window=2).history_window == 2
