import pathlib

import pytest

from mdtranslate.configuration import (
    TranslatorConfig,
    derive_max_batch_chars,
    get_settings,
    to_translator_config,
)
from mdtranslate.errors import TranslationProviderConfigurationError


def test_defaults_are_normalized():
    config = TranslatorConfig().normalized()

    assert config.model == "gpt-4o-mini"
    assert config.base_url == "https://api.openai.com/v1"
    assert config.retry_times == 3
    assert config.max_batch_tokens == 3000
    assert config.max_batch_chars == 24000
    assert config.timeout_seconds == pytest.approx(120.0)


def test_derived_batch_chars_has_a_floor():
    assert derive_max_batch_chars(128) == 4000
    assert derive_max_batch_chars(1000) == 8000


def test_explicit_batch_chars_are_kept():
    assert TranslatorConfig(max_batch_chars=500).normalized().max_batch_chars == 500


@pytest.mark.parametrize(
    "overrides",
    [
        {"retry_times": 0},
        {"retry_times": 21},
        {"temperature": 2.5},
        {"max_tokens": 0},
        {"timeout_ms": 999},
        {"max_batch_tokens": 64},
        {"max_batch_segments": 0},
        {"retry_base_delay_ms": -1},
        {"retry_max_delay_ms": 50},
        {"retry_base_delay_ms": 5000, "retry_max_delay_ms": 1000},
        {"model": "  "},
        {"retry_times": 2.5},
    ],
)
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(TranslationProviderConfigurationError):
        TranslatorConfig(**overrides).normalized()


def test_all_errors_are_reported_together():
    with pytest.raises(TranslationProviderConfigurationError) as excinfo:
        TranslatorConfig(retry_times=0, max_tokens=0).normalized()
    message = str(excinfo.value)
    assert '"retry_times"' in message
    assert '"max_tokens"' in message


def test_settings_from_explicit_file(tmp_path: pathlib.Path):
    path = tmp_path / "settings.yaml"
    path.write_text(
        "model: gpt-4.1-mini\n"
        "openai_base_url: https://proxy.example.com/v1/\n"
        "max_batch_tokens: 2000\n"
        "target_language: Japanese\n",
        encoding="utf-8",
    )

    settings = get_settings(app_dir=tmp_path, config_path=path)
    config = to_translator_config(settings).normalized()

    assert config.model == "gpt-4.1-mini"
    assert config.base_url == "https://proxy.example.com/v1"
    assert config.max_batch_chars == 16000
    assert config.target_language == "Japanese"


def test_invalid_file_values_raise(tmp_path: pathlib.Path):
    path = tmp_path / "settings.yaml"
    path.write_text("retry_times: 50\n", encoding="utf-8")

    with pytest.raises(TranslationProviderConfigurationError):
        get_settings(app_dir=tmp_path, config_path=path)


def test_missing_explicit_file_raises(tmp_path: pathlib.Path):
    with pytest.raises(TranslationProviderConfigurationError):
        get_settings(app_dir=tmp_path, config_path=tmp_path / "absent.yaml")
