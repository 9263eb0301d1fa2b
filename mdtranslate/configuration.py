"""Prepper-backed configuration loader for mdtranslate."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from dotenv import dotenv_values
from prepper import (
    ConfigNotFound,
    Field,
    IoError,
    SchemaError,
    SchemaModel,
    ValidationError,
    model_validator,
)
from prepper.config import ConfigInstance
from prepper.loaders import _parse_file, _path_to_source, discover_file_paths
from prepper.merge import merge_layer
from prepper.provenance import ProvenanceRecorder

from .errors import TranslationProviderConfigurationError

APP_NAME = "mdtranslate"

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_MS = 120000
DEFAULT_MAX_BATCH_TOKENS = 3000
DEFAULT_BATCH_CHARS_PER_TOKEN = 8
DEFAULT_MIN_BATCH_CHARS = 4000
DEFAULT_RETRY_BASE_DELAY_MS = 500
DEFAULT_RETRY_MAX_DELAY_MS = 8000


def derive_max_batch_chars(max_batch_tokens: int) -> int:
    return max(DEFAULT_MIN_BATCH_CHARS, math.ceil(max_batch_tokens * DEFAULT_BATCH_CHARS_PER_TOKEN))


@dataclass(frozen=True)
class TranslatorConfig:
    """Runtime settings threaded through every translation call."""

    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    api_key: Optional[str] = None
    retry_times: int = 3
    temperature: float = 0.2
    max_tokens: int = 2048
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_batch_chars: Optional[int] = None
    max_batch_tokens: int = DEFAULT_MAX_BATCH_TOKENS
    max_batch_segments: int = 100
    retry_base_delay_ms: int = DEFAULT_RETRY_BASE_DELAY_MS
    retry_max_delay_ms: int = DEFAULT_RETRY_MAX_DELAY_MS
    source_language: str = "English"
    target_language: str = "Simplified Chinese"

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def batch_char_limit(self) -> int:
        if self.max_batch_chars is not None:
            return self.max_batch_chars
        return derive_max_batch_chars(self.max_batch_tokens)

    def normalized(self) -> "TranslatorConfig":
        """Fill derived values and validate ranges."""

        errors: list[str] = []

        def check(name: str, value: Any, low: float, high: float = math.inf, integer: bool = True) -> None:
            valid = isinstance(value, (int, float)) and not isinstance(value, bool)
            if valid and integer:
                valid = float(value).is_integer()
            if not valid or not low <= value <= high:
                kind = "integer" if integer else "number"
                errors.append(f'Invalid config "{name}": expected {kind} in [{low}, {high}], got {value!r}')

        if not str(self.model or "").strip():
            errors.append('Invalid config "model": expected a non-empty string')
        if not str(self.base_url or "").strip():
            errors.append('Invalid config "base_url": expected a non-empty string')

        config = replace(self, max_batch_chars=self.batch_char_limit)
        check("retry_times", config.retry_times, 1, 20)
        check("temperature", config.temperature, 0, 2, integer=False)
        check("max_tokens", config.max_tokens, 1)
        check("timeout_ms", config.timeout_ms, 1000)
        check("max_batch_tokens", config.max_batch_tokens, 128)
        check("max_batch_chars", config.max_batch_chars, 1)
        check("max_batch_segments", config.max_batch_segments, 1)
        check("retry_base_delay_ms", config.retry_base_delay_ms, 0, 60000)
        check("retry_max_delay_ms", config.retry_max_delay_ms, 100, 120000)
        if not errors and config.retry_max_delay_ms < config.retry_base_delay_ms:
            errors.append(
                'Invalid config "retry_max_delay_ms": must be greater than or equal '
                "to retry_base_delay_ms"
            )

        if errors:
            bullet_list = "\n".join(f"- {message}" for message in errors)
            raise TranslationProviderConfigurationError(
                "Configuration validation errors detected:\n" + bullet_list
            )
        return config


class MdTranslateConfig(SchemaModel):
    """Schema describing all supported configuration options."""

    OPENAI_API_KEY: str | None = Field(default=None, secret=True)
    OPENAI_BASE_URL: str = Field(
        default=DEFAULT_BASE_URL,
        description="OpenAI-compatible endpoint; a trailing /v1 is optional.",
    )
    MODEL: str = Field(default=DEFAULT_MODEL)
    RETRY_TIMES: int = Field(default=3, description="Attempts per batch.")
    TEMPERATURE: float = Field(default=0.2)
    MAX_TOKENS: int = Field(default=2048)
    TIMEOUT_MS: int = Field(default=DEFAULT_TIMEOUT_MS)
    MAX_BATCH_CHARS: int | None = Field(
        default=None,
        description="Derived from MAX_BATCH_TOKENS when unset.",
    )
    MAX_BATCH_TOKENS: int = Field(default=DEFAULT_MAX_BATCH_TOKENS)
    MAX_BATCH_SEGMENTS: int = Field(default=100)
    RETRY_BASE_DELAY_MS: int = Field(default=DEFAULT_RETRY_BASE_DELAY_MS)
    RETRY_MAX_DELAY_MS: int = Field(default=DEFAULT_RETRY_MAX_DELAY_MS)
    SOURCE_LANGUAGE: str = Field(default="English")
    TARGET_LANGUAGE: str = Field(default="Simplified Chinese")
    GLOSSARY_PATH: str | None = Field(default=None)
    PROMPT_PATH: str | None = Field(default=None)
    JUDGE_PROMPT_PATH: str | None = Field(default=None)
    TRANSLATE_CODE_BLOCKS: bool = Field(default=False)
    LOG_PATH: str = Field(default="mdtranslate.log")
    MDTRANSLATE_PROVIDER_DEBUG: bool = Field(default=False)

    @model_validator(mode="before")
    def _normalise_base_url(data: Any) -> Any:
        if isinstance(data, dict):
            raw_value = data.get("OPENAI_BASE_URL")
            if isinstance(raw_value, str) and raw_value.strip():
                data["OPENAI_BASE_URL"] = raw_value.strip().rstrip("/")
        return data


@lru_cache(maxsize=4)
def _load_config_instance(
    app_dir: Path | None = None,
    config_path: Path | None = None,
) -> ConfigInstance:
    """Load configuration layers once and cache the immutable instance."""

    base_dir = app_dir or Path.cwd()
    try:
        provenance = ProvenanceRecorder()
        combined = _load_discovered_yaml(app_dir=base_dir, provenance=provenance)
        if config_path is not None:
            _load_explicit_yaml(combined, path=config_path, provenance=provenance)
        _merge_env_sources(
            combined,
            provenance=provenance,
            app_dir=base_dir,
            schema=MdTranslateConfig,
        )

        model = MdTranslateConfig.validate(combined, provenance=provenance)
        to_translator_config(model).normalized()

        return ConfigInstance(
            model=model,
            provenance=provenance,
            env_prefix=None,
            schema_cls=MdTranslateConfig,
        )
    except ConfigNotFound as exc:
        raise TranslationProviderConfigurationError(
            f"Configuration file not found: {exc}"
        ) from exc
    except IoError as exc:
        raise TranslationProviderConfigurationError(
            f"Configuration files could not be read: {exc}"
        ) from exc
    except SchemaError as exc:
        raise TranslationProviderConfigurationError(
            f"Configuration schema error: {exc}"
        ) from exc
    except ValidationError as exc:
        issues = _format_validation_errors(exc.to_dict())
        raise TranslationProviderConfigurationError(issues) from exc


def _load_discovered_yaml(
    *,
    app_dir: Path,
    provenance: ProvenanceRecorder,
) -> dict[str, Any]:
    """Load YAML configuration files using Prepper's discovery rules."""

    result: dict[str, Any] = {}
    discovered = discover_file_paths(
        APP_NAME,
        "yaml",
        app_dir=app_dir,
        extra_paths=None,
    )
    for path, label in discovered:
        parsed = _parse_file(path, "yaml")
        if not isinstance(parsed, Mapping):
            raise IoError(
                f"Invalid configuration file {path}: expected a mapping at the root."
            )
        source = _path_to_source(label, "yaml", path)
        merge_layer(result, parsed, provenance=provenance, source=source, layer="file")
    return result


def _load_explicit_yaml(
    target: dict[str, Any],
    *,
    path: Path,
    provenance: ProvenanceRecorder,
) -> None:
    """Merge a configuration file named on the command line."""

    if not path.is_file():
        raise ConfigNotFound(str(path))
    parsed = _parse_file(path, "yaml")
    if not isinstance(parsed, Mapping):
        raise IoError(
            f"Invalid configuration file {path}: expected a mapping at the root."
        )
    # Lower-case keys are accepted for convenience in hand-written files.
    normalised = {str(key).upper(): value for key, value in parsed.items()}
    source = _path_to_source("explicit", "yaml", path)
    merge_layer(target, normalised, provenance=provenance, source=source, layer="file")


def _merge_env_sources(
    target: dict[str, Any],
    *,
    provenance: ProvenanceRecorder,
    app_dir: Path,
    schema: type[SchemaModel],
) -> None:
    """Merge .env and process environment variables into the target mapping.

    Besides the bare field names, ``MDTRANSLATE_<FIELD>`` is accepted.
    """

    allowed = set(schema.__field_infos__.keys())
    prefix = "MDTRANSLATE_"

    def merge_values(values: Mapping[str, str], *, source_prefix: str) -> None:
        for key, value in sorted(values.items()):
            if value is None:
                continue
            field_name = key
            if key not in allowed and key.startswith(prefix):
                field_name = key[len(prefix) :]
            if field_name not in allowed:
                continue
            merge_layer(
                target,
                {field_name: value},
                provenance=provenance,
                source=f"env:{source_prefix}:{key}",
                layer="env",
            )

    dotenv_path = app_dir / ".env"
    if dotenv_path.exists():
        dotenv_content = dotenv_values(dotenv_path)
        merge_values(
            {k: v for k, v in dotenv_content.items() if v is not None},
            source_prefix=".env",
        )

    merge_values(
        {k: v for k, v in os.environ.items() if isinstance(v, str)},
        source_prefix="process",
    )


def _format_validation_errors(entries: Sequence[dict[str, Any]]) -> str:
    details: list[str] = []
    for entry in entries:
        path = entry.get("path") or []
        if isinstance(path, (list, tuple)):
            location = ".".join(str(part) for part in path if part not in {None, ""})
        else:
            location = str(path)
        message = str(entry.get("message") or entry.get("msg") or "Invalid value")
        source = entry.get("source")
        origin = f" (source: {source})" if source else ""
        prefix = f"{location}: " if location else ""
        details.append(f"- {prefix}{message}{origin}")
    return "Configuration validation errors detected:\n" + "\n".join(details)


def to_translator_config(settings: MdTranslateConfig) -> TranslatorConfig:
    return TranslatorConfig(
        model=settings.MODEL,
        base_url=settings.OPENAI_BASE_URL,
        api_key=settings.OPENAI_API_KEY,
        retry_times=settings.RETRY_TIMES,
        temperature=settings.TEMPERATURE,
        max_tokens=settings.MAX_TOKENS,
        timeout_ms=settings.TIMEOUT_MS,
        max_batch_chars=settings.MAX_BATCH_CHARS,
        max_batch_tokens=settings.MAX_BATCH_TOKENS,
        max_batch_segments=settings.MAX_BATCH_SEGMENTS,
        retry_base_delay_ms=settings.RETRY_BASE_DELAY_MS,
        retry_max_delay_ms=settings.RETRY_MAX_DELAY_MS,
        source_language=settings.SOURCE_LANGUAGE,
        target_language=settings.TARGET_LANGUAGE,
    )


def get_config(app_dir: Path | None = None, config_path: Path | None = None) -> ConfigInstance:
    """Return the immutable configuration instance."""

    return _load_config_instance(app_dir=app_dir, config_path=config_path)


def get_settings(app_dir: Path | None = None, config_path: Path | None = None) -> MdTranslateConfig:
    """Return the validated schema model for typed access."""

    return get_config(app_dir=app_dir, config_path=config_path).model()
