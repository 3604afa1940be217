"""Runtime settings management for Ghostly Memory Bank.

Layers (lowest → highest priority):
    config.py defaults → <data dir>/settings.json

Usage:
    from ghostly.settings import load_settings, apply_settings

    settings = load_settings()                          # Merged, validated Settings
    apply_settings({"retrieval": {"min_confidence": 0.6}})  # Partial update
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

import ghostly.config as cfg
from ghostly.errors import ConfigurationError
from ghostly.types import OutputFormat

logger = logging.getLogger(__name__)


# =========================================================================
# Settings model
# =========================================================================

class StorageSettings(BaseModel):
    db_path: Path = cfg.SQLITE_DB


class CaptureSettings(BaseModel):
    session_timeout_minutes: int = Field(default=cfg.SESSION_TIMEOUT_MINUTES, ge=1)
    sequence_window_minutes: float = Field(default=float(cfg.SEQUENCE_WINDOW_MINUTES), gt=0)
    min_sequence_length: int = Field(default=cfg.MIN_SEQUENCE_LENGTH, ge=1)
    error_patterns: list[str] = Field(default_factory=lambda: list(cfg.ERROR_PATTERNS))
    success_patterns: list[str] = Field(default_factory=lambda: list(cfg.SUCCESS_PATTERNS))
    ignore_commands: list[str] = Field(default_factory=lambda: list(cfg.IGNORE_COMMANDS))


class EmbeddingSettings(BaseModel):
    provider: str = cfg.EMBEDDING_PROVIDER
    sbert_model: str = cfg.SBERT_MODEL
    ollama_model: str = cfg.OLLAMA_EMBEDDING_MODEL
    ollama_base_url: str = cfg.OLLAMA_BASE_URL
    timeout_seconds: float = Field(default=cfg.EMBEDDING_TIMEOUT_SECONDS, gt=0)


class ScoringWeights(BaseModel):
    """Blend weights; they are not required to sum to 1."""
    semantic_similarity: float = Field(default=cfg.WEIGHT_SEMANTIC_SIMILARITY, ge=0.0)
    project_match: float = Field(default=cfg.WEIGHT_PROJECT_MATCH, ge=0.0)
    command_similarity: float = Field(default=cfg.WEIGHT_COMMAND_SIMILARITY, ge=0.0)


class TriggerSettings(BaseModel):
    on_error: bool = cfg.TRIGGER_ON_ERROR
    on_repeat_command: bool = cfg.TRIGGER_ON_REPEAT_COMMAND
    on_project_entry: bool = cfg.TRIGGER_ON_PROJECT_ENTRY
    on_branch_change: bool = cfg.TRIGGER_ON_BRANCH_CHANGE


class RetrievalSettings(BaseModel):
    min_confidence: float = Field(default=cfg.MIN_CONFIDENCE, ge=0.0, le=1.0)
    max_memories: int = Field(default=cfg.MAX_MEMORIES, ge=1)
    candidate_limit: int = Field(default=cfg.CANDIDATE_LIMIT, ge=1)
    lexical_similarity: float = Field(default=cfg.LEXICAL_SIMILARITY, ge=0.0, le=1.0)
    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    triggers: TriggerSettings = Field(default_factory=TriggerSettings)


class OutputSettings(BaseModel):
    format: OutputFormat = OutputFormat(cfg.OUTPUT_FORMAT)
    show_suggestions: bool = cfg.SHOW_SUGGESTIONS
    max_stdout_length: int = Field(default=cfg.MAX_STDOUT_LENGTH, ge=0)
    max_stderr_length: int = Field(default=cfg.MAX_STDERR_LENGTH, ge=0)


class Settings(BaseModel):
    """Fully resolved configuration, passed explicitly to every engine."""
    storage: StorageSettings = Field(default_factory=StorageSettings)
    capture: CaptureSettings = Field(default_factory=CaptureSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)


_SECTIONS = set(Settings.model_fields)


# =========================================================================
# JSON persistence
# =========================================================================

def _settings_path(path: Optional[Path]) -> Path:
    return Path(path) if path is not None else cfg.SETTINGS_FILE


def _load_settings_json(path: Path) -> dict[str, Any]:
    """Load settings.json, returning empty dict if missing."""
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read settings file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must contain a JSON object")
    return data


def _save_settings_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, default=str) + "\n")


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge overrides into base; a partial section keeps base keys."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _validate(data: dict[str, Any]) -> Settings:
    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid settings: {problems}") from e


# =========================================================================
# Public API
# =========================================================================

def load_settings(path: Optional[Path] = None) -> Settings:
    """Load defaults merged with the settings file.

    Unknown top-level sections are dropped with a warning. Corrupt files and
    invalid values raise ConfigurationError.
    """
    settings_path = _settings_path(path)
    saved = _load_settings_json(settings_path)
    if not saved:
        logger.info(f"No settings at {settings_path}, using defaults")
        return Settings()

    known = {}
    for section, values in saved.items():
        if section not in _SECTIONS:
            logger.warning(f"Ignoring unknown settings section '{section}'")
            continue
        known[section] = values

    defaults = Settings().model_dump(mode="json")
    return _validate(_merge(defaults, known))


def get_setting(settings: Settings, key: str) -> Any:
    """Read a value by dot path, e.g. 'retrieval.weights.project_match'."""
    value: Any = settings
    for part in key.split("."):
        if isinstance(value, BaseModel) and part in type(value).model_fields:
            value = getattr(value, part)
        else:
            return None
    return value


def _coerce(value: Any, existing: Any) -> Any:
    """Coerce value to match the type of existing."""
    if existing is None:
        return value
    if isinstance(existing, bool):
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes")
        return bool(value)
    if isinstance(existing, int):
        return int(value)
    if isinstance(existing, float):
        return float(value)
    if isinstance(existing, list) and isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


def apply_settings(updates: dict[str, Any], path: Optional[Path] = None) -> dict[str, str]:
    """Apply a partial nested settings update and persist it.

    Args:
        updates: Nested dict of sections → key/value pairs.
        path: Settings file (defaults to the data directory's settings.json).

    Returns:
        Dict of applied changes: {"section.key": "new_value", ...}
    """
    settings_path = _settings_path(path)
    current = _load_settings_json(settings_path)
    defaults = Settings().model_dump(mode="json")
    applied: dict[str, str] = {}

    def _apply(target: dict, baseline: dict, values: dict, prefix: str) -> None:
        for key, value in values.items():
            dotpath = f"{prefix}.{key}"
            if key not in baseline:
                raise ConfigurationError(f"Unknown setting '{dotpath}'")
            if isinstance(baseline[key], dict):
                if not isinstance(value, dict):
                    raise ConfigurationError(f"Setting '{dotpath}' expects a section")
                _apply(target.setdefault(key, {}), baseline[key], value, dotpath)
                continue
            try:
                value = _coerce(value, baseline[key])
            except (ValueError, TypeError) as e:
                raise ConfigurationError(f"Bad value for '{dotpath}': {value!r}") from e
            target[key] = value
            applied[dotpath] = str(value)

    for section, values in updates.items():
        if section not in _SECTIONS:
            raise ConfigurationError(f"Unknown settings section '{section}'")
        if not isinstance(values, dict):
            raise ConfigurationError(f"Settings section '{section}' expects key/value pairs")
        _apply(current.setdefault(section, {}), defaults[section], values, section)

    _validate(_merge(defaults, current))
    _save_settings_json(settings_path, current)
    return applied


def set_setting(key: str, value: Any, path: Optional[Path] = None) -> dict[str, str]:
    """Apply a single dot-path setting, e.g. set_setting('output.format', 'verbose')."""
    parts = key.split(".")
    if len(parts) < 2:
        raise ConfigurationError(f"Setting key must be section.name, got '{key}'")
    nested: dict[str, Any] = {parts[-1]: value}
    for part in reversed(parts[:-1]):
        nested = {part: nested}
    return apply_settings(nested, path)


def reset_settings(path: Optional[Path] = None) -> None:
    """Delete the settings file so defaults apply again."""
    settings_path = _settings_path(path)
    if settings_path.exists():
        settings_path.unlink()
    logger.info("Settings reset to defaults")
