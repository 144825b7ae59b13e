from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from audesc.errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
DEFAULT_PROMPT_PATH = Path("prompts/batch_prompt.txt")
ENV_PREFIX = "AUDESC_"

FALLBACK_BATCH_PROMPT = (
    "These frames were sampled in order from a short window of a video. "
    "Write one or two concise sentences of audio description for a blind viewer, "
    "covering what happens across the window. Do not repeat the previous summary."
)


class PipelineSettings(BaseModel):
    batch_window_seconds: float = 15.0
    frames_in_batch: int = 10
    frame_height: int = 360
    output_dir: Path = Path("data/outputs")
    temp_dir: Path = Path("data/tmp")
    output_extension: str = ".mp3"
    tool_timeout_seconds: int = 600
    drift_warning_seconds: float = 10.0
    keep_temp_files: bool = False


class VisionSettings(BaseModel):
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    endpoint: str | None = None
    max_tokens: int = 300
    timeout_seconds: int = 120


class TTSSettings(BaseModel):
    provider: str = "openai"
    model: str = "gpt-4o-mini-tts"
    voice: str = "alloy"
    api_key: str | None = None
    endpoint: str | None = None
    speed_factor: float = 1.0
    timeout_seconds: int = 120


class PromptSettings(BaseModel):
    batch_prompt: str = ""


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    vision: VisionSettings = Field(default_factory=VisionSettings)
    tts: TTSSettings = Field(default_factory=TTSSettings)
    prompts: PromptSettings = Field(default_factory=PromptSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides."""

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    if resolved_path.exists():
        raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    else:
        raw_config = {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return Settings.model_validate(data)


def resolve_batch_prompt(settings: Settings, prompt_path: Path = DEFAULT_PROMPT_PATH) -> str:
    """Configured prompt, else the bundled prompt file, else a built-in default."""

    if settings.prompts.batch_prompt.strip():
        return settings.prompts.batch_prompt.strip()
    if prompt_path.exists():
        text = prompt_path.read_text(encoding="utf-8").strip()
        if text:
            return text
    return FALLBACK_BATCH_PROMPT


def validate_run_settings(settings: Settings) -> None:
    """Fail before any work starts when the run cannot possibly succeed."""

    pipeline = settings.pipeline
    if pipeline.batch_window_seconds <= 0:
        raise ConfigurationError("pipeline.batch_window_seconds must be positive.")
    if pipeline.frames_in_batch <= 0:
        raise ConfigurationError("pipeline.frames_in_batch must be positive.")
    if not pipeline.output_extension.startswith("."):
        raise ConfigurationError("pipeline.output_extension must start with '.', e.g. '.mp3'.")
    if settings.tts.speed_factor <= 0:
        raise ConfigurationError("tts.speed_factor must be positive.")


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict):
        return

    final_key = path[-1]
    if final_key not in current:
        return

    current[final_key] = _coerce_value(raw_value, current[final_key])


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
