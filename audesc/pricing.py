from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from audesc.config import Settings
from audesc.models import ProcessingStats
from audesc.segment.vision_segmenter import count_batches

logger = logging.getLogger(__name__)

ANY_MODEL = "*"

# USD per 1K tokens: (input, output)
VISION_PRICING: dict[str, dict[str, tuple[float, float]]] = {
    "openai": {
        "gpt-4o": (0.0025, 0.01),
        "gpt-4o-mini": (0.00015, 0.0006),
    },
    "ollama": {ANY_MODEL: (0.0, 0.0)},
}

# USD per 1K narrated characters
TTS_PRICING: dict[str, dict[str, float]] = {
    "openai": {
        "tts-1": 0.015,
        "tts-1-hd": 0.030,
        "gpt-4o-mini-tts": 0.012,
    },
    "elevenlabs": {
        "eleven_multilingual_v2": 0.0733,
    },
}
TTS_PRICING["eleven"] = TTS_PRICING["elevenlabs"]

ESTIMATED_TOKENS_PER_FRAME = 1000
ESTIMATED_PROMPT_TOKENS = 100
ESTIMATED_OUTPUT_TOKENS = 75
ESTIMATED_DESCRIPTION_CHARACTERS = 200
# later windows also carry the previous summary and context frames
CONTEXT_TOKEN_FACTOR = 1.2


@dataclass(slots=True)
class CostBreakdown:
    """Priced run cost in USD."""

    vision_input: float = 0.0
    vision_output: float = 0.0
    tts: float = 0.0

    @property
    def total(self) -> float:
        return self.vision_input + self.vision_output + self.tts

    def as_dict(self) -> dict[str, float]:
        return {
            "vision_input": round(self.vision_input, 4),
            "vision_output": round(self.vision_output, 4),
            "tts": round(self.tts, 4),
            "total": round(self.total, 4),
        }


def vision_rates(provider: str, model: str) -> tuple[float, float] | None:
    models = VISION_PRICING.get(provider.strip().lower(), {})
    rates = models.get(model, models.get(ANY_MODEL))
    if rates is None:
        logger.warning('No pricing data for vision provider "%s" and model "%s".', provider, model)
    return rates


def tts_rate(provider: str, model: str) -> float | None:
    models = TTS_PRICING.get(provider.strip().lower(), {})
    rate = models.get(model, models.get(ANY_MODEL))
    if rate is None:
        logger.warning('No pricing data for TTS provider "%s" and model "%s".', provider, model)
    return rate


def price_stats(stats: ProcessingStats, settings: Settings) -> CostBreakdown:
    """Convert the token and character counts of a finished run into dollars.

    Unknown provider/model pairs are priced at zero after a warning.
    """

    input_rate, output_rate = vision_rates(settings.vision.provider, settings.vision.model) or (0.0, 0.0)
    character_rate = tts_rate(settings.tts.provider, settings.tts.model) or 0.0
    return CostBreakdown(
        vision_input=stats.total_vision_input_cost * input_rate / 1000,
        vision_output=stats.total_vision_output_cost * output_rate / 1000,
        tts=stats.total_tts_characters * character_rate / 1000,
    )


def estimate_cost(duration_seconds: float, settings: Settings) -> dict[str, Any]:
    """Projected cost of describing a video of the given length, before any API call.

    Every window is assumed to send ``frames_in_batch`` frames of about 1000
    tokens each plus the prompt, and to return about 75 tokens that narrate to
    200 characters. Windows after the first pay 20% more input for context.
    """

    pipeline = settings.pipeline
    batches = count_batches(duration_seconds, pipeline.batch_window_seconds)
    input_rate, output_rate = vision_rates(settings.vision.provider, settings.vision.model) or (0.0, 0.0)
    character_rate = tts_rate(settings.tts.provider, settings.tts.model) or 0.0

    costs = CostBreakdown()
    if batches:
        frame_tokens = ESTIMATED_TOKENS_PER_FRAME * pipeline.frames_in_batch
        first_input = (frame_tokens + ESTIMATED_PROMPT_TOKENS) * input_rate / 1000
        later_input = (frame_tokens * CONTEXT_TOKEN_FACTOR + ESTIMATED_PROMPT_TOKENS) * input_rate / 1000
        costs = CostBreakdown(
            vision_input=first_input + (batches - 1) * later_input,
            vision_output=batches * ESTIMATED_OUTPUT_TOKENS * output_rate / 1000,
            tts=batches * ESTIMATED_DESCRIPTION_CHARACTERS * character_rate / 1000,
        )

    return {
        "video": {
            "duration_seconds": round(duration_seconds, 3),
            "total_batches": batches,
            "batch_window_seconds": pipeline.batch_window_seconds,
            "frames_in_batch": pipeline.frames_in_batch,
        },
        "providers": {
            "vision": {"provider": settings.vision.provider, "model": settings.vision.model},
            "tts": {"provider": settings.tts.provider, "model": settings.tts.model},
        },
        "costs": costs.as_dict(),
    }
