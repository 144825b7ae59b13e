from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True, frozen=True)
class VisionSegment:
    """Description of one sampling window, anchored to its ideal start time."""

    start_time: float
    description: str


@dataclass(slots=True)
class BatchContext:
    """Continuity handed from one window to the next."""

    last_description: str = ""
    last_frame_paths: list[Path] = field(default_factory=list)


@dataclass(slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


@dataclass(slots=True)
class VisionResult:
    description: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(slots=True)
class SpeechResult:
    """Measured duration (seconds) and provider cost of one narration clip."""

    duration: float
    cost: float


@dataclass(slots=True)
class AudioSegment:
    """Narration clip scheduled on the output timeline."""

    audio_file: Path
    start_time: float
    duration: float
    description: str
    drift: float = 0.0

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


@dataclass(slots=True)
class ProcessingStats:
    """Run-wide accumulator; fields only ever grow."""

    total_frames: int = 0
    total_batches: int = 0
    total_vision_input_cost: float = 0.0
    total_vision_output_cost: float = 0.0
    total_tts_cost: float = 0.0
    total_cost: float = 0.0
    max_drift_seconds: float = 0.0
    total_tts_characters: int = 0

    def add_vision_usage(self, usage: TokenUsage) -> None:
        self.total_vision_input_cost += max(usage.input_tokens, 0)
        self.total_vision_output_cost += max(usage.output_tokens, 0)
        self.total_cost += max(usage.total_tokens, 0)

    def add_tts_cost(self, cost: float, characters: int = 0) -> None:
        self.total_tts_cost += max(cost, 0.0)
        self.total_cost += max(cost, 0.0)
        self.total_tts_characters += max(characters, 0)

    def record_drift(self, drift: float) -> None:
        self.max_drift_seconds = max(self.max_drift_seconds, drift)


@dataclass(slots=True)
class VisionProcessingResult:
    segments: list[VisionSegment]
    stats: ProcessingStats
    duration_seconds: float
    frame_error_found: bool = False


@dataclass(slots=True)
class TTSProcessingResult:
    audio_segments: list[AudioSegment]
    stats: ProcessingStats


@dataclass(slots=True)
class PipelineResult:
    """Completion payload of a full run."""

    video_path: Path
    audio_description_file_path: Path
    vision_segments: list[VisionSegment]
    audio_segments: list[AudioSegment]
    stats: ProcessingStats
    composite_strategy: str
    artifacts: dict[str, Path] = field(default_factory=dict)
