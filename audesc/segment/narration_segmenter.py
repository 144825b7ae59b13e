from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Sequence

from audesc.errors import AudioDescriptionError, CapabilityFailure
from audesc.models import AudioSegment, ProcessingStats, TTSProcessingResult, VisionSegment
from audesc.providers.tts import TTSProvider

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def place_segment(ideal_start: float, last_segment_end: float) -> float:
    """A clip never starts before the previous clip has finished."""

    return max(ideal_start, last_segment_end)


def schedule_segments(ideal_starts: Sequence[float], durations: Sequence[float]) -> list[float]:
    """Placement for a whole sequence of clips, in input order."""

    if len(ideal_starts) != len(durations):
        raise ValueError("ideal_starts and durations must have the same length.")

    placements: list[float] = []
    last_end = 0.0
    for ideal_start, duration in zip(ideal_starts, durations):
        start = place_segment(ideal_start, last_end)
        placements.append(start)
        last_end = start + duration
    return placements


class NarrationSegmenter:
    """Turns vision segments into scheduled, non-overlapping narration clips."""

    def __init__(
        self,
        provider: TTSProvider,
        scratch_dir: Path,
        *,
        audio_extension: str = ".mp3",
        drift_warning_seconds: float | None = None,
        on_segment: ProgressCallback | None = None,
    ) -> None:
        self.provider = provider
        self.scratch_dir = Path(scratch_dir)
        self.audio_extension = audio_extension
        self.drift_warning_seconds = drift_warning_seconds
        self.on_segment = on_segment

    def generate_tts_segments(
        self,
        vision_segments: Sequence[VisionSegment],
        stats: ProcessingStats | None = None,
    ) -> TTSProcessingResult:
        stats = stats if stats is not None else ProcessingStats()
        self.scratch_dir.mkdir(parents=True, exist_ok=True)

        audio_segments: list[AudioSegment] = []
        last_segment_end = 0.0
        total = len(vision_segments)

        for index, vision_segment in enumerate(vision_segments):
            if self.on_segment is not None:
                self.on_segment(index, total)

            audio_path = self.scratch_dir / f"segment_{index}_narration{self.audio_extension}"
            try:
                speech = self.provider.text_to_speech(vision_segment.description, audio_path)
                if speech.duration < 0:
                    raise CapabilityFailure("tts", self.provider.name, f"negative clip duration {speech.duration}")
            except AudioDescriptionError as exc:
                raise exc.annotate(stage="narration", index=index)

            start_time = place_segment(vision_segment.start_time, last_segment_end)
            drift = start_time - vision_segment.start_time
            last_segment_end = start_time + speech.duration

            stats.add_tts_cost(speech.cost, characters=len(vision_segment.description))
            stats.record_drift(drift)
            self._report_drift(index, drift)

            audio_segments.append(
                AudioSegment(
                    audio_file=audio_path,
                    start_time=start_time,
                    duration=speech.duration,
                    description=vision_segment.description,
                    drift=drift,
                )
            )

        return TTSProcessingResult(audio_segments=audio_segments, stats=stats)

    def _report_drift(self, index: int, drift: float) -> None:
        if self.drift_warning_seconds is None or drift <= self.drift_warning_seconds:
            return
        logger.warning(
            "Narration %d starts %.2fs after its window; earlier descriptions are running long",
            index,
            drift,
        )
