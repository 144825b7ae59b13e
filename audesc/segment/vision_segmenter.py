from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Callable

from audesc.errors import AudioDescriptionError, ExternalToolFailure
from audesc.ingest.frames import capture_frame, plan_frame_timestamps
from audesc.ingest.probe import probe_duration_seconds
from audesc.ingest.process import ProcessInvoker
from audesc.models import BatchContext, ProcessingStats, VisionProcessingResult, VisionSegment
from audesc.providers.vision import VisionProvider

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
CONTEXT_FRAME_COUNT = 2


def count_batches(duration_seconds: float, window_seconds: float) -> int:
    if duration_seconds <= 0:
        return 0
    return math.ceil(duration_seconds / window_seconds)


def batch_window(batch_index: int, window_seconds: float, duration_seconds: float) -> tuple[float, float]:
    """Ideal [start, end) of a window; the last window is clipped to the media end."""

    ideal_start = batch_index * window_seconds
    return ideal_start, min(ideal_start + window_seconds, duration_seconds)


class VisionSegmenter:
    """Walks the video in fixed windows and describes each one with rolling context."""

    def __init__(
        self,
        provider: VisionProvider,
        scratch_dir: Path,
        *,
        batch_window_seconds: float = 15.0,
        frames_in_batch: int = 10,
        frame_height: int = 360,
        prompt: str = "",
        tool_timeout_seconds: float | None = None,
        on_batch: ProgressCallback | None = None,
    ) -> None:
        self.provider = provider
        self.scratch_dir = Path(scratch_dir)
        self.batch_window_seconds = batch_window_seconds
        self.frames_in_batch = frames_in_batch
        self.frame_height = frame_height
        self.prompt = prompt
        self.on_batch = on_batch
        self._ffmpeg = ProcessInvoker("ffmpeg", timeout_seconds=tool_timeout_seconds)
        self._tool_timeout_seconds = tool_timeout_seconds

    def generate_vision_segments(self, video_path: str | Path) -> VisionProcessingResult:
        source_path = Path(video_path).expanduser().resolve()
        try:
            duration = probe_duration_seconds(source_path, timeout_seconds=self._tool_timeout_seconds)
        except AudioDescriptionError as exc:
            raise exc.annotate(stage="probe")

        total_batches = count_batches(duration, self.batch_window_seconds)
        stats = ProcessingStats(total_batches=total_batches)
        segments: list[VisionSegment] = []
        context: BatchContext | None = None
        frame_error_found = False

        logger.info(
            "Describing %s: %.3fs in %d windows of %ss",
            source_path.name,
            duration,
            total_batches,
            self.batch_window_seconds,
        )
        self.scratch_dir.mkdir(parents=True, exist_ok=True)

        for batch_index in range(total_batches):
            if self.on_batch is not None:
                self.on_batch(batch_index, total_batches)

            ideal_start, batch_end = batch_window(batch_index, self.batch_window_seconds, duration)
            frame_paths: list[Path] = []
            try:
                frame_paths, missing = self._capture_batch_frames(source_path, batch_index, ideal_start, batch_end, duration)
                frame_error_found = frame_error_found or missing
                stats.total_frames += len(frame_paths)

                result = self.provider.describe_batch(frame_paths, context, self.prompt)
            except AudioDescriptionError as exc:
                raise exc.annotate(stage="vision", index=batch_index)
            finally:
                _remove_files(frame_paths)

            segments.append(VisionSegment(start_time=ideal_start, description=result.description))
            stats.add_vision_usage(result.usage)
            context = BatchContext(
                last_description=result.description,
                last_frame_paths=frame_paths[-CONTEXT_FRAME_COUNT:],
            )
            logger.debug("Window %d/%d [%.3f, %.3f): %s", batch_index + 1, total_batches, ideal_start, batch_end, result.description)

        return VisionProcessingResult(
            segments=segments,
            stats=stats,
            duration_seconds=duration,
            frame_error_found=frame_error_found,
        )

    def _capture_batch_frames(
        self,
        video_path: Path,
        batch_index: int,
        window_start: float,
        window_end: float,
        duration: float,
    ) -> tuple[list[Path], bool]:
        timestamps = plan_frame_timestamps(window_start, window_end, self.frames_in_batch, duration)
        frame_paths: list[Path] = []
        missing = False
        try:
            for frame_index, timestamp in enumerate(timestamps):
                frame_path = self.scratch_dir / f"batch_{batch_index}_frame_{frame_index}.jpg"
                if capture_frame(self._ffmpeg, video_path, timestamp, frame_path, self.frame_height):
                    frame_paths.append(frame_path)
                else:
                    missing = True
                    logger.warning("No frame decoded at %.3fs (window %d); skipping it", timestamp, batch_index)
        except AudioDescriptionError:
            _remove_files(frame_paths)
            raise

        if not frame_paths:
            raise ExternalToolFailure(
                "ffmpeg",
                f"No frames could be extracted for window [{window_start:.3f}, {window_end:.3f})",
            )
        return frame_paths, missing


def _remove_files(paths: list[Path]) -> None:
    for path in paths:
        path.unlink(missing_ok=True)
