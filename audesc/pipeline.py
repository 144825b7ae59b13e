from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Sequence

from audesc.compose.compositor import DEFAULT_STRATEGIES, CompositeStrategy, combine_audio_segments
from audesc.config import Settings, resolve_batch_prompt, validate_run_settings
from audesc.errors import AudioDescriptionError, ManualCompositeRequired
from audesc.export.exporter import build_manifest, export_run_outputs
from audesc.models import PipelineResult
from audesc.providers.tts import TTSProvider, create_tts_provider
from audesc.providers.vision import VisionProvider, create_vision_provider
from audesc.segment.narration_segmenter import NarrationSegmenter
from audesc.segment.vision_segmenter import VisionSegmenter

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


def output_basename(video_path: Path) -> str:
    return f"{video_path.stem}_description"


def generate_audio_description(
    video_path: str | Path,
    settings: Settings,
    *,
    vision_provider: VisionProvider | None = None,
    tts_provider: TTSProvider | None = None,
    on_progress: ProgressCallback | None = None,
    strategies: Sequence[CompositeStrategy] = DEFAULT_STRATEGIES,
) -> PipelineResult:
    """Describe, narrate and composite one video into a single narration track.

    Stages run strictly in sequence; any failure aborts the run and is re-raised
    with the failing stage (and batch/segment index) attached.
    """

    source_path = Path(video_path).expanduser().resolve()
    if not source_path.exists():
        raise FileNotFoundError(f"Video file not found: {source_path}")

    pipeline_settings = settings.pipeline
    timeout = pipeline_settings.tool_timeout_seconds or None
    report = on_progress or _ignore_progress

    stage = "setup"
    scratch_dir: Path | None = None
    keep_scratch = pipeline_settings.keep_temp_files
    try:
        validate_run_settings(settings)
        vision = vision_provider or create_vision_provider(settings.vision)
        tts = tts_provider or create_tts_provider(settings.tts, tool_timeout_seconds=timeout)
        prompt = resolve_batch_prompt(settings)

        temp_root = Path(pipeline_settings.temp_dir).expanduser().resolve()
        temp_root.mkdir(parents=True, exist_ok=True)
        scratch_dir = Path(tempfile.mkdtemp(prefix=f"{source_path.stem}_", dir=temp_root))
        report(5, "Initialized providers")

        stage = "vision"
        vision_result = VisionSegmenter(
            vision,
            scratch_dir / "frames",
            batch_window_seconds=pipeline_settings.batch_window_seconds,
            frames_in_batch=pipeline_settings.frames_in_batch,
            frame_height=pipeline_settings.frame_height,
            prompt=prompt,
            tool_timeout_seconds=timeout,
            on_batch=lambda index, total: report(
                10 + (60 * index) // max(total, 1),
                f"Processing batch {index + 1} of {total}",
            ),
        ).generate_vision_segments(source_path)
        if not vision_result.segments:
            raise AudioDescriptionError(f"{source_path.name} has no playable duration; nothing to describe.")

        stage = "narration"
        tts_result = NarrationSegmenter(
            tts,
            scratch_dir / "narration",
            drift_warning_seconds=pipeline_settings.drift_warning_seconds,
            on_segment=lambda index, total: report(
                70 + (15 * index) // max(total, 1),
                f"Narrating segment {index + 1} of {total}",
            ),
        ).generate_tts_segments(vision_result.segments, vision_result.stats)

        stage = "composite"
        report(85, "Combining audio segments...")
        output_dir = Path(pipeline_settings.output_dir).expanduser().resolve()
        basename = output_basename(source_path)
        output_path = output_dir / f"{basename}{pipeline_settings.output_extension}"
        composite = combine_audio_segments(
            tts_result.audio_segments,
            output_path,
            scratch_dir / "composite",
            strategies=strategies,
            tool_timeout_seconds=timeout,
        )

        stage = "export"
        manifest = build_manifest(
            video_path=source_path,
            audio_description_file_path=composite.output_path,
            vision_segments=vision_result.segments,
            audio_segments=tts_result.audio_segments,
            stats=tts_result.stats,
            composite_strategy=composite.strategy.value,
        )
        artifacts = export_run_outputs(
            output_dir,
            basename,
            manifest=manifest,
            vision_segments=vision_result.segments,
        )
    except ManualCompositeRequired:
        # the emitted script reads narration clips from the scratch directory
        keep_scratch = True
        raise
    except AudioDescriptionError as exc:
        exc.annotate(stage=stage)
        logger.error("Audio description failed during %s: %s", exc.location(), exc.message)
        raise
    finally:
        if scratch_dir is not None and not keep_scratch:
            shutil.rmtree(scratch_dir, ignore_errors=True)

    report(100, "Audio description complete")
    logger.info("Audio description written to %s", composite.output_path)
    return PipelineResult(
        video_path=source_path,
        audio_description_file_path=composite.output_path,
        vision_segments=vision_result.segments,
        audio_segments=tts_result.audio_segments,
        stats=tts_result.stats,
        composite_strategy=composite.strategy.value,
        artifacts=artifacts,
    )


def _ignore_progress(percent: int, message: str) -> None:
    return None
