from __future__ import annotations

import json
import logging
import tempfile
from dataclasses import asdict
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, TypeVar

import typer

from audesc.compose import ffmpeg_commands
from audesc.compose.compositor import combine_audio_segments
from audesc.compose.inspect import inspect_track
from audesc.config import Settings, load_settings, resolve_batch_prompt, validate_run_settings
from audesc.errors import AudioDescriptionError, ManualCompositeRequired
from audesc.export.exporter import build_srt, load_audio_segments
from audesc.ingest.probe import check_media_tools, probe_duration_seconds, probe_media
from audesc.ingest.process import ProcessInvoker
from audesc.logging_config import configure_logging
from audesc.pipeline import generate_audio_description
from audesc.pricing import estimate_cost, price_stats
from audesc.providers.vision import create_vision_provider
from audesc.segment.vision_segmenter import VisionSegmenter

app = typer.Typer(help="Generate narrated audio-description tracks for videos.")
config_app = typer.Typer(help="Configuration commands.")

app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIG_OPTION = typer.Option(
    Path("configs/default.yaml"),
    "--config",
    "-c",
    envvar="AUDESC_CONFIG",
    help="Path to YAML configuration file.",
)


def _run_with_progress(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    typer.echo(f"[{step_index}/{total_steps}] {label}...", err=True)
    started_at = perf_counter()
    try:
        result = work()
    except Exception:
        elapsed = perf_counter() - started_at
        typer.echo(f"[{step_index}/{total_steps}] {label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"[{step_index}/{total_steps}] {label} done in {elapsed:.1f}s", err=True)
    return result


def _echo_progress(percent: int, message: str) -> None:
    typer.echo(f"[{percent:3d}%] {message}", err=True)


def _fail(exc: Exception) -> typer.Exit:
    logger.error("Command failed: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    if isinstance(exc, ManualCompositeRequired):
        typer.echo(f"Manual compositing script: {exc.script_path}", err=True)
    return typer.Exit(code=1)


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _jsonable(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_jsonable(item) for item in value]
    return value


@config_app.command("show")
def show_config(config_path: Path = CONFIG_OPTION) -> None:
    """Print resolved runtime configuration (API keys masked)."""

    settings = _bootstrap(config_path)
    payload = settings.model_dump(mode="json")
    for section in ("vision", "tts"):
        if payload[section].get("api_key"):
            payload[section]["api_key"] = "***"
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def probe(video_path: str, config_path: Path = CONFIG_OPTION) -> None:
    """Check ffmpeg/ffprobe and print media metadata."""

    settings = _bootstrap(config_path)
    timeout = settings.pipeline.tool_timeout_seconds or None
    try:
        tools = check_media_tools()
        result = probe_media(video_path, timeout_seconds=timeout)
    except (AudioDescriptionError, FileNotFoundError) as exc:
        raise _fail(exc) from exc
    typer.echo(json.dumps({**result, "tools": tools}, indent=2))


@app.command()
def estimate(video_path: str, config_path: Path = CONFIG_OPTION) -> None:
    """Estimate the API cost of a full run from the video duration."""

    settings = _bootstrap(config_path)
    try:
        validate_run_settings(settings)
        duration = probe_duration_seconds(video_path, timeout_seconds=settings.pipeline.tool_timeout_seconds or None)
    except (AudioDescriptionError, FileNotFoundError) as exc:
        raise _fail(exc) from exc
    typer.echo(json.dumps(estimate_cost(duration, settings), indent=2))


@app.command()
def describe(
    video_path: str,
    config_path: Path = CONFIG_OPTION,
    srt_path: Path | None = typer.Option(None, "--srt", help="Optional path for a subtitle file of the descriptions."),
) -> None:
    """Run only the vision stage and print the timed descriptions."""

    settings = _bootstrap(config_path)
    pipeline = settings.pipeline
    try:
        validate_run_settings(settings)
        provider = create_vision_provider(settings.vision)
        temp_root = Path(pipeline.temp_dir).expanduser().resolve()
        temp_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=temp_root) as scratch:
            result = VisionSegmenter(
                provider,
                Path(scratch),
                batch_window_seconds=pipeline.batch_window_seconds,
                frames_in_batch=pipeline.frames_in_batch,
                frame_height=pipeline.frame_height,
                prompt=resolve_batch_prompt(settings),
                tool_timeout_seconds=pipeline.tool_timeout_seconds or None,
                on_batch=lambda index, total: typer.echo(f"Processing batch {index + 1} of {total}", err=True),
            ).generate_vision_segments(video_path)
    except (AudioDescriptionError, FileNotFoundError) as exc:
        raise _fail(exc) from exc

    if srt_path is not None:
        srt_path.parent.mkdir(parents=True, exist_ok=True)
        srt_path.write_text(build_srt(result.segments) + "\n", encoding="utf-8")

    typer.echo(
        json.dumps(
            {
                "duration_seconds": result.duration_seconds,
                "frame_error_found": result.frame_error_found,
                "segments": [asdict(segment) for segment in result.segments],
                "stats": asdict(result.stats),
            },
            indent=2,
        )
    )


@app.command()
def compose(
    manifest_path: Path = typer.Argument(..., help="Run manifest JSON listing scheduled narration clips."),
    output_path: Path = typer.Argument(..., help="Destination audio file (.wav, .mp3, .m4a, .flac, .ogg)."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Re-composite narration clips from a manifest (runs kept with keep_temp_files)."""

    settings = _bootstrap(config_path)
    try:
        segments = _run_with_progress(1, 2, "Load manifest", lambda: load_audio_segments(manifest_path))
        temp_root = Path(settings.pipeline.temp_dir).expanduser().resolve()
        temp_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=temp_root) as scratch:
            result = _run_with_progress(
                2,
                2,
                "Combine audio segments",
                lambda: combine_audio_segments(
                    segments,
                    output_path,
                    scratch,
                    tool_timeout_seconds=settings.pipeline.tool_timeout_seconds or None,
                ),
            )
    except (AudioDescriptionError, FileNotFoundError, ValueError) as exc:
        raise _fail(exc) from exc

    typer.echo(
        json.dumps(
            {
                "output_path": str(result.output_path),
                "strategy": result.strategy.value,
                "total_duration": round(result.total_duration, 3),
                "segment_count": result.segment_count,
            },
            indent=2,
        )
    )


@app.command()
def verify(audio_path: Path, config_path: Path = CONFIG_OPTION) -> None:
    """Report the duration and audible narration spans of a composite track."""

    settings = _bootstrap(config_path)
    try:
        if audio_path.suffix.lower() == ffmpeg_commands.LOSSLESS_EXTENSION:
            report = inspect_track(audio_path)
        else:
            with tempfile.TemporaryDirectory() as scratch:
                wav_path = Path(scratch) / f"{audio_path.stem}.wav"
                ProcessInvoker("ffmpeg", timeout_seconds=settings.pipeline.tool_timeout_seconds or None).run(
                    ffmpeg_commands.standardize_args(audio_path, wav_path)
                )
                report = inspect_track(wav_path)
                report["audio_path"] = str(audio_path)
    except (AudioDescriptionError, FileNotFoundError, ValueError) as exc:
        raise _fail(exc) from exc
    typer.echo(json.dumps(report, indent=2))


@app.command("run")
def run_pipeline(video_path: str, config_path: Path = CONFIG_OPTION) -> None:
    """Run the complete pipeline: describe, narrate and composite."""

    settings = _bootstrap(config_path)
    try:
        result = generate_audio_description(video_path, settings, on_progress=_echo_progress)
    except (AudioDescriptionError, FileNotFoundError, ValueError) as exc:
        raise _fail(exc) from exc

    typer.echo(
        json.dumps(
            {
                "status": "ok",
                "video_path": str(result.video_path),
                "audio_description_file_path": str(result.audio_description_file_path),
                "composite_strategy": result.composite_strategy,
                "segment_count": len(result.audio_segments),
                "stats": asdict(result.stats),
                "costs": price_stats(result.stats, settings).as_dict(),
                "artifacts": _jsonable(result.artifacts),
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    app()
