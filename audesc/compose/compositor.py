from __future__ import annotations

import logging
import shlex
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence

from audesc.compose import ffmpeg_commands as cmd
from audesc.errors import AudioDescriptionError, ExternalToolFailure, ManualCompositeRequired
from audesc.ingest.process import ProcessInvoker
from audesc.models import AudioSegment

logger = logging.getLogger(__name__)

SILENT_BASE_NAME = "silent_base.wav"
INTERMEDIATE_NAME = "composite_intermediate.wav"
FILTER_SCRIPT_NAME = "overlay_filter.txt"


class CompositeStrategy(str, Enum):
    """Compositing tiers, tried in order until one succeeds."""

    SEQUENTIAL_FOLD = "sequential_fold"
    FILTER_GRAPH = "filter_graph"
    MANUAL_SCRIPT = "manual_script"


DEFAULT_STRATEGIES = (
    CompositeStrategy.SEQUENTIAL_FOLD,
    CompositeStrategy.FILTER_GRAPH,
    CompositeStrategy.MANUAL_SCRIPT,
)


@dataclass(slots=True)
class CompositeResult:
    output_path: Path
    strategy: CompositeStrategy
    total_duration: float
    segment_count: int


def total_track_duration(segments: Sequence[AudioSegment]) -> float:
    return max((segment.start_time + segment.duration for segment in segments), default=0.0)


def combine_audio_segments(
    segments: Sequence[AudioSegment],
    output_path: str | Path,
    temp_dir: str | Path,
    *,
    strategies: Sequence[CompositeStrategy] = DEFAULT_STRATEGIES,
    tool_timeout_seconds: float | None = None,
) -> CompositeResult:
    """Mix every narration clip onto one silent track at its scheduled offset."""

    if not segments:
        raise ValueError("At least one audio segment is required to build a composite track.")

    destination = Path(output_path)
    # reject unsupported containers before any mixing work
    cmd.encoder_args(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    scratch = Path(temp_dir)
    scratch.mkdir(parents=True, exist_ok=True)

    ordered = sorted(segments, key=lambda segment: segment.start_time)
    total_duration = total_track_duration(ordered)
    ffmpeg = ProcessInvoker("ffmpeg", timeout_seconds=tool_timeout_seconds)

    last_failure: ExternalToolFailure | None = None
    for strategy in strategies:
        if strategy is CompositeStrategy.MANUAL_SCRIPT:
            script_path = write_manual_script(ordered, destination, scratch, total_duration)
            logger.error("Wrote manual compositing script to %s", script_path)
            raise ManualCompositeRequired(script_path, last_failure)

        runner = _TIER_RUNNERS[strategy]
        try:
            runner(ffmpeg, ordered, destination, scratch, total_duration)
        except ExternalToolFailure as exc:
            last_failure = exc
            logger.warning("Compositing tier %s failed: %s", strategy.value, exc)
            continue

        logger.info(
            "Composited %d narration clips into %s (%.3fs, %s)",
            len(ordered),
            destination,
            total_duration,
            strategy.value,
        )
        return CompositeResult(
            output_path=destination,
            strategy=strategy,
            total_duration=total_duration,
            segment_count=len(ordered),
        )

    if last_failure is None:
        raise ValueError("At least one compositing strategy is required.")
    raise last_failure


def _fold_segments(
    ffmpeg: ProcessInvoker,
    segments: Sequence[AudioSegment],
    destination: Path,
    scratch: Path,
    total_duration: float,
) -> None:
    silent_base = scratch / SILENT_BASE_NAME
    current_mix = silent_base
    created: list[Path] = [silent_base]

    try:
        _run_stage(ffmpeg, cmd.silent_base_args(total_duration, silent_base), stage="silence")

        for index, segment in enumerate(segments):
            standardized = scratch / f"segment_{index}_std.wav"
            mixed = scratch / f"segment_{index}_mix.wav"
            created.extend([standardized, mixed])

            _run_stage(ffmpeg, cmd.standardize_args(segment.audio_file, standardized), stage="standardize", index=index)
            _run_stage(
                ffmpeg,
                cmd.delay_mix_args(current_mix, standardized, segment.start_time, mixed),
                stage="mix",
                index=index,
            )

            if current_mix != silent_base:
                current_mix.unlink(missing_ok=True)
            standardized.unlink(missing_ok=True)
            current_mix = mixed
            logger.debug("Added narration %d/%d at %.3fs", index + 1, len(segments), segment.start_time)

        _finalize(ffmpeg, current_mix, destination)
    finally:
        _remove_files(created)


def _mix_filter_graph(
    ffmpeg: ProcessInvoker,
    segments: Sequence[AudioSegment],
    destination: Path,
    scratch: Path,
    total_duration: float,
) -> None:
    silent_base = scratch / SILENT_BASE_NAME
    script_path = scratch / FILTER_SCRIPT_NAME
    intermediate = scratch / INTERMEDIATE_NAME
    standardized = [scratch / f"std_{index}.wav" for index in range(len(segments))]

    try:
        _run_stage(ffmpeg, cmd.silent_base_args(total_duration, silent_base), stage="silence")
        for index, (segment, std_path) in enumerate(zip(segments, standardized)):
            _run_stage(ffmpeg, cmd.standardize_args(segment.audio_file, std_path), stage="standardize", index=index)

        script_path.write_text(cmd.filter_graph_script([segment.start_time for segment in segments]), encoding="utf-8")
        _run_stage(ffmpeg, cmd.filter_graph_args(silent_base, standardized, script_path, intermediate), stage="mix")
        _finalize(ffmpeg, intermediate, destination)
    finally:
        _remove_files([silent_base, script_path, intermediate, *standardized])


def _finalize(ffmpeg: ProcessInvoker, lossless_path: Path, destination: Path) -> None:
    if destination.suffix.lower() == cmd.LOSSLESS_EXTENSION:
        shutil.copyfile(lossless_path, destination)
        return
    _run_stage(ffmpeg, cmd.transcode_args(lossless_path, destination), stage="transcode")


def write_manual_script(
    segments: Sequence[AudioSegment],
    destination: Path,
    scratch: Path,
    total_duration: float,
) -> Path:
    """Emit a bash script that performs the N-way mix by hand."""

    script_path = destination.with_name(f"{destination.stem}_ffmpeg_cmd.sh")
    silent_base = scratch / SILENT_BASE_NAME
    filter_path = scratch / "filter.txt"
    standardized = [scratch / f"std_{index}.wav" for index in range(len(segments))]

    lines = ["#!/bin/bash", "set -euo pipefail", "", f"mkdir -p {shlex.quote(str(scratch))}", ""]
    lines.append("# Convert every narration clip to 44.1 kHz stereo PCM")
    for segment, std_path in zip(segments, standardized):
        lines.append(_shell_command(cmd.standardize_args(segment.audio_file, std_path)))

    lines.extend(["", "# Silent base track spanning the whole description"])
    lines.append(_shell_command(cmd.silent_base_args(total_duration, silent_base)))

    lines.extend(["", "# Overlay filter graph", f"cat > {shlex.quote(str(filter_path))} << 'EOL'"])
    lines.append(cmd.filter_graph_script([segment.start_time for segment in segments]))
    lines.append("EOL")

    final_args = cmd.filter_graph_args(silent_base, standardized, filter_path, destination)
    # filter_graph_args always writes PCM; swap in the destination encoder
    final_args[-3:-1] = cmd.encoder_args(destination)
    lines.extend(["", "# Mix and encode", _shell_command(final_args)])

    cleanup = " ".join(shlex.quote(str(path)) for path in [silent_base, filter_path, *standardized])
    lines.extend(["", "# Clean up", f"rm -f {cleanup}", ""])

    script_path.write_text("\n".join(lines), encoding="utf-8")
    script_path.chmod(0o755)
    return script_path


def _run_stage(ffmpeg: ProcessInvoker, args: list[str], *, stage: str, index: int | None = None) -> None:
    try:
        ffmpeg.run(args)
    except AudioDescriptionError as exc:
        raise exc.annotate(stage=stage, index=index)


def _shell_command(args: list[str]) -> str:
    return " ".join(shlex.quote(part) for part in ["ffmpeg", *args])


def _remove_files(paths: Sequence[Path]) -> None:
    for path in paths:
        path.unlink(missing_ok=True)


_TierRunner = Callable[[ProcessInvoker, Sequence[AudioSegment], Path, Path, float], None]

_TIER_RUNNERS: dict[CompositeStrategy, _TierRunner] = {
    CompositeStrategy.SEQUENTIAL_FOLD: _fold_segments,
    CompositeStrategy.FILTER_GRAPH: _mix_filter_graph,
}
