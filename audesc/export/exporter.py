from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

from audesc.models import AudioSegment, ProcessingStats, VisionSegment

LAST_CUE_SECONDS = 2.0
REQUIRED_SEGMENT_KEYS = ("audio_file", "start_time", "duration")


def format_srt_time(seconds: float) -> str:
    """Format seconds as ``hh:mm:ss,mmm``."""

    total_ms = int(max(seconds, 0.0) * 1000)
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def build_srt(segments: Sequence[VisionSegment]) -> str:
    """Subtitle cues for each description; a cue lasts until the next window starts."""

    cues: list[str] = []
    for index, segment in enumerate(segments):
        text = segment.description.strip()
        if not text:
            continue

        if index + 1 < len(segments):
            end = segments[index + 1].start_time
        else:
            end = segment.start_time + LAST_CUE_SECONDS

        cues.append(
            f"{index + 1}\n"
            f"{format_srt_time(segment.start_time)} --> {format_srt_time(end)}\n"
            f"{text}\n"
        )
    return "\n".join(cues).strip()


def build_manifest(
    *,
    video_path: Path,
    audio_description_file_path: Path | None,
    vision_segments: Sequence[VisionSegment],
    audio_segments: Sequence[AudioSegment],
    stats: ProcessingStats,
    composite_strategy: str | None = None,
) -> dict[str, Any]:
    return {
        "video_path": str(video_path),
        "audio_description_file_path": str(audio_description_file_path) if audio_description_file_path else None,
        "composite_strategy": composite_strategy,
        "vision_segments": [
            {"start_time": round(segment.start_time, 3), "description": segment.description}
            for segment in vision_segments
        ],
        "audio_segments": [
            {
                "audio_file": str(segment.audio_file),
                "start_time": round(segment.start_time, 3),
                "duration": round(segment.duration, 3),
                "end_time": round(segment.end_time, 3),
                "drift": round(segment.drift, 3),
                "description": segment.description,
            }
            for segment in audio_segments
        ],
        "stats": {
            "total_frames": stats.total_frames,
            "total_batches": stats.total_batches,
            "total_vision_input_cost": stats.total_vision_input_cost,
            "total_vision_output_cost": stats.total_vision_output_cost,
            "total_tts_cost": stats.total_tts_cost,
            "total_cost": stats.total_cost,
            "max_drift_seconds": round(stats.max_drift_seconds, 3),
            "total_tts_characters": stats.total_tts_characters,
        },
    }


def export_run_outputs(
    output_dir: str | Path,
    basename: str,
    *,
    manifest: dict[str, Any],
    vision_segments: Sequence[VisionSegment],
) -> dict[str, Path]:
    """Write the subtitle track and JSON manifest next to the narration file."""

    resolved_output_dir = Path(output_dir)
    resolved_output_dir.mkdir(parents=True, exist_ok=True)

    srt_path = resolved_output_dir / f"{basename}.srt"
    manifest_path = resolved_output_dir / f"{basename}_manifest.json"

    srt_path.write_text(build_srt(vision_segments) + "\n", encoding="utf-8")
    manifest_path.write_text(json.dumps(manifest, indent=2, ensure_ascii=False), encoding="utf-8")

    return {
        "subtitles": srt_path,
        "manifest": manifest_path,
    }


def load_audio_segments(manifest_path: str | Path) -> list[AudioSegment]:
    """Read scheduled narration clips back from a run manifest."""

    path = Path(manifest_path)
    if not path.exists():
        raise FileNotFoundError(f"Manifest file not found: {path}")

    payload = json.loads(path.read_text(encoding="utf-8"))
    rows = payload.get("audio_segments") if isinstance(payload, dict) else None
    if not isinstance(rows, list):
        raise ValueError("Manifest must be an object with an 'audio_segments' array.")

    segments: list[AudioSegment] = []
    for idx, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            raise ValueError(f"Audio segment row {idx} must be an object.")
        for key in REQUIRED_SEGMENT_KEYS:
            if row.get(key) is None:
                raise ValueError(f"Audio segment row {idx} is missing '{key}'")
        segments.append(
            AudioSegment(
                audio_file=Path(str(row["audio_file"])),
                start_time=_row_float(row, "start_time", idx),
                duration=_row_float(row, "duration", idx),
                description=str(row.get("description", "")),
                drift=_row_float(row, "drift", idx, default=0.0),
            )
        )
    return segments


def _row_float(row: dict[str, Any], key: str, idx: int, default: float | None = None) -> float:
    value = row.get(key, default)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Audio segment row {idx} has a non-numeric '{key}': {value!r}") from exc
