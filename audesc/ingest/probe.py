from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from audesc.errors import ExternalToolFailure
from audesc.ingest.process import ProcessInvoker


def probe_duration_seconds(media_path: str | Path, timeout_seconds: float | None = None) -> float:
    """Return the container duration of a media file in seconds."""

    source_path = Path(media_path).expanduser().resolve()
    if not source_path.exists():
        raise FileNotFoundError(f"Media file not found: {source_path}")

    args = [
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        str(source_path),
    ]
    stdout = ProcessInvoker("ffprobe", timeout_seconds=timeout_seconds).run(args)
    duration = _to_float(stdout.strip().splitlines()[0] if stdout.strip() else None)
    if duration is None or duration < 0:
        raise ExternalToolFailure(
            "ffprobe",
            f"ffprobe did not report a usable duration for {source_path} (got {stdout.strip()!r})",
            args=args,
        )
    return duration


def probe_media(media_path: str | Path, timeout_seconds: float | None = None) -> dict[str, Any]:
    """Probe format and stream metadata for display in the CLI."""

    source_path = Path(media_path).expanduser().resolve()
    if not source_path.exists():
        raise FileNotFoundError(f"Media file not found: {source_path}")

    args = ["-v", "error", "-print_format", "json", "-show_format", "-show_streams", str(source_path)]
    stdout = ProcessInvoker("ffprobe", timeout_seconds=timeout_seconds).run(args)
    try:
        payload = json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise ExternalToolFailure("ffprobe", "ffprobe returned invalid JSON output", args=args) from exc

    format_entry = payload.get("format", {})
    streams = payload.get("streams", [])
    return {
        "status": "ok",
        "path": str(source_path),
        "format_name": format_entry.get("format_name"),
        "duration_seconds": _to_float(format_entry.get("duration")),
        "audio_stream_count": sum(1 for stream in streams if stream.get("codec_type") == "audio"),
        "video_stream_count": sum(1 for stream in streams if stream.get("codec_type") == "video"),
        "streams": [
            {
                "index": stream.get("index"),
                "codec_type": stream.get("codec_type"),
                "codec_name": stream.get("codec_name"),
                "width": _to_int(stream.get("width")),
                "height": _to_int(stream.get("height")),
                "sample_rate": _to_int(stream.get("sample_rate")),
                "channels": _to_int(stream.get("channels")),
            }
            for stream in streams
        ],
    }


def check_media_tools() -> dict[str, str]:
    """Return the first version line of ffmpeg and ffprobe; raises when either is unusable."""

    versions: dict[str, str] = {}
    for tool in ("ffmpeg", "ffprobe"):
        stdout = ProcessInvoker(tool, timeout_seconds=30).run(["-version"])
        first_line = stdout.strip().splitlines()[0] if stdout.strip() else ""
        versions[tool] = first_line
    return versions


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    try:
        return float(raw_value)
    except (TypeError, ValueError):
        return None


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    return int(raw_value)
