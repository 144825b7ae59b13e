from __future__ import annotations

from pathlib import Path

from audesc.ingest.process import ProcessInvoker


def plan_frame_timestamps(
    window_start: float,
    window_end: float,
    frame_count: int,
    duration_seconds: float,
) -> list[float]:
    """Evenly spaced sample times across [window_start, window_end), never past the media end."""

    if frame_count <= 0 or window_end <= window_start:
        return []

    step = (window_end - window_start) / frame_count
    timestamps: list[float] = []
    for index in range(frame_count):
        timestamp = round(window_start + index * step, 3)
        if timestamp >= duration_seconds:
            continue
        timestamps.append(timestamp)
    return timestamps


def build_capture_args(
    video_path: Path,
    timestamp: float,
    output_path: Path,
    frame_height: int = 360,
) -> list[str]:
    args = [
        "-v",
        "error",
        "-y",
        "-ss",
        f"{timestamp:.3f}",
        "-i",
        str(video_path),
        "-frames:v",
        "1",
        "-c:v",
        "mjpeg",
    ]
    if frame_height > 0:
        # -2 keeps the width even while preserving aspect ratio
        args.extend(["-vf", f"scale=-2:{frame_height}"])
    args.append(str(output_path))
    return args


def capture_frame(
    invoker: ProcessInvoker,
    video_path: Path,
    timestamp: float,
    output_path: Path,
    frame_height: int = 360,
) -> bool:
    """Extract one JPEG frame; False when ffmpeg succeeded but wrote nothing (seek past last frame)."""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    invoker.run(build_capture_args(video_path, timestamp, output_path, frame_height))
    return output_path.exists() and output_path.stat().st_size > 0
