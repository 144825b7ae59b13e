from __future__ import annotations

from pathlib import Path
from typing import Sequence

SAMPLE_RATE = 44100
CHANNELS = 2
PCM_CODEC = "pcm_s16le"
LOSSLESS_EXTENSION = ".wav"

# output extension -> encoder arguments
TRANSCODE_ARGS: dict[str, list[str]] = {
    ".mp3": ["-c:a", "libmp3lame", "-q:a", "2"],
    ".m4a": ["-c:a", "aac", "-b:a", "192k"],
    ".aac": ["-c:a", "aac", "-b:a", "192k"],
    ".flac": ["-c:a", "flac"],
    ".ogg": ["-c:a", "libvorbis", "-q:a", "5"],
}

_BASE_ARGS = ["-v", "error", "-y"]


def silent_base_args(duration_seconds: float, output_path: Path) -> list[str]:
    return [
        *_BASE_ARGS,
        "-f",
        "lavfi",
        "-i",
        f"anullsrc=r={SAMPLE_RATE}:cl=stereo",
        "-t",
        f"{duration_seconds:.3f}",
        "-c:a",
        PCM_CODEC,
        str(output_path),
    ]


def standardize_args(source_path: Path, output_path: Path) -> list[str]:
    return [
        *_BASE_ARGS,
        "-i",
        str(source_path),
        "-ar",
        str(SAMPLE_RATE),
        "-ac",
        str(CHANNELS),
        "-c:a",
        PCM_CODEC,
        str(output_path),
    ]


def delay_ms(start_time: float) -> int:
    return int(round(start_time * 1000))


def delay_mix_filter(start_time: float) -> str:
    """Delay input 1 and sum it onto input 0 without volume normalization."""

    delay = delay_ms(start_time)
    return (
        f"[1:a]adelay={delay}|{delay}[delayed];"
        "[0:a][delayed]amix=inputs=2:duration=first:dropout_transition=0:normalize=0[out]"
    )


def delay_mix_args(current_mix: Path, segment_path: Path, start_time: float, output_path: Path) -> list[str]:
    return [
        *_BASE_ARGS,
        "-i",
        str(current_mix),
        "-i",
        str(segment_path),
        "-filter_complex",
        delay_mix_filter(start_time),
        "-map",
        "[out]",
        "-c:a",
        PCM_CODEC,
        str(output_path),
    ]


def filter_graph_script(start_times: Sequence[float]) -> str:
    """N-way overlay: every input after the base is delayed then summed in one amix."""

    lines: list[str] = []
    for index, start in enumerate(start_times, start=1):
        delay = delay_ms(start)
        lines.append(f"[{index}:a]adelay={delay}|{delay}[a{index - 1}];")
    labels = "".join(f"[a{index}]" for index in range(len(start_times)))
    lines.append(f"[0:a]{labels}amix=inputs={len(start_times) + 1}:normalize=0:duration=first[aout]")
    return "\n".join(lines)


def filter_graph_args(base_path: Path, segment_paths: Sequence[Path], script_path: Path, output_path: Path) -> list[str]:
    args = [*_BASE_ARGS, "-i", str(base_path)]
    for segment_path in segment_paths:
        args.extend(["-i", str(segment_path)])
    args.extend(
        [
            "-filter_complex_script",
            str(script_path),
            "-map",
            "[aout]",
            "-c:a",
            PCM_CODEC,
            str(output_path),
        ]
    )
    return args


def encoder_args(output_path: Path) -> list[str]:
    extension = output_path.suffix.lower()
    if extension == LOSSLESS_EXTENSION:
        return ["-c:a", PCM_CODEC]
    if extension not in TRANSCODE_ARGS:
        supported = ", ".join(sorted([LOSSLESS_EXTENSION, *TRANSCODE_ARGS]))
        raise ValueError(f"Unsupported output extension '{extension}'. Expected one of: {supported}.")
    return list(TRANSCODE_ARGS[extension])


def transcode_args(source_path: Path, output_path: Path) -> list[str]:
    return [*_BASE_ARGS, "-i", str(source_path), *encoder_args(output_path), str(output_path)]


def atempo_chain(speed_factor: float) -> str:
    """atempo accepts 0.5..2.0 per stage, so larger changes are chained."""

    if speed_factor <= 0:
        raise ValueError("speed_factor must be positive.")

    stages: list[float] = []
    remaining = speed_factor
    while remaining > 2.0:
        stages.append(2.0)
        remaining /= 2.0
    while remaining < 0.5:
        stages.append(0.5)
        remaining /= 0.5
    stages.append(remaining)
    return ",".join(f"atempo={stage:.6g}" for stage in stages)


def tempo_args(source_path: Path, output_path: Path, speed_factor: float) -> list[str]:
    return [
        *_BASE_ARGS,
        "-i",
        str(source_path),
        "-filter:a",
        atempo_chain(speed_factor),
        *encoder_args(output_path),
        str(output_path),
    ]
