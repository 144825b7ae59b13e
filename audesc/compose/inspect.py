from __future__ import annotations

import wave
from pathlib import Path
from typing import Any

import numpy as np

DEFAULT_FRAME_SECONDS = 0.05
DEFAULT_SILENCE_THRESHOLD = 1e-3


def inspect_track(
    audio_path: str | Path,
    frame_seconds: float = DEFAULT_FRAME_SECONDS,
    silence_threshold: float = DEFAULT_SILENCE_THRESHOLD,
) -> dict[str, Any]:
    """Report duration and the spans of a lossless track that carry audible narration."""

    source_path = Path(audio_path).expanduser().resolve()
    if not source_path.exists():
        raise FileNotFoundError(f"Audio file not found: {source_path}")

    samples, sample_rate, channels = _read_wav_mono(source_path)
    frame_size = max(int(round(sample_rate * max(frame_seconds, 0.001))), 1)
    frames = _build_frames(samples=samples, sample_rate=sample_rate, frame_size=frame_size)
    spans = _audible_spans(frames, silence_threshold=silence_threshold)

    duration_seconds = len(samples) / float(sample_rate) if sample_rate > 0 else 0.0
    audible_seconds = sum(span["end_seconds"] - span["start_seconds"] for span in spans)
    return {
        "status": "ok",
        "audio_path": str(source_path),
        "sample_rate": sample_rate,
        "channels": channels,
        "duration_seconds": round(duration_seconds, 3),
        "frame_seconds": frame_seconds,
        "silence_threshold": silence_threshold,
        "audible_seconds": round(audible_seconds, 3),
        "audible_span_count": len(spans),
        "audible_spans": spans,
    }


def _read_wav_mono(path: Path) -> tuple[np.ndarray, int, int]:
    with wave.open(str(path), "rb") as wav_file:
        channels = wav_file.getnchannels()
        sample_rate = int(wav_file.getframerate())
        sample_width = wav_file.getsampwidth()
        frames = wav_file.readframes(wav_file.getnframes())

    if sample_width != 2:
        raise ValueError("Only 16-bit PCM WAV input is supported for track inspection.")

    samples = np.frombuffer(frames, dtype=np.int16)
    if channels > 1:
        samples = samples.reshape(-1, channels).mean(axis=1)

    normalized = samples.astype(np.float32) / 32768.0
    return normalized, sample_rate, channels


def _build_frames(samples: np.ndarray, sample_rate: int, frame_size: int) -> list[dict[str, float]]:
    if sample_rate <= 0 or len(samples) == 0:
        return []

    frames: list[dict[str, float]] = []
    for start in range(0, len(samples), frame_size):
        end = min(start + frame_size, len(samples))
        segment = samples[start:end]
        if len(segment) == 0:
            continue

        rms = float(np.sqrt(np.mean(np.square(segment))))
        frames.append(
            {
                "start_seconds": round(start / sample_rate, 3),
                "end_seconds": round(end / sample_rate, 3),
                "rms": rms,
            }
        )
    return frames


def _audible_spans(frames: list[dict[str, float]], *, silence_threshold: float) -> list[dict[str, float]]:
    spans: list[dict[str, float]] = []
    for frame in frames:
        if frame["rms"] < silence_threshold:
            continue
        if spans and abs(spans[-1]["end_seconds"] - frame["start_seconds"]) < 1e-6:
            spans[-1]["end_seconds"] = frame["end_seconds"]
            spans[-1]["peak_rms"] = round(max(spans[-1]["peak_rms"], frame["rms"]), 6)
            continue
        spans.append(
            {
                "start_seconds": frame["start_seconds"],
                "end_seconds": frame["end_seconds"],
                "peak_rms": round(frame["rms"], 6),
            }
        )
    return spans
