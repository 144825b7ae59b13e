from __future__ import annotations

import os
import shutil
import wave
from pathlib import Path

import numpy as np
import pytest

from audesc.compose.compositor import (
    CompositeStrategy,
    combine_audio_segments,
    total_track_duration,
)
from audesc.compose.inspect import inspect_track
from audesc.errors import ExternalToolFailure, ManualCompositeRequired
from audesc.ingest.process import ProcessInvoker
from audesc.models import AudioSegment


class _FakeFfmpeg:
    """Records ffmpeg invocations and writes their output file."""

    def __init__(self, fail_when: tuple[str, ...] = ()) -> None:
        self.fail_when = fail_when
        self.calls: list[list[str]] = []
        self.filter_scripts: list[str] = []

    def __call__(self, args: list[str]) -> str:
        self.calls.append(list(args))
        if "-filter_complex_script" in args:
            script = Path(args[args.index("-filter_complex_script") + 1])
            self.filter_scripts.append(script.read_text(encoding="utf-8"))
        if any(flag in args for flag in self.fail_when):
            raise ExternalToolFailure("ffmpeg", "ffmpeg exited with code 1", returncode=1, stderr="Filter error")
        Path(args[-1]).write_bytes(b"RIFF")
        return ""

    def filters(self) -> list[str]:
        return [call[call.index("-filter_complex") + 1] for call in self.calls if "-filter_complex" in call]


def _clips(tmp_path: Path, starts_and_durations: list[tuple[float, float]]) -> list[AudioSegment]:
    segments = []
    for index, (start, duration) in enumerate(starts_and_durations):
        clip = tmp_path / f"segment_{index}_narration.mp3"
        clip.write_bytes(b"ID3")
        segments.append(AudioSegment(clip, start, duration, f"description {index}"))
    return segments


def test_single_clip_is_delayed_onto_silent_base(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeFfmpeg()
    monkeypatch.setattr(ProcessInvoker, "run", fake)
    scratch = tmp_path / "scratch"

    result = combine_audio_segments(_clips(tmp_path, [(2.0, 3.0)]), tmp_path / "out" / "track.wav", scratch)

    assert result.strategy is CompositeStrategy.SEQUENTIAL_FOLD
    assert result.total_duration == 5.0
    assert result.segment_count == 1
    assert result.output_path.exists()

    silent = fake.calls[0]
    assert "anullsrc=r=44100:cl=stereo" in silent
    assert silent[silent.index("-t") + 1] == "5.000"
    standardize = fake.calls[1]
    assert standardize[standardize.index("-ar") + 1] == "44100"
    assert standardize[standardize.index("-ac") + 1] == "2"
    assert fake.filters() == [
        "[1:a]adelay=2000|2000[delayed];"
        "[0:a][delayed]amix=inputs=2:duration=first:dropout_transition=0:normalize=0[out]"
    ]
    assert list(scratch.iterdir()) == []


def test_clips_are_mixed_in_start_time_order(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeFfmpeg()
    monkeypatch.setattr(ProcessInvoker, "run", fake)
    segments = _clips(tmp_path, [(30.0, 4.0), (0.0, 18.0), (18.0, 5.0)])

    result = combine_audio_segments(segments, tmp_path / "track.wav", tmp_path / "scratch")

    assert result.total_duration == 34.0
    delays = [line.split("adelay=")[1].split("|")[0] for line in fake.filters()]
    assert delays == ["0", "18000", "30000"]


def test_fold_mixes_each_step_onto_previous_result(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeFfmpeg()
    monkeypatch.setattr(ProcessInvoker, "run", fake)
    scratch = tmp_path / "scratch"

    combine_audio_segments(_clips(tmp_path, [(0.0, 2.0), (5.0, 2.0)]), tmp_path / "track.wav", scratch)

    mixes = [call for call in fake.calls if "-filter_complex" in call]
    assert mixes[0][mixes[0].index("-i") + 1] == str(scratch / "silent_base.wav")
    assert mixes[1][mixes[1].index("-i") + 1] == str(scratch / "segment_0_mix.wav")


def test_compressed_output_is_transcoded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeFfmpeg()
    monkeypatch.setattr(ProcessInvoker, "run", fake)

    combine_audio_segments(_clips(tmp_path, [(0.0, 2.0)]), tmp_path / "track.mp3", tmp_path / "scratch")

    final = fake.calls[-1]
    assert final[final.index("-c:a") + 1] == "libmp3lame"
    assert final[-1] == str(tmp_path / "track.mp3")


def test_falls_back_to_filter_graph(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeFfmpeg(fail_when=("-filter_complex",))
    monkeypatch.setattr(ProcessInvoker, "run", fake)
    scratch = tmp_path / "scratch"

    result = combine_audio_segments(_clips(tmp_path, [(0.0, 18.0), (18.0, 5.0)]), tmp_path / "track.wav", scratch)

    assert result.strategy is CompositeStrategy.FILTER_GRAPH
    assert fake.filter_scripts == [
        "[1:a]adelay=0|0[a0];\n"
        "[2:a]adelay=18000|18000[a1];\n"
        "[0:a][a0][a1]amix=inputs=3:normalize=0:duration=first[aout]"
    ]
    assert list(scratch.iterdir()) == []


def test_writes_manual_script_when_every_tier_fails(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeFfmpeg(fail_when=("-filter_complex", "-filter_complex_script"))
    monkeypatch.setattr(ProcessInvoker, "run", fake)

    with pytest.raises(ManualCompositeRequired) as excinfo:
        combine_audio_segments(_clips(tmp_path, [(2.0, 3.0)]), tmp_path / "track.mp3", tmp_path / "scratch")

    script = excinfo.value.script_path
    assert script == tmp_path / "track_ffmpeg_cmd.sh"
    assert os.access(script, os.X_OK)
    body = script.read_text(encoding="utf-8")
    assert body.startswith("#!/bin/bash\nset -euo pipefail")
    assert "[1:a]adelay=2000|2000[a0];" in body
    assert "libmp3lame" in body
    assert excinfo.value.stage == "composite"
    assert "Filter error" in str(excinfo.value)


def test_restricted_strategies_raise_last_tool_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ProcessInvoker, "run", _FakeFfmpeg(fail_when=("-filter_complex",)))

    with pytest.raises(ExternalToolFailure) as excinfo:
        combine_audio_segments(
            _clips(tmp_path, [(0.0, 2.0)]),
            tmp_path / "track.wav",
            tmp_path / "scratch",
            strategies=(CompositeStrategy.SEQUENTIAL_FOLD,),
        )

    assert not isinstance(excinfo.value, ManualCompositeRequired)
    assert excinfo.value.stage == "mix"
    assert excinfo.value.index == 0


def test_empty_strategy_list_raises_value_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeFfmpeg()
    monkeypatch.setattr(ProcessInvoker, "run", fake)

    with pytest.raises(ValueError, match="At least one compositing strategy"):
        combine_audio_segments(
            _clips(tmp_path, [(0.0, 2.0)]),
            tmp_path / "track.wav",
            tmp_path / "scratch",
            strategies=(),
        )

    assert fake.calls == []


def test_identical_inputs_produce_identical_commands(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    segments = _clips(tmp_path, [(0.0, 3.5), (15.0, 2.25)])
    recorded: list[list[list[str]]] = []
    for _ in range(2):
        fake = _FakeFfmpeg()
        monkeypatch.setattr(ProcessInvoker, "run", fake)
        combine_audio_segments(segments, tmp_path / "track.wav", tmp_path / "scratch")
        recorded.append(fake.calls)

    assert recorded[0] == recorded[1]


def test_rejects_empty_input_and_unknown_container(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="At least one audio segment"):
        combine_audio_segments([], tmp_path / "track.wav", tmp_path / "scratch")
    with pytest.raises(ValueError, match="Unsupported output extension"):
        combine_audio_segments(_clips(tmp_path, [(0.0, 1.0)]), tmp_path / "track.xyz", tmp_path / "scratch")


def test_total_track_duration() -> None:
    segments = [AudioSegment(Path("a"), 0.0, 18.0, "a"), AudioSegment(Path("b"), 18.0, 5.0, "b")]
    assert total_track_duration(segments) == 23.0
    assert total_track_duration([]) == 0.0


def _write_tone(path: Path, seconds: float, sample_rate: int = 44100) -> None:
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    samples = (0.3 * np.sin(2 * np.pi * 440.0 * t) * 32767).astype(np.int16)
    with wave.open(str(path), "wb") as handle:
        handle.setnchannels(1)
        handle.setsampwidth(2)
        handle.setframerate(sample_rate)
        handle.writeframes(samples.tobytes())


@pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg is not installed")
def test_real_ffmpeg_places_narration_at_offset(tmp_path: Path) -> None:
    clip = tmp_path / "tone.wav"
    _write_tone(clip, 3.0)

    result = combine_audio_segments(
        [AudioSegment(clip, 2.0, 3.0, "tone")],
        tmp_path / "track.wav",
        tmp_path / "scratch",
    )
    report = inspect_track(result.output_path)

    assert report["duration_seconds"] == pytest.approx(5.0, abs=0.05)
    assert report["sample_rate"] == 44100
    assert report["channels"] == 2
    assert len(report["audible_spans"]) == 1
    assert report["audible_spans"][0]["start_seconds"] == pytest.approx(2.0, abs=0.06)
    assert report["audible_spans"][0]["end_seconds"] == pytest.approx(5.0, abs=0.06)
