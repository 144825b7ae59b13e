from __future__ import annotations

from pathlib import Path

import pytest

from audesc.compose import ffmpeg_commands as cmd


def test_delay_is_rounded_to_whole_milliseconds() -> None:
    assert cmd.delay_ms(0.0) == 0
    assert cmd.delay_ms(2.0) == 2000
    assert cmd.delay_ms(18.0004) == 18000
    assert cmd.delay_ms(12.3456) == 12346


def test_filter_graph_script_delays_every_input_after_base() -> None:
    script = cmd.filter_graph_script([0.0, 15.0, 30.5])

    assert script.splitlines() == [
        "[1:a]adelay=0|0[a0];",
        "[2:a]adelay=15000|15000[a1];",
        "[3:a]adelay=30500|30500[a2];",
        "[0:a][a0][a1][a2]amix=inputs=4:normalize=0:duration=first[aout]",
    ]


def test_filter_graph_args_map_output_label() -> None:
    args = cmd.filter_graph_args(
        Path("base.wav"),
        [Path("std_0.wav"), Path("std_1.wav")],
        Path("filter.txt"),
        Path("mixed.wav"),
    )

    inputs = [args[i + 1] for i, value in enumerate(args) if value == "-i"]
    assert inputs == ["base.wav", "std_0.wav", "std_1.wav"]
    assert args[args.index("-map") + 1] == "[aout]"
    assert args[-3:] == ["-c:a", "pcm_s16le", "mixed.wav"]


def test_encoder_args_by_container() -> None:
    assert cmd.encoder_args(Path("out.wav")) == ["-c:a", "pcm_s16le"]
    assert cmd.encoder_args(Path("OUT.MP3")) == ["-c:a", "libmp3lame", "-q:a", "2"]
    assert cmd.encoder_args(Path("out.m4a"))[:2] == ["-c:a", "aac"]

    with pytest.raises(ValueError, match="Unsupported output extension '.avi'"):
        cmd.encoder_args(Path("out.avi"))


def test_atempo_chain_stays_within_filter_limits() -> None:
    assert cmd.atempo_chain(1.25) == "atempo=1.25"
    assert cmd.atempo_chain(3.0) == "atempo=2,atempo=1.5"
    assert cmd.atempo_chain(0.25) == "atempo=0.5,atempo=0.5"

    with pytest.raises(ValueError):
        cmd.atempo_chain(0.0)


def test_tempo_args_keep_destination_encoder() -> None:
    args = cmd.tempo_args(Path("raw.mp3"), Path("clip.mp3"), 1.5)

    assert args[args.index("-filter:a") + 1] == "atempo=1.5"
    assert args[-1] == "clip.mp3"
    assert "libmp3lame" in args
