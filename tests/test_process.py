from __future__ import annotations

import subprocess
import sys
import threading

import pytest

from audesc.errors import ExternalToolFailure
from audesc.ingest.process import ProcessInvoker


def test_run_returns_captured_stdout(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def _fake_run(command, **kwargs):
        captured["command"] = command
        captured["timeout"] = kwargs["timeout"]
        return subprocess.CompletedProcess(command, 0, stdout="12.500\n", stderr="")

    monkeypatch.setattr(subprocess, "run", _fake_run)

    stdout = ProcessInvoker("ffprobe", timeout_seconds=5).run(["-v", "error", "clip.mp4"])

    assert stdout == "12.500\n"
    assert captured["command"] == ["ffprobe", "-v", "error", "clip.mp4"]
    assert captured["timeout"] == 5


def test_run_disables_timeout_for_non_positive_values(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def _fake_run(command, **kwargs):
        captured["timeout"] = kwargs["timeout"]
        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

    monkeypatch.setattr(subprocess, "run", _fake_run)

    ProcessInvoker("ffmpeg", timeout_seconds=0).run(["-version"])

    assert captured["timeout"] is None


def test_run_raises_with_tool_exit_code_and_stderr(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fake_run(command, **kwargs):
        return subprocess.CompletedProcess(command, 1, stdout="", stderr="Invalid data found when processing input\n")

    monkeypatch.setattr(subprocess, "run", _fake_run)

    with pytest.raises(ExternalToolFailure) as excinfo:
        ProcessInvoker("ffmpeg").run(["-i", "broken.mp4", "out.wav"])

    failure = excinfo.value
    assert failure.tool == "ffmpeg"
    assert failure.returncode == 1
    assert "Invalid data found" in failure.stderr
    assert "ffmpeg exited with code 1" in str(failure)
    assert failure.tool_args == ["-i", "broken.mp4", "out.wav"]


def test_run_wraps_missing_binary(monkeypatch: pytest.MonkeyPatch) -> None:
    def _raise_missing(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError("ffmpeg")

    monkeypatch.setattr(subprocess, "run", _raise_missing)

    with pytest.raises(ExternalToolFailure, match="ffmpeg executable was not found") as excinfo:
        ProcessInvoker("ffmpeg").run(["-version"])

    assert excinfo.value.returncode is None


def test_run_maps_timeout_to_tool_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def _raise_timeout(command, **kwargs):
        raise subprocess.TimeoutExpired(cmd=command, timeout=kwargs["timeout"], stderr=b"still mixing")

    monkeypatch.setattr(subprocess, "run", _raise_timeout)

    with pytest.raises(ExternalToolFailure, match="timed out after 3s") as excinfo:
        ProcessInvoker("ffmpeg", timeout_seconds=3).run(["-i", "a.wav", "b.wav"])

    assert excinfo.value.stderr == "still mixing"


def test_start_reports_success_through_callback() -> None:
    invoker = ProcessInvoker(sys.executable)
    outcome: dict[str, object] = {}

    invoker.start(
        ["-c", "print('ok')"],
        on_success=lambda stdout: outcome.setdefault("stdout", stdout),
        on_error=lambda failure: outcome.setdefault("error", failure),
    )
    invoker.wait(timeout=30)

    assert "error" not in outcome
    assert str(outcome["stdout"]).strip() == "ok"
    assert not invoker.is_running


def test_start_reports_non_zero_exit_through_error_callback() -> None:
    invoker = ProcessInvoker(sys.executable)
    outcome: dict[str, object] = {}

    invoker.start(
        ["-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"],
        on_success=lambda stdout: outcome.setdefault("stdout", stdout),
        on_error=lambda failure: outcome.setdefault("error", failure),
    )
    invoker.wait(timeout=30)

    failure = outcome["error"]
    assert isinstance(failure, ExternalToolFailure)
    assert failure.returncode == 3
    assert "boom" in failure.stderr
    assert "stdout" not in outcome


def test_start_reports_launch_failure_through_error_callback() -> None:
    invoker = ProcessInvoker("definitely-not-a-real-media-tool")
    errors: list[ExternalToolFailure] = []

    invoker.start(["-version"], on_error=errors.append)

    assert len(errors) == 1
    assert errors[0].returncode is None


def test_reuse_while_running_is_rejected() -> None:
    invoker = ProcessInvoker(sys.executable)
    invoker.start(["-c", "import time; time.sleep(30)"])

    try:
        assert invoker.is_running
        with pytest.raises(ExternalToolFailure, match="already running"):
            invoker.run(["-c", "pass"])
        with pytest.raises(ExternalToolFailure, match="already running"):
            invoker.start(["-c", "pass"])
    finally:
        process = invoker._process
        if process is not None:
            process.kill()
        invoker.wait(timeout=30)

    assert not invoker.is_running


def test_blocking_run_holds_the_invoker(monkeypatch: pytest.MonkeyPatch) -> None:
    entered = threading.Event()
    release = threading.Event()

    def _slow_run(command, **kwargs):
        entered.set()
        release.wait(timeout=30)
        return subprocess.CompletedProcess(command, 0, stdout="done", stderr="")

    monkeypatch.setattr(subprocess, "run", _slow_run)
    invoker = ProcessInvoker("ffmpeg")
    results: list[str] = []
    worker = threading.Thread(target=lambda: results.append(invoker.run(["-i", "a.wav", "b.wav"])))
    worker.start()

    try:
        assert entered.wait(timeout=30)
        assert invoker.is_running
        with pytest.raises(ExternalToolFailure, match="already running"):
            invoker.run(["-version"])
        with pytest.raises(ExternalToolFailure, match="already running"):
            invoker.start(["-version"])
    finally:
        release.set()
        worker.join(timeout=30)

    assert results == ["done"]
    assert not invoker.is_running


class _BrokenPipeProcess:
    returncode = None

    def __init__(self, command, **kwargs) -> None:
        self.killed = False

    def communicate(self, timeout=None):
        raise OSError("Broken pipe")

    def poll(self):
        return None if not self.killed else -9

    def kill(self) -> None:
        self.killed = True


def test_start_reports_communication_error_through_error_callback(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(subprocess, "Popen", _BrokenPipeProcess)
    invoker = ProcessInvoker("ffmpeg")
    errors: list[ExternalToolFailure] = []
    successes: list[str] = []

    invoker.start(["-i", "a.wav", "b.wav"], on_success=successes.append, on_error=errors.append)
    invoker.wait(timeout=30)

    assert successes == []
    assert len(errors) == 1
    assert "Lost contact with ffmpeg: Broken pipe" in str(errors[0])
    assert not invoker.is_running
