from __future__ import annotations

import logging
import subprocess
import threading
from typing import Callable, Sequence

from audesc.errors import ExternalToolFailure

logger = logging.getLogger(__name__)

SuccessCallback = Callable[[str], None]
ErrorCallback = Callable[[ExternalToolFailure], None]


class ProcessInvoker:
    """Runs one external media tool with an explicit argument list.

    ``run`` blocks and raises ``ExternalToolFailure``; ``start`` returns
    immediately and reports through callbacks. One instance drives at most
    one process at a time.
    """

    def __init__(self, tool: str, timeout_seconds: float | None = None) -> None:
        self.tool = tool
        self.timeout_seconds = timeout_seconds if timeout_seconds and timeout_seconds > 0 else None
        self._process: subprocess.Popen[str] | None = None
        self._waiter: threading.Thread | None = None
        self._busy = False
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._busy

    def run(self, args: Sequence[str]) -> str:
        self._claim(args)
        try:
            return self._run_blocking(args)
        finally:
            self._release()

    def _run_blocking(self, args: Sequence[str]) -> str:
        command = [self.tool, *args]
        logger.debug("Running %s", " ".join(command))

        try:
            completed = subprocess.run(
                command,
                check=False,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError as exc:
            raise ExternalToolFailure(
                self.tool,
                f"{self.tool} executable was not found. Install FFmpeg so {self.tool} is available on PATH",
                args=args,
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ExternalToolFailure(
                self.tool,
                f"{self.tool} timed out after {self.timeout_seconds:g}s",
                stderr=_as_text(exc.stderr),
                args=args,
            ) from exc
        except OSError as exc:
            raise ExternalToolFailure(self.tool, f"Failed to execute {self.tool}: {exc}", args=args) from exc

        if completed.returncode != 0:
            raise ExternalToolFailure(
                self.tool,
                f"{self.tool} exited with code {completed.returncode}",
                returncode=completed.returncode,
                stderr=completed.stderr or "",
                args=args,
            )

        if completed.stderr and completed.stderr.strip():
            logger.debug("%s exited with code 0 but wrote to stderr: %s", self.tool, completed.stderr.strip())
        return completed.stdout or ""

    def start(
        self,
        args: Sequence[str],
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        """Launch without blocking; exactly one callback fires when the process ends."""

        self._claim(args)
        command = [self.tool, *args]
        logger.debug("Starting %s", " ".join(command))

        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as exc:
            self._release()
            failure = ExternalToolFailure(self.tool, f"Failed to execute {self.tool}: {exc}", args=args)
            if on_error is None:
                raise failure from exc
            on_error(failure)
            return

        with self._lock:
            self._process = process
        self._waiter = threading.Thread(
            target=self._wait_for_exit,
            args=(process, list(args), on_success, on_error),
            name=f"{self.tool}-waiter",
            daemon=True,
        )
        self._waiter.start()

    def wait(self, timeout: float | None = None) -> None:
        """Block until a process launched with ``start`` has reported."""

        waiter = self._waiter
        if waiter is not None:
            waiter.join(timeout)

    def _wait_for_exit(
        self,
        process: subprocess.Popen[str],
        args: list[str],
        on_success: SuccessCallback | None,
        on_error: ErrorCallback | None,
    ) -> None:
        stdout = ""
        failure: ExternalToolFailure | None = None
        try:
            stdout, stderr = process.communicate(timeout=self.timeout_seconds)
            if process.returncode != 0:
                failure = ExternalToolFailure(
                    self.tool,
                    f"{self.tool} exited with code {process.returncode}",
                    returncode=process.returncode,
                    stderr=stderr or "",
                    args=args,
                )
        except subprocess.TimeoutExpired:
            process.kill()
            _, stderr = process.communicate()
            failure = ExternalToolFailure(
                self.tool,
                f"{self.tool} timed out after {self.timeout_seconds:g}s",
                stderr=stderr or "",
                args=args,
            )
        except (OSError, ValueError) as exc:
            if process.poll() is None:
                process.kill()
            failure = ExternalToolFailure(
                self.tool,
                f"Lost contact with {self.tool}: {exc}",
                returncode=process.returncode,
                args=args,
            )
        finally:
            with self._lock:
                self._process = None
                self._busy = False

        if failure is not None:
            logger.debug("%s failed: %s", self.tool, failure)
            if on_error is not None:
                on_error(failure)
            return
        if on_success is not None:
            on_success(stdout or "")

    def _claim(self, args: Sequence[str]) -> None:
        with self._lock:
            if self._busy:
                raise ExternalToolFailure(
                    self.tool,
                    f"{self.tool} is already running on this invoker; wait for it before starting another command",
                    args=args,
                )
            self._busy = True

    def _release(self) -> None:
        with self._lock:
            self._busy = False


def _as_text(raw: bytes | str | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw
