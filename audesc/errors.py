from __future__ import annotations

from pathlib import Path
from typing import Sequence


class AudioDescriptionError(RuntimeError):
    """Base error for every failure surfaced by the pipeline."""

    def __init__(self, message: str, *, stage: str | None = None, index: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.index = index

    def annotate(self, *, stage: str | None = None, index: int | None = None) -> AudioDescriptionError:
        # keep the location recorded closest to the failure
        if self.stage is None:
            self.stage = stage
        if self.index is None:
            self.index = index
        return self

    def location(self) -> str:
        if self.stage is None:
            return ""
        if self.index is None:
            return self.stage
        return f"{self.stage} #{self.index}"

    def __str__(self) -> str:
        where = self.location()
        return f"[{where}] {self.message}" if where else self.message


class ExternalToolFailure(AudioDescriptionError):
    """An external media tool could not be launched or exited non-zero."""

    def __init__(
        self,
        tool: str,
        message: str,
        *,
        returncode: int | None = None,
        stderr: str = "",
        args: Sequence[str] = (),
        stage: str | None = None,
        index: int | None = None,
    ) -> None:
        details = f" {tool} stderr: {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"{message}.{details}" if details else message, stage=stage, index=index)
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        self.tool_args = list(args)


class ManualCompositeRequired(ExternalToolFailure):
    """Every automatic compositing tier failed; a runnable script was written instead."""

    def __init__(self, script_path: Path, cause: ExternalToolFailure | None = None) -> None:
        reason = f"Automatic compositing failed ({cause})" if cause is not None else "Automatic compositing skipped"
        super().__init__(
            cause.tool if cause is not None else "ffmpeg",
            f"{reason}; run {script_path} to build the track manually",
            returncode=cause.returncode if cause is not None else None,
            stage="composite",
        )
        self.script_path = script_path


class CapabilityFailure(AudioDescriptionError):
    """A vision or narration provider failed or returned an unusable result."""

    def __init__(self, capability: str, provider: str, message: str) -> None:
        super().__init__(f"{capability} provider '{provider}' failed: {message}")
        self.capability = capability
        self.provider = provider


class ConfigurationError(AudioDescriptionError):
    """Required settings are missing or invalid before a run starts."""
