from __future__ import annotations

import json
import logging
import math
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
from urllib import parse, request
from urllib.error import HTTPError, URLError

from audesc.compose.ffmpeg_commands import tempo_args
from audesc.config import TTSSettings
from audesc.errors import CapabilityFailure, ConfigurationError
from audesc.ingest.probe import probe_duration_seconds
from audesc.ingest.process import ProcessInvoker
from audesc.models import SpeechResult

logger = logging.getLogger(__name__)

DEFAULT_ELEVENLABS_ENDPOINT = "https://api.elevenlabs.io"
ELEVENLABS_OUTPUT_FORMAT = "mp3_44100_128"
OPENAI_DOLLARS_PER_MILLION_CHARS = 12
NARRATION_INSTRUCTIONS = (
    "Voice: voice-over, professional, concise narration for audio description of a video. "
    "Clear delivery, minimal pauses and breathing."
)


class TTSProvider(ABC):
    """Synthesizes narration into a file and reports the clip's measured duration."""

    name = "tts"

    def __init__(self, settings: TTSSettings, tool_timeout_seconds: float | None = None) -> None:
        self.settings = settings
        self.tool_timeout_seconds = tool_timeout_seconds

    def text_to_speech(self, text: str, destination: Path) -> SpeechResult:
        if not text.strip():
            raise self._failure("cannot synthesize empty text")

        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        raw_path = destination.with_name(f"{destination.stem}_temp{destination.suffix}")

        self._synthesize(text, raw_path)
        if not raw_path.exists() or raw_path.stat().st_size == 0:
            raise self._failure(f"no audio was written for {destination.name}")

        if math.isclose(self.settings.speed_factor, 1.0):
            raw_path.replace(destination)
        else:
            ProcessInvoker("ffmpeg", timeout_seconds=self.tool_timeout_seconds).run(
                tempo_args(raw_path, destination, self.settings.speed_factor)
            )
            raw_path.unlink(missing_ok=True)

        duration = probe_duration_seconds(destination, timeout_seconds=self.tool_timeout_seconds)
        return SpeechResult(duration=duration, cost=self.estimate_cost(text))

    @abstractmethod
    def _synthesize(self, text: str, output_path: Path) -> None:
        raise NotImplementedError

    @abstractmethod
    def estimate_cost(self, text: str) -> float:
        raise NotImplementedError

    def _failure(self, message: str) -> CapabilityFailure:
        return CapabilityFailure("tts", self.name, message)


class OpenAITTSProvider(TTSProvider):
    name = "openai"

    def __init__(
        self,
        settings: TTSSettings,
        tool_timeout_seconds: float | None = None,
        client: Any | None = None,
    ) -> None:
        super().__init__(settings, tool_timeout_seconds)
        self._client = client or self._build_client()

    def _build_client(self) -> Any:
        api_key = self.settings.api_key or os.getenv("OPENAI_API_KEY")
        if not api_key and not self.settings.endpoint:
            raise ConfigurationError("tts.api_key (or OPENAI_API_KEY) is required for the openai tts provider.")

        from openai import OpenAI

        return OpenAI(
            api_key=api_key or "not-needed",
            base_url=self.settings.endpoint or None,
            timeout=float(self.settings.timeout_seconds),
        )

    def _synthesize(self, text: str, output_path: Path) -> None:
        request_kwargs: dict[str, Any] = {
            "model": self.settings.model,
            "voice": self.settings.voice,
            "input": text,
            "response_format": "mp3",
        }
        # only the gpt-4o speech models accept style instructions
        if self.settings.model.startswith("gpt-4o"):
            request_kwargs["instructions"] = NARRATION_INSTRUCTIONS

        try:
            response = self._client.audio.speech.create(**request_kwargs)
            response.write_to_file(str(output_path))
        except Exception as exc:
            raise self._failure(f"{type(exc).__name__}: {exc}") from exc

    def estimate_cost(self, text: str) -> float:
        return float(math.ceil(len(text) / 1_000_000) * OPENAI_DOLLARS_PER_MILLION_CHARS)


class ElevenLabsTTSProvider(TTSProvider):
    name = "elevenlabs"

    def __init__(self, settings: TTSSettings, tool_timeout_seconds: float | None = None) -> None:
        super().__init__(settings, tool_timeout_seconds)
        self._api_key = settings.api_key or os.getenv("ELEVENLABS_API_KEY")
        if not self._api_key:
            raise ConfigurationError("tts.api_key (or ELEVENLABS_API_KEY) is required for the elevenlabs tts provider.")

    def _synthesize(self, text: str, output_path: Path) -> None:
        try:
            audio = _request_elevenlabs(
                endpoint=self.settings.endpoint or DEFAULT_ELEVENLABS_ENDPOINT,
                api_key=self._api_key or "",
                voice=self.settings.voice,
                model=self.settings.model,
                text=text,
                timeout_seconds=self.settings.timeout_seconds,
            )
        except (HTTPError, URLError, TimeoutError, OSError) as exc:
            raise self._failure(f"{type(exc).__name__}: {exc}") from exc
        output_path.write_bytes(audio)

    def estimate_cost(self, text: str) -> float:
        # billed in characters
        return float(len(text))


# closed set: adding a provider means adding an entry here
TTS_PROVIDERS: dict[str, type[TTSProvider]] = {
    "openai": OpenAITTSProvider,
    "elevenlabs": ElevenLabsTTSProvider,
    "eleven": ElevenLabsTTSProvider,
}


def create_tts_provider(settings: TTSSettings, tool_timeout_seconds: float | None = None) -> TTSProvider:
    key = settings.provider.strip().lower()
    provider_class = TTS_PROVIDERS.get(key)
    if provider_class is None:
        supported = ", ".join(sorted(TTS_PROVIDERS))
        raise ConfigurationError(f"TTS provider '{settings.provider}' is not supported. Expected one of: {supported}.")
    logger.debug("Using tts provider %s (model=%s, voice=%s)", key, settings.model, settings.voice)
    return provider_class(settings, tool_timeout_seconds)


def _request_elevenlabs(
    *,
    endpoint: str,
    api_key: str,
    voice: str,
    model: str,
    text: str,
    timeout_seconds: int,
) -> bytes:
    body = json.dumps({"text": text, "model_id": model}).encode("utf-8")
    query = parse.urlencode({"output_format": ELEVENLABS_OUTPUT_FORMAT})
    req = request.Request(
        f"{endpoint.rstrip('/')}/v1/text-to-speech/{parse.quote(voice)}?{query}",
        data=body,
        method="POST",
        headers={
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
            "xi-api-key": api_key,
        },
    )

    with request.urlopen(req, timeout=timeout_seconds) as response:
        return response.read()
