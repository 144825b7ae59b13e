from __future__ import annotations

import base64
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Sequence
from urllib import request
from urllib.error import HTTPError, URLError

from audesc.config import VisionSettings
from audesc.errors import CapabilityFailure, ConfigurationError
from audesc.models import BatchContext, TokenUsage, VisionResult

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_ENDPOINT = "http://localhost:11434"


class VisionProvider(ABC):
    """Describes an ordered window of frames, continuing from the previous window."""

    name = "vision"

    def __init__(self, settings: VisionSettings) -> None:
        self.settings = settings

    @abstractmethod
    def describe_batch(
        self,
        frame_paths: Sequence[Path],
        context: BatchContext | None,
        prompt: str,
    ) -> VisionResult:
        raise NotImplementedError

    def _failure(self, message: str) -> CapabilityFailure:
        return CapabilityFailure("vision", self.name, message)

    def _require_description(self, text: str | None) -> str:
        description = (text or "").strip()
        if not description:
            raise self._failure("empty description returned")
        return description


class OpenAIVisionProvider(VisionProvider):
    """Chat-completions vision model; also serves OpenAI-compatible endpoints."""

    name = "openai"

    def __init__(self, settings: VisionSettings, client: Any | None = None) -> None:
        super().__init__(settings)
        self._client = client or self._build_client()

    def _build_client(self) -> Any:
        api_key = self.settings.api_key or os.getenv("OPENAI_API_KEY")
        if not api_key and not self.settings.endpoint:
            raise ConfigurationError("vision.api_key (or OPENAI_API_KEY) is required for the openai vision provider.")

        from openai import OpenAI

        return OpenAI(
            api_key=api_key or "not-needed",
            base_url=self.settings.endpoint or None,
            timeout=float(self.settings.timeout_seconds),
        )

    def describe_batch(
        self,
        frame_paths: Sequence[Path],
        context: BatchContext | None,
        prompt: str,
    ) -> VisionResult:
        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        for frame_path in frame_paths:
            content.append({"type": "image_url", "image_url": {"url": _image_to_data_url(frame_path)}})

        messages: list[dict[str, Any]] = []
        if context is not None and context.last_description:
            messages.append({"role": "system", "content": f"Previous batch summary: {context.last_description}"})
        messages.append({"role": "user", "content": content})

        try:
            response = self._client.chat.completions.create(
                model=self.settings.model,
                messages=messages,
                max_tokens=self.settings.max_tokens,
            )
        except Exception as exc:
            raise self._failure(f"{type(exc).__name__}: {exc}") from exc

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise self._failure("response contained no choices")
        description = self._require_description(choices[0].message.content)

        usage = getattr(response, "usage", None)
        return VisionResult(
            description=description,
            usage=TokenUsage(
                input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
                output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
                total_tokens=int(getattr(usage, "total_tokens", 0) or 0),
            ),
        )


class OllamaVisionProvider(VisionProvider):
    """Local multimodal model served by Ollama's generate endpoint."""

    name = "ollama"

    def describe_batch(
        self,
        frame_paths: Sequence[Path],
        context: BatchContext | None,
        prompt: str,
    ) -> VisionResult:
        contextual_prompt = prompt
        if context is not None and context.last_description:
            contextual_prompt = f"Previous batch summary: {context.last_description}\n\n{prompt}"

        images = [_encode_image(frame_path) for frame_path in frame_paths]
        try:
            payload = _request_ollama(
                endpoint=self.settings.endpoint or DEFAULT_OLLAMA_ENDPOINT,
                model=self.settings.model,
                prompt=contextual_prompt,
                images=images,
                max_tokens=self.settings.max_tokens,
                timeout_seconds=self.settings.timeout_seconds,
            )
        except (HTTPError, URLError, TimeoutError, OSError, json.JSONDecodeError, ValueError) as exc:
            raise self._failure(f"{type(exc).__name__}: {exc}") from exc

        description = self._require_description(payload.get("response"))
        input_tokens = int(payload.get("prompt_eval_count") or 0)
        output_tokens = int(payload.get("eval_count") or 0)
        return VisionResult(
            description=description,
            usage=TokenUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
        )


# closed set: adding a provider means adding an entry here
VISION_PROVIDERS: dict[str, type[VisionProvider]] = {
    "openai": OpenAIVisionProvider,
    "ollama": OllamaVisionProvider,
}


def create_vision_provider(settings: VisionSettings) -> VisionProvider:
    key = settings.provider.strip().lower()
    provider_class = VISION_PROVIDERS.get(key)
    if provider_class is None:
        supported = ", ".join(sorted(VISION_PROVIDERS))
        raise ConfigurationError(f"Vision provider '{settings.provider}' is not supported. Expected one of: {supported}.")
    logger.debug("Using vision provider %s (model=%s)", key, settings.model)
    return provider_class(settings)


def _encode_image(path: Path) -> str:
    return base64.b64encode(Path(path).read_bytes()).decode("utf-8")


def _image_to_data_url(path: Path) -> str:
    return f"data:image/jpeg;base64,{_encode_image(path)}"


def _request_ollama(
    *,
    endpoint: str,
    model: str,
    prompt: str,
    images: list[str],
    max_tokens: int,
    timeout_seconds: int,
) -> dict[str, Any]:
    body = json.dumps(
        {
            "model": model,
            "prompt": prompt,
            "images": images,
            "stream": False,
            "options": {"num_predict": max_tokens},
        }
    ).encode("utf-8")

    req = request.Request(
        f"{endpoint.rstrip('/')}/api/generate",
        data=body,
        method="POST",
        headers={"Content-Type": "application/json"},
    )

    with request.urlopen(req, timeout=timeout_seconds) as response:
        payload = json.loads(response.read().decode("utf-8"))

    if not isinstance(payload, dict) or not isinstance(payload.get("response"), str):
        raise ValueError("Ollama response missing text in 'response' field.")
    return payload
