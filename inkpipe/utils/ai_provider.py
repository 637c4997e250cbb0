#!/usr/bin/env python3
"""Inference provider abstraction for inkpipe.

The processing engine only needs two things from a model: "give me the text
in this image" and "give me the words in this audio clip". Both are exposed
through :class:`InferenceProvider` so the engine, the worker and the tests
never depend on a particular SDK.

The bundled :class:`OpenAIProvider` talks to any OpenAI-compatible endpoint
(``OPENAI_BASE_URL``).
"""

import base64
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional

from inkpipe.config import settings
from inkpipe.errors import ExtractionFailure, TransientIOError

logger = logging.getLogger(__name__)

IMAGE_PROMPT = (
    "Extract all text from this image comprehensively, preserving its structure. "
    "Return the result as Markdown (headings, lists, tables) and nothing else."
)
AUDIO_PROMPT = "Please transcribe this audio segment accurately."


@dataclass
class InferenceResult:
    text: str
    # Total tokens reported by the API, None when the response has no usage block
    tokens_used: Optional[int] = None


def estimate_tokens(text: Optional[str]) -> int:
    """Rough cost estimate used when the API does not report usage: 1 token per 4 chars."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def resolve_tokens(result: InferenceResult) -> int:
    if result.tokens_used is not None and result.tokens_used >= 0:
        return int(result.tokens_used)
    return estimate_tokens(result.text)


def _text_or_empty(content: Optional[str]) -> str:
    """A missing message body counts as an empty extraction, not a failure."""
    if content is None:
        logger.warning("Inference response contained no text content")
        return ""
    return content


class InferenceProvider(ABC):
    """Abstract base class for text extraction backends."""

    @abstractmethod
    def extract_image_text(self, image_url: str) -> InferenceResult:
        """Return Markdown text found in the image at *image_url*.

        Raises:
            TransientIOError: The API could not be reached or rate-limited us.
            ExtractionFailure: The API rejected the request.
        """

    @abstractmethod
    def transcribe_audio(self, audio_path: str, audio_format: str = "mp3") -> InferenceResult:
        """Return the transcript of the local audio file at *audio_path*."""


class OpenAIProvider(InferenceProvider):
    """OpenAI provider using the ``openai`` Python SDK.

    Also works as a drop-in for any OpenAI-compatible API endpoint when a
    custom ``base_url`` is supplied.
    """

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        vision_model: str = "gpt-4o",
        transcription_model: str = "gpt-4o-audio-preview",
    ) -> None:
        import openai

        self._openai = openai
        self._client = openai.OpenAI(
            api_key=api_key,
            base_url=base_url or "https://api.openai.com/v1",
        )
        self.vision_model = vision_model
        self.transcription_model = transcription_model

    def extract_image_text(self, image_url: str) -> InferenceResult:
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": IMAGE_PROMPT},
            {"role": "user", "content": [{"type": "image_url", "image_url": {"url": image_url}}]},
        ]
        completion = self._complete(model=self.vision_model, messages=messages, temperature=0)
        return self._to_result(completion)

    def transcribe_audio(self, audio_path: str, audio_format: str = "mp3") -> InferenceResult:
        with open(audio_path, "rb") as f:
            encoded = base64.b64encode(f.read()).decode("ascii")
        messages: List[Dict[str, Any]] = [
            {
                "role": "user",
                "content": [
                    {"type": "input_audio", "input_audio": {"data": encoded, "format": audio_format}},
                    {"type": "text", "text": AUDIO_PROMPT},
                ],
            }
        ]
        completion = self._complete(model=self.transcription_model, messages=messages, modalities=["text"])
        return self._to_result(completion)

    def _complete(self, **call_kwargs: Any):
        openai = self._openai
        try:
            return self._client.chat.completions.create(**call_kwargs)
        except (openai.APIConnectionError, openai.APITimeoutError, openai.RateLimitError) as e:
            raise TransientIOError(f"Inference API unavailable: {e}") from e
        except openai.APIError as e:
            raise ExtractionFailure(f"Inference API call failed: {e}") from e

    @staticmethod
    def _to_result(completion) -> InferenceResult:
        text = _text_or_empty(completion.choices[0].message.content)
        usage = getattr(completion, "usage", None)
        tokens = getattr(usage, "total_tokens", None) if usage is not None else None
        return InferenceResult(text=text, tokens_used=tokens)


@lru_cache(maxsize=1)
def get_inference_provider() -> InferenceProvider:
    """Return the process-wide provider built from settings."""
    if not settings.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY is not configured")
    return OpenAIProvider(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        vision_model=settings.vision_model,
        transcription_model=settings.transcription_model,
    )
