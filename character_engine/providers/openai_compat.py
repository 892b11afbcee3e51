"""
OpenAI-compatible Provider Implementations

Streaming chat completions, speech synthesis and transcription over any
service exposing the OpenAI REST surface.
"""

import io
import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import structlog

from ..audio.wav import encode_wav, pcm16_to_float
from ..core.errors import (
    ProviderConnectionError,
    ProviderError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from .base import AudioSample, SynthesisChunk, TextGenerationConfig

logger = structlog.get_logger(__name__)


class OpenAICompatibleProvider:
    """Shared HTTP client handling and error mapping."""

    provider_name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
    ):
        if not api_key:
            raise ValueError("API key is required")

        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _check_response(self, response: httpx.Response, operation: str) -> None:
        if response.status_code == 200:
            return
        await response.aread()
        raise ProviderResponseError(
            f"{operation} failed: {response.status_code} - {response.text[:200]}",
            status_code=response.status_code,
            provider=self.provider_name,
        )

    def _map_error(self, error: Exception, operation: str) -> ProviderError:
        if isinstance(error, httpx.TimeoutException):
            return ProviderTimeoutError(f"{operation} timed out", provider=self.provider_name)
        if isinstance(error, httpx.ConnectError):
            return ProviderConnectionError(
                f"Could not connect to {self.base_url}: {error}",
                provider=self.provider_name,
            )
        return ProviderError(f"{operation} failed: {error}", provider=self.provider_name)


class OpenAICompatibleTextGenerator(OpenAICompatibleProvider):
    """Streams completion tokens from ``/chat/completions``."""

    def __init__(self, api_key: str, model: str, provider: Optional[str] = None, **kwargs):
        super().__init__(api_key, **kwargs)
        self.model = model
        self.provider = provider

    def _build_request(
        self,
        messages: List[Dict[str, str]],
        config: TextGenerationConfig,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": True,
            "max_tokens": config.max_new_tokens,
            "temperature": config.temperature,
            "top_p": config.top_p,
            "frequency_penalty": config.frequency_penalty,
            "presence_penalty": config.presence_penalty,
        }
        if config.stop_sequences:
            body["stop"] = list(config.stop_sequences)
        return body

    async def generate(
        self,
        messages: List[Dict[str, str]],
        config: Optional[TextGenerationConfig] = None,
    ) -> AsyncIterator[str]:
        config = config or TextGenerationConfig()
        body = self._build_request(messages, config)

        try:
            client = await self._get_client()
            async with client.stream("POST", "/chat/completions", json=body) as response:
                await self._check_response(response, "Text generation")

                async for line in response.aiter_lines():
                    if not line or not line.startswith("data: "):
                        continue

                    data = line[6:]
                    if data == "[DONE]":
                        break

                    chunk = json.loads(data)
                    choices = chunk.get("choices") or []
                    if not choices:
                        continue
                    content = choices[0].get("delta", {}).get("content")
                    if content:
                        yield content

        except ProviderError:
            raise
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            logger.warning("text_generation_failed", model=self.model, error=str(e))
            raise self._map_error(e, "Text generation") from e


class OpenAICompatibleSpeechSynthesizer(OpenAICompatibleProvider):
    """Synthesizes speech from ``/audio/speech`` as 16-bit PCM."""

    # OpenAI returns raw PCM at 24kHz
    PCM_SAMPLE_RATE = 24000

    def __init__(
        self,
        api_key: str,
        model: str = "tts-1",
        chunk_duration_ms: int = 500,
        **kwargs,
    ):
        super().__init__(api_key, **kwargs)
        self.model = model
        self.chunk_bytes = int(self.PCM_SAMPLE_RATE * chunk_duration_ms / 1000) * 2

    async def synthesize(self, text: str, voice_id: str) -> AsyncIterator[SynthesisChunk]:
        if not text.strip():
            return

        body = {
            "model": self.model,
            "input": text,
            "voice": voice_id,
            "response_format": "pcm",
        }

        try:
            client = await self._get_client()
            async with client.stream("POST", "/audio/speech", json=body) as response:
                await self._check_response(response, "Speech synthesis")

                pending = b""
                first = True
                async for data in response.aiter_bytes():
                    pending += data
                    while len(pending) >= self.chunk_bytes:
                        block, pending = pending[:self.chunk_bytes], pending[self.chunk_bytes:]
                        yield SynthesisChunk(
                            text=text if first else "",
                            audio=pcm16_to_float(block),
                            sample_rate=self.PCM_SAMPLE_RATE,
                        )
                        first = False

                # Drop a trailing odd byte
                pending = pending[: len(pending) - len(pending) % 2]
                if pending or first:
                    yield SynthesisChunk(
                        text=text if first else "",
                        audio=pcm16_to_float(pending),
                        sample_rate=self.PCM_SAMPLE_RATE,
                    )

        except ProviderError:
            raise
        except httpx.HTTPError as e:
            logger.warning("speech_synthesis_failed", voice_id=voice_id, error=str(e))
            raise self._map_error(e, "Speech synthesis") from e


class OpenAICompatibleSpeechRecognizer(OpenAICompatibleProvider):
    """Transcribes audio with ``/audio/transcriptions``."""

    def __init__(self, api_key: str, model: str = "whisper-1", language: Optional[str] = None, **kwargs):
        super().__init__(api_key, **kwargs)
        self.model = model
        self.language = language

    async def recognize(self, audio: AudioSample) -> AsyncIterator[str]:
        if audio.samples.size == 0:
            return

        wav_data = encode_wav(audio.samples, audio.sample_rate)
        files = {"file": ("utterance.wav", io.BytesIO(wav_data), "audio/wav")}
        data = {"model": self.model, "response_format": "json"}
        if self.language:
            data["language"] = self.language

        try:
            client = await self._get_client()
            response = await client.post("/audio/transcriptions", files=files, data=data)
            await self._check_response(response, "Speech recognition")
            text = response.json().get("text", "")
        except ProviderError:
            raise
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("speech_recognition_failed", error=str(e))
            raise self._map_error(e, "Speech recognition") from e

        if text:
            yield text.strip()
