from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from recap.services.errors import (
    AudioTooSmall,
    EmptyAudio,
    EmptyTranscript,
    MalformedResponse,
)
from recap.services.http_client import client_scope, send
from recap.services.retry import RetryPolicy, retry_transient

MIN_AUDIO_BYTES = 1024
MIN_TRANSCRIPT_LENGTH = 10
TRANSCRIPTION_TIMEOUT = 15 * 60

_TEXT_FIELDS = ("text", "transcription", "transcript")


@dataclass(frozen=True)
class TranscriptResult:
    text: str
    language: Optional[str] = None


class TranscriptionClient:
    """Speech-to-text over the remote transcription endpoint.

    Audio is validated locally before any request. Requests are retried
    only for transient failures (network, 429, 5xx); timeouts and other 4xx
    responses propagate immediately.
    """

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        *,
        timeout: float = TRANSCRIPTION_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
        min_audio_bytes: int = MIN_AUDIO_BYTES,
        min_transcript_length: int = MIN_TRANSCRIPT_LENGTH,
    ) -> None:
        self._url = url
        self._client = client
        self._timeout = httpx.Timeout(timeout, connect=10.0)
        self._retry = retry_policy or RetryPolicy(retries=3, delay=3.0, should_retry=retry_transient)
        self._min_audio_bytes = min_audio_bytes
        self._min_transcript_length = min_transcript_length
        self._logger = logging.getLogger("recap.transcription")

    def validate_audio(self, audio: bytes) -> None:
        if not audio:
            raise EmptyAudio("Audio is empty")
        if len(audio) < self._min_audio_bytes:
            raise AudioTooSmall(
                f"Audio is {len(audio)} bytes, below the {self._min_audio_bytes} byte minimum"
            )

    async def transcribe(
        self,
        audio: bytes,
        *,
        file_name: str = "recording.wav",
        mime_type: str = "audio/wav",
        language: Optional[str] = None,
    ) -> TranscriptResult:
        self.validate_audio(audio)
        data = {"language": language} if language else None
        files = {"audio": (file_name, audio, mime_type)}
        self._logger.info("Transcription request: bytes=%d file=%s", len(audio), file_name)
        return await self._request(label="transcribe", files=files, data=data)

    async def _request(self, *, label: str, **kwargs) -> TranscriptResult:
        started = time.perf_counter()

        async def call() -> httpx.Response:
            async with client_scope(self._client, self._timeout) as client:
                return await send(
                    client,
                    "POST",
                    self._url,
                    service="Transcription service",
                    timeout=self._timeout,
                    **kwargs,
                )

        response = await self._retry.run(call, label=label)
        result = self._parse(response)
        self._logger.info(
            "Transcription complete: chars=%d language=%s (%.0fms)",
            len(result.text),
            result.language,
            (time.perf_counter() - started) * 1000,
        )
        return result

    def _parse(self, response: httpx.Response) -> TranscriptResult:
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponse("Transcription response is not JSON") from exc
        if not isinstance(payload, dict):
            raise MalformedResponse("Transcription response is not an object")

        text = None
        for name in _TEXT_FIELDS:
            if isinstance(payload.get(name), str):
                text = payload[name]
                break
        if text is None:
            raise MalformedResponse(
                f"Transcription response has no text field (keys: {sorted(payload)})"
            )

        text = text.strip()
        if len(text) < self._min_transcript_length:
            raise EmptyTranscript(f"Transcript too short ({len(text)} chars)")
        language = payload.get("language")
        return TranscriptResult(text=text, language=language if isinstance(language, str) else None)
