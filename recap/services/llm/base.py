from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

import httpx

from recap.services.errors import ParseError, RecapError

T = TypeVar("T")

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


class LLMProviderError(RecapError):
    user_message = "Analysis service is not configured. Please check the pipeline settings."


class CompletionProvider(ABC):
    @abstractmethod
    async def complete(self, system: str, user: str, *, json_mode: bool = True) -> str:
        """Send one system + user exchange and return the raw response text."""
        raise NotImplementedError


class BaseCompletionProvider(CompletionProvider):
    """Shared message building, timing and client handling.

    Subclasses only need to implement _call_api() for their specific API.
    """

    def __init__(
        self,
        logger_name: str = "recap.llm",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ) -> None:
        self._logger = logging.getLogger(logger_name)
        self._client = client
        self._timeout = timeout

    @abstractmethod
    async def _call_api(self, messages: list[dict], json_mode: bool = True) -> str:
        """Make an API call and return the response text.

        Args:
            messages: Chat messages, system first
            json_mode: Request JSON-formatted response if supported
        """
        raise NotImplementedError

    async def complete(self, system: str, user: str, *, json_mode: bool = True) -> str:
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        started = time.perf_counter()
        content = await self._call_api(messages, json_mode=json_mode)
        self._logger.debug(
            "Completion returned %d chars in %.0fms",
            len(content),
            (time.perf_counter() - started) * 1000,
        )
        return content


def strip_code_fence(text: str) -> str:
    """Return the body of the first fenced block, or the trimmed text."""
    match = _FENCE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def extract_json(text: str) -> Any:
    cleaned = strip_code_fence(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Response is not valid JSON: {cleaned[:200]}") from exc


def require_object(data: Any) -> dict:
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


@dataclass(frozen=True)
class Parsed(Generic[T]):
    """Outcome of one analysis call: the value, and whether it is a fallback."""

    value: T
    fallback_used: bool = False
    error: Optional[BaseException] = None


async def parse_or_default(
    call: Callable[[], Awaitable[str]],
    build: Callable[[Any], T],
    fallback: Callable[[BaseException], T],
    *,
    logger: logging.Logger,
    label: str,
) -> Parsed[T]:
    """Run ``call``, parse its JSON and ``build`` a value, or fall back.

    Any failure on the way (transport, service, JSON or shape) is logged and
    replaced by ``fallback(exc)``; nothing propagates to the caller.
    """
    try:
        raw = await call()
        return Parsed(build(extract_json(raw)))
    except Exception as exc:
        logger.warning("%s failed, using fallback: %s", label, exc)
        return Parsed(fallback(exc), fallback_used=True, error=exc)
