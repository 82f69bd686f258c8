from __future__ import annotations

from typing import Optional

import httpx

from recap.services.errors import ParseError
from recap.services.http_client import client_scope, send
from recap.services.llm.base import BaseCompletionProvider


class OpenAIProvider(BaseCompletionProvider):
    """LLM provider for OpenAI and OpenAI-compatible APIs."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ) -> None:
        super().__init__(logger_name="recap.llm.openai", client=client, timeout=timeout)
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")

    async def _call_api(self, messages: list[dict], json_mode: bool = True) -> str:
        request_body = {
            "model": self._model,
            "messages": messages,
            "temperature": 0.2,
        }
        if json_mode:
            request_body["response_format"] = {"type": "json_object"}

        async with client_scope(self._client, self._timeout) as client:
            response = await send(
                client,
                "POST",
                f"{self._base_url}/v1/chat/completions",
                service="OpenAI",
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json=request_body,
                timeout=self._timeout,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ParseError("OpenAI response is not JSON") from exc
        choices = data.get("choices", []) if isinstance(data, dict) else []
        if not choices:
            raise ParseError("OpenAI response missing choices")
        content = choices[0].get("message", {}).get("content", "")
        return str(content).strip()
