from __future__ import annotations

from typing import Optional

import httpx

from recap.services.errors import ParseError
from recap.services.http_client import client_scope, send
from recap.services.llm.base import BaseCompletionProvider


class CompletionServiceProvider(BaseCompletionProvider):
    """Fixed text-completion endpoint: ``{messages}`` in, ``{completion}`` out."""

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ) -> None:
        super().__init__(logger_name="recap.llm.completion", client=client, timeout=timeout)
        self._url = url

    async def _call_api(self, messages: list[dict], json_mode: bool = True) -> str:
        async with client_scope(self._client, self._timeout) as client:
            response = await send(
                client,
                "POST",
                self._url,
                service="Analysis service",
                json={"messages": messages},
                timeout=self._timeout,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ParseError("Completion response is not JSON") from exc
        completion = data.get("completion") if isinstance(data, dict) else None
        if not isinstance(completion, str):
            raise ParseError("Completion response missing 'completion'")
        return completion
