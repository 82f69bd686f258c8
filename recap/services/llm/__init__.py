from typing import Optional

import httpx

from recap.services.llm.base import (
    CompletionProvider,
    LLMProviderError,
    Parsed,
    extract_json,
    parse_or_default,
    strip_code_fence,
)
from recap.services.llm.completion_provider import CompletionServiceProvider
from recap.services.llm.openai_provider import OpenAIProvider


def create_provider(config, client: Optional[httpx.AsyncClient] = None) -> CompletionProvider:
    """Build the completion provider selected by ``config.provider``."""
    if config.provider == "openai":
        if not config.api_key:
            raise LLMProviderError("Missing OpenAI API key. Please configure it in the pipeline settings.")
        return OpenAIProvider(
            api_key=config.api_key,
            model=config.model,
            base_url=config.openai_base_url,
            client=client,
            timeout=config.analysis_timeout,
        )
    return CompletionServiceProvider(
        url=config.completion_url,
        client=client,
        timeout=config.analysis_timeout,
    )


__all__ = [
    "CompletionProvider",
    "CompletionServiceProvider",
    "LLMProviderError",
    "OpenAIProvider",
    "Parsed",
    "create_provider",
    "extract_json",
    "parse_or_default",
    "strip_code_fence",
]
