from __future__ import annotations

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_openai import ChatOpenAI

from openinsight.config import Settings
from openinsight.exceptions import ConfigurationError

logger = structlog.get_logger()

_APP_HEADERS = {
    "HTTP-Referer": "https://openinsight.techulus.xyz",
    "X-Title": "OpenInsight",
}


def create_chat_model(settings: Settings, temperature: float | None = None) -> BaseChatModel:
    """Create a LangChain ChatModel talking to OpenRouter's OpenAI-compatible API.

    Raises ConfigurationError when ``OPENROUTER_KEY`` is not set.
    """
    api_key = settings.openrouter_key.get_secret_value()
    if not api_key:
        raise ConfigurationError("OPENROUTER_KEY environment variable is required")

    model = ChatOpenAI(
        model=settings.openrouter_model,
        api_key=api_key,
        base_url=settings.openrouter_base_url,
        default_headers=_APP_HEADERS,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature if temperature is None else temperature,
        timeout=settings.llm_timeout_seconds,
        max_retries=0,
    )
    logger.info("llm_provider_added", provider="openrouter", model=settings.openrouter_model)
    return model
