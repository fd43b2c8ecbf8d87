"""Chat model construction per provider key."""

from __future__ import annotations

from typing import Any, Literal

from chat_orchestrator.config import ProviderConfig
from chat_orchestrator.errors import MissingCredentials, RequestValidationError

Provider = Literal["openai", "anthropic", "gemini"]

PROVIDER_LABELS: dict[str, str] = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "gemini": "Gemini",
}


def provider_label(provider: str) -> str:
    return PROVIDER_LABELS.get(provider, provider)


def create_chat_model(provider: str, config: ProviderConfig, *, timeout_seconds: float) -> Any:
    """Build a LangChain chat model; integrations are imported only when selected."""

    if provider not in PROVIDER_LABELS:
        raise RequestValidationError(
            f"Unknown provider: {provider}",
            user_message=f"I don't know the provider '{provider}'. Use openai, anthropic or gemini.",
        )
    api_key = config.api_key_for(provider)
    if not api_key:
        raise MissingCredentials(provider_label(provider))

    if provider == "anthropic":
        from langchain_anthropic import ChatAnthropic

        return ChatAnthropic(
            model=config.anthropic_model,
            temperature=config.temperature,
            api_key=api_key,
            timeout=timeout_seconds,
        )
    if provider == "gemini":
        from langchain_google_genai import ChatGoogleGenerativeAI

        return ChatGoogleGenerativeAI(
            model=config.gemini_model,
            temperature=config.temperature,
            google_api_key=api_key,
        )

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=config.openai_model,
        temperature=config.temperature,
        api_key=api_key,
        timeout=timeout_seconds,
    )
