from __future__ import annotations

from gateflow.providers.base import (
    CompletionProvider,
    CompletionRequest,
    CompletionResponse,
    ProviderConfigurationError,
    ProviderError,
    ProviderRequestError,
    StreamEvent,
)
from gateflow.providers.claude import ClaudeProvider
from gateflow.providers.openai_compat import OpenAIProvider

PROVIDERS: dict[str, type[CompletionProvider]] = {
    ClaudeProvider.name: ClaudeProvider,
    OpenAIProvider.name: OpenAIProvider,
}


def create_provider(
    name: str,
    *,
    model: str,
    api_key_env: str | None = None,
    request_timeout_seconds: float = 600.0,
) -> CompletionProvider:
    provider_cls = PROVIDERS.get(name)
    if provider_cls is None:
        raise ProviderConfigurationError(f"Unsupported provider: {name}", provider=name)
    return provider_cls(
        model=model,
        api_key_env=api_key_env,
        request_timeout_seconds=request_timeout_seconds,
    )


__all__ = [
    "PROVIDERS",
    "ClaudeProvider",
    "CompletionProvider",
    "CompletionRequest",
    "CompletionResponse",
    "OpenAIProvider",
    "ProviderConfigurationError",
    "ProviderError",
    "ProviderRequestError",
    "StreamEvent",
    "create_provider",
]
