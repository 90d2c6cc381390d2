"""Provider adapters, selected by Provider key"""

from typing import Dict, Type

from models.requests import Provider
from providers.base import ProviderAdapter
from providers.gemini_provider import GeminiProvider
from providers.openai_provider import OpenAIProvider
from providers.replicate_provider import ReplicateProvider

PROVIDER_ADAPTERS: Dict[Provider, Type[ProviderAdapter]] = {
    Provider.GEMINI: GeminiProvider,
    Provider.OPENAI: OpenAIProvider,
    Provider.REPLICATE: ReplicateProvider,
}


def build_provider(provider, settings, transport=None, models_cache=None) -> ProviderAdapter:
    """Instantiate the adapter for a provider key (enum or string)"""
    adapter_cls = PROVIDER_ADAPTERS[Provider.coerce(provider)]
    return adapter_cls(settings, transport=transport, models_cache=models_cache)


def build_providers(settings, transport=None, models_cache=None) -> Dict[Provider, ProviderAdapter]:
    return {
        provider: build_provider(provider, settings, transport=transport, models_cache=models_cache)
        for provider in PROVIDER_ADAPTERS
    }


__all__ = [
    "GeminiProvider",
    "OpenAIProvider",
    "PROVIDER_ADAPTERS",
    "ProviderAdapter",
    "ReplicateProvider",
    "build_provider",
    "build_providers",
]
