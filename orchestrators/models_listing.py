"""Model listing across providers"""

import logging
from typing import Dict, List, Union

from managers import models_catalog
from managers.models_cache import ModelsCache
from models.failure import Failure, FailureKind
from models.requests import Provider, Purpose
from providers.base import ProviderAdapter

logger = logging.getLogger("ImageStudio")


class ModelsListing:
    """Lists usable models per provider and manages the live-listing cache"""

    def __init__(self, providers: Dict[Provider, ProviderAdapter], cache: ModelsCache, settings):
        self.providers = providers
        self.cache = cache
        self.settings = settings

    def list_models(self, provider, purpose=Purpose.GENERATE) -> Union[List[str], Failure]:
        try:
            provider = Provider.coerce(provider)
            purpose = Purpose(purpose)
        except ValueError as e:
            return Failure(FailureKind.INVALID_INPUT, str(e))
        adapter = self.providers.get(provider)
        if adapter is None:
            return Failure(FailureKind.INVALID_INPUT, f"Unsupported provider: {provider.value}")
        return adapter.list_models(purpose)

    def default_model(self, provider, purpose=Purpose.GENERATE) -> str:
        provider = Provider.coerce(provider)
        return models_catalog.provider_default_model(provider, Purpose(purpose), self.settings.default_model(provider))

    def invalidate(self, provider=None) -> List[str]:
        """Drop cached live listings; all providers when none is given.

        Returns the provider keys whose cache entry was cleared.
        """
        targets = [Provider.coerce(provider)] if provider else list(Provider)
        cleared = [p.value for p in targets if self.cache.invalidate(p)]
        logger.info(f"Invalidated model list cache for {cleared or 'no providers'}")
        return cleared
