"""Static catalog of provider models and their capabilities.

The catalog is resolved once, on first read. Third parties may augment it
with `register_catalog_filter` before that first read; afterwards it is
read-only.
"""

import copy
import logging
import threading
from typing import Callable, Dict, FrozenSet, List, Optional

from models.requests import Provider, Purpose

logger = logging.getLogger("ImageStudio")

CatalogTable = Dict[str, Dict[str, List[str]]]
CatalogFilter = Callable[[CatalogTable], CatalogTable]

GENERATE_MODELS: Dict[Provider, tuple] = {
    Provider.GEMINI: (
        "gemini-2.5-flash-image-preview",
        "gemini-3-pro-image-preview",
        "imagen-4.0-generate-001",
        "imagen-4.0-ultra-generate-001",
        "imagen-4.0-fast-generate-001",
    ),
    Provider.OPENAI: (
        "gpt-image-1",
        "gpt-image-1-mini",
    ),
    Provider.REPLICATE: (
        "google/gemini-2.5-flash-image",
        "google/imagen-4",
        "google/imagen-4-ultra",
        "google/imagen-4-fast",
        "google/nano-banana-pro",
        "black-forest-labs/flux-1.1-pro",
        "black-forest-labs/flux-dev",
        "black-forest-labs/flux-schnell",
        "recraft-ai/recraft-v3",
        "reve/create",
        "ideogram-ai/ideogram-v3-turbo",
        "ideogram-ai/ideogram-v3-quality",
        "ideogram-ai/ideogram-v3-balanced",
        "stability-ai/stable-diffusion-3.5-large",
        "bytedance/seedream-4",
        "tencent/hunyuan-image-3",
        "qwen/qwen-image",
        "minimax/image-01",
    ),
}

EDIT_MODELS: Dict[Provider, tuple] = {
    Provider.GEMINI: (
        "gemini-2.5-flash-image-preview",
        "gemini-3-pro-image-preview",
    ),
    Provider.OPENAI: (
        "gpt-image-1",
        "gpt-image-1-mini",
    ),
    Provider.REPLICATE: (
        "qwen/qwen-image-edit",
        "bytedance/seededit-3.0",
        "bytedance/seedream-4",
        "google/nano-banana-pro",
        "google/nano-banana",
        "black-forest-labs/flux-kontext-max",
        "black-forest-labs/flux-kontext-dev",
        "reve/edit",
        "reve/remix",
    ),
}

MULTI_REFERENCE_MODELS: Dict[Provider, FrozenSet[str]] = {
    Provider.GEMINI: frozenset({
        "gemini-2.5-flash-image-preview",
        "gemini-2.5-flash-image",
        "gemini-3-pro-image-preview",
    }),
    Provider.OPENAI: frozenset({
        "gpt-image-1",
        "gpt-image-1-mini",
    }),
    Provider.REPLICATE: frozenset({
        "google/nano-banana",
        "google/nano-banana-pro",
        "bytedance/seedream-4",
        "reve/remix",
    }),
}

RESOLUTION_MODELS: Dict[Provider, FrozenSet[str]] = {
    Provider.GEMINI: frozenset({"gemini-3-pro-image-preview"}),
    Provider.OPENAI: frozenset(),
    Provider.REPLICATE: frozenset({"google/nano-banana-pro"}),
}

_filters: List[CatalogFilter] = []
_resolved: Optional[CatalogTable] = None
_lock = threading.Lock()


def register_catalog_filter(catalog_filter: CatalogFilter):
    """Register a function that receives and returns the catalog table.

    Must be called before the catalog is first read.
    """
    with _lock:
        if _resolved is not None:
            raise RuntimeError("Models catalog already loaded; register filters before first use")
        _filters.append(catalog_filter)


def reset_catalog():
    """Drop registered filters and the resolved table (used by tests and reloads)"""
    global _resolved
    with _lock:
        _filters.clear()
        _resolved = None


def _base_table() -> CatalogTable:
    return {
        Purpose.GENERATE.value: {p.value: list(models) for p, models in GENERATE_MODELS.items()},
        Purpose.EDIT.value: {p.value: list(models) for p, models in EDIT_MODELS.items()},
    }


def _sanitize(table, fallback: CatalogTable) -> CatalogTable:
    if not isinstance(table, dict):
        return fallback
    clean: CatalogTable = {}
    for purpose in Purpose:
        providers = table.get(purpose.value)
        if not isinstance(providers, dict):
            clean[purpose.value] = fallback[purpose.value]
            continue
        clean[purpose.value] = {}
        for provider in Provider:
            models = providers.get(provider.value)
            if not isinstance(models, (list, tuple)):
                clean[purpose.value][provider.value] = fallback[purpose.value][provider.value]
                continue
            seen: List[str] = []
            for model in models:
                if isinstance(model, str) and model.strip() and model.strip() not in seen:
                    seen.append(model.strip())
            clean[purpose.value][provider.value] = seen
    return clean


def _load() -> CatalogTable:
    global _resolved
    with _lock:
        if _resolved is None:
            table = _base_table()
            for catalog_filter in _filters:
                try:
                    table = _sanitize(catalog_filter(copy.deepcopy(table)), table)
                except Exception as e:
                    logger.warning(f"Models catalog filter {catalog_filter!r} failed: {e}")
            _resolved = table
            logger.info("Loaded models catalog with %s filter(s)", len(_filters))
        return _resolved


def get(purpose: Purpose, provider: Provider) -> List[str]:
    """Ordered model identifiers for a purpose and provider"""
    table = _load()
    return list(table[Purpose(purpose).value][Provider.coerce(provider).value])


def all_models() -> CatalogTable:
    return copy.deepcopy(_load())


def is_listed(purpose: Purpose, provider: Provider, model: str) -> bool:
    return model in get(purpose, provider)


def provider_default_model(provider: Provider, purpose: Purpose = Purpose.GENERATE, preferred: str = "") -> str:
    """Preferred model when it is listed for the purpose, else the first listed model"""
    models = get(purpose, provider)
    if preferred and preferred in models:
        return preferred
    return models[0] if models else ""


def supports_multi_reference(provider: Provider, model: str) -> bool:
    """Unknown models are assumed to accept a single image only"""
    return model in MULTI_REFERENCE_MODELS.get(Provider.coerce(provider), frozenset())


def supports_resolution(provider: Provider, model: str) -> bool:
    """Unknown models are assumed not to accept a resolution token"""
    return model in RESOLUTION_MODELS.get(Provider.coerce(provider), frozenset())
