"""Configuration and model listing tools"""

import copy
import logging
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP

from models.failure import FailureKind, is_failure
from models.requests import Provider
from orchestrators.models_listing import ModelsListing
from tools.helpers import build_response, error_response

logger = logging.getLogger("MCP_Server")

# Settings that can be changed from a tool call; credentials stay out of reach
WRITABLE_SETTINGS = (
    "default_models.gemini",
    "default_models.openai",
    "default_models.replicate",
    "generation_defaults.provider",
    "generation_defaults.aspect_ratio",
    "generation_defaults.format",
    "privacy.store_history",
    "logging.enabled",
    "normalizer.background",
)


def _redacted(settings_dict: dict) -> dict:
    redacted = copy.deepcopy(settings_dict)
    api_keys = redacted.get("api_keys")
    if isinstance(api_keys, dict):
        for key, value in api_keys.items():
            api_keys[key] = "***" if value else ""
    return redacted


def register_configuration_tools(
    mcp: FastMCP,
    models_listing: ModelsListing,
    settings
):
    """Register configuration tools with the MCP server"""

    @mcp.tool()
    def list_models(provider: Optional[str] = None, purpose: str = "generate") -> dict:
        """List models usable for generation or editing.

        When the provider offers a live model listing, the static catalog is
        narrowed to models the account can actually use (cached for a day).

        Args:
            provider: "gemini", "openai" or "replicate"; all providers when omitted
            purpose: "generate" or "edit"

        Returns:
            {"purpose": ..., "providers": {provider: {"models": [...], "default": ...}}}
            Providers that fail to list carry an "error" entry instead.
        """
        targets = [provider] if provider else [p.value for p in Provider]
        providers = {}
        for target in targets:
            result = models_listing.list_models(target, purpose)
            if is_failure(result):
                if provider:
                    return build_response(result)
                providers[target] = build_response(result)
                continue
            providers[target] = {
                "models": result,
                "count": len(result),
                "default": models_listing.default_model(target, purpose) if result else None,
            }
        return {"purpose": purpose, "providers": providers}

    @mcp.tool()
    def invalidate_models_cache(provider: Optional[str] = None) -> dict:
        """Forget cached live model listings so the next list_models refetches.

        Args:
            provider: Provider to invalidate; all providers when omitted

        Returns:
            {"invalidated": [provider, ...]}
        """
        try:
            cleared = models_listing.invalidate(provider)
        except ValueError as e:
            return error_response(FailureKind.INVALID_INPUT, str(e))
        return {"invalidated": cleared}

    @mcp.tool()
    def get_settings() -> dict:
        """Get the effective settings (runtime, config file, env, hardcoded).

        API keys are redacted; "connected" shows which providers have a credential.
        """
        return {
            "settings": _redacted(settings.get_all()),
            "connected": {p.value: settings.is_connected(p) for p in Provider},
        }

    @mcp.tool()
    def set_setting(path: str, value: Any, persist: bool = False) -> dict:
        """Change a setting at runtime, optionally writing it to the config file.

        Args:
            path: Dot path, e.g. "privacy.store_history" or "default_models.openai"
            value: New value
            persist: If True, write to ~/.config/image-studio-mcp/config.json

        Returns:
            {"success": True, "path": ..., "value": ...} or an error.
        """
        if path not in WRITABLE_SETTINGS:
            return error_response(
                FailureKind.INVALID_INPUT,
                f"Setting '{path}' cannot be changed here. Writable: {', '.join(WRITABLE_SETTINGS)}",
            )
        if path == "generation_defaults.provider":
            try:
                value = Provider.coerce(value).value
            except ValueError as e:
                return error_response(FailureKind.INVALID_INPUT, str(e))

        settings.set(path, value)
        if persist:
            outcome = settings.persist(path, value)
            if "error" in outcome:
                logger.error(outcome["error"])
                return error_response(FailureKind.STORAGE_ERROR, outcome["error"])
        return {"success": True, "path": path, "value": value, "persisted": persist}
