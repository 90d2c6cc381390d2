"""Settings and credential management"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from models.requests import Provider

logger = logging.getLogger("ImageStudio")

# Configuration paths
CONFIG_DIR = Path.home() / ".config" / "image-studio-mcp"
CONFIG_FILE = CONFIG_DIR / "config.json"

CREDENTIAL_ENV_VARS = {
    Provider.GEMINI: "IMAGE_STUDIO_GEMINI_API_KEY",
    Provider.OPENAI: "IMAGE_STUDIO_OPENAI_API_KEY",
    Provider.REPLICATE: "IMAGE_STUDIO_REPLICATE_API_TOKEN",
}

HARDCODED_SETTINGS: Dict[str, Any] = {
    "api_keys": {
        "gemini": "",
        "openai": "",
        "replicate": "",
    },
    "default_models": {
        "gemini": "gemini-2.5-flash-image-preview",
        "openai": "gpt-image-1",
        "replicate": "black-forest-labs/flux-1.1-pro",
    },
    "generation_defaults": {
        "provider": "gemini",
        "aspect_ratio": "1:1",
        "format": "png",
    },
    "privacy": {
        "store_history": False,
    },
    "logging": {
        "enabled": False,
    },
    "permissions": {
        "allow_generate": True,
        "allow_edit": True,
        "allow_replace_original": True,
    },
    "storage": {
        "root": str(Path.home() / ".local" / "share" / "image-studio-mcp"),
        "base_url": "",
    },
    "edit_buffer": {
        "ttl_seconds": 3600,
    },
    "models_cache": {
        "ttl_seconds": 86400,
    },
    "normalizer": {
        "background": "#ffffff",
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8000,
        "user_id": 1,
    },
    "providers": {
        "gemini": {"timeout": 60},
        "openai": {"timeout": 120},
        "replicate": {"timeout": 60, "poll_attempts": 30, "poll_interval": 2.0},
    },
}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge `override` into a copy of `base`"""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _dig(data: Dict[str, Any], path: str) -> Any:
    node: Any = data
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(path)
        node = node[part]
    return node


def _assign(data: Dict[str, Any], path: str, value: Any):
    parts = path.split(".")
    node = data
    for part in parts[:-1]:
        if not isinstance(node.get(part), dict):
            node[part] = {}
        node = node[part]
    node[parts[-1]] = value


class SettingsManager:
    """Layered settings with precedence: runtime > config file > env > hardcoded.

    Provider credentials are the exception: an environment variable always
    wins over the stored value.
    """

    def __init__(self, config_file: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None):
        self.config_file = Path(config_file) if config_file else CONFIG_FILE
        self._runtime: Dict[str, Any] = copy.deepcopy(overrides or {})
        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load settings from the config file"""
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                config = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load config file {self.config_file}: {e}")
            return {}
        if not isinstance(config, dict):
            logger.warning(f"Ignoring config file {self.config_file}: top level must be an object")
            return {}
        return config

    def _get_env_settings(self) -> Dict[str, Any]:
        """Load settings from environment variables"""
        settings: Dict[str, Any] = {}
        storage_root = os.getenv("IMAGE_STUDIO_STORAGE_DIR")
        base_url = os.getenv("IMAGE_STUDIO_BASE_URL")
        store_history = os.getenv("IMAGE_STUDIO_STORE_HISTORY")
        user_id = os.getenv("IMAGE_STUDIO_USER_ID")
        if storage_root:
            _assign(settings, "storage.root", storage_root)
        if base_url:
            _assign(settings, "storage.base_url", base_url)
        if store_history is not None:
            _assign(settings, "privacy.store_history", store_history.strip().lower() in {"1", "true", "yes", "y"})
        if user_id and user_id.strip().isdigit():
            _assign(settings, "server.user_id", int(user_id))
        return settings

    def get_all(self) -> Dict[str, Any]:
        """Get all effective settings (merged from all sources)"""
        merged = deep_merge(HARDCODED_SETTINGS, self._get_env_settings())
        merged = deep_merge(merged, self._config)
        return deep_merge(merged, self._runtime)

    def get(self, path: str, default: Any = None) -> Any:
        """Get a setting by dot path, e.g. ``privacy.store_history``"""
        try:
            return _dig(self.get_all(), path)
        except KeyError:
            return default

    def set(self, path: str, value: Any):
        """Set a runtime (non-persisted) setting"""
        _assign(self._runtime, path, value)

    def get_provider_credential(self, provider: Provider) -> Optional[str]:
        """Resolve a provider credential; the environment overrides stored values"""
        provider = Provider.coerce(provider)
        env_value = os.getenv(CREDENTIAL_ENV_VARS[provider], "").strip()
        if env_value:
            return env_value
        stored = self.get(f"api_keys.{provider.value}")
        if isinstance(stored, str) and stored.strip():
            return stored.strip()
        return None

    def is_connected(self, provider: Provider) -> bool:
        return self.get_provider_credential(provider) is not None

    def default_model(self, provider: Provider) -> str:
        provider = Provider.coerce(provider)
        return str(self.get(f"default_models.{provider.value}", "") or "")

    def persist(self, path: str, value: Any) -> Dict[str, Any]:
        """Persist a setting to the config file"""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)

        config = self._load_config()
        _assign(config, path, value)

        # Atomic write: write to temp file then rename
        temp_path = self.config_file.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(config, f, indent=2)
            temp_path.replace(self.config_file)
        except (IOError, TypeError) as e:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            return {"error": f"Failed to write config file: {e}"}

        self._config = self._load_config()
        return {"success": True, "persisted": {path: value}}
