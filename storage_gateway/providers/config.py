# storage_gateway/providers/config.py
"""
Per-provider credential resolution.

Each provider's configuration is read from a fresh `Settings()` on every
resolution (unless a settings object is injected, e.g. in tests) and is
validated eagerly: every missing required key is reported at once with its
environment variable name, before any network call is attempted.
"""
from typing import Any, Dict, List, Optional

from storage_gateway.config import Settings
from storage_gateway.errors import ConfigurationError, UnsupportedProviderError

# provider -> {config key: settings field}
REQUIRED_KEYS: Dict[str, Dict[str, str]] = {
    "google-cloud": {
        "project_id": "GOOGLE_CLOUD_PROJECT_ID",
        "bucket_name": "GOOGLE_CLOUD_BUCKET_NAME",
        "keyfile_path": "GOOGLE_CLOUD_KEYFILE_PATH",
    },
    "dropbox": {
        "access_token": "DROPBOX_ACCESS_TOKEN",
    },
    "mega": {
        "email": "MEGA_EMAIL",
        "password": "MEGA_PASSWORD",
    },
    "google-drive": {
        "client_id": "GOOGLE_DRIVE_CLIENT_ID",
        "client_secret": "GOOGLE_DRIVE_CLIENT_SECRET",
        "refresh_token": "GOOGLE_DRIVE_REFRESH_TOKEN",
    },
    "backblaze": {
        "key_id": "B2_KEY_ID",
        "application_key": "B2_APPLICATION_KEY",
        "bucket_name": "B2_BUCKET_NAME",
    },
    "onedrive": {
        "client_id": "ONEDRIVE_CLIENT_ID",
        "client_secret": "ONEDRIVE_CLIENT_SECRET",
        "refresh_token": "ONEDRIVE_REFRESH_TOKEN",
        "tenant_id": "ONEDRIVE_TENANT_ID",
    },
}

OPTIONAL_KEYS: Dict[str, Dict[str, str]] = {
    "google-cloud": {"api_key": "GOOGLE_CLOUD_API_KEY"},
    "dropbox": {
        "app_key": "DROPBOX_APP_KEY",
        "app_secret": "DROPBOX_APP_SECRET",
        "refresh_token": "DROPBOX_REFRESH_TOKEN",
    },
    "onedrive": {
        "graph_base_url": "MS_GRAPH_BASE_URL",
    },
}


class ProviderConfigResolver:
    """Resolves provider credential bundles from settings."""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings

    def _current_settings(self) -> Settings:
        # No caching: credentials rotated in the environment are picked up on the next call
        return self._settings if self._settings is not None else Settings()

    def required_keys(self, provider: str) -> List[str]:
        if provider not in REQUIRED_KEYS:
            raise UnsupportedProviderError(provider, REQUIRED_KEYS.keys())
        return list(REQUIRED_KEYS[provider].values())

    def get_config(self, provider: str) -> Dict[str, Any]:
        if provider not in REQUIRED_KEYS:
            raise UnsupportedProviderError(provider, REQUIRED_KEYS.keys())
        settings = self._current_settings()

        config: Dict[str, Any] = {}
        missing = []
        for key, env_name in REQUIRED_KEYS[provider].items():
            value = getattr(settings, env_name, None)
            if value in (None, ""):
                missing.append(env_name)
            config[key] = value
        if missing:
            raise ConfigurationError(
                f"Missing configuration for {provider}: {', '.join(missing)}",
                details={"provider": provider, "missing": missing},
            )

        for key, env_name in OPTIONAL_KEYS.get(provider, {}).items():
            config[key] = getattr(settings, env_name, None) or None
        return config

    def get_encryption_secret(self) -> str:
        secret = self._current_settings().ENCRYPTION_SECRET
        if not secret:
            raise ConfigurationError("ENCRYPTION_SECRET is not set in environment variables")
        return secret
