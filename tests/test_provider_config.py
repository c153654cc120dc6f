"""Tests for per-provider credential resolution."""
import pytest

from storage_gateway.errors import ConfigurationError, UnsupportedProviderError
from storage_gateway.providers.config import REQUIRED_KEYS

from conftest import make_resolver


def test_get_config_returns_snake_case_keys(resolver):
    config = resolver.get_config("backblaze")
    assert config == {"key_id": "b2-key", "application_key": "b2-app-key", "bucket_name": "demo-b2"}


def test_missing_keys_are_all_reported():
    resolver = make_resolver(B2_KEY_ID=None, B2_BUCKET_NAME="")
    with pytest.raises(ConfigurationError) as exc_info:
        resolver.get_config("backblaze")
    assert exc_info.value.details["missing"] == ["B2_KEY_ID", "B2_BUCKET_NAME"]
    assert exc_info.value.details["provider"] == "backblaze"


def test_optional_keys_default_to_none(resolver):
    config = resolver.get_config("dropbox")
    assert config["access_token"] == "dbx-token"
    assert config["refresh_token"] is None


def test_onedrive_graph_url_comes_from_settings(resolver):
    assert resolver.get_config("onedrive")["graph_base_url"] == "https://graph.microsoft.com/v1.0"


def test_unknown_provider():
    with pytest.raises(UnsupportedProviderError) as exc_info:
        make_resolver().get_config("ftp")
    assert set(exc_info.value.supported) == set(REQUIRED_KEYS)


def test_required_keys_are_env_names(resolver):
    assert resolver.required_keys("mega") == ["MEGA_EMAIL", "MEGA_PASSWORD"]


def test_encryption_secret_required():
    with pytest.raises(ConfigurationError):
        make_resolver(ENCRYPTION_SECRET=None).get_encryption_secret()
    assert make_resolver().get_encryption_secret() == "test-encryption-secret"


def test_fresh_settings_on_every_call(monkeypatch):
    from storage_gateway.providers.config import ProviderConfigResolver

    resolver = ProviderConfigResolver()
    monkeypatch.setenv("MEGA_EMAIL", "first@example.com")
    monkeypatch.setenv("MEGA_PASSWORD", "pw")
    assert resolver.get_config("mega")["email"] == "first@example.com"
    monkeypatch.setenv("MEGA_EMAIL", "second@example.com")
    assert resolver.get_config("mega")["email"] == "second@example.com"


def test_onedrive_tenant_is_required():
    with pytest.raises(ConfigurationError) as exc_info:
        make_resolver(ONEDRIVE_TENANT_ID=None).get_config("onedrive")
    assert exc_info.value.details["missing"] == ["ONEDRIVE_TENANT_ID"]


@pytest.mark.asyncio
async def test_onedrive_without_tenant_makes_no_call(session):
    from storage_gateway.providers.onedrive_provider import OneDriveProvider

    provider = OneDriveProvider(config_resolver=make_resolver(ONEDRIVE_TENANT_ID=""), session=session)
    with pytest.raises(ConfigurationError):
        await provider.list_files()
    assert session.calls == []
