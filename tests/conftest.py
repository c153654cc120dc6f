import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Settings are read at import time by the db and logger modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENCRYPTION_SECRET", "test-encryption-secret")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
import pytest_asyncio

from storage_gateway.config import Settings
from storage_gateway.db.session import Base, SessionLocal, engine
from storage_gateway.errors import NotFoundError
from storage_gateway.providers.base import CloudStorageProvider, FileListItem, UploadResult, construct_file_path
from storage_gateway.providers.config import ProviderConfigResolver

PROVIDER_SETTINGS = {
    "GOOGLE_CLOUD_PROJECT_ID": "demo-project",
    "GOOGLE_CLOUD_BUCKET_NAME": "demo-bucket",
    "GOOGLE_CLOUD_KEYFILE_PATH": "/secrets/gcs.json",
    "DROPBOX_ACCESS_TOKEN": "dbx-token",
    "MEGA_EMAIL": "user@example.com",
    "MEGA_PASSWORD": "mega-pass",
    "GOOGLE_DRIVE_CLIENT_ID": "drive-client",
    "GOOGLE_DRIVE_CLIENT_SECRET": "drive-secret",
    "GOOGLE_DRIVE_REFRESH_TOKEN": "drive-refresh",
    "B2_KEY_ID": "b2-key",
    "B2_APPLICATION_KEY": "b2-app-key",
    "B2_BUCKET_NAME": "demo-b2",
    "ONEDRIVE_CLIENT_ID": "od-client",
    "ONEDRIVE_CLIENT_SECRET": "od-secret",
    "ONEDRIVE_REFRESH_TOKEN": "od-refresh",
    "ONEDRIVE_TENANT_ID": "od-tenant",
}


def make_resolver(**overrides) -> ProviderConfigResolver:
    values = {**PROVIDER_SETTINGS, "ENCRYPTION_SECRET": "test-encryption-secret", **overrides}
    return ProviderConfigResolver(Settings(_env_file=None, **values))


class FakeResponse:
    """Minimal aiohttp response: async context manager with json/text/read."""

    def __init__(self, status=200, json_payload=None, text_payload=None, body=b""):
        self.status = status
        self._json = json_payload
        self._text = text_payload
        self._body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, **kwargs):
        return self._json

    async def text(self):
        if self._text is not None:
            return self._text
        return json.dumps(self._json) if self._json is not None else ""

    async def read(self):
        return self._body


@dataclass
class Call:
    method: str
    url: str
    kwargs: Dict[str, Any] = field(default_factory=dict)


class FakeSession:
    """aiohttp-like session routing on (method, url fragment).

    Routes are matched in the order they were added. A route with several
    responses hands them out in turn and keeps repeating the last one.
    """

    def __init__(self):
        self.routes: List[list] = []
        self.calls: List[Call] = []

    def add(self, method: str, fragment: str, *responses: FakeResponse) -> "FakeSession":
        self.routes.append([method, fragment, list(responses)])
        return self

    def request(self, method, url, **kwargs):
        self.calls.append(Call(method, url, kwargs))
        for route_method, fragment, responses in self.routes:
            if route_method == method and fragment in url:
                return responses.pop(0) if len(responses) > 1 else responses[0]
        raise AssertionError(f"unexpected request {method} {url}")

    def calls_to(self, method: str, fragment: str) -> List[Call]:
        return [c for c in self.calls if c.method == method and fragment in c.url]


@pytest.fixture
def resolver():
    return make_resolver()


@pytest.fixture
def session():
    return FakeSession()


@pytest_asyncio.fixture
async def db_ready():
    # fresh schema per test
    from storage_gateway.db import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield SessionLocal


class MemoryBackend:
    """State shared by every adapter instance of one in-memory provider."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.fail_uploads = 0
        self.always_fail = False
        self.upload_error: Optional[Exception] = None
        self.fail_downloads = False
        self.fail_deletes = False
        self.fail_credentials = False
        self.upload_calls = 0


class MemoryProvider(CloudStorageProvider):
    """Adapter storing objects in a `MemoryBackend` (registry-compatible)."""

    backend: MemoryBackend = None

    def validate_configuration(self) -> None:
        return None

    def get_encryptable_credentials(self) -> Dict[str, Any]:
        if self.backend.fail_credentials:
            raise RuntimeError("credential bundle unavailable")
        return {"token": f"{self.name}-token"}

    async def _upload(self, content, target_name, folder, content_type):
        backend = self.backend
        backend.upload_calls += 1
        if backend.upload_error is not None:
            raise backend.upload_error
        if backend.always_fail or backend.fail_uploads:
            backend.fail_uploads = max(backend.fail_uploads - 1, 0)
            raise RuntimeError(f"{self.name} unavailable")
        key = construct_file_path(target_name, folder)
        backend.objects[key] = content
        return UploadResult(url=f"https://{self.name}.example/{key}", storage_name=target_name)

    async def _list(self, folder):
        prefix = f"{folder}/" if folder else ""
        return [
            FileListItem(name=key[len(prefix):], size=len(data), content_type="text/plain", path=key)
            for key, data in sorted(self.backend.objects.items())
            if key.startswith(prefix) and "/" not in key[len(prefix):]
        ]

    async def _download(self, file_id, folder):
        if self.backend.fail_downloads:
            raise RuntimeError(f"{self.name} download failed")
        key = construct_file_path(file_id, folder)
        if key not in self.backend.objects:
            raise NotFoundError(f"File '{file_id}' not found", details={"provider": self.name})
        return self.backend.objects[key]

    async def _delete(self, file_id, folder):
        if self.backend.fail_deletes:
            raise RuntimeError(f"{self.name} delete failed")
        key = construct_file_path(file_id, folder)
        if self.backend.objects.pop(key, None) is None:
            raise NotFoundError(f"File '{file_id}' not found", details={"provider": self.name})

    async def _create_folder(self, folder):
        return None

    async def _delete_folder(self, folder):
        for key in [k for k in self.backend.objects if k.startswith(f"{folder}/")]:
            del self.backend.objects[key]


def memory_provider(name: str, backend: MemoryBackend):
    return type(f"Memory_{name}", (MemoryProvider,), {"name": name, "display_name": name.title(), "backend": backend})


MEMORY_PROVIDERS = ("alpha", "beta", "gamma")


@pytest.fixture
def backends():
    return {name: MemoryBackend() for name in MEMORY_PROVIDERS}


@pytest.fixture
def metrics():
    from storage_gateway.monitoring.metrics import PerformanceMetricsCollector

    return PerformanceMetricsCollector(providers=MEMORY_PROVIDERS)


@pytest.fixture
def service(db_ready, backends, metrics):
    from storage_gateway.core.storage_service import StorageService
    from storage_gateway.providers.registry import ProviderRegistry

    registry = ProviderRegistry({name: memory_provider(name, b) for name, b in backends.items()})
    delays: List[float] = []

    async def record_sleep(seconds):
        delays.append(seconds)

    svc = StorageService(
        registry=registry,
        session_factory=db_ready,
        config_resolver=make_resolver(),
        metrics=metrics,
        sleep=record_sleep,
    )
    svc.delays = delays
    return svc


def pdf(name="report.pdf", content=b"%PDF-1.4 demo"):
    from storage_gateway.core.results import UploadedFile

    return UploadedFile(content=content, filename=name, content_type="application/pdf")
