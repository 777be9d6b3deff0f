"""Shared fixtures: an in-memory object store and temp-dir configuration."""

from typing import Any, Dict, List, Optional

import pytest

from src.storage_sync.core.gateway import RemoteUploadGateway
from src.storage_sync.core.mirror import LocalMirror
from src.storage_sync.core.object_store import GCSObjectStore, UploadPresetError
from src.storage_sync.core.statistics import StatisticsTracker
from src.storage_sync.core.storage_service import StorageService
from src.storage_sync.models.config import (
    BackupConfig,
    GCSConfig,
    MigrationSettings,
    StorageConfig,
)
from src.storage_sync.models.storage import ResourceKind, UploadRequest


class FakeObjectStore:
    """In-memory stand-in for GCSObjectStore with the same call signatures."""

    def __init__(self, fail_times: int = 0):
        self.objects: Dict[str, bytes] = {}
        self.upload_calls: List[UploadRequest] = []
        self.destroy_calls: List[tuple] = []
        self.fail_times = fail_times

    def upload(self, data: bytes, request: UploadRequest) -> Dict[str, Any]:
        self.upload_calls.append(request)
        if self.fail_times:
            self.fail_times -= 1
            raise UploadPresetError(f"Upload preset not found: {request.preset}")

        name = GCSObjectStore.object_name(request.full_id, request.resource_kind)
        self.objects[name] = data
        return {
            "public_id": request.full_id,
            "secure_url": f"https://storage.googleapis.com/test-bucket/{name}?generation=1",
            "url": f"gs://test-bucket/{name}",
            "format": request.format,
            "resource_type": request.resource_kind.value,
            "bytes": len(data),
            "created_at": "2024-01-01T00:00:00",
            "tags": list(request.tags),
        }

    def destroy(self, public_id: str, resource_kind: ResourceKind = ResourceKind.AUTO) -> Dict[str, Any]:
        self.destroy_calls.append((public_id, resource_kind))
        kinds = GCSObjectStore.SEARCH_ORDER if resource_kind == ResourceKind.AUTO else [resource_kind]
        for kind in kinds:
            name = GCSObjectStore.object_name(public_id, kind)
            if name in self.objects:
                del self.objects[name]
                return {"result": "ok", "resource_type": kind.value}
        return {"result": "not found"}

    def resource(self, public_id: str, resource_kind: ResourceKind = ResourceKind.AUTO) -> Optional[Dict[str, Any]]:
        kinds = GCSObjectStore.SEARCH_ORDER if resource_kind == ResourceKind.AUTO else [resource_kind]
        for kind in kinds:
            name = GCSObjectStore.object_name(public_id, kind)
            if name in self.objects:
                return {"public_id": public_id, "resource_type": kind.value, "bytes": len(self.objects[name])}
        return None

    def ping(self) -> bool:
        return True


@pytest.fixture
def storage_config(tmp_path):
    """Fully configured storage config rooted in a temp directory."""
    credentials = tmp_path / "service-account.json"
    credentials.write_text("{}")
    return StorageConfig(
        gcs=GCSConfig(
            project_id="test-project",
            bucket_name="test-bucket",
            credentials_path=str(credentials),
        ),
        backup=BackupConfig(root=tmp_path / "backups"),
        migration=MigrationSettings(root=tmp_path / "migrations", batch_delay=0, rate_limit=1000),
    )


@pytest.fixture
def fake_store():
    return FakeObjectStore()


@pytest.fixture
def gateway(storage_config, fake_store):
    return RemoteUploadGateway(storage_config, store=fake_store)


@pytest.fixture
def service(storage_config, gateway):
    """Initialized storage service backed by the fake store."""
    service = StorageService(
        config=storage_config,
        classifier=gateway.classifier,
        gateway=gateway,
        mirror=LocalMirror(storage_config.backup),
        tracker=StatisticsTracker(storage_config.backup.stats_path, persist=False),
    )
    service.initialize()
    return service
