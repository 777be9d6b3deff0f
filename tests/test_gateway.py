"""Test the remote upload gateway."""

import re

import pytest

from src.storage_sync.core.gateway import RemoteUploadGateway, RetryPolicy, clean_filename
from src.storage_sync.models.config import FallbackConfig, StorageConfig
from src.storage_sync.models.storage import (
    RemoteDescriptor,
    ResourceKind,
    UploadOptions,
)

from conftest import FakeObjectStore


@pytest.mark.asyncio
async def test_document_upload_uses_collision_resistant_id(gateway, fake_store):
    result = await gateway.upload_document(b"%PDF" * 10, "My Résumé (final).pdf")

    assert result.success
    request = fake_store.upload_calls[0]
    assert re.fullmatch(r"My_R_sum___final__\d{13}_[0-9a-f]{8}", request.public_id)
    assert request.folder == "assets/documents"
    assert request.resource_kind == ResourceKind.RAW
    assert request.preset == "assets_files"
    assert request.tags[:2] == ["document", "assets"]
    assert result.remote.public_id == f"assets/documents/{request.public_id}"
    assert result.remote.bytes == 40


@pytest.mark.asyncio
async def test_office_documents_carry_conversion_hint(gateway, fake_store):
    await gateway.upload_document(b"doc", "letter.docx")

    assert fake_store.upload_calls[0].conversion == "pdf"


@pytest.mark.asyncio
async def test_document_fallback_runs_exactly_once_with_distinct_id(storage_config):
    store = FakeObjectStore(fail_times=1)
    gateway = RemoteUploadGateway(storage_config, store=store)

    result = await gateway.upload_document(b"data", "contract.pdf", UploadOptions(folder="assets/contracts"))

    assert result.success
    assert len(store.upload_calls) == 2
    primary, fallback = store.upload_calls
    assert fallback.public_id != primary.public_id
    assert "_fallback_" in fallback.public_id
    assert fallback.preset is None
    assert fallback.context == {}
    assert fallback.folder == "assets/documents"
    assert "fallback" in fallback.tags
    assert result.remote.public_id == f"assets/documents/{fallback.public_id}"


@pytest.mark.asyncio
async def test_document_fails_after_fallback_fails(storage_config):
    store = FakeObjectStore(fail_times=5)
    gateway = RemoteUploadGateway(storage_config, store=store)

    result = await gateway.upload_document(b"data", "contract.pdf")

    assert not result.success
    assert len(store.upload_calls) == 2
    assert "contract.pdf" in result.error
    assert result.details.original_name == "contract.pdf"
    assert result.details.size == 4


@pytest.mark.asyncio
async def test_fallback_folder_and_tags_are_configurable(storage_config):
    storage_config.fallback = FallbackConfig(folder="assets/rescued", tags=["manual-review"])
    store = FakeObjectStore(fail_times=1)
    gateway = RemoteUploadGateway(storage_config, store=store)

    await gateway.upload_document(b"data", "contract.pdf")

    fallback = store.upload_calls[1]
    assert fallback.folder == "assets/rescued"
    assert "manual-review" in fallback.tags


@pytest.mark.asyncio
async def test_media_upload_has_no_fallback(storage_config):
    store = FakeObjectStore(fail_times=1)
    gateway = RemoteUploadGateway(storage_config, store=store)

    result = await gateway.upload_media(b"img", "photo.jpg")

    assert not result.success
    assert len(store.upload_calls) == 1


@pytest.mark.asyncio
async def test_media_upload_applies_preset_transformations(gateway, fake_store):
    result = await gateway.upload_media(b"img", "holiday photo.png")

    request = fake_store.upload_calls[0]
    assert result.success
    assert request.resource_kind == ResourceKind.IMAGE
    assert request.folder == "assets/images"
    assert re.fullmatch(r"holiday_photo_[0-9a-f]{6}", request.public_id)
    assert {"quality": "auto:good"} in request.transformations


@pytest.mark.asyncio
async def test_video_upload_ignores_transformations(gateway, fake_store):
    options = UploadOptions(transformations=[{"width": 10}])
    await gateway.upload_media(b"vid", "clip.mp4", options)

    request = fake_store.upload_calls[0]
    assert request.resource_kind == ResourceKind.VIDEO
    assert request.folder == "assets/videos"
    assert request.transformations == []


@pytest.mark.asyncio
async def test_not_configured_fails_fast():
    gateway = RemoteUploadGateway(StorageConfig())

    assert not gateway.configured
    result = await gateway.upload_document(b"data", "resume.pdf")
    media = await gateway.upload_media(b"data", "photo.jpg")
    deleted = await gateway.delete("assets/documents/resume")

    assert not result.success
    assert "not configured" in result.error
    assert "GCS_PROJECT_ID" in result.error
    assert not media.success
    assert not deleted.success
    assert gateway._store is None


@pytest.mark.asyncio
async def test_delete_succeeds_only_on_ok(gateway, fake_store):
    uploaded = await gateway.upload_document(b"data", "resume.pdf")

    first = await gateway.delete(uploaded.remote.public_id, ResourceKind.RAW)
    second = await gateway.delete(uploaded.remote.public_id, ResourceKind.RAW)

    assert first.success
    assert first.raw["result"] == "ok"
    assert not second.success
    assert second.raw["result"] == "not found"


@pytest.mark.asyncio
async def test_delete_reports_store_errors(storage_config):
    class BrokenStore(FakeObjectStore):
        def destroy(self, public_id, resource_kind=ResourceKind.AUTO):
            raise ConnectionError("connection reset")

    gateway = RemoteUploadGateway(storage_config, store=BrokenStore())
    result = await gateway.delete("assets/documents/resume")

    assert not result.success
    assert "connection reset" in result.error


def test_download_url_forces_attachment(gateway):
    descriptor = RemoteDescriptor(
        public_id="assets/documents/report_1_abc",
        secure_url="https://storage.googleapis.com/test-bucket/raw/assets/documents/report_1_abc?generation=7",
        resource_type=ResourceKind.RAW,
        bytes=10,
    )

    url = gateway.generate_download_url(descriptor, "report.pdf")

    assert url.startswith(descriptor.secure_url + "&")
    assert "response-content-disposition=attachment%3B%20filename%3D%22report.pdf%22" in url
    assert url.endswith("&filename=report.pdf")


def test_view_url_prefers_secure_url(gateway):
    descriptor = RemoteDescriptor(
        public_id="assets/images/cat",
        secure_url="https://storage.googleapis.com/test-bucket/image/assets/images/cat?generation=3",
        resource_type=ResourceKind.IMAGE,
        bytes=10,
    )

    assert gateway.generate_view_url(descriptor) == descriptor.secure_url


def test_view_url_rebuilt_without_secure_url(gateway):
    descriptor = RemoteDescriptor(public_id="assets/images/cat", resource_type=ResourceKind.IMAGE, bytes=10)

    assert gateway.generate_view_url(descriptor) == "https://storage.googleapis.com/test-bucket/image/assets/images/cat"
    assert gateway.generate_download_url(descriptor, "cat.png").startswith(
        "https://storage.googleapis.com/test-bucket/image/assets/images/cat?response-content-disposition="
    )


def test_thumbnail_url_carries_resize_hint(gateway):
    descriptor = RemoteDescriptor(
        public_id="assets/images/avatars/u1/me",
        secure_url="https://storage.googleapis.com/test-bucket/image/assets/images/avatars/u1/me?generation=9",
        resource_type=ResourceKind.IMAGE,
        bytes=10,
    )

    url = gateway.generate_thumbnail_url(descriptor, {"width": 150, "height": 150, "crop": "fill"})

    assert url == descriptor.secure_url + "&tr=w_150,h_150,c_fill"


def test_retry_policy_requires_fallback_for_extra_attempts():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=2)
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


def test_clean_filename():
    assert clean_filename("annual report 2024.pdf") == "annual_report_2024"
    assert clean_filename("../../etc/passwd") == "passwd"
    assert clean_filename("") == "file"
    assert len(clean_filename("a" * 300 + ".txt")) == 100
