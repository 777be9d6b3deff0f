"""Remote upload, delete and URL generation against the object store."""

import asyncio
import mimetypes
import re
import secrets
import time
from pathlib import PurePath
from typing import Callable, Iterator, List, Optional, Dict, Any
from urllib.parse import quote, urlencode, urlparse

from loguru import logger

from ..models.config import StorageConfig
from ..models.storage import (
    Classification,
    DeleteResult,
    FileCategory,
    RemoteDescriptor,
    ResourceKind,
    UploadOptions,
    UploadRequest,
    UploadResult,
)
from ..utils.config_loader import missing_credentials
from .classifier import FileClassifier
from .object_store import GCSObjectStore


FallbackFactory = Callable[[UploadRequest, int], UploadRequest]


class RetryPolicy:
    """Yields the primary upload request followed by its fallbacks."""

    def __init__(self, max_attempts: int = 1, fallback: Optional[FallbackFactory] = None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if max_attempts > 1 and fallback is None:
            raise ValueError("A fallback factory is required for more than one attempt")
        self.max_attempts = max_attempts
        self.fallback = fallback

    def requests(self, primary: UploadRequest) -> Iterator[UploadRequest]:
        yield primary
        for attempt in range(1, self.max_attempts):
            yield self.fallback(primary, attempt)


def minimal_fallback(folder: str, tags: List[str]) -> FallbackFactory:
    """Fallback that drops the preset and context and uses a distinct identifier."""

    def build(primary: UploadRequest, attempt: int) -> UploadRequest:
        parts = primary.public_id.rsplit("_", 2)
        marker = "fallback" if attempt == 1 else f"fallback{attempt}"
        if len(parts) == 3:
            public_id = f"{parts[0]}_{marker}_{parts[1]}_{parts[2]}"
        else:
            public_id = f"{primary.public_id}_{marker}"
        return UploadRequest(
            public_id=public_id,
            folder=folder,
            resource_kind=primary.resource_kind,
            tags=list(tags),
            content_type=primary.content_type,
            format=primary.format,
            original_filename=primary.original_filename,
        )

    return build


def clean_filename(filename: str) -> str:
    """Base name reduced to characters safe for remote identifiers."""
    path = PurePath(filename or "")
    stem = path.stem if path.suffix else path.name
    cleaned = re.sub(r"[^a-zA-Z0-9_-]", "_", stem)[:100]
    return cleaned or "file"


class RemoteUploadGateway:
    """Performs remote uploads with a document path and a media path."""

    def __init__(
        self,
        config: StorageConfig,
        classifier: Optional[FileClassifier] = None,
        store: Optional[GCSObjectStore] = None,
        document_policy: Optional[RetryPolicy] = None,
        media_policy: Optional[RetryPolicy] = None,
    ):
        self.config = config
        self.app_name = config.app_name
        self.classifier = classifier or FileClassifier(config.app_name)
        self._store = store
        self.missing = [] if store is not None else missing_credentials(config)

        if self.missing:
            logger.warning(
                "Missing storage credentials: {}. Uploads will fail until they are set in .env",
                ", ".join(self.missing),
            )

        fallback_folder = config.fallback.folder or f"{self.app_name}/documents"
        fallback_tags = ["document", self.app_name, "fallback", *config.fallback.tags]
        self.document_policy = document_policy or RetryPolicy(
            max_attempts=2, fallback=minimal_fallback(fallback_folder, fallback_tags)
        )
        self.media_policy = media_policy or RetryPolicy(max_attempts=1)

    @property
    def configured(self) -> bool:
        return not self.missing

    @property
    def store(self) -> GCSObjectStore:
        if self._store is None:
            self._store = GCSObjectStore(self.config.gcs, self.classifier.presets())
        return self._store

    def not_configured_message(self) -> str:
        return f"Remote storage is not configured: missing {', '.join(self.missing)}"

    # Upload paths

    async def upload_document(
        self,
        buffer: bytes,
        filename: str,
        options: Optional[UploadOptions] = None,
        classification: Optional[Classification] = None,
    ) -> UploadResult:
        """Upload a document as a raw object, with one fallback attempt."""
        options = options or UploadOptions()
        if not self.configured:
            return UploadResult.failure(self.not_configured_message(), filename, len(buffer))

        request = self.build_document_request(filename, options, classification)
        logger.info("Uploading document {} as {}", filename, request.full_id)
        return await self._upload(buffer, filename, request, self.document_policy)

    async def upload_media(
        self,
        buffer: bytes,
        filename: str,
        options: Optional[UploadOptions] = None,
        classification: Optional[Classification] = None,
    ) -> UploadResult:
        """Upload an image or video with transformation hints."""
        options = options or UploadOptions()
        if not self.configured:
            return UploadResult.failure(self.not_configured_message(), filename, len(buffer))

        classification = classification or self.classifier.classify(filename, options.mime_type)
        request = self.build_media_request(filename, options, classification)
        logger.info("Uploading {} {} as {}", classification.category.value, filename, request.full_id)
        return await self._upload(buffer, filename, request, self.media_policy)

    def build_document_request(
        self,
        filename: str,
        options: UploadOptions,
        classification: Optional[Classification] = None,
    ) -> UploadRequest:
        extension = FileClassifier.extension(filename)
        timestamp = int(time.time() * 1000)
        suffix = secrets.token_hex(4)
        preset = classification.preset if classification else self.classifier.category_preset(FileCategory.DOCUMENT)

        return UploadRequest(
            public_id=f"{clean_filename(filename)}_{timestamp}_{suffix}",
            folder=options.folder or f"{self.app_name}/documents",
            resource_kind=ResourceKind.RAW,
            preset=options.preset or preset.name,
            tags=["document", self.app_name, *options.tags],
            context=dict(options.context),
            content_type=options.mime_type or mimetypes.guess_type(filename)[0],
            format=extension.lstrip(".") or None,
            original_filename=filename,
            conversion="pdf" if FileClassifier.is_office_document(filename) else None,
            overwrite=options.overwrite,
        )

    def build_media_request(
        self,
        filename: str,
        options: UploadOptions,
        classification: Classification,
    ) -> UploadRequest:
        kind = classification.resource_kind
        preset = self.classifier.preset(options.preset) if options.preset else classification.preset
        preset = preset or classification.preset

        transformations = []
        if kind == ResourceKind.IMAGE:
            if options.transformations is not None:
                transformations = options.transformations
            elif preset.apply_transformations:
                transformations = preset.transformations

        return UploadRequest(
            public_id=options.public_id or f"{clean_filename(filename)}_{secrets.token_hex(3)}",
            folder=options.folder or f"{self.app_name}/{kind.value}s",
            resource_kind=kind,
            preset=options.preset or classification.preset.name,
            tags=[self.app_name, classification.category.value, *options.tags],
            context=dict(options.context),
            transformations=transformations,
            content_type=options.mime_type or mimetypes.guess_type(filename)[0],
            format=FileClassifier.extension(filename).lstrip(".") or None,
            original_filename=filename,
            overwrite=options.overwrite,
        )

    async def _upload(
        self, buffer: bytes, filename: str, primary: UploadRequest, policy: RetryPolicy
    ) -> UploadResult:
        last_error: Optional[Exception] = None

        for attempt, request in enumerate(policy.requests(primary)):
            if attempt:
                logger.warning("Retrying {} with fallback configuration as {}", filename, request.full_id)
            try:
                raw = await asyncio.to_thread(self.store.upload, buffer, request)
            except Exception as e:
                last_error = e
                logger.error("Upload attempt {} for {} failed: {}", attempt + 1, filename, e)
                continue

            if attempt:
                logger.info("Fallback upload of {} succeeded", filename)
            return UploadResult(success=True, remote=self._descriptor(raw, request, buffer))

        return UploadResult.failure(f"Upload failed for {filename}: {last_error}", filename, len(buffer))

    def _descriptor(self, raw: Dict[str, Any], request: UploadRequest, buffer: bytes) -> RemoteDescriptor:
        return RemoteDescriptor(
            public_id=raw.get("public_id") or request.full_id,
            secure_url=raw.get("secure_url"),
            url=raw.get("url"),
            format=raw.get("format") or request.format,
            resource_type=ResourceKind(raw.get("resource_type") or request.resource_kind.value),
            bytes=raw.get("bytes") or len(buffer),
            created_at=raw.get("created_at"),
            tags=raw.get("tags") or list(request.tags),
            original_filename=request.original_filename,
            width=raw.get("width"),
            height=raw.get("height"),
            duration=raw.get("duration"),
        )

    # Delete and lookup

    async def delete(self, remote_id: str, resource_kind: ResourceKind = ResourceKind.AUTO) -> DeleteResult:
        """Delete a remote object. Only an explicit "ok" counts as success."""
        if not self.configured:
            return DeleteResult(success=False, error=self.not_configured_message())

        try:
            raw = await asyncio.to_thread(self.store.destroy, remote_id, resource_kind)
        except Exception as e:
            logger.error("Remote delete of {} failed: {}", remote_id, e)
            return DeleteResult(success=False, error=str(e))

        if raw.get("result") == "ok":
            return DeleteResult(success=True, raw=raw)
        return DeleteResult(success=False, raw=raw, error=f"Remote delete returned {raw.get('result')!r}")

    async def resource_info(
        self, remote_id: str, resource_kind: ResourceKind = ResourceKind.AUTO
    ) -> Optional[Dict[str, Any]]:
        if not self.configured:
            return None
        return await asyncio.to_thread(self.store.resource, remote_id, resource_kind)

    async def ping(self) -> bool:
        if not self.configured:
            return False
        return await asyncio.to_thread(self.store.ping)

    # URLs

    def rebuild_url(self, descriptor: RemoteDescriptor) -> str:
        name = GCSObjectStore.object_name(descriptor.public_id, descriptor.resource_type)
        return f"{self.config.gcs.public_base_url()}/{quote(name)}"

    def generate_download_url(self, descriptor: RemoteDescriptor, filename: str) -> str:
        """URL that forces an attachment download under a readable filename."""
        base = descriptor.secure_url or self.rebuild_url(descriptor)
        params = urlencode(
            {
                "response-content-disposition": f'attachment; filename="{filename}"',
                "filename": filename,
            },
            quote_via=quote,
        )
        separator = "&" if urlparse(base).query else "?"
        return f"{base}{separator}{params}"

    def generate_view_url(self, descriptor: RemoteDescriptor) -> str:
        # The secure URL carries the object generation, so prefer it
        return descriptor.secure_url or self.rebuild_url(descriptor)

    def generate_thumbnail_url(self, descriptor: RemoteDescriptor, transformation: Dict[str, Any]) -> str:
        """View URL carrying a resize hint for an image proxy, e.g. `tr=w_150,h_150,c_fill`."""
        short_keys = {"width": "w", "height": "h", "crop": "c", "gravity": "g", "quality": "q"}
        hint = ",".join(f"{short_keys.get(key, key)}_{value}" for key, value in transformation.items())
        base = self.generate_view_url(descriptor)
        separator = "&" if urlparse(base).query else "?"
        return f"{base}{separator}{urlencode({'tr': hint}, safe=',_:')}"
