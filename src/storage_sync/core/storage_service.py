"""Storage orchestrator: upload, mirror, track and delete files."""

import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from ..models.config import StorageConfig
from ..models.storage import (
    BackupDescriptor,
    DeleteOutcome,
    FileCategory,
    FileFilter,
    FileRecord,
    ProfileImageResult,
    ResourceKind,
    StatisticsSnapshot,
    StorageOverview,
    UploadMetadata,
    UploadOptions,
    UploadResult,
)
from .classifier import FileClassifier
from .gateway import RemoteUploadGateway
from .mirror import LocalMirror
from .statistics import StatisticsTracker


PROFILE_IMAGES = {
    "avatar": {
        "subdirectory": "avatars",
        "purpose": "profile_picture",
        "transformations": [
            {"width": 300, "height": 300, "crop": "fill", "gravity": "face"},
            {"quality": "auto:good"},
        ],
        "thumbnail": {"width": 150, "height": 150, "crop": "fill", "gravity": "face"},
    },
    "cover": {
        "subdirectory": "covers",
        "purpose": "profile_cover",
        "transformations": [
            {"width": 1200, "height": 400, "crop": "fill"},
            {"quality": "auto:good"},
        ],
        "thumbnail": {"width": 400, "height": 150, "crop": "fill"},
    },
}


class StorageService:
    """Single entry point for file ingestion and deletion.

    Every upload is classified, sent to the remote store through the gateway,
    mirrored to the local backup tree and counted in the statistics. The remote
    copy is authoritative: a failed backup never turns a successful upload into
    a failure.
    """

    def __init__(
        self,
        config: StorageConfig,
        classifier: FileClassifier,
        gateway: RemoteUploadGateway,
        mirror: LocalMirror,
        tracker: StatisticsTracker,
    ):
        self.config = config
        self.classifier = classifier
        self.gateway = gateway
        self.mirror = mirror
        self.tracker = tracker

    @classmethod
    def from_config(cls, config: StorageConfig) -> "StorageService":
        classifier = FileClassifier(config.app_name)
        return cls(
            config=config,
            classifier=classifier,
            gateway=RemoteUploadGateway(config, classifier),
            mirror=LocalMirror(config.backup),
            tracker=StatisticsTracker(config.backup.stats_path, persist=config.backup.enabled),
        )

    def initialize(self) -> None:
        """Create the backup tree and load the ledger and statistics."""
        if self.mirror.enabled:
            self.mirror.ensure_structure()
            self.mirror.load()
            self.tracker.load()
            logger.info("Storage service initialized with local backups at {}", self.mirror.root)
        else:
            logger.info("Storage service initialized without local backups")

    async def upload(
        self,
        buffer: bytes,
        filename: str,
        options: Optional[UploadOptions] = None,
        backup_subdirectory: Optional[str] = None,
    ) -> UploadResult:
        """Upload a file, back it up locally and record statistics."""
        options = options or UploadOptions()
        started = time.perf_counter()
        classification = self.classifier.classify(filename, options.mime_type)
        category = classification.category

        if category == FileCategory.DOCUMENT:
            result = await self.gateway.upload_document(buffer, filename, options, classification)
        else:
            result = await self.gateway.upload_media(buffer, filename, options, classification)

        duration_ms = (time.perf_counter() - started) * 1000
        if not result.success:
            self.tracker.record(False, category, len(buffer), duration_ms)
            logger.error("Upload of {} failed: {}", filename, result.error)
            return result

        remote = result.remote
        backup = self.mirror.backup(buffer, filename, remote.public_id, category, backup_subdirectory)
        if not backup.success:
            logger.warning("Uploaded {} but the local backup failed: {}", remote.public_id, backup.error)

        self.tracker.record(True, category, len(buffer), duration_ms)

        result.local_backup = BackupDescriptor(path=backup.path, filename=backup.filename) if backup.created else None
        result.metadata = UploadMetadata(
            original_name=filename,
            size=len(buffer),
            uploaded_at=datetime.now(),
            category=category,
            file_extension=FileClassifier.extension(filename).lstrip("."),
            backup_created=backup.created,
            download_url=self.gateway.generate_download_url(remote, filename),
            view_url=self.gateway.generate_view_url(remote),
        )
        logger.info("Uploaded {} as {} ({} bytes)", filename, remote.public_id, len(buffer))
        return result

    async def upload_avatar(self, buffer: bytes, filename: str, user_id: str) -> ProfileImageResult:
        return await self._upload_profile_image("avatar", buffer, filename, user_id)

    async def upload_cover(self, buffer: bytes, filename: str, user_id: str) -> ProfileImageResult:
        return await self._upload_profile_image("cover", buffer, filename, user_id)

    async def _upload_profile_image(
        self, kind: str, buffer: bytes, filename: str, user_id: str
    ) -> ProfileImageResult:
        profile = PROFILE_IMAGES[kind]
        options = UploadOptions(
            folder=f"{self.config.app_name}/images/{profile['subdirectory']}/{user_id}",
            tags=[kind, "profile", "user", user_id],
            context={"upload_source": f"{kind}_upload", "user_id": user_id, "purpose": profile["purpose"]},
            transformations=profile["transformations"],
            mime_type=self._profile_mime_type(filename),
        )
        result = await self.upload(buffer, filename, options, backup_subdirectory=profile["subdirectory"])

        if not result.success:
            return ProfileImageResult(
                success=False,
                kind=kind,
                original_name=filename,
                size=len(buffer),
                error=result.error or f"{kind.capitalize()} upload failed",
            )

        return ProfileImageResult(
            success=True,
            kind=kind,
            original_name=filename,
            size=len(buffer),
            remote=result.remote,
            local_backup=result.local_backup,
            thumbnail_url=self.gateway.generate_thumbnail_url(result.remote, profile["thumbnail"]),
        )

    def _profile_mime_type(self, filename: str) -> Optional[str]:
        # Profile images are always images, even when the extension is missing
        if self.classifier.detect_category(filename) == FileCategory.IMAGE:
            return None
        return "image/jpeg"

    async def delete(self, remote_id: str) -> DeleteOutcome:
        """Delete a file remotely, then drop its backup and ledger entry.

        A missing ledger entry is not an error; the remote delete then searches
        every resource namespace.
        """
        record = self.mirror.lookup(remote_id)
        kind = record.resource_kind if record else ResourceKind.AUTO
        original_name = record.original_name if record else None

        result = await self.gateway.delete(remote_id, kind)
        not_found = result.raw.get("result") == "not found"

        if not result.success and not not_found:
            logger.error("Delete of {} failed: {}", remote_id, result.error)
            return DeleteOutcome(success=False, error=result.error, public_id=remote_id, original_name=original_name)

        backup_removed = False
        try:
            removed = self.mirror.remove(remote_id)
            backup_removed = bool(removed and removed.local_backup)
        except OSError as e:
            logger.warning("Deleted {} remotely but local cleanup failed: {}", remote_id, e)

        if not_found:
            logger.warning("Remote object {} was not found; cleared any stale ledger entry", remote_id)
            return DeleteOutcome(
                success=False,
                error=result.error,
                public_id=remote_id,
                original_name=original_name,
                backup_removed=backup_removed,
            )

        logger.info("Deleted {}", remote_id)
        return DeleteOutcome(
            success=True,
            public_id=remote_id,
            original_name=original_name or "Unknown",
            deleted_at=datetime.now(),
            backup_removed=backup_removed,
        )

    async def remote_info(self, remote_id: str) -> Optional[Dict[str, Any]]:
        """Fetch remote metadata for a file, or None when it cannot be found."""
        record = self.mirror.lookup(remote_id)
        kind = record.resource_kind if record else ResourceKind.AUTO
        try:
            return await self.gateway.resource_info(remote_id, kind)
        except Exception as e:
            logger.error("Could not fetch remote metadata for {}: {}", remote_id, e)
            return None

    def statistics(self) -> StatisticsSnapshot:
        return self.tracker.snapshot()

    def lookup(self, remote_id: str) -> Optional[FileRecord]:
        return self.mirror.lookup(remote_id)

    def list(self, file_filter: Optional[FileFilter] = None) -> List[FileRecord]:
        file_filter = file_filter or FileFilter()
        return [record for record in self.mirror.records() if file_filter.matches(record)]

    def storage_overview(self) -> StorageOverview:
        return StorageOverview(
            statistics=self.tracker.snapshot(),
            backup_count=len(self.mirror.records()),
            backup_size=self.mirror.total_size(),
            backups_enabled=self.mirror.enabled,
            environment=self.config.environment,
        )

    def cleanup_old_backups(self, days_to_keep: int = 30) -> Dict[str, int]:
        result = self.mirror.cleanup_old_backups(days_to_keep)
        logger.info("Cleaned up {} old backups", result["deleted_count"])
        return result
