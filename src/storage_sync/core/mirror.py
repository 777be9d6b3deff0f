"""Local backup mirror and the JSON ledger of uploaded files."""

import hashlib
import json
import os
from datetime import datetime, timedelta
from pathlib import Path, PurePath
from typing import Dict, List, Optional

from loguru import logger

from ..models.config import BackupConfig
from ..models.storage import (
    BackupOutcome,
    CATEGORY_RESOURCE_KINDS,
    FileCategory,
    FileRecord,
)


BACKUP_SUBDIRECTORIES = ["documents", "images", "videos", "avatars", "covers"]


class LocalMirror:
    """Writes backup copies of uploads and tracks them in a ledger file.

    The ledger is loaded once and rewritten in full after every mutation.
    It assumes a single writer process.
    """

    def __init__(self, config: BackupConfig):
        self.config = config
        self.root = Path(config.root)
        self.ledger_path = config.ledger_path
        self.ledger: Dict[str, FileRecord] = {}

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def ensure_structure(self) -> List[Path]:
        """Create the backup root and its per-category directories."""
        created = []
        for directory in [self.root, *(self.root / name for name in BACKUP_SUBDIRECTORIES)]:
            if not directory.exists():
                directory.mkdir(parents=True, exist_ok=True)
                logger.info("Created backup directory: {}", directory)
                created.append(directory)
        return created

    def load(self) -> None:
        """Load the ledger from disk. A missing or corrupt file starts empty."""
        if not self.ledger_path.exists():
            self.ledger = {}
            return

        try:
            data = json.loads(self.ledger_path.read_text(encoding="utf-8"))
            self.ledger = {
                remote_id: FileRecord.model_validate({"remote_id": remote_id, **entry})
                for remote_id, entry in data.items()
            }
        except (ValueError, OSError) as e:
            logger.error("Could not read ledger {}: {}", self.ledger_path, e)
            self.ledger = {}

    def save(self) -> None:
        if not self.enabled:
            return

        data = {
            remote_id: record.model_dump(mode="json", exclude={"remote_id"})
            for remote_id, record in self.ledger.items()
        }
        self.root.mkdir(parents=True, exist_ok=True)
        tmp_path = self.ledger_path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.ledger_path)

    @staticmethod
    def backup_filename(original_name: str, remote_id: str, now: Optional[datetime] = None) -> str:
        """<name>_<8-char hash of remote id>_<timestamp><ext>"""
        now = now or datetime.now()
        timestamp = now.isoformat(timespec="milliseconds").replace(":", "-").replace(".", "-")
        digest = hashlib.md5(remote_id.encode("utf-8")).hexdigest()[:8]
        path = PurePath(original_name)
        return f"{path.stem}_{digest}_{timestamp}{path.suffix}"

    def backup(
        self,
        buffer: bytes,
        original_name: str,
        remote_id: str,
        category: FileCategory,
        subdirectory: Optional[str] = None,
    ) -> BackupOutcome:
        """Write a backup copy and record it in the ledger."""
        if not self.enabled:
            return BackupOutcome(success=True, skipped=True)

        filename = self.backup_filename(original_name, remote_id)
        directory = self.root / (subdirectory or category.plural)
        path = directory / filename

        try:
            directory.mkdir(parents=True, exist_ok=True)
            path.write_bytes(buffer)
        except OSError as e:
            logger.error("Error creating local backup for {}: {}", remote_id, e)
            self._record(remote_id, original_name, category, None, len(buffer))
            return BackupOutcome(success=False, error=str(e))

        self._record(remote_id, original_name, category, str(path), len(buffer))
        return BackupOutcome(success=True, path=str(path), filename=filename)

    def _record(
        self,
        remote_id: str,
        original_name: str,
        category: FileCategory,
        backup_path: Optional[str],
        size: int,
    ) -> None:
        self.ledger[remote_id] = FileRecord(
            remote_id=remote_id,
            original_name=original_name,
            category=category,
            resource_kind=CATEGORY_RESOURCE_KINDS[category],
            local_backup=backup_path,
            size=size,
            uploaded_at=datetime.now(),
        )
        try:
            self.save()
        except OSError as e:
            logger.error("Error saving ledger {}: {}", self.ledger_path, e)

    def lookup(self, remote_id: str) -> Optional[FileRecord]:
        return self.ledger.get(remote_id)

    def records(self) -> List[FileRecord]:
        return list(self.ledger.values())

    def remove(self, remote_id: str) -> Optional[FileRecord]:
        """Delete the backup file and the ledger entry.

        Returns the removed record, or None when there was no entry.
        Filesystem errors other than a missing file propagate.
        """
        record = self.ledger.pop(remote_id, None)
        if record is None:
            return None

        try:
            if record.local_backup:
                Path(record.local_backup).unlink(missing_ok=True)
                logger.info("Deleted local backup: {}", record.local_backup)
        finally:
            self.save()
        return record

    def total_size(self) -> int:
        return sum(record.size for record in self.ledger.values())

    def cleanup_old_backups(self, days_to_keep: int = 30) -> Dict[str, int]:
        """Remove backups and ledger entries older than the cut-off."""
        if not self.enabled:
            return {"deleted_count": 0, "total_size": 0}

        cutoff = datetime.now() - timedelta(days=days_to_keep)
        deleted_count = 0
        total_size = 0

        for remote_id, record in list(self.ledger.items()):
            if record.uploaded_at >= cutoff:
                continue
            if record.local_backup:
                try:
                    Path(record.local_backup).unlink(missing_ok=True)
                    deleted_count += 1
                    total_size += record.size
                except OSError as e:
                    logger.warning("Failed to delete backup {}: {}", record.local_backup, e)
            del self.ledger[remote_id]

        self.save()
        return {"deleted_count": deleted_count, "total_size": total_size}
