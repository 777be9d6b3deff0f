"""Configuration models for the storage system."""

from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field


class GCSConfig(BaseModel):
    """Google Cloud Storage configuration."""
    project_id: str = ""
    bucket_name: str = ""
    credentials_path: Optional[str] = None

    def public_base_url(self) -> str:
        """Base HTTPS URL for objects in the bucket."""
        return f"https://storage.googleapis.com/{self.bucket_name}"


class BackupConfig(BaseModel):
    """Local backup mirror configuration."""
    root: Path = Field(default=Path("backups/storage"), description="Backup root directory")
    enabled: bool = Field(default=True, description="Write local backups and persist ledger/statistics")

    @property
    def ledger_path(self) -> Path:
        return self.root / "file-mapping.json"

    @property
    def stats_path(self) -> Path:
        return self.root / "upload-stats.json"


class FallbackConfig(BaseModel):
    """Settings for the document upload fallback attempt."""
    folder: Optional[str] = Field(default=None, description="Folder used by the fallback upload")
    tags: List[str] = Field(default_factory=list, description="Extra tags added to fallback uploads")


class MigrationSettings(BaseModel):
    """Legacy upload migration settings."""
    root: Path = Field(default=Path("migrations/storage"), description="Migration working directory")
    batch_size: int = Field(default=50, ge=1, description="Files per migration batch")
    concurrent_uploads: int = Field(default=5, ge=1, description="Maximum in-flight uploads per batch")
    batch_delay: float = Field(default=1.0, ge=0, description="Seconds to wait between batches")
    rate_limit: int = Field(default=10, ge=1, description="Maximum remote requests per second")
    assumed_throughput: int = Field(
        default=5 * 1024 * 1024, description="Bytes per second used for time estimates"
    )


class StorageConfig(BaseModel):
    """Complete storage configuration."""
    gcs: GCSConfig = Field(default_factory=GCSConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    migration: MigrationSettings = Field(default_factory=MigrationSettings)
    app_name: str = Field(default="assets", description="Prefix for remote folders, tags and presets")
    environment: str = Field(default="production", description="Deployment environment name")
