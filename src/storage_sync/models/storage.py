"""Storage data models."""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, field_validator


class FileCategory(str, Enum):
    """Category a stored file belongs to."""
    DOCUMENT = "document"
    IMAGE = "image"
    VIDEO = "video"

    @property
    def plural(self) -> str:
        return f"{self.value}s"


class ResourceKind(str, Enum):
    """Remote namespace a file is stored under."""
    RAW = "raw"
    IMAGE = "image"
    VIDEO = "video"
    AUTO = "auto"


CATEGORY_RESOURCE_KINDS = {
    FileCategory.DOCUMENT: ResourceKind.RAW,
    FileCategory.IMAGE: ResourceKind.IMAGE,
    FileCategory.VIDEO: ResourceKind.VIDEO,
}


class UploadPreset(BaseModel):
    """Named storage configuration applied to an upload."""
    name: str
    resource_kind: ResourceKind
    folder: str
    max_size: int = Field(description="Size limit in bytes, enforced by the ingestion layer")
    cache_control: Optional[str] = None
    transformations: List[Dict[str, Any]] = Field(default_factory=list)
    apply_transformations: bool = False


class Classification(BaseModel):
    """Result of classifying a file."""
    category: FileCategory
    resource_kind: ResourceKind
    preset: UploadPreset


class UploadOptions(BaseModel):
    """Caller-supplied options for a single upload."""
    folder: Optional[str] = Field(None, description="Remote folder; defaults to the preset folder")
    tags: List[str] = Field(default_factory=list, description="Extra tags attached to the object")
    context: Dict[str, str] = Field(default_factory=dict, description="Free-form context metadata")
    transformations: Optional[List[Dict[str, Any]]] = Field(
        None, description="Transformation hints for images; defaults to the preset's"
    )
    preset: Optional[str] = Field(None, description="Preset name overriding the classified preset")
    mime_type: Optional[str] = Field(None, description="Client-supplied MIME type")
    public_id: Optional[str] = Field(None, description="Explicit identifier for media uploads")
    overwrite: bool = False


class UploadRequest(BaseModel):
    """Fully resolved upload configuration handed to the object store."""
    public_id: str
    folder: str
    resource_kind: ResourceKind
    preset: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    context: Dict[str, str] = Field(default_factory=dict)
    transformations: List[Dict[str, Any]] = Field(default_factory=list)
    content_type: Optional[str] = None
    format: Optional[str] = None
    original_filename: Optional[str] = None
    conversion: Optional[str] = None
    overwrite: bool = False

    @property
    def full_id(self) -> str:
        return f"{self.folder.strip('/')}/{self.public_id}" if self.folder else self.public_id


class RemoteDescriptor(BaseModel):
    """What the remote store reports about an uploaded object."""
    public_id: str
    secure_url: Optional[str] = None
    url: Optional[str] = None
    format: Optional[str] = None
    resource_type: ResourceKind
    bytes: int
    created_at: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    original_filename: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None


class BackupDescriptor(BaseModel):
    """Location of a local backup copy."""
    path: str
    filename: str


class UploadMetadata(BaseModel):
    """Derived information about a successful upload."""
    original_name: str
    size: int
    uploaded_at: datetime
    category: FileCategory
    file_extension: str
    backup_created: bool
    download_url: Optional[str] = None
    view_url: Optional[str] = None


class FailureDetails(BaseModel):
    """Diagnostics attached to a failed upload."""
    original_name: str
    size: int
    timestamp: datetime = Field(default_factory=datetime.now)


class UploadResult(BaseModel):
    """Outcome of one upload attempt."""
    success: bool
    remote: Optional[RemoteDescriptor] = None
    local_backup: Optional[BackupDescriptor] = None
    metadata: Optional[UploadMetadata] = None
    error: Optional[str] = None
    details: Optional[FailureDetails] = None

    @classmethod
    def failure(cls, error: str, filename: str, size: int) -> "UploadResult":
        return cls(
            success=False,
            error=error,
            details=FailureDetails(original_name=filename, size=size),
        )

    def to_response(self) -> Dict[str, Any]:
        """Uniform {success, data|error} shape for route handlers."""
        if not self.success:
            return {
                "success": False,
                "error": self.error,
                "details": self.details.model_dump(mode="json") if self.details else None,
            }
        return {
            "success": True,
            "data": self.model_dump(
                mode="json", include={"remote", "local_backup", "metadata"}
            ),
        }


class DeleteResult(BaseModel):
    """Outcome of a remote delete call."""
    success: bool
    raw: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class DeleteOutcome(BaseModel):
    """Outcome of a service-level delete."""
    success: bool
    error: Optional[str] = None
    public_id: str
    original_name: Optional[str] = None
    deleted_at: Optional[datetime] = None
    backup_removed: bool = False

    def to_response(self) -> Dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error}
        return {"success": True, "data": self.model_dump(mode="json", exclude={"success", "error"})}


class BackupOutcome(BaseModel):
    """Outcome of mirroring a buffer to local storage."""
    success: bool
    skipped: bool = False
    path: Optional[str] = None
    filename: Optional[str] = None
    error: Optional[str] = None

    @property
    def created(self) -> bool:
        return self.success and not self.skipped


class FileRecord(BaseModel):
    """Ledger entry for an uploaded file."""
    remote_id: str
    original_name: str
    category: FileCategory
    resource_kind: ResourceKind
    local_backup: Optional[str] = None
    size: int
    uploaded_at: datetime


class FileFilter(BaseModel):
    """Filter for listing ledger entries."""
    category: Optional[FileCategory] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def to_local_naive(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Ledger timestamps are naive local time
        if value is not None and value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value

    def matches(self, record: FileRecord) -> bool:
        if self.category and record.category != self.category:
            return False
        if self.start_date and record.uploaded_at < self.start_date:
            return False
        if self.end_date and record.uploaded_at > self.end_date:
            return False
        return True


class CategoryTotals(BaseModel):
    """Count and size of successful uploads in one category."""
    count: int = 0
    size: int = 0


class DailyStats(BaseModel):
    """Counters for a single calendar day."""
    uploads: int = 0
    successes: int = 0
    failures: int = 0
    size: int = 0


def _empty_categories() -> Dict[str, CategoryTotals]:
    return {category.plural: CategoryTotals() for category in FileCategory}


class StatisticsSnapshot(BaseModel):
    """Aggregate upload statistics."""
    total_uploads: int = 0
    successful_uploads: int = 0
    failed_uploads: int = 0
    total_size: int = 0
    total_duration_ms: float = 0.0
    by_category: Dict[str, CategoryTotals] = Field(default_factory=_empty_categories)
    daily: Dict[str, DailyStats] = Field(default_factory=dict)
    last_updated: Optional[datetime] = None

    @property
    def average_duration_ms(self) -> float:
        if self.total_uploads == 0:
            return 0.0
        return self.total_duration_ms / self.total_uploads


class ProfileImageResult(BaseModel):
    """Outcome of an avatar or cover photo upload."""
    success: bool
    kind: str
    original_name: str
    size: int
    remote: Optional[RemoteDescriptor] = None
    local_backup: Optional[BackupDescriptor] = None
    thumbnail_url: Optional[str] = None
    error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error}
        return {"success": True, "data": self.model_dump(mode="json", exclude={"success", "error"})}


class StorageOverview(BaseModel):
    """Statistics plus the state of the local backup mirror."""
    statistics: StatisticsSnapshot
    backup_count: int
    backup_size: int
    backups_enabled: bool
    environment: str
