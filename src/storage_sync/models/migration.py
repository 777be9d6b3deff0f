"""Migration data models."""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, ConfigDict, Field

from .storage import FileCategory


class MigrationState(str, Enum):
    """Lifecycle of a migration run."""
    SCANNING = "scanning"
    PLAN_GENERATED = "plan_generated"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class ItemStatus(str, Enum):
    """Status of a single plan item."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class InventoryEntry(BaseModel):
    """A file found while scanning a legacy upload directory."""
    name: str
    path: str
    relative_path: str
    size: int
    extension: str
    category: FileCategory
    last_modified: datetime


class ScanSummary(BaseModel):
    """Totals across all scanned directories."""
    total_files: int = 0
    total_size: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_extension: Dict[str, int] = Field(default_factory=dict)


class ScanResult(BaseModel):
    """Inventory of legacy upload directories."""
    timestamp: datetime = Field(default_factory=datetime.now)
    directories: Dict[str, List[InventoryEntry]] = Field(default_factory=dict)
    errors: Dict[str, str] = Field(default_factory=dict)
    summary: ScanSummary = Field(default_factory=ScanSummary)

    def entries(self) -> List[InventoryEntry]:
        return [entry for files in self.directories.values() for entry in files]


class MigrationStrategy(BaseModel):
    """How a plan should be executed."""
    batch_size: int = Field(default=50, ge=1)
    concurrent_uploads: int = Field(default=5, ge=1)
    preserve_structure: bool = False
    backup_original: bool = True


class MigrationEstimate(BaseModel):
    """Operator-facing size and duration estimates."""
    total_files: int = 0
    total_size: int = 0
    estimated_seconds: int = 0
    storage_note: Optional[str] = None


class PlanStep(BaseModel):
    """One step of the documented migration procedure."""
    id: int
    name: str
    description: str
    estimated_time: Optional[str] = None
    status: str = "pending"
    warning: Optional[str] = None


class MigrationPlanItem(BaseModel):
    """A single file scheduled for migration."""
    migration_id: str
    name: str
    path: str
    relative_path: str
    size: int
    extension: str
    category: FileCategory
    target_folder: str
    upload_preset: str
    status: ItemStatus = ItemStatus.PENDING
    remote_id: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None
    migrated_at: Optional[datetime] = None


class MigrationPlan(BaseModel):
    """Ordered set of files to migrate plus the execution strategy."""
    timestamp: datetime = Field(default_factory=datetime.now)
    strategy: MigrationStrategy = Field(default_factory=MigrationStrategy)
    items: List[MigrationPlanItem] = Field(default_factory=list)
    estimated: MigrationEstimate = Field(default_factory=MigrationEstimate)
    steps: List[PlanStep] = Field(default_factory=list)

    def items_with_status(self, status: ItemStatus) -> List[MigrationPlanItem]:
        return [item for item in self.items if item.status == status]


class MigrationOutcome(BaseModel):
    """Result of migrating one plan item."""
    migration_id: str
    name: str
    original_path: str
    category: FileCategory
    size: int
    remote_id: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None


class MigrationResults(BaseModel):
    """Outcomes collected during execution."""
    run_id: str
    progress: int = 0
    successful: List[MigrationOutcome] = Field(default_factory=list)
    failed: List[MigrationOutcome] = Field(default_factory=list)
    skipped: List[MigrationOutcome] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)


class CategoryUsage(BaseModel):
    """Remote storage consumed by one category."""
    count: int = 0
    total_size: int = 0
    average_size: int = 0
    total_size_formatted: str = "0 Bytes"


class Recommendation(BaseModel):
    """Follow-up suggested by a migration report."""
    priority: str
    issue: str
    action: str
    note: Optional[str] = None
    files: List[str] = Field(default_factory=list)


class MigrationReport(BaseModel):
    """Post-run summary. Immutable once generated."""
    model_config = ConfigDict(frozen=True)

    run_id: str
    generated_at: datetime = Field(default_factory=datetime.now)
    total_files: int
    successful: int
    failed: int
    skipped: int
    success_rate: float
    total_storage: int
    by_category: Dict[str, CategoryUsage] = Field(default_factory=dict)
    failures: List[MigrationOutcome] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    next_steps: List[str] = Field(default_factory=list)


class RollbackStep(BaseModel):
    """A manual rollback step."""
    id: int
    action: str
    description: str
    warning: Optional[str] = None
    note: Optional[str] = None
    status: str = "pending"


class RollbackPlan(BaseModel):
    """Manual procedure for reverting a completed migration."""
    run_id: str
    generated_at: datetime = Field(default_factory=datetime.now)
    files_to_restore: int
    remote_files_to_delete: int
    steps: List[RollbackStep]
    remote_files: List[Dict[str, Any]]


class BackupIssue(BaseModel):
    """A ledger entry whose backup is unusable."""
    remote_id: str
    issue: str
    backup_path: Optional[str] = None
    original_name: Optional[str] = None


class BackupVerification(BaseModel):
    """Result of checking every ledger entry's backup file."""
    timestamp: datetime = Field(default_factory=datetime.now)
    ledger_entries: int = 0
    local_backups: int = 0
    backup_size: int = 0
    issues: List[BackupIssue] = Field(default_factory=list)

    @property
    def missing(self) -> List[BackupIssue]:
        return [issue for issue in self.issues if issue.backup_path]


class MigrationLogEntry(BaseModel):
    """One execution recorded in the migration log."""
    id: str
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    plan: str
    total_files: int = 0
    status: str = "in_progress"
    results: Dict[str, int] = Field(default_factory=dict)


class MigrationLog(BaseModel):
    """History of migration runs in one migration root."""
    migrations: List[MigrationLogEntry] = Field(default_factory=list)
    total_files: int = 0
    total_size: int = 0
    start_date: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    status: str = "not_started"
