"""Bulk migration of legacy local uploads into remote storage."""

import asyncio
import csv
import json
import math
import os
import re
import secrets
import time
from collections import defaultdict
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Sequence, Union

from asyncio_throttle import Throttler
from loguru import logger
from tqdm import tqdm

from ..models.config import MigrationSettings
from ..models.migration import (
    BackupIssue,
    BackupVerification,
    CategoryUsage,
    InventoryEntry,
    ItemStatus,
    MigrationEstimate,
    MigrationLog,
    MigrationLogEntry,
    MigrationOutcome,
    MigrationPlan,
    MigrationPlanItem,
    MigrationReport,
    MigrationResults,
    MigrationState,
    MigrationStrategy,
    PlanStep,
    Recommendation,
    RollbackPlan,
    RollbackStep,
    ScanResult,
)
from ..models.storage import FileCategory, UploadOptions
from ..utils.formatting import format_bytes
from .classifier import FileClassifier
from .storage_service import StorageService


MB = 1024 * 1024
GB = 1024 * MB

DEFAULT_SCAN_DIRECTORIES = ["uploads", "public/uploads", "storage/uploads"]
LARGE_FILE_THRESHOLD = 50 * MB
LARGE_TOTAL_THRESHOLD = 10 * GB

CSV_FIELDS = ["Status", "Category", "Original Path", "Remote ID", "URL", "Size", "Error"]

NEXT_STEPS = [
    "Update application records to use the remote URLs",
    "Monitor bucket usage and egress in the Cloud Console",
    "Consider replicating the bucket to a second region",
    "Review failed uploads and retry them with --retry-failed",
]

PathLike = Union[str, Path]


class MigrationEngine:
    """Scans legacy upload directories, plans a migration and executes it in batches.

    Every plan item carries its own status, so an interrupted run is resumed
    by executing the persisted plan again: completed items are skipped.
    """

    def __init__(
        self,
        service: StorageService,
        settings: MigrationSettings,
        classifier: Optional[FileClassifier] = None,
        app_name: Optional[str] = None,
        show_progress: bool = True,
    ):
        self.service = service
        self.settings = settings
        self.classifier = classifier or service.classifier
        self.app_name = app_name or service.config.app_name
        self.show_progress = show_progress
        self.root = Path(settings.root)
        self.throttler = Throttler(rate_limit=settings.rate_limit, period=1.0)
        self.state: Optional[MigrationState] = None

    # Paths

    @property
    def exports_dir(self) -> Path:
        return self.root / "exports"

    @property
    def reports_dir(self) -> Path:
        return self.root / "reports"

    @property
    def plan_path(self) -> Path:
        return self.root / "migration-plan.json"

    @property
    def log_path(self) -> Path:
        return self.root / "migration-log.json"

    @property
    def analysis_path(self) -> Path:
        return self.root / "backup-analysis.json"

    @property
    def rollback_plan_path(self) -> Path:
        return self.root / "rollback-plan.json"

    def progress_path(self, run_id: str) -> Path:
        return self.exports_dir / f"{run_id}_progress.json"

    def report_path(self, run_id: str) -> Path:
        return self.reports_dir / f"{run_id}_report.json"

    def export_path(self, run_id: str) -> Path:
        return self.exports_dir / f"{run_id}_export.csv"

    def ensure_structure(self) -> None:
        for directory in [self.root, self.exports_dir, self.reports_dir, self.root / "temp"]:
            if not directory.exists():
                directory.mkdir(parents=True, exist_ok=True)
                logger.info("Created migration directory: {}", directory)

    def _write_json(self, path: Path, data) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f"{path.name}.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, path)

    # Phase 1: scan

    def scan(self, directories: Optional[Sequence[PathLike]] = None) -> ScanResult:
        """Inventory every file under the given legacy upload directories."""
        self.ensure_structure()
        directories = list(directories) if directories else [Path.cwd() / d for d in DEFAULT_SCAN_DIRECTORIES]
        result = ScanResult()
        by_category: Dict[str, int] = defaultdict(int)
        by_extension: Dict[str, int] = defaultdict(int)

        for directory in directories:
            base = Path(directory)
            key = str(directory)
            if not base.is_dir():
                logger.warning("Directory not found: {}", base)
                result.errors[key] = "Directory not found"
                continue

            entries = self._scan_directory(base)
            result.directories[key] = entries
            for entry in entries:
                result.summary.total_files += 1
                result.summary.total_size += entry.size
                by_category[entry.category.value] += 1
                by_extension[entry.extension] += 1
            logger.info("Scanned {}: {} files", base, len(entries))

        result.summary.by_category = dict(by_category)
        result.summary.by_extension = dict(by_extension)

        self._write_json(self.analysis_path, result.model_dump(mode="json"))
        logger.info(
            "Analysis complete: {} files, {}",
            result.summary.total_files,
            format_bytes(result.summary.total_size),
        )
        return result

    def _scan_directory(self, base: Path) -> List[InventoryEntry]:
        entries = []
        for path in sorted(base.rglob("*")):
            if not path.is_file():
                continue
            try:
                stat = path.stat()
            except OSError as e:
                logger.error("Error reading {}: {}", path, e)
                continue
            entries.append(
                InventoryEntry(
                    name=path.name,
                    path=str(path),
                    relative_path=path.relative_to(base).as_posix(),
                    size=stat.st_size,
                    extension=path.suffix.lower(),
                    category=self.classifier.detect_category(path.name),
                    last_modified=datetime.fromtimestamp(stat.st_mtime),
                )
            )
        return entries

    # Phase 2: plan

    def target_folder(self, entry: InventoryEntry, preserve_structure: bool) -> str:
        if not preserve_structure:
            return f"{self.app_name}/migrated/{entry.category.plural}"

        parent = PurePosixPath(entry.relative_path.replace("\\", "/")).parent.as_posix()
        safe = re.sub(r"[^a-zA-Z0-9/._-]", "_", parent)
        safe = re.sub(r"/+", "/", safe).strip("/")
        if safe in ("", "."):
            return f"{self.app_name}/migrated"
        return f"{self.app_name}/migrated/{safe}"

    def generate_plan(
        self,
        scan: ScanResult,
        strategy: Optional[MigrationStrategy] = None,
        plan_path: Optional[PathLike] = None,
    ) -> MigrationPlan:
        """Turn a scan into a plan of pending items and save it."""
        strategy = strategy or MigrationStrategy(
            batch_size=self.settings.batch_size,
            concurrent_uploads=self.settings.concurrent_uploads,
        )

        items = [
            MigrationPlanItem(
                migration_id=secrets.token_hex(8),
                name=entry.name,
                path=entry.path,
                relative_path=entry.relative_path,
                size=entry.size,
                extension=entry.extension,
                category=entry.category,
                target_folder=self.target_folder(entry, strategy.preserve_structure),
                upload_preset=self.classifier.category_preset(entry.category).name,
            )
            for entry in scan.entries()
        ]

        total_size = sum(item.size for item in items)
        estimated = MigrationEstimate(
            total_files=len(items),
            total_size=total_size,
            estimated_seconds=math.ceil(total_size / self.settings.assumed_throughput),
            storage_note=f"{total_size / GB:.2f} GB of bucket storage; check Cloud Storage pricing for costs",
        )

        plan = MigrationPlan(
            strategy=strategy,
            items=items,
            estimated=estimated,
            steps=self._plan_steps(items, strategy.batch_size),
        )
        self.save_plan(plan, plan_path)

        logger.info(
            "Migration plan generated: {} files, {}, about {} minutes",
            estimated.total_files,
            format_bytes(estimated.total_size),
            math.ceil(estimated.estimated_seconds / 60),
        )
        return plan

    def _plan_steps(self, items: List[MigrationPlanItem], batch_size: int) -> List[PlanStep]:
        def batches(category: FileCategory) -> str:
            count = sum(1 for item in items if item.category == category)
            return f"{math.ceil(count / batch_size)} batches"

        return [
            PlanStep(
                id=1,
                name="Create backup manifest of original files",
                description="Record every original path before uploading",
                estimated_time="5-10 minutes",
            ),
            PlanStep(
                id=2,
                name="Upload documents",
                description="Upload PDF, Office and text files",
                estimated_time=batches(FileCategory.DOCUMENT),
            ),
            PlanStep(
                id=3,
                name="Upload images",
                description="Upload JPG, PNG, GIF and WebP files with optimization hints",
                estimated_time=batches(FileCategory.IMAGE),
            ),
            PlanStep(
                id=4,
                name="Upload videos",
                description="Upload MP4, MOV and AVI files",
                estimated_time=batches(FileCategory.VIDEO),
            ),
            PlanStep(
                id=5,
                name="Update database records",
                description="Replace local file paths with remote URLs",
                estimated_time="Varies by database size",
            ),
            PlanStep(
                id=6,
                name="Verify uploads",
                description="Check that all files uploaded correctly",
                estimated_time="10-15 minutes",
            ),
            PlanStep(
                id=7,
                name="Cleanup local files",
                description="Remove original files after verification",
                estimated_time="5 minutes",
                warning="IRREVERSIBLE - Make sure backups exist",
            ),
        ]

    def save_plan(self, plan: MigrationPlan, plan_path: Optional[PathLike] = None) -> Path:
        path = Path(plan_path) if plan_path else self.plan_path
        self._write_json(path, plan.model_dump(mode="json"))
        return path

    def load_plan(self, plan_path: Optional[PathLike] = None) -> MigrationPlan:
        path = Path(plan_path) if plan_path else self.plan_path
        return MigrationPlan.model_validate_json(path.read_text(encoding="utf-8"))

    # Phase 3: execute

    async def execute(
        self,
        plan: MigrationPlan,
        plan_path: Optional[PathLike] = None,
        retry_failed: bool = False,
    ) -> MigrationResults:
        """Upload every pending item, batch by batch, persisting progress as it goes."""
        self.ensure_structure()
        self.state = MigrationState.EXECUTING
        run_id = f"migration_{int(time.time() * 1000)}"
        plan_file = Path(plan_path) if plan_path else self.plan_path

        runnable = {ItemStatus.PENDING}
        if retry_failed:
            runnable.add(ItemStatus.FAILED)

        results = MigrationResults(run_id=run_id)
        todo = []
        for item in plan.items:
            if item.status in runnable:
                todo.append(item)
            else:
                results.skipped.append(self._outcome(item))

        log = self.load_log()
        log_entry = MigrationLogEntry(id=run_id, plan=plan_file.name, total_files=len(todo))
        log.migrations.append(log_entry)
        log.status = "in_progress"
        log.start_date = log.start_date or log_entry.start_time
        self.save_log(log)

        logger.info("Starting migration {}: {} to upload, {} skipped", run_id, len(todo), len(results.skipped))
        if plan.strategy.backup_original:
            self.write_backup_manifest(todo)

        semaphore = asyncio.Semaphore(plan.strategy.concurrent_uploads)
        batch_size = plan.strategy.batch_size
        processed = 0

        with tqdm(total=len(todo), desc=f"Migrating {run_id}", disable=not self.show_progress) as pbar:
            for category in FileCategory:
                items = [item for item in todo if item.category == category]
                if not items:
                    continue

                batches = [items[i:i + batch_size] for i in range(0, len(items), batch_size)]
                logger.info("Uploading {} {} in {} batches", len(items), category.plural, len(batches))

                for index, batch in enumerate(batches, 1):
                    await asyncio.gather(
                        *(self._migrate_item(item, run_id, semaphore, results) for item in batch)
                    )
                    processed += len(batch)
                    pbar.update(len(batch))

                    results.progress = round(processed / len(todo) * 100)
                    results.timestamp = datetime.now()
                    self.save_progress(results)
                    self.save_plan(plan, plan_file)
                    logger.info(
                        "{} batch {}/{} done, progress {}% ({}/{})",
                        category.plural, index, len(batches), results.progress, processed, len(todo),
                    )

                    if processed < len(todo):
                        await asyncio.sleep(self.settings.batch_delay)

        if not todo:
            results.progress = 100
            self.save_progress(results)

        await self.service.tracker.flush()

        log_entry.end_time = datetime.now()
        log_entry.status = "completed"
        log_entry.results = {
            "successful": len(results.successful),
            "failed": len(results.failed),
            "skipped": len(results.skipped),
        }
        log.status = "completed"
        log.total_files = len(results.successful)
        log.total_size = sum(outcome.size for outcome in results.successful)
        self.save_log(log)

        self.generate_report(results)
        self.state = MigrationState.COMPLETED
        logger.info(
            "Migration {} completed: {} successful, {} failed, {} skipped",
            run_id, len(results.successful), len(results.failed), len(results.skipped),
        )
        return results

    async def _migrate_item(
        self,
        item: MigrationPlanItem,
        run_id: str,
        semaphore: asyncio.Semaphore,
        results: MigrationResults,
    ) -> None:
        async with semaphore:
            try:
                buffer = await asyncio.to_thread(Path(item.path).read_bytes)
                options = UploadOptions(
                    folder=item.target_folder,
                    preset=item.upload_preset,
                    tags=["migrated", self.app_name, item.category.value],
                    context={
                        "migration_id": run_id,
                        "original_path": item.relative_path,
                        "migrated_at": datetime.now().isoformat(),
                    },
                )
                async with self.throttler:
                    result = await self.service.upload(buffer, item.name, options)
            except Exception as e:
                error = str(e)
            else:
                if result.success:
                    item.status = ItemStatus.COMPLETED
                    item.remote_id = result.remote.public_id
                    item.url = result.remote.secure_url
                    item.error = None
                    item.migrated_at = datetime.now()
                    results.successful.append(self._outcome(item))
                    return
                error = result.error or "Upload failed"

        logger.error("Failed to migrate {}: {}", item.name, error)
        item.status = ItemStatus.FAILED
        item.error = error
        results.failed.append(self._outcome(item))

    @staticmethod
    def _outcome(item: MigrationPlanItem) -> MigrationOutcome:
        return MigrationOutcome(
            migration_id=item.migration_id,
            name=item.name,
            original_path=item.path,
            category=item.category,
            size=item.size,
            remote_id=item.remote_id,
            url=item.url,
            error=item.error,
        )

    def write_backup_manifest(self, items: List[MigrationPlanItem]) -> Path:
        """Record where each original file lives. Files are not copied."""
        backup_dir = self.root / "original-backup"
        manifest = {
            "timestamp": datetime.now().isoformat(),
            "total_files": len(items),
            "total_size": sum(item.size for item in items),
            "files": [
                {
                    "original_path": item.path,
                    "backup_path": str(backup_dir / f"{item.migration_id}{item.extension}"),
                    "size": item.size,
                    "category": item.category.value,
                }
                for item in items
            ],
        }
        path = backup_dir / "manifest.json"
        self._write_json(path, manifest)
        logger.info("Created backup manifest at {}; large-scale file copying is not automated", path)
        return path

    def save_progress(self, results: MigrationResults) -> Path:
        path = self.progress_path(results.run_id)
        self._write_json(path, results.model_dump(mode="json"))
        return path

    def load_log(self) -> MigrationLog:
        if not self.log_path.exists():
            return MigrationLog()
        try:
            return MigrationLog.model_validate_json(self.log_path.read_text(encoding="utf-8"))
        except ValueError as e:
            logger.error("Could not read migration log {}: {}", self.log_path, e)
            return MigrationLog()

    def save_log(self, log: MigrationLog) -> None:
        log.last_updated = datetime.now()
        self._write_json(self.log_path, log.model_dump(mode="json"))

    async def run(
        self,
        directories: Optional[Sequence[PathLike]] = None,
        strategy: Optional[MigrationStrategy] = None,
    ) -> MigrationResults:
        """Scan, plan and execute in one go."""
        self.state = MigrationState.SCANNING
        try:
            scan = await asyncio.to_thread(self.scan, directories)
            plan = self.generate_plan(scan, strategy)
        except Exception:
            self.state = MigrationState.FAILED
            logger.exception("Migration failed before execution")
            raise

        self.state = MigrationState.PLAN_GENERATED
        return await self.execute(plan, self.plan_path)

    # Reporting

    def generate_report(self, results: MigrationResults) -> MigrationReport:
        """Build the post-run report and write it with the CSV export."""
        successful = len(results.successful)
        failed = len(results.failed)
        attempted = successful + failed

        report = MigrationReport(
            run_id=results.run_id,
            total_files=attempted + len(results.skipped),
            successful=successful,
            failed=failed,
            skipped=len(results.skipped),
            success_rate=round(successful / attempted * 100, 2) if attempted else 0.0,
            total_storage=sum(outcome.size for outcome in results.successful),
            by_category=self._usage_by_category(results.successful),
            failures=list(results.failed),
            recommendations=self.recommendations(results),
            next_steps=list(NEXT_STEPS),
        )

        self._write_json(self.report_path(results.run_id), report.model_dump(mode="json"))
        self.export_csv(results)
        return report

    @staticmethod
    def _usage_by_category(outcomes: List[MigrationOutcome]) -> Dict[str, CategoryUsage]:
        usage: Dict[str, CategoryUsage] = {}
        for outcome in outcomes:
            entry = usage.setdefault(outcome.category.value, CategoryUsage())
            entry.count += 1
            entry.total_size += outcome.size
        for entry in usage.values():
            entry.average_size = round(entry.total_size / entry.count)
            entry.total_size_formatted = format_bytes(entry.total_size)
        return usage

    @staticmethod
    def recommendations(results: MigrationResults) -> List[Recommendation]:
        recommendations = []

        if results.failed:
            recommendations.append(
                Recommendation(
                    priority="high",
                    issue=f"{len(results.failed)} files failed to upload",
                    action="Review the failures in the report and retry them",
                    files=[outcome.name for outcome in results.failed[:5]],
                )
            )

        large_files = [outcome for outcome in results.successful if outcome.size > LARGE_FILE_THRESHOLD]
        if large_files:
            recommendations.append(
                Recommendation(
                    priority="medium",
                    issue=f"{len(large_files)} large files (>50MB) uploaded",
                    action="Monitor egress from the bucket as large files may incur costs",
                    note="Consider compressing videos before upload",
                )
            )

        total_size = sum(outcome.size for outcome in results.successful)
        if total_size > LARGE_TOTAL_THRESHOLD:
            recommendations.append(
                Recommendation(
                    priority="high",
                    issue="Large total storage usage",
                    action="Review the bucket storage class or lifecycle rules",
                    note="Check Cloud Storage pricing for exact costs",
                )
            )

        return recommendations

    def export_csv(self, results: MigrationResults) -> Path:
        path = self.export_path(results.run_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", newline="", encoding="utf-8") as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=CSV_FIELDS)
            writer.writeheader()
            for status, outcomes in (
                ("SUCCESS", results.successful),
                ("FAILED", results.failed),
                ("SKIPPED", results.skipped),
            ):
                for outcome in outcomes:
                    writer.writerow({
                        "Status": status,
                        "Category": outcome.category.value,
                        "Original Path": outcome.original_path,
                        "Remote ID": outcome.remote_id or "",
                        "URL": outcome.url or "",
                        "Size": outcome.size,
                        "Error": "Skipped" if status == "SKIPPED" else (outcome.error or ""),
                    })

        logger.info("CSV export created: {}", path)
        return path

    # Phase 4: rollback and verification

    def generate_rollback_plan(self, run_id: str) -> RollbackPlan:
        """Plan, but never perform, the manual steps that undo a run."""
        progress = self.progress_path(run_id)
        results = MigrationResults.model_validate_json(progress.read_text(encoding="utf-8"))

        plan = RollbackPlan(
            run_id=run_id,
            files_to_restore=len(results.successful),
            remote_files_to_delete=len(results.successful),
            steps=[
                RollbackStep(
                    id=1,
                    action="Download files from remote storage",
                    description="Download every migrated object listed below",
                ),
                RollbackStep(
                    id=2,
                    action="Restore to original locations",
                    description="Place downloaded files at their original paths",
                    note="Uses the original path recorded for each file",
                ),
                RollbackStep(
                    id=3,
                    action="Delete from remote storage",
                    description="Remove the migrated objects to avoid duplicate storage",
                    warning="This permanently deletes the objects from the bucket",
                ),
                RollbackStep(
                    id=4,
                    action="Update database",
                    description="Revert remote URLs back to local paths",
                ),
            ],
            remote_files=[
                {
                    "public_id": outcome.remote_id,
                    "url": outcome.url,
                    "original_path": outcome.original_path,
                    "size": outcome.size,
                }
                for outcome in results.successful
            ],
        )

        self._write_json(self.rollback_plan_path, plan.model_dump(mode="json"))
        logger.info("Rollback plan for {} saved to {}", run_id, self.rollback_plan_path)
        return plan

    def verify_backups(self) -> BackupVerification:
        """Check that every ledger entry still has its backup file on disk."""
        records = self.service.mirror.records()
        verification = BackupVerification(
            ledger_entries=len(records),
            local_backups=sum(1 for record in records if record.local_backup),
            backup_size=sum(record.size for record in records),
        )

        for record in records:
            if not record.local_backup:
                verification.issues.append(
                    BackupIssue(
                        remote_id=record.remote_id,
                        issue="No local backup exists",
                        original_name=record.original_name,
                    )
                )
            elif not Path(record.local_backup).is_file():
                verification.issues.append(
                    BackupIssue(
                        remote_id=record.remote_id,
                        issue="Backup file missing or inaccessible",
                        backup_path=record.local_backup,
                        original_name=record.original_name,
                    )
                )

        path = self.reports_dir / f"backup-verification_{int(time.time() * 1000)}.json"
        self._write_json(path, verification.model_dump(mode="json"))
        logger.info("Backup verification complete: {} issues, report at {}", len(verification.issues), path)
        return verification
