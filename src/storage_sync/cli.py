"""Command-line interface for storage setup and migration."""

import asyncio
import argparse
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from loguru import logger

from .core.migration_engine import MigrationEngine
from .core.storage_service import StorageService
from .models.migration import MigrationStrategy
from .models.storage import UploadOptions
from .utils.config_loader import (
    REQUIRED_ENV_VARS,
    create_sample_env_file,
    load_config_from_env,
    missing_credentials,
    validate_config,
)
from .utils.formatting import format_bytes, format_duration


def print_check(passed: bool, message: str) -> None:
    print(f"[{'PASS' if passed else 'FAIL'}] {message}")


class StorageCLI:
    """Operator commands for the storage service and the migration engine."""

    def __init__(self, config_file: Optional[str] = None):
        try:
            self.config = load_config_from_env(config_file)
            self.service = StorageService.from_config(self.config)
            self.service.initialize()
            self.engine = MigrationEngine(self.service, self.config.migration)
        except Exception as e:
            print(f"Failed to load configuration: {e}")
            sys.exit(1)

    def require_valid_config(self) -> None:
        config_errors = validate_config(self.config)
        if config_errors:
            print("Configuration errors:")
            for error in config_errors:
                print(f"  - {error}")
            sys.exit(1)

    # Setup checks

    async def verify_credentials(self) -> bool:
        """Check required variables and bucket access."""
        print("=== Verifying Storage Credentials ===")

        missing = missing_credentials(self.config)
        for name in REQUIRED_ENV_VARS:
            print_check(name not in missing, f"{name} {'missing' if name in missing else 'set'}")

        if missing:
            print("\nAdd the missing variables to your .env file (see `storage-sync init`).")
            return False

        config_errors = validate_config(self.config)
        if config_errors:
            for error in config_errors:
                print_check(False, error)
            return False

        try:
            reachable = await self.service.gateway.ping()
        except Exception as e:
            print_check(False, f"Bucket {self.config.gcs.bucket_name} check failed: {e}")
            return False

        print_check(reachable, f"Bucket {self.config.gcs.bucket_name} {'reachable' if reachable else 'not found'}")
        return reachable

    async def test_upload(self) -> bool:
        """Upload a small text file, then delete it again."""
        print("=== Testing Upload and Delete ===")

        buffer = f"This is a test upload for {self.config.app_name} storage setup".encode("utf-8")
        options = UploadOptions(
            folder=f"{self.config.app_name}/tests",
            tags=["test", "setup"],
            context={"test_run": "setup_verification", "timestamp": datetime.now().isoformat()},
            mime_type="text/plain",
        )

        result = await self.service.upload(buffer, "setup-test-file.txt", options)
        print_check(result.success, f"Test upload {'succeeded' if result.success else f'failed: {result.error}'}")
        if not result.success:
            return False

        print(f"  URL: {result.remote.secure_url}")
        print(f"  Public ID: {result.remote.public_id}")
        print(f"  Backup created: {'Yes' if result.metadata.backup_created else 'No'}")

        outcome = await self.service.delete(result.remote.public_id)
        print_check(outcome.success, f"Test delete {'succeeded' if outcome.success else f'failed: {outcome.error}'}")
        await self.service.tracker.flush()
        return outcome.success

    def create_directories(self) -> bool:
        print("=== Creating Directories ===")
        created = self.service.mirror.ensure_structure()
        self.engine.ensure_structure()
        for directory in created:
            print(f"  Created: {directory}")
        print_check(True, f"Backup root {self.service.mirror.root} and migration root {self.engine.root} ready")
        if not self.service.mirror.enabled:
            print("  Note: local backups are disabled in this environment")
        return True

    async def run_full_setup(self) -> None:
        """Run every setup check and report the overall result."""
        steps = [
            ("Verify credentials", self.verify_credentials),
            ("Create directories", self._create_directories_async),
            ("Test upload", self.test_upload),
        ]

        failed = []
        for name, step in steps:
            print(f"\n> {name}")
            try:
                passed = await step()
            except Exception as e:
                print_check(False, f"{name}: {e}")
                passed = False
            if not passed:
                failed.append(name)

        print("\n=== Setup Summary ===")
        print(f"Environment: {self.config.environment}")
        print(f"Local backups: {'enabled' if self.service.mirror.enabled else 'disabled'}")
        if failed:
            print(f"Setup completed with issues: {', '.join(failed)}")
            sys.exit(1)
        print("Setup complete. Storage is ready to use.")

    async def _create_directories_async(self) -> bool:
        return self.create_directories()

    # Migration commands

    async def run_scan(self, directories: Optional[List[str]] = None) -> None:
        print("=== Scanning Legacy Uploads ===")

        try:
            scan = await asyncio.to_thread(self.engine.scan, directories)

            for directory, entries in scan.directories.items():
                print(f"  {directory}: {len(entries)} files")
            for directory, error in scan.errors.items():
                print(f"  {directory}: {error}")

            print(f"Total files: {scan.summary.total_files}")
            print(f"Total size: {format_bytes(scan.summary.total_size)}")
            for category, count in sorted(scan.summary.by_category.items()):
                print(f"  {category}: {count}")
            print(f"Analysis saved to: {self.engine.analysis_path}")

        except Exception as e:
            print(f"Scan failed: {e}")
            sys.exit(1)

    async def run_plan(
        self,
        directories: Optional[List[str]] = None,
        batch_size: Optional[int] = None,
        concurrent_uploads: Optional[int] = None,
        preserve_structure: bool = False,
        output: Optional[str] = None,
    ) -> None:
        print("=== Generating Migration Plan ===")

        try:
            strategy = MigrationStrategy(
                batch_size=batch_size or self.config.migration.batch_size,
                concurrent_uploads=concurrent_uploads or self.config.migration.concurrent_uploads,
                preserve_structure=preserve_structure,
            )
            scan = await asyncio.to_thread(self.engine.scan, directories)
            plan = self.engine.generate_plan(scan, strategy, output)

            print(f"Files to migrate: {plan.estimated.total_files}")
            print(f"Total size: {format_bytes(plan.estimated.total_size)}")
            print(f"Estimated time: {format_duration(plan.estimated.estimated_seconds)}")
            print(f"Plan saved to: {output or self.engine.plan_path}")

        except Exception as e:
            print(f"Plan generation failed: {e}")
            sys.exit(1)

    async def run_migration(
        self,
        plan_file: Optional[str] = None,
        directories: Optional[List[str]] = None,
        retry_failed: bool = False,
    ) -> None:
        """Execute a saved plan, or scan and plan first when there is none."""
        print("=== Running Migration ===")
        self.require_valid_config()

        try:
            plan_path = Path(plan_file) if plan_file else self.engine.plan_path
            if plan_path.exists():
                print(f"Resuming plan: {plan_path}")
                plan = self.engine.load_plan(plan_path)
                results = await self.engine.execute(plan, plan_path, retry_failed=retry_failed)
            else:
                print("No plan found, scanning and planning first")
                results = await self.engine.run(directories)

            print("\n=== Migration Complete ===")
            print(f"Run: {results.run_id}")
            print(f"Successful: {len(results.successful)}")
            print(f"Failed: {len(results.failed)}")
            print(f"Skipped: {len(results.skipped)}")
            print(f"Report: {self.engine.report_path(results.run_id)}")
            print(f"CSV export: {self.engine.export_path(results.run_id)}")

            if results.failed:
                print("\nFailed files:")
                for outcome in results.failed[:10]:
                    print(f"  {outcome.name}: {outcome.error}")
                if len(results.failed) > 10:
                    print(f"  ... and {len(results.failed) - 10} more (see the CSV export)")

        except Exception as e:
            print(f"Migration failed: {e}")
            sys.exit(1)

    def run_rollback_plan(self, run_id: str) -> None:
        print("=== Generating Rollback Plan ===")

        try:
            plan = self.engine.generate_rollback_plan(run_id)
            print(f"Files to restore: {plan.files_to_restore}")
            for step in plan.steps:
                print(f"  {step.id}. {step.action}: {step.description}")
                if step.warning:
                    print(f"     WARNING: {step.warning}")
            print(f"Plan saved to: {self.engine.rollback_plan_path}")
            print("Rollback is not executed automatically; follow the steps manually.")

        except FileNotFoundError:
            print(f"No progress file found for run {run_id}")
            sys.exit(1)
        except Exception as e:
            print(f"Rollback planning failed: {e}")
            sys.exit(1)

    def run_verify_backups(self) -> None:
        print("=== Verifying Backups ===")

        try:
            verification = self.engine.verify_backups()
            print(f"Ledger entries: {verification.ledger_entries}")
            print(f"Local backups: {verification.local_backups}")
            print(f"Backup size: {format_bytes(verification.backup_size)}")
            print_check(not verification.issues, f"Issues found: {len(verification.issues)}")
            for issue in verification.issues[:15]:
                print(f"  {issue.remote_id}: {issue.issue}")
            if len(verification.issues) > 15:
                print(f"  ... and {len(verification.issues) - 15} more")

        except Exception as e:
            print(f"Backup verification failed: {e}")
            sys.exit(1)

    # Maintenance

    def run_stats(self) -> None:
        print("=== Upload Statistics ===")

        overview = self.service.storage_overview()
        stats = overview.statistics
        print(f"Total uploads: {stats.total_uploads}")
        print(f"Successful: {stats.successful_uploads}")
        print(f"Failed: {stats.failed_uploads}")
        print(f"Total size: {format_bytes(stats.total_size)}")
        print(f"Average duration: {stats.average_duration_ms:.0f} ms")
        for category, totals in stats.by_category.items():
            print(f"  {category}: {totals.count} files, {format_bytes(totals.size)}")
        print(f"Backups: {overview.backup_count} files, {format_bytes(overview.backup_size)}")
        print(f"Local backups {'enabled' if overview.backups_enabled else 'disabled'} ({overview.environment})")

    def run_cleanup(self, days: int) -> None:
        print(f"=== Cleaning Up Backups Older Than {days} Days ===")

        try:
            result = self.service.cleanup_old_backups(days)
            print(f"Deleted backups: {result['deleted_count']}")
            print(f"Space freed: {format_bytes(result['total_size'])}")

        except Exception as e:
            print(f"Cleanup failed: {e}")
            sys.exit(1)


def main():
    """Main CLI entry point."""

    parser = argparse.ArgumentParser(description="Storage sync and legacy upload migration tool")
    parser.add_argument(
        "--config", "-c",
        type=str,
        help="Path to configuration file (defaults to .env in current directory)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show informational log messages"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Setup commands
    subparsers.add_parser("verify", help="Verify storage credentials and bucket access")
    subparsers.add_parser("test-upload", help="Upload and delete a test file")
    subparsers.add_parser("create-dirs", help="Create backup and migration directories")
    subparsers.add_parser("setup", help="Run all setup checks")

    init_parser = subparsers.add_parser("init", help="Create sample configuration file")
    init_parser.add_argument(
        "--output", "-o",
        type=str,
        default=".env.example",
        help="Where to write the template (default: .env.example)"
    )

    # Migration commands
    scan_parser = subparsers.add_parser("scan", help="Scan legacy upload directories")
    scan_parser.add_argument("directories", nargs="*", help="Directories to scan (default: uploads, public/uploads, storage/uploads)")

    plan_parser = subparsers.add_parser("plan", help="Scan and generate a migration plan")
    plan_parser.add_argument("directories", nargs="*", help="Directories to scan")
    plan_parser.add_argument("--batch-size", "-b", type=int, help="Files per batch")
    plan_parser.add_argument("--concurrent", type=int, help="Concurrent uploads per batch")
    plan_parser.add_argument(
        "--preserve-structure",
        action="store_true",
        help="Mirror the original directory layout in the remote folders"
    )
    plan_parser.add_argument("--output", "-o", type=str, help="Plan file path")

    migrate_parser = subparsers.add_parser("migrate", help="Execute (or resume) a migration plan")
    migrate_parser.add_argument("--plan", "-p", type=str, help="Plan file path")
    migrate_parser.add_argument("directories", nargs="*", help="Directories to scan when no plan exists")
    migrate_parser.add_argument(
        "--retry-failed",
        action="store_true",
        help="Also retry items that failed in a previous run"
    )

    rollback_parser = subparsers.add_parser("rollback-plan", help="Generate a manual rollback plan for a run")
    rollback_parser.add_argument("run_id", help="Migration run id, e.g. migration_1700000000000")

    subparsers.add_parser("verify-backups", help="Check that every ledger entry has its backup file")

    # Maintenance commands
    subparsers.add_parser("stats", help="Show upload statistics")
    cleanup_parser = subparsers.add_parser("cleanup", help="Delete old local backups")
    cleanup_parser.add_argument("--days", "-d", type=int, default=30, help="Days of backups to keep (default: 30)")

    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level="INFO" if args.verbose else "WARNING")

    if not args.command:
        parser.print_help()
        return

    if args.command == "init":
        create_sample_env_file(args.output)
        print(f"Sample configuration created. Edit {args.output} and rename to .env")
        return

    # Initialize CLI with config
    cli = StorageCLI(args.config)

    # Run appropriate command
    if args.command == "verify":
        if not asyncio.run(cli.verify_credentials()):
            sys.exit(1)
    elif args.command == "test-upload":
        if not asyncio.run(cli.test_upload()):
            sys.exit(1)
    elif args.command == "create-dirs":
        cli.create_directories()
    elif args.command == "setup":
        asyncio.run(cli.run_full_setup())
    elif args.command == "scan":
        asyncio.run(cli.run_scan(args.directories))
    elif args.command == "plan":
        asyncio.run(cli.run_plan(
            args.directories,
            batch_size=args.batch_size,
            concurrent_uploads=args.concurrent,
            preserve_structure=args.preserve_structure,
            output=args.output,
        ))
    elif args.command == "migrate":
        asyncio.run(cli.run_migration(args.plan, args.directories, retry_failed=args.retry_failed))
    elif args.command == "rollback-plan":
        cli.run_rollback_plan(args.run_id)
    elif args.command == "verify-backups":
        cli.run_verify_backups()
    elif args.command == "stats":
        cli.run_stats()
    elif args.command == "cleanup":
        cli.run_cleanup(args.days)


if __name__ == "__main__":
    main()
