"""Configuration loading utilities."""

import os
from typing import Optional, List
from pathlib import Path
from dotenv import load_dotenv

from ..models.config import (
    StorageConfig,
    GCSConfig,
    BackupConfig,
    FallbackConfig,
    MigrationSettings,
)


REQUIRED_ENV_VARS = ["GCS_PROJECT_ID", "GCS_BUCKET_NAME", "GOOGLE_APPLICATION_CREDENTIALS"]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def load_config_from_env(env_file: Optional[str] = None) -> StorageConfig:
    """Load storage configuration from environment variables."""

    if env_file:
        load_dotenv(env_file)
    else:
        # Try to load from .env file in current directory
        env_path = Path(".env")
        if env_path.exists():
            load_dotenv(env_path)

    gcs_config = GCSConfig(
        project_id=os.getenv("GCS_PROJECT_ID", ""),
        bucket_name=os.getenv("GCS_BUCKET_NAME", ""),
        credentials_path=os.getenv("GOOGLE_APPLICATION_CREDENTIALS") or None,
    )

    # Backups are off in development unless explicitly enabled
    environment = os.getenv("APP_ENV", "production").lower()
    backups_enabled = environment != "development" or _env_flag("ENABLE_LOCAL_BACKUPS")

    backup_config = BackupConfig(
        root=Path(os.getenv("STORAGE_BACKUP_ROOT", "backups/storage")),
        enabled=backups_enabled,
    )

    fallback_tags = [
        tag.strip() for tag in os.getenv("STORAGE_FALLBACK_TAGS", "").split(",") if tag.strip()
    ]
    fallback_config = FallbackConfig(
        folder=os.getenv("STORAGE_FALLBACK_FOLDER") or None,
        tags=fallback_tags,
    )

    migration_settings = MigrationSettings(
        root=Path(os.getenv("MIGRATION_ROOT", "migrations/storage")),
        batch_size=int(os.getenv("MIGRATION_BATCH_SIZE", "50")),
        concurrent_uploads=int(os.getenv("MIGRATION_CONCURRENT_UPLOADS", "5")),
        batch_delay=float(os.getenv("MIGRATION_BATCH_DELAY", "1.0")),
        rate_limit=int(os.getenv("MIGRATION_RATE_LIMIT", "10")),
    )

    return StorageConfig(
        gcs=gcs_config,
        backup=backup_config,
        fallback=fallback_config,
        migration=migration_settings,
        app_name=os.getenv("STORAGE_APP_NAME", "assets"),
        environment=environment,
    )


def missing_credentials(config: StorageConfig) -> List[str]:
    """Return the names of required credential variables that are unset."""
    values = {
        "GCS_PROJECT_ID": config.gcs.project_id,
        "GCS_BUCKET_NAME": config.gcs.bucket_name,
        "GOOGLE_APPLICATION_CREDENTIALS": config.gcs.credentials_path,
    }
    return [name for name in REQUIRED_ENV_VARS if not values[name]]


def create_sample_env_file(file_path: str = ".env.example") -> None:
    """Create a sample environment file with all required variables."""

    sample_content = """# Google Cloud Storage Configuration (required)
GCS_PROJECT_ID=your-project-id
GCS_BUCKET_NAME=your-bucket-name
GOOGLE_APPLICATION_CREDENTIALS=/path/to/your/service-account.json

# Application
STORAGE_APP_NAME=assets
APP_ENV=production
# Local backups are disabled when APP_ENV=development unless enabled here
ENABLE_LOCAL_BACKUPS=false
STORAGE_BACKUP_ROOT=backups/storage

# Document upload fallback
# STORAGE_FALLBACK_FOLDER=assets/documents
# STORAGE_FALLBACK_TAGS=fallback

# Migration Settings
MIGRATION_ROOT=migrations/storage
MIGRATION_BATCH_SIZE=50
MIGRATION_CONCURRENT_UPLOADS=5
MIGRATION_BATCH_DELAY=1.0
MIGRATION_RATE_LIMIT=10
"""

    with open(file_path, "w") as f:
        f.write(sample_content)

    print(f"Sample environment file created: {file_path}")


def validate_config(config: StorageConfig) -> List[str]:
    """Validate that all required configuration values are present."""

    errors = [f"{name} is required" for name in missing_credentials(config)]

    # Check GCS credentials
    if config.gcs.credentials_path and not Path(config.gcs.credentials_path).exists():
        errors.append(f"GCS credentials file not found: {config.gcs.credentials_path}")

    if config.migration.batch_size < config.migration.concurrent_uploads:
        errors.append("MIGRATION_BATCH_SIZE must be at least MIGRATION_CONCURRENT_UPLOADS")

    return errors
