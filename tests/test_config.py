"""Test configuration loading and validation."""

from pathlib import Path
import pytest

from src.storage_sync.utils.config_loader import (
    load_config_from_env,
    missing_credentials,
    validate_config,
    create_sample_env_file
)
from src.storage_sync.models.config import StorageConfig, GCSConfig, MigrationSettings


ENV_KEYS = [
    "GCS_PROJECT_ID",
    "GCS_BUCKET_NAME",
    "GOOGLE_APPLICATION_CREDENTIALS",
    "APP_ENV",
    "ENABLE_LOCAL_BACKUPS",
    "STORAGE_APP_NAME",
    "STORAGE_BACKUP_ROOT",
    "STORAGE_FALLBACK_FOLDER",
    "STORAGE_FALLBACK_TAGS",
    "MIGRATION_ROOT",
    "MIGRATION_BATCH_SIZE",
    "MIGRATION_CONCURRENT_UPLOADS",
    "MIGRATION_BATCH_DELAY",
    "MIGRATION_RATE_LIMIT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Unset storage variables and remove whatever load_dotenv sets during a test."""
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)


def write_env(tmp_path, content: str) -> str:
    env_file = tmp_path / "test.env"
    env_file.write_text(content)
    return str(env_file)


def test_load_config_with_minimal_env(tmp_path):
    """Test loading config with only the required environment variables."""

    env_file = write_env(tmp_path, """
GCS_PROJECT_ID=test-project
GCS_BUCKET_NAME=test-bucket
GOOGLE_APPLICATION_CREDENTIALS=/tmp/creds.json
""")

    config = load_config_from_env(env_file)

    assert config.gcs.project_id == "test-project"
    assert config.gcs.bucket_name == "test-bucket"
    assert config.gcs.credentials_path == "/tmp/creds.json"
    assert config.app_name == "assets"  # default
    assert config.backup.enabled is True  # production default
    assert config.backup.root == Path("backups/storage")
    assert config.migration.batch_size == 50  # default
    assert config.migration.concurrent_uploads == 5  # default
    assert missing_credentials(config) == []


def test_load_config_overrides(tmp_path):
    """Test optional variables override the defaults."""

    env_file = write_env(tmp_path, """
STORAGE_APP_NAME=bananas
MIGRATION_BATCH_SIZE=20
MIGRATION_CONCURRENT_UPLOADS=4
MIGRATION_BATCH_DELAY=0.5
STORAGE_FALLBACK_FOLDER=bananas/rescued
STORAGE_FALLBACK_TAGS=retry, manual ,
""")

    config = load_config_from_env(env_file)

    assert config.app_name == "bananas"
    assert config.migration.batch_size == 20
    assert config.migration.concurrent_uploads == 4
    assert config.migration.batch_delay == 0.5
    assert config.fallback.folder == "bananas/rescued"
    assert config.fallback.tags == ["retry", "manual"]


def test_development_disables_backups(tmp_path):
    """Test local backups are off in development unless enabled explicitly."""

    config = load_config_from_env(write_env(tmp_path, "APP_ENV=development\n"))
    assert config.environment == "development"
    assert config.backup.enabled is False


def test_development_backups_can_be_enabled(tmp_path):
    env_file = write_env(tmp_path, "APP_ENV=development\nENABLE_LOCAL_BACKUPS=true\n")

    config = load_config_from_env(env_file)
    assert config.backup.enabled is True


def test_validate_config_missing_required_fields():
    """Test config validation with missing required fields."""

    errors = validate_config(StorageConfig())

    assert "GCS_PROJECT_ID is required" in errors
    assert "GCS_BUCKET_NAME is required" in errors
    assert "GOOGLE_APPLICATION_CREDENTIALS is required" in errors


def test_validate_config_valid(tmp_path):
    """Test config validation with all required fields."""

    credentials = tmp_path / "creds.json"
    credentials.write_text("{}")
    config = StorageConfig(
        gcs=GCSConfig(project_id="test-project", bucket_name="test-bucket", credentials_path=str(credentials))
    )

    errors = validate_config(config)
    assert len(errors) == 0


def test_validate_config_missing_credentials_file(tmp_path):
    config = StorageConfig(
        gcs=GCSConfig(
            project_id="test-project",
            bucket_name="test-bucket",
            credentials_path=str(tmp_path / "nope.json"),
        )
    )

    errors = validate_config(config)
    assert any("credentials file not found" in error for error in errors)


def test_validate_config_batch_smaller_than_concurrency(tmp_path):
    credentials = tmp_path / "creds.json"
    credentials.write_text("{}")
    config = StorageConfig(
        gcs=GCSConfig(project_id="p", bucket_name="b", credentials_path=str(credentials)),
        migration=MigrationSettings(batch_size=2, concurrent_uploads=5),
    )

    errors = validate_config(config)
    assert errors == ["MIGRATION_BATCH_SIZE must be at least MIGRATION_CONCURRENT_UPLOADS"]


def test_create_sample_env_file(tmp_path):
    """Test creating sample environment file."""

    sample_file = tmp_path / "test.env"
    create_sample_env_file(str(sample_file))

    assert sample_file.exists()

    content = sample_file.read_text()
    assert "GCS_PROJECT_ID=" in content
    assert "GCS_BUCKET_NAME=" in content
    assert "GOOGLE_APPLICATION_CREDENTIALS=" in content
    assert "MIGRATION_BATCH_SIZE=" in content
