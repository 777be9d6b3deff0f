"""Test the local backup mirror and ledger."""

import hashlib
import json
from datetime import datetime, timedelta

import pytest

from src.storage_sync.core.mirror import LocalMirror
from src.storage_sync.models.config import BackupConfig
from src.storage_sync.models.storage import FileCategory, ResourceKind


@pytest.fixture
def mirror(tmp_path):
    mirror = LocalMirror(BackupConfig(root=tmp_path / "backups"))
    mirror.ensure_structure()
    return mirror


def test_ensure_structure_creates_category_directories(tmp_path):
    mirror = LocalMirror(BackupConfig(root=tmp_path / "backups"))

    created = mirror.ensure_structure()

    for name in ["documents", "images", "videos", "avatars", "covers"]:
        assert (tmp_path / "backups" / name).is_dir()
    assert len(created) == 6
    assert mirror.ensure_structure() == []


def test_backup_filename_is_deterministic():
    now = datetime(2024, 1, 2, 3, 4, 5, 678000)
    digest = hashlib.md5(b"assets/documents/resume_1").hexdigest()[:8]

    filename = LocalMirror.backup_filename("resume.pdf", "assets/documents/resume_1", now)

    assert filename == f"resume_{digest}_2024-01-02T03-04-05-678.pdf"


def test_backup_writes_file_and_ledger(mirror, tmp_path):
    outcome = mirror.backup(b"x" * 2000, "resume.pdf", "assets/documents/resume_1", FileCategory.DOCUMENT)

    assert outcome.success and outcome.created
    assert outcome.path.startswith(str(tmp_path / "backups" / "documents"))
    assert (tmp_path / "backups" / "documents" / outcome.filename).read_bytes() == b"x" * 2000

    record = mirror.lookup("assets/documents/resume_1")
    assert record.size == 2000
    assert record.resource_kind == ResourceKind.RAW
    assert record.local_backup == outcome.path

    ledger = json.loads(mirror.ledger_path.read_text())
    assert ledger["assets/documents/resume_1"]["original_name"] == "resume.pdf"


def test_backup_into_subdirectory(mirror, tmp_path):
    outcome = mirror.backup(b"img", "me.png", "assets/images/avatars/u1/me", FileCategory.IMAGE, "avatars")

    assert outcome.path.startswith(str(tmp_path / "backups" / "avatars"))


def test_ledger_survives_reload(mirror):
    mirror.backup(b"abc", "photo.jpg", "assets/images/photo_1", FileCategory.IMAGE)

    reloaded = LocalMirror(mirror.config)
    reloaded.load()

    record = reloaded.lookup("assets/images/photo_1")
    assert record is not None
    assert record.category == FileCategory.IMAGE
    assert record.size == 3


def test_corrupt_ledger_starts_empty(mirror):
    mirror.ledger_path.write_text("{not json")

    mirror.load()

    assert mirror.records() == []


def test_disabled_mirror_skips_backup(tmp_path):
    mirror = LocalMirror(BackupConfig(root=tmp_path / "backups", enabled=False))

    outcome = mirror.backup(b"abc", "resume.pdf", "assets/documents/resume_1", FileCategory.DOCUMENT)

    assert outcome.success
    assert outcome.skipped
    assert not outcome.created
    assert mirror.lookup("assets/documents/resume_1") is None
    assert not (tmp_path / "backups").exists()


def test_failed_write_still_tracks_remote_object(mirror, tmp_path):
    # A file where the category directory should be makes the write fail
    videos = tmp_path / "backups" / "videos"
    videos.rmdir()
    videos.write_text("not a directory")

    outcome = mirror.backup(b"vid", "clip.mp4", "assets/videos/clip_1", FileCategory.VIDEO)

    assert not outcome.success
    assert outcome.error
    record = mirror.lookup("assets/videos/clip_1")
    assert record is not None
    assert record.local_backup is None


def test_remove_deletes_backup_and_entry(mirror):
    outcome = mirror.backup(b"abc", "resume.pdf", "assets/documents/resume_1", FileCategory.DOCUMENT)

    removed = mirror.remove("assets/documents/resume_1")

    assert removed.original_name == "resume.pdf"
    assert mirror.lookup("assets/documents/resume_1") is None
    assert not (mirror.root / "documents" / outcome.filename).exists()
    assert "assets/documents/resume_1" not in json.loads(mirror.ledger_path.read_text())


def test_remove_tolerates_missing_backup_file(mirror):
    outcome = mirror.backup(b"abc", "resume.pdf", "assets/documents/resume_1", FileCategory.DOCUMENT)
    (mirror.root / "documents" / outcome.filename).unlink()

    assert mirror.remove("assets/documents/resume_1") is not None
    assert mirror.remove("assets/documents/resume_1") is None


def test_cleanup_old_backups(mirror):
    mirror.backup(b"old!", "old.pdf", "assets/documents/old", FileCategory.DOCUMENT)
    mirror.backup(b"new", "new.pdf", "assets/documents/new", FileCategory.DOCUMENT)
    mirror.ledger["assets/documents/old"].uploaded_at = datetime.now() - timedelta(days=45)

    result = mirror.cleanup_old_backups(days_to_keep=30)

    assert result == {"deleted_count": 1, "total_size": 4}
    assert mirror.lookup("assets/documents/old") is None
    assert mirror.lookup("assets/documents/new") is not None


def test_total_size(mirror):
    mirror.backup(b"abc", "a.pdf", "a", FileCategory.DOCUMENT)
    mirror.backup(b"de", "b.png", "b", FileCategory.IMAGE)

    assert mirror.total_size() == 5
