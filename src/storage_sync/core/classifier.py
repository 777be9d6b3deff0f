"""File classification by MIME type and extension."""

from pathlib import PurePath
from typing import Dict, List, Optional

from ..models.storage import (
    Classification,
    FileCategory,
    ResourceKind,
    UploadPreset,
    CATEGORY_RESOURCE_KINDS,
)


MB = 1024 * 1024

DOCUMENT_EXTENSIONS = {".pdf", ".doc", ".docx", ".txt", ".rtf", ".odt", ".ppt", ".pptx", ".xls", ".xlsx"}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg"}
VIDEO_EXTENSIONS = {".mp4", ".mov", ".avi", ".mkv", ".webm"}

DOCUMENT_MIME_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "application/rtf",
    "application/vnd.oasis.opendocument.text",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
IMAGE_MIME_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp", "image/svg+xml"}
VIDEO_MIME_TYPES = {"video/mp4", "video/quicktime", "video/x-msvideo", "video/x-matroska", "video/webm"}

# Checked in this order; MIME types first, then extensions
CATEGORY_RULES = [
    (FileCategory.DOCUMENT, DOCUMENT_MIME_TYPES, DOCUMENT_EXTENSIONS),
    (FileCategory.IMAGE, IMAGE_MIME_TYPES, IMAGE_EXTENSIONS),
    (FileCategory.VIDEO, VIDEO_MIME_TYPES, VIDEO_EXTENSIONS),
]

SIZE_LIMITS = {
    FileCategory.DOCUMENT: 100 * MB,
    FileCategory.IMAGE: 20 * MB,
    FileCategory.VIDEO: 200 * MB,
}

OFFICE_EXTENSIONS = {".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx"}


def build_presets(app_name: str) -> Dict[str, UploadPreset]:
    """Build the preset registry for an application prefix."""
    presets = [
        UploadPreset(
            name=f"{app_name}_files",
            resource_kind=ResourceKind.RAW,
            folder=f"{app_name}/documents",
            max_size=SIZE_LIMITS[FileCategory.DOCUMENT],
            cache_control="private, max-age=0",
        ),
        UploadPreset(
            name=f"{app_name}_media",
            resource_kind=ResourceKind.IMAGE,
            folder=f"{app_name}/images",
            max_size=SIZE_LIMITS[FileCategory.IMAGE],
            cache_control="public, max-age=31536000",
            transformations=[{"width": 2000, "height": 2000, "crop": "limit"}, {"quality": "auto:good"}],
            apply_transformations=True,
        ),
        UploadPreset(
            name=f"{app_name}_video",
            resource_kind=ResourceKind.VIDEO,
            folder=f"{app_name}/videos",
            max_size=SIZE_LIMITS[FileCategory.VIDEO],
            cache_control="public, max-age=86400",
        ),
        UploadPreset(
            name=f"{app_name}_avatars",
            resource_kind=ResourceKind.IMAGE,
            folder=f"{app_name}/images/avatars",
            max_size=SIZE_LIMITS[FileCategory.IMAGE],
            cache_control="public, max-age=31536000",
            transformations=[
                {"width": 300, "height": 300, "crop": "fill", "gravity": "face"},
                {"quality": "auto:good"},
            ],
            apply_transformations=True,
        ),
        UploadPreset(
            name=f"{app_name}_covers",
            resource_kind=ResourceKind.IMAGE,
            folder=f"{app_name}/images/covers",
            max_size=SIZE_LIMITS[FileCategory.IMAGE],
            cache_control="public, max-age=31536000",
            transformations=[{"width": 1200, "height": 400, "crop": "fill"}, {"quality": "auto:good"}],
            apply_transformations=True,
        ),
    ]
    return {preset.name: preset for preset in presets}


class FileClassifier:
    """Maps a filename and MIME type to a category, resource kind and preset."""

    def __init__(self, app_name: str = "assets"):
        self.app_name = app_name
        self._presets = build_presets(app_name)
        self._category_presets = {
            FileCategory.DOCUMENT: self._presets[f"{app_name}_files"],
            FileCategory.IMAGE: self._presets[f"{app_name}_media"],
            FileCategory.VIDEO: self._presets[f"{app_name}_video"],
        }

    def classify(self, filename: str, mime_type: Optional[str] = None) -> Classification:
        """Classify a file. Unknown files are treated as raw documents."""
        category = self.detect_category(filename, mime_type)
        return Classification(
            category=category,
            resource_kind=CATEGORY_RESOURCE_KINDS[category],
            preset=self._category_presets[category],
        )

    def detect_category(self, filename: str, mime_type: Optional[str] = None) -> FileCategory:
        # Client-supplied MIME types are unreliable, so extensions are the fallback
        if mime_type:
            normalized = mime_type.split(";")[0].strip().lower()
            for category, mime_types, _ in CATEGORY_RULES:
                if normalized in mime_types:
                    return category

        extension = self.extension(filename)
        for category, _, extensions in CATEGORY_RULES:
            if extension in extensions:
                return category

        return FileCategory.DOCUMENT

    def is_document(self, filename: str, mime_type: Optional[str] = None) -> bool:
        return self.detect_category(filename, mime_type) == FileCategory.DOCUMENT

    @staticmethod
    def extension(filename: str) -> str:
        return PurePath(filename or "").suffix.lower()

    @staticmethod
    def is_office_document(filename: str) -> bool:
        return PurePath(filename or "").suffix.lower() in OFFICE_EXTENSIONS

    def preset(self, name: str) -> Optional[UploadPreset]:
        return self._presets.get(name)

    def category_preset(self, category: FileCategory) -> UploadPreset:
        return self._category_presets[category]

    def presets(self) -> List[UploadPreset]:
        return list(self._presets.values())

    def size_limit(self, category: FileCategory) -> int:
        return SIZE_LIMITS[category]
