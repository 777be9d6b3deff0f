"""Google Cloud Storage adapter exposing the operations the gateway needs."""

import json
from datetime import datetime
from typing import Dict, Any, Iterable, Optional
from urllib.parse import quote

from google.api_core.exceptions import NotFound
from google.cloud import storage

from ..models.config import GCSConfig
from ..models.storage import ResourceKind, UploadPreset, UploadRequest


class UploadPresetError(Exception):
    """Raised when an upload names a preset that is not registered."""


class GCSObjectStore:
    """Stores objects as `<resource kind>/<folder>/<public id>` in one bucket."""

    SEARCH_ORDER = [ResourceKind.IMAGE, ResourceKind.RAW, ResourceKind.VIDEO]

    def __init__(self, config: GCSConfig, presets: Iterable[UploadPreset] = ()):
        self.config = config
        self.presets: Dict[str, UploadPreset] = {preset.name: preset for preset in presets}
        if config.credentials_path:
            self.client = storage.Client.from_service_account_json(
                config.credentials_path, project=config.project_id
            )
        else:
            self.client = storage.Client(project=config.project_id)
        self.bucket = self.client.bucket(config.bucket_name)

    @staticmethod
    def object_name(public_id: str, resource_kind: ResourceKind) -> str:
        return f"{resource_kind.value}/{public_id}"

    def secure_url(self, object_name: str, generation: Optional[int] = None) -> str:
        url = f"{self.config.public_base_url()}/{quote(object_name)}"
        if generation:
            url += f"?generation={generation}"
        return url

    def gs_url(self, object_name: str) -> str:
        return f"gs://{self.config.bucket_name}/{object_name}"

    def upload(self, data: bytes, request: UploadRequest) -> Dict[str, Any]:
        """Upload a buffer and return a provider-style response dict."""
        preset = None
        if request.preset:
            preset = self.presets.get(request.preset)
            if preset is None:
                raise UploadPresetError(f"Upload preset not found: {request.preset}")

        public_id = request.full_id
        name = self.object_name(public_id, request.resource_kind)
        blob = self.bucket.blob(name)

        metadata = {
            "resource_kind": request.resource_kind.value,
            "tags": ",".join(request.tags),
            "context": json.dumps(request.context),
        }
        if request.original_filename:
            metadata["original_filename"] = request.original_filename
        if request.preset:
            metadata["preset"] = request.preset
        if request.transformations:
            metadata["transformations"] = json.dumps(request.transformations)
        if request.conversion:
            metadata["conversion"] = request.conversion
        blob.metadata = metadata
        if preset and preset.cache_control:
            blob.cache_control = preset.cache_control

        # if_generation_match=0 refuses to replace an existing object
        blob.upload_from_string(
            data,
            content_type=request.content_type or "application/octet-stream",
            if_generation_match=None if request.overwrite else 0,
        )

        created = blob.time_created or datetime.now()
        return {
            "public_id": public_id,
            "secure_url": self.secure_url(name, blob.generation),
            "url": self.gs_url(name),
            "format": request.format,
            "resource_type": request.resource_kind.value,
            "bytes": blob.size or len(data),
            "created_at": created.isoformat(),
            "tags": list(request.tags),
            "original_filename": request.original_filename,
        }

    def destroy(self, public_id: str, resource_kind: ResourceKind = ResourceKind.AUTO) -> Dict[str, Any]:
        """Delete an object. `auto` searches every namespace."""
        kinds = self.SEARCH_ORDER if resource_kind == ResourceKind.AUTO else [resource_kind]
        for kind in kinds:
            blob = self.bucket.blob(self.object_name(public_id, kind))
            try:
                blob.delete()
            except NotFound:
                continue
            return {"result": "ok", "resource_type": kind.value}
        return {"result": "not found"}

    def resource(self, public_id: str, resource_kind: ResourceKind = ResourceKind.AUTO) -> Optional[Dict[str, Any]]:
        """Fetch object metadata, or None when the object does not exist."""
        kinds = self.SEARCH_ORDER if resource_kind == ResourceKind.AUTO else [resource_kind]
        for kind in kinds:
            name = self.object_name(public_id, kind)
            blob = self.bucket.get_blob(name)
            if blob is None:
                continue
            return {
                "public_id": public_id,
                "resource_type": kind.value,
                "bytes": blob.size,
                "content_type": blob.content_type,
                "secure_url": self.secure_url(name, blob.generation),
                "created_at": blob.time_created.isoformat() if blob.time_created else None,
                "metadata": blob.metadata or {},
            }
        return None

    def ping(self) -> bool:
        """Check that the bucket is reachable with the configured credentials."""
        return self.bucket.exists()
