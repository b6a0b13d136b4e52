"""
Slidecast object storage.

create_object_store picks the store named by PipelineSettings.storage_backend.
"""

from typing import Optional

from ..config import PipelineSettings, get_settings
from .base import ObjectStore, generate_storage_key
from .local import LocalObjectStore
from .multipart import DEFAULT_PART_SIZE, MultipartUploader, PartSpec, plan_parts


def create_object_store(settings: Optional[PipelineSettings] = None) -> ObjectStore:
    settings = settings or get_settings()
    if settings.storage_backend == "s3":
        from .s3 import S3ObjectStore

        return S3ObjectStore.from_settings(settings)
    return LocalObjectStore(settings.storage_local_root, public_base_url=settings.storage_public_base_url)


__all__ = [
    "ObjectStore",
    "LocalObjectStore",
    "MultipartUploader",
    "PartSpec",
    "DEFAULT_PART_SIZE",
    "create_object_store",
    "generate_storage_key",
    "plan_parts",
]
