"""
Object storage contract.

Keys are flat, randomly unique identifiers chosen by the caller. Large
objects go through the multipart calls; readers use open_object.
"""

import uuid
from abc import ABC, abstractmethod
from typing import BinaryIO, List, Optional

from ..models import UploadedPart


class ObjectStore(ABC):
    """S3-style object store."""

    @abstractmethod
    def create_multipart_upload(self, key: str, content_type: str) -> str:
        """Start a multipart upload and return its upload id."""

    @abstractmethod
    def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        """Upload one part and return its checksum (ETag)."""

    @abstractmethod
    def complete_multipart_upload(self, key: str, upload_id: str, parts: List[UploadedPart]) -> str:
        """Assemble the object from the full ordered part list; returns the final checksum."""

    @abstractmethod
    def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        """Discard an incomplete upload and its parts."""

    @abstractmethod
    def open_object(self, key: str) -> BinaryIO:
        """Open a stored object for sequential, seekable reading."""

    @abstractmethod
    def delete_object(self, key: str) -> None:
        """Remove a stored object; a missing key is not an error."""

    @abstractmethod
    def object_size(self, key: str) -> int:
        """Size of a stored object in bytes."""

    def public_url(self, key: str) -> Optional[str]:
        """Public URL of the object, if the store exposes one."""
        return None

    def location_ref(self, key: str) -> str:
        """Location a sandbox can fetch the object from."""
        url = self.public_url(key)
        if not url:
            raise ValueError(f"No fetchable location for {key}")
        return url


def generate_storage_key(extension: str, prefix: str = "videos") -> str:
    """
    Random, unique flat key for a new object.

    Args:
        extension: File extension with or without the leading dot
        prefix: Key namespace
    """
    ext = extension.lstrip(".")
    suffix = f".{ext}" if ext else ""
    return f"{prefix}/{uuid.uuid4().hex}{suffix}"
