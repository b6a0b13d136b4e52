"""
Filesystem object store for development and tests.

Multipart uploads are staged under .multipart/<upload_id>/ and
concatenated on completion.
"""

import hashlib
import logging
import shutil
import uuid
from pathlib import Path
from typing import BinaryIO, List, Optional

from ..errors import ProtocolError
from ..models import UploadedPart
from .base import ObjectStore

logger = logging.getLogger(__name__)


class LocalObjectStore(ObjectStore):
    """Local file storage with S3-style multipart semantics."""

    def __init__(self, root: str, public_base_url: Optional[str] = None):
        self.base_path = Path(root)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def _get_full_path(self, key: str) -> Path:
        full_path = (self.base_path / key).resolve()
        if self.base_path.resolve() not in full_path.parents:
            raise ValueError(f"Invalid storage key: {key}")
        return full_path

    def _staging_dir(self, upload_id: str) -> Path:
        return self.base_path / ".multipart" / upload_id

    def _require_upload(self, upload_id: str) -> Path:
        staging = self._staging_dir(upload_id)
        if not staging.is_dir():
            raise ProtocolError(f"Unknown multipart upload {upload_id}", status_code=404)
        return staging

    def create_multipart_upload(self, key: str, content_type: str) -> str:
        upload_id = uuid.uuid4().hex
        staging = self._staging_dir(upload_id)
        staging.mkdir(parents=True)
        (staging / "key").write_text(key)
        (staging / "content_type").write_text(content_type)
        return upload_id

    def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        staging = self._require_upload(upload_id)
        (staging / f"part-{part_number:05d}").write_bytes(data)
        return hashlib.md5(data).hexdigest()

    def complete_multipart_upload(self, key: str, upload_id: str, parts: List[UploadedPart]) -> str:
        staging = self._require_upload(upload_id)
        numbers = [part.part_number for part in parts]
        if numbers != list(range(1, len(parts) + 1)):
            raise ProtocolError(f"Part list is not gapless and ordered: {numbers}", status_code=400)

        target = self._get_full_path(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        digest = hashlib.md5()
        with open(target, "wb") as out:
            for part in parts:
                part_path = staging / f"part-{part.part_number:05d}"
                if not part_path.exists():
                    raise ProtocolError(f"Part {part.part_number} was never uploaded", status_code=400)
                data = part_path.read_bytes()
                if hashlib.md5(data).hexdigest() != part.checksum:
                    raise ProtocolError(f"Checksum mismatch for part {part.part_number}", status_code=400)
                digest.update(bytes.fromhex(part.checksum))
                out.write(data)
        shutil.rmtree(staging, ignore_errors=True)
        # Same shape as an S3 multipart ETag
        return f"{digest.hexdigest()}-{len(parts)}"

    def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        shutil.rmtree(self._staging_dir(upload_id), ignore_errors=True)

    def open_object(self, key: str) -> BinaryIO:
        return open(self._get_full_path(key), "rb")

    def delete_object(self, key: str) -> None:
        self._get_full_path(key).unlink(missing_ok=True)

    def object_size(self, key: str) -> int:
        return self._get_full_path(key).stat().st_size

    def public_url(self, key: str) -> Optional[str]:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return None

    def location_ref(self, key: str) -> str:
        return self.public_url(key) or str(self._get_full_path(key))

    def pending_uploads(self) -> List[str]:
        """Upload ids that were neither completed nor aborted."""
        staging_root = self.base_path / ".multipart"
        if not staging_root.exists():
            return []
        return sorted(p.name for p in staging_root.iterdir() if p.is_dir())
