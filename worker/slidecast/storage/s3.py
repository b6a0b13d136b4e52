"""
S3-compatible object store (AWS S3, Cloudflare R2, MinIO) via boto3.
"""

import logging
from typing import BinaryIO, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import PipelineSettings
from ..errors import ProtocolError, TransientInfrastructureError
from ..models import UploadedPart
from .base import ObjectStore

logger = logging.getLogger(__name__)

# HTTP statuses worth another attempt
RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


def _translate(error: Exception, action: str) -> Exception:
    """Map a botocore failure onto the pipeline taxonomy."""
    if isinstance(error, ClientError):
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = error.response.get("Error", {}).get("Message", str(error))
        if status in RETRYABLE_STATUS:
            return TransientInfrastructureError(f"{action} failed ({status}): {message}")
        return ProtocolError(f"{action} failed", status_code=status, body=message)
    return TransientInfrastructureError(f"{action} failed: {error}")


class _StreamingBody:
    """Seekable reader over an S3 object using ranged GETs."""

    def __init__(self, client, bucket: str, key: str, size: int):
        self._client = client
        self._bucket = bucket
        self._key = key
        self._size = size
        self._position = 0

    def seek(self, offset: int, whence: int = 0) -> int:
        if whence == 1:
            offset += self._position
        elif whence == 2:
            offset += self._size
        self._position = max(0, min(offset, self._size))
        return self._position

    def tell(self) -> int:
        return self._position

    def read(self, size: int = -1) -> bytes:
        if self._position >= self._size:
            return b""
        end = self._size if size is None or size < 0 else min(self._position + size, self._size)
        byte_range = f"bytes={self._position}-{end - 1}"
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=self._key, Range=byte_range)
            data = response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, f"GetObject {self._key} {byte_range}")
        self._position += len(data)
        return data

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class S3ObjectStore(ObjectStore):
    """Object store backed by an S3-compatible bucket."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        region: str = "auto",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        public_base_url: Optional[str] = None,
        timeout_sec: int = 120,
        client=None,
    ):
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(
                connect_timeout=timeout_sec,
                read_timeout=timeout_sec,
                retries={"max_attempts": 1},
            ),
        )

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> "S3ObjectStore":
        return cls(
            bucket=settings.storage_bucket,
            endpoint_url=settings.storage_endpoint_url,
            region=settings.storage_region,
            access_key_id=settings.storage_access_key_id,
            secret_access_key=settings.storage_secret_access_key,
            public_base_url=settings.storage_public_base_url,
            timeout_sec=settings.storage_timeout_sec,
        )

    def create_multipart_upload(self, key: str, content_type: str) -> str:
        try:
            response = self.client.create_multipart_upload(
                Bucket=self.bucket, Key=key, ContentType=content_type
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, f"CreateMultipartUpload {key}")
        return response["UploadId"]

    def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        try:
            response = self.client.upload_part(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=data,
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, f"UploadPart {part_number} of {key}")
        return response["ETag"].strip('"')

    def complete_multipart_upload(self, key: str, upload_id: str, parts: List[UploadedPart]) -> str:
        try:
            response = self.client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={
                    "Parts": [
                        {"PartNumber": part.part_number, "ETag": f'"{part.checksum}"'}
                        for part in parts
                    ]
                },
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, f"CompleteMultipartUpload {key}")
        return str(response.get("ETag", "")).strip('"')

    def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        try:
            self.client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, f"AbortMultipartUpload {key}")

    def delete_object(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, f"DeleteObject {key}")

    def object_size(self, key: str) -> int:
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, f"HeadObject {key}")
        return int(response["ContentLength"])

    def open_object(self, key: str) -> BinaryIO:
        return _StreamingBody(self.client, self.bucket, key, self.object_size(key))

    def public_url(self, key: str) -> Optional[str]:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return None

    def location_ref(self, key: str, expires_sec: int = 3600) -> str:
        """Public URL when configured, otherwise a presigned GET URL."""
        url = self.public_url(key)
        if url:
            return url
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_sec,
        )
