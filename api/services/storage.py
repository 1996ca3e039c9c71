from __future__ import annotations

import io
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..config import settings
from .aws import boto3_client
from .exceptions import StorageError


@dataclass
class StoredFile:
    key: str
    storage_url: str


class StorageService:
    def __init__(self, bucket: Optional[str] = None) -> None:
        self.bucket = bucket or settings.aws.s3_bucket
        self._client = boto3_client("s3")

    def _build_key(self, user_id: str | uuid.UUID, original_name: str) -> str:
        suffix = Path(original_name).suffix.lower() or ".bin"
        return f"contracts/{user_id}/{uuid.uuid4()}{suffix}"

    def upload_bytes(
        self,
        user_id: str | uuid.UUID,
        content: bytes,
        filename: str,
        content_type: str,
    ) -> StoredFile:
        key = self._build_key(user_id, filename)
        try:
            self._client.upload_fileobj(
                io.BytesIO(content), self.bucket, key, ExtraArgs={"ContentType": content_type}
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to upload to S3: {exc}") from exc
        return StoredFile(key=key, storage_url=f"s3://{self.bucket}/{key}")

    def read_bytes(self, key: str) -> bytes:
        try:
            obj = self._client.get_object(Bucket=self.bucket, Key=key)
            body = obj["Body"]
            try:
                return body.read()
            finally:
                body.close()
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to download S3 object: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to delete S3 object: {exc}") from exc


def get_storage_service() -> StorageService:
    return StorageService()
