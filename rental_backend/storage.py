"""
Storage abstraction for S3-compatible object stores and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from rental_backend.results import StorageError

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
# Failed IfNoneMatch write, or a concurrent conditional write to the same key.
_EXISTS_CODES = {"412", "PreconditionFailed", "ConditionalRequestConflict"}


class StorageClient(Protocol):
    """Defines the operations the services need from object storage."""

    def upload(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        metadata: Optional[dict] = None,
        upsert: bool = False,
    ) -> str:
        ...

    def create_signed_url(self, path: str, expires_in: int = 3600) -> str:
        ...

    def remove(self, path: str) -> None:
        ...

    def list_objects(self, prefix: str, limit: int = 100) -> list[str]:
        ...


@dataclass
class StoredObject:
    data: bytes
    content_type: str
    metadata: dict


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def upload(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        metadata: Optional[dict] = None,
        upsert: bool = False,
    ) -> str:
        if not upsert and path in self.stored_objects:
            raise StorageError("The resource already exists", status_code=409)
        self.stored_objects[path] = StoredObject(
            data=bytes(data), content_type=content_type, metadata=dict(metadata or {})
        )
        return path

    def create_signed_url(self, path: str, expires_in: int = 3600) -> str:
        if path not in self.stored_objects:
            raise StorageError("Object not found", status_code=404)
        return f"{self.base_url}/{path}?op=get&expires={expires_in}"

    def remove(self, path: str) -> None:
        self.stored_objects.pop(path, None)

    def list_objects(self, prefix: str, limit: int = 100) -> list[str]:
        return sorted(p for p in self.stored_objects if p.startswith(prefix))[:limit]


def _storage_error(exc: Exception) -> StorageError:
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in _MISSING_CODES:
            status = 404
        elif code in _EXISTS_CODES:
            return StorageError("The resource already exists", status_code=409)
        return StorageError(error.get("Message") or code or str(exc), status_code=status)
    return StorageError(str(exc))


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client (AWS S3, Tencent COS, MinIO...).
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def _exists(self, path: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=path)
        except ClientError as exc:
            if _storage_error(exc).status_code == 404:
                return False
            raise _storage_error(exc) from exc
        except BotoCoreError as exc:
            raise _storage_error(exc) from exc
        return True

    def upload(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        metadata: Optional[dict] = None,
        upsert: bool = False,
    ) -> str:
        params = dict(
            Bucket=self.bucket,
            Key=path,
            Body=data,
            ContentType=content_type,
            Metadata={k: str(v) for k, v in (metadata or {}).items()},
            CacheControl="max-age=3600",
        )
        if not upsert:
            # Conditional write: the store rejects it if the key exists.
            params["IfNoneMatch"] = "*"
        try:
            self._client.put_object(**params)
        except (ClientError, BotoCoreError) as exc:
            raise _storage_error(exc) from exc
        return path

    def create_signed_url(self, path: str, expires_in: int = 3600) -> str:
        # Presigning never contacts the store, so check the key first.
        if not self._exists(path):
            raise StorageError("Object not found", status_code=404)
        try:
            return self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": path},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as exc:
            raise _storage_error(exc) from exc

    def remove(self, path: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=path)
        except (ClientError, BotoCoreError) as exc:
            raise _storage_error(exc) from exc

    def list_objects(self, prefix: str, limit: int = 100) -> list[str]:
        try:
            response = self._client.list_objects_v2(
                Bucket=self.bucket, Prefix=prefix, MaxKeys=limit
            )
        except (ClientError, BotoCoreError) as exc:
            raise _storage_error(exc) from exc
        return [item["Key"] for item in response.get("Contents", [])]
