"""Blob storage collaborator.

Every backend exposes the same four calls keyed by opaque path strings:
``upload``, ``delete``, ``list`` and ``generate_signed_url``. Transport failures
and timeouts surface as :class:`StorageUnavailable`, which callers treat as a
retryable infrastructure error rather than an access decision.
"""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, List, Optional, Protocol
from urllib.parse import quote

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from datahall.config import settings
from datahall.errors import StorageUnavailable
from datahall.security import decode_token, encode_token

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "documents"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class FileMetadata:
    user_id: int
    file_name: str
    file_type: str


class StorageBackend(Protocol):
    def upload(self, data: bytes, metadata: FileMetadata, bucket: Optional[str] = None) -> str: ...

    def delete(self, file_path: str, bucket: Optional[str] = None) -> None: ...

    def list(self, prefix: str = "", bucket: Optional[str] = None) -> List[str]: ...

    def generate_signed_url(self, file_path: str, ttl_seconds: int, bucket: Optional[str] = None) -> str: ...


def build_object_key(metadata: FileMetadata) -> str:
    safe_name = _UNSAFE_CHARS.sub("_", metadata.file_name).strip("._") or "file"
    return f"{metadata.user_id}/{uuid.uuid4().hex}_{safe_name}"


class LocalStorage:
    """Stores files under a root directory and signs download tokens with the app secret."""

    def __init__(self, root: Path, public_base_url: str, secret: Optional[str] = None) -> None:
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self.secret = secret

    def _resolve(self, file_path: str, bucket: Optional[str]) -> Path:
        bucket_root = (self.root / (bucket or DEFAULT_BUCKET)).resolve()
        full_path = (bucket_root / file_path).resolve()
        if bucket_root not in full_path.parents:
            raise ValueError("Storage path escapes the bucket root")
        return full_path

    def upload(self, data: bytes, metadata: FileMetadata, bucket: Optional[str] = None) -> str:
        file_path = build_object_key(metadata)
        destination = self._resolve(file_path, bucket)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(data)
        except OSError as exc:
            logger.error("Local upload failed for user %s: %s", metadata.user_id, exc)
            raise StorageUnavailable("File upload failed") from exc
        return file_path

    def delete(self, file_path: str, bucket: Optional[str] = None) -> None:
        try:
            self._resolve(file_path, bucket).unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Local delete failed: %s", exc)
            raise StorageUnavailable("File deletion failed") from exc

    def list(self, prefix: str = "", bucket: Optional[str] = None) -> List[str]:
        bucket_root = (self.root / (bucket or DEFAULT_BUCKET)).resolve()
        if not bucket_root.exists():
            return []
        keys = [path.relative_to(bucket_root).as_posix() for path in bucket_root.rglob("*") if path.is_file()]
        return sorted(key for key in keys if key.startswith(prefix))

    def generate_signed_url(self, file_path: str, ttl_seconds: int, bucket: Optional[str] = None) -> str:
        token = encode_token(
            {"typ": "file", "path": file_path, "bucket": bucket or DEFAULT_BUCKET},
            timedelta(seconds=ttl_seconds),
            secret=self.secret,
        )
        return f"{self.public_base_url}/files/signed/{quote(token)}"

    def open_signed(self, token: str) -> Path:
        """Resolve a token minted by :meth:`generate_signed_url` to a file on disk."""
        payload = decode_token(token, secret=self.secret)
        if payload.get("typ") != "file":
            raise ValueError("Not a file token")
        path = self._resolve(str(payload["path"]), str(payload.get("bucket") or DEFAULT_BUCKET))
        if not path.is_file():
            raise FileNotFoundError(str(payload["path"]))
        return path


class S3Storage:
    """S3 or MinIO backend; every call is bounded by the configured timeout."""

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        if client is None:
            session = boto3.session.Session(
                aws_access_key_id=access_key_id or None,
                aws_secret_access_key=secret_access_key or None,
                region_name=region or None,
            )
            client = session.client(
                "s3",
                endpoint_url=endpoint_url or None,
                config=Config(
                    signature_version="s3v4",
                    connect_timeout=timeout_seconds,
                    read_timeout=timeout_seconds,
                    retries={"max_attempts": 2, "mode": "standard"},
                ),
            )
        self.client = client

    def _call(self, operation: str, **kwargs: Any) -> Any:
        try:
            return getattr(self.client, operation)(**kwargs)
        except (BotoCoreError, ClientError) as exc:
            logger.warning("S3 %s failed on bucket %s: %s", operation, kwargs.get("Bucket"), exc)
            raise StorageUnavailable(f"Storage {operation} failed") from exc

    def upload(self, data: bytes, metadata: FileMetadata, bucket: Optional[str] = None) -> str:
        key = build_object_key(metadata)
        self._call(
            "put_object",
            Bucket=bucket or self.bucket,
            Key=key,
            Body=data,
            ContentType=metadata.file_type,
        )
        return key

    def delete(self, file_path: str, bucket: Optional[str] = None) -> None:
        self._call("delete_object", Bucket=bucket or self.bucket, Key=file_path)

    def list(self, prefix: str = "", bucket: Optional[str] = None) -> List[str]:
        response = self._call("list_objects_v2", Bucket=bucket or self.bucket, Prefix=prefix)
        return [item["Key"] for item in response.get("Contents", [])]

    def generate_signed_url(self, file_path: str, ttl_seconds: int, bucket: Optional[str] = None) -> str:
        return self._call(
            "generate_presigned_url",
            ClientMethod="get_object",
            Params={"Bucket": bucket or self.bucket, "Key": file_path},
            ExpiresIn=ttl_seconds,
        )


def build_storage() -> StorageBackend:
    provider = settings.storage_provider.strip().lower()
    if provider == "s3":
        return S3Storage(
            settings.s3_bucket,
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            timeout_seconds=settings.storage_timeout_seconds,
        )
    if provider != "local":
        logger.warning("Unknown STORAGE_PROVIDER %r, falling back to local storage", provider)
    return LocalStorage(settings.upload_path, settings.public_base_url)


_storage: Optional[StorageBackend] = None


def get_storage() -> StorageBackend:
    """FastAPI dependency returning the process-wide storage backend."""
    global _storage
    if _storage is None:
        _storage = build_storage()
    return _storage
