from __future__ import annotations

import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings


class StorageError(Exception):
    """Raised when a storage backend cannot complete a transfer."""


class Storage(ABC):
    """Durable, path-addressable object store for packaged artifacts.

    Implementations are blocking; async callers dispatch them with ``asyncio.to_thread``.
    """

    @abstractmethod
    def put(self, local_path: Path, key: str, *, content_type: str | None = None) -> str:
        """Store ``local_path`` under ``key`` and return its public URL."""

    @abstractmethod
    def delete(self, url: str) -> None:
        """Remove the object behind ``url``. Missing objects are ignored."""

    @abstractmethod
    def exists(self, url: str) -> bool: ...


class LocalStorage(Storage):
    """Filesystem-backed storage abstraction suitable for development."""

    def __init__(self, base_path: Path, public_base_url: str | None = None):
        self.base_path = base_path.resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def _target(self, key: str) -> Path:
        target = (self.base_path / key).resolve()
        if not target.is_relative_to(self.base_path):
            raise ValueError(f"Storage key escapes base path: {key}")
        return target

    def _resolve(self, url: str) -> Path:
        if self.public_base_url and url.startswith(self.public_base_url + "/"):
            return self._target(url[len(self.public_base_url) + 1 :])
        parsed = urlparse(url)
        if parsed.scheme == "file":
            target = Path(os.path.abspath(os.path.join(parsed.netloc, parsed.path))).resolve()
            if not target.is_relative_to(self.base_path):
                raise ValueError(f"Storage URL escapes base path: {url}")
            return target
        if parsed.scheme == "":
            return self._target(url)
        raise ValueError(f"Unsupported URI scheme for local storage: {url}")

    def url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return self._target(key).as_uri()

    def put(self, local_path: Path, key: str, *, content_type: str | None = None) -> str:
        target = self._target(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copyfile(local_path, target)
        except OSError as exc:
            raise StorageError(f"local_put_failed:{key}") from exc
        return self.url_for(key)

    def delete(self, url: str) -> None:
        self._resolve(url).unlink(missing_ok=True)

    def exists(self, url: str) -> bool:
        return self._resolve(url).exists()


class S3Storage(Storage):
    """S3 (or S3-compatible, e.g. MinIO) storage backed by boto3."""

    def __init__(
        self,
        client: Any,
        bucket: str,
        *,
        public_base_url: str | None = None,
        endpoint_url: str | None = None,
        region: str | None = None,
    ) -> None:
        self.client = client
        self.bucket = bucket
        if public_base_url:
            self.public_base_url = public_base_url.rstrip("/")
        elif endpoint_url:
            self.public_base_url = f"{endpoint_url.rstrip('/')}/{bucket}"
        elif region:
            self.public_base_url = f"https://{bucket}.s3.{region}.amazonaws.com"
        else:
            self.public_base_url = f"https://{bucket}.s3.amazonaws.com"

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    def _key_from_url(self, url: str) -> str:
        prefix = self.public_base_url + "/"
        if url.startswith(prefix):
            return url[len(prefix) :]
        parsed = urlparse(url)
        if parsed.scheme == "s3" and parsed.netloc == self.bucket:
            return parsed.path.lstrip("/")
        raise ValueError(f"URL does not belong to bucket {self.bucket}: {url}")

    def put(self, local_path: Path, key: str, *, content_type: str | None = None) -> str:
        extra_args = {"ContentType": content_type} if content_type else None
        try:
            self.client.upload_file(str(local_path), self.bucket, key, ExtraArgs=extra_args)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"s3_put_failed:{key}") from exc
        return self.url_for(key)

    def delete(self, url: str) -> None:
        key = self._key_from_url(url)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"s3_delete_failed:{key}") from exc

    def exists(self, url: str) -> bool:
        key = self._key_from_url(url)
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in {"404", "NoSuchKey", "NotFound"}:
                return False
            raise StorageError(f"s3_head_failed:{key}") from exc
        return True


def _s3_client(settings: Settings) -> Any:
    return boto3.client(
        "s3",
        region_name=settings.s3_region,
        endpoint_url=settings.s3_endpoint_url,
        aws_access_key_id=settings.secrets.s3_access_key_id,
        aws_secret_access_key=settings.secrets.s3_secret_access_key,
    )


def get_storage(settings: Settings, *, client: Optional[Any] = None) -> Storage:
    if settings.storage_backend == "local":
        return LocalStorage(Path(settings.local_storage_base_path), public_base_url=settings.public_base_url)
    if settings.storage_backend == "s3":
        if not settings.s3_bucket:
            raise ValueError("s3 storage backend requires a bucket")
        return S3Storage(
            client or _s3_client(settings),
            settings.s3_bucket,
            public_base_url=settings.public_base_url,
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
        )
    raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")


__all__ = [
    "Storage",
    "StorageError",
    "LocalStorage",
    "S3Storage",
    "get_storage",
]
