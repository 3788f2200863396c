"""
Logo storage abstraction for institution logos.

Supports two backends, selected by LOGO_STORAGE_BACKEND:
  - "local" (default): stores files under LOGO_STORAGE_DIR, for dev and single-instance deployments
  - "s3": stores files in AWS S3, using the IAM instance role for credentials

Logos are written once under ``institutions/<id>.<ext>`` and served from
LOGO_BASE_URL, so callers only need ``exists``, ``save`` and ``public_url``.

Dev (default)::

    LOGO_STORAGE_BACKEND=local
    LOGO_STORAGE_DIR=/tmp/bankbridge-logos

Prod (S3 with IAM role)::

    LOGO_STORAGE_BACKEND=s3
    AWS_S3_BUCKET=my-institution-logos
    AWS_REGION=us-east-1
    LOGO_BASE_URL=https://cdn.example.com/institution-logos
"""

import asyncio
import os
from typing import Any, Optional, Protocol, runtime_checkable

from bankbridge.config import Settings, get_settings


class LogoStorageError(Exception):
    """Raised when a storage backend cannot read or write a logo."""

    pass


@runtime_checkable
class LogoStorage(Protocol):
    """Protocol for logo storage backends."""

    async def exists(self, key: str) -> bool:
        ...

    async def save(self, key: str, data: bytes, content_type: str = "image/png") -> str:
        """
        Store ``data`` under ``key``.

        Returns:
            The public URL of the stored object
        """
        ...

    def public_url(self, key: str) -> str:
        ...


def logo_key(institution_id: str, extension: str = "png") -> str:
    return f"institutions/{institution_id}.{extension}"


class LocalLogoStorage:
    """Stores logos on the local filesystem under ``LOGO_STORAGE_DIR``."""

    def __init__(self, base_dir: str, base_url: str):
        self._base_dir = base_dir
        self._base_url = base_url.rstrip("/")
        os.makedirs(base_dir, exist_ok=True)

    def _full_path(self, key: str) -> str:
        # Prevent path traversal
        safe_key = os.path.normpath(key).lstrip("/")
        if safe_key == ".." or safe_key.startswith("../"):
            raise ValueError(f"Invalid logo key: {key}")
        return os.path.join(self._base_dir, safe_key)

    async def exists(self, key: str) -> bool:
        return os.path.exists(self._full_path(key))

    async def save(self, key: str, data: bytes, content_type: str = "image/png") -> str:
        path = self._full_path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        return self.public_url(key)

    def public_url(self, key: str) -> str:
        return f"{self._base_url}/{key}"


class S3LogoStorage:
    """
    Stores logos in AWS S3.

    Uses the IAM instance role; boto3 calls run in a worker thread.
    """

    def __init__(self, bucket: str, region: str, base_url: str, client: Any = None):
        if client is None:
            import boto3  # lazy import, only needed with the s3 backend

            client = boto3.client("s3", region_name=region)
        self._s3 = client
        self._bucket = bucket
        self._base_url = base_url.rstrip("/")

    async def exists(self, key: str) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            await asyncio.to_thread(self._s3.head_object, Bucket=self._bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise LogoStorageError(f"Cannot check logo {key} in {self._bucket}: {e}") from e
        except BotoCoreError as e:
            raise LogoStorageError(f"Cannot check logo {key} in {self._bucket}: {e}") from e
        return True

    async def save(self, key: str, data: bytes, content_type: str = "image/png") -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            await asyncio.to_thread(
                self._s3.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise LogoStorageError(f"Cannot upload logo {key} to {self._bucket}: {e}") from e
        return self.public_url(key)

    def public_url(self, key: str) -> str:
        return f"{self._base_url}/{key}"


def get_logo_storage(settings: Optional[Settings] = None) -> LogoStorage:
    """Return the configured logo storage backend."""
    settings = settings or get_settings()
    if settings.LOGO_STORAGE_BACKEND == "s3":
        if not settings.AWS_S3_BUCKET:
            raise RuntimeError("LOGO_STORAGE_BACKEND=s3 requires AWS_S3_BUCKET to be set in environment")
        return S3LogoStorage(settings.AWS_S3_BUCKET, settings.AWS_REGION, settings.LOGO_BASE_URL)
    return LocalLogoStorage(settings.LOGO_STORAGE_DIR, settings.LOGO_BASE_URL)
