"""Object storage adapters.

``LocalBlobStore`` keeps blobs on disk below ``DATA_ROOT`` and hands out
HMAC-signed URLs that ``GET /api/storage/...`` verifies.  ``S3BlobStore``
talks to any S3-compatible service and hands out presigned GET URLs.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import time
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from audiobox.config import settings
from audiobox.errors import BlobExistsError, TransientBackendError
from audiobox.utils.storage import BUCKETS_DIR, ensure_dir_exists, safe_join

logger = logging.getLogger(__name__)


class LocalBlobStore:
    def __init__(
        self,
        bucket: str,
        root: Optional[Path] = None,
        signing_secret: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> None:
        self.bucket = bucket
        self.root = (root or BUCKETS_DIR) / bucket
        self._secret = (signing_secret or settings.SIGNING_SECRET).encode("utf-8")
        self.base_url = settings.PUBLIC_BASE_URL if base_url is None else base_url.rstrip("/")

    def resolve(self, path: str) -> Path:
        try:
            return safe_join(self.root, path)
        except ValueError as exc:
            raise TransientBackendError(str(exc)) from exc

    def _sign(self, path: str, expires: int) -> str:
        message = f"{self.bucket}/{path}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    async def issue_signed_url(self, path: str, ttl_seconds: int) -> str:
        self.resolve(path)
        expires = int(time.time()) + int(ttl_seconds)
        query = urlencode({"expires": expires, "signature": self._sign(path, expires)})
        return f"{self.base_url}/api/storage/{quote(path)}?{query}"

    def verify_signature(self, path: str, expires: int, signature: str, now: Optional[float] = None) -> bool:
        """True when ``signature`` matches ``path``/``expires`` and has not expired."""
        current = time.time() if now is None else now
        if expires < current:
            return False
        return hmac.compare_digest(self._sign(path, expires), signature)

    async def put(self, path: str, data: bytes, content_type: str, overwrite: bool = False) -> None:
        target = self.resolve(path)

        def _write() -> None:
            ensure_dir_exists(target.parent)
            # "x" mode fails atomically when the file already exists.
            with open(target, "wb" if overwrite else "xb") as f:
                f.write(data)

        try:
            await asyncio.to_thread(_write)
        except FileExistsError as exc:
            logger.warning("Refusing to overwrite existing blob %s/%s", self.bucket, path)
            raise BlobExistsError(path) from exc
        except OSError as exc:
            logger.error("Failed to write blob %s/%s: %s", self.bucket, path, exc)
            raise TransientBackendError(f"Storage write failed: {exc}") from exc
        logger.info("Stored blob %s/%s (%d bytes, %s)", self.bucket, path, len(data), content_type)

    async def remove(self, path: str) -> None:
        target = self.resolve(path)
        try:
            await asyncio.to_thread(target.unlink, missing_ok=True)
        except OSError as exc:
            logger.error("Failed to remove blob %s/%s: %s", self.bucket, path, exc)
            raise TransientBackendError(f"Storage delete failed: {exc}") from exc
        logger.info("Removed blob %s/%s", self.bucket, path)


class S3BlobStore:
    def __init__(self, bucket: str, endpoint: str, access_key: str, secret_key: str, region: str = "us-east-1"):
        self.bucket = bucket
        self.client = boto3.client('s3', endpoint_url=endpoint or None,
                                   region_name=region,
                                   aws_access_key_id=access_key or None,
                                   aws_secret_access_key=secret_key or None,
                                   config=Config(signature_version='s3v4'))

    async def issue_signed_url(self, path: str, ttl_seconds: int) -> str:
        try:
            return self.client.generate_presigned_url(
                ClientMethod='get_object',
                Params={'Bucket': self.bucket, 'Key': path},
                ExpiresIn=int(ttl_seconds),
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to sign s3://{self.bucket}/{path}: {e}")
            raise TransientBackendError(f"Could not create signed URL: {e}") from e

    async def put(self, path: str, data: bytes, content_type: str, overwrite: bool = False) -> None:
        params = {'Bucket': self.bucket, 'Key': path, 'Body': data, 'ContentType': content_type,
                  'CacheControl': 'max-age=3600'}
        if not overwrite:
            params['IfNoneMatch'] = '*'
        try:
            await asyncio.to_thread(self.client.put_object, **params)
            logger.info(f"Uploaded {len(data)} bytes -> s3://{self.bucket}/{path}")
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code')
            if code in ('PreconditionFailed', '412'):
                logger.warning(f"Refusing to overwrite s3://{self.bucket}/{path}")
                raise BlobExistsError(path) from e
            logger.error(f"Failed to upload to {path}: {e}")
            raise TransientBackendError(f"Storage write failed: {e}") from e
        except BotoCoreError as e:
            logger.error(f"Failed to upload to {path}: {e}")
            raise TransientBackendError(f"Storage write failed: {e}") from e

    async def remove(self, path: str) -> None:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=path)
            logger.info(f"Deleted s3://{self.bucket}/{path}")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to delete {path}: {e}")
            raise TransientBackendError(f"Storage delete failed: {e}") from e


_blob_store = None


def get_blob_store():
    """Process-wide blob store selected by ``STORAGE_BACKEND``."""
    global _blob_store
    if _blob_store is None:
        if settings.STORAGE_BACKEND == "s3":
            _blob_store = S3BlobStore(
                bucket=settings.AUDIO_BUCKET,
                endpoint=settings.S3_ENDPOINT,
                access_key=settings.S3_ACCESS_KEY,
                secret_key=settings.S3_SECRET_KEY,
                region=settings.S3_REGION,
            )
        else:
            _blob_store = LocalBlobStore(bucket=settings.AUDIO_BUCKET)
        logger.info("Using %s blob store for bucket '%s'", type(_blob_store).__name__, settings.AUDIO_BUCKET)
    return _blob_store
