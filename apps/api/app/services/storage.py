"""S3-compatible blob storage for call recordings."""
from __future__ import annotations

import asyncio
import io
import logging
from functools import lru_cache, partial
from typing import Any

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..core.config import settings
from ..core.errors import UpstreamServiceError

logger = logging.getLogger(__name__)

RECORDING_PREFIX = "recordings"


def recording_key(call_id: str, ext: str = "mp3") -> str:
    """Deterministic object key for a call's recording."""

    return f"{RECORDING_PREFIX}/{call_id}.{ext.lstrip('.') or 'mp3'}"


class BlobStore:
    """Thin async wrapper over a boto3 S3 client."""

    def __init__(
        self,
        *,
        bucket: str,
        region: str = "",
        access_key_id: str = "",
        secret_access_key: str = "",
        endpoint_url: str = "",
    ) -> None:
        self.bucket = bucket
        self._region = region
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._endpoint_url = endpoint_url
        self._client: Any = None

    @property
    def configured(self) -> bool:
        return bool(self.bucket and self._access_key_id and self._secret_access_key)

    def _get_client(self) -> Any:
        if not self.configured:
            raise UpstreamServiceError("blob_store", "S3 bucket or credentials are not configured")
        if self._client is None:
            s3_kwargs: dict[str, str] = {}
            if self._endpoint_url:
                s3_kwargs["endpoint_url"] = self._endpoint_url
            if self._region:
                s3_kwargs["region_name"] = self._region
            self._client = boto3.client(
                "s3",
                aws_access_key_id=self._access_key_id,
                aws_secret_access_key=self._secret_access_key,
                config=Config(signature_version="s3v4"),
                **s3_kwargs,
            )
        return self._client

    async def _run(self, operation: str, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(func, *args, **kwargs))
        except (BotoCoreError, ClientError) as exc:
            logger.warning("S3 %s failed: %s", operation, exc)
            raise UpstreamServiceError("blob_store", f"{operation} failed: {exc}") from exc

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Upload ``data`` under ``key``; re-uploading the same key overwrites it."""

        client = self._get_client()
        await self._run(
            "put",
            client.upload_fileobj,
            io.BytesIO(data),
            self.bucket,
            key,
            ExtraArgs={"ContentType": content_type},
        )
        logger.info("Stored %d bytes at s3://%s/%s", len(data), self.bucket, key)
        return key

    async def get(self, key: str) -> bytes:
        client = self._get_client()

        def _read() -> bytes:
            response = client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()

        return await self._run("get", _read)

    async def signed_get_url(self, key: str, ttl_seconds: int) -> str:
        """Return a time-limited GET URL for ``key``."""

        client = self._get_client()
        return await self._run(
            "sign",
            client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl_seconds,
        )


@lru_cache
def get_blob_store() -> BlobStore:
    """Return the process-wide blob store built from settings."""

    return BlobStore(
        bucket=settings.s3_bucket,
        region=settings.s3_region,
        access_key_id=settings.s3_access_key_id,
        secret_access_key=settings.s3_secret_access_key,
        endpoint_url=settings.s3_endpoint_url,
    )
