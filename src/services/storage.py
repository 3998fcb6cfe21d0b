"""Object storage collaborator: time-boxed upload/download authorizations.

The coordination layer never touches file bytes. It only hands out
presigned URLs against keys it has already recorded.
"""
from __future__ import annotations

import time
from typing import Any, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from core.config import Settings, get_settings
from core.exceptions import StorageUnavailableError
from core.logging_config import get_logger, log_external_call

LOGGER = get_logger(__name__)


class ObjectStorage(Protocol):
    def issue_upload_authorization(self, key: str) -> str:
        ...

    def issue_download_authorization(self, key: str) -> str:
        ...


def _get_s3_client(settings: Settings) -> Any:
    """Return a configured S3 client (supports S3-compatible endpoints)."""
    endpoint = settings.s3_endpoint_url.rstrip("/") if settings.s3_endpoint_url else None
    return boto3.client(
        "s3",
        region_name=settings.s3_region,
        aws_access_key_id=settings.aws_access_key_id or None,
        aws_secret_access_key=settings.aws_secret_access_key or None,
        endpoint_url=endpoint,
    )


class S3ObjectStorage:
    """Presigned PUT/GET URLs for a single bucket."""

    def __init__(
        self,
        bucket: str,
        expires_in: int = 300,
        content_type: str = "application/pdf",
        client: Any = None,
    ):
        self.bucket = bucket
        self.expires_in = expires_in
        self.content_type = content_type
        self.client = client

    def _presign(self, operation: str, params: dict) -> str:
        start = time.perf_counter()
        try:
            url = self.client.generate_presigned_url(
                operation,
                Params={"Bucket": self.bucket, **params},
                ExpiresIn=self.expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            log_external_call(
                LOGGER, "s3", operation, False,
                (time.perf_counter() - start) * 1000, error=str(e),
            )
            raise StorageUnavailableError(f"Object storage unavailable: {e}") from e

        log_external_call(LOGGER, "s3", operation, True, (time.perf_counter() - start) * 1000)
        return url

    def issue_upload_authorization(self, key: str) -> str:
        return self._presign("put_object", {"Key": key, "ContentType": self.content_type})

    def issue_download_authorization(self, key: str) -> str:
        return self._presign("get_object", {"Key": key})


class UnconfiguredStorage:
    """Stand-in used when no bucket is configured; every call fails."""

    def issue_upload_authorization(self, key: str) -> str:
        raise StorageUnavailableError("File upload not configured")

    def issue_download_authorization(self, key: str) -> str:
        raise StorageUnavailableError("File access not configured")


def get_object_storage(settings: Optional[Settings] = None) -> ObjectStorage:
    """Build the configured object storage adapter."""
    settings = settings or get_settings()
    if not settings.is_storage_enabled():
        return UnconfiguredStorage()
    return S3ObjectStorage(
        bucket=settings.s3_bucket,
        expires_in=settings.storage_url_expiry_seconds,
        content_type=settings.contract_content_type,
        client=_get_s3_client(settings),
    )


__all__ = [
    "ObjectStorage",
    "S3ObjectStorage",
    "UnconfiguredStorage",
    "get_object_storage",
]
