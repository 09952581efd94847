# assetflow/storage/s3.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from assetflow.db import utcnow
from assetflow.errors import BlobStoreError
from assetflow.infra.retry import retry_on
from assetflow.storage.base import BlobStore, ObjectStat, ReadCredential, WriteCredential

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_RETRY_CODES = {
    "SlowDown", "Throttling", "RequestTimeout",
    "InternalError", "ServiceUnavailable", "InternalServerError",
}


def make_s3_client(region: str, endpoint_url: Optional[str] = None):
    cfg = Config(
        region_name=region,
        signature_version="s3v4",
        retries={"max_attempts": 5, "mode": "standard"},
        connect_timeout=3,
        read_timeout=10,
    )
    return boto3.client("s3", endpoint_url=endpoint_url, config=cfg)


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _is_retryable_s3(exc: Exception) -> bool:
    # Netwerk/endpoint timeouts
    if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        return True
    if isinstance(exc, ClientError):
        code = _error_code(exc)
        http = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in _RETRY_CODES:
            return True
        if isinstance(http, int) and 500 <= http < 600:
            return True
    return False


def _log_retry(attempt: int, exc: Exception, sleep_s: float) -> None:
    code = _error_code(exc) if isinstance(exc, ClientError) else None
    logger.warning("S3 retry #%d in %.2fs (code=%s, exc=%s)", attempt, sleep_s, code, type(exc).__name__)


class S3BlobStore(BlobStore):
    """S3 implementation: presigned POST for uploads, presigned GET for reads."""

    def __init__(
        self,
        bucket: str,
        client=None,
        *,
        region: str = "eu-west-1",
        endpoint_url: Optional[str] = None,
        retry_attempts: int = 3,
        clock: Callable = utcnow,
    ):
        if not bucket:
            raise RuntimeError("S3 bucket ontbreekt in settings (.env)")
        self.bucket = bucket
        self.s3 = client or make_s3_client(region, endpoint_url)
        self.retry_attempts = retry_attempts
        self.clock = clock

    def _call(self, fn):
        try:
            return retry_on(
                fn,
                attempts=self.retry_attempts,
                base=0.2, factor=2.0, cap=2.0,
                is_retryable=_is_retryable_s3,
                on_retry=_log_retry,
            )
        except ClientError:
            raise
        except BotoCoreError as e:
            raise BlobStoreError(f"s3_unavailable: {e}") from e

    def issue_write_credential(self, key, max_bytes, content_type, ttl_seconds):
        fields = {
            "Content-Type": content_type,
            "x-amz-server-side-encryption": "AES256",
        }
        conditions = [
            {"Content-Type": content_type},
            {"x-amz-server-side-encryption": "AES256"},
            ["content-length-range", 1, max_bytes],
        ]
        try:
            post = self.s3.generate_presigned_post(
                Bucket=self.bucket,
                Key=key,
                Fields=fields,
                Conditions=conditions,
                ExpiresIn=ttl_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise BlobStoreError(f"presign_failed: {e}") from e

        return WriteCredential(
            url=post["url"],
            fields=post["fields"],
            key=key,
            max_bytes=max_bytes,
            expires_at=self.clock() + timedelta(seconds=ttl_seconds),
        )

    def issue_read_credential(self, key, ttl_seconds, filename=None):
        params = {"Bucket": self.bucket, "Key": key}
        if filename:
            params["ResponseContentDisposition"] = f'attachment; filename="{filename}"'
        try:
            url = self.s3.generate_presigned_url("get_object", Params=params, ExpiresIn=ttl_seconds)
        except (BotoCoreError, ClientError) as e:
            raise BlobStoreError(f"presign_failed: {e}") from e
        return ReadCredential(url=url, expires_at=self.clock() + timedelta(seconds=ttl_seconds))

    def stat(self, key):
        try:
            head = self._call(lambda: self.s3.head_object(Bucket=self.bucket, Key=key))
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return ObjectStat(exists=False)
            raise BlobStoreError(f"head_object failed: {_error_code(e)}") from e

        return ObjectStat(
            exists=True,
            size=int(head["ContentLength"]),
            content_type=head.get("ContentType"),
            etag=(head.get("ETag") or "").strip('"') or None,  # S3 returns quotes
            metadata=head.get("Metadata", {}) or {},
        )

    def read(self, key):
        try:
            obj = self._call(lambda: self.s3.get_object(Bucket=self.bucket, Key=key))
            return obj["Body"].read()
        except ClientError as e:
            raise BlobStoreError(f"get_object failed for {key}: {_error_code(e)}") from e

    def put(self, key, data, content_type):
        try:
            self._call(
                lambda: self.s3.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                    ServerSideEncryption="AES256",
                )
            )
        except ClientError as e:
            raise BlobStoreError(f"put_object failed for {key}: {_error_code(e)}") from e

    def delete(self, key):
        if not self.stat(key).exists:
            return False
        try:
            self._call(lambda: self.s3.delete_object(Bucket=self.bucket, Key=key))
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return False
            raise BlobStoreError(f"delete_object failed for {key}: {_error_code(e)}") from e
        logger.info("S3 object deleted key=%s", key)
        return True
