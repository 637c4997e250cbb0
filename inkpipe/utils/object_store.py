#!/usr/bin/env python3
"""S3-compatible object store client.

Wraps the boto3 S3 client used for every asset. Clients never stream bytes
through the API server: they receive a presigned PUT URL and write straight
to the bucket. The worker reads assets back by key.

Works against AWS S3, Cloudflare R2 and MinIO; set ``S3_ENDPOINT_URL`` for
the latter two.
"""

import logging
from functools import lru_cache
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from inkpipe.config import settings
from inkpipe.errors import ExtractionFailure, TransientIOError

logger = logging.getLogger(__name__)

# Longest lifetime S3 accepts for a presigned GET
MAX_PRESIGNED_GET_EXPIRY = 7 * 24 * 3600

_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


class ObjectStoreClient:
    """Thin wrapper around ``boto3.client("s3")`` bound to one bucket."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        region: Optional[str] = None,
        public_base_url: Optional[str] = None,
        upload_url_expiry: int = 3600,
    ) -> None:
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.upload_url_expiry = upload_url_expiry
        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region,
        )

    def create_upload_url(self, key: str, content_type: str) -> str:
        """Mint a time-limited URL authorising one PUT of *key*."""
        try:
            return self._client.generate_presigned_url(
                "put_object",
                Params={
                    "Bucket": self.bucket,
                    "Key": key,
                    "ContentType": content_type or "application/octet-stream",
                },
                ExpiresIn=self.upload_url_expiry,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to presign upload for {key}: {e}")
            raise TransientIOError(f"Could not create upload URL: {e}") from e

    def public_url(self, key: str) -> str:
        """URL the asset can be fetched from without credentials."""
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        # Private bucket: hand out a long-lived signed GET instead
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=MAX_PRESIGNED_GET_EXPIRY,
        )

    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to write {key} to bucket {self.bucket}: {e}")
            raise TransientIOError(f"Failed to store {key}: {e}") from e

    def get_bytes(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            self._raise_for_read(key, e)
        except BotoCoreError as e:
            raise TransientIOError(f"Failed to download {key}: {e}") from e

    def download_to(self, key: str, path: str) -> str:
        try:
            self._client.download_file(self.bucket, key, path)
        except ClientError as e:
            self._raise_for_read(key, e)
        except BotoCoreError as e:
            raise TransientIOError(f"Failed to download {key}: {e}") from e
        return path

    def _raise_for_read(self, key: str, error: ClientError):
        code = str(error.response.get("Error", {}).get("Code", ""))
        if code in _MISSING_KEY_CODES:
            # Retrying cannot make a missing object appear
            raise ExtractionFailure(f"Stored object not found: {key}") from error
        logger.warning(f"Object store read failed for {key}: {error}")
        raise TransientIOError(f"Failed to download {key}: {error}") from error


@lru_cache(maxsize=1)
def get_object_store() -> ObjectStoreClient:
    """Return the process-wide client built from settings."""
    if not settings.s3_bucket_name:
        raise RuntimeError("S3_BUCKET_NAME is not configured")
    return ObjectStoreClient(
        bucket=settings.s3_bucket_name,
        endpoint_url=settings.s3_endpoint_url,
        access_key_id=settings.aws_access_key_id,
        secret_access_key=settings.aws_secret_access_key,
        region=settings.aws_region,
        public_base_url=settings.public_base_url,
        upload_url_expiry=settings.presigned_url_expiry,
    )
