"""
Artifact store adapter for uploading, downloading and signing objects.

This module wraps an S3-compatible object store (AWS S3, Supabase Storage's
S3 endpoint, MinIO) behind three operations:
- Uploading bytes to a bucket path, overwriting any existing object
- Downloading an object's bytes
- Generating presigned URLs for secure, time-limited downloads

Unlike a best-effort uploader, every failure here is raised as a
StorageError: a proof must never reference an object that was not stored.
"""

from __future__ import annotations

import logging
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .configuration import ProofSettings
from .exceptions import StorageError

logger = logging.getLogger(__name__)


def _client_error_details(exc: ClientError) -> tuple[Optional[int], str]:
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    error = exc.response.get("Error", {})
    return status, f"{error.get('Code', '')} {error.get('Message', '')}".strip()


class ArtifactStore:
    """
    Bucketed object storage.

    Attributes:
        client: boto3 S3 client (injected in tests, built from settings otherwise)
    """

    def __init__(self, client=None, settings: Optional[ProofSettings] = None) -> None:
        if client is None:
            settings = settings or ProofSettings()
            client = boto3.client(
                "s3",
                endpoint_url=settings.s3_endpoint_url,
                region_name=settings.s3_region_name,
                config=Config(signature_version="s3v4"),
            )
        self.client = client

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/pdf",
    ) -> None:
        """
        Upload bytes to ``bucket/path``.

        Writing to an existing path replaces the object, so re-running an
        upload is idempotent.

        Raises:
            StorageError: If the store rejects the upload
        """
        logger.info(f"Uploading {len(data)} bytes to s3://{bucket}/{path}")
        try:
            self.client.put_object(Bucket=bucket, Key=path, Body=data, ContentType=content_type)
        except ClientError as e:
            status, body = _client_error_details(e)
            raise StorageError(f"Upload to {bucket}/{path} failed", status, body) from e
        except BotoCoreError as e:
            raise StorageError(f"Upload to {bucket}/{path} failed", None, str(e)) from e

    def download(self, bucket: str, path: str) -> bytes:
        """
        Download the bytes stored at ``bucket/path``.

        Raises:
            StorageError: If the object is missing or the store fails
        """
        try:
            response = self.client.get_object(Bucket=bucket, Key=path)
            return response["Body"].read()
        except ClientError as e:
            status, body = _client_error_details(e)
            raise StorageError(f"Download of {bucket}/{path} failed", status, body) from e
        except BotoCoreError as e:
            raise StorageError(f"Download of {bucket}/{path} failed", None, str(e)) from e

    def create_signed_url(self, bucket: str, path: str, expires_in: int = 3600) -> str:
        """
        Generate a presigned URL for downloading an object.

        Args:
            bucket: Bucket name
            path: Object key within the bucket
            expires_in: URL lifetime in seconds (default: 3600 = 1 hour)

        Returns:
            Presigned URL string

        Note:
            Anyone holding the URL can download the object until it expires.
        """
        try:
            url = self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": path},
                ExpiresIn=expires_in,
            )
        except ClientError as e:
            status, body = _client_error_details(e)
            raise StorageError(f"Signing {bucket}/{path} failed", status, body) from e
        except BotoCoreError as e:
            raise StorageError(f"Signing {bucket}/{path} failed", None, str(e)) from e
        logger.debug(f"Generated presigned URL for {bucket}/{path} (expires in {expires_in}s)")
        return url
