"""S3 service implementing the blob storage contract for project files and contracts"""

import asyncio
import logging
from functools import partial
from typing import Sequence
from urllib.parse import quote

import boto3
from botocore.exceptions import ClientError
from botocore.config import Config

from projectflow.config import settings

logger = logging.getLogger(__name__)


class S3ServiceError(Exception):
    """Base exception for S3 service errors"""
    pass


class S3ConnectionError(S3ServiceError):
    """S3 connection error"""
    pass


class ObjectExistsError(S3ServiceError):
    """Upload refused because the object exists and overwrite is off"""
    pass


class S3Service:
    """Blob storage over S3 (or MinIO locally): upload, public URLs and removal"""

    def __init__(self):
        """Initialize S3 client with retry configuration"""
        retry_config = Config(
            retries={
                "max_attempts": 3,
                "mode": "standard",
            },
            connect_timeout=5,
            read_timeout=10,
        )

        client_kwargs = {
            "region_name": settings.aws_region,
            "config": retry_config,
        }

        # Add credentials if provided (not needed for IAM roles)
        if settings.aws_access_key_id and settings.aws_secret_access_key:
            client_kwargs["aws_access_key_id"] = settings.aws_access_key_id
            client_kwargs["aws_secret_access_key"] = settings.aws_secret_access_key

        # Use custom endpoint for local development (MinIO)
        if settings.aws_endpoint_url:
            client_kwargs["endpoint_url"] = settings.aws_endpoint_url

        try:
            self.s3_client = boto3.client("s3", **client_kwargs)
            logger.info("S3 client initialized")
        except Exception as e:
            logger.error(f"Failed to initialize S3 client: {e}")
            raise S3ConnectionError(f"Failed to initialize S3 client: {e}")

    def check_object_exists(self, bucket: str, path: str) -> bool:
        """
        Check if an object exists in a bucket.

        Args:
            bucket: Bucket name
            path: Object key

        Returns:
            True if object exists, False otherwise
        """
        try:
            self.s3_client.head_object(Bucket=bucket, Key=path)
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] in ("404", "NoSuchKey"):
                return False
            logger.error(f"Error checking if object exists: {e}")
            raise S3ConnectionError(f"Failed to check object existence: {e}")

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        overwrite: bool = True,
    ) -> str:
        """
        Upload bytes to a bucket.

        Args:
            bucket: Bucket name
            path: Object key
            data: Bytes to upload
            content_type: Content type of the file
            overwrite: Replace an existing object at the same key

        Returns:
            The stored object key

        Raises:
            ObjectExistsError: If overwrite is off and the key is taken
            S3ConnectionError: If upload fails
        """
        loop = asyncio.get_event_loop()
        if not overwrite and await loop.run_in_executor(None, self.check_object_exists, bucket, path):
            raise ObjectExistsError(f"Object already exists: {bucket}/{path}")

        # boto3 blocks, keep it off the event loop
        try:
            await loop.run_in_executor(
                None,
                partial(
                    self.s3_client.put_object,
                    Bucket=bucket,
                    Key=path,
                    Body=data,
                    ContentType=content_type,
                ),
            )
            logger.info(f"Uploaded {len(data)} bytes to {bucket}/{path}")
            return path

        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(f"Error uploading bytes: {error_code} - {e}")
            raise S3ConnectionError(f"Failed to upload bytes: {error_code}")
        except Exception as e:
            logger.error(f"Unexpected error uploading bytes: {e}")
            raise S3ConnectionError(f"Failed to upload bytes: {str(e)}")

    def get_public_url(self, bucket: str, path: str) -> str:
        """
        Build the durable public URL of a stored object.

        Args:
            bucket: Bucket name
            path: Object key

        Returns:
            Public URL string
        """
        key = quote(path)
        if settings.storage_public_url:
            return f"{settings.storage_public_url.rstrip('/')}/{bucket}/{key}"
        if settings.aws_endpoint_url:
            # For local development with MinIO
            return f"{settings.aws_endpoint_url}/{bucket}/{key}"
        return f"https://{bucket}.s3.{settings.aws_region}.amazonaws.com/{key}"

    async def remove(self, bucket: str, paths: Sequence[str]) -> None:
        """
        Delete several objects from a bucket.

        Args:
            bucket: Bucket name
            paths: Object keys to delete

        Raises:
            S3ConnectionError: If any deletion fails
        """
        if not paths:
            return

        try:
            loop = asyncio.get_event_loop()
            response = await loop.run_in_executor(
                None,
                partial(
                    self.s3_client.delete_objects,
                    Bucket=bucket,
                    Delete={"Objects": [{"Key": path} for path in paths], "Quiet": True},
                ),
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(f"Error deleting objects: {error_code} - {e}")
            raise S3ConnectionError(f"Failed to delete objects: {error_code}")

        errors = response.get("Errors") or []
        if errors:
            failed = ", ".join(error.get("Key", "?") for error in errors)
            logger.error(f"Failed to delete {len(errors)} object(s) from {bucket}: {failed}")
            raise S3ConnectionError(f"Failed to delete objects: {failed}")

        logger.info(f"Deleted {len(paths)} object(s) from {bucket}")

