"""Storage backends for uploaded images."""

import logging
import os
import random
import time
from typing import Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")


def generate_upload_filename(original_name: str) -> str:
    """Unique filename keeping the original extension."""
    ext = os.path.splitext(original_name)[1].lower()
    return f"{int(time.time() * 1000)}-{random.randint(0, 10 ** 9)}{ext}"


class S3MediaStorage:
    """Stores uploaded images in an S3 bucket."""

    def __init__(
        self,
        bucket_name: str,
        region: str = "us-east-1",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        prefix: str = "uploads"
    ):
        """
        Initialize S3 storage.

        Args:
            bucket_name: S3 bucket name
            region: AWS region
            access_key_id: AWS access key ID (optional, uses default credentials if not provided)
            secret_access_key: AWS secret access key (optional)
            prefix: Key prefix for uploaded objects
        """
        self.bucket_name = bucket_name
        self.region = region
        self.prefix = prefix

        if access_key_id and secret_access_key:
            self.s3_client = boto3.client(
                's3',
                region_name=region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key
            )
        else:
            # Use default credentials (from environment or IAM role)
            self.s3_client = boto3.client('s3', region_name=region)

    def _key(self, filename: str) -> str:
        return f"{self.prefix}/{filename}"

    def save(self, data: bytes, filename: str, content_type: str = "image/jpeg") -> str:
        """
        Upload an image with public read access.

        Returns:
            Public URL of the stored image
        """
        key = self._key(filename)
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
                ACL='public-read'
            )
        except ClientError as e:
            logger.error(f"Failed to upload image to S3: {e}", exc_info=True)
            raise

        url = f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{key}"
        logger.info(f"Successfully uploaded image to S3: {url}")
        return url

    def delete(self, filename: str) -> bool:
        """
        Delete an image from S3.

        Returns:
            True if successful, False otherwise
        """
        key = self._key(filename)
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError:
            return False

        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
            logger.info(f"Successfully deleted image from S3: {key}")
            return True
        except ClientError as e:
            logger.error(f"Failed to delete image from S3: {e}", exc_info=True)
            return False


class LocalMediaStorage:
    """Stores uploaded images in a local directory served under /uploads."""

    def __init__(self, upload_dir: str, url_prefix: str = "/uploads"):
        self.upload_dir = upload_dir
        self.url_prefix = url_prefix
        os.makedirs(upload_dir, exist_ok=True)

    def _path(self, filename: str) -> str:
        # Reject anything that isn't a bare filename
        if os.path.basename(filename) != filename or filename in ("", ".", ".."):
            raise ValueError(f"Invalid filename: {filename}")
        return os.path.join(self.upload_dir, filename)

    def save(self, data: bytes, filename: str, content_type: str = "image/jpeg") -> str:
        with open(self._path(filename), "wb") as fh:
            fh.write(data)
        logger.info(f"Stored upload {filename} ({len(data)} bytes)")
        return f"{self.url_prefix}/{filename}"

    def delete(self, filename: str) -> bool:
        path = self._path(filename)
        if not os.path.exists(path):
            return False
        os.remove(path)
        logger.info(f"Deleted upload {filename}")
        return True


def create_media_storage(upload_config: dict):
    """S3 when a bucket is configured, local directory otherwise."""
    if upload_config.get("s3_bucket"):
        return S3MediaStorage(
            bucket_name=upload_config["s3_bucket"],
            region=upload_config.get("region", "us-east-1"),
            access_key_id=upload_config.get("access_key_id"),
            secret_access_key=upload_config.get("secret_access_key"),
        )
    return LocalMediaStorage(upload_config["upload_dir"])
