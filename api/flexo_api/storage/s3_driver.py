"""S3-compatible archive storage driver (AWS S3, Cloudflare R2, MinIO, etc)."""

from fnmatch import fnmatch
from typing import Any, Dict, List

import aioboto3
from botocore.exceptions import ClientError

from flexo_api.storage.base import (
    BaseStorageDriver,
    FileInfo,
    StorageConnectionError,
    StorageError,
)


class S3StorageDriver(BaseStorageDriver):
    """S3-compatible storage driver.

    Configuration:
        aws_access_key_id: Access key
        aws_secret_access_key: Secret key
        bucket_name: Bucket name
        region: AWS region (default: us-east-1)
        endpoint_url: Custom endpoint URL (for R2, MinIO, etc)
        base_path: Key prefix for the archives (optional)

    Example:
        >>> driver = S3StorageDriver({
        ...     "aws_access_key_id": "AKIA...",
        ...     "aws_secret_access_key": "...",
        ...     "bucket_name": "flexo-backups",
        ...     "base_path": "machines",
        ... })
        >>> files = await driver.list_files("*.zip")
    """

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.bucket_name = config["bucket_name"]
        self.base_path = config.get("base_path", "").strip("/")

        self.s3_config = {
            "aws_access_key_id": config["aws_access_key_id"],
            "aws_secret_access_key": config["aws_secret_access_key"],
            "region_name": config.get("region", "us-east-1"),
        }

        # Support custom endpoint (Cloudflare R2, MinIO, etc)
        if config.get("endpoint_url"):
            self.s3_config["endpoint_url"] = config["endpoint_url"]

        self.session = aioboto3.Session()

    def _get_full_key(self, file_path: str) -> str:
        if self.base_path:
            return f"{self.base_path}/{file_path}".strip("/")
        return file_path.strip("/")

    async def list_files(self, pattern: str = "*") -> List[FileInfo]:
        """List archives under the key prefix.

        Args:
            pattern: Glob pattern to filter file names

        Returns:
            List of FileInfo dicts
        """
        prefix = f"{self.base_path}/" if self.base_path else ""
        files = []

        try:
            async with self.session.client("s3", **self.s3_config) as s3:
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                    for obj in page.get("Contents", []):
                        key = obj["Key"]
                        relative = key[len(prefix):]

                        # Flat namespace: skip "directories" and nested keys
                        if not relative or "/" in relative:
                            continue
                        if not fnmatch(relative, pattern):
                            continue

                        files.append(
                            FileInfo(
                                {
                                    "name": relative,
                                    "path": relative,
                                    "size_bytes": obj["Size"],
                                    "modified_at": obj["LastModified"].replace(tzinfo=None),
                                }
                            )
                        )

        except ClientError as e:
            raise StorageError(f"Failed to list files: {e}")

        return files

    async def download_file(self, file_path: str) -> bytes:
        key = self._get_full_key(file_path)

        try:
            async with self.session.client("s3", **self.s3_config) as s3:
                response = await s3.get_object(Bucket=self.bucket_name, Key=key)
                async with response["Body"] as stream:
                    return await stream.read()

        except ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                raise FileNotFoundError(f"File not found: {file_path}")
            raise StorageError(f"Failed to download file: {e}")

    async def upload_file(self, file_path: str, content: bytes) -> str:
        key = self._get_full_key(file_path)

        try:
            async with self.session.client("s3", **self.s3_config) as s3:
                await s3.put_object(Bucket=self.bucket_name, Key=key, Body=content)

            return f"s3://{self.bucket_name}/{key}"

        except ClientError as e:
            raise StorageError(f"Failed to upload file: {e}")

    async def delete_file(self, file_path: str) -> bool:
        """Delete an archive object.

        S3 deletes are idempotent, so the object is looked up first to
        report whether it existed.
        """
        key = self._get_full_key(file_path)

        try:
            async with self.session.client("s3", **self.s3_config) as s3:
                try:
                    await s3.head_object(Bucket=self.bucket_name, Key=key)
                except ClientError as e:
                    if e.response["Error"]["Code"] in ("404", "NoSuchKey", "NotFound"):
                        return False
                    raise
                await s3.delete_object(Bucket=self.bucket_name, Key=key)

        except ClientError as e:
            raise StorageError(f"Failed to delete file: {e}")

        return True

    async def test_connection(self) -> bool:
        """Test S3 connection by checking if bucket exists."""
        try:
            async with self.session.client("s3", **self.s3_config) as s3:
                await s3.head_bucket(Bucket=self.bucket_name)
            return True

        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            if error_code in ("404", "NoSuchBucket"):
                raise StorageConnectionError(f"Bucket not found: {self.bucket_name}")
            elif error_code == "403":
                raise StorageConnectionError(f"Access denied to bucket: {self.bucket_name}")
            return False
