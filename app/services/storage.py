from functools import lru_cache
from pathlib import Path
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from app.core.config import Settings, get_settings
from app.core.errors import NotFound, StorageError


_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class Storage(Protocol):
    """Key-addressed blob store."""

    def put(self, key: str, data: bytes, content_type: str) -> str: ...

    def exists(self, key: str) -> bool: ...

    def delete(self, key: str) -> bool: ...

    def read(self, key: str) -> bytes: ...


class LocalStorage:
    """Blobs as files under a root directory; keys are relative paths."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return path

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            logger.error(f"Error writing blob {key}: {e}")
            raise StorageError() from e
        return key

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> bool:
        """Remove the blob. Returns False when it was already absent."""
        path = self._path(key)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Error deleting blob {key}: {e}")
            raise StorageError() from e

    def read(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError:
            raise NotFound("File not found.")
        except OSError as e:
            logger.error(f"Error reading blob {key}: {e}")
            raise StorageError() from e


class S3Storage:
    def __init__(self, settings: Settings):
        self.bucket = settings.AWS_S3_BUCKET_NAME

        # Regional virtual-hosted-style endpoint (bucket.s3.region.amazonaws.com)
        s3_config = Config(
            region_name=settings.AWS_S3_REGION,
            signature_version="s3v4",
            s3={"addressing_style": "virtual"},
        )
        client_kwargs = {
            "aws_access_key_id": settings.AWS_ACCESS_KEY_ID,
            "aws_secret_access_key": settings.AWS_SECRET_ACCESS_KEY,
            "region_name": settings.AWS_S3_REGION,
            "config": s3_config,
        }
        # Only for custom endpoints (MinIO, DigitalOcean Spaces, etc.)
        if settings.AWS_S3_ENDPOINT_URL:
            client_kwargs["endpoint_url"] = settings.AWS_S3_ENDPOINT_URL.strip()

        self.client = boto3.client("s3", **client_kwargs)

    @staticmethod
    def _error_code(e: ClientError) -> str:
        return e.response.get("Error", {}).get("Code", "Unknown")

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error uploading file object to S3: bucket={self.bucket} key={key} {e}")
            raise StorageError() from e
        return key

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if self._error_code(e) in _MISSING_CODES:
                return False
            logger.error(f"Error checking file in S3: key={key} {e}")
            raise StorageError() from e
        except BotoCoreError as e:
            raise StorageError() from e

    def delete(self, key: str) -> bool:
        # delete_object succeeds for absent keys, so check first to report absence
        if not self.exists(key):
            return False
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error deleting file from S3: key={key} {e}")
            raise StorageError() from e

    def read(self, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if self._error_code(e) in _MISSING_CODES:
                raise NotFound("File not found.")
            logger.error(f"Error downloading file from S3: key={key} {e}")
            raise StorageError() from e
        except BotoCoreError as e:
            raise StorageError() from e


@lru_cache
def get_storage() -> Storage:
    settings = get_settings()
    if settings.STORAGE_BACKEND == "s3":
        return S3Storage(settings)
    return LocalStorage(settings.STORAGE_LOCAL_ROOT)
