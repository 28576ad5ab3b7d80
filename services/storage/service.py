"""S3-compatible object storage service using MinIO.

Holds uploaded invoice documents and generated export artifacts. Objects are
written under a random key (uuid4 + original extension) and addressed by a
public URL of the form ``<public base>/<bucket>/<key>``.

Operations return a StorageResult instead of raising; callers convert a
failed result into StorageError. Nothing here retries: a failed write is
reported and the user decides whether to try again.

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import logging
import mimetypes
import uuid
from pathlib import PurePosixPath
from typing import BinaryIO

from minio import Minio
from minio.error import S3Error
from pydantic import BaseModel

from services.shared.config import Settings

logger = logging.getLogger(__name__)


class StorageResult(BaseModel):
    """Result of storage operation.

    Attributes:
        success: Whether operation succeeded
        object_name: Full object path in storage
        bucket: Bucket name
        url: Public URL of the object after a successful upload
        error: Error message if operation failed
        etag: Object ETag (hash) if available
        size: Object size in bytes if available
    """

    success: bool
    object_name: str | None = None
    bucket: str | None = None
    url: str | None = None
    error: str | None = None
    etag: str | None = None
    size: int | None = None


class StorageService:
    """S3-compatible object storage service.

    Provides document storage with data sovereignty support
    through on-premises MinIO deployment.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize storage service.

        Args:
            settings: Application settings with storage configuration
        """
        self.settings = settings
        self._client: Minio | None = None
        self._bucket_exists_cache: set[str] = set()

    def _get_client(self) -> Minio:
        """Get or create MinIO client (lazy initialization).

        Returns:
            Configured Minio client instance

        Raises:
            ValueError: If storage credentials are not configured
        """
        if self._client is None:
            if not self.settings.storage_access_key:
                raise ValueError(
                    "Storage access key not configured. "
                    "Set APP_STORAGE_ACCESS_KEY environment variable."
                )
            if not self.settings.storage_secret_key:
                raise ValueError(
                    "Storage secret key not configured. "
                    "Set APP_STORAGE_SECRET_KEY environment variable."
                )

            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                secure=self.settings.storage_secure,
            )
            logger.info(f"MinIO client initialized for endpoint: {self.settings.storage_endpoint}")

        return self._client

    def is_available(self) -> bool:
        """Check if storage service is available and configured.

        Returns:
            True if storage is enabled and credentials are set
        """
        if not self.settings.storage_enabled:
            return False

        return bool(self.settings.storage_access_key and self.settings.storage_secret_key)

    def health_check(self) -> bool:
        """Check if storage backend is reachable.

        Returns:
            True if MinIO server responds to bucket_exists
        """
        if not self.is_available():
            return False

        try:
            self._get_client().bucket_exists(self.settings.storage_bucket)
            return True
        except Exception as e:
            logger.warning(f"Storage health check failed: {e}")
            return False

    def _ensure_bucket(self, bucket: str) -> None:
        """Ensure bucket exists, create if missing.

        Args:
            bucket: Bucket name to check/create
        """
        if bucket in self._bucket_exists_cache:
            return

        client = self._get_client()
        if not client.bucket_exists(bucket):
            client.make_bucket(bucket)
            logger.info(f"Created bucket: {bucket}")

        self._bucket_exists_cache.add(bucket)

    @staticmethod
    def _detect_content_type(filename: str) -> str:
        content_type, _ = mimetypes.guess_type(filename)
        return content_type or "application/octet-stream"

    @staticmethod
    def generate_object_name(filename: str) -> str:
        """Build a random object key keeping the original extension.

        Args:
            filename: Original file name (e.g., 'march.pdf')

        Returns:
            Key like '3f2b...c1.pdf'
        """
        return f"{uuid.uuid4()}{PurePosixPath(filename).suffix.lower()}"

    def public_url(self, object_name: str, bucket: str | None = None) -> str:
        """Public URL for an object.

        Args:
            object_name: Object key
            bucket: Bucket name (defaults to settings.storage_bucket)

        Returns:
            URL under storage_public_url, or the endpoint when unset
        """
        bucket = bucket or self.settings.storage_bucket
        base = self.settings.storage_public_url
        if not base:
            scheme = "https" if self.settings.storage_secure else "http"
            base = f"{scheme}://{self.settings.storage_endpoint}"
        return f"{base.rstrip('/')}/{bucket}/{object_name}"

    def upload_bytes(
        self,
        data: bytes,
        object_name: str,
        content_type: str | None = None,
        bucket: str | None = None,
    ) -> StorageResult:
        """Upload bytes to storage.

        Args:
            data: Bytes to upload
            object_name: Target object name in storage
            content_type: MIME type (auto-detected if not provided)
            bucket: Target bucket (defaults to settings.storage_bucket)

        Returns:
            StorageResult with the public URL and size on success
        """
        bucket = bucket or self.settings.storage_bucket

        try:
            client = self._get_client()
            self._ensure_bucket(bucket)

            if content_type is None:
                content_type = self._detect_content_type(object_name)

            data_stream: BinaryIO = io.BytesIO(data)
            data_length = len(data)

            result = client.put_object(
                bucket_name=bucket,
                object_name=object_name,
                data=data_stream,
                length=data_length,
                content_type=content_type,
            )

            logger.info(f"Uploaded {object_name} to {bucket} ({data_length} bytes)")

            return StorageResult(
                success=True,
                object_name=object_name,
                bucket=bucket,
                url=self.public_url(object_name, bucket),
                etag=result.etag,
                size=data_length,
            )

        except S3Error as e:
            logger.error(f"S3 error uploading {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=f"S3 error: {e.code} - {e.message}",
            )
        except Exception as e:
            logger.error(f"Error uploading {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=str(e),
            )

    def delete_object(
        self,
        object_name: str,
        bucket: str | None = None,
    ) -> StorageResult:
        """Delete object from storage.

        Args:
            object_name: Object name to delete
            bucket: Bucket name (defaults to settings.storage_bucket)

        Returns:
            StorageResult indicating success or failure
        """
        bucket = bucket or self.settings.storage_bucket

        try:
            client = self._get_client()
            client.remove_object(bucket_name=bucket, object_name=object_name)

            logger.info(f"Deleted {object_name} from {bucket}")

            return StorageResult(
                success=True,
                object_name=object_name,
                bucket=bucket,
            )

        except S3Error as e:
            logger.error(f"S3 error deleting {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=f"S3 error: {e.code} - {e.message}",
            )
        except Exception as e:
            logger.error(f"Error deleting {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=str(e),
            )
