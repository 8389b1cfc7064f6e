"""
Image storage for requests.

Objects live under `requests/<request id>/<random>.<ext>`, either below
UPLOAD_DIR (served at /uploads) or in a Cloudflare R2 bucket when
R2_ENABLED is set.

Usage:
    from campusmarket.services.storage_service import storage_service, StorageFolder

    stored = await storage_service.upload_file(
        content=data, folder=StorageFolder.REQUESTS, prefix=str(request_id),
        filename="cover.jpg", content_type="image/jpeg"
    )
    await storage_service.delete_file(stored["object_key"])
"""
import logging
import mimetypes
import uuid
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

import aioboto3

from campusmarket.config import get_settings

logger = logging.getLogger(__name__)


class StorageFolder(str, Enum):
    REQUESTS = "requests"


class StorageService:
    """Writes and removes stored images on the configured backend."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._initialized = True
        settings = get_settings()

        self.use_r2 = settings.R2_ENABLED
        self.root = Path(settings.UPLOAD_DIR)
        self.max_file_size = settings.MAX_FILE_SIZE
        self.local_base_url = f"{settings.API_BASE_URL.rstrip('/')}/uploads"

        self.bucket = settings.R2_BUCKET_NAME
        self.public_base_url = settings.R2_PUBLIC_URL.rstrip("/")
        self._r2_options = {
            "endpoint_url": f"https://{settings.R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
            "aws_access_key_id": settings.R2_ACCESS_KEY_ID,
            "aws_secret_access_key": settings.R2_SECRET_ACCESS_KEY,
            "region_name": "auto",
        }

        if not self.use_r2:
            self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"Image storage backend: {'R2' if self.use_r2 else self.root}")

    def validate_image(self, content_type: Optional[str], size: int) -> tuple[bool, str]:
        """
        Check an uploaded buffer is an image within the size limit.

        Returns:
            (is_valid, error_message)
        """
        if not content_type or not content_type.startswith("image/"):
            return False, "Only image files are allowed"
        if size == 0:
            return False, "Empty file"
        if size > self.max_file_size:
            return False, f"File too large. Maximum: {self.max_file_size / (1024 * 1024):.1f}MB"
        return True, ""

    @staticmethod
    def build_key(folder: StorageFolder, filename: Optional[str], content_type: Optional[str], prefix: str = "") -> str:
        ext = Path(filename or "").suffix.lower()
        if not ext and content_type:
            ext = mimetypes.guess_extension(content_type) or ""
        parts = [folder.value, prefix, f"{uuid.uuid4().hex}{ext}"]
        return "/".join(p for p in parts if p)

    async def upload_file(
        self,
        content: bytes,
        folder: StorageFolder,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
        prefix: str = ""
    ) -> dict:
        """
        Store one file.

        Args:
            content: Raw bytes
            folder: Top-level folder
            filename: Original name; only its extension is kept
            content_type: MIME type recorded with the object
            prefix: Sub-folder, usually the owning request id

        Returns:
            Dict with url, object_key, size and filename

        Raises:
            RuntimeError: The backend refused the write
        """
        object_key = self.build_key(folder, filename, content_type, prefix)
        try:
            if self.use_r2:
                async with self._r2_client() as s3:
                    await s3.put_object(
                        Bucket=self.bucket,
                        Key=object_key,
                        Body=content,
                        ContentType=content_type or "application/octet-stream",
                    )
                url = f"{self.public_base_url}/{object_key}"
            else:
                path = self.root / object_key
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(content)
                url = f"{self.local_base_url}/{object_key}"
        except Exception as e:
            logger.error(f"Storing {object_key} failed: {e}")
            raise RuntimeError(f"Could not store {filename or 'file'}: {e}")

        logger.info(f"Stored {object_key} ({len(content)} bytes)")
        return {
            "url": url,
            "object_key": object_key,
            "size": len(content),
            "filename": object_key.rsplit("/", 1)[-1],
        }

    def _r2_client(self):
        return aioboto3.Session().client("s3", **self._r2_options)

    async def delete_file(self, object_key: Optional[str]) -> bool:
        """Remove one stored object; False when nothing was removed."""
        if not object_key:
            return False

        try:
            if self.use_r2:
                async with self._r2_client() as s3:
                    await s3.delete_object(Bucket=self.bucket, Key=object_key)
            else:
                path = self.root / object_key
                if not path.exists():
                    return False
                path.unlink()
        except Exception as e:
            logger.error(f"Deleting {object_key} failed: {e}")
            return False

        logger.info(f"Deleted {object_key}")
        return True

    async def delete_files(self, object_keys: Iterable[Optional[str]]) -> int:
        """Remove several objects, returning how many were removed."""
        deleted = 0
        for object_key in object_keys:
            if await self.delete_file(object_key):
                deleted += 1
        return deleted


# Singleton instance
storage_service = StorageService()
