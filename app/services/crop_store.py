import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime
from io import BytesIO
from pathlib import Path

from minio import Minio
from minio.error import S3Error

from app.utils.logger import log


def _crop_stamp(enrolled_at: datetime) -> str:
    return enrolled_at.strftime("%Y%m%dT%H%M%S%f")


class CropStore(ABC):
    """Destination for the cropped reference face kept for operator inspection.

    Each enrollment gets its own location, so a slow write for an earlier
    enrollment can never overwrite the crop of a later one.
    """

    @abstractmethod
    def save_crop(self, image_data: bytes, enrolled_at: datetime) -> str:
        """Store a PNG crop and return where it was written."""

    @abstractmethod
    def discard(self, location: str) -> None:
        """Remove a crop whose enrollment has been replaced."""


class LocalCropStore(CropStore):
    """Writes crops next to the descriptor as ``<stem>-<enrolled_at><suffix>``."""

    def __init__(self, directory: str, filename: str = "reference.png"):
        self.directory = Path(directory)
        self.filename = Path(filename)

    def path_for(self, enrolled_at: datetime) -> Path:
        name = f"{self.filename.stem}-{_crop_stamp(enrolled_at)}{self.filename.suffix}"
        return self.directory / name

    def save_crop(self, image_data: bytes, enrolled_at: datetime) -> str:
        path = self.path_for(enrolled_at)
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".crop-", suffix=".png")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(image_data)
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        return str(path)

    def discard(self, location: str) -> None:
        try:
            os.unlink(location)
        except FileNotFoundError:
            pass


class MinIOCropStore(CropStore):
    """Uploads crops to a MinIO bucket, one object per enrollment."""

    def __init__(self, client: Minio, bucket: str):
        self.client = client
        self.bucket = bucket
        self._bucket_checked = False

    def _ensure_bucket_exists(self) -> None:
        if self._bucket_checked:
            return
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)
            log.info(f"Created MinIO bucket: {self.bucket}")
        self._bucket_checked = True

    def save_crop(self, image_data: bytes, enrolled_at: datetime) -> str:
        object_name = f"reference/{_crop_stamp(enrolled_at)}.png"
        try:
            self._ensure_bucket_exists()
            self.client.put_object(
                bucket_name=self.bucket,
                object_name=object_name,
                data=BytesIO(image_data),
                length=len(image_data),
                content_type="image/png",
            )
        except S3Error as e:
            log.err(f"Failed to upload reference crop {object_name}: {e}")
            raise
        return object_name

    def discard(self, location: str) -> None:
        try:
            self.client.remove_object(self.bucket, location)
        except S3Error as e:
            log.err(f"Failed to remove stale crop {location}: {e}")
            raise
