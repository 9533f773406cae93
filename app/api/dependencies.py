from functools import lru_cache
from typing import Optional

from minio import Minio
from qdrant_client import QdrantClient

from app.config.settings import settings
from app.core.extractor import get_extractor
from app.services.crop_store import CropStore, LocalCropStore, MinIOCropStore
from app.services.descriptor_store import (
    DescriptorStore,
    FileDescriptorStore,
    InMemoryDescriptorStore,
    QdrantDescriptorStore,
)
from app.services.verification import FaceVerificationService


def build_descriptor_store() -> DescriptorStore:
    backend = settings.DESCRIPTOR_BACKEND.lower()
    if backend == "file":
        return FileDescriptorStore(settings.DESCRIPTOR_DIR, settings.DESCRIPTOR_FILE)
    if backend == "memory":
        return InMemoryDescriptorStore()
    if backend == "qdrant":
        client = QdrantClient(
            url=settings.QDRANT_URL, api_key=settings.QDRANT_API_KEY, timeout=30.0
        )
        return QdrantDescriptorStore(client, settings.QDRANT_COLLECTION)
    raise ValueError(f"Unsupported descriptor backend: {settings.DESCRIPTOR_BACKEND}")


def build_crop_store() -> Optional[CropStore]:
    kind = settings.CROP_STORAGE.lower()
    if kind == "none":
        return None
    if kind == "local":
        return LocalCropStore(settings.DESCRIPTOR_DIR, settings.CROP_FILE)
    if kind == "minio":
        client = Minio(
            settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE,
        )
        return MinIOCropStore(client, settings.FACE_IMAGES_BUCKET)
    raise ValueError(f"Unsupported crop storage: {settings.CROP_STORAGE}")


@lru_cache(maxsize=1)
def get_verification_service() -> FaceVerificationService:
    return FaceVerificationService(
        store=build_descriptor_store(),
        extractor=get_extractor(),
        crop_store=build_crop_store(),
        threshold=settings.MATCH_THRESHOLD,
        expected_dimension=settings.DESCRIPTOR_DIMENSION,
        extractor_timeout=settings.EXTRACTOR_TIMEOUT_SECONDS,
        max_payload_bytes=settings.MAX_PAYLOAD_BYTES,
        workers=settings.EXTRACTOR_WORKERS,
    )


def shutdown_verification_service() -> None:
    if get_verification_service.cache_info().currsize:
        get_verification_service().close()
        get_verification_service.cache_clear()
