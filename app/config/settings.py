from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_PREFIX: str = "/api"
    PROJECT_NAME: str = "Face Verify API"

    FRONTEND_URL: str = "http://localhost:3000"
    ADMIN_PANEL_URL: str = "http://localhost:8080"

    # Matching policy
    MATCH_THRESHOLD: float = 0.6
    DESCRIPTOR_DIMENSION: Optional[int] = None

    # Reference descriptor storage: "file", "memory" or "qdrant"
    DESCRIPTOR_BACKEND: str = "file"
    DESCRIPTOR_DIR: str = "faces"
    DESCRIPTOR_FILE: str = "descriptor.json"

    # Qdrant vector DB
    QDRANT_URL: str = "http://localhost:6333"
    QDRANT_API_KEY: str | None = None
    QDRANT_COLLECTION: str = "reference_face"

    # Reference crop storage: "local", "minio" or "none"
    CROP_STORAGE: str = "local"
    CROP_FILE: str = "reference.png"
    MINIO_ENDPOINT: str = "localhost:9000"
    MINIO_ACCESS_KEY: str = "minioadmin"
    MINIO_SECRET_KEY: str = "minioadmin"
    MINIO_SECURE: bool = False
    FACE_IMAGES_BUCKET: str = "face-images"

    # Model runtime configuration
    MODEL_DIR: str = "assets/models"
    SCRFD_MODEL_FILE: str = "scrfd/scrfd_10g_bnkps.onnx"
    ARCFACE_MODEL_FILE: str = "arcface/arcface_r100_glint360k.onnx"
    MODEL_RUNTIME_TYPE: str = "onnx"
    TRITON_SERVER_URL: str = "triton:8000"
    NORMALIZE_EMBEDDINGS: bool = True

    # Extraction worker pool
    EXTRACTOR_WORKERS: int = 2
    EXTRACTOR_TIMEOUT_SECONDS: float = 30.0
    MAX_PAYLOAD_MB: float = 10.0

    # Logging settings
    LOG_DIR: str = "logs"
    LOG_TO_STDOUT: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_MAX_DAYS: int = 30
    SERVICE_NAME: str = "face_verify"
    API_TOKEN: str | None = None

    @property
    def BACKEND_CORS_ORIGINS(self) -> List[str]:
        """Build CORS origins list from individual URLs"""
        return [self.FRONTEND_URL, self.ADMIN_PANEL_URL]

    @property
    def MAX_PAYLOAD_BYTES(self) -> int:
        return int(self.MAX_PAYLOAD_MB * 1024 * 1024)

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
