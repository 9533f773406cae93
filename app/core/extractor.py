from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

import numpy as np

from app.config.settings import settings
from app.core.descriptor import l2_normalize
from app.core.models.arcface import ArcFace
from app.core.models.scrfd import SCRFD
from app.utils.logger import log


@dataclass(frozen=True)
class DetectedFace:
    """The most prominent face found in an image."""

    box: Tuple[float, float, float, float]
    score: float
    embedding: np.ndarray


class EmbeddingExtractor(ABC):
    """Turns a pixel buffer into the embedding of its most prominent face."""

    @abstractmethod
    def extract_top_face(self, img: np.ndarray) -> Optional[DetectedFace]:
        """Return the top-ranked face, or None when no face is found."""


class ScrfdArcFaceExtractor(EmbeddingExtractor):
    """SCRFD detection followed by ArcFace embedding of the aligned face.

    When several faces are present only the most prominent one is used
    (largest box, penalized by distance from the image centre).
    """

    def __init__(self, detector: SCRFD, embedder: ArcFace, normalize: bool = True):
        if not detector.use_kps:
            raise ValueError("SCRFD model must output keypoints for face alignment")
        self.detector = detector
        self.embedder = embedder
        self.normalize = normalize

    def extract_top_face(self, img: np.ndarray) -> Optional[DetectedFace]:
        faces = self.detector.detect(img, max_num=1)
        log.bug(f"Face detection completed, found {len(faces)} faces")
        if not faces:
            return None

        face = faces[0]
        embedding = self.embedder.embed(img, face.keypoint)
        if self.normalize:
            embedding = l2_normalize(embedding)
        log.bug(f"Face embedding extracted, score: {face.score:.3f}, dimension: {len(embedding)}")
        return DetectedFace(box=face.box, score=face.score, embedding=embedding)


def _model_path(relative: str) -> str:
    path = Path(settings.MODEL_DIR) / relative
    if settings.MODEL_RUNTIME_TYPE.lower() == "onnx" and not path.exists():
        raise FileNotFoundError(f"Model file not found: {path}")
    return str(path)


@lru_cache(maxsize=1)
def get_extractor() -> EmbeddingExtractor:
    try:
        detector = SCRFD(model_file=_model_path(settings.SCRFD_MODEL_FILE))
        embedder = ArcFace(model_file=_model_path(settings.ARCFACE_MODEL_FILE))
    except Exception as e:
        log.exception(e, "loading face models")
        raise
    log.info(f"Face models loaded, embedding dimension: {embedder.embedding_dim}")
    return ScrfdArcFaceExtractor(
        detector, embedder, normalize=settings.NORMALIZE_EMBEDDINGS
    )
