from pathlib import Path

import numpy as np
import pytest

from app.config.settings import settings

SCRFD_PATH = Path(settings.MODEL_DIR) / settings.SCRFD_MODEL_FILE
ARCFACE_PATH = Path(settings.MODEL_DIR) / settings.ARCFACE_MODEL_FILE
FACE_IMAGE_PATH = Path("assets/images/face.png")

requires_models = pytest.mark.skipif(
    not (SCRFD_PATH.exists() and ARCFACE_PATH.exists()),
    reason="face model files not available",
)


@pytest.fixture(scope="session")
def scrfd_model():
    from app.core.models.scrfd import SCRFD

    return SCRFD(model_file=str(SCRFD_PATH), provider_type="onnx")


@pytest.fixture(scope="session")
def arcface_model():
    from app.core.models.arcface import ArcFace

    return ArcFace(model_file=str(ARCFACE_PATH), provider_type="onnx")


@pytest.mark.model_dependent
@requires_models
def test_scrfd_blank_image_has_no_faces(scrfd_model):
    faces = scrfd_model.detect(np.zeros((480, 640, 3), dtype=np.uint8))
    assert faces == []


@pytest.mark.model_dependent
@requires_models
def test_arcface_embeds_dummy_landmarks(arcface_model):
    img = np.zeros((480, 640, 3), dtype=np.uint8)
    h, w = img.shape[:2]
    landmarks = np.array(
        [
            [w * 0.35, h * 0.35],
            [w * 0.65, h * 0.35],
            [w * 0.50, h * 0.55],
            [w * 0.40, h * 0.75],
            [w * 0.60, h * 0.75],
        ],
        dtype=np.float32,
    )

    embedding = arcface_model.embed(img, landmarks)

    assert isinstance(embedding, np.ndarray)
    assert embedding.ndim == 1
    assert embedding.shape[0] == arcface_model.embedding_dim


@pytest.mark.model_dependent
@requires_models
def test_extractor_self_match_on_real_face(scrfd_model, arcface_model):
    import cv2

    from app.core.descriptor import compare_descriptors
    from app.core.extractor import ScrfdArcFaceExtractor

    if not FACE_IMAGE_PATH.exists():
        pytest.skip("face.png image not available")

    img = cv2.imread(str(FACE_IMAGE_PATH))
    extractor = ScrfdArcFaceExtractor(scrfd_model, arcface_model)

    first = extractor.extract_top_face(img)
    second = extractor.extract_top_face(img)

    assert first is not None and second is not None
    assert first.score > 0.5
    result = compare_descriptors(first.embedding, second.embedding)
    assert result.match is True
    assert result.distance < 0.1
