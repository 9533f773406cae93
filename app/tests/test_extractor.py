from unittest.mock import MagicMock

import numpy as np
import pytest

from app.core.extractor import ScrfdArcFaceExtractor
from app.core.models.scrfd import SCRFD, Face


def make_detector(faces, use_kps=True):
    detector = MagicMock()
    detector.use_kps = use_kps
    detector.detect.return_value = faces
    return detector


def test_requires_keypoint_model():
    with pytest.raises(ValueError):
        ScrfdArcFaceExtractor(make_detector([], use_kps=False), MagicMock())


def test_no_faces_returns_none():
    embedder = MagicMock()
    extractor = ScrfdArcFaceExtractor(make_detector([]), embedder)
    assert extractor.extract_top_face(np.zeros((10, 10, 3), dtype=np.uint8)) is None
    embedder.embed.assert_not_called()


def test_top_face_is_embedded_and_normalized():
    keypoints = np.zeros((5, 2), dtype=np.float32)
    face = Face(score=0.9, box=(1.0, 2.0, 30.0, 40.0), keypoint=keypoints)
    detector = make_detector([face])
    embedder = MagicMock()
    embedder.embed.return_value = np.array([3.0, 4.0], dtype=np.float32)
    img = np.zeros((50, 50, 3), dtype=np.uint8)

    result = ScrfdArcFaceExtractor(detector, embedder).extract_top_face(img)

    detector.detect.assert_called_once_with(img, max_num=1)
    assert result.box == (1.0, 2.0, 30.0, 40.0)
    assert result.score == 0.9
    assert np.allclose(result.embedding, [0.6, 0.8])


def test_raw_embedding_when_normalization_disabled():
    face = Face(score=0.9, box=(0.0, 0.0, 5.0, 5.0), keypoint=np.zeros((5, 2)))
    embedder = MagicMock()
    embedder.embed.return_value = np.array([3.0, 4.0], dtype=np.float32)
    extractor = ScrfdArcFaceExtractor(make_detector([face]), embedder, normalize=False)
    result = extractor.extract_top_face(np.zeros((5, 5, 3), dtype=np.uint8))
    assert np.allclose(result.embedding, [3.0, 4.0])


def test_rank_prefers_large_centered_faces():
    boxes = np.array(
        [
            [0.0, 0.0, 20.0, 20.0],  # small, in the corner
            [30.0, 30.0, 70.0, 70.0],  # large, centered
            [80.0, 80.0, 100.0, 100.0],  # small, in the corner
        ]
    )
    order = SCRFD.rank(boxes, (100, 100))
    assert order[0] == 1
