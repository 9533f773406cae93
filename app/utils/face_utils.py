from typing import List

import cv2
import numpy as np
from skimage import transform as trans

# Canonical 5-point landmark positions in a 112x112 ArcFace crop
ARCFACE_DST = np.array(
    [
        [38.2946, 51.6963],
        [73.5318, 51.5014],
        [56.0252, 71.7366],
        [41.5493, 92.3655],
        [70.7299, 92.2041],
    ],
    dtype=np.float32,
)


def distance2bbox(points: np.ndarray, distance: np.ndarray) -> np.ndarray:
    """Decode (left, top, right, bottom) distances from anchor centers to boxes.

    Args:
        points: (N, 2) anchor centers
        distance: (N, 4) distances to the four box edges

    Returns:
        (N, 4) boxes as [x1, y1, x2, y2]
    """
    return np.stack(
        [
            points[:, 0] - distance[:, 0],
            points[:, 1] - distance[:, 1],
            points[:, 0] + distance[:, 2],
            points[:, 1] + distance[:, 3],
        ],
        axis=-1,
    )


def distance2kps(points: np.ndarray, distance: np.ndarray) -> np.ndarray:
    """Decode keypoint offsets from anchor centers.

    Args:
        points: (N, 2) anchor centers
        distance: (N, 2K) x/y offsets for K keypoints

    Returns:
        (N, K, 2) keypoints
    """
    offsets = distance.reshape((distance.shape[0], -1, 2))
    return points[:, np.newaxis, :] + offsets


def nms(dets: np.ndarray, thresh: float = 0.4) -> List[int]:
    """Greedy non-maximum suppression over rows of [x1, y1, x2, y2, score]."""
    x1, y1, x2, y2, scores = (dets[:, i] for i in range(5))
    areas = (x2 - x1 + 1) * (y2 - y1 + 1)
    order = scores.argsort()[::-1]

    keep = []
    while order.size > 0:
        i = order[0]
        keep.append(int(i))
        rest = order[1:]
        w = np.maximum(0.0, np.minimum(x2[i], x2[rest]) - np.maximum(x1[i], x1[rest]) + 1)
        h = np.maximum(0.0, np.minimum(y2[i], y2[rest]) - np.maximum(y1[i], y1[rest]) + 1)
        inter = w * h
        overlap = inter / (areas[i] + areas[rest] - inter)
        order = rest[overlap <= thresh]

    return keep


def estimate_norm(landmarks: np.ndarray, image_size: int = 112) -> np.ndarray:
    """Similarity transform mapping 5 landmarks onto the ArcFace template."""
    if landmarks.shape != (5, 2):
        raise ValueError(f"Expected (5, 2) landmarks, got {landmarks.shape}")
    if image_size % 112 == 0:
        ratio = float(image_size) / 112.0
        diff_x = 0.0
    else:
        ratio = float(image_size) / 128.0
        diff_x = 8.0 * ratio
    dst = ARCFACE_DST * ratio
    dst[:, 0] += diff_x
    tform = trans.SimilarityTransform()
    tform.estimate(landmarks, dst)
    return tform.params[0:2, :]


def norm_crop(img: np.ndarray, landmarks: np.ndarray, image_size: int = 112) -> np.ndarray:
    """Align and crop a face to the square ArcFace input."""
    M = estimate_norm(landmarks, image_size)
    return cv2.warpAffine(img, M, (image_size, image_size), borderValue=0.0)
