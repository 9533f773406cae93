from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

from app.core.models.base import BaseModel
from app.utils.face_utils import distance2bbox, distance2kps, nms

# Output count -> (feature strides, anchors per location, has keypoints)
OUTPUT_LAYOUTS = {
    6: ([8, 16, 32], 2, False),
    9: ([8, 16, 32], 2, True),
    10: ([8, 16, 32, 64, 128], 1, False),
    15: ([8, 16, 32, 64, 128], 1, True),
}


@dataclass
class Face:
    """Face detection result.

    Attributes:
        score: Detection confidence score.
        box: Bounding box as (x1, y1, x2, y2) in original image scale.
        keypoint: Optional keypoints with shape (5, 2) in original image scale.
    """

    score: float
    box: Tuple[float, float, float, float]
    keypoint: Optional[np.ndarray] = None


class SCRFD(BaseModel):
    """SCRFD face detector."""

    def __init__(
        self,
        nms_thresh: float = 0.4,
        det_thresh: float = 0.5,
        input_size: Tuple[int, int] = (640, 640),
        model_name: str = "scrfd",
        **kwargs,
    ):
        """Initialize SCRFD.

        Args:
            nms_thresh: Non-maximum suppression IoU threshold
            det_thresh: Detection confidence threshold
            input_size: Network input size (width, height), used when the model
                input has dynamic spatial dimensions
            model_name: Model name on the Triton server
            **kwargs: Runtime arguments forwarded to ``BaseModel``
        """
        super().__init__(model_name=model_name, **kwargs)

        self.nms_thresh = nms_thresh
        self.det_thresh = det_thresh
        self.input_mean = 127.5
        self.input_std = 128.0
        self.center_cache: Dict[Tuple[int, int, int], np.ndarray] = {}

        input_shape = self.runtime_provider.get_input_info()["shape"]
        if isinstance(input_shape[2], int) and input_shape[2] > 0:
            input_size = (input_shape[3], input_shape[2])
        self.input_size = input_size

        output_info = self.runtime_provider.get_output_info()
        self.output_names = [o["name"] for o in output_info]
        layout = OUTPUT_LAYOUTS.get(len(output_info))
        if layout is None:
            raise ValueError(f"Unsupported SCRFD output count: {len(output_info)}")
        self._feat_stride_fpn, self._num_anchors, self.use_kps = layout

    def preprocess(self, img: np.ndarray) -> Tuple[np.ndarray, float]:
        """Letterbox the image into the input size and build the input blob.

        Returns:
            Tuple of (blob of shape (1, 3, H, W), scale from original to input)
        """
        h, w = img.shape[:2]
        target_w, target_h = self.input_size

        if h / w > target_h / target_w:
            new_h = target_h
            new_w = int(new_h * w / h)
        else:
            new_w = target_w
            new_h = int(new_w * h / w)

        padded = np.zeros((target_h, target_w, 3), dtype=np.uint8)
        padded[:new_h, :new_w, :] = cv2.resize(img, (new_w, new_h))

        blob = cv2.dnn.blobFromImage(
            padded,
            1.0 / self.input_std,
            (target_w, target_h),
            (self.input_mean,) * 3,
            swapRB=True,
        )
        return blob, new_h / h

    def _anchor_centers(self, height: int, width: int, stride: int) -> np.ndarray:
        key = (height, width, stride)
        centers = self.center_cache.get(key)
        if centers is None:
            centers = np.stack(np.mgrid[:height, :width][::-1], axis=-1).astype(np.float32)
            centers = (centers * stride).reshape((-1, 2))
            if self._num_anchors > 1:
                centers = np.repeat(centers, self._num_anchors, axis=0)
            self.center_cache[key] = centers
        return centers

    def postprocess(
        self, net_out: Dict[str, np.ndarray], scale: float
    ) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
        """Decode raw outputs into boxes, scores and keypoints after NMS.

        Returns:
            Boxes (N, 4) and scores (N,) in original image scale, sorted by
            score, and keypoints (N, 5, 2) or None.
        """
        outputs = []
        for name in self.output_names:
            out = net_out[name]
            # Batched exports carry a leading batch axis
            outputs.append(out[0] if out.ndim == 3 else out)

        target_w, target_h = self.input_size
        fmc = len(self._feat_stride_fpn)
        scores_list, boxes_list, kps_list = [], [], []

        for idx, stride in enumerate(self._feat_stride_fpn):
            scores = outputs[idx].reshape(-1)
            bbox_preds = outputs[idx + fmc] * stride
            centers = self._anchor_centers(target_h // stride, target_w // stride, stride)

            keep = np.where(scores >= self.det_thresh)[0]
            scores_list.append(scores[keep])
            boxes_list.append(distance2bbox(centers, bbox_preds)[keep])
            if self.use_kps:
                kps_preds = outputs[idx + fmc * 2] * stride
                kps_list.append(distance2kps(centers, kps_preds)[keep])

        scores = np.concatenate(scores_list)
        order = scores.argsort()[::-1]
        scores = scores[order]
        boxes = np.vstack(boxes_list)[order]
        keypoints = np.vstack(kps_list)[order] if self.use_kps else None

        det = np.hstack((boxes, scores[:, np.newaxis])).astype(np.float32, copy=False)
        keep = nms(det, self.nms_thresh)
        boxes = boxes[keep] / scale
        scores = scores[keep]
        if keypoints is not None:
            keypoints = keypoints[keep] / scale

        return boxes, scores, keypoints

    @staticmethod
    def rank(boxes: np.ndarray, image_shape: Tuple[int, int]) -> np.ndarray:
        """Order detections by prominence: box area penalized by distance from centre."""
        area = (boxes[:, 2] - boxes[:, 0]) * (boxes[:, 3] - boxes[:, 1])
        center_y, center_x = image_shape[0] / 2, image_shape[1] / 2
        offset_x = (boxes[:, 0] + boxes[:, 2]) / 2 - center_x
        offset_y = (boxes[:, 1] + boxes[:, 3]) / 2 - center_y
        values = area - (offset_x**2 + offset_y**2) * 2.0
        return np.argsort(values)[::-1]

    def detect(self, img: np.ndarray, max_num: int = 0) -> List[Face]:
        """Detect faces in a BGR image.

        Args:
            img: Image of shape (H, W, 3)
            max_num: Keep at most this many faces, most prominent first; 0 keeps all

        Returns:
            Detected faces, most prominent first when ``max_num`` is set
        """
        if not isinstance(img, np.ndarray) or img.ndim != 3:
            raise TypeError("img must be a numpy.ndarray of shape (H, W, 3)")

        blob, scale = self.preprocess(img)
        boxes, scores, keypoints = self.postprocess(self.forward(blob), scale)

        if max_num > 0 and boxes.shape[0] > 0:
            order = self.rank(boxes, img.shape[:2])[:max_num]
            boxes, scores = boxes[order], scores[order]
            keypoints = keypoints[order] if keypoints is not None else None

        return [
            Face(
                score=float(scores[i]),
                box=tuple(float(v) for v in boxes[i]),
                keypoint=keypoints[i] if keypoints is not None else None,
            )
            for i in range(boxes.shape[0])
        ]
