import cv2
import numpy as np
import onnx

from app.core.models.base import BaseModel
from app.utils.face_utils import norm_crop


class ArcFace(BaseModel):
    """ArcFace embedding model."""

    def __init__(self, model_name: str = "arcface", **kwargs):
        super().__init__(model_name=model_name, **kwargs)

        input_shape = self.runtime_provider.get_input_info()["shape"]
        if isinstance(input_shape[2], int) and input_shape[2] > 0:
            self.input_size = (input_shape[3], input_shape[2])
        else:
            self.input_size = (112, 112)

        output_info = self.runtime_provider.get_output_info()
        self.output_name = output_info[0]["name"]
        output_shape = output_info[0]["shape"]
        self.embedding_dim = output_shape[-1]

        self.input_mean, self.input_std = self._normalization_params()

    def _normalization_params(self):
        """Pick input normalization from the model graph.

        MXNet-converted models normalize inside the graph (leading Sub/Mul
        nodes) and expect raw pixels; other exports expect [-1, 1] inputs.
        """
        model_file = getattr(self.runtime_provider, "model_file", None)
        if model_file is None:
            return 127.5, 127.5

        graph = onnx.load(model_file).graph
        names = [node.name for node in graph.node[:8]]
        has_sub = any(n.startswith("Sub") or n.startswith("_minus") for n in names)
        has_mul = any(n.startswith("Mul") or n.startswith("_mul") for n in names)
        if has_sub and has_mul:
            return 0.0, 1.0
        return 127.5, 127.5

    def preprocess(self, img: np.ndarray, landmarks: np.ndarray) -> np.ndarray:
        """Align the face with its 5 landmarks and build a (1, 3, H, W) blob."""
        aligned = norm_crop(img, landmarks, image_size=self.input_size[0])
        return cv2.dnn.blobFromImage(
            aligned,
            1.0 / self.input_std,
            self.input_size,
            (self.input_mean,) * 3,
            swapRB=True,
        )

    def postprocess(self, net_out) -> np.ndarray:
        return np.asarray(net_out[self.output_name], dtype=np.float32)[0].ravel()

    def embed(self, img: np.ndarray, landmarks: np.ndarray) -> np.ndarray:
        """Compute the embedding of one face.

        Args:
            img: BGR image of shape (H, W, 3)
            landmarks: Facial landmarks of shape (5, 2)

        Returns:
            1-D embedding of length ``embedding_dim``
        """
        return self.postprocess(self.forward(self.preprocess(img, landmarks)))
