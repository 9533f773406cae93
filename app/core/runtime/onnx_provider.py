from typing import Any, Dict, List, Optional

import numpy as np
import onnxruntime

from app.core.runtime.base import RuntimeProvider


class ONNXProvider(RuntimeProvider):
    """Runs a local ONNX model file with ONNX Runtime."""

    def __init__(self, model_file: str, providers: Optional[List[str]] = None):
        if providers is None:
            providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]
        # Keep only providers this onnxruntime build actually ships
        available = set(onnxruntime.get_available_providers())
        providers = [p for p in providers if p in available] or ["CPUExecutionProvider"]

        self.model_file = model_file
        self.session = onnxruntime.InferenceSession(model_file, providers=providers)
        self._input_info = self._describe(self.session.get_inputs()[0])
        self._output_info = [self._describe(o) for o in self.session.get_outputs()]

    @staticmethod
    def _describe(node) -> Dict[str, Any]:
        return {"name": node.name, "shape": node.shape, "type": node.type}

    def forward(self, input_data: np.ndarray) -> Dict[str, np.ndarray]:
        output_names = [o["name"] for o in self._output_info]
        outputs = self.session.run(
            output_names, {self._input_info["name"]: input_data}
        )
        return dict(zip(output_names, outputs))

    def get_input_info(self) -> Dict[str, Any]:
        return dict(self._input_info)

    def get_output_info(self) -> List[Dict[str, Any]]:
        return [dict(o) for o in self._output_info]
