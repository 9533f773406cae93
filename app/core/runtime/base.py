from abc import ABC, abstractmethod
from typing import Any, Dict, List

import numpy as np


class RuntimeProvider(ABC):
    """Backend that executes a model graph (ONNX Runtime, Triton, ...)."""

    @abstractmethod
    def forward(self, input_data: np.ndarray) -> Dict[str, np.ndarray]:
        """Run inference on a (batch, channels, height, width) tensor.

        Returns:
            Output arrays keyed by output name, in model order
        """

    @abstractmethod
    def get_input_info(self) -> Dict[str, Any]:
        """Name, shape and type of the single model input."""

    @abstractmethod
    def get_output_info(self) -> List[Dict[str, Any]]:
        """Name, shape and type of each model output."""
