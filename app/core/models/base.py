from abc import ABC, abstractmethod
from typing import Dict, Optional

import numpy as np

from app.config.settings import settings
from app.core.runtime import RuntimeProvider, create_provider


class BaseModel(ABC):
    """Face analysis model backed by a runtime provider."""

    def __init__(
        self,
        provider_type: Optional[str] = None,
        model_file: Optional[str] = None,
        server_url: Optional[str] = None,
        model_name: Optional[str] = None,
        runtime_provider: Optional[RuntimeProvider] = None,
        **kwargs,
    ):
        """Initialize the model.

        Args:
            provider_type: 'onnx' or 'triton'; defaults to MODEL_RUNTIME_TYPE
            model_file: Path to model file (ONNX)
            server_url: Triton server URL; defaults to TRITON_SERVER_URL
            model_name: Model name on the Triton server
            runtime_provider: Ready-made provider, bypassing the factory
            **kwargs: Additional provider-specific arguments
        """
        if runtime_provider is None:
            runtime_provider = create_provider(
                provider_type=provider_type or settings.MODEL_RUNTIME_TYPE,
                model_file=model_file,
                server_url=server_url or settings.TRITON_SERVER_URL,
                model_name=model_name,
                **kwargs,
            )
        self.runtime_provider = runtime_provider

    @abstractmethod
    def preprocess(self, *args, **kwargs):
        """Turn raw input into the model input tensor."""

    @abstractmethod
    def postprocess(self, *args, **kwargs):
        """Turn model outputs into results."""

    def forward(self, input_data: np.ndarray) -> Dict[str, np.ndarray]:
        return self.runtime_provider.forward(input_data)
