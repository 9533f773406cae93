"""Creates runtime providers from configuration."""

from typing import Optional

from app.core.runtime.base import RuntimeProvider


def create_provider(
    provider_type: str,
    model_file: Optional[str] = None,
    server_url: Optional[str] = None,
    model_name: Optional[str] = None,
    **kwargs,
) -> RuntimeProvider:
    """Create a runtime provider instance.

    Args:
        provider_type: 'onnx' or 'triton'
        model_file: Path to the model file (ONNX)
        server_url: Triton server URL (Triton)
        model_name: Model name on the Triton server (Triton)

    Raises:
        ValueError: If the provider type is unknown or its arguments are missing
    """
    kind = provider_type.lower()
    if kind == "onnx":
        if model_file is None:
            raise ValueError("model_file is required for ONNX provider")
        from app.core.runtime.onnx_provider import ONNXProvider

        return ONNXProvider(model_file, **kwargs)
    if kind == "triton":
        if server_url is None or model_name is None:
            raise ValueError("server_url and model_name are required for Triton provider")
        from app.core.runtime.triton_provider import TritonProvider

        return TritonProvider(server_url, model_name, **kwargs)
    raise ValueError(f"Unsupported provider type: {provider_type}")
