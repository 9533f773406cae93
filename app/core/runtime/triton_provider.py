from typing import Any, Dict, List

import numpy as np
import tritonclient.http as httpclient

from app.core.runtime.base import RuntimeProvider


class TritonProvider(RuntimeProvider):
    """Runs a model hosted on a Triton Inference Server over HTTP."""

    def __init__(self, server_url: str = "localhost:8000", model_name: str = "scrfd"):
        self.server_url = server_url
        self.model_name = model_name
        self.client = httpclient.InferenceServerClient(url=server_url)
        self.metadata = self.client.get_model_metadata(model_name=model_name)

    def forward(self, input_data: np.ndarray) -> Dict[str, np.ndarray]:
        input_name = self.get_input_info()["name"]
        output_names = [o["name"] for o in self.get_output_info()]

        infer_input = httpclient.InferInput(input_name, list(input_data.shape), "FP32")
        infer_input.set_data_from_numpy(input_data.astype(np.float32, copy=False))
        response = self.client.infer(
            model_name=self.model_name,
            inputs=[infer_input],
            outputs=[httpclient.InferRequestedOutput(name) for name in output_names],
        )
        return {name: response.as_numpy(name) for name in output_names}

    def get_input_info(self) -> Dict[str, Any]:
        node = self.metadata["inputs"][0]
        return {
            "name": node["name"],
            "shape": node["shape"],
            "type": node.get("datatype", "FP32"),
        }

    def get_output_info(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": node["name"],
                "shape": node["shape"],
                "type": node.get("datatype", "FP32"),
            }
            for node in self.metadata["outputs"]
        ]
