"""
ONNX Runtime inference backend.

Picks an accelerated execution provider when one is available on this
machine and falls back to the CPU provider with a fixed worker count.
Provider choice only affects speed; outputs are numerically equivalent
within floating-point tolerance.
"""

from __future__ import annotations

import logging
from typing import Any, List

import numpy as np
import onnxruntime as ort

from .backend import LoadedModel, ModelBackend, ModelLoadError

CPU_PROVIDER = "CPUExecutionProvider"

# Tried in order; the first one present is used.
ACCELERATED_PROVIDERS = (
    "TensorrtExecutionProvider",
    "CUDAExecutionProvider",
    "ROCMExecutionProvider",
    "DmlExecutionProvider",
    "CoreMLExecutionProvider",
    "OpenVINOExecutionProvider",
)

VALID_PROVIDER_MODES = ("auto", "cpu")


def select_providers(mode: str = "auto") -> List[str]:
    """
    Resolve the provider list handed to InferenceSession.

    "auto" returns the best accelerated provider followed by the CPU
    provider; "cpu" returns only the CPU provider.
    """
    mode = mode.lower()
    if mode not in VALID_PROVIDER_MODES:
        raise ValueError(f"provider must be one of: {list(VALID_PROVIDER_MODES)}")

    available = set(ort.get_available_providers())
    resolved: List[str] = []
    if mode == "auto":
        for name in ACCELERATED_PROVIDERS:
            if name in available:
                resolved.append(name)
                break

    if CPU_PROVIDER not in available and not resolved:
        raise ModelLoadError(
            "No compatible execution provider found. "
            f"Available providers: {sorted(available)}"
        )
    if CPU_PROVIDER in available:
        resolved.append(CPU_PROVIDER)
    return resolved


def _numpy_dtype(onnx_type: str) -> np.dtype:
    if "float16" in onnx_type:
        return np.dtype(np.float16)
    return np.dtype(np.float32)


class OnnxModelBackend(ModelBackend):
    """Backend running an ONNX model blob with onnxruntime."""

    def __init__(self, provider: str = "auto"):
        super().__init__()
        self._provider_mode = provider
        self._providers: List[str] = []
        self._input_name: str = ""
        self._output_name: str = ""

    @property
    def provider(self) -> str:
        """Name of the execution provider actually in use."""
        return self._providers[0] if self._providers else ""

    @property
    def accelerated(self) -> bool:
        return bool(self._providers) and self._providers[0] != CPU_PROVIDER

    def _create_session(self, model_bytes: bytes, providers: List[str], num_threads: int):
        so = ort.SessionOptions()
        so.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        so.execution_mode = ort.ExecutionMode.ORT_SEQUENTIAL
        if providers[0] == CPU_PROVIDER:
            so.intra_op_num_threads = max(1, int(num_threads))
        return ort.InferenceSession(
            model_bytes,
            sess_options=so,
            providers=providers,
        )

    def _load(self, model_bytes: bytes, num_threads: int) -> LoadedModel:
        providers = select_providers(self._provider_mode)

        try:
            session = self._create_session(model_bytes, providers, num_threads)
        except Exception as e:
            if providers[0] == CPU_PROVIDER or CPU_PROVIDER not in providers:
                raise
            logging.warning(f"{providers[0]} unavailable ({e}), falling back to {CPU_PROVIDER}")
            session = self._create_session(model_bytes, [CPU_PROVIDER], num_threads)

        inputs = session.get_inputs()
        outputs = session.get_outputs()
        if not inputs or not outputs:
            raise ModelLoadError(
                f"Model must declare at least one input and one output "
                f"(inputs={len(inputs)}, outputs={len(outputs)})"
            )

        self._providers = list(session.get_providers()) or providers
        self._input_name = inputs[0].name
        self._output_name = outputs[0].name
        logging.info(
            f"ONNX session created: providers={self._providers} "
            f"input={self._input_name}{list(inputs[0].shape)} "
            f"output={self._output_name}{list(outputs[0].shape)}"
        )
        return session, inputs[0].shape, outputs[0].shape, _numpy_dtype(inputs[0].type)

    def _execute(self, handle: Any, input_tensor: np.ndarray) -> np.ndarray:
        outputs = handle.run([self._output_name], {self._input_name: input_tensor})
        return np.asarray(outputs[0], dtype=np.float32)

    def _release(self, handle: Any) -> None:
        # InferenceSession has no explicit close; dropping the reference frees it.
        self._providers = []
