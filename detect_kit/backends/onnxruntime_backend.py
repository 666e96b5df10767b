from __future__ import annotations

import ast
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from ..errors import InferenceFailure, ModelUnavailable

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"])
    - input_name/output_name: override auto-selected I/O names if needed
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_name: Optional[str] = None


class OnnxRuntimeBackend:
    """
    Minimal ONNX Runtime backend.

    Expects an NCHW float32 blob shaped (1, 3, H, W) and returns the primary
    output (N, record_stride) as a NumPy array.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise ModelUnavailable(f"Model file not found: {self.model_path}")

        sess_opts = ort.SessionOptions()
        providers = list(cfg.providers) if cfg.providers is not None else None
        logger.info("Loading model %s", self.model_path)
        try:
            self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)
        except Exception as exc:
            raise ModelUnavailable(f"Could not create inference session for {self.model_path}: {exc}") from exc

        inputs = self.session.get_inputs()
        outputs = self.session.get_outputs()
        self.input_name = cfg.input_name or inputs[0].name
        self.output_name = cfg.output_name or outputs[0].name
        self.input_shape = list(self._io_by_name(inputs, self.input_name).shape)
        self.output_shape = list(self._io_by_name(outputs, self.output_name).shape)

    @staticmethod
    def _io_by_name(nodes: Sequence[Any], name: str) -> Any:
        for node in nodes:
            if node.name == name:
                return node
        raise ModelUnavailable(f"Model has no input/output named {name!r}")

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers())

    @property
    def available_providers(self) -> Sequence[str]:
        return tuple(self._ort.get_available_providers())

    def model_class_names(self) -> Optional[List[str]]:
        """
        Class names embedded in the model's custom metadata (`names`), if present.

        Exports store them as a Python dict literal ({0: 'a', 1: 'b'}) or a list.
        """

        meta = self.session.get_modelmeta().custom_metadata_map or {}
        raw = meta.get("names")
        if not raw:
            return None
        try:
            parsed = ast.literal_eval(raw)
        except (ValueError, SyntaxError):
            logger.warning("Ignoring unparseable 'names' metadata in %s", self.model_path)
            return None
        if isinstance(parsed, dict):
            return [str(parsed[k]) for k in sorted(parsed)]
        if isinstance(parsed, (list, tuple)):
            return [str(v) for v in parsed]
        return None

    def infer(self, blob: np.ndarray, extra_inputs: Optional[Dict[str, Any]] = None) -> np.ndarray:
        inputs: Dict[str, Any] = {self.input_name: blob}
        if extra_inputs:
            inputs.update(extra_inputs)
        try:
            outputs = self.session.run([self.output_name], inputs)
        except Exception as exc:
            raise InferenceFailure(f"Inference failed: {exc}") from exc
        return outputs[0]
