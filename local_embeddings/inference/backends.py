"""
Inference Backends
===================
Thin adapters over the native runtimes that execute the ONNX graph.

The engine only needs two operations, so that is all a backend exposes::

    session = backend.load(model_path, SessionOptions(...))
    hidden  = session.run({"input_ids": ..., "attention_mask": ...})

Backends:
    OpenVINOBackend     -- OpenVINO Runtime reading the .onnx file directly
                           (default; fast on Intel CPUs, iGPU, NPU)
    OnnxRuntimeBackend  -- ONNX Runtime CPU provider
                           (optional: pip install "local-embeddings[onnxruntime]")

Option mapping:

    SessionOptions          OpenVINO                    ONNX Runtime
    ----------------------  --------------------------  ----------------------
    use_parallel_execution  PERFORMANCE_HINT=THROUGHPUT ExecutionMode.ORT_PARALLEL
                            (else LATENCY)              (else ORT_SEQUENTIAL)
    inter_op_num_threads    NUM_STREAMS                 inter_op_num_threads
    intra_op_num_threads    INFERENCE_NUM_THREADS       intra_op_num_threads

Both sessions are safe for concurrent ``run`` calls: OpenVINO gets a fresh
infer request per call, ONNX Runtime sessions are thread-safe natively.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from local_embeddings.errors import ConfigurationError, ModelLoadError
from local_embeddings.inference.device_manager import DeviceManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionOptions:
    """Runtime options handed to ``InferenceBackend.load``."""
    use_parallel_execution: bool = True
    inter_op_num_threads: Optional[int] = None
    intra_op_num_threads: Optional[int] = None
    device: str = "CPU"


class InferenceSession:
    """A loaded model, ready for ``run``."""

    @property
    def input_names(self) -> List[str]:
        raise NotImplementedError

    @property
    def output_dimension(self) -> int:
        """Size of the last axis of the first model output."""
        raise NotImplementedError

    def run(self, feeds: Dict[str, np.ndarray]) -> np.ndarray:
        """Execute the graph, returning the first output as float32."""
        raise NotImplementedError

    def close(self) -> None:
        pass


class InferenceBackend:
    """Interface for loading an ONNX graph into a native runtime."""

    name = ""

    def load(self, model_path: Path, options: SessionOptions) -> InferenceSession:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# OpenVINO
# ---------------------------------------------------------------------------

def _static_last_dim(partial_shape, model_path: Path) -> int:
    if partial_shape.rank.is_dynamic:
        raise ModelLoadError("Model output rank is dynamic", str(model_path))
    rank = partial_shape.rank.get_length()
    last = partial_shape[rank - 1]
    if not last.is_static:
        raise ModelLoadError("Model output hidden dimension is dynamic", str(model_path))
    return last.get_length()


class OpenVINOSession(InferenceSession):
    def __init__(self, compiled_model, model_path: Path):
        self._compiled = compiled_model
        self._input_names = [inp.get_any_name() for inp in compiled_model.inputs]
        self._output = compiled_model.output(0)
        self._output_dimension = _static_last_dim(self._output.get_partial_shape(), model_path)

    @property
    def input_names(self) -> List[str]:
        return list(self._input_names)

    @property
    def output_dimension(self) -> int:
        return self._output_dimension

    def run(self, feeds: Dict[str, np.ndarray]) -> np.ndarray:
        # One infer request per call; the compiled model itself is shared.
        request = self._compiled.create_infer_request()
        results = request.infer(feeds)
        return np.array(results[self._output], dtype=np.float32, copy=True)

    def close(self) -> None:
        self._compiled = None


class OpenVINOBackend(InferenceBackend):
    name = "openvino"

    def load(self, model_path: Path, options: SessionOptions) -> InferenceSession:
        """
        Compile the ONNX graph with OpenVINO Runtime.

        Steps:
            1. Core.read_model()    -- parse the ONNX graph and weights
            2. Core.compile_model() -- optimise for the selected device
        """
        try:
            import openvino as ov
        except ImportError as exc:
            raise ModelLoadError(
                "openvino is not installed. Install: pip install openvino",
                str(model_path),
            ) from exc

        config = {
            "PERFORMANCE_HINT": "THROUGHPUT" if options.use_parallel_execution else "LATENCY",
        }
        if options.inter_op_num_threads is not None:
            config["NUM_STREAMS"] = str(options.inter_op_num_threads)
        if options.intra_op_num_threads is not None:
            config["INFERENCE_NUM_THREADS"] = str(options.intra_op_num_threads)

        try:
            core = ov.Core()
            device = DeviceManager(core).select(options.device)
            model = core.read_model(model=str(model_path))
            compiled = core.compile_model(model=model, device_name=device, config=config)
        except Exception as exc:
            raise ModelLoadError(
                f"OpenVINO failed to load '{model_path}': {exc}", str(model_path)
            ) from exc

        session = OpenVINOSession(compiled, model_path)
        logger.info(
            "Loaded OpenVINO model on %s  inputs=%s  dim=%d",
            device, session.input_names, session.output_dimension,
        )
        return session


# ---------------------------------------------------------------------------
# ONNX Runtime
# ---------------------------------------------------------------------------

class OnnxRuntimeSession(InferenceSession):
    def __init__(self, session, model_path: Path):
        self._session = session
        self._input_names = [inp.name for inp in session.get_inputs()]
        output = session.get_outputs()[0]
        self._output_name = output.name
        last = output.shape[-1] if output.shape else None
        if not isinstance(last, int):
            raise ModelLoadError("Model output hidden dimension is dynamic", str(model_path))
        self._output_dimension = last

    @property
    def input_names(self) -> List[str]:
        return list(self._input_names)

    @property
    def output_dimension(self) -> int:
        return self._output_dimension

    def run(self, feeds: Dict[str, np.ndarray]) -> np.ndarray:
        outputs = self._session.run([self._output_name], feeds)
        return np.asarray(outputs[0], dtype=np.float32)

    def close(self) -> None:
        self._session = None


class OnnxRuntimeBackend(InferenceBackend):
    name = "onnxruntime"

    def load(self, model_path: Path, options: SessionOptions) -> InferenceSession:
        try:
            import onnxruntime as ort
        except ImportError as exc:
            raise ModelLoadError(
                "onnxruntime is not installed. Install: pip install onnxruntime",
                str(model_path),
            ) from exc

        try:
            opts = ort.SessionOptions()
            opts.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
            opts.execution_mode = (
                ort.ExecutionMode.ORT_PARALLEL
                if options.use_parallel_execution
                else ort.ExecutionMode.ORT_SEQUENTIAL
            )
            if options.inter_op_num_threads is not None:
                opts.inter_op_num_threads = options.inter_op_num_threads
            if options.intra_op_num_threads is not None:
                opts.intra_op_num_threads = options.intra_op_num_threads
            native = ort.InferenceSession(
                str(model_path), sess_options=opts, providers=["CPUExecutionProvider"]
            )
        except Exception as exc:
            raise ModelLoadError(
                f"ONNX Runtime failed to load '{model_path}': {exc}", str(model_path)
            ) from exc

        session = OnnxRuntimeSession(native, model_path)
        logger.info(
            "Loaded ONNX Runtime model  inputs=%s  dim=%d",
            session.input_names, session.output_dimension,
        )
        return session


_BACKENDS = {
    OpenVINOBackend.name: OpenVINOBackend,
    OnnxRuntimeBackend.name: OnnxRuntimeBackend,
}


def get_backend(name: str = "openvino") -> InferenceBackend:
    """Return a backend instance by name ("openvino" or "onnxruntime")."""
    try:
        return _BACKENDS[name]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown inference backend '{name}' (expected one of {sorted(_BACKENDS)})"
        ) from None
