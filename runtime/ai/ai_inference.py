"""
PixelUpia SR - AI Inference Module
===================================
Local, offline ESRGAN super-resolution using ONNX Runtime.
Supports CUDA, DirectML, and CPU backends with automatic fallback.

The backend runs exactly one fixed-size tile per call. Tiling, padding and
stitching live in core.tile_engine; this module only owns the model session
and its reusable input/output tensors.
"""

import os
from threading import Lock
from typing import Dict, List, Optional, Any
from pathlib import Path

import numpy as np
import onnxruntime as ort


class BackendDetector:
    """Detects and ranks available ONNX Runtime execution providers."""

    GPU_PROVIDERS = ('CUDAExecutionProvider', 'DmlExecutionProvider')

    @staticmethod
    def get_available_providers() -> List[str]:
        """
        Query ONNX Runtime for available execution providers.

        Returns:
            List of available provider names in priority order.
        """
        available = ort.get_available_providers()

        # Define priority order: CUDA > DirectML > CPU
        priority_order = ['CUDAExecutionProvider', 'DmlExecutionProvider', 'CPUExecutionProvider']

        providers = [p for p in priority_order if p in available]

        if not providers:
            # Fallback to whatever is available
            providers = available

        return providers

    @staticmethod
    def select_best_provider(prefer_gpu: bool = False) -> str:
        """
        Select the execution provider for a new session.

        Args:
            prefer_gpu: Use a GPU provider when one is available; CPU otherwise

        Returns:
            Name of the selected provider.
        """
        providers = BackendDetector.get_available_providers()

        if not providers:
            raise RuntimeError("No ONNX Runtime execution providers available")

        if prefer_gpu:
            selected = providers[0]
            if selected not in BackendDetector.GPU_PROVIDERS:
                print("[AI Backend] No GPU provider available, using CPU")
        elif 'CPUExecutionProvider' in providers:
            selected = 'CPUExecutionProvider'
        else:
            selected = providers[-1]

        print(f"[AI Backend] Selected: {selected}")
        fallbacks = [p for p in providers if p != selected]
        if fallbacks:
            print(f"[AI Backend] Available fallbacks: {', '.join(fallbacks)}")

        return selected


class OnnxInferenceBackend:
    """
    Single-tile ESRGAN inference on an ONNX Runtime session.

    Holds one input tensor and one output tensor that are overwritten on
    every call. The array returned by `infer` is the output tensor itself:
    consume it before the next call and never keep a reference to it.
    Not safe for concurrent calls; wrap in SerializedInference to share.
    """

    def __init__(
        self,
        model_path: str,
        tile_size: int = 50,
        scale: int = 4,
        channels: int = 3,
        layout: str = 'NHWC',
        provider: Optional[str] = None,
        prefer_gpu: bool = False,
        num_threads: Optional[int] = None
    ):
        """
        Initialize the inference backend.

        Args:
            model_path: Path to ONNX model file (.onnx)
            tile_size: Model input edge length (default 50)
            scale: Upscaling factor of the model (default 4)
            channels: Colour channels per pixel (RGB)
            layout: Model tensor layout, 'NHWC' or 'NCHW'
            provider: Specific execution provider to use (auto-detect if None)
            prefer_gpu: When auto-detecting, pick a GPU provider if present
            num_threads: Intra-op threads (default: all CPU cores)
        """
        if layout not in ('NHWC', 'NCHW'):
            raise ValueError(f"Unsupported tensor layout: {layout}")

        self.model_path = Path(model_path)
        self.tile_size = tile_size
        self.scale = scale
        self.channels = channels
        self.layout = layout
        self.num_threads = num_threads or os.cpu_count() or 1

        if not self.model_path.exists():
            raise FileNotFoundError(f"Model file not found: {model_path}")

        if provider is None:
            provider = BackendDetector.select_best_provider(prefer_gpu)

        self.provider = provider

        self.session = self._load_model()
        self.input_name = self.session.get_inputs()[0].name

        out_size = tile_size * scale
        self.input_length = tile_size * tile_size * channels
        self.output_length = out_size * out_size * channels

        # Fixed tensors reused by every call
        self.input_buffer = np.zeros((1, tile_size, tile_size, channels), dtype=np.float32)
        self.output_buffer = np.zeros(self.output_length, dtype=np.float32)

        print(f"[AI Inference] Model loaded: {self.model_path.name}")
        print(f"[AI Inference] Tile size: {tile_size}x{tile_size}, Layout: {layout}")
        print(f"[AI Inference] Scale factor: {scale}×, Threads: {self.num_threads}")

    def _load_model(self) -> ort.InferenceSession:
        """
        Load ONNX model with selected execution provider.

        Returns:
            ONNX Runtime inference session.
        """
        try:
            sess_options = ort.SessionOptions()
            sess_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
            sess_options.intra_op_num_threads = self.num_threads

            providers = [self.provider]
            if self.provider != 'CPUExecutionProvider':
                providers.append('CPUExecutionProvider')

            session = ort.InferenceSession(
                str(self.model_path),
                sess_options=sess_options,
                providers=providers
            )

            actual_provider = session.get_providers()[0]
            if actual_provider != self.provider:
                print(f"[Warning] Requested {self.provider} but using {actual_provider}")

            return session

        except Exception as e:
            raise RuntimeError(f"Failed to load model: {e}") from e

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        """
        Run inference on a single tile.

        Args:
            tensor: Flat float32 tile tensor, R,G,B per pixel, raw 0-255

        Returns:
            Flat float32 output tensor of length (tile_size*scale)^2 * channels,
            raw 0-255, unclamped. This is the backend's reused output buffer.
        """
        flat = np.asarray(tensor, dtype=np.float32).reshape(-1)
        if flat.size != self.input_length:
            raise ValueError(f"Input tensor has {flat.size} values, expected {self.input_length}")

        self.input_buffer[...] = flat.reshape(self.input_buffer.shape)
        model_input = self.input_buffer
        if self.layout == 'NCHW':
            model_input = np.ascontiguousarray(np.transpose(self.input_buffer, (0, 3, 1, 2)))

        outputs = self.session.run(None, {self.input_name: model_input})
        result = np.asarray(outputs[0], dtype=np.float32)

        if result.size != self.output_length:
            raise ValueError(f"Model returned {result.size} values, expected {self.output_length}")

        if self.layout == 'NCHW':
            out_size = self.tile_size * self.scale
            result = np.transpose(result.reshape(self.channels, out_size, out_size), (1, 2, 0))

        self.output_buffer[:] = result.reshape(-1)
        return self.output_buffer

    __call__ = infer

    def close(self):
        """Release the model session."""
        self.session = None
        print(f"[AI Inference] Closed: {self.model_path.name}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class SerializedInference:
    """
    Mutual-exclusion wrapper that lets several jobs share one backend.

    Only one tile call is in flight at a time. The output is copied out of
    the backend's reused buffer before the lock is released.
    """

    def __init__(self, backend):
        self.backend = backend
        self._lock = Lock()

    def __call__(self, tensor: np.ndarray) -> np.ndarray:
        with self._lock:
            output = self.backend(tensor)
            return np.array(output, dtype=np.float32, copy=True)


def get_device_info() -> Dict[str, Any]:
    """Report ONNX Runtime version and execution providers."""
    providers = BackendDetector.get_available_providers()
    gpu_providers = [p for p in providers if p in BackendDetector.GPU_PROVIDERS]
    return {
        'onnxruntime_version': ort.__version__,
        'device': ort.get_device(),
        'providers': providers,
        'gpu_available': bool(gpu_providers),
        'gpu_provider': gpu_providers[0] if gpu_providers else None,
        'cpu_threads': os.cpu_count(),
    }
