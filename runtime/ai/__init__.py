"""
PixelUpia SR - AI Inference Module Package
"""

from .model_registry import MODELS, get_default_model, get_model
from .ai_inference import BackendDetector, OnnxInferenceBackend, SerializedInference, get_device_info

__all__ = [
    'BackendDetector',
    'OnnxInferenceBackend',
    'SerializedInference',
    'MODELS',
    'get_default_model',
    'get_model',
    'get_device_info',
]
__version__ = '1.0.0'
