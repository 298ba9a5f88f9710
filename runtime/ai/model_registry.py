"""
Model Registry - Single Source of Truth for AI Models
"""

MODELS = {
    "esrgan-x4": {
        "key": "esrgan-x4",
        "label": "ESRGAN x4 (Default ⭐)",
        "filename": "ESRGAN.onnx",
        "tile_size": 50,
        "scale": 4,
        "channels": 3,
        "layout": "NHWC",
        "default": True
    },
    "esrgan-x4-gpu": {
        "key": "esrgan-x4-gpu",
        "label": "ESRGAN x4 (FP16, GPU)",
        "filename": "ESRGAN_fp16.onnx",
        "tile_size": 50,
        "scale": 4,
        "channels": 3,
        "layout": "NHWC",
        "default": False
    }
}


def get_default_model():
    """Get the default model configuration."""
    for m in MODELS.values():
        if m.get("default"):
            return m
    return None


def get_model(key: str):
    """Get model configuration by key."""
    return MODELS.get(key)
