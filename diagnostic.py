"""
Quick diagnostic script to identify inference setup issues.
"""
import sys
from pathlib import Path

print("="*60)
print("PIXELUPIA SR - DIAGNOSTIC")
print("="*60)

# Test 1: Check Python version
print(f"\n[1] Python Version: {sys.version}")
if sys.version_info < (3, 9):
    print("   ❌ ERROR: Python 3.9+ required")
    sys.exit(1)
print("   ✅ OK")

# Test 2: Check critical imports
print("\n[2] Testing Core Dependencies...")
try:
    import numpy
    print(f"   ✅ NumPy {numpy.__version__}")
except ImportError as e:
    print(f"   ❌ NumPy: {e}")

try:
    import PIL
    print(f"   ✅ Pillow {PIL.__version__}")
except ImportError as e:
    print(f"   ❌ Pillow: {e}")

try:
    import fastapi
    print(f"   ✅ FastAPI {fastapi.__version__}")
except ImportError as e:
    print(f"   ❌ FastAPI: {e}")

# Test 3: Check inference backend
print("\n[3] Testing AI Dependencies...")
default = None
try:
    from runtime.ai.model_registry import MODELS, get_default_model
    print(f"   ✅ Model Registry ({len(MODELS)} models)")
    default = get_default_model()
    if default:
        print(f"   ✅ Default Model: {default['label']}")
    else:
        print("   ⚠️  No default model set")
except ImportError as e:
    print(f"   ❌ Model Registry: {e}")

try:
    from runtime.ai.ai_inference import get_device_info
    device_info = get_device_info()
    print(f"   ✅ ONNX Runtime {device_info['onnxruntime_version']}")
    print(f"   ✅ Providers: {', '.join(device_info['providers'])}")
    if device_info.get('gpu_available'):
        print(f"   ✅ GPU: {device_info['gpu_provider']}")
    else:
        print("   ⚠️  CPU Mode (slower)")
except ImportError as e:
    print(f"   ❌ AI Inference: {e}")
except RuntimeError as e:
    print(f"   ⚠️  AI Inference Warning: {e}")

# Test 4: Check model file
print("\n[4] Checking Model File...")
model_path = Path("models") / (default["filename"] if default else "ESRGAN.onnx")
if model_path.exists():
    size_mb = model_path.stat().st_size / (1024 * 1024)
    print(f"   ✅ Model file exists ({size_mb:.1f} MB)")
else:
    print(f"   ❌ Model file NOT FOUND: {model_path.absolute()}")

print("\n" + "="*60)
print("DIAGNOSTIC COMPLETE")
print("="*60)
print("\nIf all tests pass, start the server with:")
print("  python -m uvicorn api.api_server:app --host 127.0.0.1 --port 8000")
