"""
PixelUpia SR API Server
========================
FastAPI adapter layer around the enhancement pipeline.

This module provides HTTP endpoints to:
1. Upload images
2. Trigger FULL or SIMPLE enhancement
3. Poll job status and progress
4. Cancel running jobs
5. Download the enhanced JPEG

All jobs share one ONNX Runtime session. Its tile calls are serialized, so
concurrent jobs interleave tile by tile instead of racing on the model's
tensors.
"""

import os
import uuid
from pathlib import Path
from threading import Lock
from typing import Optional

from fastapi import FastAPI, File, UploadFile, HTTPException, BackgroundTasks
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from PIL import Image, UnidentifiedImageError

from core.errors import JobCancelledError
from core.image import load_image, save_image
from core.pipeline import EnhanceMode, EnhancementPipeline, PipelineConfig
from runtime.ai.ai_inference import OnnxInferenceBackend, SerializedInference

from .schemas import (
    UploadResponse, ProcessRequest, StatusResponse, ErrorResponse, JobState
)
from .job_manager import JobManager, TERMINAL_STATES

# === Configuration ===
API_DIR = Path(__file__).parent
STORAGE_DIR = Path(os.environ.get("PIXELUPIA_STORAGE_DIR", API_DIR / "storage"))
UPLOADS_DIR = STORAGE_DIR / "uploads"
OUTPUTS_DIR = STORAGE_DIR / "outputs"

MAX_FILE_SIZE = 64 * 1024 * 1024  # 64MB
ALLOWED_MIME_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}

# === Initialize App ===
app = FastAPI(
    title="PixelUpia SR API",
    description="ESRGAN tile-based image enhancement",
    version="1.0.0"
)

# Enable CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for local development
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize job manager
job_manager = JobManager(UPLOADS_DIR, OUTPUTS_DIR)

_pipeline: Optional[EnhancementPipeline] = None
_pipeline_lock = Lock()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


# === Helper Functions ===

def load_config() -> PipelineConfig:
    """Pipeline configuration with environment overrides."""
    config = PipelineConfig.from_model(os.environ.get("PIXELUPIA_MODEL"))
    config.model_path = os.environ.get("PIXELUPIA_MODEL_PATH", config.model_path)
    config.use_gpu = os.environ.get("PIXELUPIA_USE_GPU", "0").lower() in ("1", "true", "yes")
    return config


def get_pipeline() -> EnhancementPipeline:
    """Build the shared pipeline on first use."""
    global _pipeline
    if _pipeline is not None:
        return _pipeline
    with _pipeline_lock:
        if _pipeline is None:
            config = load_config()
            backend = OnnxInferenceBackend(
                model_path=config.model_path,
                tile_size=config.tile_size,
                scale=config.scale,
                channels=config.channels,
                layout=config.layout,
                prefer_gpu=config.use_gpu,
                num_threads=config.num_threads
            )
            _pipeline = EnhancementPipeline.from_infer(SerializedInference(backend), config)
        return _pipeline


def validate_file(file: UploadFile) -> None:
    """Validate uploaded file type."""
    if file.content_type not in ALLOWED_MIME_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type: {file.content_type}. Allowed: JPEG, PNG, WEBP"
        )


def process_job_background(job_id: str) -> None:
    """
    Background task running one enhancement job.

    Runs in the server's worker thread pool; progress is pushed into the job
    manager once per tile.
    """
    job = job_manager.get_job(job_id)
    if not job or job.state != JobState.QUEUED:
        return

    try:
        job_manager.update_state(job_id, JobState.PROCESSING, progress=0.0)

        image = load_image(job.input_path)
        pipeline = get_pipeline()

        result = pipeline.enhance(
            image,
            EnhanceMode(job.mode),
            on_progress=lambda p: job_manager.update_progress(job_id, p),
            cancel_token=job.cancel_token
        )

        output_path = job_manager.outputs_dir / f"{job_id}_enhanced.jpg"
        save_image(result, output_path, jpeg_quality=pipeline.config.jpeg_quality)

        job_manager.set_output(job_id, output_path)
        job_manager.update_state(job_id, JobState.COMPLETED, progress=1.0)

    except JobCancelledError as e:
        job_manager.update_state(job_id, JobState.CANCELLED, error=str(e))
    except Exception as e:
        # Mark as failed with error message
        job_manager.update_state(job_id, JobState.FAILED, error=str(e))


def _status(job) -> StatusResponse:
    return StatusResponse(
        job_id=job.job_id,
        state=job.state,
        mode=job.mode,
        progress=job.progress,
        error=job.error
    )


# === API Endpoints ===

@app.post(
    "/api/upload",
    response_model=UploadResponse,
    responses={**ERROR_RESPONSES, 413: {"model": ErrorResponse}}
)
async def upload_file(file: UploadFile = File(...)):
    """
    Upload an image for enhancement.

    Accepts: JPEG, PNG, WEBP
    Max size: 64MB

    Returns job_id for tracking.
    """
    validate_file(file)

    ext = ALLOWED_MIME_TYPES[file.content_type]
    job_id = str(uuid.uuid4())
    file_path = job_manager.uploads_dir / f"{job_id}{ext}"
    job_manager.uploads_dir.mkdir(parents=True, exist_ok=True)

    # Save file with size check
    total_size = 0
    with open(file_path, "wb") as buffer:
        while chunk := await file.read(1024 * 1024):  # 1MB chunks
            total_size += len(chunk)
            if total_size > MAX_FILE_SIZE:
                buffer.close()
                file_path.unlink()  # Delete partial file
                raise HTTPException(
                    status_code=413,
                    detail="File too large. Maximum size: 64MB"
                )
            buffer.write(chunk)

    try:
        with Image.open(file_path) as img:
            width, height = img.size
    except Image.DecompressionBombError:
        file_path.unlink()
        raise HTTPException(status_code=400, detail="Image exceeds the pixel limit")
    except (UnidentifiedImageError, OSError):
        file_path.unlink()
        raise HTTPException(status_code=400, detail="Unsupported or corrupted image")

    if width == 0 or height == 0:
        file_path.unlink()
        raise HTTPException(status_code=400, detail="Image has zero area")

    job = job_manager.create_job(file.filename, file_path, job_id=job_id)

    return UploadResponse(
        job_id=job.job_id,
        filename=file.filename,
        width=width,
        height=height
    )


@app.post("/api/process", response_model=StatusResponse, responses=ERROR_RESPONSES)
async def process_file(request: ProcessRequest, background_tasks: BackgroundTasks):
    """
    Start enhancing an uploaded image.

    The processing runs in the background (non-blocking).
    Poll /api/status/{job_id} to check progress.
    """
    job = job_manager.get_job(request.job_id)

    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    if job.state not in [JobState.UPLOADED, JobState.FAILED, JobState.CANCELLED]:
        raise HTTPException(
            status_code=400,
            detail=f"Job cannot be processed in state: {job.state.value}"
        )

    job_manager.queue_job(request.job_id, request.mode.value)

    background_tasks.add_task(process_job_background, request.job_id)

    return _status(job)


@app.get("/api/status/{job_id}", response_model=StatusResponse, responses=ERROR_RESPONSES)
async def get_status(job_id: str):
    """
    Get the current status of a job.

    States: uploaded, queued, processing, completed, failed, cancelled
    Progress: 0.0-1.0
    """
    job = job_manager.get_job(job_id)

    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    return _status(job)


@app.post("/api/cancel/{job_id}", response_model=StatusResponse, responses=ERROR_RESPONSES)
async def cancel_job(job_id: str):
    """
    Cancel a queued or running job.

    A running job stops before its next tile; no partial image is kept.
    """
    job = job_manager.get_job(job_id)

    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    if job.state in TERMINAL_STATES:
        raise HTTPException(
            status_code=400,
            detail=f"Job already finished: {job.state.value}"
        )

    job_manager.cancel_job(job_id)
    return _status(job)


@app.get("/api/result/{job_id}", responses=ERROR_RESPONSES)
async def get_result(job_id: str):
    """
    Download the enhanced image (JPEG).

    Only available after job state is 'completed'.
    """
    job = job_manager.get_job(job_id)

    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    if job.state != JobState.COMPLETED:
        raise HTTPException(
            status_code=400,
            detail=f"Result not ready. Current state: {job.state.value}"
        )

    if not job.output_path or not job.output_path.exists():
        raise HTTPException(status_code=404, detail="Result file not found")

    stem = Path(job.filename or "image").stem
    return FileResponse(
        path=job.output_path,
        filename=f"enhanced_{stem}.jpg",
        media_type="image/jpeg"
    )


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "PixelUpia SR API",
        "model_loaded": _pipeline is not None,
    }


# === Run Server ===

if __name__ == "__main__":
    import uvicorn

    print("=" * 60)
    print("PixelUpia SR API Server")
    print("=" * 60)
    print(f"Uploads directory: {UPLOADS_DIR}")
    print(f"Outputs directory: {OUTPUTS_DIR}")
    print("=" * 60)

    uvicorn.run(
        "api.api_server:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
