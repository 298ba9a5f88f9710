"""
PixelUpia SR - Enhancement Pipeline
====================================
Mode selection on top of the tile engine.

Supports two modes:
1. FULL:   Tile upscale at native resolution (W×H → W*scale × H*scale)
2. SIMPLE: Resize 320×320 → Tile upscale → Resize 1080×1080

SIMPLE bounds the tile count (and so the inference time) to a constant,
independent of the input resolution. Both resizes ignore the source aspect
ratio; the image is stretched to the square targets.

Each mode is an ordered list of stages; every stage owns a fixed slice of
the overall [0, 1] progress range.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from PIL import Image

from runtime.ai.ai_inference import OnnxInferenceBackend
from runtime.ai.model_registry import get_default_model, get_model

from .errors import EnhancementError, InvalidInputError, JobCancelledError
from .image import RasterImage, load_image, resample, save_image
from .tile_engine import CancellationToken, InferenceFn, ProgressFn, TileEngine


class EnhanceMode(str, Enum):
    """Enhancement modes."""
    FULL = "full"
    SIMPLE = "simple"


class JobStatus(str, Enum):
    """Lifecycle of one enhancement job."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PipelineConfig:
    """Configuration for the enhancement pipeline."""

    def __init__(self):
        # Model contract
        self.tile_size: int = 50
        self.scale: int = 4
        self.channels: int = 3
        self.layout: str = 'NHWC'

        # SIMPLE mode resize targets (width, height)
        self.simple_intermediate_size: Tuple[int, int] = (320, 320)
        self.simple_final_size: Tuple[int, int] = (1080, 1080)

        # Edge tile fill: 'constant' (zeros) or 'edge' (replicate)
        self.padding_mode: str = 'constant'

        # Inference backend
        self.model_path: str = "models/ESRGAN.onnx"
        self.use_gpu: bool = False
        self.num_threads: Optional[int] = None

        # Limits and output
        self.max_output_pixels: Optional[int] = None
        self.jpeg_quality: int = 95

    @classmethod
    def from_model(cls, key: Optional[str] = None, models_dir: str = "models") -> "PipelineConfig":
        """
        Build a configuration from a model registry entry.

        Args:
            key: Registry key (default model if None)
            models_dir: Directory holding the model files
        """
        model = get_model(key) if key else get_default_model()
        if model is None:
            raise ValueError(f"Unknown model: {key}")

        config = cls()
        config.tile_size = model["tile_size"]
        config.scale = model["scale"]
        config.channels = model["channels"]
        config.layout = model.get("layout", "NHWC")
        config.model_path = str(Path(models_dir) / model["filename"])
        return config

    def as_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary."""
        return {
            'tile_size': self.tile_size,
            'scale': self.scale,
            'channels': self.channels,
            'layout': self.layout,
            'simple_intermediate_size': self.simple_intermediate_size,
            'simple_final_size': self.simple_final_size,
            'padding_mode': self.padding_mode,
            'model_path': self.model_path,
            'use_gpu': self.use_gpu,
            'num_threads': self.num_threads,
            'max_output_pixels': self.max_output_pixels,
            'jpeg_quality': self.jpeg_quality,
        }


class PipelineStage:
    """
    One step of an enhancement plan.

    A stage reports its own progress in [0, 1]; the pipeline maps it to
    start + p * span of the overall range.
    """

    name = "stage"

    def __init__(self, start: float, span: float):
        self.start = start
        self.span = span

    def run(
        self,
        image: RasterImage,
        report: ProgressFn,
        cancel_token: Optional[CancellationToken] = None
    ) -> RasterImage:
        raise NotImplementedError


class ResizeStage(PipelineStage):
    """Anisotropic bilinear resize to a fixed size."""

    name = "resize"

    def __init__(self, width: int, height: int, start: float, span: float):
        super().__init__(start, span)
        self.width = width
        self.height = height

    def run(self, image, report, cancel_token=None):
        print(f"[Pipeline] Resize {image.width}×{image.height} → {self.width}×{self.height}")
        resized = resample(image, self.width, self.height)
        report(1.0)
        return resized


class TileUpscaleStage(PipelineStage):
    """Tile engine pass; reports once per tile."""

    name = "tile_upscale"

    def __init__(self, engine: TileEngine, start: float, span: float):
        super().__init__(start, span)
        self.engine = engine

    def run(self, image, report, cancel_token=None):
        print(f"[Pipeline] Tile upscale ({self.engine.scale}×)")
        return self.engine.upscale(image, on_progress=report, cancel_token=cancel_token)


@dataclass
class EnhancementJob:
    """
    State of one enhancement request.

    Progress only moves forward; `result` is set only on completion.
    """
    image: RasterImage
    mode: EnhanceMode
    progress: float = 0.0
    status: JobStatus = JobStatus.IDLE
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    result: Optional[RasterImage] = None
    error: Optional[str] = None
    on_progress: Optional[ProgressFn] = None

    def update_progress(self, value: float):
        if value < self.progress:
            return
        self.progress = value
        if self.on_progress is not None:
            self.on_progress(value)

    def cancel(self):
        self.cancel_token.cancel()


class EnhancementPipeline:
    """
    FULL / SIMPLE enhancement orchestrator.

    The tile engine is the only component that touches the inference
    function; the pipeline only resizes and relays progress.
    """

    def __init__(self, engine: TileEngine, config: Optional[PipelineConfig] = None):
        """
        Initialize pipeline.

        Args:
            engine: Tile engine bound to an inference function
            config: Pipeline configuration (resize targets)
        """
        self.engine = engine
        self.config = config or PipelineConfig()

    @classmethod
    def from_infer(cls, infer: InferenceFn, config: Optional[PipelineConfig] = None) -> "EnhancementPipeline":
        """Build a pipeline around any inference function."""
        config = config or PipelineConfig()
        engine = TileEngine(
            infer,
            tile_size=config.tile_size,
            scale=config.scale,
            channels=config.channels,
            padding_mode=config.padding_mode,
            max_output_pixels=config.max_output_pixels
        )
        return cls(engine, config)

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "EnhancementPipeline":
        """Build a pipeline backed by the ONNX Runtime model in `config.model_path`."""
        backend = OnnxInferenceBackend(
            model_path=config.model_path,
            tile_size=config.tile_size,
            scale=config.scale,
            channels=config.channels,
            layout=config.layout,
            prefer_gpu=config.use_gpu,
            num_threads=config.num_threads
        )
        print(f"[Pipeline] ESRGAN upscaling enabled ({config.scale}×)")
        return cls.from_infer(backend, config)

    def stages_for(self, mode: EnhanceMode) -> List[PipelineStage]:
        """Return the ordered stage plan of a mode."""
        mode = EnhanceMode(mode)
        if mode == EnhanceMode.FULL:
            return [TileUpscaleStage(self.engine, start=0.0, span=1.0)]

        mid_w, mid_h = self.config.simple_intermediate_size
        final_w, final_h = self.config.simple_final_size
        return [
            ResizeStage(mid_w, mid_h, start=0.0, span=0.2),
            TileUpscaleStage(self.engine, start=0.2, span=0.6),
            ResizeStage(final_w, final_h, start=0.8, span=0.2),
        ]

    def enhance(
        self,
        image: RasterImage,
        mode: EnhanceMode = EnhanceMode.FULL,
        on_progress: Optional[ProgressFn] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> RasterImage:
        """
        Enhance an image.

        Args:
            image: Source image
            mode: FULL or SIMPLE
            on_progress: Receives non-decreasing progress in [0, 1], ending at 1.0
            cancel_token: Optional cooperative cancellation flag

        Returns:
            W*scale × H*scale image (FULL) or the configured final size (SIMPLE)
        """
        if image.width <= 0 or image.height <= 0:
            raise InvalidInputError(f"Image must have positive size, got {image.width}×{image.height}")

        stages = self.stages_for(mode)
        last = [0.0]

        def emit(value: float):
            value = min(value, 1.0)
            if value < last[0]:
                return
            last[0] = value
            if on_progress is not None:
                on_progress(value)

        print(f"[Pipeline] Mode: {EnhanceMode(mode).value}, input {image.width}×{image.height}")

        current = image
        for number, stage in enumerate(stages, start=1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            print(f"[Pipeline] Stage {number}/{len(stages)}: {stage.name}")
            current = stage.run(
                current,
                lambda p, s=stage: emit(s.start + p * s.span),
                cancel_token
            )

        if last[0] < 1.0:
            emit(1.0)

        print(f"[Pipeline] Output: {current.width}×{current.height}")
        return current

    def run_job(self, job: EnhancementJob) -> RasterImage:
        """
        Run a job to a terminal state.

        The job records COMPLETED, CANCELLED or FAILED; errors are re-raised.

        Raises:
            InvalidInputError: If the job is not IDLE
        """
        if job.status != JobStatus.IDLE:
            raise InvalidInputError(f"Job already {job.status.value}")
        job.status = JobStatus.RUNNING
        try:
            result = self.enhance(
                job.image,
                job.mode,
                on_progress=job.update_progress,
                cancel_token=job.cancel_token
            )
        except JobCancelledError as e:
            job.status = JobStatus.CANCELLED
            job.error = str(e)
            raise
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error = str(e)
            raise

        job.result = result
        job.status = JobStatus.COMPLETED
        return result


# ==============================================================================
# Convenience Functions
# ==============================================================================

def process_single_image(
    input_path: str,
    output_path: str,
    config: PipelineConfig,
    mode: EnhanceMode = EnhanceMode.FULL,
    pipeline: Optional[EnhancementPipeline] = None,
    on_progress: Optional[ProgressFn] = None
) -> Path:
    """
    Enhance a single image file.

    Args:
        input_path: Path to input image
        output_path: Path to save output image
        config: Pipeline configuration
        mode: FULL or SIMPLE
        pipeline: Existing pipeline to reuse (built from config if None)
        on_progress: Optional progress callback

    Returns:
        Path of the written image
    """
    image = load_image(input_path)

    if pipeline is None:
        pipeline = EnhancementPipeline.from_config(config)

    output = pipeline.enhance(image, mode, on_progress=on_progress)

    saved = save_image(output, output_path, jpeg_quality=config.jpeg_quality)
    print(f"[Success] Saved output to: {saved}")
    return saved


def process_image_sequence(
    input_dir: str,
    output_dir: str,
    config: PipelineConfig,
    mode: EnhanceMode = EnhanceMode.FULL,
    pattern: str = "*.png",
    pipeline: Optional[EnhancementPipeline] = None,
    on_file: Optional[Callable[[int, int, Path], None]] = None
) -> List[Path]:
    """
    Enhance every image in a directory matching `pattern`.

    Files keep their names in `output_dir`. A file that fails is reported
    and skipped; the rest of the sequence continues.

    Args:
        input_dir: Directory containing input images
        output_dir: Directory to save output images
        config: Pipeline configuration
        mode: FULL or SIMPLE
        pattern: Glob pattern for input files
        pipeline: Existing pipeline to reuse (built from config if None)
        on_file: Called with (index, total, path) before each file

    Returns:
        Paths of the written images
    """
    input_path = Path(input_dir)
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    input_files = sorted(input_path.glob(pattern))

    if not input_files:
        print(f"[Error] No files found matching {pattern} in {input_dir}")
        return []

    print(f"[Sequence] Processing {len(input_files)} images")

    if pipeline is None:
        pipeline = EnhancementPipeline.from_config(config)

    written = []
    for i, input_file in enumerate(input_files):
        print(f"\n[Image {i+1}/{len(input_files)}] {input_file.name}")
        if on_file is not None:
            on_file(i + 1, len(input_files), input_file)

        try:
            image = load_image(input_file)
            output = pipeline.enhance(image, mode)
        except (EnhancementError, Image.DecompressionBombError, OSError) as e:
            print(f"[Error] {input_file.name}: {e}")
            continue

        written.append(save_image(output, output_path / input_file.name, jpeg_quality=config.jpeg_quality))

    print(f"\n[Success] Processed {len(written)}/{len(input_files)} images")
    print(f"[Output] Saved to: {output_dir}")
    return written
