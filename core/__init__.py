"""PixelUpia SR - Core Tiling and Enhancement Module"""

from .errors import (
    EnhancementError,
    InferenceError,
    InvalidInputError,
    JobCancelledError,
    ResourceExhaustedError,
)
from .image import RasterImage, load_image, resample, save_image
from .tile_engine import (
    CancellationToken,
    TileCoordinate,
    TileEngine,
    TileGrid,
    TileRect,
    TileStep,
    TileUpscaleRun,
    decode_tile,
    encode_tile,
)
from .pipeline import (
    EnhanceMode,
    EnhancementJob,
    EnhancementPipeline,
    JobStatus,
    PipelineConfig,
    ResizeStage,
    TileUpscaleStage,
    process_image_sequence,
    process_single_image,
)

__all__ = [
    'EnhancementError',
    'InferenceError',
    'InvalidInputError',
    'JobCancelledError',
    'ResourceExhaustedError',
    'RasterImage',
    'load_image',
    'resample',
    'save_image',
    'CancellationToken',
    'TileCoordinate',
    'TileEngine',
    'TileGrid',
    'TileRect',
    'TileStep',
    'TileUpscaleRun',
    'decode_tile',
    'encode_tile',
    'EnhanceMode',
    'EnhancementJob',
    'EnhancementPipeline',
    'JobStatus',
    'PipelineConfig',
    'ResizeStage',
    'TileUpscaleStage',
    'process_image_sequence',
    'process_single_image',
]
__version__ = '1.0.0'
