"""
PixelUpia SR - Tile Engine
===========================
Fixed-size tile inference for super-resolution models that cannot consume a
whole image at once.

The engine splits an image into a grid of tile_size × tile_size windows,
runs each window through the inference capability, crops the padded area off
edge tiles and pastes every block at its scaled position. Tiles never
overlap, so stitching is a direct copy with no blending.

Tensor contract with the inference capability:
    input:  float32[tile_size * tile_size * 3], R,G,B per pixel, raw 0-255
    output: float32[(tile_size * scale)^2 * 3], same layout, raw 0-255
"""

import math
import threading
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

import numpy as np

from .errors import (
    InferenceError,
    InvalidInputError,
    JobCancelledError,
    ResourceExhaustedError,
)
from .image import RasterImage

InferenceFn = Callable[[np.ndarray], np.ndarray]
ProgressFn = Callable[[float], None]

PADDING_MODES = ('constant', 'edge')


class CancellationToken:
    """
    Cooperative cancellation flag, checked once per tile.

    Safe to set from another thread while a job is running.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise JobCancelledError("Enhancement job was cancelled")


@dataclass(frozen=True)
class TileCoordinate:
    """Grid indices of a tile (column gx, row gy)."""
    gx: int
    gy: int


@dataclass(frozen=True)
class TileRect:
    """In-bounds source rectangle of a tile, in source pixels."""
    x: int
    y: int
    w: int
    h: int


@dataclass(frozen=True)
class TileGrid:
    """
    Row/column partition of a width × height image into tile_size squares.

    The last column and row may be partial; they are still fed to the model
    as full tiles and cropped afterwards.
    """
    width: int
    height: int
    tile_size: int

    @property
    def tiles_x(self) -> int:
        return math.ceil(self.width / self.tile_size)

    @property
    def tiles_y(self) -> int:
        return math.ceil(self.height / self.tile_size)

    @property
    def total_tiles(self) -> int:
        return self.tiles_x * self.tiles_y

    def source_rect(self, coord: TileCoordinate) -> TileRect:
        x = coord.gx * self.tile_size
        y = coord.gy * self.tile_size
        return TileRect(
            x=x,
            y=y,
            w=min(self.tile_size, self.width - x),
            h=min(self.tile_size, self.height - y),
        )

    def coordinates(self) -> Iterator[TileCoordinate]:
        """Yield tile coordinates in row-major order (y outer, x inner)."""
        for gy in range(self.tiles_y):
            for gx in range(self.tiles_x):
                yield TileCoordinate(gx=gx, gy=gy)


@dataclass(frozen=True)
class TileStep:
    """Progress record emitted after each tile is composited."""
    index: int
    total: int
    coordinate: TileCoordinate

    @property
    def fraction(self) -> float:
        return self.index / self.total


def encode_tile(window: np.ndarray) -> np.ndarray:
    """
    Convert an RGBA tile window to the model's input tensor.

    Args:
        window: Tile pixels (T, T, 4) uint8 RGBA

    Returns:
        Flat float32 tensor of length T*T*3, raw 0-255 intensities, alpha dropped
    """
    return window[:, :, :3].astype(np.float32).reshape(-1)


def decode_tile(tensor: np.ndarray, size: int, channels: int = 3) -> np.ndarray:
    """
    Convert a model output tensor to an opaque RGBA pixel block.

    Values are rounded to the nearest integer (ties to even) and clamped
    to [0, 255]; NaN maps to 0.

    Args:
        tensor: Flat float tensor of length size*size*channels
        size: Output block edge length (tile_size * scale)
        channels: Colour channels in the tensor

    Returns:
        Pixel block (size, size, 4) uint8 with alpha = 255
    """
    values = np.asarray(tensor, dtype=np.float32).reshape(size, size, channels)
    values = np.nan_to_num(values, nan=0.0)
    rgb = np.clip(np.rint(values), 0, 255).astype(np.uint8)

    block = np.empty((size, size, 4), dtype=np.uint8)
    block[:, :, :3] = rgb
    block[:, :, 3] = 255
    return block


class TileEngine:
    """
    Split → infer → crop → stitch driver around a fixed-shape model.

    The engine is the only caller of the inference function. Tiles are
    processed sequentially on the calling thread.
    """

    def __init__(
        self,
        infer: InferenceFn,
        tile_size: int = 50,
        scale: int = 4,
        channels: int = 3,
        padding_mode: str = 'constant',
        max_output_pixels: Optional[int] = None
    ):
        """
        Initialize the tile engine.

        Args:
            infer: Inference function, input tensor → output tensor
            tile_size: Model input edge length in pixels (default 50)
            scale: Model upscaling factor (default 4)
            channels: Colour channels per pixel in the tensors (RGB only)
            padding_mode: Fill for the out-of-bounds part of edge tiles,
                'constant' (zeros) or 'edge' (replicate last row/column)
            max_output_pixels: Reject jobs whose output would exceed this
        """
        if tile_size <= 0:
            raise InvalidInputError(f"tile_size must be positive: {tile_size}")
        if scale < 1:
            raise InvalidInputError(f"scale must be >= 1: {scale}")
        if channels != 3:
            raise InvalidInputError(f"Only RGB tensors are supported (channels=3), got {channels}")
        if padding_mode not in PADDING_MODES:
            raise InvalidInputError(f"Invalid padding mode: {padding_mode}")

        self.infer = infer
        self.tile_size = tile_size
        self.scale = scale
        self.channels = channels
        self.padding_mode = padding_mode
        self.max_output_pixels = max_output_pixels

    @property
    def input_length(self) -> int:
        return self.tile_size * self.tile_size * self.channels

    @property
    def output_length(self) -> int:
        return (self.tile_size * self.scale) ** 2 * self.channels

    def grid_for(self, image: RasterImage) -> TileGrid:
        return TileGrid(width=image.width, height=image.height, tile_size=self.tile_size)

    def run(
        self,
        image: RasterImage,
        cancel_token: Optional[CancellationToken] = None
    ) -> "TileUpscaleRun":
        """
        Start a pull-style upscale.

        Iterate the returned run to process tiles one at a time; read
        `.output` once iteration completes.

        Raises:
            InvalidInputError: If the image has zero area
        """
        if image.width <= 0 or image.height <= 0:
            raise InvalidInputError(f"Image must have positive size, got {image.width}×{image.height}")
        return TileUpscaleRun(self, image, cancel_token)

    def upscale(
        self,
        image: RasterImage,
        on_progress: Optional[ProgressFn] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> RasterImage:
        """
        Upscale an image tile by tile.

        Args:
            image: Source image
            on_progress: Called once per tile with processed/total in (0, 1]
            cancel_token: Optional cooperative cancellation flag

        Returns:
            Image of exactly (width * scale) × (height * scale)

        Raises:
            InvalidInputError: Zero-area image
            InferenceError: The inference function failed; no output is returned
            ResourceExhaustedError: The output image cannot be allocated
            JobCancelledError: The token was cancelled between tiles
        """
        tile_run = self.run(image, cancel_token)
        grid = tile_run.grid

        print(f"[TileEngine] Processing image: {image.width}×{image.height}")
        print(f"[TileEngine] Grid: {grid.tiles_x}×{grid.tiles_y} ({grid.total_tiles} tiles of {self.tile_size}px)")

        for step in tile_run:
            if step.index % 10 == 0 or step.index == step.total:
                print(f"[TileEngine] Processing tile {step.index}/{step.total}")
            if on_progress is not None:
                on_progress(step.fraction)

        output = tile_run.output
        print(f"[TileEngine] Output: {output.width}×{output.height}")
        return output

    def _allocate_output(self, image: RasterImage) -> np.ndarray:
        out_w = image.width * self.scale
        out_h = image.height * self.scale
        if self.max_output_pixels is not None and out_w * out_h > self.max_output_pixels:
            raise ResourceExhaustedError(
                f"Output {out_w}×{out_h} exceeds the limit of {self.max_output_pixels} pixels"
            )
        try:
            return np.zeros((out_h, out_w, 4), dtype=np.uint8)
        except MemoryError as e:
            raise ResourceExhaustedError(f"Cannot allocate {out_w}×{out_h} output image") from e

    def _fill_window(self, window: np.ndarray, image: RasterImage, rect: TileRect):
        """Copy the in-bounds part of a tile into the reusable window and pad the rest."""
        window[:rect.h, :rect.w] = image.data[rect.y:rect.y + rect.h, rect.x:rect.x + rect.w]

        if rect.w == self.tile_size and rect.h == self.tile_size:
            return

        if self.padding_mode == 'edge':
            window[:rect.h, rect.w:] = window[:rect.h, rect.w - 1:rect.w]
            window[rect.h:, :] = window[rect.h - 1:rect.h, :]
        else:
            window[:rect.h, rect.w:] = 0
            window[rect.h:, :] = 0

    def _infer(self, tensor: np.ndarray, coord: TileCoordinate) -> np.ndarray:
        try:
            result = self.infer(tensor)
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError(f"Inference failed on tile ({coord.gx}, {coord.gy}): {e}") from e

        if result is None:
            raise InferenceError(f"Inference returned no output for tile ({coord.gx}, {coord.gy})")
        result = np.asarray(result, dtype=np.float32).reshape(-1)
        if result.size != self.output_length:
            raise InferenceError(
                f"Inference returned {result.size} values for tile ({coord.gx}, {coord.gy}), "
                f"expected {self.output_length}"
            )
        return result


class TileUpscaleRun:
    """
    One in-flight upscale, consumed by iteration.

    Each iteration step processes exactly one tile and yields a TileStep.
    The stitched image is only reachable through `output` after the last
    tile; if a tile fails, the partial canvas is dropped with the exception.
    """

    def __init__(
        self,
        engine: TileEngine,
        image: RasterImage,
        cancel_token: Optional[CancellationToken] = None
    ):
        self.engine = engine
        self.image = image
        self.cancel_token = cancel_token
        self.grid = engine.grid_for(image)
        self._output: Optional[RasterImage] = None
        self._started = False

    def __iter__(self) -> Iterator[TileStep]:
        if self._started:
            raise RuntimeError("A tile run can only be iterated once")
        self._started = True

        engine = self.engine
        grid = self.grid
        scale = engine.scale
        block_size = engine.tile_size * scale
        total = grid.total_tiles

        canvas = engine._allocate_output(self.image)
        window = np.zeros((engine.tile_size, engine.tile_size, 4), dtype=np.uint8)

        for index, coord in enumerate(grid.coordinates(), start=1):
            if self.cancel_token is not None:
                self.cancel_token.raise_if_cancelled()

            rect = grid.source_rect(coord)
            engine._fill_window(window, self.image, rect)

            output_tensor = engine._infer(encode_tile(window), coord)
            block = decode_tile(output_tensor, block_size, engine.channels)

            out_x = rect.x * scale
            out_y = rect.y * scale
            out_w = rect.w * scale
            out_h = rect.h * scale
            canvas[out_y:out_y + out_h, out_x:out_x + out_w] = block[:out_h, :out_w]

            yield TileStep(index=index, total=total, coordinate=coord)

        self._output = RasterImage(canvas)

    @property
    def completed(self) -> bool:
        return self._output is not None

    @property
    def output(self) -> RasterImage:
        if self._output is None:
            raise RuntimeError("Tile run has not completed")
        return self._output
