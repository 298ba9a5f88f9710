"""
Shared fixtures: synthetic images and stub inference functions
"""

import numpy as np
import pytest

from core.image import RasterImage


def make_image(width, height, seed=0):
    """Random RGBA image with non-opaque alpha."""
    rng = np.random.default_rng(seed)
    return RasterImage(rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8))


def make_nearest_infer(tile_size, scale):
    """Stub model: nearest-neighbour replication of the input tile."""
    def infer(tensor):
        pixels = np.asarray(tensor, dtype=np.float32).reshape(tile_size, tile_size, 3)
        upscaled = pixels.repeat(scale, axis=0).repeat(scale, axis=1)
        return upscaled.reshape(-1)
    return infer


def nearest_upscale(image, scale):
    """Reference nearest-neighbour upscale with opaque alpha."""
    rgb = image.data[:, :, :3].repeat(scale, axis=0).repeat(scale, axis=1)
    expected = np.full((rgb.shape[0], rgb.shape[1], 4), 255, dtype=np.uint8)
    expected[:, :, :3] = rgb
    return expected


@pytest.fixture
def nearest_infer():
    """Nearest-neighbour stub for the default 50px / 4x contract."""
    return make_nearest_infer(50, 4)
