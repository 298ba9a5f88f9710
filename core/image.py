"""
PixelUpia SR - Raster Image
============================
RGBA pixel container shared by the tiling engine and the pipeline, plus the
PIL conversions and the anisotropic resample used by SIMPLE mode.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union

import numpy as np
from PIL import Image, ImageOps


@dataclass
class RasterImage:
    """
    8-bit RGBA image, row-major, top-left origin.

    Attributes:
        data: Pixel buffer (H, W, 4) uint8 RGBA
    """
    data: np.ndarray

    def __post_init__(self):
        if self.data.ndim != 3 or self.data.shape[2] != 4:
            raise ValueError(f"RasterImage expects (H, W, 4) RGBA data, got {self.data.shape}")
        if self.data.dtype != np.uint8:
            raise ValueError(f"RasterImage expects uint8 data, got {self.data.dtype}")

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def __repr__(self) -> str:
        return f"RasterImage(size={self.width}×{self.height})"

    @classmethod
    def blank(cls, width: int, height: int) -> "RasterImage":
        """Create a fully transparent image."""
        return cls(np.zeros((height, width, 4), dtype=np.uint8))

    @classmethod
    def from_rgb(cls, rgb: np.ndarray) -> "RasterImage":
        """
        Wrap an (H, W, 3) uint8 RGB array, adding an opaque alpha channel.

        Args:
            rgb: RGB pixel array

        Returns:
            RasterImage with alpha = 255
        """
        h, w, _ = rgb.shape
        data = np.empty((h, w, 4), dtype=np.uint8)
        data[:, :, :3] = rgb
        data[:, :, 3] = 255
        return cls(data)

    @classmethod
    def from_pil(cls, image: Image.Image) -> "RasterImage":
        """Convert a PIL image of any mode to RGBA."""
        if image.mode != 'RGBA':
            image = image.convert('RGBA')
        return cls(np.array(image, dtype=np.uint8))

    def to_pil(self) -> Image.Image:
        return Image.fromarray(self.data)

    def rgb(self) -> np.ndarray:
        """Return a copy of the RGB planes, dropping alpha."""
        return self.data[:, :, :3].copy()


def load_image(path: Union[str, Path]) -> RasterImage:
    """
    Decode an image file into a RasterImage.

    EXIF orientation is applied so the pixels match what viewers show.

    Args:
        path: Path to input image

    Returns:
        Decoded RGBA image
    """
    with Image.open(path) as src:
        oriented = ImageOps.exif_transpose(src)
        return RasterImage.from_pil(oriented)


def save_image(image: RasterImage, path: Union[str, Path], jpeg_quality: int = 95) -> Path:
    """
    Write an image, choosing the format from the file suffix.

    JPEG output drops alpha; every other format keeps RGBA.

    Args:
        image: Image to write
        path: Output path (.jpg/.jpeg/.png/.webp)
        jpeg_quality: JPEG quality (0-100)

    Returns:
        The output path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    pil_image = image.to_pil()
    if path.suffix.lower() in ('.jpg', '.jpeg'):
        pil_image.convert('RGB').save(path, 'JPEG', quality=jpeg_quality)
    else:
        pil_image.save(path)
    return path


def resample(image: RasterImage, width: int, height: int) -> RasterImage:
    """
    Resize to an exact size with independent horizontal and vertical factors.

    Aspect ratio is not preserved: the image is stretched or squashed to fill
    the target, with bilinear filtering.

    Args:
        image: Source image
        width: Target width
        height: Target height

    Returns:
        Resized image
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Resample target must be positive, got {width}×{height}")
    if image.size == (width, height):
        return RasterImage(image.data.copy())
    resized = image.to_pil().resize((width, height), Image.Resampling.BILINEAR)
    return RasterImage.from_pil(resized)
