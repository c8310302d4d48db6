#!/usr/bin/env python3
"""
Image Source Module

Decodes user-selected image files into immutable ImageBuffer objects. This is
the only place image files are opened; recognition backends only ever see a
decoded, read-only buffer.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np
from PIL import Image

from .exceptions import ImageDecodeError

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.bmp', '.tiff', '.tif', '.webp', '.gif'}

# Pillow modes that are converted before buffering, everything else becomes RGB
_MODE_CONVERSIONS = {
    'L': 'L',
    'RGB': 'RGB',
    'RGBA': 'RGBA',
    '1': 'L',
    'I;16': 'L',
    'LA': 'RGBA',
    'PA': 'RGBA',
}

_CHANNELS_TO_MODE = {1: 'L', 3: 'RGB', 4: 'RGBA'}


@dataclass(frozen=True)
class ImageBuffer:
    """
    Decoded raster image.

    Attributes:
        pixels: uint8 array shaped (height, width) for "L" or
            (height, width, channels) for "RGB"/"RGBA". Never writable.
        mode: Color format of the pixel data.
        source: File the image was decoded from, if any.
    """

    pixels: np.ndarray
    mode: str
    source: Optional[Path] = None

    def __post_init__(self):
        pixels = np.asarray(self.pixels)
        if pixels.dtype != np.uint8:
            raise ValueError(f"ImageBuffer requires uint8 pixels, got {pixels.dtype}")
        if pixels.ndim == 2:
            expected = 'L'
        elif pixels.ndim == 3 and pixels.shape[2] in _CHANNELS_TO_MODE:
            expected = _CHANNELS_TO_MODE[pixels.shape[2]]
        else:
            raise ValueError(f"Unsupported pixel array shape: {pixels.shape}")
        if self.mode != expected:
            raise ValueError(f"Mode {self.mode!r} does not match pixel shape {pixels.shape}")
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise ValueError("ImageBuffer must not be empty")

        if pixels.flags.writeable or pixels.base is not None:
            pixels = pixels.copy()
            pixels.flags.writeable = False
        object.__setattr__(self, 'pixels', pixels)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self):
        return self.width, self.height

    @classmethod
    def from_pil(cls, image: Image.Image, source: Optional[Path] = None) -> "ImageBuffer":
        """Build a buffer from a Pillow image, normalizing exotic modes."""
        target_mode = _MODE_CONVERSIONS.get(image.mode, 'RGB')
        if image.mode != target_mode:
            image = image.convert(target_mode)
        return cls(pixels=np.array(image, dtype=np.uint8), mode=target_mode, source=source)

    def to_pil(self) -> Image.Image:
        return Image.fromarray(np.ascontiguousarray(self.pixels))


def load_image(path: Union[str, Path]) -> ImageBuffer:
    """
    Decode an image file into an ImageBuffer.

    Args:
        path: Image file path

    Returns:
        Immutable decoded buffer. Animated images yield their first frame.

    Raises:
        ImageDecodeError: If the file is missing, has an unsupported extension,
            or cannot be decoded
    """
    path = Path(path)
    if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
        raise ImageDecodeError(
            file_path=str(path),
            operation="format check",
            original_error=ValueError(f"Unsupported file type: {path.suffix or '(none)'}")
        )

    try:
        with Image.open(path) as img:
            img.load()
            buffer = ImageBuffer.from_pil(img, source=path)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageDecodeError(file_path=str(path), operation="decoding", original_error=e) from e

    logger.debug(f"Decoded {path.name}: {buffer.width}x{buffer.height} {buffer.mode}")
    return buffer
