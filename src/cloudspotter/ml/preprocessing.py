"""Image preprocessing: raw bytes to a normalized NHWC model input.

The classifier expects a (1, 224, 224, 3) float32 tensor with values scaled
to [0, 1]. Resizing is nearest-neighbor and ignores aspect ratio, so every
decodable image maps to exactly the same shape.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, UnidentifiedImageError

from cloudspotter.errors import DecodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

DEFAULT_SIZE = 224
DEFAULT_MAX_PIXELS = 16_777_216


def decode_image(image_bytes: bytes, *, max_pixels: int = DEFAULT_MAX_PIXELS) -> Image.Image:
    """Decode raw image bytes into an RGB Pillow image.

    Raises:
        DecodeError: If the bytes are not a supported image, are truncated,
            or exceed ``max_pixels``.
    """
    if not image_bytes:
        raise DecodeError("Image payload is empty")

    try:
        image = Image.open(io.BytesIO(image_bytes))
        width, height = image.size
        if width * height > max_pixels:
            raise DecodeError(f"Image is too large: {width}x{height} exceeds {max_pixels} pixels")
        return image.convert("RGB")
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"Could not decode image: {exc}") from exc


def to_tensor(image: Image.Image, *, size: int = DEFAULT_SIZE) -> NDArray[np.float32]:
    """Resize an RGB image and convert it to a (1, size, size, 3) float tensor in [0, 1]."""
    resized = image.resize((size, size), Image.Resampling.NEAREST)
    pixels = np.asarray(resized, dtype=np.uint8)
    batch = np.expand_dims(pixels, axis=0)
    return batch.astype(np.float32) / 255.0


def preprocess(
    image_bytes: bytes,
    *,
    size: int = DEFAULT_SIZE,
    max_pixels: int = DEFAULT_MAX_PIXELS,
) -> NDArray[np.float32]:
    """Decode and normalize image bytes for the classifier."""
    image = decode_image(image_bytes, max_pixels=max_pixels)
    tensor = to_tensor(image, size=size)
    logger.debug("Preprocessed %dx%d image to %s", image.width, image.height, tensor.shape)
    return tensor
