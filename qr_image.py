# qr_image.py

import io
import logging
import numpy as np
from PIL import Image, UnidentifiedImageError

from qr_errors import ImageLoadError, ImageTooLargeError

"""
This module is the boundary to the general image codec (Pillow):
  - load_image() turns encoded bytes (PNG, JPEG, ...) into a raster image.
  - load_image_file() reads a file and loads it; file errors propagate unchanged.
  - encode_image() writes a raster image back out, used to build test fixtures.

A raster image is a uint8 numpy array, (height, width) for a single channel or
(height, width, 3) for RGB.
"""

MAX_IMAGE_DIMENSION = 16384

# Pillow modes for 16-bit grayscale (PNG, TIFF) and 32-bit integer grayscale.
WIDE_GRAYSCALE_MODES = ("I", "I;16", "I;16B", "I;16L", "I;16N")

def load_image(image_bytes):
    """
    Decode image bytes into a uint8 numpy array.

    Single-channel inputs stay single-channel, with 16-bit and float grayscale scaled
    down to 8 bits; everything else is converted to RGB (alpha is dropped).

    :param image_bytes: Encoded image bytes.
    :return: numpy array of shape (h, w) or (h, w, 3).
    :raises ImageLoadError: If the bytes are not a readable image.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            # The header is parsed by open(); check the size before decoding pixels.
            width, height = img.size
            if max(width, height) > MAX_IMAGE_DIMENSION:
                raise ImageTooLargeError(width, height, MAX_IMAGE_DIMENSION)
            img.load()
            mode = img.mode
            if mode == "L":
                array = np.array(img, dtype=np.uint8)
            elif mode in WIDE_GRAYSCALE_MODES or mode == "F":
                array = _to_luma8(img)
            elif mode in ("1", "LA", "P") and _is_grayscale_palette(img):
                array = np.array(img.convert("L"), dtype=np.uint8)
            else:
                array = np.array(img.convert("RGB"), dtype=np.uint8)
    except ImageLoadError:
        raise
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        logging.error(f"[load_image] Could not read image ({len(image_bytes)} bytes): {e}")
        raise ImageLoadError(str(e)) from e

    logging.debug(f"[load_image] Loaded {array.shape[1]}x{array.shape[0]} image, mode {mode}")
    return array

def _to_luma8(img):
    """
    Scale a 16/32-bit integer or float grayscale image down to 8 bits.

    Integer modes hold 16-bit samples and keep their high byte. Float images in
    [0, 1] are scaled by 255; anything else is clipped to 0-255.
    """
    if img.mode == "F":
        values = np.array(img, dtype=np.float64)
        if values.size and values.max() <= 1.0:
            values = values * 255.0
        return np.clip(values, 0, 255).astype(np.uint8)
    values = np.array(img, dtype=np.int64)
    return (np.clip(values, 0, 0xFFFF) >> 8).astype(np.uint8)

def _is_grayscale_palette(img):
    # "1" and "LA" are always gray; a palette is gray only if every entry has R == G == B.
    if img.mode != "P":
        return True
    palette = img.getpalette() or []
    return all(palette[i] == palette[i + 1] == palette[i + 2] for i in range(0, len(palette) - 2, 3))

def load_image_file(file_path):
    """
    Read an image file from disk and decode it.

    :param file_path: Path to the image file.
    :return: numpy array as returned by load_image().
    """
    with open(file_path, "rb") as f:
        image_bytes = f.read()
    logging.debug(f"[load_image_file] Read {len(image_bytes)} bytes from {file_path}")
    return load_image(image_bytes)

def encode_image(image, format="PNG"):
    """
    Encode a raster image to bytes.

    :param image: uint8 numpy array (h, w) or (h, w, 3).
    :param format: Pillow format name, e.g. "PNG" or "JPEG".
    :return: The encoded bytes.
    """
    buffer = io.BytesIO()
    Image.fromarray(np.asarray(image, dtype=np.uint8)).save(buffer, format=format)
    return buffer.getvalue()
