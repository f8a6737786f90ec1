# qr_preprocess.py

import logging
import cv2
import numpy as np
from PIL import Image

"""
This module contains the image transforms used to make hard QR codes decodable and
to degrade clean ones for stress testing.

Every function takes a uint8 numpy array, (h, w) or (h, w, 3) RGB, and returns a new
array. Inputs are never modified. Degenerate inputs (a single gray level) are returned
as an unmodified copy where a transform would otherwise divide by zero.
"""

MIN_BLUR_SIGMA = 0.3            # Blur at or below this sigma is skipped.
HIGH_CONTRAST_THRESHOLD = 127   # Fixed threshold applied after histogram stretching.
ADJUST_EPSILON = 0.01           # Contrast/brightness this close to 1.0 counts as unchanged.

def to_grayscale(image):
    """
    Reduce an image to a single luminance channel.

    :param image: uint8 array (h, w) or (h, w, 3).
    :return: New (h, w) uint8 array.
    """
    if image.ndim == 2:
        return image.copy()
    return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)

def to_rgb(image):
    """Expand a single-channel image to three identical channels."""
    if image.ndim == 3:
        return image.copy()
    return cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)

def _scaled_size(width, height, target):
    # Longest side becomes target, aspect ratio preserved, never below 1 pixel.
    scale = target / max(width, height)
    return max(1, int(round(width * scale))), max(1, int(round(height * scale)))

def resize(image, target, fast=True):
    """
    Shrink an image so its longest side equals target, preserving aspect ratio.

    Nothing happens if target is 0 or the image is already small enough.

    :param image: uint8 array.
    :param target: Maximum size of the longest side in pixels (0 = no resize).
    :param fast: Use nearest-neighbour (search loop) instead of Lanczos resampling.
    :return: New uint8 array.
    """
    height, width = image.shape[:2]
    if target <= 0 or max(width, height) <= target:
        return image.copy()

    new_size = _scaled_size(width, height, target)
    if fast:
        return cv2.resize(image, new_size, interpolation=cv2.INTER_NEAREST)
    return np.array(Image.fromarray(image).resize(new_size, Image.Resampling.LANCZOS))

def downscale(image, factor):
    """
    Scale an image by factor using a triangle (bilinear) filter.

    :param image: uint8 array.
    :param factor: Scale factor, e.g. 0.5 for half size.
    :return: New uint8 array of size (w * factor, h * factor), at least 1x1.
    """
    height, width = image.shape[:2]
    new_size = (max(1, int(width * factor)), max(1, int(height * factor)))
    return np.array(Image.fromarray(image).resize(new_size, Image.Resampling.BILINEAR))

def adjust_contrast_brightness(image, contrast=1.0, brightness=1.0):
    """
    Apply brightness then contrast around mid-gray, per channel:
    out = clamp(((in * brightness) - 128) * contrast + 128, 0, 255)

    :param image: uint8 array.
    :param contrast: Contrast multiplier (below 1.0 reduces contrast).
    :param brightness: Brightness multiplier.
    :return: New uint8 array with the same shape.
    """
    adjusted = (image.astype(np.float32) * brightness - 128.0) * contrast + 128.0
    # Truncate toward zero after clamping, as an integer cast of a float would.
    return np.clip(adjusted, 0.0, 255.0).astype(np.uint8)

def gaussian_blur(image, sigma):
    """
    Apply a separable Gaussian blur.

    :param image: uint8 array.
    :param sigma: Standard deviation in pixels; at or below MIN_BLUR_SIGMA it is a no-op.
    :return: New uint8 array.
    """
    if sigma <= MIN_BLUR_SIGMA:
        return image.copy()
    return cv2.GaussianBlur(image, (0, 0), sigmaX=sigma, sigmaY=sigma)

def otsu_threshold_value(gray):
    """
    Compute Otsu's threshold for a single-channel image.

    For each candidate t, pixels <= t form the background class. The between-class
    variance w_b * w_f * (m_b - m_f)^2 is evaluated for every t where both classes are
    non-empty and the first t with the largest variance wins.

    :param gray: (h, w) uint8 array.
    :return: The threshold as an int, or None if the image has a single gray level.
    """
    histogram = np.bincount(gray.ravel(), minlength=256).astype(np.float64)
    levels = np.arange(256, dtype=np.float64)
    total = histogram.sum()

    weight_b = np.cumsum(histogram)
    weight_f = total - weight_b
    sum_b = np.cumsum(histogram * levels)
    sum_total = sum_b[-1]

    valid = (weight_b > 0) & (weight_f > 0)
    if not valid.any():
        return None

    mean_b = np.divide(sum_b, weight_b, out=np.zeros(256), where=valid)
    mean_f = np.divide(sum_total - sum_b, weight_f, out=np.zeros(256), where=valid)
    variance = np.where(valid, weight_b * weight_f * (mean_b - mean_f) ** 2, -1.0)
    return int(np.argmax(variance))

def apply_otsu_threshold(image):
    """
    Binarize an image to {0, 255} with Otsu's automatic threshold.

    A uniform image has no threshold to find and is returned unchanged.

    :param image: uint8 array (h, w) or (h, w, 3).
    :return: New (h, w) binary array, or a copy of the input if it is uniform.
    """
    gray = to_grayscale(image)
    threshold = otsu_threshold_value(gray)
    if threshold is None:
        logging.debug("[apply_otsu_threshold] Uniform image; returning it unchanged.")
        return image.copy()
    return np.where(gray > threshold, 255, 0).astype(np.uint8)

def enhance_contrast(image):
    """
    Stretch the observed gray range [min, max] linearly onto [0, 255].

    :param image: uint8 array (h, w) or (h, w, 3).
    :return: New (h, w) array, or a copy of the input if min == max.
    """
    gray = to_grayscale(image)
    min_val = int(gray.min())
    max_val = int(gray.max())
    if min_val == max_val:
        return image.copy()

    stretched = (gray.astype(np.float32) - min_val) / (max_val - min_val) * 255.0
    return stretched.astype(np.uint8)

def binarize(image, threshold):
    """Set pixels above threshold to 255 and the rest to 0 (single channel)."""
    gray = to_grayscale(image)
    return np.where(gray > threshold, 255, 0).astype(np.uint8)

def apply_high_contrast_threshold(image):
    """Histogram-stretch, then binarize at a fixed mid threshold."""
    return binarize(enhance_contrast(to_grayscale(image)), HIGH_CONTRAST_THRESHOLD)

def invert_image(image):
    """Return 255 - image for every channel; applying it twice gives the input back."""
    return 255 - image

def extract_color_channels(image):
    """
    Split an image into independent grayscale images.

    :param image: uint8 array (h, w) or (h, w, 3).
    :return: List of four (h, w) arrays: red, green, blue and saturation (max - min).
    """
    rgb = to_rgb(image)
    red = rgb[:, :, 0].copy()
    green = rgb[:, :, 1].copy()
    blue = rgb[:, :, 2].copy()
    saturation = rgb.max(axis=2) - rgb.min(axis=2)
    return [red, green, blue, saturation]

def extract_hue_channel(image):
    """
    Extract the HSV hue of every pixel, mapped from [0, 360) degrees onto [0, 255].

    Useful for codes whose colors have similar luminance but different hues.
    """
    rgb = to_rgb(image).astype(np.float32) / 255.0
    r, g, b = rgb[:, :, 0], rgb[:, :, 1], rgb[:, :, 2]
    max_v = rgb.max(axis=2)
    min_v = rgb.min(axis=2)
    delta = max_v - min_v
    safe_delta = np.where(delta < 0.001, 1.0, delta)

    # Conditions are checked in order: gray first, then red, green, blue as the max.
    hue = np.select(
        [delta < 0.001, max_v == r, max_v == g],
        [
            0.0,
            60.0 * np.fmod((g - b) / safe_delta, 6.0),
            60.0 * ((b - r) / safe_delta + 2.0),
        ],
        default=60.0 * ((r - g) / safe_delta + 4.0),
    )
    normalized = np.fmod(np.abs(hue), 360.0) / 360.0 * 255.0
    return normalized.astype(np.uint8)

def extract_value_channel(image):
    """HSV value channel: max(R, G, B) per pixel."""
    return to_rgb(image).max(axis=2)

def apply_preprocessing_fast(image, params):
    """
    Run one PreprocessParams combination: fast resize, optional grayscale,
    contrast/brightness, then blur.

    :param image: uint8 array.
    :param params: qr_types.PreprocessParams.
    :return: New uint8 array.
    """
    result = resize(image, params.resize, fast=True)

    if params.grayscale:
        result = to_grayscale(result)

    if abs(params.contrast - 1.0) > ADJUST_EPSILON or abs(params.brightness - 1.0) > ADJUST_EPSILON:
        result = adjust_contrast_brightness(result, params.contrast, params.brightness)

    if params.blur > MIN_BLUR_SIGMA:
        result = gaussian_blur(result, params.blur)

    return result
