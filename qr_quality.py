# qr_quality.py

import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial

import numpy as np

from qr_errors import DecodeFailed
from qr_preprocess import adjust_contrast_brightness, downscale, gaussian_blur
from qr_search import multi_decode_image
from qr_types import StressResult

"""
This module measures how robust a decodable QR code is and turns that into a 0-100
scannability score:

  1. Stress tests: a fixed battery of degraded copies of the image (downscaled, blurred,
     low contrast) is built and every copy is run through the full tiered search.
     Unlike the search itself there is no short-circuit; every outcome is recorded.
  2. Scoring: each passed test contributes a fixed weight, plus a bonus when two decode
     engines agreed on the winning candidate. The sum is normalized to 0-100.

The "fast" profile only tests the original, the 50% downscale and the light blur, and
is scored against the weights of those tests alone.
"""

WEIGHT_ORIGINAL = 20
WEIGHT_DOWNSCALE_50 = 15
WEIGHT_DOWNSCALE_25 = 10
WEIGHT_BLUR_LIGHT = 15
WEIGHT_BLUR_MEDIUM = 10
WEIGHT_LOW_CONTRAST = 15
WEIGHT_MULTI_DECODER = 15

TOTAL_WEIGHT = (WEIGHT_ORIGINAL + WEIGHT_DOWNSCALE_50 + WEIGHT_DOWNSCALE_25 + WEIGHT_BLUR_LIGHT
                + WEIGHT_BLUR_MEDIUM + WEIGHT_LOW_CONTRAST + WEIGHT_MULTI_DECODER)
FAST_TOTAL_WEIGHT = WEIGHT_ORIGINAL + WEIGHT_DOWNSCALE_50 + WEIGHT_BLUR_LIGHT + WEIGHT_MULTI_DECODER

BLUR_LIGHT_SIGMA = 1.0
BLUR_MEDIUM_SIGMA = 2.0
LOW_CONTRAST_FACTOR = 0.5

def reduce_contrast(image, factor=LOW_CONTRAST_FACTOR):
    """Scale contrast around mid-gray by factor (0.5 halves it)."""
    return adjust_contrast_brightness(image, contrast=factor, brightness=1.0)

# Stress variant name -> transform building the degraded copy.
STRESS_VARIANTS = {
    "original": np.copy,
    "downscale_50": partial(downscale, factor=0.5),
    "downscale_25": partial(downscale, factor=0.25),
    "blur_light": partial(gaussian_blur, sigma=BLUR_LIGHT_SIGMA),
    "blur_medium": partial(gaussian_blur, sigma=BLUR_MEDIUM_SIGMA),
    "low_contrast": reduce_contrast,
}
FAST_STRESS_VARIANTS = ("original", "downscale_50", "blur_light")

def is_decodable(image, **search_kwargs):
    """
    Check whether an image decodes through the tiered search.

    :param image: uint8 array.
    :param search_kwargs: Passed to multi_decode_image (engines, brute_force_tries, seed, ...).
    :return: True if some tier decoded it.
    """
    try:
        multi_decode_image(image, **search_kwargs)
        return True
    except DecodeFailed:
        return False

def _test_variant(transform, image, search_kwargs):
    return is_decodable(transform(image), **search_kwargs)

def _run_variants(image, names, max_workers, search_kwargs):
    # Every variant runs to completion; the results are independent.
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {name: executor.submit(_test_variant, STRESS_VARIANTS[name], image, search_kwargs)
                   for name in names}
        results = {name: future.result() for name, future in futures.items()}
    logging.debug(f"[_run_variants] Stress results: {results}")
    return StressResult(**results)

def run_stress_tests(image, max_workers=None, **search_kwargs):
    """
    Run the full stress battery on an image.

    :param image: uint8 array, normally one already known to decode.
    :param max_workers: Thread pool size for the variants (None = one thread per variant).
    :param search_kwargs: Passed to multi_decode_image for every variant.
    :return: StressResult with all six flags tested.
    """
    return _run_variants(image, tuple(STRESS_VARIANTS), max_workers or len(STRESS_VARIANTS), search_kwargs)

def run_fast_stress_tests(image, max_workers=None, **search_kwargs):
    """
    Run the reduced battery: original, 50% downscale and light blur.
    The other three flags stay False.
    """
    return _run_variants(image, FAST_STRESS_VARIANTS, max_workers or len(FAST_STRESS_VARIANTS), search_kwargs)

def calculate_score(stress, num_decoders):
    """
    Compute the scannability score from a full stress run.

    score = floor(sum of passed weights * 100 / TOTAL_WEIGHT), capped at 100.

    :param stress: StressResult.
    :param num_decoders: Number of engines that decoded the winning candidate.
    :return: Integer score 0-100.
    """
    score = 0
    if stress.original:
        score += WEIGHT_ORIGINAL
    if stress.downscale_50:
        score += WEIGHT_DOWNSCALE_50
    if stress.downscale_25:
        score += WEIGHT_DOWNSCALE_25
    if stress.blur_light:
        score += WEIGHT_BLUR_LIGHT
    if stress.blur_medium:
        score += WEIGHT_BLUR_MEDIUM
    if stress.low_contrast:
        score += WEIGHT_LOW_CONTRAST

    # Bonus when more than one engine decoded the winning candidate.
    if num_decoders >= 2:
        score += WEIGHT_MULTI_DECODER

    return min(score * 100 // TOTAL_WEIGHT, 100)

def calculate_fast_score(stress, num_decoders):
    """
    Score a fast stress run against only the weights it actually tested.
    """
    score = 0
    if stress.original:
        score += WEIGHT_ORIGINAL
    if stress.downscale_50:
        score += WEIGHT_DOWNSCALE_50
    if stress.blur_light:
        score += WEIGHT_BLUR_LIGHT
    if num_decoders >= 2:
        score += WEIGHT_MULTI_DECODER

    return min(score * 100 // FAST_TOTAL_WEIGHT, 100)
