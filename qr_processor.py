# qr_processor.py

import logging

from qr_errors import DecodeFailed
from qr_image import load_image, load_image_file
from qr_quality import (
    run_stress_tests, run_fast_stress_tests, calculate_score, calculate_fast_score
)
from qr_search import multi_decode_image, DEFAULT_BRUTE_FORCE_TRIES
from qr_types import StressResult, ValidationResult

"""
This module is the public entry point for checking a QR code image:
  - validate() decodes the image, runs the full stress battery and scores it.
  - validate_fast() does the same with the reduced stress battery.
  - decode_only() just finds and decodes the QR code, without stress tests.
  - The *_image variants accept an already loaded raster image, the *_from_path
    variants read a file first.

An image that cannot be decoded is not an error for validate(): it yields a
ValidationResult with decodable=False and a score of 0. Unreadable image bytes raise
ImageLoadError and file errors propagate unchanged.
"""

def _search_kwargs(brute_force_tries, engines):
    return {"engines": engines, "brute_force_tries": brute_force_tries}

def _undecodable_result():
    return ValidationResult(score=0, decodable=False, content=None, outcome=None, stress=StressResult())

def validate_image(image, brute_force_tries=DEFAULT_BRUTE_FORCE_TRIES, engines=None):
    """
    Decode a loaded image and compute its scannability score.

    :param image: uint8 array (h, w) or (h, w, 3).
    :param brute_force_tries: Number of random parameter sets in the last search tier.
    :param engines: Decode engine pair (None = ZBar then OpenCV).
    :return: ValidationResult.
    """
    search_kwargs = _search_kwargs(brute_force_tries, engines)
    try:
        outcome = multi_decode_image(image, **search_kwargs)
    except DecodeFailed:
        logging.debug("[validate_image] Image is not decodable.")
        return _undecodable_result()

    stress = run_stress_tests(image, **search_kwargs)
    score = calculate_score(stress, len(outcome.decoders_success))
    logging.debug(f"[validate_image] Score {score} for content {outcome.content[:100]!r}")
    return ValidationResult(score=score, decodable=True, content=outcome.content, outcome=outcome, stress=stress)

def validate_fast_image(image, brute_force_tries=DEFAULT_BRUTE_FORCE_TRIES, engines=None):
    """
    Like validate_image(), but only runs the original, 50% downscale and light blur
    stress tests and scores against those weights.
    """
    search_kwargs = _search_kwargs(brute_force_tries, engines)
    try:
        outcome = multi_decode_image(image, **search_kwargs)
    except DecodeFailed:
        logging.debug("[validate_fast_image] Image is not decodable.")
        return _undecodable_result()

    stress = run_fast_stress_tests(image, **search_kwargs)
    score = calculate_fast_score(stress, len(outcome.decoders_success))
    logging.debug(f"[validate_fast_image] Fast score {score}")
    return ValidationResult(score=score, decodable=True, content=outcome.content, outcome=outcome, stress=stress)

def decode_only_image(image, brute_force_tries=DEFAULT_BRUTE_FORCE_TRIES, engines=None):
    """
    Decode a loaded image without stress tests.

    :return: DecodeOutcome.
    :raises DecodeFailed: If no search tier decodes the image.
    """
    return multi_decode_image(image, **_search_kwargs(brute_force_tries, engines))

def validate(image_bytes, brute_force_tries=DEFAULT_BRUTE_FORCE_TRIES):
    """
    Validate encoded image bytes (PNG, JPEG, ...).

    :param image_bytes: Raw image bytes.
    :param brute_force_tries: Number of random parameter sets in the last search tier.
    :return: ValidationResult.
    :raises ImageLoadError: If the bytes are not an image.
    """
    return validate_image(load_image(image_bytes), brute_force_tries)

def validate_fast(image_bytes, brute_force_tries=DEFAULT_BRUTE_FORCE_TRIES):
    """Validate encoded image bytes with the reduced stress battery."""
    return validate_fast_image(load_image(image_bytes), brute_force_tries)

def decode_only(image_bytes, brute_force_tries=DEFAULT_BRUTE_FORCE_TRIES):
    """
    Decode encoded image bytes without computing a score.

    :raises ImageLoadError: If the bytes are not an image.
    :raises DecodeFailed: If no QR code is found.
    """
    return decode_only_image(load_image(image_bytes), brute_force_tries)

def validate_from_path(file_path, brute_force_tries=DEFAULT_BRUTE_FORCE_TRIES, fast=False):
    """Read an image file and validate it; OSError propagates."""
    image = load_image_file(file_path)
    if fast:
        return validate_fast_image(image, brute_force_tries)
    return validate_image(image, brute_force_tries)

def decode_from_path(file_path, brute_force_tries=DEFAULT_BRUTE_FORCE_TRIES):
    """Read an image file and decode it; OSError propagates."""
    return decode_only_image(load_image_file(file_path), brute_force_tries)
