# qr_decoder.py

import logging
import cv2
import numpy as np
from pyzbar.pyzbar import decode, ZBarSymbol, PyZbarError

from qr_preprocess import to_grayscale
from qr_types import (
    ErrorCorrectionLevel, SingleDecodeResult, DecodeOutcome, MIN_VERSION, MAX_VERSION
)

"""
This module wraps the two QR decode engines behind one capability:
  - decode_with_zbar() runs ZBar through pyzbar. It is the primary engine but reports
    no version or error correction level.
  - decode_with_opencv() runs OpenCV's QRCodeDetector. It also recovers the version
    from the rectified module grid and the error correction level from the format bits.
  - try_decode_with_both() converts a candidate image to one 8-bit luma buffer and
    tries the engines in priority order, merging their metadata into a DecodeOutcome.

Both engines take (luma_data, width, height) and return a SingleDecodeResult, or None
on failure. They never raise on malformed buffers.
"""

# Format information is XOR-masked with this pattern before it is written to the symbol.
FORMAT_MASK = 0x5412
FORMAT_GENERATOR = 0x537
# Two-bit EC indicator in the format information.
FORMAT_EC_LEVELS = {0: ErrorCorrectionLevel.M, 1: ErrorCorrectionLevel.L,
                    2: ErrorCorrectionLevel.H, 3: ErrorCorrectionLevel.Q}
# (column, row) of the 15 format bits around the top-left finder, most significant bit first.
FORMAT_BIT_POSITIONS = [(0, 8), (1, 8), (2, 8), (3, 8), (4, 8), (5, 8), (7, 8), (8, 8),
                        (8, 7), (8, 5), (8, 4), (8, 3), (8, 2), (8, 1), (8, 0)]

def _bch_format_codeword(data):
    # 5 data bits followed by the 10-bit BCH(15,5) remainder.
    remainder = data << 10
    for bit in range(14, 9, -1):
        if remainder & (1 << bit):
            remainder ^= FORMAT_GENERATOR << (bit - 10)
    return (data << 10) | remainder

VALID_FORMAT_CODEWORDS = {_bch_format_codeword(data): data for data in range(32)}

def _decode_text(raw_data):
    try:
        return raw_data.decode("utf-8")
    except UnicodeDecodeError as e:
        logging.debug(f"[_decode_text] UTF-8 decoding failed: {e}. Falling back to Latin-1.")
        return raw_data.decode("latin1", errors="replace")

def _valid_buffer(luma_data, width, height):
    return width > 0 and height > 0 and len(luma_data) == width * height

def _valid_version(version):
    return version if version is not None and MIN_VERSION <= version <= MAX_VERSION else None

def decode_with_zbar(luma_data, width, height):
    """
    Decode the first QR code found by ZBar.

    :param luma_data: 8-bit single-channel pixels, row-major.
    :param width: Image width in pixels.
    :param height: Image height in pixels.
    :return: SingleDecodeResult without metadata, or None.
    """
    if not _valid_buffer(luma_data, width, height):
        return None
    try:
        qr_codes = decode((luma_data, width, height), symbols=[ZBarSymbol.QRCODE])
    except PyZbarError as e:
        logging.debug(f"[decode_with_zbar] ZBar error: {e}")
        return None

    logging.debug(f"[decode_with_zbar] ZBar found {len(qr_codes)} results")
    if not qr_codes:
        return None
    return SingleDecodeResult(content=_decode_text(qr_codes[0].data))

def read_version(straight_qrcode):
    """
    Derive the QR version from the side of a rectified module grid.

    :param straight_qrcode: (n, n) array with one pixel per module, or None.
    :return: Version 1-40, or None if the grid size is not a valid QR size.
    """
    if straight_qrcode is None or straight_qrcode.ndim != 2:
        return None
    side = straight_qrcode.shape[0]
    if straight_qrcode.shape[1] != side or (side - 17) % 4 != 0:
        return None
    return _valid_version((side - 17) // 4)

def read_error_correction(straight_qrcode):
    """
    Read the error correction level from the format bits next to the top-left finder.

    The raw 15 bits are unmasked and snapped to the closest valid format codeword,
    tolerating up to 3 flipped modules.

    :param straight_qrcode: (n, n) module grid where dark modules are 0.
    :return: ErrorCorrectionLevel, or None if the format bits are unreadable.
    """
    if straight_qrcode is None or straight_qrcode.ndim != 2 or min(straight_qrcode.shape) < 9:
        return None

    raw = 0
    for x, y in FORMAT_BIT_POSITIONS:
        raw = (raw << 1) | int(straight_qrcode[y, x] < 128)
    raw ^= FORMAT_MASK

    best_data, best_distance = None, 4
    for codeword, data in VALID_FORMAT_CODEWORDS.items():
        distance = bin(codeword ^ raw).count("1")
        if distance < best_distance:
            best_data, best_distance = data, distance
    if best_data is None:
        return None
    return FORMAT_EC_LEVELS[best_data >> 3]

def decode_with_opencv(luma_data, width, height):
    """
    Decode with OpenCV's QRCodeDetector, recovering version and EC level when possible.

    :param luma_data: 8-bit single-channel pixels, row-major.
    :param width: Image width in pixels.
    :param height: Image height in pixels.
    :return: SingleDecodeResult, or None.
    """
    if not _valid_buffer(luma_data, width, height):
        return None
    gray = np.frombuffer(luma_data, dtype=np.uint8).reshape(height, width).copy()
    try:
        data, points, straight_qrcode = cv2.QRCodeDetector().detectAndDecode(gray)
    except cv2.error as e:
        logging.debug(f"[decode_with_opencv] OpenCV error: {e}")
        return None

    if not data:
        return None
    logging.debug(f"[decode_with_opencv] Decoded {len(data)} characters")
    return SingleDecodeResult(
        content=data,
        version=read_version(straight_qrcode),
        error_correction=read_error_correction(straight_qrcode),
    )

# Fixed priority order: primary first, secondary for confirmation and metadata.
DECODE_ENGINES = (
    ("zbar", decode_with_zbar),
    ("opencv", decode_with_opencv),
)

def try_decode_with_both(image, engines=None):
    """
    Test one candidate image against the decode engines.

    The candidate is converted to a single luma buffer once. If the primary engine
    decodes it but is missing version or EC level, the secondary engine is run on the
    same buffer and its metadata is preferred where present. If the primary engine
    fails, the secondary engine is tried alone.

    :param image: uint8 array (h, w) or (h, w, 3).
    :param engines: (primary, secondary) pair of (name, decode function); defaults to DECODE_ENGINES.
    :return: DecodeOutcome, or None if neither engine decodes the candidate.
    """
    (primary_name, primary), (secondary_name, secondary) = engines or DECODE_ENGINES
    luma = np.ascontiguousarray(to_grayscale(image))
    height, width = luma.shape
    luma_data = luma.tobytes()

    primary_result = primary(luma_data, width, height)
    if primary_result is not None:
        version = _valid_version(primary_result.version)
        error_correction = primary_result.error_correction
        decoders = (primary_name,)

        if not primary_result.has_metadata:
            secondary_result = secondary(luma_data, width, height)
            if secondary_result is not None:
                version = _valid_version(secondary_result.version) or version
                error_correction = secondary_result.error_correction or error_correction
                decoders = (primary_name, secondary_name)

        return DecodeOutcome(
            content=primary_result.content,
            version=version,
            error_correction=error_correction,
            decoders_success=decoders,
        )

    secondary_result = secondary(luma_data, width, height)
    if secondary_result is not None:
        return DecodeOutcome(
            content=secondary_result.content,
            version=_valid_version(secondary_result.version),
            error_correction=secondary_result.error_correction,
            decoders_success=(secondary_name,),
        )

    return None
