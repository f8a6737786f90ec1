# qr_test_support.py

import logging
import textwrap
import unittest

import numpy as np
import qrcode

from qr_image import encode_image
from qr_types import SingleDecodeResult

"""
Shared helpers for the unit tests.
Run tests with: python -m unittest discover -p "test_*.py"

  - IndentFormatter/LoggedTestCase write a friendly header for each test to unittest.log.
  - make_qr_array()/make_qr_png() build clean QR fixtures with the qrcode library.
  - The fake_* functions are stand-in decode engines for exercising the tiered search
    without depending on what ZBar or OpenCV happen to decode.
"""

TEST_URL = "https://example.com"

# Define a custom formatter that dedents and re-indents multi-line messages.
class IndentFormatter(logging.Formatter):
    def format(self, record):
        message = super().format(record)
        lines = message.splitlines()
        if len(lines) > 1:
            block = textwrap.dedent("\n".join(lines[1:]))
            message = lines[0] + "\n" + textwrap.indent(block, " " * 34)
        return message

def configure_test_logging():
    log_handler = logging.FileHandler("unittest.log", mode="a", encoding="utf-8")
    log_handler.setLevel(logging.DEBUG)
    log_handler.setFormatter(IndentFormatter("%(asctime)s - %(levelname)s - %(message)s"))
    root_logger = logging.getLogger()
    root_logger.handlers = []  # Clear any default handlers.
    root_logger.addHandler(log_handler)
    root_logger.setLevel(logging.DEBUG)

# A custom logging handler to capture log records for test verification.
class LogCaptureHandler(logging.Handler):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.records = []
    def emit(self, record):
        self.records.append(record)

# Base class to add friendly logging for each test.
class LoggedTestCase(unittest.TestCase):
    def setUp(self):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.friendly_name = self.friendly_test_name(self.id())
        self.logger.debug("=" * 80)
        self.logger.debug("Test: %s", self.friendly_name)
        self.logger.debug("=" * 80)
    def tearDown(self):
        self.logger.debug("# Finished test: %s", self.id())
    def friendly_test_name(self, test_id):
        # "test_qr_search.TestTiers.test_tier_one_wins" -> "Tier One Wins"
        method_name = test_id.split('.')[-1]
        if method_name.startswith("test_"):
            method_name = method_name[5:]
        return method_name.replace('_', ' ').title()

def make_qr_array(data=TEST_URL, error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=8, border=4):
    """
    Render a clean black-on-white QR code.

    :return: (h, w) uint8 numpy array.
    """
    qr = qrcode.QRCode(error_correction=error_correction, box_size=box_size, border=border)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    if hasattr(img, "get_image"):
        img = img.get_image()
    return np.array(img.convert("L"), dtype=np.uint8)

def make_qr_png(data=TEST_URL, **kwargs):
    """Render a clean QR code and encode it as PNG bytes."""
    return encode_image(make_qr_array(data, **kwargs), "PNG")

def make_module_grid(data=TEST_URL, error_correction=qrcode.constants.ERROR_CORRECT_M):
    """
    One pixel per module, no quiet zone, dark modules 0: the layout of a rectified
    QR grid as returned by OpenCV.
    """
    qr = qrcode.QRCode(error_correction=error_correction, border=0)
    qr.add_data(data)
    qr.make(fit=True)
    return np.where(np.array(qr.get_matrix(), dtype=bool), 0, 255).astype(np.uint8)

def fake_never(luma_data, width, height):
    return None

def fake_always(luma_data, width, height):
    return SingleDecodeResult(content="fake")

def fake_binary_only(luma_data, width, height):
    # Succeeds only on images containing nothing but pure black and pure white.
    values = set(luma_data)
    if values == {0, 255}:
        return SingleDecodeResult(content="binary")
    return None

def fake_size_only(size):
    """Engine that succeeds only on images whose longest side is exactly size."""
    def decode(luma_data, width, height):
        if max(width, height) == size:
            return SingleDecodeResult(content=f"size-{size}")
        return None
    return decode
