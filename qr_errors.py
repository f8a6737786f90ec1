# qr_errors.py

"""
Exceptions raised by the QR scannability checker.

  - ImageLoadError is fatal: the input bytes could not be turned into a raster image.
  - DecodeFailed is a normal outcome: every search tier ran and nothing decoded.
    The validation functions convert it into a result with decodable=False.
"""

class QRScoreError(Exception):
    """Base class for all errors raised by this package."""


class ImageLoadError(QRScoreError):
    """The bytes are not a recognizable raster image."""

    def __init__(self, message):
        super().__init__(f"Failed to load image: {message}")


class ImageTooLargeError(ImageLoadError):
    """The image decoded fine but its dimensions exceed the allowed maximum."""

    def __init__(self, width, height, max_dimension):
        self.width = width
        self.height = height
        self.max_dimension = max_dimension
        super().__init__(
            f"image too large: {width}x{height} exceeds maximum {max_dimension}x{max_dimension}"
        )


class DecodeFailed(QRScoreError):
    """No QR code could be decoded from the image."""

    def __init__(self, message="No QR code found in image"):
        super().__init__(message)
