# qr_types.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

"""
Value types shared by the decoder, the tiered search and the scorer.

All of them are frozen dataclasses: a DecodeOutcome is created once when a candidate
image decodes, a StressResult once per validation, and a ValidationResult once at the
top level. The to_dict() helpers produce the flat JSON layout printed by the CLI.
"""

MIN_VERSION = 1
MAX_VERSION = 40


class ErrorCorrectionLevel(Enum):
    """QR error correction level with its approximate recovery capacity."""
    L = "L"
    M = "M"
    Q = "Q"
    H = "H"

    @property
    def recovery(self):
        return {"L": "~7% recovery", "M": "~15% recovery",
                "Q": "~25% recovery", "H": "~30% recovery"}[self.value]

    def __str__(self):
        return self.value


def module_count(version):
    """
    Return the number of modules per side for a QR version.

    :param version: QR version (1-40), or None/0 when unknown.
    :return: 17 + 4 * version, or 0 when the version is unknown.
    """
    if not version:
        return 0
    if not MIN_VERSION <= version <= MAX_VERSION:
        raise ValueError(f"QR version must be between {MIN_VERSION} and {MAX_VERSION}, got {version}")
    return 17 + 4 * version


@dataclass(frozen=True)
class PreprocessParams:
    resize: int = 0             # Target size of the longest side in pixels (0 = no resize)
    contrast: float = 1.0       # Contrast multiplier (1.0 = unchanged)
    brightness: float = 1.0     # Brightness multiplier (1.0 = unchanged)
    blur: float = 0.0           # Gaussian sigma (0 = no blur)
    grayscale: bool = True      # Convert to a single channel before adjusting


@dataclass(frozen=True)
class SingleDecodeResult:
    """What one decode engine reports for one pixel buffer."""
    content: str
    version: Optional[int] = None
    error_correction: Optional[ErrorCorrectionLevel] = None

    @property
    def has_metadata(self):
        # A version outside 1-40 counts as missing.
        return (self.version is not None and MIN_VERSION <= self.version <= MAX_VERSION
                and self.error_correction is not None)


@dataclass(frozen=True)
class DecodeOutcome:
    """
    The winning decode of a tiered search.

    :param content: Decoded payload.
    :param version: QR version (1-40) if any engine reported it.
    :param error_correction: ErrorCorrectionLevel if any engine reported it.
    :param decoders_success: Names of the engines that decoded the winning candidate.
    """
    content: str
    version: Optional[int] = None
    error_correction: Optional[ErrorCorrectionLevel] = None
    decoders_success: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.version is not None and not MIN_VERSION <= self.version <= MAX_VERSION:
            raise ValueError(f"QR version must be between {MIN_VERSION} and {MAX_VERSION}, got {self.version}")

    @property
    def modules(self):
        return module_count(self.version)

    def to_dict(self):
        return {
            "content": self.content,
            "version": self.version,
            "error_correction": str(self.error_correction) if self.error_correction else None,
            "modules": self.modules,
            "decoders_success": list(self.decoders_success),
        }


@dataclass(frozen=True)
class StressResult:
    """Pass/fail per degraded variant. Flags that were not tested stay False."""
    original: bool = False
    downscale_50: bool = False
    downscale_25: bool = False
    blur_light: bool = False
    blur_medium: bool = False
    low_contrast: bool = False


@dataclass(frozen=True)
class ValidationResult:
    score: int
    decodable: bool
    content: Optional[str] = None
    outcome: Optional[DecodeOutcome] = None
    stress: StressResult = field(default_factory=StressResult)

    def to_dict(self):
        outcome = self.outcome.to_dict() if self.outcome else {}
        return {
            "score": self.score,
            "decodable": self.decodable,
            "content": self.content,
            "version": outcome.get("version"),
            "error_correction": outcome.get("error_correction"),
            "modules": outcome.get("modules"),
            "decoders_success": outcome.get("decoders_success", []),
            "stress_original": self.stress.original,
            "stress_downscale_50": self.stress.downscale_50,
            "stress_downscale_25": self.stress.downscale_25,
            "stress_blur_light": self.stress.blur_light,
            "stress_blur_medium": self.stress.blur_medium,
            "stress_low_contrast": self.stress.low_contrast,
        }
