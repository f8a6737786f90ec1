# qr_cli.py

import argparse
import json
import logging
import os
import sys
import time

from qr_errors import DecodeFailed, ImageLoadError
from qr_image import load_image_file
from qr_processor import decode_only_image, validate_image, validate_fast_image
from qr_search import DEFAULT_BRUTE_FORCE_TRIES

"""
This is the command line entry point. It configures logging, loads the image file and
prints either a human readable report, the bare score, or JSON.

Exit code is 0 whenever the image was read, including when no QR code was found, and 1
when the file could not be read or is not an image.
"""

DEBUG_ENV_VAR = "QRSCORE_DEBUG"

SCORE_LABELS = [
    (90, "EXCELLENT - Highly scannable in any condition"),
    (80, "GREAT - Very reliable scanning"),
    (70, "GOOD - Should scan in most conditions"),
    (60, "FAIR - May have issues in poor conditions"),
    (40, "WEAK - Scanning may be unreliable"),
    (0, "POOR - High risk of scan failures"),
]

STRESS_ROWS = [
    ("Original", "original", False),
    ("Downscale 50%", "downscale_50", False),
    ("Downscale 25%", "downscale_25", True),
    ("Blur (light)", "blur_light", False),
    ("Blur (medium)", "blur_medium", True),
    ("Low Contrast", "low_contrast", True),
]

def configure_logging(verbose):
    """
    Send log records to stderr (stdout is reserved for results). Verbose tracing
    lowers the level to DEBUG and also writes qr_score.log.
    """
    # Remove any previously configured handlers.
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    stream_handler = logging.StreamHandler(sys.stderr)
    handlers = [stream_handler]
    if verbose:
        handlers.append(logging.FileHandler("qr_score.log", encoding="utf-8"))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

def build_parser():
    parser = argparse.ArgumentParser(
        prog="qr-score",
        description="Validate QR codes and compute a scannability score",
    )
    parser.add_argument("image", help="Image file to validate (PNG, JPEG, etc.)")
    parser.add_argument("-s", "--score-only", action="store_true",
                        help="Output only the score (0-100), useful for scripts")
    parser.add_argument("-d", "--decode-only", action="store_true",
                        help="Skip stress tests entirely and only decode")
    parser.add_argument("-f", "--fast", action="store_true",
                        help="Fast validation with a reduced set of stress tests")
    parser.add_argument("-j", "--json", action="store_true", help="JSON output")
    parser.add_argument("-t", "--timing", action="store_true", help="Show timing information")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimal output")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help=f"Debug tracing (also enabled by {DEBUG_ENV_VAR})")
    parser.add_argument("--tries", type=int, default=DEFAULT_BRUTE_FORCE_TRIES,
                        help="Random preprocessing attempts in the last search tier")
    return parser

def score_label(score):
    for minimum, label in SCORE_LABELS:
        if score >= minimum:
            return label
    return SCORE_LABELS[-1][1]

def format_decode_result(outcome, file_path):
    lines = ["QR CODE DECODED", f"  File:     {file_path}", f"  Content:  {outcome.content}"]
    if outcome.version:
        lines.append(f"  Version:  v{outcome.version}")
    if outcome.error_correction:
        lines.append(f"  EC Level: {outcome.error_correction}")
    if outcome.modules:
        lines.append(f"  Modules:  {outcome.modules}x{outcome.modules}")
    return "\n".join(lines)

def format_validation_result(result, file_path, elapsed_ms, fast):
    lines = [
        f"SCANNABILITY SCORE: {result.score}",
        f"  {score_label(result.score)}",
        "",
        f"  File: {file_path}",
        f"  Time: {elapsed_ms}ms{' (fast mode)' if fast else ''}",
    ]
    if not result.decodable:
        lines.append("  No QR code could be decoded.")
        return "\n".join(lines)

    lines += ["", "DECODED CONTENT", f"  {result.content}", "", "STRESS TEST RESULTS"]
    for title, attribute, skipped_in_fast in STRESS_ROWS:
        if fast and skipped_in_fast:
            status = "skipped"
        else:
            status = "PASS" if getattr(result.stress, attribute) else "FAIL"
        lines.append(f"  {title:<20} [{status}]")

    outcome = result.outcome
    lines += ["", "QR METADATA"]
    if outcome.version:
        lines.append(f"  Version:          v{outcome.version}")
        lines.append(f"  Modules:          {outcome.modules}x{outcome.modules}")
    if outcome.error_correction:
        lines.append(f"  Error Correction: {outcome.error_correction} ({outcome.error_correction.recovery})")
    lines.append(f"  Decoders:         {', '.join(outcome.decoders_success)}")
    return "\n".join(lines)

def run(args):
    """
    Execute one CLI invocation.

    :param args: Parsed argparse namespace.
    :return: Process exit code.
    """
    start = time.perf_counter()
    try:
        image = load_image_file(args.image)
    except (OSError, ImageLoadError) as e:
        logging.error(f"[run] Failed to read image file {args.image}: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    read_time = time.perf_counter() - start

    if args.decode_only:
        try:
            outcome = decode_only_image(image, brute_force_tries=args.tries)
        except DecodeFailed:
            outcome = None

        if args.json:
            payload = outcome.to_dict() if outcome else {"content": None}
            payload["decodable"] = outcome is not None
            print(json.dumps(payload, indent=4, ensure_ascii=False))
        elif outcome is None:
            if not args.quiet:
                print("No QR code could be decoded.")
        elif args.quiet:
            print(outcome.content)
        else:
            print(format_decode_result(outcome, args.image))
    else:
        validate_fn = validate_fast_image if args.fast else validate_image
        result = validate_fn(image, brute_force_tries=args.tries)
        elapsed_ms = int((time.perf_counter() - start) * 1000)

        if args.json:
            print(json.dumps(result.to_dict(), indent=4, ensure_ascii=False))
        elif args.score_only or args.quiet:
            print(result.score)
        else:
            print(format_validation_result(result, args.image, elapsed_ms, args.fast))

    if args.timing:
        total_time = time.perf_counter() - start
        print(f"Read: {read_time * 1000:.1f}ms, Process: {(total_time - read_time) * 1000:.1f}ms, "
              f"Total: {total_time * 1000:.1f}ms", file=sys.stderr)
    return 0

def main(argv=None):
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose or bool(os.environ.get(DEBUG_ENV_VAR)))
    return run(args)

if __name__ == '__main__':
    sys.exit(main())
