import unittest
from unittest import mock

import numpy as np
import qrcode

from qr_decoder import (
    decode_with_zbar, decode_with_opencv, read_version, read_error_correction,
    try_decode_with_both
)
from qr_errors import DecodeFailed
from qr_search import (
    SearchTrace, multi_decode_image, generate_random_params, xorshift_next, clock_seed,
    race_first_success, KNOWN_GOOD_PARAMS, RANDOM_RESIZE_SIZES, DEFAULT_SEED,
    LEGACY_BRUTE_FORCE_TRIES
)
from qr_test_support import (
    LoggedTestCase, configure_test_logging, make_qr_array, make_module_grid, TEST_URL,
    fake_never, fake_always, fake_binary_only, fake_size_only
)
from qr_types import ErrorCorrectionLevel, SingleDecodeResult

"""
Tests for the decode engine adapter (qr_decoder.py) and the tiered search (qr_search.py).
"""

configure_test_logging()

def gradient_image(width=256, height=64):
    return np.tile(np.arange(width, dtype=np.uint32) % 256, (height, 1)).astype(np.uint8)

def noise_image(size, seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(1, 255, size=(size, size), dtype=np.uint8)

class TestDecodeEngines(LoggedTestCase):
    def setUp(self):
        super().setUp()
        self.luma = make_qr_array()
        self.height, self.width = self.luma.shape

    def test_zbar_decodes_clean_qr(self):
        result = decode_with_zbar(self.luma.tobytes(), self.width, self.height)
        self.logger.debug("ZBar result: %s", result)
        self.assertIsNotNone(result)
        self.assertEqual(result.content, TEST_URL)
        self.assertIsNone(result.version)

    def test_opencv_decodes_clean_qr(self):
        result = decode_with_opencv(self.luma.tobytes(), self.width, self.height)
        self.logger.debug("OpenCV result: %s", result)
        self.assertIsNotNone(result)
        self.assertEqual(result.content, TEST_URL)

    def test_engines_fail_cleanly_on_malformed_buffers(self):
        for engine in (decode_with_zbar, decode_with_opencv):
            with self.subTest(engine=engine.__name__):
                self.assertIsNone(engine(b"abc", 10, 10))
                self.assertIsNone(engine(b"", 0, 0))
                self.assertIsNone(engine(b"\x00" * 4, 2, 2))
                self.assertIsNone(engine(bytes(range(256)) * 4, 32, 32))

    def test_engines_fail_on_blank_image(self):
        blank = np.full((100, 100), 255, dtype=np.uint8).tobytes()
        self.assertIsNone(decode_with_zbar(blank, 100, 100))
        self.assertIsNone(decode_with_opencv(blank, 100, 100))

class TestModuleGridMetadata(LoggedTestCase):
    def test_version_from_grid_size(self):
        grid = make_module_grid()
        self.logger.debug("Module grid size: %s", grid.shape)
        self.assertEqual(read_version(grid), 2)

    def test_version_for_every_valid_size(self):
        for version in range(1, 41):
            side = 17 + 4 * version
            self.assertEqual(read_version(np.zeros((side, side), dtype=np.uint8)), version)

    def test_invalid_grids_have_no_version(self):
        self.assertIsNone(read_version(None))
        self.assertIsNone(read_version(np.zeros((22, 22), dtype=np.uint8)))
        self.assertIsNone(read_version(np.zeros((21, 25), dtype=np.uint8)))
        self.assertIsNone(read_version(np.zeros((0,), dtype=np.uint8)))
        self.assertIsNone(read_version(np.zeros((181, 181), dtype=np.uint8)))

    def test_error_correction_from_format_bits(self):
        levels = {
            qrcode.constants.ERROR_CORRECT_L: ErrorCorrectionLevel.L,
            qrcode.constants.ERROR_CORRECT_M: ErrorCorrectionLevel.M,
            qrcode.constants.ERROR_CORRECT_Q: ErrorCorrectionLevel.Q,
            qrcode.constants.ERROR_CORRECT_H: ErrorCorrectionLevel.H,
        }
        for constant, level in levels.items():
            with self.subTest(level=level):
                grid = make_module_grid(error_correction=constant)
                self.assertEqual(read_error_correction(grid), level)

    def test_error_correction_tolerates_damaged_format_bits(self):
        grid = make_module_grid(error_correction=qrcode.constants.ERROR_CORRECT_Q)
        grid[8, 0] = 255 - grid[8, 0]
        grid[8, 2] = 255 - grid[8, 2]
        self.assertEqual(read_error_correction(grid), ErrorCorrectionLevel.Q)

    def test_error_correction_unreadable_grid(self):
        self.assertIsNone(read_error_correction(None))
        self.assertIsNone(read_error_correction(np.zeros((5, 5), dtype=np.uint8)))

class TestTryDecodeWithBoth(LoggedTestCase):
    def setUp(self):
        super().setUp()
        self.image = np.zeros((30, 30), dtype=np.uint8)
        self.calls = []

    def recording(self, name, result):
        def decode(luma_data, width, height):
            self.calls.append(name)
            return result
        return decode

    def test_secondary_metadata_is_preferred(self):
        engines = (
            ("primary", self.recording("primary", SingleDecodeResult("hello"))),
            ("secondary", self.recording("secondary", SingleDecodeResult("hello", 3, ErrorCorrectionLevel.H))),
        )
        outcome = try_decode_with_both(self.image, engines)
        self.assertEqual(outcome.content, "hello")
        self.assertEqual(outcome.version, 3)
        self.assertEqual(outcome.modules, 29)
        self.assertEqual(outcome.error_correction, ErrorCorrectionLevel.H)
        self.assertEqual(outcome.decoders_success, ("primary", "secondary"))
        self.assertEqual(self.calls, ["primary", "secondary"])

    def test_primary_content_wins_over_secondary(self):
        engines = (
            ("primary", self.recording("primary", SingleDecodeResult("first"))),
            ("secondary", self.recording("secondary", SingleDecodeResult("second", 1, ErrorCorrectionLevel.L))),
        )
        self.assertEqual(try_decode_with_both(self.image, engines).content, "first")

    def test_complete_primary_metadata_skips_secondary(self):
        engines = (
            ("primary", self.recording("primary", SingleDecodeResult("x", 5, ErrorCorrectionLevel.Q))),
            ("secondary", self.recording("secondary", SingleDecodeResult("x", 6, ErrorCorrectionLevel.L))),
        )
        outcome = try_decode_with_both(self.image, engines)
        self.assertEqual(outcome.version, 5)
        self.assertEqual(outcome.decoders_success, ("primary",))
        self.assertEqual(self.calls, ["primary"])

    def test_partial_primary_metadata_asks_secondary(self):
        for primary_result in (SingleDecodeResult("x", error_correction=ErrorCorrectionLevel.Q),
                               SingleDecodeResult("x", version=4),
                               SingleDecodeResult("x", 0, ErrorCorrectionLevel.Q)):
            with self.subTest(primary_result=primary_result):
                self.calls = []
                self.assertFalse(primary_result.has_metadata)
                engines = (
                    ("primary", self.recording("primary", primary_result)),
                    ("secondary", self.recording("secondary", SingleDecodeResult("x", 6, ErrorCorrectionLevel.L))),
                )
                outcome = try_decode_with_both(self.image, engines)
                self.assertEqual(self.calls, ["primary", "secondary"])
                self.assertEqual(outcome.version, 6)
                self.assertEqual(outcome.error_correction, ErrorCorrectionLevel.L)

    def test_primary_only_when_secondary_fails(self):
        engines = (
            ("primary", self.recording("primary", SingleDecodeResult("x"))),
            ("secondary", self.recording("secondary", None)),
        )
        outcome = try_decode_with_both(self.image, engines)
        self.assertEqual(outcome.decoders_success, ("primary",))
        self.assertIsNone(outcome.version)
        self.assertEqual(outcome.modules, 0)

    def test_secondary_alone_when_primary_fails(self):
        engines = (
            ("primary", self.recording("primary", None)),
            ("secondary", self.recording("secondary", SingleDecodeResult("y", 2, ErrorCorrectionLevel.M))),
        )
        outcome = try_decode_with_both(self.image, engines)
        self.assertEqual(outcome.content, "y")
        self.assertEqual(outcome.decoders_success, ("secondary",))
        self.assertEqual(self.calls, ["primary", "secondary"])

    def test_out_of_range_version_is_dropped(self):
        engines = (
            ("primary", self.recording("primary", SingleDecodeResult("z"))),
            ("secondary", self.recording("secondary", SingleDecodeResult("z", 41, ErrorCorrectionLevel.M))),
        )
        outcome = try_decode_with_both(self.image, engines)
        self.assertIsNone(outcome.version)
        self.assertEqual(outcome.error_correction, ErrorCorrectionLevel.M)

    def test_both_fail(self):
        engines = (("primary", fake_never), ("secondary", fake_never))
        self.assertIsNone(try_decode_with_both(self.image, engines))

    def test_color_candidate_is_reduced_to_one_channel(self):
        seen = []
        def engine(luma_data, width, height):
            seen.append((len(luma_data), width, height))
            return None
        try_decode_with_both(np.zeros((10, 20, 3), dtype=np.uint8), (("a", engine), ("b", engine)))
        self.assertEqual(seen, [(200, 20, 10), (200, 20, 10)])

    def test_real_engines_agree_on_clean_qr(self):
        outcome = try_decode_with_both(make_qr_array())
        self.logger.debug("Outcome: %s", outcome)
        self.assertEqual(outcome.content, TEST_URL)
        self.assertIn("zbar", outcome.decoders_success)

class TestRandomParams(LoggedTestCase):
    def test_same_seed_same_params(self):
        self.assertEqual(generate_random_params(32, 987654321), generate_random_params(32, 987654321))

    def test_different_seeds_differ(self):
        self.assertNotEqual(generate_random_params(16, 1), generate_random_params(16, 2))

    def test_zero_seed_falls_back_to_default(self):
        self.assertEqual(generate_random_params(8, 0), generate_random_params(8, DEFAULT_SEED))

    def test_params_within_ranges(self):
        params_list = generate_random_params(256, clock_seed())
        self.assertEqual(len(params_list), 256)
        for params in params_list:
            self.assertIn(params.resize, RANDOM_RESIZE_SIZES)
            self.assertTrue(1.0 <= params.contrast <= 4.0)
            self.assertTrue(0.8 <= params.brightness <= 1.4)
            self.assertTrue(0.0 <= params.blur <= 1.5)
        grayscale_share = sum(p.grayscale for p in params_list) / len(params_list)
        self.logger.debug("Grayscale share: %.2f", grayscale_share)
        self.assertTrue(0.5 < grayscale_share < 0.9)

    def test_clock_seed_uses_wall_clock(self):
        with mock.patch("qr_search.time") as clock:
            clock.time_ns.return_value = 987654321
            self.assertEqual(clock_seed(), 987654321)

    def test_clock_seed_falls_back_when_clock_fails(self):
        with mock.patch("qr_search.time") as clock:
            clock.time_ns.side_effect = OSError("clock unavailable")
            self.assertEqual(clock_seed(), DEFAULT_SEED)

    def test_clock_seed_never_returns_zero(self):
        with mock.patch("qr_search.time") as clock:
            clock.time_ns.return_value = 0
            self.assertEqual(clock_seed(), DEFAULT_SEED)
        with mock.patch("qr_search.time") as clock:
            clock.time_ns.return_value = 1 << 64
            self.assertEqual(clock_seed(), DEFAULT_SEED)

    def test_xorshift_stays_in_64_bits(self):
        state = 1
        for _ in range(1000):
            state, value = xorshift_next(state)
            self.assertTrue(0 < state < 2 ** 64)
            self.assertTrue(0.0 <= value <= 1.0)

    def test_known_good_table(self):
        self.assertEqual(len(KNOWN_GOOD_PARAMS), 12)
        self.assertTrue(all(p.grayscale for p in KNOWN_GOOD_PARAMS))

class TestRaceFirstSuccess(LoggedTestCase):
    def test_returns_a_successful_result(self):
        tasks = [lambda: None, lambda: "a", lambda: None, lambda: "b"]
        self.assertIn(race_first_success(tasks, max_workers=2), ("a", "b"))

    def test_all_fail(self):
        self.assertIsNone(race_first_success([lambda: None] * 5))

    def test_no_tasks(self):
        self.assertIsNone(race_first_success([]))

class TestTieredSearch(LoggedTestCase):
    def test_tier_one_success_skips_later_tiers(self):
        trace = SearchTrace()
        outcome = multi_decode_image(gradient_image(), engines=(("p", fake_always), ("s", fake_never)), trace=trace)
        self.assertEqual(outcome.content, "fake")
        self.assertEqual(trace.tiers_attempted, [1])
        self.assertEqual(trace.candidates_dispatched, {1: 1})
        self.assertEqual(trace.winning_tier, 1)

    def test_binarized_candidates_win_in_tier_two(self):
        trace = SearchTrace()
        engines = (("p", fake_binary_only), ("s", fake_never))
        outcome = multi_decode_image(gradient_image(), engines=engines, trace=trace)
        self.assertEqual(outcome.content, "binary")
        self.assertEqual(trace.tiers_attempted, [1, 2])
        self.assertEqual(trace.candidates_dispatched[2], 3)
        self.assertEqual(trace.winning_tier, 2)

    def test_known_good_params_win_in_tier_three(self):
        trace = SearchTrace()
        engines = (("p", fake_size_only(400)), ("s", fake_never))
        outcome = multi_decode_image(noise_image(800), engines=engines, trace=trace)
        self.assertEqual(outcome.content, "size-400")
        self.assertEqual(trace.tiers_attempted, [1, 2, 3])
        self.assertEqual(trace.winning_tier, 3)
        self.logger.debug("Tier 3 candidates: %s", trace.candidates_dispatched[3])
        self.assertEqual(trace.candidates_dispatched[3], 24)

    def test_random_params_win_in_tier_four(self):
        seed = 424242
        # 200 and 550 are drawn only by the random tier, never by the known-good table.
        target = next(p.resize for p in generate_random_params(64, seed) if p.resize in (200, 550))
        trace = SearchTrace()
        engines = (("p", fake_size_only(target)), ("s", fake_never))
        outcome = multi_decode_image(noise_image(600), engines=engines, seed=seed, trace=trace)
        self.assertEqual(outcome.content, f"size-{target}")
        self.assertEqual(trace.tiers_attempted, [1, 2, 3, 4])
        self.assertEqual(trace.candidates_dispatched[4], 64)
        self.assertEqual(trace.winning_tier, 4)

    def test_brute_force_tries_is_configurable(self):
        trace = SearchTrace()
        engines = (("p", fake_never), ("s", fake_never))
        with self.assertRaises(DecodeFailed):
            multi_decode_image(noise_image(64), engines=engines,
                               brute_force_tries=LEGACY_BRUTE_FORCE_TRIES, seed=5, trace=trace)
        self.assertEqual(trace.candidates_dispatched[4], LEGACY_BRUTE_FORCE_TRIES)

    def test_failure_runs_every_tier(self):
        trace = SearchTrace()
        engines = (("p", fake_never), ("s", fake_never))
        with self.assertRaises(DecodeFailed):
            multi_decode_image(noise_image(64), engines=engines, seed=1, trace=trace)
        self.assertEqual(trace.tiers_attempted, [1, 2, 3, 4])
        self.assertIsNone(trace.winning_tier)

    def test_clean_qr_decodes_in_tier_one(self):
        trace = SearchTrace()
        outcome = multi_decode_image(make_qr_array(), trace=trace)
        self.assertEqual(outcome.content, TEST_URL)
        self.assertEqual(trace.tiers_attempted, [1])

    def test_inverted_qr_is_found(self):
        inverted = 255 - make_qr_array()
        outcome = multi_decode_image(inverted, seed=3)
        self.assertEqual(outcome.content, TEST_URL)

    def test_blank_image_fails_every_tier(self):
        trace = SearchTrace()
        with self.assertRaises(DecodeFailed):
            multi_decode_image(np.full((120, 120), 255, dtype=np.uint8), seed=11, trace=trace)
        self.assertEqual(trace.tiers_attempted, [1, 2, 3, 4])

if __name__ == "__main__":
    unittest.main()
