# qr_search.py

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from functools import partial

import numpy as np

from qr_decoder import try_decode_with_both
from qr_errors import DecodeFailed
from qr_image import load_image
from qr_preprocess import (
    apply_otsu_threshold, apply_high_contrast_threshold, apply_preprocessing_fast,
    enhance_contrast, extract_color_channels, extract_hue_channel, extract_value_channel,
    invert_image
)
from qr_types import PreprocessParams

"""
This module implements the tiered decode search. Each tier is only tried when every
earlier tier failed:

  1. The unmodified image.
  2. Otsu, inverted Otsu and high-contrast binarizations.
  3. Known-good preprocessing combinations plus color, hue and value channels.
  4. Pseudo-random preprocessing combinations (brute force).

Within tiers 2-4 all candidates are submitted to a thread pool and the first one that
decodes wins; whichever finishes first, not whichever was generated first. Candidate
tasks only read their inputs and build their own images, so outstanding tasks can be
abandoned once a winner is found.
"""

DEFAULT_BRUTE_FORCE_TRIES = 64
LEGACY_BRUTE_FORCE_TRIES = 256
DEFAULT_SEED = 12345
MASK_64 = (1 << 64) - 1

# Resize targets the brute-force tier picks from.
RANDOM_RESIZE_SIZES = (200, 250, 300, 350, 400, 450, 500, 550)

# Known-good preprocessing combinations, most effective first.
KNOWN_GOOD_PARAMS = (
    PreprocessParams(resize=400, contrast=2.0, brightness=1.0, blur=0.0),
    PreprocessParams(resize=350, contrast=2.5, brightness=1.0, blur=0.5),
    PreprocessParams(resize=300, contrast=2.0, brightness=1.1, blur=0.3),
    PreprocessParams(resize=400, contrast=1.8, brightness=0.9, blur=0.0),
    PreprocessParams(resize=250, contrast=2.5, brightness=1.0, blur=1.0),
    PreprocessParams(resize=300, contrast=3.0, brightness=1.0, blur=0.8),
    PreprocessParams(resize=0, contrast=2.5, brightness=1.0, blur=0.0),
    PreprocessParams(resize=0, contrast=2.0, brightness=1.1, blur=0.5),
    PreprocessParams(resize=500, contrast=1.5, brightness=1.0, blur=0.0),
    PreprocessParams(resize=450, contrast=2.2, brightness=1.0, blur=0.3),
    PreprocessParams(resize=350, contrast=3.5, brightness=1.2, blur=1.0),
    PreprocessParams(resize=300, contrast=4.0, brightness=1.0, blur=1.5),
)


@dataclass
class SearchTrace:
    """
    Tier counters for one search. Only the calling thread writes to it.

    :param tiers_attempted: Tier numbers in the order they ran.
    :param candidates_dispatched: Tier number -> number of candidate tasks submitted.
    :param winning_tier: Tier that produced the decode, or None.
    """
    tiers_attempted: list = field(default_factory=list)
    candidates_dispatched: dict = field(default_factory=dict)
    winning_tier: int = None


# ----------------------------------------------------------------------------
# Pseudo-random parameters for the brute-force tier
# ----------------------------------------------------------------------------

def clock_seed():
    """
    Seed from wall-clock nanoseconds, or DEFAULT_SEED if the clock is unusable.
    Xorshift state must never be zero, so a zero reading also falls back.
    """
    try:
        seed = time.time_ns() & MASK_64
    except OSError as e:
        logging.error(f"[clock_seed] Clock unavailable ({e}); using default seed.")
        return DEFAULT_SEED
    return seed or DEFAULT_SEED

def xorshift_next(state):
    """
    Advance a 64-bit xorshift generator (shifts 13, 7, 17).

    :param state: Current non-zero 64-bit state.
    :return: (new_state, value) where value is the new state scaled to [0.0, 1.0].
    """
    state ^= (state << 13) & MASK_64
    state ^= state >> 7
    state ^= (state << 17) & MASK_64
    return state, state / MASK_64

def generate_random_params(count, seed):
    """
    Generate count preprocessing combinations sequentially from one seed.

    The whole list is built before any parallel work starts, so the generator state
    is never shared between tasks. The same seed always gives the same list.

    Ranges: resize from RANDOM_RESIZE_SIZES, contrast 1.0-4.0, brightness 0.8-1.4,
    blur 0-1.5, grayscale with probability ~0.7.

    :param count: Number of combinations.
    :param seed: Initial generator state (0 is replaced by DEFAULT_SEED).
    :return: List of PreprocessParams.
    """
    state = (seed & MASK_64) or DEFAULT_SEED
    params_list = []
    for _ in range(count):
        state, r_resize = xorshift_next(state)
        state, r_contrast = xorshift_next(state)
        state, r_brightness = xorshift_next(state)
        state, r_blur = xorshift_next(state)
        state, r_grayscale = xorshift_next(state)
        params_list.append(PreprocessParams(
            resize=RANDOM_RESIZE_SIZES[int(r_resize * len(RANDOM_RESIZE_SIZES)) % len(RANDOM_RESIZE_SIZES)],
            contrast=1.0 + r_contrast * 3.0,
            brightness=0.8 + r_brightness * 0.6,
            blur=r_blur * 1.5,
            grayscale=r_grayscale > 0.3,
        ))
    return params_list


# ----------------------------------------------------------------------------
# Candidate tasks
# ----------------------------------------------------------------------------

def _otsu_inverted(image):
    return invert_image(apply_otsu_threshold(image))

def _test_candidate(transform, source, engines):
    return try_decode_with_both(transform(source), engines)

def _test_expanded_candidate(transform, source, engines):
    # Raw, then Otsu, then inverted Otsu of the same variant.
    variant = transform(source)
    outcome = try_decode_with_both(variant, engines)
    if outcome is not None:
        return outcome
    otsu = apply_otsu_threshold(variant)
    outcome = try_decode_with_both(otsu, engines)
    if outcome is not None:
        return outcome
    return try_decode_with_both(invert_image(otsu), engines)

def _quick_tasks(image, engines):
    return [partial(_test_candidate, transform, image, engines)
            for transform in (apply_otsu_threshold, _otsu_inverted, apply_high_contrast_threshold)]

def _known_good_tasks(image, engines):
    # Channel extraction is cheap and shared read-only by the tasks below.
    channels = extract_color_channels(image)
    hue = extract_hue_channel(image)
    value = extract_value_channel(image)

    sources = [(partial(apply_preprocessing_fast, params=params), image) for params in KNOWN_GOOD_PARAMS]
    for channel in channels:
        sources.append((np.copy, channel))
        sources.append((apply_otsu_threshold, channel))
    sources.append((np.copy, hue))
    sources.append((apply_otsu_threshold, hue))
    sources.append((np.copy, value))
    sources.append((enhance_contrast, value))

    return [partial(_test_expanded_candidate, transform, source, engines) for transform, source in sources]

def _brute_force_tasks(image, engines, tries, seed):
    params_list = generate_random_params(tries, seed)
    logging.debug(f"[_brute_force_tasks] Generated {len(params_list)} random parameter sets (seed {seed})")
    return [partial(_test_expanded_candidate, partial(apply_preprocessing_fast, params=params), image, engines)
            for params in params_list]

def race_first_success(tasks, max_workers=None):
    """
    Run tasks in a thread pool and return the first non-None result.

    Once a task succeeds, tasks that have not started are cancelled and running ones
    are left to finish in the background; nobody waits for them.

    :param tasks: Zero-argument callables returning a result or None.
    :param max_workers: Thread pool size (None = ThreadPoolExecutor default).
    :return: The first successful result, or None if every task returned None.
    """
    if not tasks:
        return None
    executor = ThreadPoolExecutor(max_workers=max_workers)
    try:
        futures = [executor.submit(task) for task in tasks]
        for future in as_completed(futures):
            result = future.result()
            if result is not None:
                return result
        return None
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


# ----------------------------------------------------------------------------
# Orchestrator
# ----------------------------------------------------------------------------

def multi_decode_image(image, engines=None, brute_force_tries=DEFAULT_BRUTE_FORCE_TRIES,
                       seed=None, max_workers=None, trace=None):
    """
    Find a decodable variant of an image, escalating from cheap to exhaustive tiers.

    :param image: uint8 array (h, w) or (h, w, 3).
    :param engines: Decode engine pair passed to try_decode_with_both (None = default engines).
    :param brute_force_tries: Number of random parameter sets in tier 4.
    :param seed: Tier-4 generator seed; None seeds from the clock.
    :param max_workers: Thread pool size per tier.
    :param trace: Optional SearchTrace that records which tiers ran.
    :return: DecodeOutcome of the first successful candidate.
    :raises DecodeFailed: If no tier finds a decodable candidate.
    """
    if trace is None:
        trace = SearchTrace()

    trace.tiers_attempted.append(1)
    trace.candidates_dispatched[1] = 1
    outcome = try_decode_with_both(image, engines)
    if outcome is not None:
        trace.winning_tier = 1
        logging.debug(f"[multi_decode_image] Tier 1 decoded with {outcome.decoders_success}")
        return outcome

    if seed is None:
        seed = clock_seed()

    tiers = (
        (2, _quick_tasks),
        (3, _known_good_tasks),
        (4, partial(_brute_force_tasks, tries=brute_force_tries, seed=seed)),
    )
    for tier, build_tasks in tiers:
        tasks = build_tasks(image, engines)
        trace.tiers_attempted.append(tier)
        trace.candidates_dispatched[tier] = len(tasks)
        logging.debug(f"[multi_decode_image] Tier {tier}: testing {len(tasks)} candidates")

        outcome = race_first_success(tasks, max_workers)
        if outcome is not None:
            trace.winning_tier = tier
            logging.debug(f"[multi_decode_image] Tier {tier} decoded with {outcome.decoders_success}")
            return outcome

    logging.debug("[multi_decode_image] All tiers exhausted without a decode.")
    raise DecodeFailed()

def multi_decode(image_bytes, **kwargs):
    """
    Load encoded image bytes and run the tiered search on them.

    :param image_bytes: PNG, JPEG, ... bytes.
    :return: DecodeOutcome.
    :raises ImageLoadError: If the bytes are not an image.
    :raises DecodeFailed: If nothing decodes.
    """
    return multi_decode_image(load_image(image_bytes), **kwargs)
