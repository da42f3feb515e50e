"""
Skewed random delays for virtual-user pacing.

A uniform draw raised to a power piles probability mass up at one end of the
unit interval; mapping that onto [min, max] gives think times that are mostly
short (or mostly long) with an occasional straggler at the other end.
"""

import random
from typing import Optional

from booking_errors import InvalidRangeError

# Shared by every virtual user. SystemRandom keeps no stream state.
SECURE_RANDOM = random.SystemRandom()


def generate_skewed_delay(
    min_ms: int,
    max_ms: int,
    skew_factor: float = 2.0,
    bias_low: bool = True,
    rng: Optional[random.Random] = None,
) -> int:
    """
    Draw a delay in milliseconds from [min_ms, max_ms).

    Args:
        min_ms: Lower bound (inclusive)
        max_ms: Upper bound (exclusive), must be greater than min_ms
        skew_factor: Exponent applied to the uniform draw. Larger values push
            more samples toward the biased bound; 1.0 is uniform.
        bias_low: True concentrates samples near min_ms, False near max_ms
        rng: Random source, defaults to the shared SystemRandom
    """
    if min_ms >= max_ms:
        raise InvalidRangeError(f"max ({max_ms}) must be greater than min ({min_ms})")

    rng = rng or SECURE_RANDOM

    if bias_low:
        skewed = rng.random() ** skew_factor
    else:
        # (0, 1] so that 1 - u**skew stays inside [0, 1)
        skewed = 1.0 - (1.0 - rng.random()) ** skew_factor

    return min_ms + int(skewed * (max_ms - min_ms))


def generate_skewed_duration(
    min_ms: int,
    max_ms: int,
    skew_factor: float = 2.0,
    bias_low: bool = True,
    rng: Optional[random.Random] = None,
) -> float:
    """Same as generate_skewed_delay, in seconds."""
    return generate_skewed_delay(min_ms, max_ms, skew_factor, bias_low, rng) / 1000.0


# =============================================================================
# PACING PRESETS
# =============================================================================

class RandDelay:
    """Named pacing points of the booking journey, in seconds."""

    @staticmethod
    def staggered_login_waiting(window_ms: int, rng: Optional[random.Random] = None) -> float:
        # skew 1.0 keeps the split uniform so logins spread evenly over the window
        return generate_skewed_duration(0, window_ms, 1.0, rng=rng)

    @staticmethod
    def after_login(rng: Optional[random.Random] = None) -> float:
        return generate_skewed_duration(300, 5000, rng=rng)

    @staticmethod
    def before_booking_amount_set(rng: Optional[random.Random] = None) -> float:
        return generate_skewed_duration(300, 3000, rng=rng)

    @staticmethod
    def between_booking(rng: Optional[random.Random] = None) -> float:
        return generate_skewed_duration(200, 1500, 4.0, rng=rng)

    @staticmethod
    def before_confirm_reservation(rng: Optional[random.Random] = None) -> float:
        # people deliberate before paying
        return generate_skewed_duration(2000, 10000, bias_low=False, rng=rng)
