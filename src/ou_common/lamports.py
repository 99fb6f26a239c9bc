"""Integer arithmetic utilities for lamport-denominated pots.

All pot balances, fees and payouts are int (lamports). Fractional
intermediate values are kept exact as Fraction and resolved with an
explicit floor or half-up rounding, never through float.
"""

from fractions import Fraction

LAMPORTS_PER_SOL = 1_000_000_000


def floor_int(value: Fraction | int) -> int:
    """Floor toward negative infinity (math.floor semantics)."""
    return int(value // 1)


def round_half_up(value: Fraction | int) -> int:
    """Round to nearest integer, ties away from zero for positives: 2.5 -> 3."""
    value = Fraction(value)
    if value >= 0:
        return floor_int(value + Fraction(1, 2))
    return -floor_int(-value + Fraction(1, 2))


def lamports_to_display(lamports: int) -> str:
    """Convert lamports to a SOL display string: 1_500_000_000 -> '1.500000000 SOL'."""
    sign = "-" if lamports < 0 else ""
    abs_lamports = abs(lamports)
    return f"{sign}{abs_lamports // LAMPORTS_PER_SOL:,}.{abs_lamports % LAMPORTS_PER_SOL:09d} SOL"
