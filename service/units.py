"""
Unit helpers for rate fields
Rates are stored as percentages (0-100) and computed as fractions (0-1)
"""


def to_fraction(pct: float) -> float:
    """Convert a percentage (e.g. 2.5) to a fraction (0.025)"""
    return pct / 100


def to_percent(frac: float) -> float:
    """Convert a fraction (e.g. 0.025) to a percentage (2.5)"""
    return frac * 100
