"""Display helpers: amounts, node sizes/colors and edge widths."""

from __future__ import annotations

import math

from flowmap.ledger.types import ONE


def format_amount(shannons: int) -> str:
    """Whole CKB with thousands separators, e.g. 1234567 * ONE -> "1,234,567"."""
    return f"{int(shannons) // ONE:,}"


def log_size(shannons: int, minimum: float = -1.0) -> float:
    whole = int(shannons) // ONE
    if whole <= 0:
        return minimum
    return max(minimum, math.log10(whole))


def node_size(balance: int) -> float:
    return log_size(balance, -2.0) * 4 + 24


def node_color(color_seed: int) -> str:
    return f"hsl({color_seed % 360} 65% 45%)"


def edge_width(value: int) -> float:
    return (log_size(value, 0.0) * 0.3 + 1) ** 2
