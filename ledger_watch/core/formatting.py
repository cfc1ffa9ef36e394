"""
Display Formatting
------------------

String helpers for anything that renders snapshots or holdings. None of these
round token amounts: digits that do not fit are cut off.
"""
import time
from typing import Optional


def format_grouped(value: int) -> str:
    """Integer with thousands separators, e.g. 1234567 -> '1,234,567'."""
    return f"{int(value):,}"


def format_token_amount(amount: int, decimals: int, max_fraction_digits: Optional[int] = None) -> str:
    """
    Render a raw token amount using the token's decimals.

    The integer part is grouped, the fractional part loses its trailing zeros
    and disappears (with the separator) when nothing is left.

    Args:
        amount: Raw unsigned amount in the token's smallest unit.
        decimals: Number of decimals the token declares.
        max_fraction_digits: Optional cap on shown fractional digits; extra
            digits are truncated, not rounded.

    Returns:
        e.g. (123456789, 6) -> '123.456789', (100000000, 8) -> '1'.
    """
    if amount < 0:
        raise ValueError("Token amount must be unsigned.")
    if decimals < 0:
        raise ValueError("Token decimals must be non-negative.")

    whole, remainder = divmod(int(amount), 10 ** decimals)
    fraction = str(remainder).zfill(decimals).rstrip('0') if decimals else ''
    if max_fraction_digits is not None:
        fraction = fraction[:max(max_fraction_digits, 0)].rstrip('0')

    if not fraction:
        return format_grouped(whole)
    return f"{format_grouped(whole)}.{fraction}"


def format_share(percentage: float) -> str:
    """Supply share for display: '<0.01%' for dust, 1 digit from 1% up, else 2."""
    if 0 < percentage < 0.01:
        return '<0.01%'
    digits = 1 if percentage >= 1 else 2
    return f"{percentage:.{digits}f}%"


def time_ago(timestamp_seconds: int, now: Optional[float] = None) -> str:
    now_s = int(now if now is not None else time.time())
    seconds = max(0, now_s - int(timestamp_seconds))
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    return f"{seconds // 3600}h ago"


def shorten_hash(value: str, head: int = 16, tail: int = 8) -> str:
    if len(value) <= head + tail:
        return value
    return f"{value[:head]}...{value[-tail:]}"


def format_size_kb(size_bytes: int) -> str:
    return f"{size_bytes / 1024:.1f} KB"
