"""
Derivation Helpers
------------------

Pure functions shared by the live engines. Token quantities are arbitrary
precision integers, so every ratio is computed in integer arithmetic first and
only converted to float at the very end for display.
"""
from typing import List, Optional, Sequence, Tuple

from ledger_watch.core.custom_types import (
    BlockSummary,
    ChainSnapshot,
    ChartSegment,
    GasParameters,
    TrackedHolding,
)

# Segment colors, assigned by insertion position (index mod len).
CHART_COLORS: Tuple[str, ...] = (
    '#f7931a', '#00d68f', '#4d9fff', '#9b59ff',
    '#ff4d6a', '#ffcc00', '#00cccc', '#ff8c42',
)

RECENT_BLOCK_WINDOW = 6


def supply_share(balance: int, total_supply: int) -> float:
    """
    Percentage of ``total_supply`` held by ``balance``.

    Computed as ``balance * 10000 // total_supply / 100``: truncated (never
    rounded) to two fractional digits and clamped to [0, 100]. A zero supply
    yields 0.

    Args:
        balance: Raw token balance (smallest unit).
        total_supply: Raw total supply (smallest unit).

    Returns:
        A float in [0, 100], e.g. 33.33 for 1_000_000 of 3_000_000.
    """
    if total_supply <= 0 or balance <= 0:
        return 0.0
    basis_points = (balance * 10000) // total_supply
    basis_points = max(0, min(basis_points, 10000))
    return basis_points / 100


def recent_heights(head_height: int, window: int = RECENT_BLOCK_WINDOW) -> List[int]:
    """Heights ``head, head-1, ...`` down to ``max(head - window + 1, 0)``."""
    if head_height < 0 or window <= 0:
        return []
    return [h for h in range(head_height, head_height - window, -1) if h >= 0]


def height_advanced(previous: ChainSnapshot, head_height: int) -> bool:
    """True only when a head was observed before and the new one is higher."""
    return previous.head_height is not None and head_height > previous.head_height


def order_recent_blocks(
    latest: BlockSummary,
    blocks: Sequence[BlockSummary],
    window: int = RECENT_BLOCK_WINDOW,
) -> Tuple[BlockSummary, ...]:
    """Newest-first, de-duplicated, bounded block window headed by ``latest``.

    Providers may return batches unordered or with entries above the head we
    just read; those are dropped so the window never disagrees with ``latest``.
    """
    by_height = {b.height: b for b in blocks if 0 <= b.height <= latest.height}
    by_height[latest.height] = latest
    ordered = sorted(by_height.values(), key=lambda b: b.height, reverse=True)
    return tuple(ordered[:window])


def chart_segments(
    holdings: Sequence[TrackedHolding],
    palette: Sequence[str] = CHART_COLORS,
) -> Tuple[ChartSegment, ...]:
    # count-based: every holding gets an equal slice
    if not holdings:
        return ()
    colors = tuple(palette) or CHART_COLORS
    weight = 100 / len(holdings)
    return tuple(
        ChartSegment(
            contract_address=h.contract_address,
            label=h.symbol,
            color=colors[i % len(colors)],
            weight=weight,
        )
        for i, h in enumerate(holdings)
    )


def gas_utilization(gas: Optional[GasParameters]) -> int:
    """Integer percentage of the target gas limit used, capped at 100."""
    if gas is None or gas.target_gas_limit <= 0:
        return 0
    return min(100, (gas.gas_used * 100) // gas.target_gas_limit)
