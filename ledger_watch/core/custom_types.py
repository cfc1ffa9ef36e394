"""
Value Types
-----------

Immutable value objects exchanged between the chain clients, the live engines
and whatever renders them. Every type here is a frozen dataclass: engines
replace them wholesale and observers can hold on to a reference safely.

- GasParameters / FeeTiers: gas and fee parameters reported by the node.
- BlockSummary: the few block fields the dashboard shows.
- ChainSnapshot: one consistent view of the chain head.
- TrackedHolding / ChartSegment / HoldingsView: the portfolio read model.

``from_dict`` constructors accept provider payloads with camelCase or
snake_case keys, and integers given as ints, decimal strings or ``0x`` hex.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

# Identity of a connected wallet (hex address string).
Identity = str


def parse_int(value: Any, default: int = 0) -> int:
    """Parse an integer that may arrive as int, decimal string or hex string."""
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    s = str(value).strip()
    if not s:
        return default
    if s.lower().startswith(('0x', '-0x')):
        return int(s, 16)
    return int(s)


def _pick(d: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return default


@dataclass(frozen=True)
class FeeTiers:
    """Recommended fee rates (sat/vB)."""
    low: float = 0.0
    medium: float = 0.0
    high: float = 0.0


@dataclass(frozen=True)
class GasParameters:
    target_gas_limit: int
    base_gas: int
    gas_per_sat: int
    fee_tiers: FeeTiers = field(default_factory=FeeTiers)
    block_number: int = 0
    gas_used: int = 0
    ema: int = 0
    conservative: float = 0.0

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "GasParameters":
        btc = _pick(d, 'bitcoin', 'btc', default={}) or {}
        rec = _pick(btc, 'recommended', default=None) or _pick(d, 'fee_tiers', 'feeTiers', default={}) or {}
        tiers = FeeTiers(
            low=float(_pick(rec, 'low', default=0) or 0),
            medium=float(_pick(rec, 'medium', default=0) or 0),
            high=float(_pick(rec, 'high', default=0) or 0),
        )
        return cls(
            target_gas_limit=parse_int(_pick(d, 'targetGasLimit', 'target_gas_limit')),
            base_gas=parse_int(_pick(d, 'baseGas', 'base_gas')),
            gas_per_sat=parse_int(_pick(d, 'gasPerSat', 'gas_per_sat')),
            fee_tiers=tiers,
            block_number=parse_int(_pick(d, 'blockNumber', 'block_number')),
            gas_used=parse_int(_pick(d, 'gasUsed', 'gas_used')),
            ema=parse_int(_pick(d, 'ema')),
            conservative=float(_pick(btc, 'conservative', default=0) or 0),
        )


@dataclass(frozen=True)
class BlockSummary:
    height: int
    hash: str
    timestamp_seconds: int = 0
    tx_count: int = 0
    gas_used: int = 0
    size_bytes: int = 0

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "BlockSummary":
        ts = parse_int(_pick(d, 'time', 'timestamp', 'timestamp_seconds'))
        # Some nodes report block time in milliseconds
        if ts > 10_000_000_000:
            ts //= 1000
        txs = _pick(d, 'txCount', 'tx_count', 'transactions', default=0)
        return cls(
            height=parse_int(_pick(d, 'height', 'number')),
            hash=str(_pick(d, 'hash', 'blockHash', default='')),
            timestamp_seconds=ts,
            tx_count=len(txs) if isinstance(txs, (list, tuple)) else parse_int(txs),
            gas_used=parse_int(_pick(d, 'gasUsed', 'gas_used')),
            size_bytes=parse_int(_pick(d, 'size', 'size_bytes')),
        )


@dataclass(frozen=True)
class ChainSnapshot:
    """Consistent view of the chain head, replaced wholesale on every poll.

    ``recent_blocks`` is newest first, at most six entries, heights strictly
    descending; its first entry is the latest block.
    """
    head_height: Optional[int] = None
    gas_parameters: Optional[GasParameters] = None
    latest_block: Optional[BlockSummary] = None
    recent_blocks: Tuple[BlockSummary, ...] = ()

    @classmethod
    def empty(cls) -> "ChainSnapshot":
        return cls()

    @property
    def connected(self) -> bool:
        return self.head_height is not None


@dataclass(frozen=True)
class PulseState:
    """What subscribers of ChainPulse receive after each change."""
    snapshot: ChainSnapshot
    pulse: bool
    last_updated_ms: int

    @property
    def connected(self) -> bool:
        return self.snapshot.connected


@dataclass(frozen=True)
class TokenMetadata:
    name: str
    symbol: str
    decimals: int
    total_supply: int


@dataclass(frozen=True)
class TrackedHolding:
    contract_address: str
    display_name: str
    symbol: str
    decimals: int
    total_supply: int
    balance: int = 0
    supply_share: float = 0.0


@dataclass(frozen=True)
class ChartSegment:
    contract_address: str
    label: str
    color: str
    weight: float


@dataclass(frozen=True)
class HoldingsView:
    """Ordered holdings (insertion order) plus their chart segments."""
    holdings: Tuple[TrackedHolding, ...] = ()
    segments: Tuple[ChartSegment, ...] = ()

    def __len__(self) -> int:
        return len(self.holdings)

    def addresses(self) -> Tuple[str, ...]:
        return tuple(h.contract_address for h in self.holdings)

    def as_dicts(self) -> Tuple[Dict[str, Any], ...]:
        out = []
        for h, seg in zip(self.holdings, self.segments):
            out.append({
                'contract_address': h.contract_address,
                'name': h.display_name,
                'symbol': h.symbol,
                'decimals': h.decimals,
                'total_supply': h.total_supply,
                'balance': h.balance,
                'supply_share': h.supply_share,
                'color': seg.color,
                'weight': seg.weight,
            })
        return tuple(out)


@dataclass(frozen=True)
class TokenReport:
    """Result of a one-shot token lookup; ``balance`` is None when unknown."""
    contract_address: str
    metadata: TokenMetadata
    balance: Optional[int] = None
    supply_share: Optional[float] = None
