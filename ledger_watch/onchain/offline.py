"""Offline chain client backed by an in-memory fixture.

Mirrors what a node would return so the live engines can be exercised without
network access (CLI ``--offline`` mode and the test-suite). Fixture layout::

    head_height: 120
    gas: {targetGasLimit: ..., baseGas: ..., gasPerSat: ..., bitcoin: {...}}
    blocks:
      - {height: 120, hash: '0x..', time: 1700000000, txCount: 3, gasUsed: 10, size: 2048}
    tokens:
      '0xToken':
        name: Moto
        symbol: MOTO
        decimals: 8
        total_supply: 2100000000000000
        balances: {'0xWallet': 1000}
        fail: [balance_of]     # optional: methods that raise

Blocks missing from the fixture are synthesized deterministically so a
sparse fixture still yields a full recent-blocks window.
"""
from __future__ import annotations
import copy
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import yaml
from loguru import logger

from ledger_watch.core.custom_types import BlockSummary, GasParameters, Identity, parse_int
from .base import ChainQueryClient, TokenContract


class OfflineTokenContract(TokenContract):
    def __init__(self, address: str, spec: Optional[Dict[str, Any]], calls: Optional[List[str]] = None):
        self.address = address
        self._spec = spec
        self._fail = set((spec or {}).get('fail') or [])
        self._calls = calls if calls is not None else []

    def _field(self, method: str, key: str) -> Any:
        self._calls.append(f"{method}:{self.address}")
        if self._spec is None:
            raise LookupError(f"Contract {self.address} not found")
        if method in self._fail:
            raise RuntimeError(f"{method} reverted for {self.address}")
        if key not in self._spec:
            raise LookupError(f"Contract {self.address} has no {key}")
        return self._spec[key]

    async def name(self) -> str:
        return str(self._field('name', 'name'))

    async def symbol(self) -> str:
        return str(self._field('symbol', 'symbol'))

    async def decimals(self) -> int:
        return parse_int(self._field('decimals', 'decimals'))

    async def total_supply(self) -> int:
        return parse_int(self._field('total_supply', 'total_supply'))

    async def balance_of(self, identity: Identity) -> int:
        self._calls.append(f"balance_of:{self.address}")
        if self._spec is None:
            raise LookupError(f"Contract {self.address} not found")
        if 'balance_of' in self._fail:
            raise RuntimeError(f"balance_of reverted for {self.address}")
        return parse_int((self._spec.get('balances') or {}).get(identity, 0))


class OfflineChainClient(ChainQueryClient):
    def __init__(self, fixture: Optional[Dict[str, Any]] = None):
        fixture = copy.deepcopy(fixture or {})
        self.head_height: int = parse_int(fixture.get('head_height'), 0)
        self.gas = GasParameters.from_dict(fixture.get('gas') or {})
        self._blocks: Dict[int, BlockSummary] = {}
        for raw in fixture.get('blocks') or []:
            b = BlockSummary.from_dict(raw)
            self._blocks[b.height] = b
        self.tokens: Dict[str, Dict[str, Any]] = dict(fixture.get('tokens') or {})
        # chain-level methods listed here raise, e.g. {'get_head_height'}
        self.fail_methods = set(fixture.get('fail') or [])
        self.calls: List[str] = []

    @classmethod
    def from_file(cls, path: str) -> "OfflineChainClient":
        with open(Path(path), 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded offline chain fixture '{}' (head={})", path, data.get('head_height'))
        return cls(data)

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        if method in self.fail_methods:
            raise RuntimeError(f"{method} unavailable")

    def _block(self, height: int) -> BlockSummary:
        if height < 0 or height > self.head_height:
            raise LookupError(f"Block {height} not found")
        b = self._blocks.get(height)
        if b is None:
            b = BlockSummary(height=height, hash=f"0x{height:064x}")
        return b

    async def get_head_height(self) -> int:
        self._enter('get_head_height')
        return self.head_height

    async def get_gas_parameters(self) -> GasParameters:
        self._enter('get_gas_parameters')
        return self.gas

    async def get_block(self, height: int) -> BlockSummary:
        self._enter('get_block')
        return self._block(height)

    async def get_blocks(self, heights: Sequence[int]) -> Sequence[BlockSummary]:
        self._enter('get_blocks')
        return [self._block(h) for h in heights]

    def token(self, address: str) -> TokenContract:
        return OfflineTokenContract(address, self.tokens.get(address), self.calls)

    def advance(self, blocks: Iterable[BlockSummary] = ()) -> int:
        """Move the head forward by one block (or to the highest given block)."""
        added = list(blocks)
        for b in added:
            self._blocks[b.height] = b
        if added:
            self.head_height = max(self.head_height, max(b.height for b in added))
        else:
            self.head_height += 1
        return self.head_height


__all__ = ['OfflineChainClient', 'OfflineTokenContract']
