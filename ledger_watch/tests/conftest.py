"""
Pytest fixtures for the ledger_watch test-suite.

Every engine test runs against ``OfflineChainClient`` so nothing touches the
network; ``GatedChainClient`` adds a gate on ``get_block`` for tests that need
a poll cycle to be in flight at a known point.
"""
import asyncio
from typing import Optional

import pytest

from ledger_watch.onchain.base import StaticIdentity
from ledger_watch.onchain.offline import OfflineChainClient

WALLET = "0x7a3e000000000000000000000000000000000000000000000000000000001c0b"
TOKEN_A = "0xaaaa000000000000000000000000000000000000000000000000000000000001"
TOKEN_B = "0xbbbb000000000000000000000000000000000000000000000000000000000002"
TOKEN_ZERO = "0xcccc000000000000000000000000000000000000000000000000000000000003"
TOKEN_BAD_META = "0xdddd000000000000000000000000000000000000000000000000000000000004"
TOKEN_BAD_BALANCE = "0xeeee000000000000000000000000000000000000000000000000000000000005"

CHAIN_FIXTURE = {
    "head_height": 120,
    "gas": {
        "blockNumber": "0x78",
        "gasUsed": "0x1312d00",
        "targetGasLimit": "0x2625a00",
        "baseGas": "0x64",
        "gasPerSat": "0x3e8",
        "bitcoin": {"conservative": 9, "recommended": {"low": 2, "medium": 5, "high": 11}},
    },
    "blocks": [
        {"height": 120, "hash": "0x" + "ab" * 32, "time": 1_700_000_000, "txCount": 7, "gasUsed": 123, "size": 4096},
        {"height": 119, "hash": "0x" + "cd" * 32, "time": 1_699_999_400, "txCount": 3, "gasUsed": 45, "size": 2048},
    ],
    "tokens": {
        TOKEN_A: {
            "name": "Alpha",
            "symbol": "ALP",
            "decimals": 6,
            "total_supply": 3_000_000,
            "balances": {WALLET: 1_000_000},
        },
        TOKEN_B: {
            "name": "Beta",
            "symbol": "BET",
            "decimals": 18,
            "total_supply": 10**27,
            "balances": {WALLET: 5 * 10**24},
        },
        TOKEN_ZERO: {
            "name": "Zero",
            "symbol": "ZRO",
            "decimals": 8,
            "total_supply": 0,
            "balances": {WALLET: 500},
        },
        TOKEN_BAD_META: {
            "name": "Broken",
            "symbol": "BRK",
            "decimals": 8,
            "total_supply": 1000,
            "fail": ["symbol"],
        },
        TOKEN_BAD_BALANCE: {
            "name": "Shy",
            "symbol": "SHY",
            "decimals": 2,
            "total_supply": 1000,
            "balances": {WALLET: 10},
            "fail": ["balance_of"],
        },
    },
}


class GatedChainClient(OfflineChainClient):
    """Offline client whose ``get_block`` waits for ``gate`` when one is set."""

    gate: Optional[asyncio.Event] = None

    async def get_block(self, height: int):
        if self.gate is not None:
            await self.gate.wait()
        return await super().get_block(height)


class DisconnectedChainClient(OfflineChainClient):
    @property
    def is_connected(self) -> bool:
        return False


@pytest.fixture
def chain_client() -> OfflineChainClient:
    return OfflineChainClient(CHAIN_FIXTURE)


@pytest.fixture
def gated_client() -> GatedChainClient:
    return GatedChainClient(CHAIN_FIXTURE)


@pytest.fixture
def wallet() -> StaticIdentity:
    return StaticIdentity(WALLET)
