from abc import ABC, abstractmethod
from typing import Optional, Sequence

from ledger_watch.core.custom_types import BlockSummary, GasParameters, Identity


class TokenContract(ABC):
    """Read-only view of one fungible-token contract."""

    address: str

    @abstractmethod
    async def name(self) -> str:
        pass

    @abstractmethod
    async def symbol(self) -> str:
        pass

    @abstractmethod
    async def decimals(self) -> int:
        pass

    @abstractmethod
    async def total_supply(self) -> int:
        pass

    @abstractmethod
    async def balance_of(self, identity: Identity) -> int:
        pass


class ChainQueryClient(ABC):
    """
    Read-only chain data provider consumed by the live engines.
    Every method may raise; none retries on its own.
    """

    @property
    def is_connected(self) -> bool:
        return True

    @abstractmethod
    async def get_head_height(self) -> int:
        """Most recent block height known to the node."""
        pass

    @abstractmethod
    async def get_gas_parameters(self) -> GasParameters:
        pass

    @abstractmethod
    async def get_block(self, height: int) -> BlockSummary:
        pass

    @abstractmethod
    async def get_blocks(self, heights: Sequence[int]) -> Sequence[BlockSummary]:
        """Fetch several blocks in one round trip; order is not guaranteed."""
        pass

    @abstractmethod
    def token(self, address: str) -> TokenContract:
        """Bind a contract handle; no query is issued until a method is awaited."""
        pass


class IdentityProvider(ABC):
    """Source of the connected wallet identity."""

    @abstractmethod
    def current_identity(self) -> Optional[Identity]:
        pass


class StaticIdentity(IdentityProvider):
    """Identity holder updated explicitly by whoever owns the wallet connection."""

    def __init__(self, address: Optional[Identity] = None):
        self._address = address.strip() if address else None

    def current_identity(self) -> Optional[Identity]:
        return self._address

    def connect(self, address: Identity) -> None:
        self._address = address.strip() or None

    def disconnect(self) -> None:
        self._address = None


__all__ = ['TokenContract', 'ChainQueryClient', 'IdentityProvider', 'StaticIdentity']
