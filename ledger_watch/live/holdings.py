"""Tracked token holdings.

``HoldingsLedger`` keeps an ordered, de-duplicated tuple of ``TrackedHolding``
values keyed by contract address. Additions fetch all metadata concurrently
and only become visible once every required field is known; the tuple is
swapped in one step so readers never see a half-built entry.

Failure rules for ``add``:
 - empty or duplicate address: rejected before any query
 - name / symbol / decimals / total supply failing: ``HoldingFetchError``,
   nothing is appended
 - balance failing: logged, balance is 0, the holding is still added
"""
from __future__ import annotations
import asyncio
from typing import Optional, Sequence, Tuple

from loguru import logger

from ledger_watch.core.custom_types import (
    HoldingsView,
    Identity,
    TokenMetadata,
    TrackedHolding,
)
from ledger_watch.core.errors import (
    ChainUnavailableError,
    DuplicateHoldingError,
    HoldingFetchError,
    HoldingValidationError,
)
from ledger_watch.core.mathutils import CHART_COLORS, chart_segments, supply_share
from ledger_watch.onchain.base import ChainQueryClient, IdentityProvider, TokenContract


def normalize_address(address: Optional[str]) -> str:
    addr = (address or '').strip()
    if not addr:
        raise HoldingValidationError("Contract address is required")
    return addr


async def fetch_token_metadata(contract: TokenContract) -> TokenMetadata:
    """Query name, symbol, decimals and total supply concurrently."""
    name, symbol, decimals, total_supply = await asyncio.gather(
        contract.name(),
        contract.symbol(),
        contract.decimals(),
        contract.total_supply(),
    )
    decimals, total_supply = int(decimals), int(total_supply)
    if decimals < 0:
        raise ValueError(f"negative decimals {decimals}")
    if total_supply < 0:
        raise ValueError(f"negative total supply {total_supply}")
    return TokenMetadata(name=str(name), symbol=str(symbol), decimals=decimals, total_supply=total_supply)


async def fetch_balance(contract: TokenContract, identity: Identity) -> Optional[int]:
    """Balance of ``identity``, or None when the query fails."""
    try:
        balance = int(await contract.balance_of(identity))
    except Exception as e:
        logger.warning("balanceOf failed on {} for {}: {}", contract.address, identity, e)
        return None
    if balance < 0:
        logger.warning("balanceOf on {} returned negative {}; ignoring", contract.address, balance)
        return None
    return balance


async def _no_balance() -> Optional[int]:
    return None


class HoldingsLedger:
    def __init__(
        self,
        client: ChainQueryClient,
        identity: Optional[IdentityProvider] = None,
        palette: Sequence[str] = CHART_COLORS,
    ):
        self.client = client
        self.identity = identity
        self.palette = tuple(palette) or CHART_COLORS
        self._lock = asyncio.Lock()
        self._view = HoldingsView()

    # ---------------- Read model ----------------------
    @property
    def view(self) -> HoldingsView:
        return self._view

    @property
    def holdings(self) -> Tuple[TrackedHolding, ...]:
        return self._view.holdings

    def __len__(self) -> int:
        return len(self._view)

    def __contains__(self, address: object) -> bool:
        return any(h.contract_address == address for h in self._view.holdings)

    def get(self, address: str) -> Optional[TrackedHolding]:
        for h in self._view.holdings:
            if h.contract_address == address:
                return h
        return None

    # ---------------- Mutations -----------------------
    async def add(self, address: str) -> TrackedHolding:
        """Fetch a contract's metadata and balance and append it.

        Raises:
            HoldingValidationError: empty address.
            DuplicateHoldingError: address already tracked.
            ChainUnavailableError: client not connected.
            HoldingFetchError: any required metadata query failed.
        """
        addr = normalize_address(address)
        async with self._lock:
            if addr in self:
                raise DuplicateHoldingError("Token already added")
            if not self.client.is_connected:
                raise ChainUnavailableError("Not connected to chain RPC")

            holding = await self._fetch_holding(addr)
            self._replace(self._view.holdings + (holding,))
        logger.info("Tracking {} ({}) share={}%", holding.symbol, addr, holding.supply_share)
        return holding

    def remove(self, address: str) -> bool:
        """Drop the holding for ``address``; no-op when it is not tracked."""
        addr = (address or '').strip()
        remaining = tuple(h for h in self._view.holdings if h.contract_address != addr)
        if len(remaining) == len(self._view.holdings):
            return False
        self._replace(remaining)
        logger.info("Stopped tracking {}", addr)
        return True

    async def refresh_all(self) -> int:
        """Re-fetch every holding in full (e.g. after the identity changed).

        A holding whose re-fetch fails keeps its previous values. Returns the
        number of holdings that were refreshed.
        """
        async with self._lock:
            current = self._view.holdings
            if not current:
                return 0
            results = await asyncio.gather(
                *(self._fetch_holding(h.contract_address) for h in current),
                return_exceptions=True,
            )
            refreshed = 0
            updated = []
            for old, new in zip(current, results):
                if isinstance(new, BaseException):
                    logger.warning("Refresh of {} failed, keeping previous values: {}", old.contract_address, new)
                    updated.append(old)
                else:
                    updated.append(new)
                    refreshed += 1
            # entries removed while the refresh ran stay removed
            kept = set(self._view.addresses())
            self._replace(tuple(h for h in updated if h.contract_address in kept))
            return refreshed

    # ---------------- Internals -----------------------
    def _current_identity(self) -> Optional[Identity]:
        if self.identity is None:
            return None
        return self.identity.current_identity()

    async def _fetch_holding(self, addr: str) -> TrackedHolding:
        contract = self.client.token(addr)
        identity = self._current_identity()
        balance_call = fetch_balance(contract, identity) if identity else _no_balance()
        try:
            metadata, balance = await asyncio.gather(fetch_token_metadata(contract), balance_call)
        except Exception as e:
            logger.warning("Failed to load token {}: {}", addr, e)
            raise HoldingFetchError(f"Failed to load token: {e}") from e

        balance = balance or 0
        return TrackedHolding(
            contract_address=addr,
            display_name=metadata.name,
            symbol=metadata.symbol,
            decimals=metadata.decimals,
            total_supply=metadata.total_supply,
            balance=balance,
            supply_share=supply_share(balance, metadata.total_supply),
        )

    def _replace(self, holdings: Tuple[TrackedHolding, ...]) -> None:
        self._view = HoldingsView(holdings=holdings, segments=chart_segments(holdings, self.palette))


__all__ = ["HoldingsLedger", "fetch_token_metadata", "fetch_balance", "normalize_address"]
