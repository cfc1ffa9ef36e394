"""One-shot token lookup.

Same queries as ``HoldingsLedger.add`` but nothing is kept: the caller gets a
``TokenReport`` back. An unknown balance stays ``None`` here instead of being
reported as zero.
"""
from __future__ import annotations
import asyncio
from typing import Optional

from loguru import logger

from ledger_watch.core.custom_types import TokenReport
from ledger_watch.core.errors import ChainUnavailableError, TokenLookupError
from ledger_watch.core.mathutils import supply_share
from ledger_watch.onchain.base import ChainQueryClient, IdentityProvider
from .holdings import fetch_balance, fetch_token_metadata, normalize_address


class TokenExplorer:
    def __init__(self, client: ChainQueryClient, identity: Optional[IdentityProvider] = None):
        self.client = client
        self.identity = identity

    async def explore(self, address: str) -> TokenReport:
        addr = normalize_address(address)
        if not self.client.is_connected:
            raise ChainUnavailableError("Not connected to chain RPC. Please wait or try a different endpoint.")

        contract = self.client.token(addr)
        identity = self.identity.current_identity() if self.identity else None
        try:
            if identity:
                metadata, balance = await asyncio.gather(
                    fetch_token_metadata(contract),
                    fetch_balance(contract, identity),
                )
            else:
                metadata, balance = await fetch_token_metadata(contract), None
        except Exception as e:
            logger.warning("Token lookup {} failed: {}", addr, e)
            raise TokenLookupError(f"Failed to fetch token: {e}") from e

        share = supply_share(balance, metadata.total_supply) if balance is not None else None
        return TokenReport(contract_address=addr, metadata=metadata, balance=balance, supply_share=share)


__all__ = ["TokenExplorer"]
