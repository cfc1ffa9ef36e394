"""Exception hierarchy shared by the live engines and chain clients.

Poll-cycle failures never reach callers (ChainPulse logs and drops them), so
everything here describes failures of explicit, user-initiated operations.
"""


class LedgerWatchError(Exception):
    """Base class for all ledger_watch errors."""
    pass


class HoldingsError(LedgerWatchError):
    """Base class for failures of HoldingsLedger operations."""
    pass


class HoldingValidationError(HoldingsError):
    """The submitted contract address was rejected before any query ran."""
    pass


class DuplicateHoldingError(HoldingValidationError):
    """The contract address is already tracked."""
    pass


class ChainUnavailableError(HoldingsError):
    """The chain-query client is not connected."""
    pass


class HoldingFetchError(HoldingsError):
    """Name, symbol, decimals or total supply could not be fetched."""
    pass


class TokenLookupError(LedgerWatchError):
    """A one-shot token lookup failed."""
    pass


class RpcError(LedgerWatchError):
    """The JSON-RPC endpoint answered with an HTTP or protocol error."""

    def __init__(self, message: str, code=None):
        super().__init__(message)
        self.code = code
