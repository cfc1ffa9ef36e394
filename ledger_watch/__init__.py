"""Live chain-state synchronization and token portfolio aggregation.

``ledger_watch.live.chain_pulse.ChainPulse`` keeps a fresh view of the chain
head and ``ledger_watch.live.holdings.HoldingsLedger`` keeps the user's tracked
token contracts with their balances and supply shares.
"""

__version__ = "0.3.0"
