"""Stateful engines driven by the presentation layer.

ChainPulse polls the chain head, HoldingsLedger aggregates tracked tokens and
TokenExplorer performs one-shot contract lookups. None of them render.
"""
from .chain_pulse import ChainPulse
from .explorer import TokenExplorer
from .holdings import HoldingsLedger

__all__ = [
    "ChainPulse",
    "HoldingsLedger",
    "TokenExplorer",
]
