"""Chain collaborators.

``base`` defines the read-only query interfaces the live engines consume,
``rpc_client`` talks JSON-RPC to a node and ``offline`` replays fixtures.
"""

__all__ = [
    'base',
    'rpc_client',
    'offline',
]
