"""JSON-RPC chain client for an OPNet node.

Notes:
 - Plain JSON-RPC 2.0 over HTTP POST with one shared aiohttp session.
 - Chain reads: ``btc_blockNumber``, ``btc_gas``, ``btc_getBlockByNumber``
   (block windows go out as a single batch request).
 - Token reads go through ``btc_call``: calldata is the 4-byte selector
   ``sha256(signature)[:4]`` followed by arguments; the base64 result is
   decoded big-endian (u256 = 32 bytes, u8 = 1 byte, strings carry a u32
   length prefix).
 - No retries and no backoff; callers decide what a failure means. The only
   timeout is the per-request ``aiohttp.ClientTimeout``.
"""
from __future__ import annotations
import base64
import hashlib
import itertools
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
from loguru import logger

from ledger_watch.core.custom_types import BlockSummary, GasParameters, Identity, parse_int
from ledger_watch.core.errors import RpcError
from .base import ChainQueryClient, TokenContract


def encode_selector(signature: str) -> bytes:
    return hashlib.sha256(signature.encode('utf-8')).digest()[:4]


def encode_address(address: str) -> bytes:
    raw = bytes.fromhex(address[2:] if address.lower().startswith('0x') else address)
    if len(raw) > 32:
        raise ValueError(f"Address too long: {address}")
    return raw.rjust(32, b'\x00')


def decode_u256(data: bytes, offset: int = 0) -> int:
    chunk = data[offset:offset + 32]
    if len(chunk) != 32:
        raise RpcError(f"Expected 32 bytes for u256, got {len(chunk)}")
    return int.from_bytes(chunk, 'big')


def decode_u8(data: bytes, offset: int = 0) -> int:
    if len(data) <= offset:
        raise RpcError("Expected 1 byte for u8, got 0")
    return data[offset]


def decode_string(data: bytes, offset: int = 0) -> str:
    if len(data) < offset + 4:
        raise RpcError("Truncated string length prefix")
    length = int.from_bytes(data[offset:offset + 4], 'big')
    body = data[offset + 4:offset + 4 + length]
    if len(body) != length:
        raise RpcError(f"Truncated string: expected {length} bytes, got {len(body)}")
    return body.decode('utf-8')


SELECTORS: Dict[str, bytes] = {
    'name': encode_selector('name()'),
    'symbol': encode_selector('symbol()'),
    'decimals': encode_selector('decimals()'),
    'total_supply': encode_selector('totalSupply()'),
    'balance_of': encode_selector('balanceOf(address)'),
}


class JsonRpcTokenContract(TokenContract):
    def __init__(self, client: "JsonRpcChainClient", address: str):
        self.client = client
        self.address = address

    async def _call(self, method: str, args: bytes = b'') -> bytes:
        calldata = (SELECTORS[method] + args).hex()
        result = await self.client.call('btc_call', [self.address, calldata])
        if not isinstance(result, dict):
            raise RpcError(f"Unexpected btc_call result for {method}: {result!r}")
        if result.get('revert'):
            raise RpcError(f"{method} reverted on {self.address}: {result['revert']}")
        encoded = result.get('result')
        if encoded is None:
            raise RpcError(f"{method} returned no data on {self.address}")
        return base64.b64decode(encoded)

    async def name(self) -> str:
        return decode_string(await self._call('name'))

    async def symbol(self) -> str:
        return decode_string(await self._call('symbol'))

    async def decimals(self) -> int:
        return decode_u8(await self._call('decimals'))

    async def total_supply(self) -> int:
        return decode_u256(await self._call('total_supply'))

    async def balance_of(self, identity: Identity) -> int:
        return decode_u256(await self._call('balance_of', encode_address(identity)))


class JsonRpcChainClient(ChainQueryClient):
    def __init__(self, url: str, timeout_sec: float = 10.0, session: Optional[aiohttp.ClientSession] = None):
        self.url = url
        self._timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "JsonRpcChainClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @property
    def is_connected(self) -> bool:
        return self._session is None or not self._session.closed

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def _post(self, payload: Any) -> Any:
        session = self._get_session()
        async with session.post(self.url, json=payload, timeout=self._timeout) as resp:
            if resp.status != 200:
                body = await resp.text()
                raise RpcError(f"HTTP {resp.status} from {self.url}: {body[:200]}", code=resp.status)
            return await resp.json(content_type=None)

    @staticmethod
    def _unwrap(method: str, reply: Any) -> Any:
        if not isinstance(reply, dict):
            raise RpcError(f"Malformed JSON-RPC reply to {method}: {reply!r}")
        err = reply.get('error')
        if err:
            code = err.get('code') if isinstance(err, dict) else None
            msg = err.get('message') if isinstance(err, dict) else err
            raise RpcError(f"{method} failed: {msg}", code=code)
        if 'result' not in reply:
            raise RpcError(f"{method} reply has no result")
        return reply['result']

    async def call(self, method: str, params: Sequence[Any]) -> Any:
        payload = {'jsonrpc': '2.0', 'method': method, 'params': list(params), 'id': next(self._ids)}
        logger.trace("rpc {} {}", method, params)
        return self._unwrap(method, await self._post(payload))

    async def call_batch(self, method: str, params_list: Sequence[Sequence[Any]]) -> List[Any]:
        """Issue one batched request; results come back in request order."""
        if not params_list:
            return []
        payload = [
            {'jsonrpc': '2.0', 'method': method, 'params': list(p), 'id': next(self._ids)}
            for p in params_list
        ]
        replies = await self._post(payload)
        if not isinstance(replies, list):
            # some nodes answer a failed batch with a single error object
            self._unwrap(method, replies)
            raise RpcError(f"Malformed batch reply to {method}")
        by_id = {r.get('id'): r for r in replies if isinstance(r, dict)}
        out = []
        for req in payload:
            reply = by_id.get(req['id'])
            if reply is None:
                raise RpcError(f"Batch reply missing id {req['id']} for {method}")
            out.append(self._unwrap(method, reply))
        return out

    async def get_head_height(self) -> int:
        return parse_int(await self.call('btc_blockNumber', []))

    async def get_gas_parameters(self) -> GasParameters:
        result = await self.call('btc_gas', [])
        if not isinstance(result, dict):
            raise RpcError(f"Unexpected btc_gas result: {result!r}")
        return GasParameters.from_dict(result)

    async def get_block(self, height: int) -> BlockSummary:
        result = await self.call('btc_getBlockByNumber', [hex(height), False])
        if not isinstance(result, dict):
            raise RpcError(f"Block {height} not found")
        return BlockSummary.from_dict(result)

    async def get_blocks(self, heights: Sequence[int]) -> Sequence[BlockSummary]:
        results = await self.call_batch('btc_getBlockByNumber', [[hex(h), False] for h in heights])
        blocks = []
        for h, r in zip(heights, results):
            if not isinstance(r, dict):
                raise RpcError(f"Block {h} not found")
            blocks.append(BlockSummary.from_dict(r))
        return blocks

    def token(self, address: str) -> TokenContract:
        return JsonRpcTokenContract(self, address)


__all__ = ['JsonRpcChainClient', 'JsonRpcTokenContract', 'encode_selector', 'SELECTORS']
