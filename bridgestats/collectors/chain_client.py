#!/usr/bin/env python3
"""
Chain Data Client

Reads live token figures from chain RPC nodes:
- Bridge custody balance (balanceOf the chain's lock proxy)
- Token total supply

Also provides the fixed-backoff retry helper shared by every pass that
reads from a chain.
"""

import time
import logging
import requests
from typing import Callable, Dict, Optional, Tuple, TypeVar

from bridgestats.config import ChainNode

logger = logging.getLogger(__name__)

T = TypeVar('T')

# ERC20 function selectors
BALANCE_OF_SELECTOR = '0x70a08231'
TOTAL_SUPPLY_SELECTOR = '0x18160ddd'

NATIVE_ASSET_HASH = '0' * 40


class ChainQueryError(Exception):
    """Raised when a chain node cannot answer a balance or supply query"""


def fetch_with_retry(
    fetch: Callable[[], T],
    retries: int,
    backoff_seconds: float = 1.0,
    sleep: Callable[[float], None] = time.sleep
) -> Tuple[Optional[T], Optional[Exception]]:
    """
    Call `fetch` up to 1 + retries times with a fixed pause between attempts.

    Args:
        fetch: Zero-argument callable
        retries: Extra attempts after the first failure
        backoff_seconds: Pause between attempts
        sleep: Sleep function (injectable for tests)

    Returns:
        (value, None) on success or (None, last_error) once attempts run out
    """
    last_error = None
    for attempt in range(retries + 1):
        try:
            return fetch(), None
        except Exception as e:
            last_error = e
            if attempt < retries:
                logger.debug(f"Attempt {attempt + 1}/{retries + 1} failed: {e}, retrying in {backoff_seconds}s")
                sleep(backoff_seconds)
    return None, last_error


def _strip_hex(value: str) -> str:
    return value[2:] if value.lower().startswith('0x') else value


def encode_address(address: str) -> str:
    """ABI-encode an address as a 32 byte word"""
    return _strip_hex(address).lower().rjust(64, '0')


class ChainClient:
    """
    JSON-RPC client for EVM-compatible chain nodes.
    """

    def __init__(self, nodes: Dict[int, ChainNode], timeout: int = 10, session: requests.Session = None):
        """
        Args:
            nodes: chain_id -> ChainNode (RPC url and lock proxy address)
            timeout: HTTP timeout in seconds
            session: Optional requests session to reuse connections
        """
        self.nodes = nodes
        self.timeout = timeout
        self.session = session or requests.Session()
        self._request_id = 0

    def _node(self, chain_id: int) -> ChainNode:
        node = self.nodes.get(chain_id)
        if node is None:
            raise ChainQueryError(f"No RPC node configured for chain {chain_id}")
        return node

    def _rpc(self, chain_id: int, method: str, params: list) -> str:
        node = self._node(chain_id)
        self._request_id += 1
        payload = {
            'jsonrpc': '2.0',
            'id': self._request_id,
            'method': method,
            'params': params
        }
        try:
            response = self.session.post(node.url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise ChainQueryError(f"chain {chain_id} {method} request failed: {e}") from e

        if response.status_code != 200:
            raise ChainQueryError(f"chain {chain_id} {method} HTTP {response.status_code}: {response.text}")

        try:
            body = response.json()
        except ValueError as e:
            raise ChainQueryError(f"chain {chain_id} {method} returned invalid JSON") from e

        if body.get('error'):
            raise ChainQueryError(f"chain {chain_id} {method} error: {body['error']}")
        result = body.get('result')
        if result is None:
            raise ChainQueryError(f"chain {chain_id} {method} returned no result")
        return result

    def _call_uint(self, chain_id: int, contract: str, data: str) -> int:
        result = self._rpc(chain_id, 'eth_call', [
            {'to': '0x' + _strip_hex(contract), 'data': data},
            'latest'
        ])
        raw = _strip_hex(result)
        if not raw:
            raise ChainQueryError(f"chain {chain_id} empty eth_call result for {contract}")
        try:
            return int(raw, 16)
        except ValueError as e:
            raise ChainQueryError(f"chain {chain_id} malformed eth_call result {result!r}") from e

    def get_balance(self, chain_id: int, asset_hash: str) -> int:
        """
        Amount of `asset_hash` held in bridge custody on `chain_id`.

        Raises:
            ChainQueryError
        """
        node = self._node(chain_id)
        if _strip_hex(asset_hash).lower() == NATIVE_ASSET_HASH:
            result = self._rpc(chain_id, 'eth_getBalance', ['0x' + _strip_hex(node.proxy), 'latest'])
            return int(_strip_hex(result) or '0', 16)
        data = BALANCE_OF_SELECTOR + encode_address(node.proxy)
        return self._call_uint(chain_id, asset_hash, data)

    def get_total_supply(self, chain_id: int, asset_hash: str) -> int:
        """
        Reported total supply of `asset_hash` on `chain_id`.

        Raises:
            ChainQueryError
        """
        if _strip_hex(asset_hash).lower() == NATIVE_ASSET_HASH:
            raise ChainQueryError(f"chain {chain_id} native asset has no totalSupply")
        return self._call_uint(chain_id, asset_hash, TOTAL_SUPPLY_SELECTOR)
