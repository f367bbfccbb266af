"""
External Balance Lookup

Fetches bridged balances held outside the chains the bridge can query
directly (e.g. liquidity parked in a swap hub), from a plain HTTP endpoint
returning {"Balance": <int>}.
"""

import logging
import requests
from typing import Dict

logger = logging.getLogger(__name__)


class ExternalBalanceError(Exception):
    """Raised when an external balance endpoint fails"""


class ExternalBalanceClient:
    """Looks up one configured endpoint per basic name"""

    def __init__(self, urls: Dict[str, str], timeout: int = 10):
        self.urls = urls
        self.timeout = timeout

    def has_source(self, basic_name: str) -> bool:
        return basic_name in self.urls

    def fetch_balance(self, basic_name: str) -> int:
        """
        Fetch the external balance for a basic.

        Raises:
            ExternalBalanceError: on transport errors, non-200 responses or bad payloads
        """
        url = self.urls.get(basic_name)
        if url is None:
            raise ExternalBalanceError(f"No external balance source for {basic_name}")

        try:
            response = requests.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise ExternalBalanceError(f"{basic_name} external balance request failed: {e}") from e

        if response.status_code != 200:
            raise ExternalBalanceError(
                f"{basic_name} external balance HTTP {response.status_code}: {response.text}"
            )

        try:
            # Parse as text so large integers survive intact
            body = response.json(parse_int=int, parse_float=str)
            balance = int(str(body['Balance']))
        except (ValueError, KeyError, TypeError) as e:
            raise ExternalBalanceError(f"{basic_name} external balance payload invalid: {e}") from e

        logger.debug(f"{basic_name} external balance: {balance}")
        return balance
