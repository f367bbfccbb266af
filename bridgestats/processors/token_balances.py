"""
Token Balance Refresher

Reads the bridge custody balance of every catalog token and stores it on
the token row as available_amount.
"""

import time
import logging
from typing import Callable

from bridgestats.collectors.chain_client import ChainClient, fetch_with_retry
from bridgestats.storage.checkpoints import CheckpointStore
from bridgestats.storage.ledger import LedgerReader

logger = logging.getLogger(__name__)


class TokenBalanceAggregator:
    """Refreshes Token.available_amount from live chain balances"""

    name = 'token_balances'

    def __init__(
        self,
        ledger: LedgerReader,
        store: CheckpointStore,
        chain_client: ChainClient,
        balance_retries: int = 4,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.ledger = ledger
        self.store = store
        self.chain_client = chain_client
        self.balance_retries = balance_retries
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def run_once(self) -> dict:
        updated = 0
        failed = 0
        for chain_id, token_hash in self.ledger.list_known_assets():
            balance, error = fetch_with_retry(
                lambda: self.chain_client.get_balance(chain_id, token_hash),
                self.balance_retries,
                self.backoff_seconds,
                self.sleep
            )
            if error is not None:
                failed += 1
                logger.warning(f"{self.name}: balance of {chain_id}/{token_hash} unavailable: {error}")
                continue

            try:
                self.store.update_available_amount(chain_id, token_hash, balance)
                updated += 1
            except Exception as e:
                failed += 1
                logger.error(f"{self.name}: failed to store balance of {chain_id}/{token_hash}: {e}")

        logger.info(f"{self.name}: {updated} balances refreshed, {failed} failed")
        return {'pass': self.name, 'updated': updated, 'failed': failed}
