#!/usr/bin/env python3
"""
Token Statistic Aggregator

Folds newly appeared ledger transfers into per-token totals:
- Inbound volume/count from destination transfers
- Outbound volume/count from source transfers
- USD and BTC valuations of the cumulative amounts

Tokens sitting on their basic's home chain report the live custody balance
as their inbound amount instead of the transfer sum.
"""

import time
import logging
from typing import Callable, Dict, Optional, Tuple

from bridgestats.collectors.chain_client import ChainClient, fetch_with_retry
from bridgestats.config import DEFAULT_BTC_BASIC_NAME
from bridgestats.processors.statistic_aggregator import StatisticAggregator
from bridgestats.processors.valuation import to_usd, to_btc
from bridgestats.storage.checkpoints import CheckpointStore, CATEGORY_TOKEN
from bridgestats.storage.ledger import LedgerReader, STREAM_SRC, STREAM_DST, GROUP_BY_ASSET
from bridgestats.storage.models import Token

logger = logging.getLogger(__name__)

TOKEN_STATISTIC_COLUMNS = (
    'in_amount', 'out_amount', 'in_counter', 'out_counter',
    'in_amount_usd', 'in_amount_btc', 'out_amount_usd', 'out_amount_btc',
    'last_in_check_id', 'last_out_check_id',
)


def btc_reference_price(tokens: Dict[Tuple[int, str], Token], btc_basic_name: str) -> Optional[int]:
    """Price of the BTC reference basic, if the catalog has it"""
    for token in tokens.values():
        basic = token.token_basic
        if basic is not None and basic.name == btc_basic_name and basic.price:
            return basic.price
    return None


class TokenStatisticAggregator(StatisticAggregator):
    """Incremental per-token in/out statistics"""

    category = CATEGORY_TOKEN
    name = 'token_statistics'

    def __init__(
        self,
        ledger: LedgerReader,
        store: CheckpointStore,
        chain_client: ChainClient,
        btc_basic_name: str = DEFAULT_BTC_BASIC_NAME,
        balance_retries: int = 4,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        super().__init__(ledger, store)
        self.chain_client = chain_client
        self.btc_basic_name = btc_basic_name
        self.balance_retries = balance_retries
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def _home_chain_balance(self, token: Token) -> Optional[int]:
        balance, error = fetch_with_retry(
            lambda: self.chain_client.get_balance(token.chain_id, token.hash),
            self.balance_retries,
            self.backoff_seconds,
            self.sleep
        )
        if error is not None:
            logger.warning(
                f"token {token.chain_id}/{token.hash}: live balance unavailable, "
                f"keeping previous in_amount: {error}"
            )
            return None
        return balance

    def _revalue(self, statistic, token: Token, btc_price: Optional[int], direction: str):
        basic = token.token_basic
        if basic is None:
            logger.warning(f"token {token.chain_id}/{token.hash} has no token basic, valuation skipped")
            return
        amount = getattr(statistic, f'{direction}_amount')
        setattr(statistic, f'{direction}_amount_usd', to_usd(amount, token.precision, basic.price))
        if btc_price:
            setattr(statistic, f'{direction}_amount_btc', to_btc(amount, token.precision, basic.price, btc_price))

    def run_once(self) -> dict:
        """
        Run one aggregation pass.

        Returns:
            Summary dict with the high-water marks used and row counts
        """
        now_in = self.ledger.highest_id(STREAM_DST)
        now_out = self.ledger.highest_id(STREAM_SRC)

        tokens = self.ledger.load_tokens()
        created = self.store.ensure_rows(CATEGORY_TOKEN, tokens.keys())
        statistics = self.store.load_category(CATEGORY_TOKEN)

        pending_in = self.pending_by_checkpoint(statistics, 'last_in_check_id', now_in)
        pending_out = self.pending_by_checkpoint(statistics, 'last_out_check_id', now_out)

        if not pending_in and not pending_out:
            logger.debug(f"{self.name}: no new transfers (in={now_in}, out={now_out})")
            return self.summary(in_id=now_in, out_id=now_out, created=created, updated=0, failed=0)

        in_deltas = self.fetch_deltas(STREAM_DST, GROUP_BY_ASSET, pending_in.keys(), now_in)
        out_deltas = self.fetch_deltas(STREAM_SRC, GROUP_BY_ASSET, pending_out.keys(), now_out)

        btc_price = btc_reference_price(tokens, self.btc_basic_name)
        if btc_price is None:
            logger.warning(f"{self.name}: no price for {self.btc_basic_name}, BTC valuations unchanged")

        changed = []
        stale = 0
        for statistic in statistics:
            token = tokens.get(statistic.key)
            if token is None:
                stale += 1
                continue

            touched = False
            if statistic.last_in_check_id < now_in:
                amount, count = in_deltas[statistic.last_in_check_id].get(statistic.key, (0, 0))
                statistic.in_counter += count

                basic = token.token_basic
                if basic is not None and basic.chain_id == token.chain_id:
                    balance = self._home_chain_balance(token)
                    if balance is not None:
                        statistic.in_amount = balance
                else:
                    statistic.in_amount += amount

                self._revalue(statistic, token, btc_price, 'in')
                statistic.last_in_check_id = now_in
                touched = True

            if statistic.last_out_check_id < now_out:
                amount, count = out_deltas[statistic.last_out_check_id].get(statistic.key, (0, 0))
                statistic.out_amount += amount
                statistic.out_counter += count
                self._revalue(statistic, token, btc_price, 'out')
                statistic.last_out_check_id = now_out
                touched = True

            if touched:
                changed.append(statistic)

        if stale:
            logger.warning(f"{self.name}: {stale} statistic rows have no catalog token, left unchanged")

        saved, failed = self.save_rows(changed, columns=TOKEN_STATISTIC_COLUMNS)
        logger.info(
            f"{self.name}: folded in ({min(pending_in, default=now_in)}, {now_in}] "
            f"out ({min(pending_out, default=now_out)}, {now_out}] -> "
            f"{saved} saved, {failed} failed"
        )
        return self.summary(in_id=now_in, out_id=now_out, created=created, updated=saved, failed=failed)
