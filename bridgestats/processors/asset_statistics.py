#!/usr/bin/env python3
"""
Asset Statistic Aggregators

Per token basic (logical asset) totals across every chain it lives on:
- AssetStatisticAggregator folds new source transfers into volume and
  transaction counts. The running total is kept exactly at
  ASSET_AMOUNT_DECIMALS; the basic-precision amount and valuations are
  derived from it, so pass boundaries never change the result
- AssetAddressAggregator recomputes distinct sender addresses
"""

import logging
from typing import Dict, Optional, Tuple

from bridgestats.config import DEFAULT_BTC_BASIC_NAME
from bridgestats.processors.statistic_aggregator import StatisticAggregator
from bridgestats.processors.valuation import to_usd, to_btc, normalize_amount
from bridgestats.storage.checkpoints import CheckpointStore, CATEGORY_ASSET
from bridgestats.storage.ledger import LedgerReader, STREAM_SRC, GROUP_BY_ASSET
from bridgestats.storage.models import TokenBasic

logger = logging.getLogger(__name__)

ASSET_STATISTIC_COLUMNS = ('exact_amount', 'amount', 'txn_count', 'amount_usd', 'amount_btc', 'last_check_id')
ASSET_ADDRESS_COLUMNS = ('addresses',)

# Internal scale of AssetStatistic.exact_amount, the widest ERC-20 precision
ASSET_AMOUNT_DECIMALS = 18


class AssetStatisticAggregator(StatisticAggregator):
    """Incremental per-basic volume and transaction counts"""

    category = CATEGORY_ASSET
    name = 'asset_statistics'

    def __init__(self, ledger: LedgerReader, store: CheckpointStore, btc_basic_name: str = DEFAULT_BTC_BASIC_NAME):
        super().__init__(ledger, store)
        self.btc_basic_name = btc_basic_name

    def _basic_delta(self, basic: TokenBasic, delta: Dict[Tuple[int, str], Tuple[int, int]]) -> Tuple[int, int]:
        """Sum one basic's token deltas at ASSET_AMOUNT_DECIMALS"""
        amount = 0
        count = 0
        for token in basic.tokens:
            token_amount, token_count = delta.get((int(token.chain_id), token.hash), (0, 0))
            if token.precision > ASSET_AMOUNT_DECIMALS and token_amount:
                logger.warning(f"{self.name}: {token.hash} has {token.precision} decimals, "
                               f"truncated to {ASSET_AMOUNT_DECIMALS}")
            amount += normalize_amount(token_amount, token.precision, ASSET_AMOUNT_DECIMALS)
            count += token_count
        return amount, count

    def _warn_unknown_assets(self, deltas, basics: Dict[str, TokenBasic]):
        known = {(int(token.chain_id), token.hash) for basic in basics.values() for token in basic.tokens}
        unknown = set()
        for delta in deltas.values():
            unknown.update(key for key in delta if key not in known)
        if unknown:
            logger.warning(f"{self.name}: {len(unknown)} transferred assets are not in the token catalog: "
                           f"{sorted(unknown)[:10]}")

    def run_once(self) -> dict:
        """
        Run one aggregation pass.

        Returns:
            Summary dict with the high-water mark used and row counts
        """
        now_out = self.ledger.highest_id(STREAM_SRC)

        basics = self.ledger.load_basics()
        created = self.store.ensure_rows(CATEGORY_ASSET, sorted(basics))
        statistics = self.store.load_category(CATEGORY_ASSET)

        pending = self.pending_by_checkpoint(statistics, 'last_check_id', now_out)
        if not pending:
            logger.debug(f"{self.name}: no new transfers (out={now_out})")
            return self.summary(out_id=now_out, created=created, updated=0, failed=0)

        deltas = self.fetch_deltas(STREAM_SRC, GROUP_BY_ASSET, pending.keys(), now_out)
        self._warn_unknown_assets(deltas, basics)

        btc_basic: Optional[TokenBasic] = basics.get(self.btc_basic_name)
        btc_price = btc_basic.price if btc_basic is not None and btc_basic.price else None
        if btc_price is None:
            logger.warning(f"{self.name}: no price for {self.btc_basic_name}, BTC valuations unchanged")

        changed = []
        stale = 0
        for checkpoint, rows in pending.items():
            for statistic in rows:
                basic = basics.get(statistic.basic_name)
                if basic is None:
                    stale += 1
                    continue

                amount, count = self._basic_delta(basic, deltas[checkpoint])
                statistic.exact_amount += amount
                statistic.txn_count += count
                statistic.amount = normalize_amount(statistic.exact_amount, ASSET_AMOUNT_DECIMALS, basic.precision)
                statistic.amount_usd = to_usd(statistic.exact_amount, ASSET_AMOUNT_DECIMALS, basic.price)
                if btc_price:
                    statistic.amount_btc = to_btc(statistic.exact_amount, ASSET_AMOUNT_DECIMALS, basic.price, btc_price)
                statistic.last_check_id = now_out
                changed.append(statistic)

        if stale:
            logger.warning(f"{self.name}: {stale} statistic rows have no catalog basic, left unchanged")

        saved, failed = self.save_rows(changed, columns=ASSET_STATISTIC_COLUMNS)
        logger.info(f"{self.name}: folded ({min(pending)}, {now_out}] -> {saved} saved, {failed} failed")
        return self.summary(out_id=now_out, created=created, updated=saved, failed=failed)


class AssetAddressAggregator(StatisticAggregator):
    """Recomputes distinct sender addresses per basic"""

    category = CATEGORY_ASSET
    name = 'asset_addresses'

    def run_once(self) -> dict:
        basics = set(self.ledger.list_known_basics())
        created = self.store.ensure_rows(CATEGORY_ASSET, sorted(basics))
        counts = self.ledger.distinct_addresses_by_basic()

        changed = []
        for statistic in self.store.load_category(CATEGORY_ASSET):
            if statistic.key not in basics:
                continue
            addresses = counts.get(statistic.basic_name, 0)
            if statistic.addresses != addresses:
                statistic.addresses = addresses
                changed.append(statistic)

        saved, failed = self.save_rows(changed, columns=ASSET_ADDRESS_COLUMNS)
        if changed:
            logger.info(f"{self.name}: {saved} basics updated, {failed} failed")
        else:
            logger.debug(f"{self.name}: address totals unchanged")
        return self.summary(created=created, updated=saved, failed=failed)
