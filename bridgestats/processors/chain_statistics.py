#!/usr/bin/env python3
"""
Chain Statistic Aggregators

Per-chain transfer counts and active address totals:
- ChainStatisticAggregator folds new transfers into in/out counts
- ChainAddressAggregator recomputes distinct active addresses

The relay chain has no transfers of its own; its row counts relay
transactions on both sides instead.
"""

import logging

from bridgestats.chains import RELAY_CHAIN_ID
from bridgestats.processors.statistic_aggregator import StatisticAggregator
from bridgestats.storage.checkpoints import CATEGORY_CHAIN
from bridgestats.storage.ledger import STREAM_SRC, STREAM_DST, STREAM_RELAY, GROUP_BY_CHAIN

logger = logging.getLogger(__name__)

CHAIN_COUNT_COLUMNS = ('in_count', 'out_count', 'last_in_check_id', 'last_out_check_id')
CHAIN_ADDRESS_COLUMNS = ('addresses',)


class ChainStatisticAggregator(StatisticAggregator):
    """Incremental per-chain in/out counts"""

    category = CATEGORY_CHAIN
    name = 'chain_statistics'

    def _fold_relay(self, statistic, now_relay: int) -> bool:
        checkpoint = min(statistic.last_in_check_id or 0, statistic.last_out_check_id or 0)
        if checkpoint >= now_relay:
            return False
        count = self.ledger.count_in_range(STREAM_RELAY, checkpoint, now_relay)
        statistic.in_count += count
        statistic.out_count += count
        statistic.last_in_check_id = now_relay
        statistic.last_out_check_id = now_relay
        return True

    def run_once(self) -> dict:
        """
        Run one aggregation pass.

        Returns:
            Summary dict with the high-water marks used and row counts
        """
        now_in = self.ledger.highest_id(STREAM_DST)
        now_out = self.ledger.highest_id(STREAM_SRC)
        now_relay = self.ledger.highest_id(STREAM_RELAY)

        chains = set(self.ledger.list_known_chains())
        created = self.store.ensure_rows(CATEGORY_CHAIN, sorted(chains))
        statistics = [row for row in self.store.load_category(CATEGORY_CHAIN) if row.key in chains]

        relay_rows = [row for row in statistics if row.chain_id == RELAY_CHAIN_ID]
        chain_rows = [row for row in statistics if row.chain_id != RELAY_CHAIN_ID]

        pending_in = self.pending_by_checkpoint(chain_rows, 'last_in_check_id', now_in)
        pending_out = self.pending_by_checkpoint(chain_rows, 'last_out_check_id', now_out)

        in_deltas = self.fetch_deltas(STREAM_DST, GROUP_BY_CHAIN, pending_in.keys(), now_in)
        out_deltas = self.fetch_deltas(STREAM_SRC, GROUP_BY_CHAIN, pending_out.keys(), now_out)

        changed = [row for row in relay_rows if self._fold_relay(row, now_relay)]

        for statistic in chain_rows:
            touched = False
            if statistic.last_in_check_id < now_in:
                _, count = in_deltas[statistic.last_in_check_id].get(statistic.chain_id, (0, 0))
                statistic.in_count += count
                statistic.last_in_check_id = now_in
                touched = True
            if statistic.last_out_check_id < now_out:
                _, count = out_deltas[statistic.last_out_check_id].get(statistic.chain_id, (0, 0))
                statistic.out_count += count
                statistic.last_out_check_id = now_out
                touched = True
            if touched:
                changed.append(statistic)

        if not changed:
            logger.debug(f"{self.name}: no new transfers (in={now_in}, out={now_out}, relay={now_relay})")
            return self.summary(
                in_id=now_in, out_id=now_out, relay_id=now_relay,
                created=created, updated=0, failed=0
            )

        saved, failed = self.save_rows(changed, columns=CHAIN_COUNT_COLUMNS)
        logger.info(
            f"{self.name}: in={now_in} out={now_out} relay={now_relay} -> "
            f"{saved} saved, {failed} failed"
        )
        return self.summary(
            in_id=now_in, out_id=now_out, relay_id=now_relay,
            created=created, updated=saved, failed=failed
        )


class ChainAddressAggregator(StatisticAggregator):
    """Recomputes distinct active addresses per chain"""

    category = CATEGORY_CHAIN
    name = 'chain_addresses'

    def run_once(self) -> dict:
        chains = set(self.ledger.list_known_chains())
        created = self.store.ensure_rows(CATEGORY_CHAIN, sorted(chains))
        counts = self.ledger.distinct_addresses_by_chain()

        changed = []
        for statistic in self.store.load_category(CATEGORY_CHAIN):
            if statistic.key not in chains:
                continue
            addresses = counts.get(statistic.chain_id, 0)
            if statistic.addresses != addresses:
                statistic.addresses = addresses
                changed.append(statistic)

        saved, failed = self.save_rows(changed, columns=CHAIN_ADDRESS_COLUMNS)
        if changed:
            logger.info(f"{self.name}: {saved} chains updated, {failed} failed")
        else:
            logger.debug(f"{self.name}: address totals unchanged")
        return self.summary(created=created, updated=saved, failed=failed)
