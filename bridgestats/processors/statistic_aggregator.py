"""
Statistic Aggregator Base

Shared plumbing for the checkpoint-driven passes: grouping rows by the
checkpoint they were last folded to, fetching one delta per distinct
checkpoint, and saving rows one transaction at a time.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from bridgestats.storage.checkpoints import CheckpointStore
from bridgestats.storage.ledger import LedgerReader

logger = logging.getLogger(__name__)


class StatisticAggregator:
    """
    Base class for statistic passes.

    Subclasses set `category` and `name` and implement run_once().
    """

    category = None
    name = None

    def __init__(self, ledger: LedgerReader, store: CheckpointStore):
        self.ledger = ledger
        self.store = store

    def run_once(self) -> dict:
        raise NotImplementedError

    @staticmethod
    def pending_by_checkpoint(rows: Iterable, attr: str, high_water: int) -> Dict[int, List]:
        """
        Group rows still behind `high_water` by their checkpoint value.

        Rows normally share one checkpoint; a row whose last save failed keeps
        its older checkpoint and gets its own delta range.
        """
        pending = defaultdict(list)
        for row in rows:
            checkpoint = getattr(row, attr) or 0
            if checkpoint < high_water:
                pending[checkpoint].append(row)
        return dict(pending)

    def fetch_deltas(
        self,
        stream: str,
        group_by: str,
        checkpoints: Iterable[int],
        high_water: int
    ) -> Dict[int, Dict[object, Tuple[int, int]]]:
        """One (checkpoint, high_water] delta per distinct checkpoint"""
        return {
            checkpoint: self.ledger.sum_and_count_in_range(stream, group_by, checkpoint, high_water)
            for checkpoint in checkpoints
        }

    def save_rows(self, rows: Sequence, columns: Optional[Sequence[str]] = None) -> Tuple[int, int]:
        """
        Persist rows independently; a failed row is logged and skipped.

        Returns:
            (saved, failed)
        """
        saved = 0
        failed = 0
        for row in rows:
            try:
                self.store.upsert_row(row, columns=columns)
                saved += 1
            except Exception as e:
                failed += 1
                logger.error(f"{self.name}: failed to save {self.category} statistic {row.key}: {e}")
        return saved, failed

    def summary(self, **fields) -> dict:
        result = {'pass': self.name}
        result.update(fields)
        return result
