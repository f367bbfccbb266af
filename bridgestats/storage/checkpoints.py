"""
Checkpoint Store

Durable home of the statistic rows. Each row carries its accumulated totals
together with the ledger id(s) it has been folded up to, so totals and
checkpoints are always written in the same transaction.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import inspect, insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from bridgestats.storage.database import DatabaseManager
from bridgestats.storage.ledger import LedgerReader
from bridgestats.storage.models import Token, TokenStatistic, ChainStatistic, AssetStatistic

logger = logging.getLogger(__name__)

CATEGORY_TOKEN = 'token'
CATEGORY_CHAIN = 'chain'
CATEGORY_ASSET = 'asset'

CATEGORY_MODELS = {
    CATEGORY_TOKEN: TokenStatistic,
    CATEGORY_CHAIN: ChainStatistic,
    CATEGORY_ASSET: AssetStatistic,
}

# Rows per INSERT statement, below SQLite's bound-parameter limit
INSERT_BATCH_SIZE = 50


def new_statistic(category: str, key):
    """Statistic row with zero accumulators and zero checkpoints"""
    if category == CATEGORY_TOKEN:
        chain_id, token_hash = key
        return TokenStatistic(
            chain_id=chain_id, hash=token_hash,
            in_amount=0, out_amount=0, in_counter=0, out_counter=0,
            in_amount_usd=0, in_amount_btc=0, out_amount_usd=0, out_amount_btc=0,
            last_in_check_id=0, last_out_check_id=0
        )
    if category == CATEGORY_CHAIN:
        return ChainStatistic(
            chain_id=key, in_count=0, out_count=0, addresses=0,
            last_in_check_id=0, last_out_check_id=0
        )
    if category == CATEGORY_ASSET:
        return AssetStatistic(
            basic_name=key, exact_amount=0, amount=0, txn_count=0, addresses=0,
            amount_usd=0, amount_btc=0, last_check_id=0
        )
    raise ValueError(f"Unknown category: {category}")


def statistic_values(row) -> dict:
    """Column values of an unsaved statistic row, for a core INSERT"""
    return {column.key: getattr(row, column.key) for column in inspect(type(row)).columns}


class CheckpointStore:
    """Read-modify-write access to statistic rows, one category at a time"""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    def load_category(self, category: str) -> List:
        """
        Load every row of a category.

        Returns detached instances; mutate them and hand them back to
        upsert_row() to persist.
        """
        model = CATEGORY_MODELS.get(category)
        if model is None:
            raise ValueError(f"Unknown category: {category}")
        with self.db_manager.get_session() as session:
            rows = session.query(model).all()
            session.expunge_all()
        return rows

    def ensure_rows(self, category: str, keys: Iterable) -> int:
        """
        Create zero rows for catalog keys that have no statistic yet.

        Existing rows, including ones whose key has left the catalog, are
        never touched. Passes sharing a table may race here on first sight
        of a key; a row another pass inserted first is skipped, not an error.

        Returns:
            Number of rows created
        """
        existing = {row.key for row in self.load_category(category)}
        missing = [key for key in keys if key not in existing]
        if not missing:
            return 0

        model = CATEGORY_MODELS[category]
        rows = [statistic_values(new_statistic(category, key)) for key in missing]
        dialect = self.db_manager.dialect_name
        if dialect in ('postgresql', 'sqlite'):
            created = self._insert_ignoring_conflicts(model, rows, dialect)
        else:
            created = self._insert_one_by_one(model, rows)

        if created:
            logger.info(f"Created {created} new {category} statistic rows")
        if created < len(missing):
            logger.debug(f"{len(missing) - created} {category} statistic rows were created concurrently")
        return created

    def _insert_ignoring_conflicts(self, model, rows: List[dict], dialect: str) -> int:
        dialect_insert = pg_insert if dialect == 'postgresql' else sqlite_insert
        index_elements = [column.key for column in inspect(model).primary_key]
        created = 0
        with self.db_manager.get_session() as session:
            for start in range(0, len(rows), INSERT_BATCH_SIZE):
                stmt = dialect_insert(model).values(rows[start:start + INSERT_BATCH_SIZE])
                stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
                created += session.execute(stmt).rowcount
        return created

    def _insert_one_by_one(self, model, rows: List[dict]) -> int:
        created = 0
        for values in rows:
            try:
                with self.db_manager.get_session() as session:
                    session.execute(insert(model).values(**values))
                created += 1
            except IntegrityError:
                continue
        return created

    def upsert_row(self, row, columns: Optional[Sequence[str]] = None) -> None:
        """
        Persist one row (totals and checkpoints) in its own transaction.

        Args:
            row: Detached statistic instance
            columns: Restrict the write to these columns, so passes sharing a
                table (e.g. counts vs. address totals) never overwrite each
                other's fields. None writes the whole row.

        Raises:
            SQLAlchemyError: if the write fails; nothing is persisted for this row
        """
        model = type(row)
        with self.db_manager.get_session() as session:
            if columns:
                identity = [col == getattr(row, col.key) for col in inspect(model).primary_key]
                updated = session.query(model).filter(*identity).update(
                    {name: getattr(row, name) for name in columns},
                    synchronize_session=False
                )
                if updated:
                    return
            session.merge(row)

    def update_available_amount(self, chain_id: int, token_hash: str, amount: int) -> None:
        """Store the live custody balance read for a token"""
        with self.db_manager.get_session() as session:
            session.query(Token).filter(
                Token.chain_id == chain_id,
                Token.hash == token_hash
            ).update({'available_amount': amount}, synchronize_session=False)

    def highest_id(self, stream: str) -> int:
        """Highest ledger id observed on a stream, the upper bound of the next delta"""
        return LedgerReader(self.db_manager).highest_id(stream)
