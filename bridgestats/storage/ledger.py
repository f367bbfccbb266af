"""
Ledger Reader

Read-only access to the three append-only bridge streams (source transfers,
relay transactions, destination transfers) and to the token catalog.
"""

import logging
from typing import Dict, List, Tuple

import pandas as pd
from sqlalchemy import func, distinct, select, union
from sqlalchemy.orm import joinedload, selectinload

from bridgestats.storage.database import DatabaseManager
from bridgestats.storage.models import (
    Chain, Token, TokenBasic, SrcTransfer, RelayTransaction, DstTransfer
)

logger = logging.getLogger(__name__)

STREAM_SRC = 'src'
STREAM_RELAY = 'relay'
STREAM_DST = 'dst'

STREAM_MODELS = {
    STREAM_SRC: SrcTransfer,
    STREAM_RELAY: RelayTransaction,
    STREAM_DST: DstTransfer,
}

GROUP_BY_ASSET = 'asset'
GROUP_BY_CHAIN = 'chain'


def _stream_model(stream: str):
    try:
        return STREAM_MODELS[stream]
    except KeyError:
        raise ValueError(f"Unknown stream: {stream}")


class LedgerReader:
    """Queries over the transfer ledger and catalog"""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        # SQLite stores amounts as text, so sums there are done in pandas
        self.sum_in_sql = db_manager.dialect_name != 'sqlite'

    def highest_id(self, stream: str) -> int:
        """Current high-water mark of a stream (0 when empty)"""
        model = _stream_model(stream)
        with self.db_manager.get_session() as session:
            return session.query(func.max(model.id)).scalar() or 0

    def sum_and_count_in_range(
        self,
        stream: str,
        group_by: str,
        from_id: int,
        to_id: int
    ) -> Dict[object, Tuple[int, int]]:
        """
        Sum amounts and count transfers with from_id < id <= to_id.

        Args:
            stream: STREAM_SRC or STREAM_DST
            group_by: GROUP_BY_ASSET groups by (chain_id, asset),
                GROUP_BY_CHAIN groups by chain_id
            from_id: Exclusive lower bound (a checkpoint)
            to_id: Inclusive upper bound (a high-water mark)

        Returns:
            Dict of group key -> (amount, count). Amounts are exact Python ints.
        """
        if stream == STREAM_RELAY:
            raise ValueError("Relay stream carries no amounts, use count_in_range")
        model = _stream_model(stream)

        if group_by == GROUP_BY_ASSET:
            keys = ['chain_id', 'asset']
        elif group_by == GROUP_BY_CHAIN:
            keys = ['chain_id']
        else:
            raise ValueError(f"Unknown grouping: {group_by}")

        if to_id <= from_id:
            return {}

        if self.sum_in_sql:
            result = self._sum_and_count_sql(model, keys, from_id, to_id)
        else:
            result = self._sum_and_count_frame(model, keys, from_id, to_id)

        logger.debug(f"{stream} delta ({from_id}, {to_id}] -> {len(result)} groups")
        return result

    def _sum_and_count_sql(self, model, keys: List[str], from_id: int, to_id: int) -> Dict[object, Tuple[int, int]]:
        columns = [getattr(model, key) for key in keys]
        with self.db_manager.get_session() as session:
            rows = session.query(*columns, func.sum(model.amount), func.count(model.id)).filter(
                model.id > from_id,
                model.id <= to_id
            ).group_by(*columns).all()

        result = {}
        for row in rows:
            if len(keys) > 1:
                key = (int(row[0]), row[1])
            else:
                key = int(row[0])
            result[key] = (int(row[-2]), int(row[-1]))
        return result

    def _sum_and_count_frame(self, model, keys: List[str], from_id: int, to_id: int) -> Dict[object, Tuple[int, int]]:
        with self.db_manager.get_session() as session:
            rows = session.query(model.chain_id, model.asset, model.amount).filter(
                model.id > from_id,
                model.id <= to_id
            ).all()

        if not rows:
            return {}

        # object dtype keeps amounts as unbounded Python ints
        df = pd.DataFrame(
            [tuple(row) for row in rows],
            columns=['chain_id', 'asset', 'amount'],
            dtype=object
        )

        grouped = df.groupby(keys if len(keys) > 1 else keys[0], sort=False)['amount']
        sums = grouped.apply(lambda amounts: sum(amounts, 0))
        counts = grouped.size()

        result = {}
        for key, total in sums.items():
            if isinstance(key, tuple):
                key = (int(key[0]), key[1])
            else:
                key = int(key)
            result[key] = (int(total), 0)
        for key, count in counts.items():
            if isinstance(key, tuple):
                key = (int(key[0]), key[1])
            else:
                key = int(key)
            amount, _ = result[key]
            result[key] = (amount, int(count))
        return result

    def count_in_range(self, stream: str, from_id: int, to_id: int) -> int:
        """Number of records with from_id < id <= to_id"""
        model = _stream_model(stream)
        if to_id <= from_id:
            return 0
        with self.db_manager.get_session() as session:
            return session.query(func.count(model.id)).filter(
                model.id > from_id,
                model.id <= to_id
            ).scalar() or 0

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def list_known_assets(self) -> List[Tuple[int, str]]:
        """All (chain_id, asset hash) pairs in the token catalog"""
        with self.db_manager.get_session() as session:
            return [(int(chain_id), token_hash) for chain_id, token_hash in
                    session.query(Token.chain_id, Token.hash).all()]

    def list_known_chains(self) -> List[int]:
        with self.db_manager.get_session() as session:
            return [int(chain_id) for (chain_id,) in session.query(Chain.chain_id).all()]

    def list_known_basics(self) -> List[str]:
        with self.db_manager.get_session() as session:
            return [name for (name,) in session.query(TokenBasic.name).all()]

    def load_tokens(self) -> Dict[Tuple[int, str], Token]:
        """Catalog tokens keyed by (chain_id, hash), with their basic loaded"""
        with self.db_manager.get_session() as session:
            tokens = session.query(Token).options(joinedload(Token.token_basic)).all()
            return {(int(t.chain_id), t.hash): t for t in tokens}

    def load_basics(self, reserve_tracked_only: bool = False) -> Dict[str, TokenBasic]:
        """Token basics keyed by name, with their tokens loaded"""
        with self.db_manager.get_session() as session:
            query = session.query(TokenBasic).options(selectinload(TokenBasic.tokens))
            if reserve_tracked_only:
                query = query.filter(TokenBasic.property == 1)
            return {basic.name: basic for basic in query.all()}

    # ------------------------------------------------------------------
    # Address counts
    # ------------------------------------------------------------------

    def distinct_addresses_by_chain(self) -> Dict[int, int]:
        """
        Active addresses per chain: senders on source transfers together with
        recipients on destination transfers, deduplicated per chain.
        """
        addresses = union(
            select(SrcTransfer.chain_id.label('chain_id'), SrcTransfer.from_address.label('address')),
            select(DstTransfer.chain_id.label('chain_id'), DstTransfer.to_address.label('address')),
        ).subquery()

        with self.db_manager.get_session() as session:
            rows = session.execute(
                select(addresses.c.chain_id, func.count()).group_by(addresses.c.chain_id)
            ).all()
        return {int(chain_id): int(count) for chain_id, count in rows}

    def distinct_addresses_by_basic(self) -> Dict[str, int]:
        """Distinct source senders per token basic across all of its tokens"""
        with self.db_manager.get_session() as session:
            rows = session.query(
                Token.token_basic_name,
                func.count(distinct(SrcTransfer.from_address))
            ).select_from(SrcTransfer).join(
                Token,
                (Token.chain_id == SrcTransfer.chain_id) & (Token.hash == SrcTransfer.asset)
            ).group_by(Token.token_basic_name).all()
        return {name: int(count) for name, count in rows}
