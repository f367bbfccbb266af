"""
Shared fixtures: an in-memory database per test, ledger seeding helpers,
and fakes for the chain client and alert sink.
"""

import sys
import os
import itertools

import pytest

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from bridgestats.collectors.alert_sink import AlertDeliveryError
from bridgestats.collectors.chain_client import ChainQueryError
from bridgestats.storage.checkpoints import CheckpointStore
from bridgestats.storage.database import DatabaseManager
from bridgestats.storage.ledger import LedgerReader
from bridgestats.storage.models import (
    Chain, TokenBasic, Token, SrcTransfer, DstTransfer, RelayTransaction
)


def no_sleep(seconds):
    pass


class FakeChainClient:
    """Serves balances and supplies from dicts; an Exception value is raised"""

    def __init__(self, balances=None, supplies=None):
        self.balances = balances or {}
        self.supplies = supplies or {}
        self.balance_calls = []
        self.supply_calls = []

    @staticmethod
    def _answer(table, key):
        value = table.get(key)
        if value is None:
            raise ChainQueryError(f"no figure for {key}")
        if isinstance(value, Exception):
            raise value
        return value

    def get_balance(self, chain_id, asset_hash):
        self.balance_calls.append((chain_id, asset_hash))
        return self._answer(self.balances, (chain_id, asset_hash))

    def get_total_supply(self, chain_id, asset_hash):
        self.supply_calls.append((chain_id, asset_hash))
        return self._answer(self.supplies, (chain_id, asset_hash))


class RecordingAlertSink:
    """Collects alerts instead of posting them"""

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, title, body):
        if self.fail:
            raise AlertDeliveryError("webhook unreachable")
        self.sent.append((title, body))
        return True


class LedgerSeeder:
    """Writes catalog and ledger rows for tests"""

    def __init__(self, db_manager):
        self.db_manager = db_manager
        self._hashes = itertools.count(1)

    def _tx_hash(self):
        return f"0x{next(self._hashes):064x}"

    def chain(self, chain_id, name=None):
        with self.db_manager.get_session() as session:
            session.add(Chain(chain_id=chain_id, name=name or f"chain-{chain_id}"))

    def basic(self, name, chain_id, precision, price, property=1):
        with self.db_manager.get_session() as session:
            session.add(TokenBasic(
                name=name, chain_id=chain_id, precision=precision, price=price, property=property
            ))

    def token(self, chain_id, token_hash, basic_name, precision, reserve_tracked=True):
        with self.db_manager.get_session() as session:
            session.add(Token(
                chain_id=chain_id, hash=token_hash, token_basic_name=basic_name,
                precision=precision, reserve_tracked=reserve_tracked
            ))

    def src(self, chain_id, asset, amount, sender='0xsender', dst_chain_id=None):
        with self.db_manager.get_session() as session:
            row = SrcTransfer(
                tx_hash=self._tx_hash(), chain_id=chain_id, asset=asset,
                from_address=sender, to_address='0xproxy', amount=amount,
                dst_chain_id=dst_chain_id
            )
            session.add(row)
            session.flush()
            return row.id

    def dst(self, chain_id, asset, amount, recipient='0xrecipient'):
        with self.db_manager.get_session() as session:
            row = DstTransfer(
                tx_hash=self._tx_hash(), chain_id=chain_id, asset=asset,
                from_address='0xproxy', to_address=recipient, amount=amount
            )
            session.add(row)
            session.flush()
            return row.id

    def relay(self, src_chain_id=2, dst_chain_id=6, relay_id=None):
        with self.db_manager.get_session() as session:
            row = RelayTransaction(
                hash=self._tx_hash(), src_hash=self._tx_hash(),
                src_chain_id=src_chain_id, dst_chain_id=dst_chain_id
            )
            if relay_id is not None:
                row.id = relay_id
            session.add(row)
            session.flush()
            return row.id


@pytest.fixture
def db_manager():
    manager = DatabaseManager('sqlite://')
    manager.create_tables()
    yield manager
    manager.close()


@pytest.fixture
def ledger(db_manager):
    return LedgerReader(db_manager)


@pytest.fixture
def store(db_manager):
    return CheckpointStore(db_manager)


@pytest.fixture
def seed(db_manager):
    return LedgerSeeder(db_manager)


@pytest.fixture
def chain_client():
    return FakeChainClient()


@pytest.fixture
def alert_sink():
    return RecordingAlertSink()
