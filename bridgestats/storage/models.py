"""
SQLAlchemy Database Models

ORM models for the bridge ledger and the statistics derived from it.
"""

from datetime import datetime
from sqlalchemy import (
    Column, Integer, BigInteger, String, Numeric, Boolean,
    TIMESTAMP, ForeignKey, Index, PrimaryKeyConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

Base = declarative_base()

# Token amounts on EVM chains are uint256
AMOUNT_DIGITS = 78


class BigAmount(TypeDecorator):
    """
    Arbitrary size non-negative/negative integer.

    Stored as NUMERIC(78, 0) on server databases and as text on SQLite,
    which would otherwise fall back to REAL for values beyond 64 bits.
    """

    impl = Numeric
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'sqlite':
            return dialect.type_descriptor(String(AMOUNT_DIGITS + 1))
        return dialect.type_descriptor(Numeric(AMOUNT_DIGITS, 0, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = int(value)
        if dialect.name == 'sqlite':
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)

    @property
    def python_type(self):
        return int


# ============================================================================
# CATALOG
# ============================================================================

class Chain(Base):
    """Chains known to the bridge"""
    __tablename__ = 'chains'

    chain_id = Column(BigInteger, primary_key=True, autoincrement=False)
    name = Column(String(64), nullable=False)

    def __repr__(self):
        return f"<Chain(chain_id={self.chain_id}, name={self.name})>"


class TokenBasic(Base):
    """Logical asset family spanning several chain-specific tokens"""
    __tablename__ = 'token_basics'

    name = Column(String(64), primary_key=True)
    chain_id = Column(BigInteger, nullable=False)  # home chain
    precision = Column(Integer, nullable=False)  # decimals
    price = Column(BigInteger, nullable=False, default=0)  # scaled by PRICE_PRECISION
    property = Column(Integer, nullable=False, default=0)  # 1 = reserve tracked
    time = Column(TIMESTAMP, default=datetime.utcnow)

    tokens = relationship("Token", back_populates="token_basic")

    def __repr__(self):
        return f"<TokenBasic(name={self.name}, chain_id={self.chain_id}, price={self.price})>"


class Token(Base):
    """Chain-specific token contract"""
    __tablename__ = 'tokens'

    chain_id = Column(BigInteger, nullable=False)
    hash = Column(String(66), nullable=False)
    token_basic_name = Column(String(64), ForeignKey('token_basics.name'), nullable=False)
    precision = Column(Integer, nullable=False)  # decimals
    standard = Column(Integer, nullable=False, default=0)  # 0 = fungible, 1 = nft
    reserve_tracked = Column(Boolean, nullable=False, default=True)
    available_amount = Column(BigAmount)

    token_basic = relationship("TokenBasic", back_populates="tokens")

    __table_args__ = (
        PrimaryKeyConstraint('chain_id', 'hash'),
        Index('idx_tokens_basic', 'token_basic_name'),
    )

    def __repr__(self):
        return f"<Token(chain_id={self.chain_id}, hash={self.hash}, basic={self.token_basic_name})>"


# ============================================================================
# LEDGER (append-only)
# ============================================================================

class SrcTransfer(Base):
    """Transfers locked on the source chain"""
    __tablename__ = 'src_transfers'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tx_hash = Column(String(66), nullable=False, unique=True)
    chain_id = Column(BigInteger, nullable=False)
    asset = Column(String(66), nullable=False)
    from_address = Column(String(66), nullable=False)
    to_address = Column(String(66), nullable=False)
    amount = Column(BigAmount, nullable=False)
    dst_chain_id = Column(BigInteger)
    dst_asset = Column(String(66))
    time = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_src_transfers_chain_asset', 'chain_id', 'asset'),
    )

    def __repr__(self):
        return f"<SrcTransfer(id={self.id}, chain_id={self.chain_id}, amount={self.amount})>"


class RelayTransaction(Base):
    """Relay chain transactions linking source and destination transfers"""
    __tablename__ = 'relay_transactions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    hash = Column(String(66), nullable=False, unique=True)
    src_hash = Column(String(66), nullable=False)
    dst_hash = Column(String(66))
    src_chain_id = Column(BigInteger, nullable=False)
    dst_chain_id = Column(BigInteger, nullable=False)
    time = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<RelayTransaction(id={self.id}, {self.src_chain_id}->{self.dst_chain_id})>"


class DstTransfer(Base):
    """Transfers released on the destination chain"""
    __tablename__ = 'dst_transfers'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tx_hash = Column(String(66), nullable=False, unique=True)
    chain_id = Column(BigInteger, nullable=False)
    asset = Column(String(66), nullable=False)
    from_address = Column(String(66), nullable=False)
    to_address = Column(String(66), nullable=False)
    amount = Column(BigAmount, nullable=False)
    time = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_dst_transfers_chain_asset', 'chain_id', 'asset'),
    )

    def __repr__(self):
        return f"<DstTransfer(id={self.id}, chain_id={self.chain_id}, amount={self.amount})>"


# ============================================================================
# STATISTICS
# ============================================================================

class TokenStatistic(Base):
    """Accumulated in/out volume per chain-specific token"""
    __tablename__ = 'token_statistics'

    chain_id = Column(BigInteger, nullable=False)
    hash = Column(String(66), nullable=False)

    in_amount = Column(BigAmount, nullable=False, default=0)
    out_amount = Column(BigAmount, nullable=False, default=0)
    in_counter = Column(BigInteger, nullable=False, default=0)
    out_counter = Column(BigInteger, nullable=False, default=0)

    # Scaled by VALUE_SCALE
    in_amount_usd = Column(BigAmount, nullable=False, default=0)
    in_amount_btc = Column(BigAmount, nullable=False, default=0)
    out_amount_usd = Column(BigAmount, nullable=False, default=0)
    out_amount_btc = Column(BigAmount, nullable=False, default=0)

    # Checkpoints: dst_transfers.id / src_transfers.id
    last_in_check_id = Column(Integer, nullable=False, default=0)
    last_out_check_id = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        PrimaryKeyConstraint('chain_id', 'hash'),
    )

    @property
    def key(self):
        return (self.chain_id, self.hash)

    def __repr__(self):
        return (f"<TokenStatistic(chain_id={self.chain_id}, hash={self.hash}, "
                f"in={self.in_amount}, out={self.out_amount})>")


class ChainStatistic(Base):
    """Accumulated transfer counts and active addresses per chain"""
    __tablename__ = 'chain_statistics'

    chain_id = Column(BigInteger, primary_key=True, autoincrement=False)
    in_count = Column(BigInteger, nullable=False, default=0)
    out_count = Column(BigInteger, nullable=False, default=0)
    addresses = Column(BigInteger, nullable=False, default=0)

    # Checkpoints: dst_transfers.id / src_transfers.id (relay_transactions.id for the relay chain)
    last_in_check_id = Column(Integer, nullable=False, default=0)
    last_out_check_id = Column(Integer, nullable=False, default=0)

    @property
    def key(self):
        return self.chain_id

    def __repr__(self):
        return f"<ChainStatistic(chain_id={self.chain_id}, in={self.in_count}, out={self.out_count})>"


class AssetStatistic(Base):
    """Accumulated volume per token basic"""
    __tablename__ = 'asset_statistics'

    basic_name = Column(String(64), primary_key=True)

    # Exact running total at ASSET_AMOUNT_DECIMALS; amount is derived from it
    exact_amount = Column(BigAmount, nullable=False, default=0)
    amount = Column(BigAmount, nullable=False, default=0)  # in basic precision units, truncated
    txn_count = Column(BigInteger, nullable=False, default=0)
    addresses = Column(BigInteger, nullable=False, default=0)
    amount_usd = Column(BigAmount, nullable=False, default=0)
    amount_btc = Column(BigAmount, nullable=False, default=0)

    # Checkpoint: src_transfers.id
    last_check_id = Column(Integer, nullable=False, default=0)

    @property
    def key(self):
        return self.basic_name

    def __repr__(self):
        return f"<AssetStatistic(basic={self.basic_name}, amount={self.amount}, txns={self.txn_count})>"
