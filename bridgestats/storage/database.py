"""
Database Connection Manager

Handles database connections, sessions, and operations.
"""

import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from bridgestats.storage.models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Manages database connections and sessions.

    One instance per process, constructed by the entry point and passed to
    every component that needs the store.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._engine = None
        self._session_factory = None
        self.initialize()

    def initialize(self):
        """Create the engine and session factory for the configured URL"""
        logger.info("Initializing database connection...")

        if self.database_url.startswith('sqlite'):
            connect_args = {'check_same_thread': False}
            if self.database_url in ('sqlite://', 'sqlite:///:memory:'):
                # In-memory database must be shared by every pass thread
                self._engine = create_engine(
                    self.database_url,
                    echo=False,
                    connect_args=connect_args,
                    poolclass=StaticPool
                )
            else:
                self._engine = create_engine(
                    self.database_url,
                    echo=False,
                    connect_args=connect_args
                )
        else:
            # PostgreSQL / MySQL configuration
            self._engine = create_engine(
                self.database_url,
                echo=False,
                pool_size=10,
                max_overflow=20,
                pool_pre_ping=True  # Verify connections before using
            )

        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False
        )

        logger.info("Database connection initialized")

    @property
    def dialect_name(self) -> str:
        """Backend name, e.g. 'sqlite' or 'postgresql'"""
        return self._engine.dialect.name

    def create_tables(self):
        """Create all database tables"""
        logger.info("Creating database tables...")
        Base.metadata.create_all(self._engine)
        logger.info("Database tables created")

    @contextmanager
    def get_session(self):
        """
        Get a database session (context manager).

        Commits on success, rolls back and re-raises on any error.

        Usage:
            with db_manager.get_session() as session:
                session.add(obj)
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            session.close()

    def close(self):
        """Close database connections"""
        if self._engine:
            self._engine.dispose()
        logger.info("Database connections closed")


def init_database(database_url: str) -> DatabaseManager:
    """
    Initialize database and create tables.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        The DatabaseManager bound to that URL
    """
    db_manager = DatabaseManager(database_url)
    db_manager.create_tables()
    return db_manager
