#!/usr/bin/env python3
"""
Database Initialization Script

Creates the catalog, ledger and statistics tables and optionally seeds
the chain list.
"""

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from dotenv import load_dotenv

from bridgestats.chains import CHAIN_NAMES
from bridgestats.config import DEFAULT_DATABASE_URL
from bridgestats.storage.database import init_database
from bridgestats.storage.models import Base, Chain
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def seed_chains(db_manager):
    """Insert the known chain ids, skipping ones already present"""
    with db_manager.get_session() as session:
        existing = {chain_id for (chain_id,) in session.query(Chain.chain_id).all()}
        added = 0
        for chain_id, name in CHAIN_NAMES.items():
            if chain_id not in existing:
                session.add(Chain(chain_id=chain_id, name=name))
                added += 1
    return added


def main():
    """Initialize database"""
    print("="*80)
    print("Bridge Stats - Database Initialization")
    print("="*80)

    load_dotenv()
    database_url = os.getenv('DATABASE_URL', DEFAULT_DATABASE_URL)

    print(f"\nDatabase URL: {database_url}")
    print("\nThis will create all database tables.")

    response = input("\nContinue? (yes/no): ")

    if response.lower() not in ['yes', 'y']:
        print("Aborted.")
        return

    try:
        db_manager = init_database(database_url)

        print("\n✅ Database initialized successfully!")
        print("\nCreated tables:")
        for table in Base.metadata.sorted_tables:
            print(f"  - {table.name}")

        added = seed_chains(db_manager)
        print(f"\nSeeded {added} chains")
        db_manager.close()

        print("\nDatabase is ready to use!")

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
