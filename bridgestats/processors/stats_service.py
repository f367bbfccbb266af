#!/usr/bin/env python3
"""
Stats Service

Schedules every statistics pass on its own interval. Each pass runs in a
worker thread so blocking database and RPC calls never stall the event
loop; one asyncio task per pass owns its loop and sleeps on a shared stop
event between runs.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional, Tuple

from bridgestats.collectors.alert_sink import AlertSink
from bridgestats.collectors.chain_client import ChainClient
from bridgestats.collectors.external_balance import ExternalBalanceClient
from bridgestats.config import StatsConfig
from bridgestats.processors.asset_statistics import AssetStatisticAggregator, AssetAddressAggregator
from bridgestats.processors.chain_statistics import ChainStatisticAggregator, ChainAddressAggregator
from bridgestats.processors.reserve_reconciler import ReserveReconciler
from bridgestats.processors.token_balances import TokenBalanceAggregator
from bridgestats.processors.token_statistics import TokenStatisticAggregator
from bridgestats.storage.checkpoints import CheckpointStore
from bridgestats.storage.database import DatabaseManager
from bridgestats.storage.ledger import LedgerReader

logger = logging.getLogger(__name__)


def build_passes(
    config: StatsConfig,
    db_manager: DatabaseManager,
    chain_client: Optional[ChainClient] = None,
    alert_sink: Optional[AlertSink] = None
) -> Dict[str, object]:
    """
    Construct every pass from configuration.

    Passes run on separate threads, so each chain-reading pass gets its own
    ChainClient (and HTTP session) unless one is injected.

    Returns:
        Pass name -> object exposing run_once()
    """
    ledger = LedgerReader(db_manager)
    store = CheckpointStore(db_manager)

    def client() -> ChainClient:
        return chain_client or ChainClient(config.chain_nodes)

    alert_sink = alert_sink or AlertSink(config.alert_webhook_url)
    external = ExternalBalanceClient(config.external_balance_urls) if config.external_balance_urls else None

    return {
        'token_statistics': TokenStatisticAggregator(
            ledger, store, client(), btc_basic_name=config.btc_basic_name
        ),
        'chain_statistics': ChainStatisticAggregator(ledger, store),
        'chain_addresses': ChainAddressAggregator(ledger, store),
        'asset_statistics': AssetStatisticAggregator(ledger, store, btc_basic_name=config.btc_basic_name),
        'asset_addresses': AssetAddressAggregator(ledger, store),
        'token_balances': TokenBalanceAggregator(ledger, store, client()),
        'reserve_check': ReserveReconciler(
            ledger,
            client(),
            alert_sink,
            supply_overrides=config.supply_overrides,
            excluded_basics=config.excluded_basics,
            threshold_usd=config.alert_threshold_usd,
            external_balances=external,
        ),
    }


class StatsService:
    """Runs each pass periodically until stopped"""

    def __init__(self, schedule: Dict[str, Tuple[Callable[[], object], int]]):
        """
        Args:
            schedule: Pass name -> (blocking run function, interval in seconds)
        """
        self.schedule = schedule
        self.stop_event = asyncio.Event()
        self.tasks = []
        self.run_counts = {name: 0 for name in schedule}
        self.error_counts = {name: 0 for name in schedule}

    @classmethod
    def from_config(
        cls,
        config: StatsConfig,
        db_manager: DatabaseManager,
        chain_client: Optional[ChainClient] = None,
        alert_sink: Optional[AlertSink] = None
    ) -> 'StatsService':
        passes = build_passes(config, db_manager, chain_client, alert_sink)
        schedule = {
            name: (passes[name].run_once, config.intervals[name])
            for name in passes
        }
        return cls(schedule)

    async def _run_pass(self, name: str, func: Callable[[], object], interval: int):
        logger.info(f"{name} scheduled every {interval}s")
        while not self.stop_event.is_set():
            try:
                result = await asyncio.to_thread(func)
                self.run_counts[name] += 1
                logger.debug(f"{name} result: {result}")
            except Exception as e:
                self.error_counts[name] += 1
                logger.error(f"Error in {name} pass: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info(f"{name} stopped after {self.run_counts[name]} runs ({self.error_counts[name]} errors)")

    def start(self):
        """Create one task per pass on the running event loop"""
        self.stop_event.clear()
        self.tasks = [
            asyncio.create_task(self._run_pass(name, func, interval), name=name)
            for name, (func, interval) in self.schedule.items()
        ]
        logger.info(f"StatsService started with {len(self.tasks)} passes")

    async def stop(self):
        """Signal every task to stop and wait for in-flight passes to finish"""
        if self.stop_event.is_set():
            return
        logger.info("Stopping StatsService...")
        self.stop_event.set()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        logger.info("StatsService stopped")

    async def run(self):
        """Start all passes and wait until stop() is called"""
        self.start()
        await self.stop_event.wait()
        await asyncio.gather(*self.tasks, return_exceptions=True)
