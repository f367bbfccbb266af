#!/usr/bin/env python3
"""
Reserve Reconciler

Compares, for every reserve-tracked token basic, the supply minted on
destination chains against the balance locked in bridge custody:

    flow = total_supply - custody_balance      (per chain)
    difference = sum(flow)                     (per basic)

A positive difference means more was minted than is locked. Differences
worth more than the materiality threshold (USD) are batched into a single
webhook alert. The pass holds no state; every run reads live figures.
"""

import time
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from bridgestats.chains import O3_CHAIN_ID, chain_name
from bridgestats.collectors.alert_sink import AlertSink, AlertDeliveryError
from bridgestats.collectors.chain_client import ChainClient, fetch_with_retry
from bridgestats.collectors.external_balance import ExternalBalanceClient, ExternalBalanceError
from bridgestats.config import DEFAULT_ALERT_THRESHOLD_USD
from bridgestats.processors.valuation import usd_value
from bridgestats.storage.ledger import LedgerReader
from bridgestats.storage.models import Token, TokenBasic

logger = logging.getLogger(__name__)

ALERT_TITLE = '[bridge reserve]'


@dataclass
class ChainAssetFlow:
    """Supply/balance figures of one basic on one chain"""
    chain_id: int
    total_supply: int = 0
    balance: int = 0
    flow: int = 0
    external: bool = False


@dataclass
class AssetDetail:
    """Reconciliation result for one token basic"""
    basic_name: str
    precision: int
    price: int
    chains: List[ChainAssetFlow] = field(default_factory=list)
    difference: int = 0
    amount_usd: Decimal = Decimal(0)
    alert_usd: Decimal = Decimal(0)  # amount_usd when over the threshold, else 0
    reasons: List[str] = field(default_factory=list)


@dataclass
class ReserveReport:
    reliable: List[AssetDetail] = field(default_factory=list)
    unreliable: List[AssetDetail] = field(default_factory=list)
    alerted: List[str] = field(default_factory=list)
    alert_error: Optional[str] = None


def lookup_supply_override(
    overrides: Dict[Tuple[str, int], int],
    basic_name: str,
    chain_id: int,
    supply: int
) -> int:
    """Corrected supply for (basic, chain) if the override table has one, else `supply`"""
    return overrides.get((basic_name, chain_id), supply)


class ReserveReconciler:
    """Live supply vs. custody reconciliation with threshold alerting"""

    name = 'reserve_check'

    def __init__(
        self,
        ledger: LedgerReader,
        chain_client: ChainClient,
        alert_sink: AlertSink,
        supply_overrides: Dict[Tuple[str, int], int],
        excluded_basics: Iterable[str],
        threshold_usd: int = DEFAULT_ALERT_THRESHOLD_USD,
        external_balances: Optional[ExternalBalanceClient] = None,
        balance_retries: int = 4,
        supply_retries: int = 2,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.ledger = ledger
        self.chain_client = chain_client
        self.alert_sink = alert_sink
        self.supply_overrides = dict(supply_overrides)
        self.excluded_basics = set(excluded_basics)
        self.threshold_usd = threshold_usd
        self.external_balances = external_balances
        self.balance_retries = balance_retries
        self.supply_retries = supply_retries
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def _fetch(self, fetch, retries: int, what: str, token: Token, reasons: List[str]) -> int:
        value, error = fetch_with_retry(fetch, retries, self.backoff_seconds, self.sleep)
        if error is not None:
            reason = f"{what} of {chain_name(int(token.chain_id))} {token.hash} unavailable: {error}"
            logger.warning(f"{self.name}: {reason}")
            reasons.append(reason)
            return 0
        return value

    def _token_flow(self, basic: TokenBasic, token: Token, excluded: bool, reasons: List[str]) -> ChainAssetFlow:
        chain_id = int(token.chain_id)
        balance = self._fetch(
            lambda: self.chain_client.get_balance(chain_id, token.hash),
            self.balance_retries, 'balance', token, reasons
        )
        supply = self._fetch(
            lambda: self.chain_client.get_total_supply(chain_id, token.hash),
            self.supply_retries, 'total supply', token, reasons
        )

        # Home-chain supply is native issuance, never bridged
        if not excluded and chain_id == int(basic.chain_id):
            supply = 0
        supply = lookup_supply_override(self.supply_overrides, basic.name, chain_id, supply)

        return ChainAssetFlow(chain_id=chain_id, total_supply=supply, balance=balance, flow=supply - balance)

    def _external_flow(self, basic: TokenBasic, reasons: List[str]) -> Optional[ChainAssetFlow]:
        if self.external_balances is None or not self.external_balances.has_source(basic.name):
            return None
        try:
            balance = self.external_balances.fetch_balance(basic.name)
        except ExternalBalanceError as e:
            reason = f"external balance unavailable: {e}"
            logger.warning(f"{self.name}: {basic.name} {reason}")
            reasons.append(reason)
            return None
        return ChainAssetFlow(chain_id=O3_CHAIN_ID, balance=balance, flow=balance, external=True)

    def reconcile_basic(self, basic: TokenBasic) -> AssetDetail:
        """Compute the per-chain flows and total difference of one basic"""
        excluded = basic.name in self.excluded_basics
        detail = AssetDetail(basic_name=basic.name, precision=basic.precision, price=basic.price)

        for token in basic.tokens:
            if not token.reserve_tracked:
                continue
            detail.chains.append(self._token_flow(basic, token, excluded, detail.reasons))

        if not excluded:
            external = self._external_flow(basic, detail.reasons)
            if external is not None:
                detail.chains.append(external)

        detail.difference = sum(chain.flow for chain in detail.chains)
        if detail.difference > 0:
            detail.amount_usd = usd_value(detail.difference, basic.precision, basic.price)
        return detail

    def format_alert(self, details: List[AssetDetail]) -> str:
        lines = []
        for detail in details:
            lines.append(
                f"### {detail.basic_name}\n"
                f"- difference: {detail.difference} (precision {detail.precision})\n"
                f"- usd: {int(detail.amount_usd)}"
            )
            for chain in detail.chains:
                lines.append(
                    f"  - {chain_name(chain.chain_id)}: supply {chain.total_supply}, "
                    f"balance {chain.balance}, flow {chain.flow}"
                )
            for reason in detail.reasons:
                lines.append(f"  - note: {reason}")
        return "\n".join(lines)

    def log_report(self, report: ReserveReport):
        records = []
        for bucket, details in (('reliable', report.reliable), ('unreliable', report.unreliable)):
            for detail in details:
                for chain in detail.chains:
                    records.append({
                        'bucket': bucket,
                        'basic': detail.basic_name,
                        'chain': chain_name(chain.chain_id),
                        'total_supply': str(chain.total_supply),
                        'balance': str(chain.balance),
                        'flow': str(chain.flow),
                        'difference': str(detail.difference),
                        'usd': str(int(detail.amount_usd)),
                    })
        if not records:
            logger.info(f"{self.name}: no reserve-tracked assets")
            return
        df = pd.DataFrame(records)
        logger.info(f"{self.name} report:\n{df.to_string(index=False)}")

    def run_once(self) -> ReserveReport:
        """
        Reconcile every reserve-tracked basic and alert on material gaps.

        Returns:
            ReserveReport
        """
        report = ReserveReport()
        basics = self.ledger.load_basics(reserve_tracked_only=True)

        for name in sorted(basics):
            detail = self.reconcile_basic(basics[name])
            if name in self.excluded_basics:
                report.unreliable.append(detail)
            else:
                report.reliable.append(detail)

        for detail in report.reliable:
            if detail.amount_usd > self.threshold_usd:
                detail.alert_usd = detail.amount_usd

        material = [d for d in report.reliable if d.alert_usd > 0]
        if material:
            report.alerted = [d.basic_name for d in material]
            try:
                self.alert_sink.send(ALERT_TITLE, self.format_alert(material))
            except AlertDeliveryError as e:
                report.alert_error = str(e)
                logger.error(f"{self.name}: alert for {report.alerted} not delivered: {e}")

        self.log_report(report)
        logger.info(
            f"{self.name}: {len(report.reliable)} reliable, {len(report.unreliable)} unreliable, "
            f"{len(report.alerted)} over {self.threshold_usd} USD"
        )
        return report
