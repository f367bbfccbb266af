"""
Stats Configuration

Loads service configuration from the environment (and a local .env file).
All problems are collected and raised together as a ConfigError so the
caller can decide whether to abort.
"""

import os
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from dotenv import load_dotenv

from bridgestats.chains import ETHEREUM_CHAIN_ID, HECO_CHAIN_ID, BSC_CHAIN_ID

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = 'sqlite:///bridge_stats.db'
DEFAULT_ALERT_THRESHOLD_USD = 10000
DEFAULT_BTC_BASIC_NAME = 'WBTC'

# Basics whose on-chain supply figures are known to be unreliable
DEFAULT_EXCLUDED_BASICS = ['BLES', 'GOF', 'LEV', 'mBTM', 'MOZ', 'O3', 'STN', 'USDT', 'XMPT']

_E18 = 10 ** 18

# (basic name, chain id) -> corrected total supply
DEFAULT_SUPPLY_OVERRIDES: Dict[Tuple[str, int], int] = {
    ('YNI', ETHEREUM_CHAIN_ID): 0,
    ('YNI', HECO_CHAIN_ID): _E18,
    ('DAO', ETHEREUM_CHAIN_ID): 1000 * _E18,
    ('DAO', HECO_CHAIN_ID): 1000 * _E18,
    ('COPR', BSC_CHAIN_ID): 274400000 * _E18,
    ('COPR', HECO_CHAIN_ID): 0,
    ('DigiCol ERC-721', ETHEREUM_CHAIN_ID): 0,
    ('DigiCol ERC-721', HECO_CHAIN_ID): 0,
    ('DMOD', ETHEREUM_CHAIN_ID): 0,
    ('DMOD', BSC_CHAIN_ID): 15000000 * _E18,
    ('SIL', ETHEREUM_CHAIN_ID): 1487520675265330391631,
    ('SIL', BSC_CHAIN_ID): 5001,
}

# Pass name -> environment variable holding its interval in seconds
INTERVAL_VARIABLES = {
    'token_statistics': 'TOKEN_STATISTIC_INTERVAL',
    'chain_statistics': 'CHAIN_STATISTIC_INTERVAL',
    'chain_addresses': 'CHAIN_ADDRESS_INTERVAL',
    'asset_statistics': 'ASSET_STATISTIC_INTERVAL',
    'asset_addresses': 'ASSET_ADDRESS_INTERVAL',
    'token_balances': 'TOKEN_BALANCE_INTERVAL',
    'reserve_check': 'RESERVE_CHECK_INTERVAL',
}


class ConfigError(Exception):
    """Raised when the service configuration is invalid"""

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("Invalid stats config: " + "; ".join(problems))


@dataclass
class ChainNode:
    """RPC endpoint and bridge custody (lock proxy) address for one chain"""
    url: str
    proxy: str


@dataclass
class StatsConfig:
    database_url: str
    intervals: Dict[str, int]
    alert_webhook_url: str
    alert_threshold_usd: int = DEFAULT_ALERT_THRESHOLD_USD
    chain_nodes: Dict[int, ChainNode] = field(default_factory=dict)
    supply_overrides: Dict[Tuple[str, int], int] = field(
        default_factory=lambda: dict(DEFAULT_SUPPLY_OVERRIDES)
    )
    excluded_basics: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDED_BASICS))
    external_balance_urls: Dict[str, str] = field(default_factory=dict)
    btc_basic_name: str = DEFAULT_BTC_BASIC_NAME
    log_level: str = 'INFO'


def parse_supply_overrides(entries: list) -> Dict[Tuple[str, int], int]:
    """
    Build the override table from a JSON list.

    Args:
        entries: List of {"name": ..., "chain_id": ..., "supply": ...} objects.
            Supply may be given as a string to keep large integers exact.

    Returns:
        Mapping of (basic name, chain id) to corrected supply
    """
    overrides = {}
    for entry in entries:
        name = entry['name']
        chain_id = int(entry['chain_id'])
        supply = int(str(entry['supply']))
        if supply < 0:
            raise ValueError(f"negative supply override for {name} on chain {chain_id}")
        overrides[(name, chain_id)] = supply
    return overrides


def _read_interval(env, variable: str, problems: List[str]) -> Optional[int]:
    raw = env.get(variable)
    if raw is None or raw == '':
        problems.append(f"{variable} is required")
        return None
    try:
        value = int(raw)
    except ValueError:
        problems.append(f"{variable} must be an integer, got {raw!r}")
        return None
    if value <= 0:
        problems.append(f"{variable} must be positive, got {value}")
        return None
    return value


def load_config(env: Optional[Dict[str, str]] = None) -> StatsConfig:
    """
    Load and validate configuration.

    Args:
        env: Mapping to read from. If None, .env is loaded and os.environ is used

    Returns:
        StatsConfig

    Raises:
        ConfigError: listing every problem found
    """
    if env is None:
        load_dotenv()
        env = os.environ

    problems = []

    intervals = {}
    for pass_name, variable in INTERVAL_VARIABLES.items():
        value = _read_interval(env, variable, problems)
        if value is not None:
            intervals[pass_name] = value

    webhook_url = env.get('ALERT_WEBHOOK_URL', '')
    if not webhook_url:
        problems.append("ALERT_WEBHOOK_URL is required")

    threshold = DEFAULT_ALERT_THRESHOLD_USD
    raw_threshold = env.get('ALERT_THRESHOLD_USD')
    if raw_threshold:
        try:
            threshold = int(raw_threshold)
        except ValueError:
            problems.append(f"ALERT_THRESHOLD_USD must be an integer, got {raw_threshold!r}")

    chain_nodes = {}
    raw_nodes = env.get('CHAIN_NODES')
    if raw_nodes:
        try:
            for chain_id, node in json.loads(raw_nodes).items():
                chain_nodes[int(chain_id)] = ChainNode(url=node['url'], proxy=node['proxy'])
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            problems.append(f"CHAIN_NODES is malformed: {e}")

    supply_overrides = dict(DEFAULT_SUPPLY_OVERRIDES)
    overrides_file = env.get('SUPPLY_OVERRIDES_FILE')
    if overrides_file:
        try:
            with open(overrides_file) as f:
                supply_overrides = parse_supply_overrides(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            problems.append(f"SUPPLY_OVERRIDES_FILE {overrides_file} could not be loaded: {e}")

    excluded = list(DEFAULT_EXCLUDED_BASICS)
    raw_excluded = env.get('EXCLUDED_BASICS')
    if raw_excluded is not None:
        excluded = [name.strip() for name in raw_excluded.split(',') if name.strip()]

    external_urls = {}
    raw_external = env.get('EXTERNAL_BALANCE_URLS')
    if raw_external:
        try:
            external_urls = {str(k): str(v) for k, v in json.loads(raw_external).items()}
        except (ValueError, AttributeError) as e:
            problems.append(f"EXTERNAL_BALANCE_URLS is malformed: {e}")

    if problems:
        raise ConfigError(problems)

    return StatsConfig(
        database_url=env.get('DATABASE_URL', DEFAULT_DATABASE_URL),
        intervals=intervals,
        alert_webhook_url=webhook_url,
        alert_threshold_usd=threshold,
        chain_nodes=chain_nodes,
        supply_overrides=supply_overrides,
        excluded_basics=excluded,
        external_balance_urls=external_urls,
        btc_basic_name=env.get('BTC_BASIC_NAME', DEFAULT_BTC_BASIC_NAME),
        log_level=env.get('LOG_LEVEL', 'INFO'),
    )
