"""
Asset Statistic Aggregator Tests
"""

import pytest

from bridgestats.chains import ETHEREUM_CHAIN_ID, BSC_CHAIN_ID
from bridgestats.processors.asset_statistics import (
    AssetStatisticAggregator, AssetAddressAggregator, ASSET_AMOUNT_DECIMALS
)
from bridgestats.processors.valuation import PRICE_PRECISION, to_usd, to_btc
from bridgestats.storage.checkpoints import CATEGORY_ASSET

BTC_PRICE = 50000 * PRICE_PRECISION
ETH_PRICE = 2500 * PRICE_PRECISION


@pytest.fixture
def catalog(seed):
    seed.basic('WBTC', ETHEREUM_CHAIN_ID, 8, BTC_PRICE)
    seed.token(ETHEREUM_CHAIN_ID, '0xwbtc', 'WBTC', 8)
    seed.token(BSC_CHAIN_ID, '0xbwbtc', 'WBTC', 18)
    seed.basic('ETH', ETHEREUM_CHAIN_ID, 18, ETH_PRICE)
    seed.token(ETHEREUM_CHAIN_ID, '0x' + '0' * 40, 'ETH', 18)
    return seed


def statistics(store):
    return {row.key: row for row in store.load_category(CATEGORY_ASSET)}


def test_token_amounts_are_normalized_to_basic_precision(ledger, store, catalog):
    catalog.src(ETHEREUM_CHAIN_ID, '0xwbtc', 150_000_000)         # 1.5 WBTC, 8 decimals
    catalog.src(BSC_CHAIN_ID, '0xbwbtc', 5 * 10 ** 17 + 123)      # 0.5 WBTC, 18 decimals
    catalog.src(ETHEREUM_CHAIN_ID, '0x' + '0' * 40, 2 * 10 ** 18)

    AssetStatisticAggregator(ledger, store).run_once()

    rows = statistics(store)
    wbtc = rows['WBTC']
    # Sub-satoshi dust survives in the exact total
    assert wbtc.exact_amount == 2 * 10 ** 18 + 123
    assert wbtc.amount == 200_000_000
    assert wbtc.txn_count == 2
    assert wbtc.amount_usd == to_usd(2 * 10 ** 18 + 123, ASSET_AMOUNT_DECIMALS, BTC_PRICE)
    assert wbtc.amount_btc == to_btc(2 * 10 ** 18 + 123, ASSET_AMOUNT_DECIMALS, BTC_PRICE, BTC_PRICE)

    eth = rows['ETH']
    assert (eth.exact_amount, eth.amount, eth.txn_count) == (2 * 10 ** 18, 2 * 10 ** 18, 1)
    assert eth.amount_btc == to_btc(2 * 10 ** 18, 18, ETH_PRICE, BTC_PRICE)


def test_totals_do_not_depend_on_pass_boundaries(ledger, store, catalog):
    catalog.basic('XBTC', ETHEREUM_CHAIN_ID, 8, BTC_PRICE)
    catalog.token(BSC_CHAIN_ID, '0xbxbtc', 'XBTC', 18)
    # Each transfer is half a satoshi
    for _ in range(10):
        catalog.src(BSC_CHAIN_ID, '0xbxbtc', 5 * 10 ** 9)

    aggregator = AssetStatisticAggregator(ledger, store)
    for _ in range(10):
        catalog.src(BSC_CHAIN_ID, '0xbwbtc', 5 * 10 ** 9)
        aggregator.run_once()

    rows = statistics(store)
    one_pass, per_pass = rows['XBTC'], rows['WBTC']
    assert per_pass.exact_amount == one_pass.exact_amount == 5 * 10 ** 10
    assert per_pass.amount == one_pass.amount == 5
    assert per_pass.amount_usd == one_pass.amount_usd


def test_incremental_passes_accumulate(ledger, store, catalog):
    aggregator = AssetStatisticAggregator(ledger, store)
    catalog.src(ETHEREUM_CHAIN_ID, '0xwbtc', 100)
    aggregator.run_once()
    catalog.src(ETHEREUM_CHAIN_ID, '0xwbtc', 200)
    last = catalog.src(BSC_CHAIN_ID, '0xbwbtc', 3 * 10 ** 10)
    aggregator.run_once()

    wbtc = statistics(store)['WBTC']
    assert (wbtc.amount, wbtc.txn_count, wbtc.last_check_id) == (303, 3, last)

    result = aggregator.run_once()
    assert result['updated'] == 0


def test_unknown_assets_are_ignored(ledger, store, catalog, caplog):
    catalog.src(ETHEREUM_CHAIN_ID, '0xmystery', 10 ** 20)
    catalog.src(ETHEREUM_CHAIN_ID, '0xwbtc', 1)

    with caplog.at_level('WARNING'):
        AssetStatisticAggregator(ledger, store).run_once()

    assert statistics(store)['WBTC'].amount == 1
    assert 'not in the token catalog' in caplog.text


def test_address_pass_counts_distinct_senders(ledger, store, catalog):
    catalog.src(ETHEREUM_CHAIN_ID, '0xwbtc', 1, sender='0xalice')
    catalog.src(BSC_CHAIN_ID, '0xbwbtc', 1, sender='0xalice')
    catalog.src(BSC_CHAIN_ID, '0xbwbtc', 1, sender='0xbob')

    AssetStatisticAggregator(ledger, store).run_once()
    AssetAddressAggregator(ledger, store).run_once()

    rows = statistics(store)
    assert rows['WBTC'].addresses == 2
    assert rows['WBTC'].txn_count == 3
    assert rows['ETH'].addresses == 0
