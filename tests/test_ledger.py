"""
Ledger Reader Tests
"""

import pytest

from bridgestats.storage.ledger import (
    STREAM_SRC, STREAM_DST, STREAM_RELAY, GROUP_BY_ASSET, GROUP_BY_CHAIN
)

ETH_USDC = '0xusdc'
BSC_USDC = '0xbusdc'


def test_highest_id_of_empty_stream_is_zero(ledger):
    assert ledger.highest_id(STREAM_SRC) == 0
    assert ledger.highest_id(STREAM_DST) == 0
    assert ledger.highest_id(STREAM_RELAY) == 0


def test_sum_and_count_by_asset_respects_bounds(ledger, seed):
    first = seed.src(2, ETH_USDC, 10)
    seed.src(2, ETH_USDC, 20)
    seed.src(6, BSC_USDC, 5)
    last = seed.src(2, ETH_USDC, 40)

    # (first, last] excludes the first transfer
    deltas = ledger.sum_and_count_in_range(STREAM_SRC, GROUP_BY_ASSET, first, last)

    assert deltas == {(2, ETH_USDC): (60, 2), (6, BSC_USDC): (5, 1)}


def test_sum_and_count_by_chain(ledger, seed):
    seed.dst(2, ETH_USDC, 1)
    seed.dst(2, '0xother', 2)
    high = seed.dst(6, BSC_USDC, 3)

    deltas = ledger.sum_and_count_in_range(STREAM_DST, GROUP_BY_CHAIN, 0, high)

    assert deltas == {2: (3, 2), 6: (3, 1)}


def test_amounts_beyond_64_bits_are_exact(ledger, seed):
    big = 10 ** 30 + 7
    seed.src(2, ETH_USDC, big)
    high = seed.src(2, ETH_USDC, big)

    deltas = ledger.sum_and_count_in_range(STREAM_SRC, GROUP_BY_ASSET, 0, high)

    assert deltas[(2, ETH_USDC)] == (2 * big, 2)
    assert isinstance(deltas[(2, ETH_USDC)][0], int)


def test_empty_range_returns_nothing(ledger, seed):
    high = seed.src(2, ETH_USDC, 10)
    assert ledger.sum_and_count_in_range(STREAM_SRC, GROUP_BY_ASSET, high, high) == {}
    assert ledger.count_in_range(STREAM_SRC, high, high) == 0


def test_relay_stream_has_no_amounts(ledger):
    with pytest.raises(ValueError):
        ledger.sum_and_count_in_range(STREAM_RELAY, GROUP_BY_CHAIN, 0, 10)


def test_unknown_stream_and_grouping_raise(ledger):
    with pytest.raises(ValueError):
        ledger.highest_id('bogus')
    with pytest.raises(ValueError):
        ledger.sum_and_count_in_range(STREAM_SRC, 'bogus', 0, 10)


def test_count_in_range(ledger, seed):
    ids = [seed.relay() for _ in range(5)]
    assert ledger.count_in_range(STREAM_RELAY, ids[1], ids[4]) == 3


def test_catalog_listing(ledger, seed):
    seed.chain(2)
    seed.chain(6)
    seed.basic('USDC', 2, 6, 10 ** 8)
    seed.token(2, ETH_USDC, 'USDC', 6)
    seed.token(6, BSC_USDC, 'USDC', 18)

    assert sorted(ledger.list_known_chains()) == [2, 6]
    assert ledger.list_known_basics() == ['USDC']
    assert sorted(ledger.list_known_assets()) == [(2, ETH_USDC), (6, BSC_USDC)]

    tokens = ledger.load_tokens()
    assert tokens[(6, BSC_USDC)].token_basic.name == 'USDC'

    basics = ledger.load_basics(reserve_tracked_only=True)
    assert {t.hash for t in basics['USDC'].tokens} == {ETH_USDC, BSC_USDC}


def test_reserve_tracked_filter(ledger, seed):
    seed.basic('USDC', 2, 6, 10 ** 8, property=1)
    seed.basic('TEST', 2, 6, 10 ** 8, property=0)

    assert set(ledger.load_basics()) == {'USDC', 'TEST'}
    assert set(ledger.load_basics(reserve_tracked_only=True)) == {'USDC'}


def test_distinct_addresses_by_chain_unions_senders_and_recipients(ledger, seed):
    seed.src(2, ETH_USDC, 1, sender='0xalice')
    seed.src(2, ETH_USDC, 1, sender='0xalice')
    seed.src(2, ETH_USDC, 1, sender='0xbob')
    seed.dst(2, ETH_USDC, 1, recipient='0xbob')
    seed.dst(2, ETH_USDC, 1, recipient='0xcarol')
    seed.dst(6, BSC_USDC, 1, recipient='0xalice')

    assert ledger.distinct_addresses_by_chain() == {2: 3, 6: 1}


def test_distinct_addresses_by_basic(ledger, seed):
    seed.basic('USDC', 2, 6, 10 ** 8)
    seed.token(2, ETH_USDC, 'USDC', 6)
    seed.token(6, BSC_USDC, 'USDC', 18)
    seed.src(2, ETH_USDC, 1, sender='0xalice')
    seed.src(6, BSC_USDC, 1, sender='0xalice')
    seed.src(6, BSC_USDC, 1, sender='0xbob')
    seed.src(6, '0xunknown', 1, sender='0xeve')

    assert ledger.distinct_addresses_by_basic() == {'USDC': 2}


def test_sql_and_frame_aggregation_agree(ledger, seed):
    assert ledger.sum_in_sql is False
    seed.src(2, ETH_USDC, 10)
    seed.src(2, ETH_USDC, 20)
    high = seed.src(6, BSC_USDC, 5)

    for group_by in (GROUP_BY_ASSET, GROUP_BY_CHAIN):
        ledger.sum_in_sql = False
        frame = ledger.sum_and_count_in_range(STREAM_SRC, group_by, 0, high)
        ledger.sum_in_sql = True
        sql = ledger.sum_and_count_in_range(STREAM_SRC, group_by, 0, high)
        assert sql == frame

    assert sql == {2: (30, 2), 6: (5, 1)}
