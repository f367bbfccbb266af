"""
Chain Identifiers

Cross-chain ids used by the bridge ledger.
"""

RELAY_CHAIN_ID = 0
BTC_CHAIN_ID = 1
ETHEREUM_CHAIN_ID = 2
ONT_CHAIN_ID = 3
NEO_CHAIN_ID = 4
SWITCHEO_CHAIN_ID = 5
BSC_CHAIN_ID = 6
HECO_CHAIN_ID = 7
O3_CHAIN_ID = 10
NEO3_CHAIN_ID = 11
OK_CHAIN_ID = 12

CHAIN_NAMES = {
    RELAY_CHAIN_ID: 'Poly',
    BTC_CHAIN_ID: 'Bitcoin',
    ETHEREUM_CHAIN_ID: 'Ethereum',
    ONT_CHAIN_ID: 'Ontology',
    NEO_CHAIN_ID: 'Neo',
    SWITCHEO_CHAIN_ID: 'Switcheo',
    BSC_CHAIN_ID: 'BSC',
    HECO_CHAIN_ID: 'Heco',
    O3_CHAIN_ID: 'O3',
    NEO3_CHAIN_ID: 'Neo3',
    OK_CHAIN_ID: 'OKEx',
}


def chain_name(chain_id: int) -> str:
    """Human readable chain name, falling back to the numeric id"""
    return CHAIN_NAMES.get(chain_id, f"Chain({chain_id})")
