"""Static chain and token registry.

Cross-chain equivalence is resolved only through ``origin_denom`` /
``origin_chain_id``; token names are display-only.
"""

from __future__ import annotations

from typing import Dict, Optional

from cl_rebalancer.errors import TokenNotFoundInRegistry
from cl_rebalancer.models import ChainInfo, Token

SUI_NATIVE_DENOM = (
    "0x0000000000000000000000000000000000000000000000000000000000000002::sui::SUI"
)

# ---------------------------------------------------------------------------
# Osmosis
# ---------------------------------------------------------------------------

OSMOSIS_MAINNET_NATIVE_TOKEN = Token(
    chain_id="osmosis-1", denom="uosmo", name="OSMO", decimals=6
)
OSMOSIS_MAINNET_CHAIN_INFO = ChainInfo(
    id="osmosis-1",
    name="Osmosis",
    prefix="osmo",
    rpc_endpoint="https://rpc.osmosis.zone:443",
    rest_endpoint="https://lcd.osmosis.zone",
    native_token=OSMOSIS_MAINNET_NATIVE_TOKEN,
)
OSMOSIS_MAINNET_TOKENS: Dict[str, Token] = {
    token.denom: token
    for token in (
        OSMOSIS_MAINNET_NATIVE_TOKEN,
        Token(
            chain_id="osmosis-1",
            denom="ibc/498A0751C798A0D9A389AA3691123DADA57DAA4FE165D5C75894505B876BA6E4",
            name="USDC",
            decimals=6,
            origin_denom="uusdc",
            origin_chain_id="noble-1",
        ),
        Token(
            chain_id="osmosis-1",
            denom="ibc/23AB778D694C1ECFC59B91D8C399C115CC53B0BD1C61020D8E19519F002BDD85",
            name="ARCH",
            decimals=18,
            origin_denom="aarch",
            origin_chain_id="archway-1",
        ),
    )
}

OSMOSIS_TESTNET_NATIVE_TOKEN = Token(
    chain_id="osmo-test-5", denom="uosmo", name="OSMO", decimals=6
)
OSMOSIS_TESTNET_CHAIN_INFO = ChainInfo(
    id="osmo-test-5",
    name="Osmosis Testnet",
    prefix="osmo",
    rpc_endpoint="https://rpc.osmotest5.osmosis.zone",
    rest_endpoint="https://lcd.osmotest5.osmosis.zone",
    native_token=OSMOSIS_TESTNET_NATIVE_TOKEN,
)
OSMOSIS_TESTNET_TOKENS: Dict[str, Token] = {
    token.denom: token
    for token in (
        OSMOSIS_TESTNET_NATIVE_TOKEN,
        Token(
            chain_id="osmo-test-5",
            denom="ibc/DE6792CF9E521F6AD6E9A4BDF6225C9571A3B74ACC0A529F92BC5122A39D2E58",
            name="USDC",
            decimals=6,
            origin_denom="uusdc",
            origin_chain_id="grand-1",
        ),
        Token(
            chain_id="osmo-test-5",
            denom="ibc/5F10B4BED1A80DC44975D95D716AEF8CEBFB99B3F088C98361436A7D0CF5A830",
            name="ARCH",
            decimals=18,
            origin_denom="aconst",
            origin_chain_id="constantine-3",
        ),
    )
}

# ---------------------------------------------------------------------------
# Archway
# ---------------------------------------------------------------------------

ARCHWAY_MAINNET_NATIVE_TOKEN = Token(
    chain_id="archway-1", denom="aarch", name="ARCH", decimals=18
)
ARCHWAY_MAINNET_CHAIN_INFO = ChainInfo(
    id="archway-1",
    name="Archway",
    prefix="archway",
    rpc_endpoint="https://rpc.mainnet.archway.io",
    rest_endpoint="https://api.mainnet.archway.io",
    native_token=ARCHWAY_MAINNET_NATIVE_TOKEN,
)
ARCHWAY_MAINNET_TOKENS: Dict[str, Token] = {
    token.denom: token
    for token in (
        ARCHWAY_MAINNET_NATIVE_TOKEN,
        Token(
            chain_id="archway-1",
            denom="ibc/43897B9739BD63E3A08A88191999C632E052724AB96BD4C74AE31375C991F48D",
            name="USDC",
            decimals=6,
            origin_denom="uusdc",
            origin_chain_id="noble-1",
        ),
        Token(
            chain_id="archway-1",
            denom="ibc/0471F1C4E7AFD3F07702BEF6DC365268D64570F7C1FDC98EA6098DD6DE59817B",
            name="OSMO",
            decimals=6,
            origin_denom="uosmo",
            origin_chain_id="osmosis-1",
        ),
        Token(
            chain_id="archway-1",
            denom="ibc/27394FB092D2ECCD56123C74F36E4C1F926001CEADA9CA97EA622B25F41E5EB2",
            name="ATOM",
            decimals=6,
            origin_denom="uatom",
            origin_chain_id="cosmoshub-4",
        ),
        Token(
            chain_id="archway-1",
            denom="ibc/B68560022FB3CAD599224B16AAEB62FB85848A7674E40B68A0F1982F270B356E",
            name="TIA",
            decimals=6,
            origin_denom="utia",
            origin_chain_id="celestia",
        ),
    )
}

ARCHWAY_TESTNET_NATIVE_TOKEN = Token(
    chain_id="constantine-3", denom="aconst", name="CONST", decimals=18
)
ARCHWAY_TESTNET_CHAIN_INFO = ChainInfo(
    id="constantine-3",
    name="Archway Testnet",
    prefix="archway",
    rpc_endpoint="https://rpc.constantine.archway.io",
    rest_endpoint="https://api.constantine.archway.io",
    native_token=ARCHWAY_TESTNET_NATIVE_TOKEN,
)
ARCHWAY_TESTNET_TOKENS: Dict[str, Token] = {
    token.denom: token
    for token in (
        ARCHWAY_TESTNET_NATIVE_TOKEN,
        Token(
            chain_id="constantine-3",
            denom="ibc/34F8D3402273FFA5278AE5757D81CE151ACFD4B19C494C0EE372A7229714824F",
            name="USDC",
            decimals=6,
            origin_denom="uusdc",
            origin_chain_id="grand-1",
        ),
        Token(
            chain_id="constantine-3",
            denom="ibc/F05050E6851A163E36B927EA821A13A6CE0D596C7B85FBF90570AC57C3F16D5A",
            name="OSMO",
            decimals=6,
            origin_denom="uosmo",
            origin_chain_id="osmo-test-5",
        ),
    )
}

# ---------------------------------------------------------------------------
# Sui
# ---------------------------------------------------------------------------

SUI_MAINNET_NATIVE_TOKEN = Token(
    chain_id="101", denom=SUI_NATIVE_DENOM, name="SUI", decimals=9
)
SUI_MAINNET_CHAIN_INFO = ChainInfo(
    id="101",
    name="Sui",
    prefix="sui",
    rpc_endpoint="https://fullnode.mainnet.sui.io:443",
    rest_endpoint="",
    native_token=SUI_MAINNET_NATIVE_TOKEN,
)
SUI_MAINNET_TOKENS: Dict[str, Token] = {
    token.denom: token
    for token in (
        SUI_MAINNET_NATIVE_TOKEN,
        Token(
            chain_id="101",
            denom="0xdba34672e30cb065b1f93e3ab55318768fd6fef66c15942c9f7cb846e2f900e7::usdc::USDC",
            name="USDC",
            decimals=6,
        ),
        Token(
            chain_id="101",
            denom="0x06864a6f921804860930db6ddbe2e16acdf8504495ea7481637a1c8b9a8fe54b::cetus::CETUS",
            name="CETUS",
            decimals=9,
        ),
    )
}

SUI_TESTNET_NATIVE_TOKEN = Token(
    chain_id="103", denom=SUI_NATIVE_DENOM, name="SUI", decimals=9
)
SUI_TESTNET_CHAIN_INFO = ChainInfo(
    id="103",
    name="Sui Testnet",
    prefix="sui",
    rpc_endpoint="https://fullnode.testnet.sui.io:443",
    rest_endpoint="",
    native_token=SUI_TESTNET_NATIVE_TOKEN,
)
SUI_TESTNET_TOKENS: Dict[str, Token] = {
    token.denom: token
    for token in (
        SUI_TESTNET_NATIVE_TOKEN,
        Token(
            chain_id="103",
            denom="0xa1ec7fc00a6f40db9693ad1415d0c193ad3906494428cf252621037bd7117e29::usdc::USDC",
            name="USDC",
            decimals=6,
        ),
    )
}

# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

_CHAINS: Dict[str, Dict[str, ChainInfo]] = {
    "osmosis": {"mainnet": OSMOSIS_MAINNET_CHAIN_INFO, "testnet": OSMOSIS_TESTNET_CHAIN_INFO},
    "archway": {"mainnet": ARCHWAY_MAINNET_CHAIN_INFO, "testnet": ARCHWAY_TESTNET_CHAIN_INFO},
    "sui": {"mainnet": SUI_MAINNET_CHAIN_INFO, "testnet": SUI_TESTNET_CHAIN_INFO},
}

ALL_CHAINS_TOKEN_MAP: Dict[str, Dict[str, Token]] = {
    OSMOSIS_MAINNET_CHAIN_INFO.id: OSMOSIS_MAINNET_TOKENS,
    OSMOSIS_TESTNET_CHAIN_INFO.id: OSMOSIS_TESTNET_TOKENS,
    ARCHWAY_MAINNET_CHAIN_INFO.id: ARCHWAY_MAINNET_TOKENS,
    ARCHWAY_TESTNET_CHAIN_INFO.id: ARCHWAY_TESTNET_TOKENS,
    SUI_MAINNET_CHAIN_INFO.id: SUI_MAINNET_TOKENS,
    SUI_TESTNET_CHAIN_INFO.id: SUI_TESTNET_TOKENS,
}


def find_chain_info(chain: str, environment: str = "mainnet") -> ChainInfo:
    try:
        return _CHAINS[chain.lower()][environment.lower()]
    except KeyError:
        raise LookupError(f"Unknown chain {chain!r} for environment {environment!r}") from None


def find_tokens_map(chain_id: str) -> Dict[str, Token]:
    return ALL_CHAINS_TOKEN_MAP.get(chain_id, {})


def find_token(chain_id: str, denom: str) -> Token:
    token = find_tokens_map(chain_id).get(denom)
    if token is None:
        raise TokenNotFoundInRegistry(f"Token {denom} not found in registry for chain {chain_id}")
    return token


def _same_asset(candidate: Token, token: Token) -> bool:
    if token.origin_denom:
        return (
            candidate.denom == token.origin_denom
            and candidate.chain_id == token.origin_chain_id
        ) or (
            candidate.origin_denom == token.origin_denom
            and candidate.origin_chain_id == token.origin_chain_id
        )
    return candidate.origin_denom == token.denom and candidate.origin_chain_id == token.chain_id


def find_token_equivalent_on_other_chain(token: Token, chain_id: str) -> Token:
    """Return the registry token on ``chain_id`` representing the same asset as ``token``."""
    if token.chain_id == chain_id:
        return token
    match: Optional[Token] = next(
        (item for item in find_tokens_map(chain_id).values() if _same_asset(item, token)),
        None,
    )
    if match is None:
        raise TokenNotFoundInRegistry(
            f"No equivalent of {token.name} ({token.denom}) registered on chain {chain_id}"
        )
    return match
