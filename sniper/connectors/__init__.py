"""Clients for the external capability providers."""

from sniper.connectors.amm_registry import AmmRegistryClient
from sniper.connectors.bonding_curve import BondingCurveClient, BondingStatus
from sniper.connectors.chain import ChainClient
from sniper.connectors.http import (
    ServiceClient,
    ServiceError,
    ServiceHTTPError,
    ServiceUnavailableError,
)
from sniper.connectors.pair_indexer import PairData, PairIndexerClient
from sniper.connectors.prices import PriceChain, TokenPriceClient
from sniper.connectors.safety import SafetyReportClient
from sniper.connectors.swap_venues import (
    AggregatorVenue,
    AmmVenue,
    Quote,
    QuoteError,
    QuoteErrorKind,
    SwapVenue,
)
from sniper.connectors.wallet import ExternalSignerWallet, WalletCapability

__all__ = [
    # HTTP
    "ServiceClient",
    "ServiceError",
    "ServiceHTTPError",
    "ServiceUnavailableError",
    # Market data
    "AmmRegistryClient",
    "BondingCurveClient",
    "BondingStatus",
    "PairData",
    "PairIndexerClient",
    "PriceChain",
    "TokenPriceClient",
    "SafetyReportClient",
    # Swaps
    "AggregatorVenue",
    "AmmVenue",
    "Quote",
    "QuoteError",
    "QuoteErrorKind",
    "SwapVenue",
    # Wallet
    "ChainClient",
    "ExternalSignerWallet",
    "WalletCapability",
]
