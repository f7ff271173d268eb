"""Wallet capability backed by an external signing service.

The process never holds keys: unsigned transactions are handed to the signer,
which signs, broadcasts and reports the signature.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from sniper.connectors.chain import ChainClient
from sniper.connectors.http import ServiceClient, ServiceError
from sniper.models import SignResult, UnsignedTransaction, WalletState


class WalletCapability(Protocol):
    def state(self) -> WalletState: ...

    async def connect(self) -> bool: ...

    async def refresh_balance(self) -> float: ...

    async def sign_and_send(self, transaction: UnsignedTransaction) -> SignResult: ...


class ExternalSignerWallet:
    def __init__(
        self,
        signer: ServiceClient,
        chain: ChainClient,
        address: str,
        network: str = "solana",
    ) -> None:
        self.signer = signer
        self.chain = chain
        self.address = address
        self.network = network
        self._connected = False
        self._balance = 0.0
        self.log = structlog.get_logger(__name__)

    def state(self) -> WalletState:
        return WalletState(
            is_connected=self._connected and bool(self.address),
            network=self.network,
            address=self.address or None,
            balance=self._balance,
        )

    async def connect(self) -> bool:
        """Check the signer and load the balance."""
        if not self.address:
            self._connected = False
            return False
        try:
            await self.signer.get_json("/health", attempts=1)
        except ServiceError as exc:
            self.log.warning("signer_unreachable", error=str(exc))
            self._connected = False
            return False
        self._connected = True
        await self.refresh_balance()
        return True

    async def refresh_balance(self) -> float:
        if not self.address:
            return self._balance
        try:
            self._balance = await self.chain.native_balance(self.address)
        except ServiceError as exc:
            self.log.warning("wallet_balance_refresh_failed", error=str(exc))
        return self._balance

    async def sign_and_send(self, transaction: UnsignedTransaction) -> SignResult:
        try:
            data = await self.signer.post_json(
                "/sign-and-send",
                {
                    "transaction": transaction.payload,
                    "venue": transaction.venue,
                    "lastValidBlockHeight": transaction.last_valid_block_height,
                },
                attempts=1,
            )
        except ServiceError as exc:
            return SignResult(signature=None, error=str(exc))
        if not isinstance(data, dict):
            return SignResult(signature=None, error="signer returned malformed response")
        output = data.get("outputAmount")
        return SignResult(
            signature=data.get("signature") or None,
            error=data.get("error"),
            output_amount=int(output) if output is not None else None,
        )
