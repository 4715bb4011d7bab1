"""
Custodial wallet adapters.

``HttpCustodian`` talks to a REST custodian. ``LedgerCustodian`` keeps balances in
process memory and is used by the demo command and the tests. Transfers are never
retried here: a retried transfer is a potential double payout.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

import httpx

from cryptoanalyst.domain.models import WalletBalance
from cryptoanalyst.errors import TransferError
from cryptoanalyst.utils.logging import get_logger
from cryptoanalyst.utils.money import to_asset_amount

log = get_logger(__name__)

_PARSE_ERRORS = (KeyError, TypeError, ValueError, IndexError)


class HttpCustodian:
    """REST custodian client."""

    name: str = "http"

    def __init__(self, client: httpx.AsyncClient, api_key: Optional[str], endpoint: str) -> None:
        self._client = client
        self._api_key = api_key
        self._endpoint = endpoint.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key or ''}", "Accept": "application/json"}

    async def _request(self, method: str, path: str, json: Optional[Mapping[str, Any]] = None) -> Any:
        try:
            response = await self._client.request(
                method, f"{self._endpoint}{path}", json=json, headers=self._headers()
            )
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TransferError(f"Custodian {method} {path} failed") from exc

    async def create_wallet(self) -> str:
        body = await self._request("POST", "/wallets")
        try:
            return str(body["id"])
        except _PARSE_ERRORS as exc:
            raise TransferError("Custodian returned no wallet id") from exc

    async def get_balances(self, wallet_id: str) -> List[WalletBalance]:
        body = await self._request("GET", f"/wallets/{wallet_id}/balances")
        try:
            return [
                WalletBalance(asset=item["asset"], amount=Decimal(str(item["amount"])))
                for item in body["balances"]
            ]
        except _PARSE_ERRORS as exc:
            raise TransferError(f"Malformed balances for wallet {wallet_id}") from exc

    async def get_default_address(self, wallet_id: str) -> str:
        body = await self._request("GET", f"/wallets/{wallet_id}/addresses")
        try:
            return str(body["addresses"][0]["address"])
        except _PARSE_ERRORS as exc:
            raise TransferError(f"Wallet {wallet_id} has no address") from exc

    async def transfer(
        self, from_wallet: str, to_wallet: str, amount: Decimal, asset: str
    ) -> str:
        body = await self._request(
            "POST",
            f"/wallets/{from_wallet}/transfers",
            json={"destination": to_wallet, "amount": str(amount), "asset": asset},
        )
        try:
            return str(body["transaction_hash"])
        except _PARSE_ERRORS as exc:
            raise TransferError("Custodian returned no transaction hash") from exc


class LedgerCustodian:
    """
    In-process custodian.

    Unknown destination wallets are created on first credit. Transfers out of a
    wallet with insufficient balance fail with ``TransferError``.
    """

    name: str = "ledger"

    def __init__(self, opening_balances: Optional[Mapping[str, Mapping[str, Decimal]]] = None) -> None:
        self._balances: Dict[str, Dict[str, Decimal]] = defaultdict(dict)
        for wallet_id, assets in (opening_balances or {}).items():
            self._balances[wallet_id] = {asset: Decimal(amount) for asset, amount in assets.items()}
        self._lock = asyncio.Lock()

    async def create_wallet(self) -> str:
        wallet_id = f"wallet_{uuid.uuid4().hex[:16]}"
        async with self._lock:
            self._balances[wallet_id] = {}
        return wallet_id

    async def get_balances(self, wallet_id: str) -> List[WalletBalance]:
        async with self._lock:
            if wallet_id not in self._balances:
                raise TransferError(f"Unknown wallet {wallet_id}")
            return [
                WalletBalance(asset=asset, amount=amount)
                for asset, amount in sorted(self._balances[wallet_id].items())
            ]

    async def get_default_address(self, wallet_id: str) -> str:
        async with self._lock:
            if wallet_id not in self._balances:
                raise TransferError(f"Unknown wallet {wallet_id}")
        return f"0x{uuid.uuid5(uuid.NAMESPACE_URL, wallet_id).hex}"

    async def transfer(
        self, from_wallet: str, to_wallet: str, amount: Decimal, asset: str
    ) -> str:
        amount = to_asset_amount(amount)
        if amount <= 0:
            raise TransferError(f"Transfer amount must be positive, got {amount}")
        async with self._lock:
            source = self._balances.get(from_wallet)
            if source is None:
                raise TransferError(f"Unknown source wallet {from_wallet}")
            available = source.get(asset, Decimal("0"))
            if available < amount:
                raise TransferError(
                    f"Insufficient {asset} in {from_wallet}: {available} < {amount}",
                    wallet=from_wallet,
                )
            source[asset] = available - amount
            destination = self._balances[to_wallet]
            destination[asset] = destination.get(asset, Decimal("0")) + amount
        reference = f"0x{uuid.uuid4().hex}"
        log.debug(
            "[LEDGER TRANSFER]",
            extra={"from": from_wallet, "to": to_wallet, "amount": str(amount), "asset": asset},
        )
        return reference


__all__ = ["HttpCustodian", "LedgerCustodian"]
