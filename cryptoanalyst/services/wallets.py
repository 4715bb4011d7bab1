"""
User registration and custodial wallet binding.
"""

from __future__ import annotations

from typing import List

from cryptoanalyst.adapters.abstract import Custodian
from cryptoanalyst.config import Settings
from cryptoanalyst.domain.models import User, WalletBalance
from cryptoanalyst.errors import Conflict, NotFound, TransferError
from cryptoanalyst.infrastructure.store import Store
from cryptoanalyst.utils.logging import get_logger
from cryptoanalyst.utils.timeouts import bounded

log = get_logger(__name__)


class WalletService:
    def __init__(self, store: Store, custodian: Custodian, settings: Settings) -> None:
        self._store = store
        self._custodian = custodian
        self._settings = settings

    async def register_user(self, email: str) -> User:
        """Create an identity. Raises ``Conflict`` for an email already registered."""
        user = await self._store.insert_user(User(email=email.strip().lower()))
        log.info("[USER REGISTERED]", extra={"user_id": user.id})
        return user

    async def _user(self, user_id: str) -> User:
        user = await self._store.get_user(user_id)
        if user is None:
            raise NotFound("User not found", user_id=user_id)
        return user

    async def create_user_wallet(self, user_id: str) -> str:
        """
        Create a custodial wallet and bind it to the user.

        Raises
        ------
        NotFound
            If the user does not exist.
        Conflict
            If the user already has a wallet.
        TransferError
            If the custodian could not create the wallet.
        """
        user = await self._user(user_id)
        if user.wallet_id is not None:
            raise Conflict("User already has a wallet", user_id=user_id)
        wallet_id = await bounded(
            self._custodian.create_wallet(),
            self._settings.transfer_timeout_seconds,
            TransferError,
            "create_wallet",
        )
        if await self._store.bind_user_wallet(user_id, wallet_id) is None:
            # Lost the race against a concurrent bind; the new wallet stays unbound.
            log.warning(
                "[WALLET BIND LOST]", extra={"user_id": user_id, "wallet_id": wallet_id}
            )
            raise Conflict("User already has a wallet", user_id=user_id)
        log.info("[WALLET CREATED]", extra={"user_id": user_id, "wallet_id": wallet_id})
        return wallet_id

    async def get_wallet_balance(self, user_id: str, wallet_id: str) -> List[WalletBalance]:
        user = await self._user(user_id)
        if user.wallet_id != wallet_id:
            raise NotFound("Wallet not found", wallet_id=wallet_id)
        return await bounded(
            self._custodian.get_balances(wallet_id),
            self._settings.external_timeout_seconds,
            TransferError,
            "get_balances",
        )

    async def get_platform_wallet_address(self) -> str:
        return await bounded(
            self._custodian.get_default_address(self._settings.platform_wallet_id),
            self._settings.external_timeout_seconds,
            TransferError,
            "get_default_address",
        )


__all__ = ["WalletService"]
