from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from cryptoanalyst.adapters.wallet import LedgerCustodian
from cryptoanalyst.errors import Conflict, NotFound, TransferError


class _BrokenCustodian(LedgerCustodian):
    async def create_wallet(self) -> str:
        raise TransferError("custodian offline")


@pytest.mark.asyncio
async def test_register_normalises_email_and_rejects_duplicates(make_container) -> None:
    container = await make_container()

    user = await container.wallets.register_user("  Alice@Example.COM ")

    assert user.email == "alice@example.com"
    assert user.wallet_id is None
    with pytest.raises(Conflict):
        await container.wallets.register_user("alice@example.com")


@pytest.mark.asyncio
async def test_wallet_is_bound_once(make_container) -> None:
    container = await make_container()
    user = await container.wallets.register_user("alice@example.com")

    wallet_id = await container.wallets.create_user_wallet(user.id)

    assert (await container.store.get_user(user.id)).wallet_id == wallet_id
    assert await container.wallets.get_wallet_balance(user.id, wallet_id) == []
    with pytest.raises(Conflict):
        await container.wallets.create_user_wallet(user.id)


@pytest.mark.asyncio
async def test_concurrent_wallet_creation_binds_one(make_container) -> None:
    container = await make_container()
    user = await container.wallets.register_user("alice@example.com")

    results = await asyncio.gather(
        container.wallets.create_user_wallet(user.id),
        container.wallets.create_user_wallet(user.id),
        return_exceptions=True,
    )

    created = [r for r in results if isinstance(r, str)]
    assert len(created) == 1
    assert sum(isinstance(r, Conflict) for r in results) == 1
    assert (await container.store.get_user(user.id)).wallet_id == created[0]


@pytest.mark.asyncio
async def test_unknown_user_and_custodian_failure(make_container) -> None:
    container = await make_container(custodian=_BrokenCustodian())
    user = await container.wallets.register_user("alice@example.com")

    with pytest.raises(NotFound):
        await container.wallets.create_user_wallet("ghost")
    with pytest.raises(TransferError):
        await container.wallets.create_user_wallet(user.id)
    assert (await container.store.get_user(user.id)).wallet_id is None


@pytest.mark.asyncio
async def test_balance_of_foreign_wallet_is_not_found(make_container) -> None:
    container = await make_container()
    alice = await container.wallets.register_user("alice@example.com")
    mallory = await container.wallets.register_user("mallory@example.com")
    wallet_id = await container.wallets.create_user_wallet(alice.id)

    with pytest.raises(NotFound):
        await container.wallets.get_wallet_balance(mallory.id, wallet_id)
    with pytest.raises(NotFound):
        await container.wallets.get_wallet_balance(alice.id, "wallet_unknown")


@pytest.mark.asyncio
async def test_platform_wallet_balance_and_address(make_container, test_settings) -> None:
    container = await make_container()

    address = await container.wallets.get_platform_wallet_address()
    balances = await container.custodian.get_balances(test_settings.platform_wallet_id)

    assert address.startswith("0x")
    assert address == await container.wallets.get_platform_wallet_address()
    assert [(b.asset, b.amount) for b in balances] == [
        (test_settings.distribution_asset, Decimal("1000"))
    ]
