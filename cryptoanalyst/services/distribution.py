"""
Revenue distribution engine.

Splits a completed payment across the active stakeholders and pays each share
out of the platform wallet. The split rows are persisted as ``pending`` in the
same store operation that claims the payment's distribution marker, so a payment
is distributed at most once no matter how many times ``distribute`` is called.
Each transfer runs in its own error boundary: one failed payout is recorded as
``failed`` and does not affect the others.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import List

from cryptoanalyst.adapters.abstract import Custodian
from cryptoanalyst.config import Settings
from cryptoanalyst.domain.models import DistributionStatus, PaymentDistribution
from cryptoanalyst.errors import TransferError
from cryptoanalyst.infrastructure.store import Store
from cryptoanalyst.utils.logging import get_logger
from cryptoanalyst.utils.money import share_of
from cryptoanalyst.utils.timeouts import bounded

log = get_logger(__name__)


class RevenueDistributionEngine:
    """Computes and executes stakeholder payouts for completed payments."""

    def __init__(self, store: Store, custodian: Custodian, settings: Settings) -> None:
        self._store = store
        self._custodian = custodian
        self._source_wallet = settings.platform_wallet_id
        self._asset = settings.distribution_asset
        self._timeout = settings.transfer_timeout_seconds

    async def distribute(self, payment_id: str, total_amount: Decimal) -> List[PaymentDistribution]:
        """
        Distribute ``total_amount`` for ``payment_id`` to the active stakeholders.

        Parameters
        ----------
        payment_id : str
            The completed payment being split.
        total_amount : Decimal
            The payment amount; each row is ``total * percentage / 100``
            rounded down to asset precision.

        Returns
        -------
        list[PaymentDistribution]
            The rows for this payment. On a repeated call these are the rows
            created by the first call, and no transfer is attempted.
        """
        stakeholders = await self._store.list_active_stakeholders()
        rows = []
        for entry in stakeholders:
            amount = share_of(total_amount, entry.percentage)
            if amount <= 0:
                continue
            rows.append(
                PaymentDistribution(
                    payment_id=payment_id,
                    recipient=entry.wallet_id,
                    amount=amount,
                    category=entry.category,
                )
            )

        claimed = await self._store.claim_distribution(payment_id, rows)
        if not claimed:
            log.info("[DISTRIBUTION SKIPPED]", extra={"payment_id": payment_id})
            return await self._store.list_distributions(payment_id)
        if not rows:
            log.warning("[DISTRIBUTION EMPTY]", extra={"payment_id": payment_id})
            return []

        settled = await asyncio.gather(*(self._settle(row) for row in rows))
        failed = sum(1 for row in settled if row.status == DistributionStatus.FAILED)
        log.info(
            "[DISTRIBUTION DONE]",
            extra={
                "payment_id": payment_id,
                "total": str(total_amount),
                "recipients": len(settled),
                "failed": failed,
            },
        )
        return list(settled)

    async def _settle(self, row: PaymentDistribution) -> PaymentDistribution:
        try:
            reference = await bounded(
                self._custodian.transfer(self._source_wallet, row.recipient, row.amount, self._asset),
                self._timeout,
                TransferError,
                "transfer",
            )
        except Exception as exc:  # noqa: BLE001 - a failed payout is recorded, never propagated
            log.warning(
                "[TRANSFER FAILED]",
                extra={
                    "payment_id": row.payment_id,
                    "recipient": row.recipient,
                    "amount": str(row.amount),
                    "error": repr(exc),
                },
            )
            updated = await self._store.resolve_distribution(row.id, DistributionStatus.FAILED)
        else:
            updated = await self._store.resolve_distribution(
                row.id, DistributionStatus.COMPLETED, reference
            )
        return updated or row


__all__ = ["RevenueDistributionEngine"]
