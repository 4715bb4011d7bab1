"""
Postgres-backed ``Store`` over an asyncpg pool.

Every status change is a single conditional ``UPDATE ... WHERE status = ...
RETURNING *``, so the compare-and-swap happens inside the database. The
distribution claim sets ``payments.distributed_at`` and inserts the pending rows
in one transaction.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Collection, List, Mapping, Optional, Sequence

import asyncpg

from cryptoanalyst.domain.models import (
    Analysis,
    AnalysisResult,
    AnalysisStatus,
    CategoryRevenue,
    DistributionStatus,
    DistributionTotal,
    Payment,
    PaymentDistribution,
    PaymentStatus,
    StakeholderEntry,
    User,
    utcnow,
)
from cryptoanalyst.domain.state import can_transition_payment
from cryptoanalyst.errors import Conflict
from cryptoanalyst.infrastructure.store import allowed_sources
from cryptoanalyst.utils.logging import get_logger

log = get_logger(__name__)


def _payment(row: Mapping[str, Any]) -> Payment:
    return Payment.model_validate(dict(row))


def _analysis(row: Mapping[str, Any]) -> Analysis:
    return Analysis.model_validate(dict(row))


def _distribution(row: Mapping[str, Any]) -> PaymentDistribution:
    return PaymentDistribution.model_validate(dict(row))


def _maybe(row: Optional[Mapping[str, Any]], factory: Any) -> Any:
    return factory(row) if row is not None else None


class PostgresStore:
    """Store implementation for production use."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    # Users

    async def insert_user(self, user: User) -> User:
        try:
            await self._pool.execute(
                "INSERT INTO users (id, email, wallet_id, created_at) VALUES ($1, $2, $3, $4)",
                user.id,
                user.email,
                user.wallet_id,
                user.created_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise Conflict(f"Duplicate user {user.email}") from exc
        return user

    async def get_user(self, user_id: str) -> Optional[User]:
        row = await self._pool.fetchrow("SELECT * FROM users WHERE id = $1", user_id)
        return _maybe(row, lambda r: User.model_validate(dict(r)))

    async def bind_user_wallet(self, user_id: str, wallet_id: str) -> Optional[User]:
        row = await self._pool.fetchrow(
            "UPDATE users SET wallet_id = $2 WHERE id = $1 AND wallet_id IS NULL RETURNING *",
            user_id,
            wallet_id,
        )
        return _maybe(row, lambda r: User.model_validate(dict(r)))

    # Payments

    async def insert_payment(self, payment: Payment) -> Payment:
        try:
            await self._pool.execute(
                """
                INSERT INTO payments (id, user_id, category, amount, currency, status,
                                      gateway_reference, transaction_hash, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                """,
                payment.id,
                payment.user_id,
                payment.category.value,
                payment.amount,
                payment.currency,
                payment.status.value,
                payment.gateway_reference,
                payment.transaction_hash,
                payment.created_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise Conflict(f"Duplicate payment id {payment.id}") from exc
        return payment

    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        row = await self._pool.fetchrow("SELECT * FROM payments WHERE id = $1", payment_id)
        return _maybe(row, _payment)

    async def set_payment_gateway_reference(
        self, payment_id: str, reference: str
    ) -> Optional[Payment]:
        row = await self._pool.fetchrow(
            """
            UPDATE payments SET gateway_reference = $2
            WHERE id = $1 AND gateway_reference IS NULL
            RETURNING *
            """,
            payment_id,
            reference,
        )
        return _maybe(row, _payment)

    async def transition_payment(
        self,
        payment_id: str,
        expected: PaymentStatus,
        target: PaymentStatus,
        transaction_hash: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> Optional[Payment]:
        if not can_transition_payment(expected, target):
            raise ValueError(f"Illegal payment transition {expected} -> {target}")
        row = await self._pool.fetchrow(
            """
            UPDATE payments
            SET status = $3,
                transaction_hash = COALESCE($4, transaction_hash),
                completed_at = COALESCE($5, completed_at)
            WHERE id = $1 AND status = $2
            RETURNING *
            """,
            payment_id,
            expected.value,
            target.value,
            transaction_hash,
            completed_at,
        )
        return _maybe(row, _payment)

    async def recent_completed_payments(self, limit: int) -> List[Payment]:
        rows = await self._pool.fetch(
            """
            SELECT * FROM payments WHERE status = 'COMPLETED'
            ORDER BY completed_at DESC NULLS LAST, created_at DESC
            LIMIT $1
            """,
            limit,
        )
        return [_payment(row) for row in rows]

    async def total_completed_revenue(self) -> Decimal:
        total = await self._pool.fetchval(
            "SELECT COALESCE(SUM(amount), 0) FROM payments WHERE status = 'COMPLETED'"
        )
        return Decimal(total)

    async def revenue_by_category(self) -> List[CategoryRevenue]:
        rows = await self._pool.fetch(
            """
            SELECT category, SUM(amount) AS revenue, COUNT(*) AS count
            FROM payments WHERE status = 'COMPLETED'
            GROUP BY category ORDER BY category
            """
        )
        return [CategoryRevenue.model_validate(dict(row)) for row in rows]

    # Analyses

    async def insert_analysis(self, analysis: Analysis) -> Analysis:
        try:
            await self._pool.execute(
                """
                INSERT INTO analyses (id, user_id, category, parameters, price, status,
                                      payment_id, result, created_at, completed_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                """,
                analysis.id,
                analysis.user_id,
                analysis.category.value,
                analysis.parameters.model_dump(mode="json", exclude_none=True),
                analysis.price,
                analysis.status.value,
                analysis.payment_id,
                analysis.result.model_dump(mode="json") if analysis.result else None,
                analysis.created_at,
                analysis.completed_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise Conflict(f"Duplicate analysis id {analysis.id}") from exc
        return analysis

    async def get_analysis(self, analysis_id: str) -> Optional[Analysis]:
        row = await self._pool.fetchrow("SELECT * FROM analyses WHERE id = $1", analysis_id)
        return _maybe(row, _analysis)

    async def find_analysis_by_payment(self, payment_id: str) -> Optional[Analysis]:
        row = await self._pool.fetchrow("SELECT * FROM analyses WHERE payment_id = $1", payment_id)
        return _maybe(row, _analysis)

    async def link_analysis_payment(self, analysis_id: str, payment_id: str) -> Optional[Analysis]:
        row = await self._pool.fetchrow(
            """
            UPDATE analyses SET payment_id = $2
            WHERE id = $1 AND payment_id IS NULL
            RETURNING *
            """,
            analysis_id,
            payment_id,
        )
        return _maybe(row, _analysis)

    async def transition_analysis(
        self,
        analysis_id: str,
        expected: Collection[AnalysisStatus],
        target: AnalysisStatus,
        result: Optional[AnalysisResult] = None,
        completed_at: Optional[datetime] = None,
    ) -> Optional[Analysis]:
        sources = [status.value for status in allowed_sources(expected, target)]
        row = await self._pool.fetchrow(
            """
            UPDATE analyses
            SET status = $3,
                result = COALESCE($4, result),
                completed_at = COALESCE($5, completed_at)
            WHERE id = $1 AND status = ANY($2::text[])
            RETURNING *
            """,
            analysis_id,
            sources,
            target.value,
            result.model_dump(mode="json") if result else None,
            completed_at,
        )
        return _maybe(row, _analysis)

    async def list_user_analyses(self, user_id: str, offset: int, limit: int) -> List[Analysis]:
        rows = await self._pool.fetch(
            """
            SELECT * FROM analyses WHERE user_id = $1
            ORDER BY created_at DESC, id
            OFFSET $2 LIMIT $3
            """,
            user_id,
            offset,
            limit,
        )
        return [_analysis(row) for row in rows]

    async def count_user_analyses(self, user_id: str) -> int:
        return await self._pool.fetchval(
            "SELECT COUNT(*) FROM analyses WHERE user_id = $1", user_id
        )

    async def count_analyses(self, status: AnalysisStatus) -> int:
        return await self._pool.fetchval(
            "SELECT COUNT(*) FROM analyses WHERE status = $1", status.value
        )

    # Stakeholders

    async def replace_stakeholders(self, entries: Sequence[StakeholderEntry]) -> None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("DELETE FROM stakeholders")
                await conn.executemany(
                    """
                    INSERT INTO stakeholders (wallet_id, percentage, category, is_active)
                    VALUES ($1, $2, $3, $4)
                    """,
                    [(e.wallet_id, e.percentage, e.category, e.is_active) for e in entries],
                )

    async def list_active_stakeholders(self) -> List[StakeholderEntry]:
        rows = await self._pool.fetch(
            "SELECT * FROM stakeholders WHERE is_active ORDER BY percentage DESC, wallet_id"
        )
        return [StakeholderEntry.model_validate(dict(row)) for row in rows]

    # Distributions

    async def claim_distribution(
        self, payment_id: str, rows: Sequence[PaymentDistribution]
    ) -> bool:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                claimed = await conn.fetchval(
                    """
                    UPDATE payments SET distributed_at = $2
                    WHERE id = $1 AND distributed_at IS NULL
                    RETURNING id
                    """,
                    payment_id,
                    utcnow(),
                )
                if claimed is None:
                    return False
                await conn.executemany(
                    """
                    INSERT INTO payment_distributions
                        (id, payment_id, recipient, amount, category, status, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    [
                        (
                            row.id,
                            row.payment_id,
                            row.recipient,
                            row.amount,
                            row.category,
                            row.status.value,
                            row.created_at,
                        )
                        for row in rows
                    ],
                )
        log.debug("[DISTRIBUTION CLAIMED]", extra={"payment_id": payment_id, "rows": len(rows)})
        return True

    async def list_distributions(self, payment_id: str) -> List[PaymentDistribution]:
        rows = await self._pool.fetch(
            """
            SELECT * FROM payment_distributions WHERE payment_id = $1
            ORDER BY created_at, category, recipient
            """,
            payment_id,
        )
        return [_distribution(row) for row in rows]

    async def resolve_distribution(
        self,
        distribution_id: str,
        status: DistributionStatus,
        transfer_reference: Optional[str] = None,
    ) -> Optional[PaymentDistribution]:
        row = await self._pool.fetchrow(
            """
            UPDATE payment_distributions
            SET status = $2, transfer_reference = $3, resolved_at = $4
            WHERE id = $1 AND status = 'pending'
            RETURNING *
            """,
            distribution_id,
            status.value,
            transfer_reference,
            utcnow(),
        )
        return _maybe(row, _distribution)

    async def distribution_totals(self) -> List[DistributionTotal]:
        rows = await self._pool.fetch(
            """
            SELECT category, status, SUM(amount) AS amount, COUNT(*) AS count
            FROM payment_distributions
            GROUP BY category, status
            ORDER BY category, status
            """
        )
        return [DistributionTotal.model_validate(dict(row)) for row in rows]

    async def close(self) -> None:
        await self._pool.close()


__all__ = ["PostgresStore"]
