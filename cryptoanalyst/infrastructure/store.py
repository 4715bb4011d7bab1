"""
Persistence contract and in-memory implementation.

The orchestrators own all mutation of Payment, Analysis and PaymentDistribution
records, and they only mutate through the conditional operations declared here.
Every status change is a compare-and-swap against the expected current status:
it returns the updated record when it wins and ``None`` when the record was not
in the expected state. Concurrent webhook deliveries for the same payment
therefore cannot both observe PENDING and both apply the transition.

``InMemoryStore`` serialises all mutations under one ``asyncio.Lock``. It backs the
unit tests and the demo command; ``PostgresStore`` is the production twin.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Collection, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from cryptoanalyst.domain.models import (
    Analysis,
    AnalysisCategory,
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
from cryptoanalyst.domain.state import (
    can_resolve_distribution,
    can_transition_analysis,
    can_transition_payment,
)
from cryptoanalyst.errors import Conflict


def allowed_sources(
    expected: Collection[AnalysisStatus], target: AnalysisStatus
) -> Tuple[AnalysisStatus, ...]:
    """
    Narrow ``expected`` to the states that may legally move to ``target``.

    Raises
    ------
    ValueError
        If none of the expected states may transition to ``target``.
    """
    sources = tuple(status for status in expected if can_transition_analysis(status, target))
    if not sources:
        raise ValueError(f"No legal transition to {target} from {sorted(expected)}")
    return sources


@runtime_checkable
class Store(Protocol):
    """Storage operations used by the orchestrators."""

    # Users
    async def insert_user(self, user: User) -> User: ...

    async def get_user(self, user_id: str) -> Optional[User]: ...

    async def bind_user_wallet(self, user_id: str, wallet_id: str) -> Optional[User]:
        """Set the wallet only if none is bound yet."""
        ...

    # Payments
    async def insert_payment(self, payment: Payment) -> Payment: ...

    async def get_payment(self, payment_id: str) -> Optional[Payment]: ...

    async def set_payment_gateway_reference(
        self, payment_id: str, reference: str
    ) -> Optional[Payment]:
        """Set the gateway reference only if none is stored yet."""
        ...

    async def transition_payment(
        self,
        payment_id: str,
        expected: PaymentStatus,
        target: PaymentStatus,
        transaction_hash: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> Optional[Payment]: ...

    async def recent_completed_payments(self, limit: int) -> List[Payment]: ...

    async def total_completed_revenue(self) -> Decimal: ...

    async def revenue_by_category(self) -> List[CategoryRevenue]: ...

    # Analyses
    async def insert_analysis(self, analysis: Analysis) -> Analysis: ...

    async def get_analysis(self, analysis_id: str) -> Optional[Analysis]: ...

    async def find_analysis_by_payment(self, payment_id: str) -> Optional[Analysis]: ...

    async def link_analysis_payment(self, analysis_id: str, payment_id: str) -> Optional[Analysis]:
        """Link the payment only if the analysis has none yet."""
        ...

    async def transition_analysis(
        self,
        analysis_id: str,
        expected: Collection[AnalysisStatus],
        target: AnalysisStatus,
        result: Optional[AnalysisResult] = None,
        completed_at: Optional[datetime] = None,
    ) -> Optional[Analysis]: ...

    async def list_user_analyses(self, user_id: str, offset: int, limit: int) -> List[Analysis]:
        """Newest first."""
        ...

    async def count_user_analyses(self, user_id: str) -> int: ...

    async def count_analyses(self, status: AnalysisStatus) -> int: ...

    # Stakeholders
    async def replace_stakeholders(self, entries: Sequence[StakeholderEntry]) -> None: ...

    async def list_active_stakeholders(self) -> List[StakeholderEntry]: ...

    # Distributions
    async def claim_distribution(
        self, payment_id: str, rows: Sequence[PaymentDistribution]
    ) -> bool:
        """
        Atomically mark the payment as distributed and persist ``rows``.

        Returns False, persisting nothing, when the payment was already claimed.
        """
        ...

    async def list_distributions(self, payment_id: str) -> List[PaymentDistribution]: ...

    async def resolve_distribution(
        self,
        distribution_id: str,
        status: DistributionStatus,
        transfer_reference: Optional[str] = None,
    ) -> Optional[PaymentDistribution]:
        """Move a pending row to completed/failed; None if it was not pending."""
        ...

    async def distribution_totals(self) -> List[DistributionTotal]: ...

    async def close(self) -> None: ...


class InMemoryStore:
    """Dictionary-backed store; every mutation runs under a single lock."""

    def __init__(self) -> None:
        self._users: Dict[str, User] = {}
        self._payments: Dict[str, Payment] = {}
        self._analyses: Dict[str, Analysis] = {}
        self._stakeholders: List[StakeholderEntry] = []
        self._distributions: Dict[str, PaymentDistribution] = {}
        self._lock = asyncio.Lock()

    # Users

    async def insert_user(self, user: User) -> User:
        async with self._lock:
            if user.id in self._users:
                raise Conflict(f"Duplicate user id {user.id}")
            if any(existing.email == user.email for existing in self._users.values()):
                raise Conflict(f"Duplicate email {user.email}")
            self._users[user.id] = user
            return user

    async def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    async def bind_user_wallet(self, user_id: str, wallet_id: str) -> Optional[User]:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None or user.wallet_id is not None:
                return None
            updated = user.model_copy(update={"wallet_id": wallet_id})
            self._users[user_id] = updated
            return updated

    # Payments

    async def insert_payment(self, payment: Payment) -> Payment:
        async with self._lock:
            if payment.id in self._payments:
                raise Conflict(f"Duplicate payment id {payment.id}")
            self._payments[payment.id] = payment
            return payment

    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        return self._payments.get(payment_id)

    async def set_payment_gateway_reference(
        self, payment_id: str, reference: str
    ) -> Optional[Payment]:
        async with self._lock:
            payment = self._payments.get(payment_id)
            if payment is None or payment.gateway_reference is not None:
                return None
            updated = payment.model_copy(update={"gateway_reference": reference})
            self._payments[payment_id] = updated
            return updated

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
        async with self._lock:
            payment = self._payments.get(payment_id)
            if payment is None or payment.status != expected:
                return None
            update: Dict[str, object] = {"status": target}
            if transaction_hash is not None:
                update["transaction_hash"] = transaction_hash
            if completed_at is not None:
                update["completed_at"] = completed_at
            updated = payment.model_copy(update=update)
            self._payments[payment_id] = updated
            return updated

    async def recent_completed_payments(self, limit: int) -> List[Payment]:
        completed = [p for p in self._payments.values() if p.status == PaymentStatus.COMPLETED]
        completed.sort(key=lambda p: p.completed_at or p.created_at, reverse=True)
        return completed[:limit]

    async def total_completed_revenue(self) -> Decimal:
        return sum(
            (p.amount for p in self._payments.values() if p.status == PaymentStatus.COMPLETED),
            Decimal("0"),
        )

    async def revenue_by_category(self) -> List[CategoryRevenue]:
        totals: Dict[AnalysisCategory, Decimal] = defaultdict(lambda: Decimal("0"))
        counts: Dict[AnalysisCategory, int] = defaultdict(int)
        for payment in self._payments.values():
            if payment.status == PaymentStatus.COMPLETED:
                totals[payment.category] += payment.amount
                counts[payment.category] += 1
        return [
            CategoryRevenue(category=category, revenue=totals[category], count=counts[category])
            for category in sorted(totals, key=lambda c: c.value)
        ]

    # Analyses

    async def insert_analysis(self, analysis: Analysis) -> Analysis:
        async with self._lock:
            if analysis.id in self._analyses:
                raise Conflict(f"Duplicate analysis id {analysis.id}")
            self._analyses[analysis.id] = analysis
            return analysis

    async def get_analysis(self, analysis_id: str) -> Optional[Analysis]:
        return self._analyses.get(analysis_id)

    async def find_analysis_by_payment(self, payment_id: str) -> Optional[Analysis]:
        for analysis in self._analyses.values():
            if analysis.payment_id == payment_id:
                return analysis
        return None

    async def link_analysis_payment(self, analysis_id: str, payment_id: str) -> Optional[Analysis]:
        async with self._lock:
            analysis = self._analyses.get(analysis_id)
            if analysis is None or analysis.payment_id is not None:
                return None
            updated = analysis.model_copy(update={"payment_id": payment_id})
            self._analyses[analysis_id] = updated
            return updated

    async def transition_analysis(
        self,
        analysis_id: str,
        expected: Collection[AnalysisStatus],
        target: AnalysisStatus,
        result: Optional[AnalysisResult] = None,
        completed_at: Optional[datetime] = None,
    ) -> Optional[Analysis]:
        sources = allowed_sources(expected, target)
        async with self._lock:
            analysis = self._analyses.get(analysis_id)
            if analysis is None or analysis.status not in sources:
                return None
            update: Dict[str, object] = {"status": target}
            if result is not None:
                update["result"] = result
            if completed_at is not None:
                update["completed_at"] = completed_at
            updated = analysis.model_copy(update=update)
            self._analyses[analysis_id] = updated
            return updated

    async def list_user_analyses(self, user_id: str, offset: int, limit: int) -> List[Analysis]:
        owned = [a for a in self._analyses.values() if a.user_id == user_id]
        owned.sort(key=lambda a: a.created_at, reverse=True)
        return owned[offset : offset + limit]

    async def count_user_analyses(self, user_id: str) -> int:
        return sum(1 for a in self._analyses.values() if a.user_id == user_id)

    async def count_analyses(self, status: AnalysisStatus) -> int:
        return sum(1 for a in self._analyses.values() if a.status == status)

    # Stakeholders

    async def replace_stakeholders(self, entries: Sequence[StakeholderEntry]) -> None:
        async with self._lock:
            self._stakeholders = list(entries)

    async def list_active_stakeholders(self) -> List[StakeholderEntry]:
        return [entry for entry in self._stakeholders if entry.is_active]

    # Distributions

    async def claim_distribution(
        self, payment_id: str, rows: Sequence[PaymentDistribution]
    ) -> bool:
        async with self._lock:
            payment = self._payments.get(payment_id)
            if payment is None:
                raise ValueError(f"Unknown payment {payment_id}")
            if payment.distributed_at is not None:
                return False
            self._payments[payment_id] = payment.model_copy(update={"distributed_at": utcnow()})
            for row in rows:
                self._distributions[row.id] = row
            return True

    async def list_distributions(self, payment_id: str) -> List[PaymentDistribution]:
        rows = [d for d in self._distributions.values() if d.payment_id == payment_id]
        rows.sort(key=lambda d: (d.created_at, d.category, d.recipient))
        return rows

    async def resolve_distribution(
        self,
        distribution_id: str,
        status: DistributionStatus,
        transfer_reference: Optional[str] = None,
    ) -> Optional[PaymentDistribution]:
        async with self._lock:
            row = self._distributions.get(distribution_id)
            if row is None or not can_resolve_distribution(row.status, status):
                return None
            updated = row.model_copy(
                update={
                    "status": status,
                    "transfer_reference": transfer_reference,
                    "resolved_at": utcnow(),
                }
            )
            self._distributions[distribution_id] = updated
            return updated

    async def distribution_totals(self) -> List[DistributionTotal]:
        amounts: Dict[Tuple[str, DistributionStatus], Decimal] = defaultdict(lambda: Decimal("0"))
        counts: Dict[Tuple[str, DistributionStatus], int] = defaultdict(int)
        for row in self._distributions.values():
            key = (row.category, row.status)
            amounts[key] += row.amount
            counts[key] += 1
        return [
            DistributionTotal(category=category, status=status, amount=amounts[key], count=counts[key])
            for key in sorted(amounts, key=lambda k: (k[0], k[1].value))
            for category, status in [key]
        ]

    async def close(self) -> None:
        return None


__all__ = ["Store", "InMemoryStore", "allowed_sources"]
