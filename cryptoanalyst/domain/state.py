"""
Lifecycle rules for payments, analyses and distributions.

Stores consult these tables inside their compare-and-swap updates; orchestrators
use them to decide whether a request is a legal transition, a duplicate, or a
conflict against a terminal record.
"""

from __future__ import annotations

from typing import Dict, FrozenSet

from cryptoanalyst.domain.models import AnalysisStatus, DistributionStatus, PaymentStatus

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}

ANALYSIS_TRANSITIONS: Dict[AnalysisStatus, FrozenSet[AnalysisStatus]] = {
    AnalysisStatus.PENDING_PAYMENT: frozenset(
        {AnalysisStatus.PAID, AnalysisStatus.PROCESSING, AnalysisStatus.ABANDONED}
    ),
    AnalysisStatus.PAID: frozenset({AnalysisStatus.PROCESSING}),
    # PROCESSING -> PROCESSING is a re-entry by a second process call.
    AnalysisStatus.PROCESSING: frozenset(
        {AnalysisStatus.PROCESSING, AnalysisStatus.COMPLETED, AnalysisStatus.FAILED}
    ),
    # FAILED -> COMPLETED lands a concurrent run that outlived a failed one.
    AnalysisStatus.FAILED: frozenset({AnalysisStatus.PROCESSING, AnalysisStatus.COMPLETED}),
    AnalysisStatus.COMPLETED: frozenset(),
    AnalysisStatus.ABANDONED: frozenset(),
}

DISTRIBUTION_TRANSITIONS: Dict[DistributionStatus, FrozenSet[DistributionStatus]] = {
    DistributionStatus.PENDING: frozenset(
        {DistributionStatus.COMPLETED, DistributionStatus.FAILED}
    ),
    DistributionStatus.COMPLETED: frozenset(),
    DistributionStatus.FAILED: frozenset(),
}

# Analyses that a process call may (re)start from.
PROCESSABLE_ANALYSIS_STATES: FrozenSet[AnalysisStatus] = frozenset(
    {
        AnalysisStatus.PENDING_PAYMENT,
        AnalysisStatus.PAID,
        AnalysisStatus.PROCESSING,
        AnalysisStatus.FAILED,
    }
)


def is_terminal_payment(status: PaymentStatus) -> bool:
    return not PAYMENT_TRANSITIONS[status]


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_TRANSITIONS[current]


def can_transition_analysis(current: AnalysisStatus, target: AnalysisStatus) -> bool:
    return target in ANALYSIS_TRANSITIONS[current]


def can_resolve_distribution(current: DistributionStatus, target: DistributionStatus) -> bool:
    return target in DISTRIBUTION_TRANSITIONS[current]


__all__ = [
    "PAYMENT_TRANSITIONS",
    "ANALYSIS_TRANSITIONS",
    "DISTRIBUTION_TRANSITIONS",
    "PROCESSABLE_ANALYSIS_STATES",
    "is_terminal_payment",
    "can_transition_payment",
    "can_transition_analysis",
    "can_resolve_distribution",
]
