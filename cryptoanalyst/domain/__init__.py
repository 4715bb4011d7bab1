"""
Domain package for the CryptoAnalyst API.

Exports the records, enums and lifecycle rules shared by the stores, adapters and
orchestrators. Keep this package free of I/O.
"""

from cryptoanalyst.domain.models import (
    Analysis,
    AnalysisCategory,
    AnalysisParameters,
    AnalysisResult,
    AnalysisStatus,
    DistributionStatus,
    Payment,
    PaymentDistribution,
    PaymentStatus,
    StakeholderEntry,
    User,
)
from cryptoanalyst.domain.state import (
    can_transition_analysis,
    can_transition_payment,
    is_terminal_payment,
)

__all__ = [
    "Analysis",
    "AnalysisCategory",
    "AnalysisParameters",
    "AnalysisResult",
    "AnalysisStatus",
    "DistributionStatus",
    "Payment",
    "PaymentDistribution",
    "PaymentStatus",
    "StakeholderEntry",
    "User",
    "can_transition_analysis",
    "can_transition_payment",
    "is_terminal_payment",
]
