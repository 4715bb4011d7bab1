"""
Orchestrators: analysis lifecycle, payments, revenue distribution and wallets.
"""

from cryptoanalyst.services.analysis import AnalysisOrchestrator
from cryptoanalyst.services.distribution import RevenueDistributionEngine
from cryptoanalyst.services.payments import PaymentOrchestrator
from cryptoanalyst.services.wallets import WalletService

__all__ = [
    "AnalysisOrchestrator",
    "PaymentOrchestrator",
    "RevenueDistributionEngine",
    "WalletService",
]
