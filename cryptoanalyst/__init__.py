"""
CryptoAnalyst API - paid cryptocurrency analysis with revenue distribution.

A user requests a priced analysis, pays through an external payment gateway,
and on payment confirmation the service generates an AI-produced report and
splits the revenue across configured stakeholders:

- Analysis and Payment state machines with compare-and-swap transitions
- Idempotent, signature-checked webhook reconciliation
- Revenue distribution with per-recipient failure isolation
- Pluggable market data, report generation, payment and custody adapters
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

from cryptoanalyst.config import Settings, get_settings
from cryptoanalyst.errors import CryptoAnalystError
from cryptoanalyst.utils.logging import configure_logging, get_logger

__all__ = [
    "__version__",
    "__license__",
    "Settings",
    "get_settings",
    "CryptoAnalystError",
    "configure_logging",
    "get_logger",
]
