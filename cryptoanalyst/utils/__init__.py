"""
Utilities package for the CryptoAnalyst API.

Exports shared helpers for logging, money arithmetic and bounded external calls.
Keep this package lightweight and free of domain-specific logic.
"""

from cryptoanalyst.utils.logging import configure_logging, get_logger
from cryptoanalyst.utils.money import share_of, to_asset_amount, to_cents, to_money
from cryptoanalyst.utils.timeouts import bounded

__all__ = [
    "configure_logging",
    "get_logger",
    "share_of",
    "to_asset_amount",
    "to_cents",
    "to_money",
    "bounded",
]
