"""
Error taxonomy for the CryptoAnalyst API.

Every failure the orchestrators surface is one of these classes. Each carries the
HTTP status the API layer maps it to, so the taxonomy survives all the way to the
response and to the logs instead of collapsing into a generic 500.
"""

from __future__ import annotations

from typing import Any, Dict


class CryptoAnalystError(Exception):
    """Base error for all domain and adapter failures."""

    status_code: int = 500

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.context: Dict[str, Any] = context


class ConfigurationError(CryptoAnalystError):
    """Invalid or incomplete configuration detected at load time."""


class NotFound(CryptoAnalystError):
    """Entity absent, or present but not visible to the caller."""

    status_code = 404


class InvalidCategory(CryptoAnalystError):
    """Requested analysis category is not in the pricing table."""

    status_code = 400


class InvalidPagination(CryptoAnalystError):
    """Page or limit is not a positive integer."""

    status_code = 400


class InvalidWebhook(CryptoAnalystError):
    """Webhook payload is malformed or references nothing we know."""

    status_code = 400


class PaymentIncomplete(CryptoAnalystError):
    """The linked payment has not reached COMPLETED."""

    status_code = 402


class Unauthorized(CryptoAnalystError):
    """Signature or caller identity check failed."""

    status_code = 401


class Forbidden(CryptoAnalystError):
    """The caller is known but the operation is disabled or not permitted."""

    status_code = 403


class Conflict(CryptoAnalystError):
    """Transition attempted on a terminal or already-settled record."""

    status_code = 409


class GatewayError(CryptoAnalystError):
    """Payment gateway rejected or failed to create an intent."""

    status_code = 502


class TransferError(CryptoAnalystError):
    """Custodian failed to execute a transfer or wallet operation."""

    status_code = 502


class DataUnavailable(CryptoAnalystError):
    """No market data provider could serve the request."""

    status_code = 503


class GenerationUnavailable(CryptoAnalystError):
    """Report generation backend failed or timed out."""

    status_code = 503


class GenerationFailed(CryptoAnalystError):
    """The analysis pipeline failed; the analysis was marked FAILED."""

    status_code = 502


__all__ = [
    "CryptoAnalystError",
    "ConfigurationError",
    "NotFound",
    "InvalidCategory",
    "InvalidPagination",
    "InvalidWebhook",
    "PaymentIncomplete",
    "Unauthorized",
    "Forbidden",
    "Conflict",
    "GatewayError",
    "TransferError",
    "DataUnavailable",
    "GenerationUnavailable",
    "GenerationFailed",
]
