"""
Payment orchestrator.

Owns the Payment lifecycle: creation with a gateway intent, webhook
reconciliation, explicit completion, and the read side (status view, revenue
dashboard).

Webhook deliveries are at-least-once and may race. Every transition is a
compare-and-swap from PENDING in the store, so exactly one delivery wins; the
losers are reported as not applied. Only the winning COMPLETED transition runs
the side effects (analysis hook and revenue distribution), concurrently and each
in its own error boundary.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional

from cryptoanalyst.adapters.abstract import CallbackUrls, PaymentGateway, SignatureVerifier
from cryptoanalyst.adapters.payment_gateway import parse_webhook_event
from cryptoanalyst.config import Settings
from cryptoanalyst.domain.models import (
    AnalysisCategory,
    AnalysisStatus,
    Payment,
    PaymentStatus,
    PaymentStatusView,
    ReconcileOutcome,
    RevenueDashboard,
    utcnow,
)
from cryptoanalyst.domain.state import is_terminal_payment
from cryptoanalyst.errors import (
    Conflict,
    Forbidden,
    GatewayError,
    InvalidWebhook,
    NotFound,
    Unauthorized,
)
from cryptoanalyst.infrastructure.store import Store
from cryptoanalyst.services.distribution import RevenueDistributionEngine
from cryptoanalyst.utils.logging import get_logger
from cryptoanalyst.utils.timeouts import bounded

log = get_logger(__name__)

CompletionHook = Callable[[str], Awaitable[None]]

_WEBHOOK_STATUS = {
    "completed": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
}


class PaymentOrchestrator:
    """Payment lifecycle and revenue read models."""

    def __init__(
        self,
        store: Store,
        gateway: PaymentGateway,
        verifier: SignatureVerifier,
        distribution: RevenueDistributionEngine,
        settings: Settings,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._verifier = verifier
        self._distribution = distribution
        self._settings = settings
        self._completion_hooks: List[CompletionHook] = []

    def register_completion_hook(self, hook: CompletionHook) -> None:
        """Add a callback run with the payment id after each winning COMPLETED transition."""
        self._completion_hooks.append(hook)

    def _callback_urls(self) -> CallbackUrls:
        frontend = self._settings.frontend_url.rstrip("/")
        backend = self._settings.backend_url.rstrip("/")
        return CallbackUrls(
            success_url=f"{frontend}/payment/success",
            cancel_url=f"{frontend}/payment/cancel",
            webhook_url=f"{backend}/api/payments/webhook",
        )

    async def create_payment(
        self, user_id: str, category: AnalysisCategory, amount: Decimal
    ) -> str:
        """
        Record a PENDING payment and open a gateway intent for it.

        Raises
        ------
        GatewayError
            If the intent could not be created. The payment stays PENDING with
            no gateway reference and is not resubmitted.
        """
        payment = Payment(
            user_id=user_id,
            category=category,
            amount=amount,
            currency=self._settings.payment_currency,
        )
        await self._store.insert_payment(payment)
        try:
            reference = await bounded(
                self._gateway.create_intent(
                    payment.id, payment.amount, payment.currency, self._callback_urls()
                ),
                self._settings.external_timeout_seconds,
                GatewayError,
                "create_intent",
            )
        except GatewayError:
            log.error("[PAYMENT INTENT FAILED]", extra={"payment_id": payment.id}, exc_info=True)
            raise
        await self._store.set_payment_gateway_reference(payment.id, reference)
        log.info(
            "[PAYMENT CREATED]",
            extra={
                "payment_id": payment.id,
                "user_id": user_id,
                "amount": str(payment.amount),
                "gateway_reference": reference,
            },
        )
        return payment.id

    async def reconcile_webhook(
        self, raw_payload: bytes, signature: Optional[str]
    ) -> ReconcileOutcome:
        """
        Apply a gateway notification.

        Duplicate deliveries are no-ops reported with ``applied=False``. A
        delivery that contradicts an already-terminal payment is ignored and
        reported with ``conflict=True``; a terminal payment is never reverted.

        Raises
        ------
        Unauthorized
            If the signature does not verify. Nothing is read or written.
        InvalidWebhook
            If the payload is malformed or names an unknown payment.
        """
        if not self._verifier.verify(raw_payload, signature):
            log.warning("[WEBHOOK REJECTED]", extra={"reason": "signature"})
            raise Unauthorized("Invalid webhook signature")
        event = parse_webhook_event(raw_payload)
        payment = await self._store.get_payment(event.reference)
        if payment is None:
            raise InvalidWebhook("Unknown payment reference", reference=event.reference)
        return await self._apply(payment.id, _WEBHOOK_STATUS[event.status], event.transaction_hash)

    async def complete_payment(
        self,
        payment_id: str,
        transaction_hash: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Payment:
        """
        Mark a payment COMPLETED outside the webhook path.

        Runs the same transition and side effects as a completed webhook. Only
        available when ``Settings.manual_completion_enabled`` holds.

        Raises
        ------
        Forbidden
            If manual completion is disabled. Nothing is read or written.
        NotFound
            If the payment does not exist or belongs to another user.
        Conflict
            If the payment is already COMPLETED or FAILED.
        """
        if not self._settings.manual_completion_enabled:
            log.warning("[MANUAL COMPLETION REJECTED]", extra={"payment_id": payment_id})
            raise Forbidden("Manual payment completion is disabled", payment_id=payment_id)
        payment = await self._store.get_payment(payment_id)
        if payment is None or (user_id is not None and payment.user_id != user_id):
            raise NotFound("Payment not found", payment_id=payment_id)
        if is_terminal_payment(payment.status):
            raise Conflict(
                f"Payment is already {payment.status.value}",
                payment_id=payment_id,
                status=payment.status.value,
            )
        outcome = await self._apply(payment_id, PaymentStatus.COMPLETED, transaction_hash)
        if not outcome.applied:
            raise Conflict(
                f"Payment is already {outcome.status.value}",
                payment_id=payment_id,
                status=outcome.status.value,
            )
        completed = await self._store.get_payment(payment_id)
        if completed is None:
            raise NotFound("Payment not found", payment_id=payment_id)
        return completed

    async def _apply(
        self, payment_id: str, target: PaymentStatus, transaction_hash: Optional[str]
    ) -> ReconcileOutcome:
        updated = await self._store.transition_payment(
            payment_id,
            PaymentStatus.PENDING,
            target,
            transaction_hash=transaction_hash,
            completed_at=utcnow() if target == PaymentStatus.COMPLETED else None,
        )
        if updated is None:
            current = await self._store.get_payment(payment_id)
            if current is None:
                raise NotFound("Payment not found", payment_id=payment_id)
            conflict = current.status != target
            log.info(
                "[WEBHOOK CONFLICT]" if conflict else "[WEBHOOK DUPLICATE]",
                extra={
                    "payment_id": payment_id,
                    "current": current.status.value,
                    "requested": target.value,
                },
            )
            return ReconcileOutcome(
                payment_id=payment_id, status=current.status, applied=False, conflict=conflict
            )

        log.info("[PAYMENT TRANSITION]", extra={"payment_id": payment_id, "status": target.value})
        if target == PaymentStatus.COMPLETED:
            await self._run_side_effects(updated)
        return ReconcileOutcome(payment_id=payment_id, status=target, applied=True)

    async def _run_side_effects(self, payment: Payment) -> None:
        labels = [getattr(hook, "__qualname__", "completion_hook") for hook in self._completion_hooks]
        calls = [hook(payment.id) for hook in self._completion_hooks]
        labels.append("distribute")
        calls.append(self._distribution.distribute(payment.id, payment.amount))
        results = await asyncio.gather(*calls, return_exceptions=True)
        for label, result in zip(labels, results):
            if isinstance(result, BaseException):
                log.error(
                    "[SIDE EFFECT FAILED]",
                    extra={"payment_id": payment.id, "effect": label},
                    exc_info=result,
                )

    async def get_payment_status(
        self, payment_id: str, user_id: Optional[str] = None
    ) -> PaymentStatusView:
        """Payment, its distributions and the linked analysis. Foreign payments read as absent."""
        payment = await self._store.get_payment(payment_id)
        if payment is None or (user_id is not None and payment.user_id != user_id):
            raise NotFound("Payment not found", payment_id=payment_id)
        distributions, analysis = await asyncio.gather(
            self._store.list_distributions(payment_id),
            self._store.find_analysis_by_payment(payment_id),
        )
        return PaymentStatusView(payment=payment, distributions=distributions, analysis=analysis)

    async def get_revenue_dashboard(self, recent_limit: int = 10) -> RevenueDashboard:
        total, completed, by_category, recent, totals = await asyncio.gather(
            self._store.total_completed_revenue(),
            self._store.count_analyses(AnalysisStatus.COMPLETED),
            self._store.revenue_by_category(),
            self._store.recent_completed_payments(recent_limit),
            self._store.distribution_totals(),
        )
        return RevenueDashboard(
            total_revenue=total,
            total_analyses=completed,
            revenue_by_category=by_category,
            recent_payments=recent,
            distribution_totals=totals,
        )


__all__ = ["CompletionHook", "PaymentOrchestrator"]
