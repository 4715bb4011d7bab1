"""
Analysis orchestrator.

Drives an Analysis from request to report:

    PENDING_PAYMENT -> PAID -> PROCESSING -> COMPLETED
                                   |  ^
                                   v  |
                                  FAILED

Report generation is gated on the linked Payment being COMPLETED. The pipeline
fetches the market snapshot, generates the full report and then the executive
summary. Any failure marks the analysis FAILED, from where it may be processed
again.
"""

from __future__ import annotations

import asyncio
import math
from typing import Any, List, Mapping, Optional, Union

from cryptoanalyst.adapters.abstract import MarketDataSource, ReportGenerator, market_context
from cryptoanalyst.config import Settings, price_for
from cryptoanalyst.domain.models import (
    Analysis,
    AnalysisCategory,
    AnalysisPage,
    AnalysisParameters,
    AnalysisResult,
    AnalysisStatus,
    AnalysisTicket,
    AnalysisTypeInfo,
    PaymentStatus,
    utcnow,
)
from cryptoanalyst.domain.state import PROCESSABLE_ANALYSIS_STATES
from cryptoanalyst.errors import (
    Conflict,
    DataUnavailable,
    GenerationFailed,
    GenerationUnavailable,
    InvalidCategory,
    InvalidPagination,
    NotFound,
    PaymentIncomplete,
    Unauthorized,
)
from cryptoanalyst.infrastructure.store import Store
from cryptoanalyst.services.payments import PaymentOrchestrator
from cryptoanalyst.utils.logging import get_logger
from cryptoanalyst.utils.timeouts import bounded

log = get_logger(__name__)

ANALYSIS_TYPES = {
    AnalysisCategory.BASIC_OVERVIEW: (
        "Basic Overview",
        "Current price, market cap, and short-term outlook",
        "2-3 minutes",
    ),
    AnalysisCategory.TECHNICAL_ANALYSIS: (
        "Technical Analysis",
        "Chart patterns, indicators, and entry/exit points",
        "5-7 minutes",
    ),
    AnalysisCategory.FUNDAMENTAL_ANALYSIS: (
        "Fundamental Analysis",
        "Project fundamentals, tokenomics, and long-term value",
        "7-10 minutes",
    ),
    AnalysisCategory.PORTFOLIO_REVIEW: (
        "Portfolio Review",
        "Portfolio composition, diversification, and rebalancing",
        "8-12 minutes",
    ),
    AnalysisCategory.MARKET_SENTIMENT: (
        "Market Sentiment",
        "Social sentiment, news analysis, and market psychology",
        "4-6 minutes",
    ),
    AnalysisCategory.DEFI_OPPORTUNITIES: (
        "DeFi Opportunities",
        "Yield farming, staking, and DeFi protocol analysis",
        "10-15 minutes",
    ),
}


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise InvalidPagination(f"{name} must be a positive integer", **{name: value})
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidPagination(f"{name} must be a positive integer", **{name: value}) from exc
    if number < 1 or (isinstance(value, float) and not value.is_integer()):
        raise InvalidPagination(f"{name} must be a positive integer", **{name: value})
    return number


class AnalysisOrchestrator:
    """Analysis lifecycle, payment-gated report generation and the user-facing reads."""

    def __init__(
        self,
        store: Store,
        payments: PaymentOrchestrator,
        market_data: MarketDataSource,
        generator: ReportGenerator,
        settings: Settings,
    ) -> None:
        self._store = store
        self._payments = payments
        self._market_data = market_data
        self._generator = generator
        self._settings = settings

    def _resolve_category(self, category: Union[AnalysisCategory, str]) -> AnalysisCategory:
        try:
            resolved = AnalysisCategory(category)
        except ValueError as exc:
            raise InvalidCategory(f"Unknown analysis type {category!r}", category=category) from exc
        if resolved not in self._settings.pricing:
            raise InvalidCategory(f"No price configured for {resolved.value}", category=resolved.value)
        return resolved

    async def create_analysis_request(
        self,
        user_id: str,
        category: Union[AnalysisCategory, str],
        parameters: Union[AnalysisParameters, Mapping[str, Any]],
    ) -> AnalysisTicket:
        """
        Create a priced analysis and the payment that unlocks it.

        Parameters
        ----------
        user_id : str
            The requesting user; must exist.
        category : AnalysisCategory or str
            One of the priced analysis types.
        parameters : AnalysisParameters or mapping
            Inputs for the report (``symbol`` is required).

        Returns
        -------
        AnalysisTicket
            Identifiers and price the client needs to complete payment.

        Raises
        ------
        InvalidCategory
            If the category is unknown or unpriced. Nothing is written.
        Unauthorized
            If the user does not exist.
        GatewayError
            If the payment intent could not be created. The analysis is then
            ABANDONED.
        """
        resolved = self._resolve_category(category)
        params = (
            parameters
            if isinstance(parameters, AnalysisParameters)
            else AnalysisParameters.model_validate(dict(parameters))
        )
        if await self._store.get_user(user_id) is None:
            raise Unauthorized("Unknown user", user_id=user_id)

        analysis = Analysis(
            user_id=user_id,
            category=resolved,
            parameters=params,
            price=price_for(self._settings, resolved),
        )
        await self._store.insert_analysis(analysis)
        try:
            payment_id = await self._payments.create_payment(user_id, resolved, analysis.price)
        except Exception:
            await self._store.transition_analysis(
                analysis.id, {AnalysisStatus.PENDING_PAYMENT}, AnalysisStatus.ABANDONED
            )
            log.warning("[ANALYSIS ABANDONED]", extra={"analysis_id": analysis.id})
            raise
        await self._store.link_analysis_payment(analysis.id, payment_id)
        log.info(
            "[ANALYSIS REQUESTED]",
            extra={
                "analysis_id": analysis.id,
                "payment_id": payment_id,
                "category": resolved.value,
                "price": str(analysis.price),
            },
        )
        return AnalysisTicket(
            analysis_id=analysis.id,
            payment_id=payment_id,
            price=analysis.price,
            status=analysis.status,
        )

    async def on_payment_completed(self, payment_id: str) -> None:
        """Move the analysis bound to ``payment_id`` from PENDING_PAYMENT to PAID."""
        analysis = await self._store.find_analysis_by_payment(payment_id)
        if analysis is None:
            log.info("[PAYMENT UNBOUND]", extra={"payment_id": payment_id})
            return
        updated = await self._store.transition_analysis(
            analysis.id, {AnalysisStatus.PENDING_PAYMENT}, AnalysisStatus.PAID
        )
        if updated is None:
            log.info(
                "[ANALYSIS ALREADY ADVANCED]",
                extra={"analysis_id": analysis.id, "payment_id": payment_id},
            )
            return
        log.info("[ANALYSIS PAID]", extra={"analysis_id": analysis.id, "payment_id": payment_id})

    async def _load(self, analysis_id: str, user_id: Optional[str]) -> Analysis:
        analysis = await self._store.get_analysis(analysis_id)
        if analysis is None or (user_id is not None and analysis.user_id != user_id):
            raise NotFound("Analysis not found", analysis_id=analysis_id)
        return analysis

    async def process_analysis(self, analysis_id: str, user_id: Optional[str] = None) -> Analysis:
        """
        Generate the report for a paid analysis.

        A COMPLETED analysis is returned unchanged. PROCESSING is re-entered
        rather than rejected, so a crashed run can be resumed. A run that finishes
        after a concurrent run failed still stores its report.

        Raises
        ------
        NotFound
            If the analysis is absent or belongs to another user.
        PaymentIncomplete
            If the linked payment is not COMPLETED. No status changes.
        Conflict
            If the analysis was abandoned.
        GenerationFailed
            If any pipeline step failed. The analysis is now FAILED.
        """
        analysis = await self._load(analysis_id, user_id)
        if analysis.status == AnalysisStatus.COMPLETED:
            return analysis

        payment = (
            await self._store.get_payment(analysis.payment_id) if analysis.payment_id else None
        )
        if payment is None or payment.status != PaymentStatus.COMPLETED:
            raise PaymentIncomplete(
                "Payment not completed",
                analysis_id=analysis_id,
                payment_status=payment.status.value if payment else None,
            )

        started = await self._store.transition_analysis(
            analysis_id, PROCESSABLE_ANALYSIS_STATES, AnalysisStatus.PROCESSING
        )
        if started is None:
            current = await self._load(analysis_id, user_id)
            if current.status == AnalysisStatus.COMPLETED:
                return current
            raise Conflict(
                f"Analysis cannot be processed from {current.status.value}",
                analysis_id=analysis_id,
            )
        log.info("[ANALYSIS PROCESSING]", extra={"analysis_id": analysis_id})

        try:
            result = await self._run_pipeline(started)
        except Exception as exc:
            await self._store.transition_analysis(
                analysis_id, {AnalysisStatus.PROCESSING}, AnalysisStatus.FAILED
            )
            log.error(
                "[ANALYSIS FAILED]",
                extra={"analysis_id": analysis_id, "error": repr(exc)},
            )
            raise GenerationFailed("Analysis generation failed", analysis_id=analysis_id) from exc

        completed = await self._store.transition_analysis(
            analysis_id,
            {AnalysisStatus.PROCESSING, AnalysisStatus.FAILED},
            AnalysisStatus.COMPLETED,
            result=result,
            completed_at=utcnow(),
        )
        if completed is None:
            current = await self._load(analysis_id, user_id)
            if current.status == AnalysisStatus.COMPLETED:
                # A concurrent run finished first.
                return current
            raise Conflict(
                f"Analysis moved to {current.status.value} during generation",
                analysis_id=analysis_id,
            )
        log.info(
            "[ANALYSIS COMPLETED]",
            extra={"analysis_id": analysis_id, "generator": self._generator.name},
        )
        return completed

    async def _run_pipeline(self, analysis: Analysis) -> AnalysisResult:
        symbol = analysis.parameters.symbol
        timeout = self._settings.external_timeout_seconds
        quote, metrics, sentiment = await asyncio.gather(
            bounded(self._market_data.fetch_quote(symbol), timeout, DataUnavailable, "fetch_quote"),
            bounded(
                self._market_data.fetch_global_metrics(),
                timeout,
                DataUnavailable,
                "fetch_global_metrics",
            ),
            self._market_data.fetch_sentiment_index(),
        )
        crypto = quote.model_dump(mode="json")
        market = {**metrics.model_dump(mode="json"), "fear_greed_index": sentiment}

        generation_timeout = self._settings.generation_timeout_seconds
        full_analysis = await bounded(
            self._generator.generate(
                analysis.category, market_context(crypto, market), analysis.parameters
            ),
            generation_timeout,
            GenerationUnavailable,
            "generate",
        )
        summary = await bounded(
            self._generator.summarize(full_analysis),
            generation_timeout,
            GenerationUnavailable,
            "summarize",
        )
        return AnalysisResult(
            full_analysis=full_analysis,
            executive_summary=summary,
            crypto_data=crypto,
            market_data=market,
        )

    async def get_analysis(self, analysis_id: str, user_id: str) -> Analysis:
        """Absent and foreign analyses both raise ``NotFound``."""
        return await self._load(analysis_id, user_id)

    async def list_user_analyses(
        self, user_id: str, page: Any = 1, limit: Any = None
    ) -> AnalysisPage:
        page_number = _positive_int(page, "page")
        page_size = _positive_int(
            self._settings.default_page_size if limit is None else limit, "limit"
        )
        page_size = min(page_size, self._settings.max_page_size)
        total = await self._store.count_user_analyses(user_id)
        analyses = await self._store.list_user_analyses(
            user_id, offset=(page_number - 1) * page_size, limit=page_size
        )
        return AnalysisPage(
            analyses=analyses,
            page=page_number,
            limit=page_size,
            total=total,
            pages=math.ceil(total / page_size),
        )

    def list_analysis_types(self) -> List[AnalysisTypeInfo]:
        return [
            AnalysisTypeInfo(
                type=category,
                name=name,
                description=description,
                price=self._settings.pricing[category],
                duration=duration,
            )
            for category, (name, description, duration) in ANALYSIS_TYPES.items()
            if category in self._settings.pricing
        ]


__all__ = ["ANALYSIS_TYPES", "AnalysisOrchestrator"]
