"""
HTTP layer for the CryptoAnalyst API.

A thin FastAPI adapter over the orchestrators: each route parses the request,
calls one orchestrator method and serialises the result. Domain errors carry
their own HTTP status and are rendered by a single exception handler.

The caller is identified by the ``X-User-Id`` header; issuing and checking
credentials happens upstream of this service.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from cryptoanalyst import __version__
from cryptoanalyst.container import ApplicationContainer, create_container
from cryptoanalyst.domain.models import (
    Analysis,
    AnalysisPage,
    AnalysisTicket,
    AnalysisTypeInfo,
    Payment,
    PaymentStatusView,
    ReconcileOutcome,
    RevenueDashboard,
    User,
    WalletBalance,
)
from cryptoanalyst.errors import CryptoAnalystError, Unauthorized
from cryptoanalyst.utils.logging import get_logger

log = get_logger(__name__)

SIGNATURE_HEADER = "X-Signature"


class CreateAnalysisBody(BaseModel):
    type: str = Field(..., description="Analysis category, e.g. BASIC_OVERVIEW.")
    parameters: Dict[str, Any] = Field(default_factory=dict)


class RegisterUserBody(BaseModel):
    email: str = Field(..., min_length=3)


class CompletePaymentBody(BaseModel):
    transaction_hash: Optional[str] = None


class WalletCreated(BaseModel):
    wallet_id: str


class WalletAddress(BaseModel):
    address: str


def get_container(request: Request) -> ApplicationContainer:
    return request.app.state.container


def current_user(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id:
        raise Unauthorized("Missing X-User-Id header")
    return x_user_id


async def _domain_error(request: Request, exc: CryptoAnalystError) -> JSONResponse:
    level = log.error if exc.status_code >= 500 else log.info
    level(
        "[REQUEST FAILED]",
        extra={
            "path": request.url.path,
            "error": type(exc).__name__,
            "status": exc.status_code,
            **{f"ctx_{key}": value for key, value in exc.context.items()},
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": type(exc).__name__, "message": exc.message},
    )


async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": "ValidationError",
            "message": "Invalid request parameters",
            "details": [
                {"loc": list(error["loc"]), "msg": error["msg"]} for error in exc.errors()
            ],
        },
    )


def create_app(container: Optional[ApplicationContainer] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Parameters
    ----------
    container : ApplicationContainer, optional
        Pre-built container (tests). When omitted, one is created from settings
        on startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if container is not None:
            app.state.container = container
            yield
            return
        app.state.container = await create_container()
        try:
            yield
        finally:
            await app.state.container.aclose()

    app = FastAPI(title="CryptoAnalyst API", version=__version__, lifespan=lifespan)
    if container is not None:
        app.state.container = container
    app.add_exception_handler(CryptoAnalystError, _domain_error)
    app.add_exception_handler(ValidationError, _validation_error)

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok", "version": __version__}

    # Users and wallets

    @app.post("/api/users", response_model=User, status_code=201)
    async def register_user(
        body: RegisterUserBody, c: ApplicationContainer = Depends(get_container)
    ) -> User:
        return await c.wallets.register_user(body.email)

    @app.post("/api/wallet/create", response_model=WalletCreated, status_code=201)
    async def create_wallet(
        user_id: str = Depends(current_user), c: ApplicationContainer = Depends(get_container)
    ) -> WalletCreated:
        return WalletCreated(wallet_id=await c.wallets.create_user_wallet(user_id))

    @app.get("/api/wallet/platform/address", response_model=WalletAddress)
    async def platform_address(c: ApplicationContainer = Depends(get_container)) -> WalletAddress:
        return WalletAddress(address=await c.wallets.get_platform_wallet_address())

    @app.get("/api/wallet/{wallet_id}/balance", response_model=List[WalletBalance])
    async def wallet_balance(
        wallet_id: str,
        user_id: str = Depends(current_user),
        c: ApplicationContainer = Depends(get_container),
    ) -> List[WalletBalance]:
        return await c.wallets.get_wallet_balance(user_id, wallet_id)

    # Analyses

    @app.get("/api/analysis/types", response_model=List[AnalysisTypeInfo])
    async def analysis_types(
        c: ApplicationContainer = Depends(get_container),
    ) -> List[AnalysisTypeInfo]:
        return c.analysis.list_analysis_types()

    @app.post("/api/analysis", response_model=AnalysisTicket, status_code=201)
    async def create_analysis(
        body: CreateAnalysisBody,
        user_id: str = Depends(current_user),
        c: ApplicationContainer = Depends(get_container),
    ) -> AnalysisTicket:
        return await c.analysis.create_analysis_request(user_id, body.type, body.parameters)

    @app.get("/api/analysis", response_model=AnalysisPage)
    async def list_analyses(
        page: str = Query("1"),
        limit: Optional[str] = Query(None),
        user_id: str = Depends(current_user),
        c: ApplicationContainer = Depends(get_container),
    ) -> AnalysisPage:
        return await c.analysis.list_user_analyses(user_id, page=page, limit=limit)

    @app.get("/api/analysis/{analysis_id}", response_model=Analysis)
    async def get_analysis(
        analysis_id: str,
        user_id: str = Depends(current_user),
        c: ApplicationContainer = Depends(get_container),
    ) -> Analysis:
        return await c.analysis.get_analysis(analysis_id, user_id)

    @app.post("/api/analysis/{analysis_id}/process", response_model=Analysis)
    async def process_analysis(
        analysis_id: str,
        user_id: str = Depends(current_user),
        c: ApplicationContainer = Depends(get_container),
    ) -> Analysis:
        return await c.analysis.process_analysis(analysis_id, user_id)

    # Payments

    @app.post("/api/payments/webhook", response_model=ReconcileOutcome)
    async def payment_webhook(
        request: Request,
        x_signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
        c: ApplicationContainer = Depends(get_container),
    ) -> ReconcileOutcome:
        raw = await request.body()
        return await c.payments.reconcile_webhook(raw, x_signature)

    @app.get(
        "/api/payments/revenue/dashboard",
        response_model=RevenueDashboard,
        dependencies=[Depends(current_user)],
    )
    async def revenue_dashboard(
        recent: int = Query(10, ge=1, le=100),
        c: ApplicationContainer = Depends(get_container),
    ) -> RevenueDashboard:
        return await c.payments.get_revenue_dashboard(recent_limit=recent)

    @app.get("/api/payments/{payment_id}/status", response_model=PaymentStatusView)
    async def payment_status(
        payment_id: str,
        user_id: str = Depends(current_user),
        c: ApplicationContainer = Depends(get_container),
    ) -> PaymentStatusView:
        return await c.payments.get_payment_status(payment_id, user_id)

    @app.post("/api/payments/{payment_id}/complete", response_model=Payment)
    async def complete_payment(
        payment_id: str,
        body: Optional[CompletePaymentBody] = None,
        user_id: str = Depends(current_user),
        c: ApplicationContainer = Depends(get_container),
    ) -> Payment:
        transaction_hash = body.transaction_hash if body else None
        return await c.payments.complete_payment(payment_id, transaction_hash, user_id=user_id)

    return app


__all__ = ["SIGNATURE_HEADER", "create_app"]
