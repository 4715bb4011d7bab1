from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, Awaitable, Callable, Optional

import typer
from pydantic import BaseModel

from cryptoanalyst.config import Settings, get_settings
from cryptoanalyst.container import ApplicationContainer, create_container
from cryptoanalyst.errors import CryptoAnalystError
from cryptoanalyst.utils.logging import configure_logging

app = typer.Typer(help="CryptoAnalyst API CLI.")

DEMO_WEBHOOK_SECRET = "demo-webhook-secret"


def _settings() -> Settings:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    return settings


def _echo(result: Any) -> None:
    if isinstance(result, BaseModel):
        typer.echo(result.model_dump_json(indent=2))
    elif isinstance(result, list):
        typer.echo(
            json.dumps(
                [item.model_dump(mode="json") if isinstance(item, BaseModel) else item for item in result],
                indent=2,
            )
        )
    else:
        typer.echo(result)


def _run(
    action: Callable[[ApplicationContainer], Awaitable[Any]],
    settings: Optional[Settings] = None,
) -> Any:
    """Run ``action`` against a fresh container and map domain errors to exit code 1."""

    async def runner() -> Any:
        container = await create_container(settings or _settings())
        try:
            return await action(container)
        finally:
            await container.aclose()

    try:
        return asyncio.run(runner())
    except CryptoAnalystError as exc:
        typer.echo(f"{type(exc).__name__}: {exc.message}", err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"store={settings.store_backend} generator={settings.generator_backend} "
        f"custodian={settings.custodian_backend} market_data={settings.market_data_backend}"
    )
    typer.echo(
        "pricing: "
        + ", ".join(f"{category.value}={price}" for category, price in settings.pricing.items())
    )
    typer.echo(
        "stakeholders: "
        + ", ".join(
            f"{entry.wallet_id}({entry.category})={entry.percentage}%"
            for entry in settings.stakeholders
            if entry.is_active
        )
    )


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from settings)."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (default from settings)."),
) -> None:
    """
    Run the HTTP API with uvicorn.
    """
    import uvicorn

    from cryptoanalyst.api import create_app

    settings = _settings()
    uvicorn.run(
        create_app(),
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_config=None,
    )


@app.command("register-user")
def register_user(email: str = typer.Argument(..., help="Email of the new user.")) -> None:
    """
    Register a user identity.
    """
    _echo(_run(lambda c: c.wallets.register_user(email)))


@app.command("create-analysis")
def create_analysis(
    user_id: str = typer.Option(..., "--user", "-u", help="Requesting user id."),
    category: str = typer.Option(..., "--type", "-t", help="Analysis type, e.g. BASIC_OVERVIEW."),
    symbol: str = typer.Option(..., "--symbol", "-s", help="Asset ticker, e.g. BTC."),
    timeframe: Optional[str] = typer.Option(None, "--timeframe", help="Optional timeframe."),
    risk: Optional[str] = typer.Option(None, "--risk", help="low, medium or high."),
) -> None:
    """
    Create an analysis request and its payment.
    """
    parameters = {"symbol": symbol, "timeframe": timeframe, "risk_tolerance": risk}
    parameters = {key: value for key, value in parameters.items() if value is not None}
    _echo(_run(lambda c: c.analysis.create_analysis_request(user_id, category, parameters)))


@app.command("get-analysis")
def get_analysis(
    analysis_id: str = typer.Argument(...),
    user_id: str = typer.Option(..., "--user", "-u"),
) -> None:
    """
    Show one analysis owned by the user.
    """
    _echo(_run(lambda c: c.analysis.get_analysis(analysis_id, user_id)))


@app.command("process-analysis")
def process_analysis(
    analysis_id: str = typer.Argument(...),
    user_id: Optional[str] = typer.Option(None, "--user", "-u"),
) -> None:
    """
    Generate the report for a paid analysis.
    """
    _echo(_run(lambda c: c.analysis.process_analysis(analysis_id, user_id)))


@app.command("list-analyses")
def list_analyses(
    user_id: str = typer.Option(..., "--user", "-u"),
    page: int = typer.Option(1, "--page"),
    limit: int = typer.Option(10, "--limit"),
) -> None:
    """
    List the user's analyses, newest first.
    """
    _echo(_run(lambda c: c.analysis.list_user_analyses(user_id, page=page, limit=limit)))


@app.command("payment-status")
def payment_status(payment_id: str = typer.Argument(...)) -> None:
    """
    Show a payment with its distributions and analysis.
    """
    _echo(_run(lambda c: c.payments.get_payment_status(payment_id)))


@app.command("complete-payment")
def complete_payment(
    payment_id: str = typer.Argument(...),
    transaction_hash: Optional[str] = typer.Option(None, "--tx", help="Settlement transaction hash."),
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="Only complete if owned by this user."),
) -> None:
    """
    Mark a pending payment completed and run distribution.

    Disabled outside development unless ALLOW_MANUAL_COMPLETION is set.
    """
    _echo(_run(lambda c: c.payments.complete_payment(payment_id, transaction_hash, user_id=user_id)))


@app.command()
def dashboard(recent: int = typer.Option(10, "--recent", help="Recent payments to include.")) -> None:
    """
    Show the revenue dashboard.
    """
    _echo(_run(lambda c: c.payments.get_revenue_dashboard(recent_limit=recent)))


async def _demo_flow(c: ApplicationContainer, symbol: str, category: str) -> None:
    from cryptoanalyst.adapters.payment_gateway import HmacSignatureVerifier

    user = await c.wallets.register_user("demo@cryptoanalyst.local")
    wallet_id = await c.wallets.create_user_wallet(user.id)
    typer.echo(f"user={user.id} wallet={wallet_id}")

    ticket = await c.analysis.create_analysis_request(user.id, category, {"symbol": symbol})
    typer.echo(f"analysis={ticket.analysis_id} payment={ticket.payment_id} price={ticket.price}")

    payload = json.dumps(
        {"reference": ticket.payment_id, "status": "completed", "transaction_hash": "0xdemo"}
    ).encode("utf-8")
    signature = HmacSignatureVerifier(DEMO_WEBHOOK_SECRET).sign(payload)
    first = await c.payments.reconcile_webhook(payload, signature)
    replay = await c.payments.reconcile_webhook(payload, signature)
    typer.echo(f"webhook applied={first.applied} replay applied={replay.applied}")

    analysis = await c.analysis.process_analysis(ticket.analysis_id, user.id)
    typer.echo(f"analysis status={analysis.status.value}")
    if analysis.result is not None:
        typer.echo(analysis.result.executive_summary)

    status = await c.payments.get_payment_status(ticket.payment_id, user.id)
    for row in status.distributions:
        typer.echo(f"  {row.category:<14} {row.recipient:<20} {row.amount} {row.status.value}")
    _echo(await c.payments.get_revenue_dashboard())


@app.command()
def demo(
    symbol: str = typer.Option("BTC", "--symbol", "-s"),
    category: str = typer.Option("BASIC_OVERVIEW", "--type", "-t"),
) -> None:
    """
    Run the end-to-end flow on in-memory backends with no network access.
    """
    settings = _settings().model_copy(
        update={
            "store_backend": "memory",
            "generator_backend": "template",
            "custodian_backend": "ledger",
            "market_data_backend": "static",
            "x402_api_key": None,
            "webhook_secret": DEMO_WEBHOOK_SECRET,
        }
    )
    _run(lambda c: _demo_flow(c, symbol, category), settings=settings)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
