"""
Schema setup and seeding script for the CryptoAnalyst API.

Applies ``db/init.sql`` and replaces the stakeholder table with the validated
split from settings.
"""

from __future__ import annotations

import sys
from pathlib import Path

import psycopg
import typer

from cryptoanalyst.config import get_settings, load_stakeholders
from cryptoanalyst.errors import ConfigurationError
from cryptoanalyst.infrastructure.db_factory import get_sync_connection

app = typer.Typer(help="Create the CryptoAnalyst schema and seed stakeholders.")

SCHEMA_PATH = Path(__file__).resolve().parent.parent / "db" / "init.sql"


def _apply_schema(conn: psycopg.Connection, schema_path: Path) -> None:
    with conn.cursor() as cur:
        cur.execute(schema_path.read_text(encoding="utf-8"))


def _seed_stakeholders(conn: psycopg.Connection) -> int:
    entries = load_stakeholders(get_settings())
    with conn.cursor() as cur:
        cur.execute("DELETE FROM stakeholders")
        cur.executemany(
            """
            INSERT INTO stakeholders (wallet_id, percentage, category, is_active)
            VALUES (%s, %s, %s, %s)
            """,
            [(e.wallet_id, e.percentage, e.category, e.is_active) for e in entries],
        )
    return len(entries)


@app.command()
def main(
    dsn: str | None = typer.Option(
        None,
        "--dsn",
        help="Optional DSN override for Postgres.",
    ),
    schema: Path = typer.Option(
        SCHEMA_PATH,
        "--schema",
        help="Path to the schema file.",
    ),
    no_seed: bool = typer.Option(
        False,
        "--no-seed",
        help="Only apply the schema; leave stakeholders untouched.",
    ),
) -> None:
    """
    Apply the schema and seed stakeholders in one transaction.
    """
    try:
        with get_sync_connection(dsn) as conn:
            _apply_schema(conn, schema)
            typer.echo(f"Applied schema from {schema}")
            if no_seed:
                typer.echo("Skipping stakeholder seed (no-seed flag set).")
            else:
                seeded = _seed_stakeholders(conn)
                typer.echo(f"Seeded {seeded} stakeholder entries.")
            conn.commit()
    except ConfigurationError as exc:
        typer.echo(f"Invalid stakeholder configuration: {exc.message}", err=True)
        raise typer.Exit(code=1) from exc


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
