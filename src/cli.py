#!/usr/bin/env python3
"""Command Line Interface for the GREIA coordination backend.

Usage:
    cd src
    python cli.py server          # Start API server
    python cli.py init-db         # Create missing tables
    python cli.py fan-out 42      # Re-run matching for lead 42
    python cli.py token 7         # Mint a development access token
    python cli.py info            # Show configuration
"""
from __future__ import annotations

import typer
import uvicorn

from core.config import get_settings
from core.logging_config import get_logger, setup_logging
from core.db import get_session, init_db
from core.exceptions import CoordinationError

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

app = typer.Typer(help="GREIA coordination backend CLI")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Conversations, contracts, referrals and marketplace leads."""
    log_level = "DEBUG" if verbose else SETTINGS.log_level
    setup_logging(level=log_level, json_format=SETTINGS.log_format == "json")


# =============================================================================
# Server
# =============================================================================


@app.command("server")
def run_server(
    host: str = typer.Option("0.0.0.0", help="Host to bind to"),
    port: int = typer.Option(8000, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload for development"),
) -> None:
    """Start the API server."""
    typer.echo(f"Starting API server on {host}:{port}...")
    uvicorn.run("api.app:app", host=host, port=port, reload=reload)


# =============================================================================
# Operations
# =============================================================================


@app.command("init-db")
def init_database() -> None:
    """Create any missing tables."""
    result = init_db()
    if result["status"] != "success":
        typer.secho(f"✗ init-db failed: {result.get('error')}", fg="red")
        raise typer.Exit(1)
    created = ", ".join(result["tables_created"]) or "none"
    typer.secho(f"✓ Tables created: {created}", fg="green")


@app.command("fan-out")
def fan_out_lead(
    lead_id: int = typer.Argument(..., help="Lead to re-match"),
) -> None:
    """Re-run agent matching for a lead; only new matches are notified."""
    from services.marketplace import get_lead_matching_service

    try:
        with get_session() as session:
            matched = get_lead_matching_service(session).fan_out(lead_id)
    except CoordinationError as e:
        typer.secho(f"✗ {e.kind}: {e}", fg="red")
        raise typer.Exit(1)
    typer.echo(f"Lead {lead_id}: {matched} agents matched")


@app.command("token")
def mint_token(
    user_id: int = typer.Argument(..., help="User id to put in the token"),
    role: str = typer.Option("agent", help="Role claim"),
    minutes: int = typer.Option(60, help="Lifetime in minutes"),
) -> None:
    """Mint a development access token."""
    from core.auth import create_access_token

    if SETTINGS.environment == "production":
        typer.secho("✗ Refusing to mint tokens in production", fg="red")
        raise typer.Exit(1)
    typer.echo(create_access_token(user_id, role, expires_minutes=minutes))


# =============================================================================
# Utility Commands
# =============================================================================


@app.command("info")
def show_info() -> None:
    """Show application configuration info."""
    typer.echo("GREIA Coordination Configuration:")
    typer.echo(f"  Environment: {SETTINGS.environment}")
    typer.echo(f"  Dry Run: {SETTINGS.dry_run}")
    typer.echo(f"  Log Level: {SETTINGS.log_level}")
    typer.echo(f"  Database: {SETTINGS.database_url.split('@')[-1]}")
    typer.echo(f"  Object Storage Configured: {SETTINGS.is_storage_enabled()}")
    typer.echo(f"  Email Relay Enabled: {SETTINGS.is_email_relay_enabled()}")
    typer.echo(f"  Default Referral Fee: {SETTINGS.referral_default_fee_pct}%")


if __name__ == "__main__":
    app()
