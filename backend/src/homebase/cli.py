"""Command-line interface for HomeBase referral operations."""

import json
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from homebase.accounts.models import AccountRecord, Role
from homebase.billing.models import BillingEvent
from homebase.billing.processor import process_batch
from homebase.errors import HomeBaseError
from homebase.logging_config import configure_logging, get_logger
from homebase.referral.credits import CreditAccrualEngine
from homebase.referral.payouts import PayoutEligibilityEngine
from homebase.referral.transfers import StripeTransferClient
from homebase.storage.db import db

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="homebase",
    help="HomeBase - referral credits and agent commissions",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


def _read_events(path: Path) -> list[BillingEvent]:
    events = []
    with path.open("r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                events.append(BillingEvent.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                raise typer.BadParameter(f"{path}:{line_no}: {e}") from e
    return events


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("process-events")
def process_events(
    events_file: Annotated[Path, typer.Argument(help="JSONL file with one billing event per line", exists=True)],
) -> None:
    """Apply a batch of billing cycle events."""
    events = _read_events(events_file)
    console.print(f"[bold blue]Processing {len(events)} billing events...[/bold blue]")

    result = process_batch(events, database=db)

    console.print(f"[bold green]✓[/bold green] Processed: {len(result.processed)}")
    console.print(f"  Duplicates: {len(result.duplicates)}")
    console.print(f"  Skipped: {result.skipped}")

    if result.failed:
        table = Table(title="Failed accounts")
        table.add_column("Account ID", style="cyan")
        table.add_column("Error", style="red")
        for account_id, error in sorted(result.failed.items()):
            table.add_row(str(account_id), error)
        console.print(table)
        raise typer.Exit(1)


@app.command("recompute-credits")
def recompute_credits(
    account_id: Annotated[int | None, typer.Option("--account", "-a", help="Only this referrer")] = None,
) -> None:
    """Recompute stored referral credits from the ledger."""
    with db.session() as session:
        engine = CreditAccrualEngine(session)
        if account_id is not None:
            ids = [account_id]
        else:
            ids = [
                row.id for row in session.query(AccountRecord.id).filter(
                    AccountRecord.role != Role.AGENT
                ).order_by(AccountRecord.id).all()
            ]

        try:
            for referrer_id in ids:
                credit = engine.recompute_credits(referrer_id)
                console.print(f"  Account {referrer_id}: ${credit}")
        except HomeBaseError as e:
            console.print(f"[bold red]✗[/bold red] {e}")
            raise typer.Exit(1)

    console.print(f"[bold green]✓[/bold green] Recomputed credits for {len(ids)} accounts")


@app.command("process-payouts")
def process_payouts() -> None:
    """Send every pending agent payout."""
    with db.session() as session:
        payout_ids = PayoutEligibilityEngine(session).pending_payout_ids()

    if not payout_ids:
        console.print("[yellow]No pending payouts[/yellow]")
        return

    client = StripeTransferClient()
    table = Table(title="Agent payouts")
    table.add_column("Payout ID", style="cyan")
    table.add_column("Agent ID")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    table.add_column("Detail")

    failures = 0
    for payout_id in payout_ids:
        # One transaction per payout so a failure never rolls back another transfer
        with db.session() as session:
            payout = PayoutEligibilityEngine(session, transfer_client=client).process_payout(payout_id)
            if payout.error_message:
                failures += 1
            table.add_row(
                str(payout.id),
                str(payout.agent_id),
                f"${payout.amount}",
                payout.status.value,
                payout.transfer_reference or payout.error_message or "",
            )

    console.print(table)
    if failures:
        console.print(f"[bold red]✗[/bold red] {failures} payouts failed")
        raise typer.Exit(1)


@app.command("retry-payout")
def retry_payout(
    payout_id: Annotated[int, typer.Argument(help="Failed payout ID")],
) -> None:
    """Put a failed payout back in the pending queue."""
    try:
        with db.session() as session:
            payout = PayoutEligibilityEngine(session).retry_payout(payout_id)
            console.print(f"[bold green]✓[/bold green] Payout {payout.id} is {payout.status.value}")
    except HomeBaseError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(1)


@app.command("summary")
def show_summary(
    account_id: Annotated[int, typer.Argument(help="Account ID")],
) -> None:
    """Show the referral summary for an account."""
    try:
        with db.session() as session:
            summary = CreditAccrualEngine(session).summary(account_id)
    except HomeBaseError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(f"[bold]Referral code:[/bold] {summary['referral_code']}")
    console.print(f"[bold]Referrals:[/bold] {summary['referral_count']}")
    console.print(f"[bold]Earned credits:[/bold] ${summary['earned_credits']}")
    console.print(f"[bold]Applied credits:[/bold] ${summary['current_credits']}")
    if summary["referral_credit_cap"] is not None:
        console.print(f"[bold]Credit cap:[/bold] ${summary['referral_credit_cap']}")


@app.command("cleanup-webhooks")
def cleanup_webhooks(
    days: Annotated[int, typer.Option("--days", "-d", help="Keep events newer than this")] = 30,
) -> None:
    """Delete old webhook idempotency records."""
    from homebase.api.v1.webhooks import cleanup_old_events

    deleted = cleanup_old_events(days=days)
    console.print(f"[bold green]✓[/bold green] Deleted {deleted} webhook events")


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Bind port")] = 8000,
    reload: Annotated[bool, typer.Option("--reload", help="Reload on code changes")] = False,
) -> None:
    """Run the referral API."""
    import uvicorn

    console.print(f"[bold blue]Serving HomeBase API on http://{host}:{port}[/bold blue]")
    uvicorn.run("homebase.api.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
