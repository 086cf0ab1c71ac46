"""CLI command implementations — scans drive ScanOrchestrator, review commands hit the database."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich import box
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from billdrop.config import ScanConfig
from billdrop.filtering.filter import CandidateFilter, FilteredEmail
from billdrop.filtering.patterns import load_pattern_tables
from billdrop.mail.gmail_client import gmail_mailbox
from billdrop.mail.sample import SampleMailbox
from billdrop.mail.types import AuthError, MailboxError, MailboxProvider
from billdrop.processing.cascade import build_cascade
from billdrop.scan.events import CandidateFoundEvent, ErrorEvent, EventCallback, ScanEvent, StatusEvent
from billdrop.scan.orchestrator import ScanOrchestrator
from billdrop.scan.types import Decision, ScanSummary
from billdrop.storage.models import Subscription

if TYPE_CHECKING:
    from billdrop.cli.main import AppContext

logger = logging.getLogger(__name__)
console = Console(width=200)

_DECISION_STYLE = {
    Decision.CREATE: "[green]new[/green]",
    Decision.SKIP_DUPLICATE: "[dim]duplicate[/dim]",
    Decision.SKIP_ZERO_AMOUNT: "[dim]zero amount[/dim]",
}


# ── Helpers ────────────────────────────────────────────────────────────────────


@asynccontextmanager
async def _open_mailbox(config: ScanConfig, sample: bool) -> AsyncIterator[MailboxProvider]:
    if sample or config.use_sample_mailbox:
        yield SampleMailbox()
        return
    async with gmail_mailbox(user_email=config.user_email or None) as mailbox:
        yield mailbox


def _orchestrator(
    app: AppContext,
    config: ScanConfig,
    dry_run: bool,
    on_event: EventCallback | None = None,
) -> ScanOrchestrator:
    tables = load_pattern_tables(config.patterns_file) if config.patterns_file else None
    return ScanOrchestrator(
        config,
        build_cascade(config),
        store=None if dry_run else app.db,
        user_id=app.user_id,
        candidate_filter=CandidateFilter(tables),
        on_event=on_event,
    )


def _print_summary(summary: ScanSummary, dry_run: bool) -> None:
    if summary.candidates:
        table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
        table.add_column("ID", style="dim", width=5)
        table.add_column("Service", max_width=30)
        table.add_column("Amount", justify="right", width=12)
        table.add_column("Cycle", width=8)
        table.add_column("Next billing", width=12)
        table.add_column("Conf", width=5)
        table.add_column("Result", width=12)
        for candidate in summary.candidates:
            parsed = candidate.parsed
            record = candidate.subscription or candidate.existing
            record_id = str(record.id) if isinstance(record, Subscription) else "–"
            next_date = getattr(candidate.subscription, "next_billing_date", None) or parsed.next_billing_date
            table.add_row(
                record_id,
                parsed.service_name,
                f"{parsed.amount:.2f} {parsed.currency}",
                parsed.billing_cycle.value,
                str(next_date or "")[:10],
                f"{parsed.confidence:.2f}",
                _DECISION_STYLE[candidate.decision],
            )
        console.print(table)

    console.print(
        f"\nFetched [bold]{summary.total_fetched}[/bold], "
        f"filtered [bold]{summary.total_filtered}[/bold], "
        f"new [bold green]{summary.total_accepted}[/bold green], "
        f"duplicates [bold]{summary.total_duplicates}[/bold], "
        f"zero-amount [bold]{summary.total_skipped_zero}[/bold]"
    )
    if summary.cancelled:
        console.print("[yellow]Stopped early; later emails were not processed.[/yellow]")
    for error in summary.errors:
        console.print(f"  [red]•[/red] {error}")
    if summary.total_accepted and not dry_run:
        console.print("[dim]New subscriptions need review: `billdrop confirm ID` or `billdrop dismiss ID`.[/dim]")
    elif summary.total_accepted:
        console.print("[dim]Dry run: nothing was saved.[/dim]")


# ── billdrop scan ──────────────────────────────────────────────────────────────


@click.command()
@click.option("--days", type=int, default=None, help="Lookback window in days.")
@click.option("--sample", is_flag=True, help="Use built-in sample emails instead of Gmail.")
@click.option("--dry-run", is_flag=True, help="Show what would be saved without saving.")
@click.pass_obj
def scan(app: AppContext, days: int | None, sample: bool, dry_run: bool) -> None:
    """Scan the mailbox and store new subscription candidates."""
    config = dataclasses.replace(app.config, lookback_days=days) if days else app.config
    summary = asyncio.run(_scan_async(app, config, sample, dry_run))
    _print_summary(summary, dry_run)
    if not dry_run:
        app.db.record_scan(
            app.user_id,
            total_fetched=summary.total_fetched,
            total_filtered=summary.total_filtered,
            total_accepted=summary.total_accepted,
            total_duplicates=summary.total_duplicates,
            error_count=len(summary.errors),
            cancelled=summary.cancelled,
        )


async def _scan_async(app: AppContext, config: ScanConfig, sample: bool, dry_run: bool) -> ScanSummary:
    with Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Starting…", total=100)

        def on_event(event: ScanEvent) -> None:
            if isinstance(event, StatusEvent):
                progress.update(task, description=event.message, completed=event.percent)
            elif isinstance(event, CandidateFoundEvent) and not event.existing:
                parsed = event.candidate.parsed
                progress.console.print(
                    f"  [green]+[/green] {parsed.service_name} "
                    f"{parsed.amount:.2f} {parsed.currency}/{parsed.billing_cycle.value}"
                )
            elif isinstance(event, ErrorEvent):
                progress.console.print(f"[red]{event.message}[/red]")

        orchestrator = _orchestrator(app, config, dry_run, on_event)
        try:
            async with _open_mailbox(config, sample) as mailbox:
                summary = await orchestrator.run_scan(mailbox, config.user_email)
        except AuthError as exc:
            raise click.ClickException(f"Mailbox access failed: {exc}. Reconnect your account and retry.") from exc
        except MailboxError as exc:
            raise click.ClickException(f"Could not reach the mailbox: {exc}") from exc
        progress.update(task, completed=100)
    return summary


# ── billdrop candidates / extract (two-phase) ──────────────────────────────────


@click.command()
@click.option("--out", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Write JSON here.")
@click.option("--sample", is_flag=True, help="Use built-in sample emails instead of Gmail.")
@click.pass_obj
def candidates(app: AppContext, out: Path | None, sample: bool) -> None:
    """List filtered candidate emails as JSON, for `billdrop extract`."""
    emails = asyncio.run(_candidates_async(app, sample))
    payload = json.dumps([e.to_dict() for e in emails], indent=2)
    if out is None:
        click.echo(payload)
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(payload, encoding="utf-8")
    console.print(f"Wrote [bold]{len(emails)}[/bold] candidate(s) to {out}")


async def _candidates_async(app: AppContext, sample: bool) -> list[FilteredEmail]:
    orchestrator = _orchestrator(app, app.config, dry_run=True)
    try:
        async with _open_mailbox(app.config, sample) as mailbox:
            return await orchestrator.list_candidates(mailbox, app.config.user_email)
    except MailboxError as exc:
        raise click.ClickException(f"Mailbox access failed: {exc}") from exc


@click.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--id", "ids", multiple=True, help="Candidate id to extract (repeatable; default all).")
@click.option("--dry-run", is_flag=True, help="Show what would be saved without saving.")
@click.pass_obj
def extract(app: AppContext, file: Path, ids: Sequence[str], dry_run: bool) -> None:
    """Extract subscriptions from candidates chosen out of a `candidates` JSON file."""
    try:
        data = json.loads(file.read_text(encoding="utf-8"))
        emails = [FilteredEmail.from_dict(item) for item in data]
    except (ValueError, KeyError, TypeError) as exc:
        raise click.ClickException(f"{file} is not a candidates file: {exc}") from exc

    if ids:
        wanted = set(ids)
        emails = [e for e in emails if e.id in wanted]
        missing = wanted - {e.id for e in emails}
        if missing:
            console.print(f"[yellow]Unknown id(s): {', '.join(sorted(missing))}[/yellow]")
    if not emails:
        console.print("[yellow]No candidates selected.[/yellow]")
        return

    orchestrator = _orchestrator(app, app.config, dry_run)
    summary = asyncio.run(orchestrator.process_selected(emails))
    _print_summary(summary, dry_run)


# ── Review commands ────────────────────────────────────────────────────────────


@click.command(name="list")
@click.option("--pending", is_flag=True, help="Only subscriptions awaiting confirmation.")
@click.pass_obj
def list_subscriptions(app: AppContext, pending: bool) -> None:
    """Show stored subscriptions."""
    rows = app.db.list_subscriptions(app.user_id, pending_only=pending)
    if not rows:
        console.print("[yellow]No subscriptions stored yet. Run `billdrop scan` to find some.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim", width=5)
    table.add_column("Service", max_width=30)
    table.add_column("Amount", justify="right", width=12)
    table.add_column("Cycle", width=8)
    table.add_column("Next billing", width=12)
    table.add_column("Status", width=10)
    table.add_column("Tracked", width=7)
    for row in rows:
        status = "[green]confirmed[/green]" if row.confirmed else "[yellow]pending[/yellow]"
        table.add_row(
            str(row.id),
            row.service_name,
            f"{row.amount:.2f} {row.currency}",
            row.billing_cycle,
            row.next_billing_date or "",
            status,
            "yes" if row.tracked else "no",
        )
    console.print(table)

    monthly = sum(_monthly_cost(r) for r in rows if r.confirmed and r.tracked)
    if monthly:
        console.print(f"\nConfirmed monthly spend: [bold]{monthly:.2f}[/bold] (mixed currencies summed as-is)")


def _monthly_cost(row: Subscription) -> float:
    if row.billing_cycle == "yearly":
        return row.amount / 12
    if row.billing_cycle == "weekly":
        return row.amount * 52 / 12
    return row.amount


@click.command()
@click.argument("subscription_id", type=int)
@click.pass_obj
def confirm(app: AppContext, subscription_id: int) -> None:
    """Confirm a detected subscription."""
    if not app.db.confirm(subscription_id):
        raise click.ClickException(f"No subscription with id {subscription_id}")
    console.print(f"[green]Confirmed subscription {subscription_id}.[/green]")


@click.command()
@click.argument("subscription_id", type=int)
@click.pass_obj
def dismiss(app: AppContext, subscription_id: int) -> None:
    """Dismiss a detected subscription."""
    if not app.db.dismiss(subscription_id):
        raise click.ClickException(f"No subscription with id {subscription_id}")
    console.print(f"Dismissed subscription {subscription_id}.")


@click.command()
@click.argument("subscription_id", type=int)
@click.option("--off", is_flag=True, help="Stop tracking renewals.")
@click.pass_obj
def track(app: AppContext, subscription_id: int, off: bool) -> None:
    """Turn renewal tracking on (or off) for a subscription."""
    if not app.db.set_tracked(subscription_id, not off):
        raise click.ClickException(f"No subscription with id {subscription_id}")
    console.print(f"Tracking {'off' if off else 'on'} for subscription {subscription_id}.")
