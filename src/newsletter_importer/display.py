"""Rich-based display and logging setup for Newsletter Importer."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .models import CandidateMessage, ClassificationResult, DomainPreview, EmailAccount, SyncResult
from .rules import RuleSet

console = Console()

_CONFIDENCE_COLORS = {"high": "green", "medium": "yellow", "low": "red"}


def configure_logging(verbose: bool = False) -> None:
    """Route package logging through a RichHandler on the shared console."""
    handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    root = logging.getLogger("newsletter_importer")
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.propagate = False


def _confidence_color(confidence: str) -> str:
    return _CONFIDENCE_COLORS.get(confidence, "white")


def _fmt_date(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def create_progress(description: str) -> Progress:
    """Create a configured Rich Progress bar."""
    return Progress(
        SpinnerColumn(),
        TextColumn(f"[bold blue]{description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    )


def display_domain_previews(previews: list[DomainPreview]) -> None:
    """Show one row per sender domain found by a preview run."""
    if not previews:
        console.print("[yellow]No newsletter domains found.[/yellow]")
        return

    table = Table(title="Newsletter Domains")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Domain")
    table.add_column("Messages", justify="right")
    table.add_column("Sample subject")
    table.add_column("Sender")
    table.add_column("Date")
    table.add_column("Score", justify="right")
    table.add_column("Confidence")

    for idx, preview in enumerate(previews, start=1):
        sample = preview.sample
        color = _confidence_color(sample.confidence)
        table.add_row(
            str(idx),
            f"[bold]{preview.domain}[/bold]",
            str(preview.message_count),
            sample.subject,
            sample.sender_email,
            _fmt_date(sample.date),
            f"[{color}]{sample.score}[/{color}]",
            f"[{color}]{sample.confidence}[/{color}]",
        )

    console.print(table)
    console.print(
        "[dim]Add the domains you want with 'whitelist add', then run 'sync --whitelist'.[/dim]"
    )


def display_classification(message: CandidateMessage, result: ClassificationResult, threshold: int) -> None:
    """Explain why a single message was or wasn't considered a newsletter."""
    color = _confidence_color(result.confidence)
    verdict = "[green]accept[/green]" if result.score >= threshold else "[red]reject[/red]"

    lines = [
        f"[bold]From:[/bold] {message.from_header or message.from_address}",
        f"[bold]Subject:[/bold] {message.subject}",
        f"[bold]Score:[/bold] [{color}]{result.score}[/{color}]",
        f"[bold]Confidence:[/bold] [{color}]{result.confidence}[/{color}]",
        f"[bold]Verdict at {threshold}:[/bold] {verdict}",
    ]
    if result.reasons:
        lines.append("")
        lines.append("[bold]Reasons:[/bold]")
        for reason in result.reasons:
            lines.append(f"  - {reason}")

    console.print(Panel("\n".join(lines), title="Classification"))


def display_accounts(accounts: list[EmailAccount]) -> None:
    if not accounts:
        console.print("[dim]No email accounts connected.[/dim]")
        return

    table = Table(title="Email Accounts")
    table.add_column("ID", justify="right")
    table.add_column("User", justify="right")
    table.add_column("Provider")
    table.add_column("Email")
    table.add_column("Last synced")
    table.add_column("Sync")
    table.add_column("Newsletter mode")

    for account in accounts:
        table.add_row(
            str(account.id),
            str(account.user_id),
            account.provider,
            account.email,
            _fmt_date(account.last_synced_at),
            "[green]on[/green]" if account.sync_enabled else "[dim]off[/dim]",
            "[green]on[/green]" if account.newsletter_mode else "[dim]off[/dim]",
        )

    console.print(table)


def display_sync_result(result: SyncResult) -> None:
    """Display a summary after a commit sync."""
    lines = [
        f"Candidates: {result.candidates}  |  Classified: {result.classified}  |  "
        f"Accepted: {result.accepted}",
        f"[bold green]Imported: {result.imported}[/bold green]  |  "
        f"Already present: {result.skipped_existing}  |  Failed: {result.failed}",
    ]
    if result.relabeled:
        lines.append(f"Moved to newsletters at provider: {result.relabeled}")
    console.print(Panel("\n".join(lines), title=f"Sync account {result.account_id}"))


def display_imported_counts(counts: dict[str, int]) -> None:
    if not counts:
        console.print("[dim]No newsletters imported yet.[/dim]")
        return

    table = Table(title="Imported Newsletters by Sender")
    table.add_column("Sender")
    table.add_column("Count", justify="right")
    for sender, count in counts.items():
        table.add_row(sender, str(count))
    console.print(table)


def display_rules(rules: RuleSet) -> None:
    table = Table(title=f"Scoring Rules ({rules.source})")
    table.add_column("Check")
    table.add_column("Points", justify="right")
    for name, points in rules.weights.items():
        color = "red" if points < 0 else "green"
        table.add_row(name, f"[{color}]{points:+d}[/{color}]")
    console.print(table)
    console.print(
        f"[dim]{len(rules.non_newsletter)} disqualifying patterns, "
        f"{len(rules.strong_indicators)} strong indicators, "
        f"{len(rules.personal_domains)} personal domains.[/dim]"
    )
