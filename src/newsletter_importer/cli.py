"""CLI entry point for Newsletter Importer."""

from __future__ import annotations

from pathlib import Path

import click
from dotenv import load_dotenv

from . import __version__, constants
from .auth import TokenManager, build_authorize_url, exchange_code, fetch_account_email, run_gmail_local_flow
from .classifier import classify
from .display import (
    configure_logging,
    console,
    create_progress,
    display_accounts,
    display_classification,
    display_domain_previews,
    display_imported_counts,
    display_rules,
    display_sync_result,
)
from .errors import NewsletterImporterError
from .export import export_newsletters, export_previews
from .mime import candidate_from_bytes
from .models import EmailAccount
from .rules import load_rules
from .store import NewsletterStore
from .sync import SyncOrchestrator


def _rules():
    return load_rules(constants.RULES_PATH) if constants.RULES_PATH.exists() else None


def _orchestrator(store: NewsletterStore) -> SyncOrchestrator:
    return SyncOrchestrator(store, TokenManager(store), rules=_rules())


@click.group()
@click.version_option(version=__version__, prog_name="newsletter-importer")
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging.")
def cli(verbose: bool) -> None:
    """Newsletter Importer - find newsletters in Gmail/Outlook and import them once."""
    load_dotenv(constants.ENV_PATH)
    configure_logging(verbose)


# --- accounts ---


@cli.group(name="accounts")
def accounts_group() -> None:
    """Connect and manage email accounts."""


@accounts_group.command(name="add")
@click.option("--provider", type=click.Choice(constants.PROVIDERS), required=True)
@click.option("--user-id", default=1, type=int, show_default=True, help="Owning user id.")
@click.option("--code", default=None, help="Authorization code from the provider redirect.")
def accounts_add(provider: str, user_id: int, code: str | None) -> None:
    """Connect a mailbox through OAuth."""
    try:
        if code:
            grant = exchange_code(provider, code)
        elif provider == constants.PROVIDER_GMAIL:
            grant = run_gmail_local_flow()
        else:
            console.print("Open this URL, grant access, and paste the 'code' parameter of the redirect:")
            console.print(build_authorize_url(provider), soft_wrap=True)
            grant = exchange_code(provider, click.prompt("Authorization code").strip())
        address = fetch_account_email(provider, grant.access_token)
    except NewsletterImporterError as e:
        raise click.ClickException(str(e)) from e

    if not grant.refresh_token:
        raise click.ClickException("Provider did not return a refresh token; re-consent and try again.")

    with NewsletterStore() as store:
        account = store.add_account(
            EmailAccount(
                id=None,
                user_id=user_id,
                provider=provider,
                email=address,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                token_expires_at=grant.expires_at,
            )
        )
    console.print(f"[green]Connected {provider} account {address} (id {account.id}).[/green]")


@accounts_group.command(name="list")
def accounts_list() -> None:
    """List connected accounts."""
    with NewsletterStore() as store:
        display_accounts(store.list_accounts())


@accounts_group.command(name="remove")
@click.argument("account_id", type=int)
@click.option("--delete-newsletters", is_flag=True, help="Also delete newsletters imported from it.")
def accounts_remove(account_id: int, delete_newsletters: bool) -> None:
    """Remove a connected account."""
    with NewsletterStore() as store:
        if store.get_account(account_id) is None:
            raise click.ClickException(f"Email account {account_id} not found.")
        try:
            store.delete_account(account_id, delete_newsletters=delete_newsletters)
        except NewsletterImporterError as e:
            raise click.ClickException(str(e)) from e
    console.print(f"[green]Removed account {account_id}.[/green]")


@accounts_group.command(name="toggle")
@click.argument("account_id", type=int)
@click.option("--sync/--no-sync", "sync_enabled", default=None, help="Include in scheduled syncs.")
@click.option("--newsletter-mode/--no-newsletter-mode", default=None, help="Move imported mail at the provider.")
def accounts_toggle(account_id: int, sync_enabled: bool | None, newsletter_mode: bool | None) -> None:
    """Change per-account sync settings."""
    with NewsletterStore() as store:
        if store.get_account(account_id) is None:
            raise click.ClickException(f"Email account {account_id} not found.")
        if sync_enabled is not None:
            store.set_sync_enabled(account_id, sync_enabled)
        if newsletter_mode is not None:
            store.set_newsletter_mode(account_id, newsletter_mode)
        display_accounts([store.get_account(account_id)])


# --- sync ---


@cli.command()
@click.argument("account_id", type=int)
@click.option("--threshold", default=constants.PREVIEW_THRESHOLD, type=int, show_default=True)
@click.option("--format", "fmt", type=click.Choice(["csv", "json"]), default="csv", help="Export format.")
@click.option("-o", "--output", default=None, help="Also export the domains to this file.")
def preview(account_id: int, threshold: int, fmt: str, output: str | None) -> None:
    """Find newsletter candidates and list their sender domains (imports nothing)."""
    with NewsletterStore() as store:
        orchestrator = _orchestrator(store)
        try:
            with create_progress("Classifying") as progress:
                task = progress.add_task("classifying", total=None)

                def on_chunk(chunk_num: int, total: int) -> None:
                    progress.update(task, completed=chunk_num, total=total)

                previews = orchestrator.preview_newsletters(account_id, threshold=threshold, progress=on_chunk)
        except NewsletterImporterError as e:
            raise click.ClickException(str(e)) from e

    display_domain_previews(previews)
    if output:
        count = export_previews(previews, format=fmt, output_path=output)
        console.print(f"Saved {count} domains to {output}")


@cli.command()
@click.argument("account_id", type=int)
@click.option("-d", "--domain", "domains", multiple=True, help="Only import from this sender domain.")
@click.option("-s", "--sender", "senders", multiple=True, help="Only import from this sender address.")
@click.option("--whitelist", "use_whitelist", is_flag=True, help="Only import from the saved domain whitelist.")
@click.option("--threshold", default=constants.COMMIT_THRESHOLD, type=int, show_default=True)
def sync(
    account_id: int,
    domains: tuple[str, ...],
    senders: tuple[str, ...],
    use_whitelist: bool,
    threshold: int,
) -> None:
    """Import newsletters from an account."""
    with NewsletterStore() as store:
        account = store.get_account(account_id)
        if account is None:
            raise click.ClickException(f"Email account {account_id} not found.")

        accepted_domains = list(domains) if domains else None
        if use_whitelist:
            accepted_domains = (accepted_domains or []) + store.list_whitelisted_domains(account.user_id)

        orchestrator = _orchestrator(store)
        try:
            with create_progress("Importing") as progress:
                task = progress.add_task("importing", total=None)

                def on_chunk(chunk_num: int, total: int) -> None:
                    progress.update(task, completed=chunk_num, total=total)

                result = orchestrator.sync_newsletters(
                    account_id,
                    accepted_domains=accepted_domains,
                    accepted_senders=list(senders) if senders else None,
                    threshold=threshold,
                    progress=on_chunk,
                )
        except NewsletterImporterError as e:
            raise click.ClickException(str(e)) from e

    display_sync_result(result)


@cli.command(name="sync-all")
def sync_all() -> None:
    """Import newsletters from every account with sync enabled."""
    with NewsletterStore() as store:
        results = _orchestrator(store).sync_all()

    if not results:
        console.print("[dim]No accounts with sync enabled.[/dim]")
        return
    for account_id, result in results.items():
        if isinstance(result, Exception):
            console.print(f"[red]Account {account_id}: {result}[/red]")
        else:
            display_sync_result(result)


# --- diagnostics ---


@cli.command(name="classify")
@click.argument("eml_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--threshold", default=constants.COMMIT_THRESHOLD, type=int, show_default=True)
def classify_cmd(eml_file: Path, threshold: int) -> None:
    """Score a saved .eml message and explain the result."""
    try:
        rules = _rules()
    except NewsletterImporterError as e:
        raise click.ClickException(str(e)) from e
    message = candidate_from_bytes(eml_file.read_bytes(), message_id=eml_file.name)
    display_classification(message, classify(message, rules), threshold)


@cli.group(name="rules")
def rules_group() -> None:
    """Inspect the scoring rules."""


@rules_group.command(name="show")
def rules_show() -> None:
    """Show the active scoring weights."""
    try:
        rules = _rules() or load_rules()
    except NewsletterImporterError as e:
        raise click.ClickException(str(e)) from e
    display_rules(rules)


# --- whitelist ---


@cli.group(name="whitelist")
def whitelist_group() -> None:
    """Manage the sender domains allowed on whitelist syncs."""


@whitelist_group.command(name="add")
@click.argument("domains", nargs=-1, required=True)
@click.option("--user-id", default=1, type=int, show_default=True)
def whitelist_add(domains: tuple[str, ...], user_id: int) -> None:
    """Allow one or more sender domains."""
    with NewsletterStore() as store:
        for domain in domains:
            if store.add_whitelisted_domain(user_id, domain):
                console.print(f"[green]Added {domain.lower()}[/green]")
            else:
                console.print(f"[dim]{domain.lower()} already whitelisted[/dim]")


@whitelist_group.command(name="list")
@click.option("--user-id", default=1, type=int, show_default=True)
def whitelist_list(user_id: int) -> None:
    """List whitelisted domains."""
    with NewsletterStore() as store:
        domains = store.list_whitelisted_domains(user_id)
    if not domains:
        console.print("[dim]Whitelist is empty.[/dim]")
        return
    for domain in domains:
        console.print(domain)


@whitelist_group.command(name="remove")
@click.argument("domain")
@click.option("--user-id", default=1, type=int, show_default=True)
def whitelist_remove(domain: str, user_id: int) -> None:
    """Remove a domain from the whitelist."""
    with NewsletterStore() as store:
        removed = store.remove_whitelisted_domain(user_id, domain)
    if not removed:
        raise click.ClickException(f"{domain} is not whitelisted.")
    console.print(f"[green]Removed {domain.lower()}[/green]")


# --- reporting ---


@cli.command()
@click.argument("account_id", type=int)
def counts(account_id: int) -> None:
    """Show how many newsletters were imported per sender."""
    with NewsletterStore() as store:
        if store.get_account(account_id) is None:
            raise click.ClickException(f"Email account {account_id} not found.")
        display_imported_counts(store.imported_counts(account_id))


@cli.command(name="export")
@click.argument("account_id", type=int)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["csv", "json"]),
    default="csv",
    help="Output format.",
)
@click.option("-o", "--output", required=True, help="Output file path.")
def export_cmd(account_id: int, fmt: str, output: str) -> None:
    """Export imported newsletters to CSV or JSON."""
    with NewsletterStore() as store:
        newsletters = store.list_newsletters(account_id)

    if not newsletters:
        raise click.ClickException(f"No newsletters imported for account {account_id}.")

    count = export_newsletters(newsletters, format=fmt, output_path=output)
    console.print(f"Saved {count} newsletters to {output}")
