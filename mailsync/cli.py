"""
Command Line Interface for mail synchronization.

Usage:
    mailsync sync <principal_id>
    mailsync sync --all
    mailsync status [principal_id]
    mailsync check <principal_id>
"""

import argparse
import asyncio
import logging
import sys
from typing import Any, Callable, Dict, List, Optional, Tuple

from rich.console import Console
from rich.table import Table

from .config import load_settings
from .credentials import StorageCredentialSupplier
from .exceptions import MailSyncError
from .models import Credential, SyncResult
from .providers.base import MailService
from .providers.gmail import GmailService
from .storage import EmailStorage
from .sync import build_orchestrator

logger = logging.getLogger(__name__)
console = Console()


def display_results(results: Dict[str, SyncResult]) -> None:
    """Display run summaries."""
    table = Table(show_header=True, header_style="bold magenta", title="Sync Results")
    table.add_column("Principal", style="dim")
    table.add_column("State")
    table.add_column("Success", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Checkpoint")

    for principal_id, result in results.items():
        state = "[green]ok[/green]" if result.success else "[red]failed[/red]"
        table.add_row(
            principal_id,
            state,
            str(result.success_count),
            str(result.error_count),
            str(result.total_count),
            result.checkpoint.isoformat() if result.checkpoint else "-",
        )
    console.print(table)

    for principal_id, result in results.items():
        if result.reauth_required:
            console.print(
                f"[yellow]{principal_id}: reauthentication required[/yellow] ({result.error})"
            )
        elif not result.success:
            console.print(f"[red]{principal_id}: {result.error}[/red]")


def display_status(storage: EmailStorage, principal_id: Optional[str] = None) -> None:
    """Display principals, their checkpoints and recent runs."""
    principals = storage.get_all_principals()
    if principal_id:
        principals = [p for p in principals if p['id'] == principal_id]
    if not principals:
        console.print("[yellow]No principals found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta", title="Principals")
    table.add_column("Principal", style="dim")
    table.add_column("Email")
    table.add_column("Last sync")
    table.add_column("Emails", justify="right")
    table.add_column("Attachments", justify="right")
    for principal in principals:
        stats = storage.get_email_stats(principal['id'])
        table.add_row(
            principal['id'],
            principal.get('email') or "-",
            principal.get('last_email_sync') or "never",
            str(stats['total_emails']),
            str(stats['attachment_count']),
        )
    console.print(table)

    history = storage.get_sync_history(principal_id, limit=10)
    if history:
        log_table = Table(show_header=True, header_style="bold magenta", title="Recent Runs")
        log_table.add_column("Principal", style="dim")
        log_table.add_column("Started")
        log_table.add_column("Status")
        log_table.add_column("Success / Total", justify="right")
        log_table.add_column("Error")
        for entry in history:
            log_table.add_row(
                entry['principal_id'],
                entry['started_at'],
                entry['status'],
                f"{entry['success_count']} / {entry['total_count']}",
                entry.get('error_message') or "",
            )
        console.print(log_table)


def check_connection(
    storage: EmailStorage,
    principal_id: str,
    mail_factory: Callable[[Credential], MailService]
) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """
    Confirm a principal's token works before syncing.

    Returns:
        (mailbox profile, labels)

    Raises:
        PrincipalNotFoundError, CredentialError or RemoteServiceError
    """
    credential = StorageCredentialSupplier(storage).get_credential(principal_id)
    mail = mail_factory(credential)
    profile = mail.get_profile()
    labels = mail.list_labels()
    logger.info(f"Connection check passed for {principal_id} ({profile.get('emailAddress')})")
    return profile, labels


def display_connection(principal_id: str, profile: Dict[str, Any], labels: List[Dict[str, Any]]) -> None:
    """Display the result of a successful connection check."""
    console.print(f"[green]Connection successful[/green] for {principal_id}")
    console.print(f"Email: {profile.get('emailAddress', '-')}")
    console.print(f"Messages total: {profile.get('messagesTotal', 0)}")
    console.print(f"Threads total: {profile.get('threadsTotal', 0)}")

    table = Table(show_header=True, header_style="bold magenta", title="Gmail Labels")
    table.add_column("Name")
    table.add_column("Id", style="dim")
    for label in labels:
        table.add_row(label.get('name', ''), label.get('id', ''))
    console.print(table)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mailsync", description="Synchronize Gmail inboxes")
    parser.add_argument("--config", help="Path to config.ini")
    parser.add_argument("--log-level", help="Override the configured log level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Run a synchronization")
    target = sync_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("principal_id", nargs="?", help="Principal to synchronize")
    target.add_argument("--all", action="store_true", help="Synchronize every principal")

    status_parser = subparsers.add_parser("status", help="Show checkpoints and recent runs")
    status_parser.add_argument("principal_id", nargs="?")

    check_parser = subparsers.add_parser("check", help="Verify a principal's Gmail connection")
    check_parser.add_argument("principal_id")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.config)

    logging.basicConfig(
        level=getattr(logging, (args.log_level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    storage = EmailStorage(settings.db_path)

    if args.command == "status":
        display_status(storage, args.principal_id)
        return 0

    if args.command == "check":
        try:
            profile, labels = check_connection(
                storage,
                args.principal_id,
                lambda credential: GmailService(credential, timeout=settings.request_timeout)
            )
        except MailSyncError as e:
            console.print(f"[red]Gmail connection test failed for {args.principal_id}:[/red] {e}")
            return 1
        display_connection(args.principal_id, profile, labels)
        return 0

    orchestrator = build_orchestrator(settings, storage=storage)
    if args.all:
        results = asyncio.run(orchestrator.run_sync_all())
    else:
        result = asyncio.run(orchestrator.run_sync(args.principal_id))
        results = {args.principal_id: result}

    display_results(results)
    return 0 if all(r.success for r in results.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
