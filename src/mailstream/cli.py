from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path

import typer
from bs4 import BeautifulSoup
from dateutil import parser as dt_parser
from rich import print

from mailstream.config import Settings
from mailstream.core.logging import configure_logging, get_logger
from mailstream.core.storage import AttachmentStore
from mailstream.errors import ContentUnavailable
from mailstream.mail import MailConnection, MailMessage
from mailstream.registry import ConnectionRegistry
from mailstream.services import export_messages, run_doctor_checks

app = typer.Typer(no_args_is_help=True, help="mailstream CLI: read IMAP/POP3 mailboxes from named profiles")


def _load_settings(base_dir: Path | None = None) -> Settings:
    settings = Settings.load(base_dir=base_dir)
    settings.ensure_directories()
    return settings


def _build_registry(settings: Settings) -> ConnectionRegistry:
    return ConnectionRegistry(
        settings.profiles,
        keep_alive=settings.keep_alive,
        retry_delay=settings.retry_delay_sec,
        timeout=settings.timeout_sec,
    )


def _parse_since(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = dt_parser.parse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _start(command: str) -> tuple[Settings, ConnectionRegistry]:
    settings = _load_settings()
    correlation_id = uuid.uuid4().hex
    configure_logging(settings.logs_dir, correlation_id=correlation_id, console=False)
    get_logger(f"mailstream.cli.{command}", correlation_id).info("Command %s started", command)
    return settings, _build_registry(settings)


def _connect(registry: ConnectionRegistry, profile: str) -> MailConnection:
    if profile.lower() not in registry.names():
        raise typer.BadParameter(f"Unknown profile: {profile}")
    connection = registry.get_connection(profile)
    if connection is None:
        print(f"[red]Unable to connect[/red] to profile {profile}")
        raise typer.Exit(1)
    return connection


def _select(
    connection: MailConnection,
    query: str,
    since: datetime | None,
    limit: int | None,
    eager: bool,
) -> list[MailMessage]:
    messages = connection.search(query, pull_data=eager)
    selected: list[MailMessage] = []
    for message in messages:
        if limit is not None and len(selected) >= limit:
            break
        if since is not None:
            try:
                sent_at = message.sent_at
            except ContentUnavailable:
                continue
            if sent_at is None:
                continue
            if sent_at.tzinfo is None:
                sent_at = sent_at.replace(tzinfo=timezone.utc)
            if sent_at < since:
                continue
        selected.append(message)
    return selected


def _load_message(connection: MailConnection, number: int) -> MailMessage:
    try:
        return connection.message(number, read_now=True)
    except ContentUnavailable as exc:
        print(f"[red]Message {number} unavailable[/red]: {exc}")
        raise typer.Exit(1) from exc


@app.command("profiles")
def profiles_command() -> None:
    settings = _load_settings()
    if not settings.profiles:
        print("[yellow]No mail profiles configured[/yellow]")
        return
    print("Configured profiles:")
    for name, profile in sorted(settings.profiles.items()):
        print(f"- {name}: {profile.address} mailbox={profile.mailbox}")


@app.command("doctor")
def doctor_command() -> None:
    settings, registry = _start("doctor")
    try:
        checks = run_doctor_checks(settings, registry)
    finally:
        registry.close_all()

    print("Doctor results:")
    for check in checks:
        status = check["status"].upper()
        print(f"- [{status}] {check['check']}: {check['detail']}")


@app.command("search")
def search_command(
    profile: str = typer.Argument(..., help="Profile name"),
    query: str = typer.Option("ALL", help="Search criteria, e.g. 'SUBJECT \"invoice\"'"),
    since: str | None = typer.Option(None, help="Only messages sent at or after this date/time"),
    limit: int | None = typer.Option(None, min=1, help="Maximum number of messages to list"),
    eager: bool = typer.Option(False, "--eager/--lazy", help="Load every message during the search"),
) -> None:
    since_dt = _parse_since(since)
    _, registry = _start("search")
    try:
        connection = _connect(registry, profile)
        messages = _select(connection, query, since_dt, limit, eager)
        if not messages:
            print("[yellow]No messages found[/yellow]")
            return
        for message in messages:
            try:
                flag = " " if message.seen else "*"
                print(f"{flag} {message.message_number:>6}  {message.date}  {message.from_}  {message.subject}")
            except ContentUnavailable:
                print(f"  {message.message_number:>6}  [red]unavailable[/red]")
    finally:
        registry.close_all()


@app.command("show")
def show_command(
    profile: str = typer.Argument(..., help="Profile name"),
    number: int = typer.Argument(..., help="Message number"),
    plain: bool = typer.Option(False, "--plain", help="Render HTML bodies as plain text"),
) -> None:
    _, registry = _start("show")
    try:
        message = _load_message(_connect(registry, profile), number)
        body = message.body
        if plain:
            body = BeautifulSoup(body, "html.parser").get_text("\n")

        print(f"[bold]Subject:[/bold] {message.subject}")
        print(f"[bold]From:[/bold] {message.from_}")
        print(f"[bold]To:[/bold] {message.to}")
        print(f"[bold]Date:[/bold] {message.date}")
        names = ", ".join(a.filename for a in message.attachments)
        if names:
            print(f"[bold]Attachments:[/bold] {names}")
        typer.echo("")
        typer.echo(body)
    finally:
        registry.close_all()


@app.command("attachments")
def attachments_command(
    profile: str = typer.Argument(..., help="Profile name"),
    number: int = typer.Argument(..., help="Message number"),
    out: Path | None = typer.Option(None, help="Attachment root directory"),
) -> None:
    settings, registry = _start("attachments")
    try:
        message = _load_message(_connect(registry, profile), number)
        store = AttachmentStore((out or settings.attachments_dir).resolve())
        saved = store.save_message(profile.lower(), message)
    finally:
        registry.close_all()

    if not saved:
        print("[yellow]Message has no attachments[/yellow]")
        return
    print(f"[green]Saved {len(saved)} attachment(s)[/green]")
    for item in saved:
        marker = " (deduplicated)" if item.reused else ""
        print(f"- {item.filename}: {item.path}{marker}")


@app.command("export")
def export_command(
    profile: str = typer.Argument(..., help="Profile name"),
    format: str = typer.Option("xlsx,csv", help="Comma-separated formats: xlsx,csv"),
    out: Path | None = typer.Option(None, help="Export directory"),
    query: str = typer.Option("ALL", help="Search criteria"),
    since: str | None = typer.Option(None, help="Only messages sent at or after this date/time"),
    limit: int | None = typer.Option(None, min=1, help="Maximum number of messages to export"),
) -> None:
    formats = [item.strip().lower() for item in format.split(",") if item.strip()]
    supported = {"xlsx", "csv"}
    unknown = [item for item in formats if item not in supported]
    if unknown:
        raise typer.BadParameter(f"Unsupported formats: {unknown}")

    since_dt = _parse_since(since)
    settings, registry = _start("export")
    try:
        connection = _connect(registry, profile)
        messages = _select(connection, query, since_dt, limit, eager=False)
        out_dir = (out or settings.exports_dir).resolve()
        files = export_messages(messages, formats=formats, out_dir=out_dir)
    finally:
        registry.close_all()

    print("[green]Export finished[/green]")
    for file_path in files:
        print(f"- {file_path}")


@app.command("delete")
def delete_command(
    profile: str = typer.Argument(..., help="Profile name"),
    number: int = typer.Argument(..., help="Message number"),
    expunge: bool = typer.Option(False, "--expunge", help="Expunge immediately"),
) -> None:
    _, registry = _start("delete")
    try:
        connection = _connect(registry, profile)
        deleted = connection.message(number).delete(expunge=expunge)
    finally:
        # without --expunge the message stays flagged on IMAP and is restored on POP3
        registry.close_all(expunge=expunge)

    if not deleted:
        print(f"[red]Message {number} was not deleted[/red]")
        raise typer.Exit(1)
    if expunge:
        print(f"[green]Message {number} deleted[/green]")
    else:
        print(f"[green]Message {number} marked for deletion[/green]")


if __name__ == "__main__":
    app()
