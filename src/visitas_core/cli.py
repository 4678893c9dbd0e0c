"""Typer CLI for Visitas-Core."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="visitas", help="Visitas-Core: secure clinical data access")
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Emit JSON logs to stdout"),
):
    if verbose:
        from visitas_core.common.config import get_settings
        from visitas_core.common.logging import setup_logging

        setup_logging(get_settings().log_level)


@app.command("init-db")
def init_db():
    """Create all tables in the configured database."""
    from visitas_core.deps import get_db

    async def _run():
        db = get_db()
        await db.init()
        try:
            await db.create_all()
        finally:
            await db.close()

    asyncio.run(_run())
    console.print("[bold green]Tables created[/bold green]")


@app.command("generate-key")
def generate_key_cmd():
    """Generate a key for the local encryption keyring (offline)."""
    from visitas_core.crypto.keys import generate_key

    console.print(f"[bold]{generate_key()}[/bold]")


@app.command("audit-report")
def audit_report(
    subject: str = typer.Option(None, help="Filter by subject (patient) id"),
    actor: str = typer.Option(None, help="Filter by acting principal"),
    failed: bool = typer.Option(False, "--failed", help="Only failed access attempts"),
    limit: int = typer.Option(50, help="Page size"),
    offset: int = typer.Option(0, help="Page offset"),
):
    """Print one page of audit entries."""
    from visitas_core.common.exceptions import VisitasError
    from visitas_core.deps import get_audit_trail, get_db

    if sum(bool(x) for x in (subject, actor, failed)) != 1:
        console.print("[bold red]Error:[/bold red] pass exactly one of --subject, --actor, --failed")
        raise typer.Exit(2)

    async def _run():
        db = get_db()
        await db.init()
        try:
            trail = get_audit_trail()
            if subject:
                return await trail.get_logs_by_subject(subject, limit, offset)
            if actor:
                return await trail.get_logs_by_actor(actor, limit, offset)
            return await trail.get_failed_access_logs(limit, offset)
        finally:
            await db.close()

    try:
        page = asyncio.run(_run())
    except VisitasError as e:
        console.print(f"[bold red]{e.code}[/bold red]: {e.message}")
        raise typer.Exit(1)

    table = Table(title=f"Audit entries {offset + 1}-{offset + len(page.items)} of {page.total}")
    for column in ("time", "actor", "action", "subject", "resource", "ok"):
        table.add_column(column)
    for entry in page.items:
        table.add_row(
            entry.event_time.isoformat() if entry.event_time else "",
            entry.actor_id,
            entry.action.value,
            entry.subject_id,
            entry.resource_id,
            "yes" if entry.success else f"no ({entry.error_message or ''})",
        )
    console.print(table)


@app.command("audit-verify")
def audit_verify(
    subject: str = typer.Argument(..., help="Subject (patient) id"),
):
    """Check hashes and signatures of every audit entry for a subject."""
    from visitas_core.deps import get_audit_trail, get_db

    async def _run():
        db = get_db()
        await db.init()
        try:
            return await get_audit_trail().verify_entries(subject)
        finally:
            await db.close()

    result = asyncio.run(_run())
    if result.valid:
        console.print(f"[bold green]VALID[/bold green]: {result.entries_checked} entries checked")
    else:
        console.print(
            f"[bold red]TAMPERED[/bold red]: entry {result.break_at} "
            f"(after {result.entries_checked} valid entries)"
        )
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
