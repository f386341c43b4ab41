"""FormFlow Collector CLI - operator entry point."""

from __future__ import annotations

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from .config import settings
from .database import build_engine, build_session_factory

app = typer.Typer(
    name="formflow-collector",
    help="FormFlow Collector - public form submission service",
    no_args_is_help=True,
)
console = Console()


async def _run_with_session(fn):
    """Run ``fn(session)`` against a fresh engine for ``settings.database_url``."""
    engine = build_engine()
    try:
        session_factory = build_session_factory(engine)
        async with session_factory() as session:
            return await fn(session)
    finally:
        await engine.dispose()


@app.command("serve")
def serve(
    port: int = typer.Option(8030, "--port", "-p", help="Port to run on"),
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Launch the collector API."""
    import uvicorn

    console.print(f"[bold cyan]Starting FormFlow Collector at http://{host}:{port}[/bold cyan]")
    uvicorn.run("collector.app:app", host=host, port=port, reload=reload)


@app.command("init-db")
def init_db():
    """Create all tables for the configured database."""
    from .models import Base

    async def _init():
        engine = build_engine()
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        finally:
            await engine.dispose()

    asyncio.run(_init())
    console.print("[green]Database initialized.[/green]")


@app.command("create-org")
def create_org(
    name: str = typer.Argument(..., help="Organization name"),
    slug: str = typer.Option(None, "--slug", "-s", help="URL slug (defaults to name)"),
):
    """Create an organization."""
    from .services import form_svc

    org_slug = slug or name.strip().lower().replace(" ", "-")
    org = asyncio.run(
        _run_with_session(lambda db: form_svc.create_organization(db, name=name, slug=org_slug))
    )
    console.print(f"[green]Organization created:[/green] {org.slug} ({org.id})")


@app.command("create-form")
def create_form(
    org_slug: str = typer.Argument(..., help="Owning organization slug"),
    name: str = typer.Argument(..., help="Form name"),
    slug: str = typer.Option(None, "--slug", "-s", help="Form slug (defaults to name)"),
    csrf: bool = typer.Option(False, "--csrf/--no-csrf", help="Require CSRF tokens"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Create a form and print its public submit hash."""
    from .services import form_svc

    form_slug = slug or name.strip().lower().replace(" ", "-")

    async def _create(db):
        org = await form_svc.get_organization_by_slug(db, org_slug)
        if org is None:
            return None
        return await form_svc.create_form(
            db, org.id, name=name, slug=form_slug, csrf_enabled=csrf
        )

    form = asyncio.run(_run_with_session(_create))
    if form is None:
        console.print(f"[red]Organization not found: {org_slug}[/red]")
        raise typer.Exit(1)

    if json_output:
        console.print_json(json.dumps({
            "id": str(form.id),
            "slug": form.slug,
            "submitHash": form.submit_hash,
            "csrfEnabled": form.csrf_enabled,
        }))
        return

    table = Table(title="Form created")
    table.add_column("Slug", style="cyan")
    table.add_column("Submit hash", style="green")
    table.add_column("CSRF", style="yellow")
    table.add_row(form.slug, form.submit_hash, "on" if form.csrf_enabled else "off")
    console.print(table)


@app.command("whitelist-add")
def whitelist_add(
    org_slug: str = typer.Argument(..., help="Organization slug"),
    domain: str = typer.Argument(..., help="Domain allowed to submit"),
):
    """Allow submissions from origins containing DOMAIN."""
    from .services import form_svc

    async def _add(db):
        org = await form_svc.get_organization_by_slug(db, org_slug)
        if org is None:
            return None
        return await form_svc.add_whitelisted_domain(db, org.id, domain)

    entry = asyncio.run(_run_with_session(_add))
    if entry is None:
        console.print(f"[red]Organization not found: {org_slug}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Whitelisted[/green] {entry.domain} for {org_slug}")


@app.command("csrf-token")
def csrf_token(
    submit_hash: str = typer.Argument(..., help="Form submit hash"),
    origin: str = typer.Argument(..., help="Origin the token is bound to"),
):
    """Issue a CSRF token locally (debugging aid)."""
    from .security.csrf import CsrfConfig, CsrfNotConfigured, issue_csrf_token

    config = CsrfConfig.from_settings(settings)
    try:
        token = issue_csrf_token(config, submit_hash, origin)
    except CsrfNotConfigured:
        console.print("[red]COLLECTOR_CSRF_SECRET is not set.[/red]")
        raise typer.Exit(1)
    console.print(token, soft_wrap=True)
    console.print(f"[dim]Expires in {config.ttl_seconds} seconds[/dim]")
