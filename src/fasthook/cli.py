"""FastHook server CLI."""

import asyncio
import json
import logging
import subprocess
import sys
import uuid
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from fasthook import __version__
from fasthook.config import get_settings
from fasthook.signing import DEFAULT_TOLERANCE

app = typer.Typer(
    name="fasthook",
    help="FastHook - Outgoing webhook delivery service",
    no_args_is_help=True,
)

console = Console()

# Subcommands
db_app = typer.Typer(help="Database management commands")
endpoint_app = typer.Typer(help="Endpoint management commands")
delivery_app = typer.Typer(help="Delivery inspection commands")
event_app = typer.Typer(help="Event commands")
signature_app = typer.Typer(help="Signature helpers for receivers")

app.add_typer(db_app, name="db")
app.add_typer(endpoint_app, name="endpoint")
app.add_typer(delivery_app, name="delivery")
app.add_typer(event_app, name="event")
app.add_typer(signature_app, name="signature")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the CLI and server processes."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    # Per-request lines come from fasthook.access instead
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def run_async(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


def _parse_uuid(value: str, what: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        console.print(f"[red]Invalid {what} ID: {value}[/red]")
        raise typer.Exit(1) from None


@app.command()
def serve(
    api_only: bool = typer.Option(False, "--api-only", help="Run only API server"),
    worker_only: bool = typer.Option(False, "--worker-only", help="Run only webhook workers"),
    shutdown_timeout: int = typer.Option(
        30, "--shutdown-timeout", help="Timeout for graceful shutdown in seconds"
    ),
):
    """Start the FastHook server."""
    import signal

    import uvicorn

    from fasthook.main import create_app
    from fasthook.webhook import WorkerPool

    if api_only and worker_only:
        console.print("[red]--api-only and --worker-only are mutually exclusive[/red]")
        raise typer.Exit(1)

    settings = get_settings()
    configure_logging(settings.log_level)

    async def run_all():
        uvicorn_server: uvicorn.Server | None = None
        worker_pool: WorkerPool | None = None
        shutdown_event = asyncio.Event()

        loop = asyncio.get_running_loop()

        def signal_handler(sig: signal.Signals) -> None:
            """Handle OS signals."""
            console.print(f"\n[yellow]Received {sig.name}, shutting down...[/yellow]")
            shutdown_event.set()
            if uvicorn_server is not None:
                uvicorn_server.should_exit = True

        # Register signal handlers (Unix only)
        try:
            loop.add_signal_handler(signal.SIGTERM, lambda: signal_handler(signal.SIGTERM))
            loop.add_signal_handler(signal.SIGINT, lambda: signal_handler(signal.SIGINT))
        except NotImplementedError:
            pass

        api_task: asyncio.Task | None = None

        if not worker_only:
            config = uvicorn.Config(
                create_app(settings),
                host=settings.api_host,
                port=settings.api_port,
                log_level=settings.log_level.lower(),
            )
            uvicorn_server = uvicorn.Server(config)
            api_task = asyncio.create_task(uvicorn_server.serve())
            console.print(
                f"[green]API server started on {settings.api_host}:{settings.api_port}[/green]"
            )

        if not api_only:
            worker_pool = WorkerPool(settings)
            worker_pool.start()
            console.print(f"[green]{worker_pool.count} webhook worker(s) started[/green]")

        if api_task is not None:
            # The API server may also exit on its own signal handling
            await api_task
        else:
            await shutdown_event.wait()

        if worker_pool is not None:
            console.print("[dim]Stopping webhook workers...[/dim]")
            try:
                await asyncio.wait_for(worker_pool.stop(), timeout=shutdown_timeout)
            except TimeoutError:
                console.print("[red]Shutdown timed out, forcing exit[/red]")

        console.print("[green]Shutdown complete[/green]")

    try:
        asyncio.run(run_all())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")


@app.command()
def version():
    """Show version information."""
    console.print(f"FastHook version {__version__}")


@app.command()
def show_config():
    """Show current configuration."""
    settings = get_settings()

    table = Table(title="FastHook Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for field_name in type(settings).model_fields:
        value = getattr(settings, field_name)
        # Hide sensitive values
        if "key" in field_name.lower() or "secret" in field_name.lower():
            value = "********"
        table.add_row(field_name, str(value))

    console.print(table)


# Database commands


@db_app.command("upgrade")
def db_upgrade(
    revision: str = typer.Argument("head", help="Revision to upgrade to"),
):
    """Upgrade database to a revision."""
    _run_alembic("upgrade", revision)


@db_app.command("downgrade")
def db_downgrade(
    revision: str = typer.Argument(..., help="Revision to downgrade to"),
):
    """Downgrade database to a revision."""
    _run_alembic("downgrade", revision)


@db_app.command("current")
def db_current():
    """Show current database revision."""
    _run_alembic("current")


@db_app.command("history")
def db_history():
    """Show revision history."""
    _run_alembic("history")


def _run_alembic(*args):
    """Run alembic command."""
    project_dir = Path(__file__).parent.parent.parent
    alembic_ini = project_dir / "alembic.ini"

    if not alembic_ini.exists():
        console.print(f"[red]alembic.ini not found at {alembic_ini}[/red]")
        raise typer.Exit(1)

    cmd = ["alembic", "-c", str(alembic_ini), *args]
    result = subprocess.run(cmd, cwd=project_dir)
    if result.returncode != 0:
        raise typer.Exit(result.returncode)


# Endpoint commands


@endpoint_app.command("register")
def endpoint_register(
    url: str = typer.Argument(..., help="Endpoint URL"),
    event_types: list[str] = typer.Option(
        ..., "--event", "-e", help="Event type to subscribe to (repeatable, '*' for all)"
    ),
    description: str = typer.Option(None, "--description", "-d", help="Description"),
    owner: str = typer.Option(None, "--owner", help="Owner reference"),
):
    """Register an endpoint and print its signing secret."""
    from fasthook.db.session import async_session
    from fasthook.errors import ValidationError
    from fasthook.webhook import SubscriptionRegistry

    async def register():
        async with async_session() as session:
            registry = SubscriptionRegistry(session)
            try:
                endpoint = await registry.register(
                    url, event_types, description=description, owner=owner
                )
            except ValidationError as e:
                console.print(f"[red]{e}[/red]")
                raise typer.Exit(1) from e
            secret = registry.secret_for(endpoint)
            await session.commit()

            console.print(f"[green]Registered endpoint {endpoint.id}[/green]")
            console.print(f"Signing secret: [bold]{secret}[/bold]")
            console.print("[yellow]Store this secret; it will not be shown again[/yellow]")

    run_async(register())


@endpoint_app.command("list")
def endpoint_list(
    include_disabled: bool = typer.Option(
        True, "--include-disabled/--enabled-only", help="Show disabled endpoints"
    ),
):
    """List endpoints."""
    from fasthook.db.session import async_session
    from fasthook.webhook import SubscriptionRegistry

    async def list_endpoints():
        async with async_session() as session:
            endpoints = await SubscriptionRegistry(session).list_endpoints(
                include_disabled=include_disabled
            )

            table = Table(title="Endpoints")
            table.add_column("ID", style="dim")
            table.add_column("URL", style="cyan")
            table.add_column("Event types")
            table.add_column("Enabled")

            for endpoint in endpoints:
                table.add_row(
                    str(endpoint.id),
                    endpoint.url,
                    ", ".join(endpoint.event_types),
                    "✓" if endpoint.is_enabled else "✗",
                )

            console.print(table)

    run_async(list_endpoints())


def _endpoint_action(endpoint_id: str, action: str) -> None:
    from fasthook.db.session import async_session
    from fasthook.errors import NotFoundError
    from fasthook.webhook import SubscriptionRegistry

    target = _parse_uuid(endpoint_id, "endpoint")

    async def apply():
        async with async_session() as session:
            registry = SubscriptionRegistry(session)
            try:
                if action == "disable":
                    await registry.disable(target)
                    console.print(f"[green]Disabled endpoint {target}[/green]")
                elif action == "enable":
                    await registry.enable(target)
                    console.print(f"[green]Enabled endpoint {target}[/green]")
                else:
                    secret = await registry.rotate_secret(target)
                    console.print(f"[green]Rotated secret for endpoint {target}[/green]")
                    console.print(f"New signing secret: [bold]{secret}[/bold]")
            except NotFoundError as e:
                console.print(f"[red]{e}[/red]")
                raise typer.Exit(1) from e
            await session.commit()

    run_async(apply())


@endpoint_app.command("disable")
def endpoint_disable(endpoint_id: str = typer.Argument(..., help="Endpoint ID")):
    """Disable an endpoint."""
    _endpoint_action(endpoint_id, "disable")


@endpoint_app.command("enable")
def endpoint_enable(endpoint_id: str = typer.Argument(..., help="Endpoint ID")):
    """Re-enable an endpoint."""
    _endpoint_action(endpoint_id, "enable")


@endpoint_app.command("rotate-secret")
def endpoint_rotate_secret(endpoint_id: str = typer.Argument(..., help="Endpoint ID")):
    """Rotate an endpoint's signing secret."""
    _endpoint_action(endpoint_id, "rotate")


# Delivery commands


@delivery_app.command("show")
def delivery_show(delivery_id: str = typer.Argument(..., help="Delivery ID")):
    """Show a delivery's state."""
    from fasthook.db.models import Delivery
    from fasthook.db.session import async_session

    target = _parse_uuid(delivery_id, "delivery")

    async def show():
        async with async_session() as session:
            delivery = await session.get(Delivery, target)
            if delivery is None:
                console.print(f"[red]Delivery {target} not found[/red]")
                raise typer.Exit(1)

            table = Table(title=f"Delivery {delivery.id}", show_header=False)
            table.add_column("Field", style="cyan")
            table.add_column("Value")
            for field_name in (
                "event_id",
                "endpoint_id",
                "status",
                "attempts",
                "next_attempt_at",
                "last_status_code",
                "last_error",
                "completed_at",
                "created_at",
            ):
                value = getattr(delivery, field_name)
                table.add_row(field_name, "" if value is None else str(value))
            console.print(table)

    run_async(show())


@delivery_app.command("history")
def delivery_history(delivery_id: str = typer.Argument(..., help="Delivery ID")):
    """Show the attempt log of a delivery."""
    from fasthook.db.session import async_session
    from fasthook.errors import NotFoundError
    from fasthook.webhook import get_history

    target = _parse_uuid(delivery_id, "delivery")

    async def history():
        async with async_session() as session:
            try:
                attempts = await get_history(session, target)
            except NotFoundError as e:
                console.print(f"[red]{e}[/red]")
                raise typer.Exit(1) from e

            table = Table(title=f"Attempts for {target}")
            table.add_column("#", justify="right")
            table.add_column("At")
            table.add_column("Outcome", style="cyan")
            table.add_column("Status")
            table.add_column("Latency (ms)", justify="right")
            table.add_column("Error")

            for attempt in attempts:
                table.add_row(
                    str(attempt.attempt_number),
                    attempt.created_at.isoformat(),
                    attempt.outcome,
                    str(attempt.status_code or attempt.error_kind or ""),
                    f"{attempt.latency_ms:.1f}",
                    attempt.error or "",
                )
            console.print(table)

    run_async(history())


# Event commands


@event_app.command("submit")
def event_submit(
    event_type: str = typer.Argument(..., help="Event type, e.g. order.created"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload"),
    event_id: str = typer.Option(None, "--id", help="Event ID for idempotent submission"),
):
    """Submit an event for delivery."""
    from fasthook.db.session import async_session
    from fasthook.errors import FastHookError
    from fasthook.webhook import submit_event

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        console.print(f"[red]Payload is not valid JSON: {e}[/red]")
        raise typer.Exit(1) from e
    target = _parse_uuid(event_id, "event") if event_id else None

    async def submit():
        async with async_session() as session:
            try:
                submitted = await submit_event(session, event_type, data, event_id=target)
            except FastHookError as e:
                console.print(f"[red]{e}[/red]")
                raise typer.Exit(1) from e
            await session.commit()

            if not submitted.created:
                console.print(f"[yellow]Event {submitted.event.id} was already submitted[/yellow]")
            console.print(
                f"[green]Event {submitted.event.id}: "
                f"{len(submitted.deliveries)} delivery(ies) queued[/green]"
            )
            for delivery in submitted.deliveries:
                console.print(f"  {delivery.id} -> {delivery.endpoint_id}")

    run_async(submit())


# Signature commands


@signature_app.command("sign")
def signature_sign(
    secret: str = typer.Option(..., "--secret", "-s", help="Endpoint signing secret"),
    body_file: Path = typer.Argument(..., help="File holding the exact request body"),
    timestamp: int = typer.Option(None, "--timestamp", "-t", help="Unix timestamp to sign"),
    encoding: str = typer.Option("hex", "--encoding", help="hex or base64"),
):
    """Compute the X-Webhook-Signature header for a body."""
    from fasthook.signing import SIGNATURE_PREFIX, sign

    signature = sign(secret, body_file.read_bytes(), timestamp, encoding)
    console.print(f"X-Webhook-Timestamp: {signature.timestamp}")
    console.print(f"X-Webhook-Signature: {SIGNATURE_PREFIX}{signature.value}")


@signature_app.command("verify")
def signature_verify(
    secret: str = typer.Option(..., "--secret", "-s", help="Endpoint signing secret"),
    body_file: Path = typer.Argument(..., help="File holding the exact request body"),
    timestamp: str = typer.Option(..., "--timestamp", "-t", help="X-Webhook-Timestamp value"),
    signature: str = typer.Option(..., "--signature", help="X-Webhook-Signature value"),
    tolerance: int = typer.Option(
        DEFAULT_TOLERANCE, "--tolerance", help="Freshness window in seconds"
    ),
    encoding: str = typer.Option("hex", "--encoding", help="hex or base64"),
):
    """Verify a received webhook signature."""
    from fasthook.signing import verify

    valid = verify(
        secret,
        body_file.read_bytes(),
        timestamp,
        signature,
        tolerance=tolerance,
        encoding=encoding,
    )
    if valid:
        console.print("[green]Signature is valid[/green]")
    else:
        console.print("[red]Signature is NOT valid[/red]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
