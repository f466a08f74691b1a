"""
Orderflow CLI - Built with Click.

Commands:
    orderflow worker                      # Run the consumer pool
    orderflow submit-order O1             # Enqueue an order
    orderflow submit-payment O1 -s confirmed
    orderflow status O1                   # Read an order from the store
    orderflow brokers                     # List broker backends

Brokers and stores are picked from the environment (BROKER_TYPE,
RABBITMQ_URL, REDIS_URL) so the same commands work against a local
stack or a deployed one.
"""

import asyncio
import json
import os

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from orderflow.brokers import create_broker_from_env, get_available_brokers
from orderflow.consumers import Dispatcher
from orderflow.core.config import PipelineConfig
from orderflow.core.guard import IdempotencyGuard
from orderflow.core.types import PAYMENT_CONFIRMED, PAYMENT_REJECTED
from orderflow.leases import InMemoryLeaseBackend
from orderflow.leases.redis import RedisLeaseBackend
from orderflow.monitoring import setup_order_logging, start_metrics_server
from orderflow.publisher import OrderEventPublisher
from orderflow.store import InMemoryOrderStore
from orderflow.store.redis import RedisOrderStore

console = Console()


class OrderedGroup(click.Group):
    """Click Group that lists commands in the order they were added."""

    def list_commands(self, ctx):
        return list(self.commands.keys())


@click.group(cls=OrderedGroup)
@click.version_option(version="0.1.0", prog_name="orderflow")
def cli():
    """
    Orderflow - asynchronous order fulfillment pipeline.

    \b
    Commands:
      worker           Run order and payment consumers
      submit-order     Enqueue an order for processing
      submit-payment   Enqueue a payment outcome
      status           Show an order's status
      brokers          List available broker backends
    """


def _build_store(store_type: str):
    if store_type == "redis":
        return RedisOrderStore.from_env()
    return InMemoryOrderStore()


def _build_publisher():
    broker = create_broker_from_env()
    return broker, OrderEventPublisher(broker)


# ============================================================================
# orderflow worker
# ============================================================================


@click.command()
@click.option(
    "--store",
    "store_type",
    type=click.Choice(["redis", "memory"]),
    default="redis",
    show_default=True,
    help="Order store and lease backend",
)
@click.option("--metrics-port", type=int, default=None, help="Expose Prometheus metrics on this port")
@click.option("--log-level", default="INFO", show_default=True)
@click.option("--text-logs", is_flag=True, help="Plain text logs instead of JSON lines")
def worker_cmd(store_type: str, metrics_port: int | None, log_level: str, text_logs: bool):
    """
    Run the consumer pool until SIGTERM/SIGINT.

    \b
    Pool sizes, delays and retry budget come from ORDERFLOW_* variables.
    """
    setup_order_logging(log_level=log_level, json_format=not text_logs)
    config = PipelineConfig.from_env()

    if metrics_port is not None:
        start_metrics_server(metrics_port)

    async def _run() -> None:
        broker = create_broker_from_env()
        store = _build_store(store_type)
        if store_type == "redis":
            leases = RedisLeaseBackend(
                redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
                lease_timeout_seconds=config.lease_timeout_seconds,
            )
        else:
            leases = InMemoryLeaseBackend(config.lease_timeout_seconds)

        await broker.connect()
        await store.initialize()
        try:
            dispatcher = Dispatcher(broker, store, IdempotencyGuard(store, leases), config=config)
            await dispatcher.run_forever()
        finally:
            await broker.close()
            await store.close()
            if hasattr(leases, "close"):
                await leases.close()

    console.print(
        Panel.fit(
            f"[bold blue]Orderflow worker[/bold blue]\n"
            f"order consumers: {config.order_workers}, "
            f"payment consumers: {config.payment_workers}, store: {store_type}",
            border_style="blue",
        )
    )
    asyncio.run(_run())


# ============================================================================
# orderflow submit-order / submit-payment
# ============================================================================


@click.command()
@click.argument("order_id")
@click.option("--payload", default="{}", help="Order payload as a JSON object")
def submit_order_cmd(order_id: str, payload: str):
    """Enqueue ORDER_ID on the order channel."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--payload") from e
    if not isinstance(data, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--payload")

    async def _submit() -> None:
        broker, publisher = _build_publisher()
        await broker.connect()
        try:
            await publisher.submit_order_event(order_id, data)
        finally:
            await broker.close()

    asyncio.run(_submit())
    console.print(f"[green]✓[/green] Order [bold]{order_id}[/bold] submitted")


@click.command()
@click.argument("order_id")
@click.option(
    "-s",
    "--status",
    "payment_status",
    type=click.Choice([PAYMENT_CONFIRMED, PAYMENT_REJECTED]),
    required=True,
    help="Payment outcome",
)
@click.option("--reason", default=None, help="Rejection reason")
@click.option("--amount", type=float, default=None, help="Payment amount")
def submit_payment_cmd(order_id: str, payment_status: str, reason: str | None, amount: float | None):
    """Enqueue a payment outcome for ORDER_ID."""
    payload: dict = {"status": payment_status}
    if reason is not None:
        payload["reason"] = reason
    if amount is not None:
        payload["amount"] = amount

    async def _submit() -> None:
        broker, publisher = _build_publisher()
        await broker.connect()
        try:
            await publisher.submit_payment_event(order_id, payload)
        finally:
            await broker.close()

    asyncio.run(_submit())
    console.print(f"[green]✓[/green] Payment ({payment_status}) for [bold]{order_id}[/bold] submitted")


# ============================================================================
# orderflow status
# ============================================================================


@click.command()
@click.argument("order_id")
def status_cmd(order_id: str):
    """Show the stored status of ORDER_ID."""

    async def _fetch():
        async with RedisOrderStore.from_env() as store:
            return await store.get(order_id)

    order = asyncio.run(_fetch())
    if order is None:
        console.print(f"[red]✗[/red] Order [bold]{order_id}[/bold] not found")
        raise SystemExit(1)

    table = Table(title=f"Order {order_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", order.status.value)
    table.add_row("Version", str(order.version))
    table.add_row("Last error", order.last_error or "-")
    table.add_row("Created", order.created_at.isoformat())
    table.add_row("Updated", order.updated_at.isoformat())
    console.print(table)


# ============================================================================
# orderflow brokers
# ============================================================================


@click.command()
def brokers_cmd():
    """List broker backends usable in this environment."""
    table = Table(title="Brokers")
    table.add_column("Type", style="cyan")
    table.add_column("Status")

    available = get_available_brokers()
    for name in ("memory", "rabbitmq"):
        state = "[green]● available[/green]" if name in available else "[red]○ not installed[/red]"
        table.add_row(name, state)
    console.print(table)


cli.add_command(worker_cmd, name="worker")
cli.add_command(submit_order_cmd, name="submit-order")
cli.add_command(submit_payment_cmd, name="submit-payment")
cli.add_command(status_cmd, name="status")
cli.add_command(brokers_cmd, name="brokers")

if __name__ == "__main__":
    cli()
