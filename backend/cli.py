"""
Kiosk CLI.

Command-line interface for local operation: database setup, demo data,
the expiry sweep, and watching orders and stock.
"""

import asyncio
import sys
from pathlib import Path

# Add backend to path for imports
sys.path.insert(0, str(Path(__file__).parent))

import httpx
import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="kiosk",
    help="Self-service kiosk management CLI",
    add_completion=False,
)
console = Console()


def _cents(value: int | None) -> str:
    return "-" if value is None else f"{value / 100:.2f}"


# =============================================================================
# Database Commands
# =============================================================================

@app.command()
def init_db():
    """Create all tables."""
    from shared.infrastructure.db import engine
    from rest_api.models import Base

    Base.metadata.create_all(bind=engine)
    console.print("[green]✓ Tables created[/green]")


@app.command()
def seed_demo(
    store_id: str = typer.Option("demo", help="Store id to create"),
    access_token: str = typer.Option(None, help="Store's own Mercado Pago access token"),
    device_id: str = typer.Option(None, help="Store's Point terminal id"),
):
    """Create a demo store with a small catalog."""
    from shared.infrastructure.db import get_db_context
    from rest_api.seed import seed_demo as _seed

    with get_db_context() as db:
        store = _seed(db, store_id=store_id, access_token=access_token, device_id=device_id)
        console.print(f"[green]✓ Store '{store.id}' ready[/green]")


# =============================================================================
# Order Commands
# =============================================================================

@app.command()
def sweep_expired(
    minutes: int = typer.Option(None, help="Payment window in minutes (default from settings)"),
):
    """Run one expiry sweep: cancel orders still unpaid after the payment window."""
    from shared.infrastructure.db import SessionLocal
    from rest_api.services.payments.cache import get_payment_cache
    from rest_api.services.payments.credentials import get_gateway_factory
    from rest_api.services.payments.reconciliation import ReconciliationEngine

    engine = ReconciliationEngine(SessionLocal, get_gateway_factory(), get_payment_cache())
    expired = asyncio.run(engine.expire_stale(timeout_minutes=minutes))

    if not expired:
        console.print("[green]✓ No stale orders[/green]")
        return
    for order_id in expired:
        console.print(f"[yellow]expired[/yellow] {order_id}")
    console.print(f"[green]✓ {len(expired)} order(s) expired, stock released[/green]")


@app.command()
def kitchen_queue(
    store_id: str = typer.Argument(..., help="Store id"),
):
    """Show the kitchen feed for a store."""
    from shared.infrastructure.db import get_db_context
    from rest_api.services.domain.kitchen_service import KitchenService

    with get_db_context() as db:
        orders = KitchenService(db).list_queue(store_id)

        table = Table(title=f"Kitchen queue - {store_id}")
        table.add_column("Order", style="cyan")
        table.add_column("Customer")
        table.add_column("Items")
        table.add_column("Status", style="green")
        table.add_column("Paid at", style="yellow")

        for order in orders:
            items = ", ".join(f"{i.quantity}x {i.product_name}" for i in order.items)
            paid_at = order.paid_at.strftime("%H:%M:%S") if order.paid_at else "-"
            table.add_row(order.id, order.customer_name, items, order.status, paid_at)

    console.print(table)
    if not orders:
        console.print("[yellow]No orders waiting[/yellow]")


@app.command()
def watch_payment(
    order_id: str = typer.Argument(..., help="Order id"),
    store_id: str = typer.Option(..., "--store", "-s", help="Store id"),
    api_url: str = typer.Option("http://localhost:8000", help="REST API base URL"),
    interval: float = typer.Option(3.0, help="Seconds between polls"),
    timeout: float = typer.Option(300.0, help="Give up after this many seconds"),
):
    """Poll an order's payment until it settles, like the kiosk payment screen."""
    from shared.utils.polling import poll_until

    async def _watch():
        async with httpx.AsyncClient(
            base_url=api_url,
            headers={"X-Store-Id": store_id},
            timeout=10.0,
        ) as client:

            async def fetch() -> dict:
                response = await client.get(f"/api/orders/{order_id}/payment")
                response.raise_for_status()
                return response.json()

            def show(body: dict) -> None:
                note = " (processing)" if body.get("processing") else ""
                console.print(f"[blue]{body['status']}[/blue]{note}")

            return await poll_until(
                fetch=fetch,
                is_terminal=lambda body: body["status"] != "pending",
                interval=interval,
                timeout=timeout,
                on_result=show,
            )

    result = asyncio.run(_watch())

    if result.timed_out:
        console.print(f"[red]✗ Still pending after {timeout:.0f}s[/red]")
        raise typer.Exit(1)
    body = result.value or {}
    if body.get("status") == "approved":
        console.print(f"[green]✓ Paid ({result.attempts} polls)[/green]")
    else:
        console.print(f"[red]✗ {body.get('status')}: {body.get('message') or body.get('reason')}[/red]")
        raise typer.Exit(1)


@app.command()
def stock(
    store_id: str = typer.Argument(..., help="Store id"),
):
    """Show stock, reservations and availability per product."""
    from shared.infrastructure.db import get_db_context
    from rest_api.repositories import ProductRepository

    with get_db_context() as db:
        products = ProductRepository(db).list_for_store(store_id)

        table = Table(title=f"Stock - {store_id}")
        table.add_column("ID", style="cyan")
        table.add_column("Product")
        table.add_column("Price", justify="right")
        table.add_column("Stock", justify="right")
        table.add_column("Reserved", justify="right", style="yellow")
        table.add_column("Available", justify="right", style="green")

        for p in products:
            unlimited = p.stock is None
            table.add_row(
                str(p.id),
                p.name,
                _cents(p.price_cents),
                "∞" if unlimited else str(p.stock),
                str(p.stock_reserved),
                "∞" if unlimited else str(p.available),
            )

    console.print(table)


if __name__ == "__main__":
    app()
