#!/usr/bin/env python3
"""
Inventory Engine — CLI entry point.

Usage examples:
  python main.py orders my-shop                     # List purchase orders (newest first)
  python main.py orders my-shop --status partial    # Only partially received orders
  python main.py stats my-shop --year 2025          # PO counts and values
  python main.py expiring my-shop --days 7          # Active lots expiring within a week
  python main.py expired my-shop                    # Lots past their expiry date
  python main.py mark-expired my-shop               # Flip active past-expiry lots to expired
  python main.py stock my-shop prod_42              # Stock total, average cost and history
  python main.py serve --port 8000                  # Run the HTTP API
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional

import click

from config import Config
from inventory.engine import InventoryEngine
from inventory.errors import InventoryError


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quieten noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _engine(ctx: click.Context) -> InventoryEngine:
    config = Config()
    if ctx.obj.get("data_dir"):
        config.data_dir = ctx.obj["data_dir"]
        config.stock_db_path = config.data_dir / "stock.db"
    return InventoryEngine(config)


def _run(coro):
    """Run an engine coroutine, turning engine errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except InventoryError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option(
    "--data-dir", default=None, type=click.Path(file_okay=False, path_type=Path),
    help="Data directory (default: DATA_DIR env var or ./data)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, data_dir: Optional[Path]) -> None:
    """Inventory Engine — purchase orders, lots and stock cost."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["data_dir"] = data_dir
    _setup_logging(verbose)


# --------------------------------------------------------------------
# Purchase orders
# --------------------------------------------------------------------

@cli.command()
@click.argument("shop")
@click.option("--year", "-y", default=None, type=int, help="Only orders from this year")
@click.option("--status", "-s", default=None, help="Filter by status (draft, sent, ...)")
@click.option("--supplier", default=None, help="Filter by supplier id")
@click.option("--limit", "-n", default=None, type=int, help="Maximum orders to list")
@click.pass_context
def orders(
    ctx: click.Context,
    shop: str,
    year: Optional[int],
    status: Optional[str],
    supplier: Optional[str],
    limit: Optional[int],
) -> None:
    """List purchase orders of SHOP, newest first."""
    engine = _engine(ctx)
    pos = _run(engine.list_purchase_orders(
        shop, year=year, status=status, supplier_id=supplier, limit=limit
    ))
    if not pos:
        click.echo("No purchase orders found.")
        return

    click.echo()
    for po in pos:
        received = po.total_received_grams
        ordered = po.total_ordered_grams
        click.echo(
            f"  {po.number:<14} {po.status.value:<10} "
            f"{(po.supplier_name or po.supplier_id or '-')[:28]:<28} "
            f"{po.currency} {po.total:>10.2f}   {received:g}/{ordered:g} g"
        )
    click.echo(f"\n  {len(pos)} order(s)")


@cli.command()
@click.argument("shop")
@click.option("--year", "-y", default=None, type=int, help="Restrict to one year")
@click.pass_context
def stats(ctx: click.Context, shop: str, year: Optional[int]) -> None:
    """Show purchase order counts and values for SHOP."""
    engine = _engine(ctx)
    s = _run(engine.purchase_order_stats(shop, year))

    click.echo("\n=== Purchase Orders ===\n")
    click.echo(f"  Total orders:   {s.total}")
    for status, count in s.by_status.items():
        if count:
            click.echo(f"    {status:<12} {count}")
    click.echo(f"  Total value:    {s.total_value:.2f}")
    click.echo(f"  Pending value:  {s.pending_value:.2f}")
    click.echo()


# --------------------------------------------------------------------
# Lots
# --------------------------------------------------------------------

@cli.command()
@click.argument("shop")
@click.option("--days", "-d", default=None, type=int,
              help="Horizon in days (default: EXPIRING_SOON_DAYS or 30)")
@click.pass_context
def expiring(ctx: click.Context, shop: str, days: Optional[int]) -> None:
    """List active lots of SHOP expiring soon."""
    engine = _engine(ctx)
    lots = _run(engine.get_expiring_soon(shop, days))
    if not lots:
        click.echo("  ✓ No lots expiring soon")
        return
    for lot in lots:
        click.echo(
            f"  ⚠ {lot.id}  {lot.product_id:<20} {lot.grams:>10g} g  "
            f"expires {lot.expiry_date.isoformat()} ({lot.expiry_type.value})"
        )


@cli.command()
@click.argument("shop")
@click.pass_context
def expired(ctx: click.Context, shop: str) -> None:
    """List lots of SHOP past their expiry date."""
    engine = _engine(ctx)
    lots = _run(engine.get_expired_batches(shop))
    if not lots:
        click.echo("  ✓ No expired lots")
        return
    for lot in lots:
        click.echo(
            f"  ✗ {lot.id}  {lot.product_id:<20} {lot.grams:>10g} g  "
            f"expired {lot.expiry_date.isoformat()}  [{lot.status.value}]"
        )


@cli.command("mark-expired")
@click.argument("shop")
@click.pass_context
def mark_expired(ctx: click.Context, shop: str) -> None:
    """Mark active lots of SHOP past their expiry date as expired."""
    engine = _engine(ctx)
    marked = _run(engine.mark_expired_batches(shop))
    click.echo(f"  Marked {len(marked)} lot(s) expired")
    for batch_id in marked:
        click.echo(f"    {batch_id}")


# --------------------------------------------------------------------
# Stock
# --------------------------------------------------------------------

@cli.command()
@click.argument("shop")
@click.argument("product_id")
@click.option("--history", "-n", default=10, type=int, help="Movements to show")
@click.pass_context
def stock(ctx: click.Context, shop: str, product_id: str, history: int) -> None:
    """Show stock total, average cost and recent movements of PRODUCT_ID."""
    engine = _engine(ctx)
    state = _run(engine.get_cost_state(shop, product_id))

    click.echo()
    click.echo(f"  Product:       {product_id}")
    click.echo(f"  Total:         {state.total_grams:g} g")
    click.echo(f"  Average cost:  {state.average_cost_per_gram:.4f} / g")

    if history > 0:
        moves = _run(engine.list_movements(shop, product_id, history))
        if moves:
            click.echo("\n  Recent movements:")
            for m in moves:
                click.echo(
                    f"    {m.timestamp:%Y-%m-%d %H:%M}  {m.source:<12} "
                    f"{m.grams_delta:>+10g} g  → {m.total_after:g} g @ {m.average_cost_after:.4f}"
                )
    click.echo()


# --------------------------------------------------------------------
# serve command
# --------------------------------------------------------------------

@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", "-p", default=8000, type=int, help="Port")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from api.app import create_app

    app = create_app(engine=_engine(ctx))
    click.echo(f"\n  Serving inventory API on http://{host}:{port}/api/health\n")
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    cli()
