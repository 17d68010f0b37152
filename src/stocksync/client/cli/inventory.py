"""Inventory commands for stocksync CLI.

Commands:
- warehouse add|list|rename|delete
- product add|list|delete|set-quantity

Changes are saved locally first and pushed right after when the remote is
configured and a user is logged in.
"""

from __future__ import annotations

import sys

import click

from stocksync.client.cli.app import open_app
from stocksync.client.inventory import InventoryError, RecordNotFoundError
from stocksync.client.sync.domain import Product


@click.group()
def warehouse() -> None:
    """Manage warehouses."""


@warehouse.command("add")
@click.argument("name")
@click.option("--qr-only", is_flag=True, help="Products are scanned by QR code only.")
def warehouse_add(name: str, qr_only: bool) -> None:
    """Create a warehouse called NAME."""
    with open_app() as app:
        created = app.inventory.add_warehouse(name, qr_only=qr_only)
        click.echo(f"Created warehouse {created.id}")
        app.push_changes()


@warehouse.command("list")
def warehouse_list() -> None:
    """List warehouses."""
    with open_app(with_remote=False) as app:
        warehouses = sorted(app.inventory.warehouses(), key=lambda w: w.name.casefold())
        if not warehouses:
            click.echo("No warehouses.")
            return
        for item in warehouses:
            count = len(app.inventory.warehouse_products(item.id))
            flag = " [qr-only]" if item.qr_only else ""
            click.echo(f"{item.id}  {item.name}{flag}  ({count} products)")


@warehouse.command("rename")
@click.argument("warehouse_id")
@click.argument("name")
def warehouse_rename(warehouse_id: str, name: str) -> None:
    """Rename a warehouse."""
    with open_app() as app:
        try:
            app.inventory.update_warehouse(warehouse_id, name=name)
        except RecordNotFoundError:
            click.echo(f"Error: Warehouse {warehouse_id} not found.", err=True)
            sys.exit(1)
        click.echo(f"Renamed warehouse {warehouse_id}")
        app.push_changes()


@warehouse.command("delete")
@click.argument("warehouse_id")
@click.option("--force", is_flag=True, help="Skip confirmation prompt.")
def warehouse_delete(warehouse_id: str, force: bool) -> None:
    """Delete a warehouse and all of its products."""
    with open_app() as app:
        target = app.inventory.get_warehouse(warehouse_id)
        if target is None:
            click.echo(f"Error: Warehouse {warehouse_id} not found.", err=True)
            sys.exit(1)
        count = len(app.inventory.warehouse_products(warehouse_id))
        if not force and not click.confirm(f"Delete '{target.name}' and its {count} products?"):
            return
        app.inventory.delete_warehouse(warehouse_id)
        click.echo(f"Deleted warehouse {warehouse_id}")
        app.push_changes()


@click.group()
def product() -> None:
    """Manage products."""


@product.command("add")
@click.argument("warehouse_id")
@click.option("--name", "internal_name", required=True, help="Internal product name.")
@click.option("--customer-name", default="", help="Name used by the customer.")
@click.option("--barcode", default="", help="Barcode, unique within the warehouse.")
@click.option("--location", default="", help="Storage location (e.g. A12).")
@click.option("--min", "min_amount", type=int, default=0, help="Minimum stock.")
@click.option("--max", "max_amount", type=int, default=0, help="Maximum stock.")
@click.option("--quantity", type=int, default=0, help="Current stock.")
def product_add(
    warehouse_id: str,
    internal_name: str,
    customer_name: str,
    barcode: str,
    location: str,
    min_amount: int,
    max_amount: int,
    quantity: int,
) -> None:
    """Create a product in WAREHOUSE_ID."""
    with open_app() as app:
        try:
            created = app.inventory.add_product(
                warehouse_id,
                internal_name=internal_name,
                customer_name=customer_name,
                barcode=barcode,
                location=location,
                min_amount=min_amount,
                max_amount=max_amount,
                quantity=quantity,
            )
        except RecordNotFoundError:
            click.echo(f"Error: Warehouse {warehouse_id} not found.", err=True)
            sys.exit(1)
        except InventoryError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        click.echo(f"Created product {created.id}")
        app.push_changes()


def _format_product(item: Product) -> str:
    barcode = item.barcode or "-"
    location = item.location or "-"
    return (
        f"{item.id}  {item.internal_name}  barcode={barcode}  location={location}  "
        f"qty={item.quantity} (min {item.min_amount}, max {item.max_amount})"
    )


@product.command("list")
@click.argument("warehouse_id")
@click.option(
    "--filter",
    "only",
    type=click.Choice(["all", "no-barcode", "below-min", "overstock"]),
    default="all",
    show_default=True,
    help="Restrict the listing.",
)
def product_list(warehouse_id: str, only: str) -> None:
    """List products of WAREHOUSE_ID."""
    with open_app(with_remote=False) as app:
        inventory = app.inventory
        if inventory.get_warehouse(warehouse_id) is None:
            click.echo(f"Error: Warehouse {warehouse_id} not found.", err=True)
            sys.exit(1)
        if only == "no-barcode":
            items = inventory.products_without_barcode(warehouse_id)
        elif only == "below-min":
            items = inventory.products_below_min(warehouse_id)
        elif only == "overstock":
            items = inventory.products_overstock(warehouse_id)
        else:
            items = sorted(
                inventory.warehouse_products(warehouse_id),
                key=lambda p: p.internal_name.casefold(),
            )
        if not items:
            click.echo("No products.")
            return
        for item in items:
            click.echo(_format_product(item))


@product.command("delete")
@click.argument("product_id")
def product_delete(product_id: str) -> None:
    """Delete a product."""
    with open_app() as app:
        try:
            app.inventory.delete_product(product_id)
        except RecordNotFoundError:
            click.echo(f"Error: Product {product_id} not found.", err=True)
            sys.exit(1)
        click.echo(f"Deleted product {product_id}")
        app.push_changes()


@product.command("set-quantity")
@click.argument("product_id")
@click.argument("quantity", type=int)
def product_set_quantity(product_id: str, quantity: int) -> None:
    """Set the stock of a product."""
    if quantity < 0:
        click.echo("Error: Quantity cannot be negative.", err=True)
        sys.exit(1)
    with open_app() as app:
        try:
            app.inventory.update_product(product_id, quantity=quantity)
        except RecordNotFoundError:
            click.echo(f"Error: Product {product_id} not found.", err=True)
            sys.exit(1)
        click.echo(f"Quantity of {product_id} set to {quantity}")
        app.push_changes()
