"""Command-line interface for trade-store."""

import asyncio
import json
import logging
import sys
from collections.abc import Callable
from datetime import datetime
from typing import Any, TextIO

import click

from .exceptions import TradeNotFoundError, TradeStoreError
from .models import PhysicalTrade, SearchCriteria, parse_instant
from .repository import TradeRepository


def store_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Add the table/region/endpoint options shared by every command."""
    func = click.option(
        "--endpoint-url",
        help=(
            "AWS endpoint URL "
            "(e.g., http://localhost:4566 for LocalStack, or other AWS-compatible services)"
        ),
    )(func)
    func = click.option(
        "--region",
        help="AWS region (default: $TRADE_STORE_REGION or boto3 defaults)",
    )(func)
    func = click.option(
        "--table-name",
        help="DynamoDB table name (default: $TRADE_STORE_TABLE or PHYSICAL_TRADE)",
    )(func)
    return func


def _parse_instant_option(
    ctx: click.Context, param: click.Parameter, value: str | None
) -> datetime | None:
    if value is None:
        return None
    try:
        return parse_instant(value)
    except ValueError:
        raise click.BadParameter(f"'{value}' is not an ISO-8601 timestamp") from None


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2)


@click.group()
@click.version_option(package_name="trade-store")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """trade-store: physical trade persistence on DynamoDB."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("create-table")
@store_options
def create_table(table_name: str | None, region: str | None, endpoint_url: str | None) -> None:
    """Create the DynamoDB table (no-op if it exists)."""

    async def _create() -> None:
        try:
            async with TradeRepository(table_name, region, endpoint_url) as repo:
                click.echo(f"Creating table: {repo.table_name}")
                await repo.create_table()
                click.echo(f"✓ Table '{repo.table_name}' is ready")
        except TradeStoreError as e:
            click.echo(f"✗ Table creation failed: {e}", err=True)
            sys.exit(1)

    asyncio.run(_create())


@cli.command("delete-table")
@store_options
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    help="Skip confirmation prompt",
)
def delete_table(
    table_name: str | None,
    region: str | None,
    endpoint_url: str | None,
    yes: bool,
) -> None:
    """Delete the DynamoDB table and every trade in it."""

    async def _delete() -> None:
        try:
            async with TradeRepository(table_name, region, endpoint_url) as repo:
                if not yes:
                    click.confirm(
                        f"Are you sure you want to delete table '{repo.table_name}'?",
                        abort=True,
                    )
                await repo.delete_table()
                click.echo(f"✓ Table '{repo.table_name}' deleted")
        except TradeStoreError as e:
            click.echo(f"✗ Table deletion failed: {e}", err=True)
            sys.exit(1)

    asyncio.run(_delete())


@cli.command()
@store_options
@click.argument("file", type=click.File("r"))
def put(
    table_name: str | None,
    region: str | None,
    endpoint_url: str | None,
    file: TextIO,
) -> None:
    """
    Save a trade from a JSON FILE ('-' for stdin).

    The document has the shape produced by 'get'. Any trade already
    stored under the same trade_id is replaced.
    """
    try:
        trade = PhysicalTrade.from_dict(json.load(file))
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        click.echo(f"✗ Invalid trade document: {e}", err=True)
        sys.exit(1)

    async def _put() -> None:
        try:
            async with TradeRepository(table_name, region, endpoint_url) as repo:
                await repo.save(trade)
        except TradeStoreError as e:
            click.echo(f"✗ Save failed: {e}", err=True)
            sys.exit(1)
        click.echo(
            f"✓ Saved trade '{trade.id}' "
            f"({len(trade.line_items)} line items, "
            f"{len(trade.settlement_items)} settlement items)"
        )

    asyncio.run(_put())


@cli.command()
@store_options
@click.argument("trade_id")
def get(
    table_name: str | None,
    region: str | None,
    endpoint_url: str | None,
    trade_id: str,
) -> None:
    """Print a trade as JSON."""

    async def _get() -> None:
        try:
            async with TradeRepository(table_name, region, endpoint_url) as repo:
                trade = await repo.get(trade_id)
        except TradeNotFoundError:
            click.echo(f"✗ Trade '{trade_id}' not found", err=True)
            sys.exit(1)
        except TradeStoreError as e:
            click.echo(f"✗ Failed to load trade: {e}", err=True)
            sys.exit(1)
        click.echo(_dump(trade.to_dict()))

    asyncio.run(_get())


@cli.command()
@store_options
@click.argument("trade_id")
def delete(
    table_name: str | None,
    region: str | None,
    endpoint_url: str | None,
    trade_id: str,
) -> None:
    """Delete a trade (no-op if it does not exist)."""

    async def _delete() -> None:
        try:
            async with TradeRepository(table_name, region, endpoint_url) as repo:
                await repo.delete_by_id(trade_id)
        except TradeStoreError as e:
            click.echo(f"✗ Deletion failed: {e}", err=True)
            sys.exit(1)
        click.echo(f"✓ Trade '{trade_id}' deleted")

    asyncio.run(_delete())


@cli.command()
@store_options
@click.option("--tenant", "tenant_id", help="Tenant ID")
@click.option("--business-unit", help="Business unit")
@click.option("--market", help="Market")
@click.option("--trader", "trader_name", help="Trader name")
@click.option("--agreement-id", help="Agreement ID")
@click.option("--commodity", help="Commodity")
@click.option("--transaction-type", help="Transaction type")
@click.option(
    "--trade-date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    help="Trade date (YYYY-MM-DD)",
)
@click.option(
    "--from",
    "trade_time_from",
    callback=_parse_instant_option,
    help="Earliest trade time, inclusive (ISO-8601, naive = UTC)",
)
@click.option(
    "--to",
    "trade_time_to",
    callback=_parse_instant_option,
    help="Latest trade time, inclusive (ISO-8601, naive = UTC)",
)
def search(
    table_name: str | None,
    region: str | None,
    endpoint_url: str | None,
    tenant_id: str | None,
    business_unit: str | None,
    market: str | None,
    trader_name: str | None,
    agreement_id: str | None,
    commodity: str | None,
    transaction_type: str | None,
    trade_date: datetime | None,
    trade_time_from: datetime | None,
    trade_time_to: datetime | None,
) -> None:
    """
    Print matching trades as a JSON array.

    All given filters must match. This scans the whole table.
    """
    criteria = SearchCriteria(
        tenant_id=tenant_id,
        business_unit=business_unit,
        market=market,
        trader_name=trader_name,
        agreement_id=agreement_id,
        commodity=commodity,
        transaction_type=transaction_type,
        trade_date=trade_date.date() if trade_date else None,
        trade_time_from=trade_time_from,
        trade_time_to=trade_time_to,
    )

    async def _search() -> None:
        try:
            async with TradeRepository(table_name, region, endpoint_url) as repo:
                trades = await repo.search(criteria)
        except TradeStoreError as e:
            click.echo(f"✗ Search failed: {e}", err=True)
            sys.exit(1)
        click.echo(_dump([trade.to_dict() for trade in trades]))

    asyncio.run(_search())


if __name__ == "__main__":
    cli()
