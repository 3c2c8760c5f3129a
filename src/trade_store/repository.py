"""DynamoDB repository for physical trades.

A trade is stored as one partition: a header item, one item per line item
and one item per settlement item. Saving replaces the whole partition
(delete, then chunked transactional puts). The guarantees are:

- each write chunk of up to MAX_TX_ITEMS items is atomic
- nothing is atomic across chunks or across the delete/write boundary,
  so a concurrent reader may see a partial or empty trade mid-save
- concurrent saves of the same trade race; the last write phase wins
- nothing is retried here; save and delete_by_id are idempotent, so
  callers retry the whole operation on StoreUnavailableError
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import aioboto3  # type: ignore[import-untyped]
from botocore.exceptions import BotoCoreError, ClientError

from . import schema
from .builder import build_items, reconstruct, validate_trade
from .config import resolve_endpoint_url, resolve_region, resolve_table_name
from .exceptions import StoreUnavailableError, TradeNotFoundError, ValidationError
from .models import PhysicalTrade, SearchCriteria

logger = logging.getLogger(__name__)

_STORE_ERRORS = (ClientError, BotoCoreError)

# SearchCriteria field -> header attribute, for store-side equality filters
SEARCH_FILTER_ATTRIBUTES: tuple[tuple[str, str], ...] = (
    ("tenant_id", schema.ATTR_TENANT_ID),
    ("business_unit", "business_unit"),
    ("market", "market"),
    ("trader_name", "trader_name"),
    ("agreement_id", "agreement_id"),
    ("commodity", "commodity"),
    ("transaction_type", "transaction_type"),
    ("trade_date", "trade_date"),
)


def build_header_filter(
    criteria: SearchCriteria,
) -> tuple[str, dict[str, str], dict[str, Any]]:
    """
    Build the scan filter for header items matching ``criteria``.

    Only equality conjunctions are produced. The trade time range cannot be
    expressed here and is applied by matches_time_range().

    Returns:
        Tuple of (FilterExpression, ExpressionAttributeNames,
        ExpressionAttributeValues)
    """
    clauses = ["#entity = :header"]
    names = {"#entity": schema.ATTR_ENTITY_TYPE}
    values: dict[str, Any] = {":header": {"S": schema.ENTITY_HEADER}}

    for i, (field_name, attr) in enumerate(SEARCH_FILTER_ATTRIBUTES):
        value = getattr(criteria, field_name)
        if value is None:
            continue
        if field_name == "trade_date":
            value = value.isoformat()
        elif not value.strip():
            continue
        names[f"#attr{i}"] = attr
        values[f":val{i}"] = {"S": value}
        clauses.append(f"#attr{i} = :val{i}")

    return " AND ".join(clauses), names, values


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def matches_time_range(trade: PhysicalTrade, criteria: SearchCriteria) -> bool:
    """
    Check the inclusive trade time range of ``criteria`` against a trade.

    A trade without trade_time never matches once a bound is given.
    """
    if not criteria.has_time_range:
        return True
    trade_time = trade.header.trade_time
    if trade_time is None:
        return False
    trade_time = _as_utc(trade_time)
    if criteria.trade_time_from is not None and trade_time < _as_utc(criteria.trade_time_from):
        return False
    if criteria.trade_time_to is not None and trade_time > _as_utc(criteria.trade_time_to):
        return False
    return True


def _require_trade_id(trade_id: str) -> None:
    if not trade_id or not trade_id.strip():
        raise ValidationError("trade_id", trade_id, "Must not be blank")


class TradeRepository:
    """
    Async DynamoDB repository for physical trades.

    Settings not given explicitly are read from TRADE_STORE_TABLE,
    TRADE_STORE_REGION and TRADE_STORE_ENDPOINT_URL.

    Example:
        async with TradeRepository(region="us-east-1") as repo:
            await repo.save(trade)
            stored = await repo.find_by_id(trade.id)
    """

    def __init__(
        self,
        table_name: str | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self.table_name = resolve_table_name(table_name)
        self.region = resolve_region(region)
        self.endpoint_url = resolve_endpoint_url(endpoint_url)
        self._session: aioboto3.Session | None = None
        self._client: Any = None

    async def _get_client(self) -> Any:
        """Get or create the DynamoDB client."""
        if self._client is None:
            self._session = aioboto3.Session()
            self._client = await self._session.client(
                "dynamodb",
                region_name=self.region,
                endpoint_url=self.endpoint_url,
            ).__aenter__()
        return self._client

    async def close(self) -> None:
        """Close the DynamoDB client."""
        if self._client is not None:
            await self._client.__aexit__(None, None, None)
            self._client = None
            self._session = None

    async def __aenter__(self) -> "TradeRepository":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _store_error(
        self,
        message: str,
        cause: Exception | None,
        *,
        operation: str,
        trade_id: str | None = None,
        chunk: int | None = None,
        total_chunks: int | None = None,
    ) -> StoreUnavailableError:
        """Log a failed round trip and wrap it for the caller."""
        error = StoreUnavailableError(
            message,
            cause,
            operation=operation,
            trade_id=trade_id,
            table_name=self.table_name,
            chunk=chunk,
            total_chunks=total_chunks,
        )
        logger.warning("%s", error, exc_info=cause)
        return error

    # -------------------------------------------------------------------------
    # Table operations
    # -------------------------------------------------------------------------

    async def create_table(self) -> None:
        """Create the DynamoDB table if it doesn't exist."""
        definition = schema.get_table_definition(self.table_name)
        try:
            client = await self._get_client()
            await client.create_table(**definition)
            # Wait for table to be active
            waiter = client.get_waiter("table_exists")
            await waiter.wait(TableName=self.table_name)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceInUseException":
                logger.debug("Table %s already exists", self.table_name)
                return
            raise self._store_error("CreateTable failed", e, operation="create_table") from e
        except BotoCoreError as e:
            raise self._store_error("CreateTable failed", e, operation="create_table") from e
        logger.info("Created table %s", self.table_name)

    async def delete_table(self) -> None:
        """Delete the DynamoDB table."""
        try:
            client = await self._get_client()
            await client.delete_table(TableName=self.table_name)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceNotFoundException":
                logger.debug("Table %s does not exist", self.table_name)
                return
            raise self._store_error("DeleteTable failed", e, operation="delete_table") from e
        except BotoCoreError as e:
            raise self._store_error("DeleteTable failed", e, operation="delete_table") from e
        logger.info("Deleted table %s", self.table_name)

    # -------------------------------------------------------------------------
    # Store round trips
    # -------------------------------------------------------------------------

    async def _query_partition(
        self,
        trade_id: str,
        operation: str,
        keys_only: bool = False,
    ) -> list[dict[str, Any]]:
        """Fetch every item of a trade's partition, following pagination."""
        query_kwargs: dict[str, Any] = {
            "TableName": self.table_name,
            "KeyConditionExpression": "#pk = :pk",
            "ExpressionAttributeNames": {"#pk": schema.ATTR_PK},
            "ExpressionAttributeValues": {":pk": {"S": trade_id}},
            "ConsistentRead": True,
        }
        if keys_only:
            query_kwargs["ProjectionExpression"] = "#pk, #sk"
            query_kwargs["ExpressionAttributeNames"]["#sk"] = schema.ATTR_SK

        items: list[dict[str, Any]] = []
        pages = 0
        exclusive_start_key = None
        while True:
            if exclusive_start_key:
                query_kwargs["ExclusiveStartKey"] = exclusive_start_key

            try:
                client = await self._get_client()
                response = await client.query(**query_kwargs)
            except _STORE_ERRORS as e:
                raise self._store_error(
                    "Query failed", e, operation=operation, trade_id=trade_id
                ) from e

            pages += 1
            items.extend(response.get("Items", []))

            exclusive_start_key = response.get("LastEvaluatedKey")
            if not exclusive_start_key:
                break

        logger.debug(
            "Queried trade %s: %d item(s) in %d page(s)", trade_id, len(items), pages
        )
        return items

    async def _batch_delete(
        self,
        trade_id: str,
        items: list[dict[str, Any]],
        operation: str,
    ) -> None:
        """Delete items by key in non-atomic BatchWriteItem chunks."""
        delete_requests = [
            {
                "DeleteRequest": {
                    "Key": {
                        schema.ATTR_PK: item[schema.ATTR_PK],
                        schema.ATTR_SK: item[schema.ATTR_SK],
                    }
                }
            }
            for item in items
        ]
        chunks = schema.chunked(delete_requests, schema.MAX_BATCH_ITEMS)

        for index, chunk in enumerate(chunks, start=1):
            try:
                client = await self._get_client()
                response = await client.batch_write_item(RequestItems={self.table_name: chunk})
            except _STORE_ERRORS as e:
                raise self._store_error(
                    "BatchWriteItem failed",
                    e,
                    operation=operation,
                    trade_id=trade_id,
                    chunk=index,
                    total_chunks=len(chunks),
                ) from e

            unprocessed = response.get("UnprocessedItems", {}).get(self.table_name)
            if unprocessed:
                raise self._store_error(
                    f"BatchWriteItem left {len(unprocessed)} delete request(s) unprocessed",
                    None,
                    operation=operation,
                    trade_id=trade_id,
                    chunk=index,
                    total_chunks=len(chunks),
                )
            logger.debug(
                "Deleted chunk %d/%d of trade %s (%d item(s))",
                index,
                len(chunks),
                trade_id,
                len(chunk),
            )

    async def _write_in_transactions(
        self,
        trade_id: str,
        items: list[dict[str, Any]],
        operation: str,
    ) -> int:
        """
        Put items in TransactWriteItems chunks, one chunk at a time.

        Returns:
            Number of chunks written
        """
        chunks = schema.chunked(items, schema.MAX_TX_ITEMS)

        for index, chunk in enumerate(chunks, start=1):
            transact_items = [
                {"Put": {"TableName": self.table_name, "Item": item}} for item in chunk
            ]
            try:
                client = await self._get_client()
                await client.transact_write_items(TransactItems=transact_items)
            except _STORE_ERRORS as e:
                raise self._store_error(
                    "TransactWriteItems failed",
                    e,
                    operation=operation,
                    trade_id=trade_id,
                    chunk=index,
                    total_chunks=len(chunks),
                ) from e
            logger.debug(
                "Wrote chunk %d/%d of trade %s (%d item(s))",
                index,
                len(chunks),
                trade_id,
                len(chunk),
            )

        return len(chunks)

    async def _delete_partition(self, trade_id: str, operation: str) -> int:
        """Delete every item of a trade. Returns the number of items removed."""
        items = await self._query_partition(trade_id, operation, keys_only=True)
        if not items:
            return 0
        await self._batch_delete(trade_id, items, operation)
        return len(items)

    # -------------------------------------------------------------------------
    # Trade operations
    # -------------------------------------------------------------------------

    async def save(self, trade: PhysicalTrade) -> PhysicalTrade:
        """
        Store a trade, replacing anything previously stored under its ID.

        The previous items are deleted first and the new items are then
        written in transactional chunks of MAX_TX_ITEMS. Chunk N+1 is only
        sent after chunk N succeeded.

        Args:
            trade: Trade to store

        Returns:
            The trade that was stored

        Raises:
            ValidationError: If the trade is invalid (no store call is made)
            StoreUnavailableError: If a round trip fails
        """
        validate_trade(trade)
        items = build_items(trade)

        removed = await self._delete_partition(trade.id, "save")
        chunks = await self._write_in_transactions(trade.id, items, "save")

        logger.info(
            "Saved trade %s: %d item(s) in %d chunk(s), replaced %d item(s)",
            trade.id,
            len(items),
            chunks,
            removed,
        )
        return trade

    async def find_by_id(self, trade_id: str) -> PhysicalTrade | None:
        """
        Load a trade.

        Returns:
            The trade, or None if nothing is stored under ``trade_id``

        Raises:
            DataIntegrityError: If items exist but do not form a trade
            StoreUnavailableError: If a round trip fails
        """
        _require_trade_id(trade_id)
        items = await self._query_partition(trade_id, "find")
        if not items:
            return None
        return reconstruct(trade_id, items)

    async def get(self, trade_id: str) -> PhysicalTrade:
        """
        Load a trade that must exist.

        Raises:
            TradeNotFoundError: If nothing is stored under ``trade_id``
        """
        trade = await self.find_by_id(trade_id)
        if trade is None:
            raise TradeNotFoundError(trade_id)
        return trade

    async def delete_by_id(self, trade_id: str) -> None:
        """
        Delete a trade and all of its items.

        Deleting a trade that does not exist is a no-op. A failure part way
        leaves some items behind; calling again finishes the job.
        """
        _require_trade_id(trade_id)
        removed = await self._delete_partition(trade_id, "delete")
        if removed:
            logger.info("Deleted trade %s: %d item(s)", trade_id, removed)
        else:
            logger.debug("Trade %s not found, nothing to delete", trade_id)

    async def _scan_header_ids(self, criteria: SearchCriteria) -> list[str]:
        """Scan for header items matching the equality criteria."""
        filter_expression, names, values = build_header_filter(criteria)
        scan_kwargs: dict[str, Any] = {
            "TableName": self.table_name,
            "FilterExpression": filter_expression,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
        }

        trade_ids: list[str] = []
        seen: set[str] = set()
        pages = 0
        exclusive_start_key = None
        while True:
            if exclusive_start_key:
                scan_kwargs["ExclusiveStartKey"] = exclusive_start_key

            try:
                client = await self._get_client()
                response = await client.scan(**scan_kwargs)
            except _STORE_ERRORS as e:
                raise self._store_error("Scan failed", e, operation="search") from e

            pages += 1
            for item in response.get("Items", []):
                trade_id = item.get(schema.ATTR_PK, {}).get("S")
                if trade_id and trade_id not in seen:
                    seen.add(trade_id)
                    trade_ids.append(trade_id)

            exclusive_start_key = response.get("LastEvaluatedKey")
            if not exclusive_start_key:
                break

        logger.debug("Scanned %d page(s): %d candidate trade(s)", pages, len(trade_ids))
        return trade_ids

    async def search(self, criteria: SearchCriteria | None = None) -> list[PhysicalTrade]:
        """
        Find trades matching all given criteria.

        This is a full table scan: its cost grows with the table, not with
        the number of matches. Results keep scan order.

        Args:
            criteria: Filters to apply (None matches every trade)

        Returns:
            Matching trades (empty if none)
        """
        criteria = criteria or SearchCriteria()
        results = []
        for trade_id in await self._scan_header_ids(criteria):
            trade = await self.find_by_id(trade_id)
            if trade is None:
                # Deleted between scan and load
                logger.debug("Trade %s vanished during search", trade_id)
                continue
            if matches_time_range(trade, criteria):
                results.append(trade)
        return results


class SyncTradeRepository:
    """
    Synchronous trade repository backed by DynamoDB.

    Wraps TradeRepository, running async operations in an event loop.
    """

    def __init__(
        self,
        table_name: str | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self._repository = TradeRepository(
            table_name=table_name,
            region=region,
            endpoint_url=endpoint_url,
        )
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def table_name(self) -> str:
        return self._repository.table_name

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        """Get or create the event loop owned by this wrapper."""
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
        return self._loop

    def _run(self, coro: Any) -> Any:
        """Run a coroutine in the event loop."""
        return self._get_loop().run_until_complete(coro)

    def close(self) -> None:
        """Close the underlying client and event loop."""
        if self._loop is None or self._loop.is_closed():
            return
        self._run(self._repository.close())
        self._loop.close()

    def __enter__(self) -> "SyncTradeRepository":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Table operations
    # -------------------------------------------------------------------------

    def create_table(self) -> None:
        """Create the DynamoDB table if it doesn't exist."""
        self._run(self._repository.create_table())

    def delete_table(self) -> None:
        """Delete the DynamoDB table."""
        self._run(self._repository.delete_table())

    # -------------------------------------------------------------------------
    # Trade operations
    # -------------------------------------------------------------------------

    def save(self, trade: PhysicalTrade) -> PhysicalTrade:
        """Store a trade, replacing any previous version."""
        result: PhysicalTrade = self._run(self._repository.save(trade))
        return result

    def find_by_id(self, trade_id: str) -> PhysicalTrade | None:
        """Load a trade, or None if it does not exist."""
        result: PhysicalTrade | None = self._run(self._repository.find_by_id(trade_id))
        return result

    def get(self, trade_id: str) -> PhysicalTrade:
        """Load a trade that must exist."""
        result: PhysicalTrade = self._run(self._repository.get(trade_id))
        return result

    def delete_by_id(self, trade_id: str) -> None:
        """Delete a trade and all of its items."""
        self._run(self._repository.delete_by_id(trade_id))

    def search(self, criteria: SearchCriteria | None = None) -> list[PhysicalTrade]:
        """Find trades matching all given criteria."""
        result: list[PhysicalTrade] = self._run(self._repository.search(criteria))
        return result
