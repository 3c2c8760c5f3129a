"""Pytest fixtures for trade-store tests."""

import asyncio
import copy
from collections.abc import Awaitable
from datetime import date, datetime, timedelta, timezone
from typing import Any
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from trade_store import (
    BuySellIndicator,
    DocumentType,
    LineItem,
    Metadata,
    Party,
    PhysicalTrade,
    Profile,
    SettlementInfo,
    SettlementItem,
    TradeHeader,
)
from trade_store.config import ENDPOINT_URL_ENV_VAR, REGION_ENV_VAR, TABLE_ENV_VAR
from trade_store.repository import TradeRepository
from trade_store.schema import line_item_ref

TRADE_TIME = datetime(2024, 3, 4, 9, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# In-memory DynamoDB
# ---------------------------------------------------------------------------


def _client_error(code: str, operation: str, message: str = "injected") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class _TableWaiter:
    async def wait(self, **kwargs: Any) -> None:
        return None


class FakeDynamoDBClient:
    """
    In-memory stand-in for the aioboto3 DynamoDB client.

    Supports the calls TradeRepository makes. Every call is recorded in
    ``calls``. Query and scan results are paged by ``page_size`` so that
    pagination is exercised. Per-call ceilings of 25 items are enforced the
    way DynamoDB enforces them (ValidationException).
    """

    def __init__(self, page_size: int | None = None) -> None:
        self.tables: dict[str, dict[tuple[str, str], dict[str, Any]]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.page_size = page_size
        self.closed = False
        self._failures: dict[tuple[str, int], str] = {}
        self._unprocessed_calls: set[int] = set()

    # -- test helpers -------------------------------------------------------

    def fail_on(self, operation: str, call_number: int = 1, code: str = "InternalServerError"):
        """Make the Nth call (1-based) of ``operation`` raise a ClientError."""
        self._failures[(operation, call_number)] = code

    def leave_unprocessed(self, call_number: int = 1) -> None:
        """Make the Nth batch_write_item call return all requests unprocessed."""
        self._unprocessed_calls.add(call_number)

    def count(self, operation: str | None = None) -> int:
        """Number of recorded calls (of one operation, or in total)."""
        return sum(1 for name, _ in self.calls if operation is None or name == operation)

    def items(self, table_name: str, trade_id: str | None = None) -> list[dict[str, Any]]:
        """Stored items, optionally limited to one partition."""
        table = self.tables.get(table_name, {})
        return [
            item for (pk, _), item in sorted(table.items()) if trade_id is None or pk == trade_id
        ]

    def put_raw(self, table_name: str, item: dict[str, Any]) -> None:
        """Store an item directly, bypassing call recording."""
        key = (item["trade_id"]["S"], item["sort_key"]["S"])
        self.tables.setdefault(table_name, {})[key] = copy.deepcopy(item)

    # -- internals ----------------------------------------------------------

    def _record(self, operation: str, kwargs: dict[str, Any]) -> None:
        self.calls.append((operation, copy.deepcopy(kwargs)))
        code = self._failures.get((operation, self.count(operation)))
        if code is not None:
            raise _client_error(code, operation)

    @staticmethod
    def _key(item: dict[str, Any]) -> tuple[str, str]:
        return item["trade_id"]["S"], item["sort_key"]["S"]

    def _page(
        self, rows: list[dict[str, Any]], exclusive_start_key: dict[str, Any] | None
    ) -> tuple[list[dict[str, Any]], dict[str, Any] | None]:
        if exclusive_start_key is not None:
            start = self._key(exclusive_start_key)
            rows = [row for row in rows if self._key(row) > start]
        if self.page_size is None or len(rows) <= self.page_size:
            return rows, None
        page = rows[: self.page_size]
        last = page[-1]
        return page, {"trade_id": last["trade_id"], "sort_key": last["sort_key"]}

    # -- DynamoDB API -------------------------------------------------------

    async def query(self, **kwargs: Any) -> dict[str, Any]:
        self._record("query", kwargs)
        trade_id = kwargs["ExpressionAttributeValues"][":pk"]["S"]
        rows = self.items(kwargs["TableName"], trade_id)
        page, last_key = self._page(rows, kwargs.get("ExclusiveStartKey"))
        response: dict[str, Any] = {"Items": copy.deepcopy(page), "Count": len(page)}
        if last_key is not None:
            response["LastEvaluatedKey"] = last_key
        return response

    async def scan(self, **kwargs: Any) -> dict[str, Any]:
        self._record("scan", kwargs)
        names = kwargs.get("ExpressionAttributeNames", {})
        values = kwargs.get("ExpressionAttributeValues", {})
        conditions = []
        for clause in kwargs.get("FilterExpression", "").split(" AND "):
            if not clause:
                continue
            name, value = (part.strip() for part in clause.split(" = "))
            conditions.append((names.get(name, name), values[value]))

        rows = self.items(kwargs["TableName"])
        page, last_key = self._page(rows, kwargs.get("ExclusiveStartKey"))
        matched = [row for row in page if all(row.get(a) == v for a, v in conditions)]
        response: dict[str, Any] = {
            "Items": copy.deepcopy(matched),
            "Count": len(matched),
            "ScannedCount": len(page),
        }
        if last_key is not None:
            response["LastEvaluatedKey"] = last_key
        return response

    async def transact_write_items(self, **kwargs: Any) -> dict[str, Any]:
        self._record("transact_write_items", kwargs)
        transact_items = kwargs["TransactItems"]
        if len(transact_items) > 25:
            raise _client_error("ValidationException", "TransactWriteItems", "too many items")
        for transact_item in transact_items:
            put = transact_item["Put"]
            self.put_raw(put["TableName"], put["Item"])
        return {}

    async def batch_write_item(self, **kwargs: Any) -> dict[str, Any]:
        self._record("batch_write_item", kwargs)
        request_items = kwargs["RequestItems"]
        if self.count("batch_write_item") in self._unprocessed_calls:
            return {"UnprocessedItems": copy.deepcopy(request_items)}
        for table_name, requests in request_items.items():
            if len(requests) > 25:
                raise _client_error("ValidationException", "BatchWriteItem", "too many items")
            table = self.tables.setdefault(table_name, {})
            for request in requests:
                table.pop(self._key(request["DeleteRequest"]["Key"]), None)
        return {"UnprocessedItems": {}}

    async def create_table(self, **kwargs: Any) -> dict[str, Any]:
        self._record("create_table", kwargs)
        if kwargs["TableName"] in self.tables:
            raise _client_error("ResourceInUseException", "CreateTable")
        self.tables[kwargs["TableName"]] = {}
        return {"TableDescription": {"TableName": kwargs["TableName"]}}

    async def delete_table(self, **kwargs: Any) -> dict[str, Any]:
        self._record("delete_table", kwargs)
        if kwargs["TableName"] not in self.tables:
            raise _client_error("ResourceNotFoundException", "DeleteTable")
        del self.tables[kwargs["TableName"]]
        return {}

    def get_waiter(self, name: str) -> _TableWaiter:
        return _TableWaiter()

    async def __aexit__(self, *args: Any) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Trade builders
# ---------------------------------------------------------------------------


def make_trade(
    trade_id: str = "T-1",
    tenant_id: str = "acme",
    line_items: int = 3,
    settlement_items: int = 2,
    trade_time: datetime | None = TRADE_TIME,
    **header_fields: Any,
) -> PhysicalTrade:
    """Build a fully populated trade with hourly line items."""
    header_defaults: dict[str, Any] = {
        "trade_date": date(2024, 3, 4),
        "trade_time": trade_time,
        "document_type": DocumentType.CONFIRMATION,
        "document_version": "2",
        "buyer_party": Party(id="P-1", name="Buyer Co", role="BUYER"),
        "seller_party": Party(id="P-2", name="Seller Co", role="SELLER"),
        "business_unit": "power",
        "book_strategy": "baseload",
        "trader_name": "jdoe",
        "agreement_id": "EFET-1",
        "market": "NL",
        "commodity": "electricity",
        "transaction_type": "physical",
        "delivery_point": "TTF",
        "load_type": "base",
        "buy_sell_indicator": BuySellIndicator.BUY,
        "amendment_indicator": False,
    }
    header_defaults.update(header_fields)
    header = TradeHeader(trade_id=trade_id, tenant_id=tenant_id, **header_defaults)

    start = datetime(2024, 3, 5, tzinfo=timezone.utc)
    lines = (
        LineItem.generate_schedule(
            start,
            start + timedelta(hours=line_items),
            Profile.ONE_HOUR,
            quantity=10.0,
            uom="MWh",
            capacity=10.0,
        )
        if line_items
        else []
    )

    settlements = [
        SettlementItem(
            settlement_id=f"S-{n}",
            # Line items are dealt round-robin to settlement items
            referenced_line_items=[
                line_item_ref(seq)
                for seq in range(1, line_items + 1)
                if (seq - 1) % settlement_items == n - 1
            ],
            delivery_date=date(2024, 3, 5),
            actual_quantity=9.5,
            uom="MWh",
            settlement_price=51.25,
            trade_price=50.0,
            settlement_currency="EUR",
            trade_currency="EUR",
            deviation_amount=0.0,
            invoice_status="OPEN",
        )
        for n in range(1, settlement_items + 1)
    ]

    return PhysicalTrade(
        header=header,
        line_items=lines,
        settlement=SettlementInfo(
            total_volume=float(line_items * 10),
            total_volume_uom="MWh",
            pricing_mechanism="fixed",
            settlement_price=51.25,
            trade_price=50.0,
            settlement_currency="EUR",
            trade_currency="EUR",
            start_applicability_date=date(2024, 3, 5),
            start_applicability_time=start,
            payment_event="invoice",
            payment_offset=20.0,
            total_contract_value=1500.0,
            rounding=2.0,
        ),
        settlement_items=settlements,
        metadata=Metadata(
            effective_date=date(2024, 3, 1),
            termination_date=date(2024, 12, 31),
            governing_law="English law",
        ),
    )


@pytest.fixture
def trade_factory():
    """Factory for fully populated trades."""
    return make_trade


# ---------------------------------------------------------------------------
# Repository fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clean_env(monkeypatch):
    """Remove trade-store settings from the environment."""
    for var in (TABLE_ENV_VAR, REGION_ENV_VAR, ENDPOINT_URL_ENV_VAR):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def fake_dynamodb():
    """In-memory DynamoDB client."""
    return FakeDynamoDBClient()


@pytest.fixture
async def repo(clean_env, fake_dynamodb):
    """TradeRepository backed by the in-memory client."""
    repo = TradeRepository(region="us-east-1")
    repo._client = fake_dynamodb
    yield repo
    await repo.close()


# ---------------------------------------------------------------------------
# Moto fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mock AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    # Unset AWS_ENDPOINT_URL to ensure moto intercepts requests
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)


def _patch_aiobotocore_response():
    """
    Patch aiobotocore to work with moto's sync responses.

    Moto returns botocore.awsrequest.AWSResponse which has sync content,
    but aiobotocore expects async content. This patch wraps the response
    handling to convert sync content to async.
    """
    from aiobotocore import endpoint

    original_convert = endpoint.convert_to_response_dict

    async def patched_convert(http_response, operation_model):
        # If content is not awaitable (moto's sync response), wrap it
        if hasattr(http_response, "_content") and not isinstance(http_response._content, Awaitable):
            fut: asyncio.Future[bytes] = asyncio.Future()
            fut.set_result(http_response.content)
            http_response._content = fut
        return await original_convert(http_response, operation_model)

    return patch.object(endpoint, "convert_to_response_dict", patched_convert)


@pytest.fixture
def mock_dynamodb(aws_credentials, clean_env):
    """Mock DynamoDB for tests."""
    with mock_aws(), _patch_aiobotocore_response():
        yield


@pytest.fixture
async def moto_repo(mock_dynamodb):
    """TradeRepository against moto with the table created."""
    repo = TradeRepository(table_name="test_trades", region="us-east-1")
    await repo.create_table()
    yield repo
    await repo.close()
