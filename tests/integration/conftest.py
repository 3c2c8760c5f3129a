"""Integration test fixtures for LocalStack."""

import os
import time
import uuid

import pytest

from trade_store.repository import SyncTradeRepository, TradeRepository


@pytest.fixture(scope="session")
def localstack_endpoint():
    """LocalStack endpoint URL from environment."""
    endpoint = os.getenv("AWS_ENDPOINT_URL")
    if not endpoint:
        pytest.skip("AWS_ENDPOINT_URL not set - LocalStack not available")
    return endpoint


@pytest.fixture
def unique_table_name():
    """Generate unique table name for test isolation."""
    timestamp = int(time.time())
    unique_id = uuid.uuid4().hex[:8]
    return f"integration-trades-{timestamp}-{unique_id}"


@pytest.fixture
async def localstack_repo(localstack_endpoint, unique_table_name):
    """TradeRepository with its own table on LocalStack."""
    repo = TradeRepository(
        table_name=unique_table_name,
        region="us-east-1",
        endpoint_url=localstack_endpoint,
    )
    await repo.create_table()
    yield repo
    await repo.delete_table()
    await repo.close()


@pytest.fixture
def sync_localstack_repo(localstack_endpoint, unique_table_name):
    """SyncTradeRepository with its own table on LocalStack."""
    repo = SyncTradeRepository(
        table_name=unique_table_name,
        region="us-east-1",
        endpoint_url=localstack_endpoint,
    )
    repo.create_table()
    yield repo
    repo.delete_table()
    repo.close()
