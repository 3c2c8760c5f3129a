"""DynamoDB schema definitions and key builders."""

from collections.abc import Sequence
from typing import Any, TypeVar

from .exceptions import SequenceOverflowError

T = TypeVar("T")

# Table name
DEFAULT_TABLE_NAME = "PHYSICAL_TRADE"

# Key and routing attributes (present on every item)
ATTR_PK = "trade_id"
ATTR_SK = "sort_key"
ATTR_ENTITY_TYPE = "entity_type"
ATTR_TENANT_ID = "tenant_id"

# Entity types
ENTITY_HEADER = "HEADER"
ENTITY_LINE_ITEM = "LINE_ITEM"
ENTITY_SETTLEMENT_ITEM = "SETTLEMENT_ITEM"

# Sort key prefixes
SK_HEADER = "HEADER#"
SK_LINE = "LINE#"
SK_SETTLEMENT = "SETTLEMENT#"

# Line-item sequences are zero-padded so string order == numeric order
SEQUENCE_WIDTH = 4
MAX_SEQUENCE = 10**SEQUENCE_WIDTH - 1

# Store-imposed per-call ceilings
MAX_TX_ITEMS = 25  # TransactWriteItems
MAX_BATCH_ITEMS = 25  # BatchWriteItem


def sk_header() -> str:
    """Build sort key for the trade header item."""
    return SK_HEADER


def sk_line_item(sequence: int) -> str:
    """
    Build sort key for a line item.

    Args:
        sequence: 1-based position of the line item within the trade

    Raises:
        SequenceOverflowError: If sequence does not fit the padding width
    """
    if sequence < 1 or sequence > MAX_SEQUENCE:
        raise SequenceOverflowError(sequence, MAX_SEQUENCE)
    return f"{SK_LINE}{sequence:0{SEQUENCE_WIDTH}d}"


def sk_settlement(settlement_id: str) -> str:
    """Build sort key for a settlement item."""
    return f"{SK_SETTLEMENT}{settlement_id}"


def line_item_ref(sequence: int) -> str:
    """Build the reference string a settlement item uses to point at a line item."""
    return sk_line_item(sequence)


def parse_line_item_sk(sk: str) -> int:
    """Parse the 1-based sequence from a line-item sort key."""
    # SK format: LINE#{sequence:04d}
    if not sk.startswith(SK_LINE):
        raise ValueError(f"Invalid line item SK: {sk}")
    digits = sk[len(SK_LINE) :]
    if len(digits) != SEQUENCE_WIDTH or not digits.isdigit():
        raise ValueError(f"Invalid line item SK format: {sk}")
    return int(digits)


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split items into consecutive chunks of at most ``size`` elements."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def get_table_definition(table_name: str) -> dict[str, Any]:
    """
    Get the DynamoDB table definition for CreateTable.

    Returns a dictionary suitable for boto3 create_table().
    """
    return {
        "TableName": table_name,
        "BillingMode": "PAY_PER_REQUEST",
        "AttributeDefinitions": [
            {"AttributeName": ATTR_PK, "AttributeType": "S"},
            {"AttributeName": ATTR_SK, "AttributeType": "S"},
        ],
        "KeySchema": [
            {"AttributeName": ATTR_PK, "KeyType": "HASH"},
            {"AttributeName": ATTR_SK, "KeyType": "RANGE"},
        ],
    }
