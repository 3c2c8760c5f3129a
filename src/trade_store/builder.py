"""Flattening a PhysicalTrade into items and rebuilding it from them."""

from typing import Any

from . import codec, schema
from .exceptions import (
    DataIntegrityError,
    DuplicateSettlementIdError,
    MissingHeaderError,
    SequenceOverflowError,
    ValidationError,
)
from .models import PhysicalTrade


def validate_trade(trade: PhysicalTrade) -> None:
    """
    Check a trade can be stored.

    Raises:
        ValidationError: If trade_id or tenant_id is blank, or a settlement
            item has a blank settlement_id
        SequenceOverflowError: If there are more line items than sort keys
        DuplicateSettlementIdError: If two settlement items share an id
    """
    header = trade.header
    if not header.trade_id or not header.trade_id.strip():
        raise ValidationError("trade_id", header.trade_id, "Must not be blank")
    if not header.tenant_id or not header.tenant_id.strip():
        raise ValidationError("tenant_id", header.tenant_id, "Must not be blank")

    if len(trade.line_items) > schema.MAX_SEQUENCE:
        raise SequenceOverflowError(len(trade.line_items), schema.MAX_SEQUENCE)

    seen: set[str] = set()
    for settlement_item in trade.settlement_items:
        settlement_id = settlement_item.settlement_id
        if not settlement_id or not settlement_id.strip():
            raise ValidationError("settlement_id", settlement_id, "Must not be blank")
        if settlement_id in seen:
            raise DuplicateSettlementIdError(settlement_id)
        seen.add(settlement_id)


def build_items(trade: PhysicalTrade) -> list[dict[str, Any]]:
    """
    Flatten a trade into its items.

    Order is the header, then line items in input order (sequence is the
    1-based position), then settlement items.

    Raises:
        ValidationError: If a field value cannot be stored (for example an
            infinite number)
    """
    trade_id = trade.id
    tenant_id = trade.tenant

    items = [codec.encode_header(trade)]
    items.extend(
        codec.encode_line_item(trade_id, tenant_id, line_item, sequence)
        for sequence, line_item in enumerate(trade.line_items, start=1)
    )
    items.extend(
        codec.encode_settlement_item(trade_id, tenant_id, settlement_item)
        for settlement_item in trade.settlement_items
    )
    return items


def reconstruct(trade_id: str, items: list[dict[str, Any]]) -> PhysicalTrade:
    """
    Rebuild a trade from the items stored in its partition.

    Items may arrive in any order. Line items are ordered by the sequence
    in their sort key, which is what restores their original positions.

    Raises:
        MissingHeaderError: If there is no header item
        DataIntegrityError: If there is more than one header item, or a
            line item's sort key does not carry a sequence
    """
    headers = []
    line_items = []
    settlement_items = []
    for item in items:
        entity_type = codec.attr_string(item, schema.ATTR_ENTITY_TYPE)
        if entity_type == schema.ENTITY_HEADER:
            headers.append(item)
        elif entity_type == schema.ENTITY_LINE_ITEM:
            line_items.append(item)
        elif entity_type == schema.ENTITY_SETTLEMENT_ITEM:
            settlement_items.append(item)

    if not headers:
        raise MissingHeaderError(trade_id, len(items))
    if len(headers) > 1:
        raise DataIntegrityError(trade_id, f"found {len(headers)} header items")

    def sort_key(item: dict[str, Any]) -> str:
        return codec.attr_string(item, schema.ATTR_SK) or ""

    sequenced = []
    for item in line_items:
        try:
            sequence = schema.parse_line_item_sk(sort_key(item))
        except ValueError as e:
            raise DataIntegrityError(trade_id, str(e)) from e
        sequenced.append((sequence, item))
    sequenced.sort(key=lambda pair: pair[0])

    header, settlement, metadata = codec.decode_header(trade_id, headers[0])
    return PhysicalTrade(
        header=header,
        line_items=[codec.decode_line_item(item) for _, item in sequenced],
        settlement=settlement,
        settlement_items=[
            codec.decode_settlement_item(i) for i in sorted(settlement_items, key=sort_key)
        ],
        metadata=metadata,
    )
