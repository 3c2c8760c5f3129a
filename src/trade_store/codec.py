"""Conversion between trade models and flat DynamoDB items.

Items are in the low-level client format (``{"attr": {"S": "..."}}``).
Absent values are never written: a None field produces no attribute and a
missing attribute decodes to None, so ``0`` and "absent" stay distinct.

Header items carry three groups of attributes, told apart by name:
header fields, settlement summary fields (``settlement_*`` plus the
price/currency/uom fields listed in SETTLEMENT_FIELDS) and metadata fields
(``metadata_*``).
"""

import math
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from . import schema
from .exceptions import ValidationError
from .models import (
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
    format_instant,
    parse_instant,
)

Item = dict[str, Any]

# DynamoDB numbers: non-zero magnitudes in [1E-130, 1E+126)
MIN_NUMBER_MAGNITUDE = 1e-130
NUMBER_MAGNITUDE_LIMIT = 1e126

# ---------------------------------------------------------------------------
# Attribute encoders / decoders
# ---------------------------------------------------------------------------


def _enc_string(value: str) -> dict[str, Any] | None:
    return {"S": value} if value.strip() else None


def _enc_number(value: float) -> dict[str, Any] | None:
    number = float(value)
    if math.isnan(number):
        return None
    if math.isinf(number):
        raise ValueError("Must be a finite number")
    magnitude = abs(number)
    if magnitude >= NUMBER_MAGNITUDE_LIMIT or 0 < magnitude < MIN_NUMBER_MAGNITUDE:
        raise ValueError("Outside the range DynamoDB can store")
    return {"N": repr(number)}


def _enc_bool(value: bool) -> dict[str, Any]:
    return {"BOOL": bool(value)}


def _enc_date(value: date) -> dict[str, Any]:
    return {"S": value.isoformat()}


def _enc_instant(value: datetime) -> dict[str, Any]:
    return {"S": format_instant(value)}


def _enc_enum_name(value: Any) -> dict[str, Any]:
    return {"S": value.name}


def _enc_enum_value(value: Any) -> dict[str, Any]:
    return {"S": value.value}


_ENCODERS: dict[str, Callable[[Any], dict[str, Any] | None]] = {
    "S": _enc_string,
    "N": _enc_number,
    "BOOL": _enc_bool,
    "DATE": _enc_date,
    "INSTANT": _enc_instant,
    "PROFILE": _enc_enum_name,
    "BUY_SELL": _enc_enum_name,
    "DOCUMENT_TYPE": _enc_enum_value,
}

_DECODERS: dict[str, Callable[[dict[str, Any]], Any]] = {
    "S": lambda v: v.get("S"),
    "N": lambda v: float(v["N"]) if "N" in v else None,
    "BOOL": lambda v: v.get("BOOL"),
    "DATE": lambda v: date.fromisoformat(v["S"]) if "S" in v else None,
    "INSTANT": lambda v: parse_instant(v["S"]) if "S" in v else None,
    "PROFILE": lambda v: Profile[v["S"]] if "S" in v else None,
    "BUY_SELL": lambda v: BuySellIndicator[v["S"]] if "S" in v else None,
    "DOCUMENT_TYPE": lambda v: DocumentType.from_value(v.get("S")),
}

# (model field, item attribute, kind)
FieldSpec = tuple[str, str, str]

HEADER_FIELDS: tuple[FieldSpec, ...] = (
    ("business_unit", "business_unit", "S"),
    ("market", "market", "S"),
    ("trader_name", "trader_name", "S"),
    ("agreement_id", "agreement_id", "S"),
    ("commodity", "commodity", "S"),
    ("transaction_type", "transaction_type", "S"),
    ("delivery_point", "delivery_point", "S"),
    ("load_type", "load_type", "S"),
    ("book_strategy", "book_strategy", "S"),
    ("document_type", "document_type", "DOCUMENT_TYPE"),
    ("document_version", "document_version", "S"),
    ("buy_sell_indicator", "buy_sell_indicator", "BUY_SELL"),
    ("amendment_indicator", "amendment_indicator", "BOOL"),
    ("trade_date", "trade_date", "DATE"),
    ("trade_time", "trade_time", "INSTANT"),
)

PARTY_FIELDS: tuple[tuple[str, str], ...] = (
    ("buyer_party", "buyer_party"),
    ("seller_party", "seller_party"),
)

SETTLEMENT_FIELDS: tuple[FieldSpec, ...] = (
    ("total_volume", "settlement_total_volume", "N"),
    ("total_volume_uom", "settlement_total_volume_uom", "S"),
    ("pricing_mechanism", "settlement_pricing_mechanism", "S"),
    ("settlement_price", "settlement_price", "N"),
    ("trade_price", "trade_price", "N"),
    ("settlement_currency", "settlement_currency", "S"),
    ("trade_currency", "trade_currency", "S"),
    ("settlement_uom", "settlement_uom", "S"),
    ("trade_uom", "trade_uom", "S"),
    ("start_applicability_date", "settlement_start_date", "DATE"),
    ("start_applicability_time", "settlement_start_time", "INSTANT"),
    ("end_applicability_date", "settlement_end_date", "DATE"),
    ("end_applicability_time", "settlement_end_time", "INSTANT"),
    ("payment_event", "settlement_payment_event", "S"),
    ("payment_offset", "settlement_payment_offset", "N"),
    ("total_contract_value", "settlement_total_value", "N"),
    ("rounding", "settlement_rounding", "N"),
)

METADATA_FIELDS: tuple[FieldSpec, ...] = (
    ("effective_date", "metadata_effective_date", "DATE"),
    ("termination_date", "metadata_termination_date", "DATE"),
    ("governing_law", "metadata_governing_law", "S"),
)

LINE_ITEM_FIELDS: tuple[FieldSpec, ...] = (
    ("period_start_date", "period_start_date", "DATE"),
    ("period_start_time", "period_start_time", "INSTANT"),
    ("period_end_date", "period_end_date", "DATE"),
    ("period_end_time", "period_end_time", "INSTANT"),
    ("day_hour", "day_hour_label", "S"),
    ("quantity", "quantity", "N"),
    ("uom", "uom", "S"),
    ("capacity", "capacity", "N"),
    ("profile", "profile", "PROFILE"),
)

SETTLEMENT_ITEM_FIELDS: tuple[FieldSpec, ...] = (
    ("settlement_id", "settlement_id", "S"),
    ("delivery_date", "delivery_date", "DATE"),
    ("actual_quantity", "actual_quantity", "N"),
    ("uom", "uom", "S"),
    ("settlement_price", "settlement_price", "N"),
    ("trade_price", "trade_price", "N"),
    ("settlement_uom", "settlement_uom", "S"),
    ("trade_uom", "trade_uom", "S"),
    ("deviation_amount", "deviation_amount", "N"),
    ("deviation_penalty", "deviation_penalty", "N"),
    ("period_cashflow", "period_cashflow", "N"),
    ("settlement_currency", "settlement_currency", "S"),
    ("trade_currency", "trade_currency", "S"),
    ("invoice_status", "invoice_status", "S"),
)

ATTR_LINE_REFS = "line_refs"


def _put_fields(item: Item, source: Any, fields: tuple[FieldSpec, ...]) -> None:
    """
    Copy non-empty model fields onto an item.

    Raises:
        ValidationError: If a value cannot be stored
    """
    for field_name, attr, kind in fields:
        value = getattr(source, field_name)
        if value is None:
            continue
        try:
            encoded = _ENCODERS[kind](value)
        except ValueError as e:
            raise ValidationError(field_name, value, str(e)) from e
        if encoded is not None:
            item[attr] = encoded


def _get_fields(item: Item, fields: tuple[FieldSpec, ...]) -> dict[str, Any]:
    """Read model fields from an item (missing attributes are omitted)."""
    values: dict[str, Any] = {}
    for field_name, attr, kind in fields:
        raw = item.get(attr)
        if raw is None:
            continue
        values[field_name] = _DECODERS[kind](raw)
    return values


def _base_item(trade_id: str, sort_key: str, entity_type: str, tenant_id: str) -> Item:
    return {
        schema.ATTR_PK: {"S": trade_id},
        schema.ATTR_SK: {"S": sort_key},
        schema.ATTR_ENTITY_TYPE: {"S": entity_type},
        schema.ATTR_TENANT_ID: {"S": tenant_id},
    }


def attr_string(item: Item, attr: str) -> str | None:
    """Read a string attribute from an item."""
    value = item.get(attr)
    return None if value is None else value.get("S")


# ---------------------------------------------------------------------------
# Header
# ---------------------------------------------------------------------------


def encode_header(trade: PhysicalTrade) -> Item:
    """Build the header item (header, settlement summary and metadata)."""
    header = trade.header
    item = _base_item(header.trade_id, schema.sk_header(), schema.ENTITY_HEADER, header.tenant_id)

    _put_fields(item, header, HEADER_FIELDS)
    for field_name, prefix in PARTY_FIELDS:
        party = getattr(header, field_name)
        if party is not None:
            _put_fields(
                item,
                party,
                (
                    ("id", f"{prefix}_id", "S"),
                    ("name", f"{prefix}_name", "S"),
                    ("role", f"{prefix}_role", "S"),
                ),
            )

    if trade.settlement is not None:
        _put_fields(item, trade.settlement, SETTLEMENT_FIELDS)
    if trade.metadata is not None:
        _put_fields(item, trade.metadata, METADATA_FIELDS)

    return item


def decode_header(
    trade_id: str, item: Item
) -> tuple[TradeHeader, SettlementInfo | None, Metadata | None]:
    """
    Split a header item into header, settlement summary and metadata.

    The settlement summary and metadata are None when the item carries
    none of their attributes.
    """
    header = TradeHeader(
        trade_id=trade_id,
        tenant_id=attr_string(item, schema.ATTR_TENANT_ID) or "",
        **_get_fields(item, HEADER_FIELDS),
    )
    for field_name, prefix in PARTY_FIELDS:
        party_values = _get_fields(
            item,
            (
                ("id", f"{prefix}_id", "S"),
                ("name", f"{prefix}_name", "S"),
                ("role", f"{prefix}_role", "S"),
            ),
        )
        if party_values:
            setattr(header, field_name, Party(**party_values))

    settlement_values = _get_fields(item, SETTLEMENT_FIELDS)
    metadata_values = _get_fields(item, METADATA_FIELDS)

    return (
        header,
        SettlementInfo(**settlement_values) if settlement_values else None,
        Metadata(**metadata_values) if metadata_values else None,
    )


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------


def encode_line_item(trade_id: str, tenant_id: str, line_item: LineItem, sequence: int) -> Item:
    """Build the item for the line item at 1-based ``sequence``."""
    item = _base_item(
        trade_id, schema.sk_line_item(sequence), schema.ENTITY_LINE_ITEM, tenant_id
    )
    _put_fields(item, line_item, LINE_ITEM_FIELDS)
    return item


def decode_line_item(item: Item) -> LineItem:
    """Build a LineItem from its item."""
    return LineItem(**_get_fields(item, LINE_ITEM_FIELDS))


# ---------------------------------------------------------------------------
# Settlement items
# ---------------------------------------------------------------------------


def encode_settlement_item(trade_id: str, tenant_id: str, settlement_item: SettlementItem) -> Item:
    """Build the item for a settlement item (keyed by its settlement_id)."""
    item = _base_item(
        trade_id,
        schema.sk_settlement(settlement_item.settlement_id),
        schema.ENTITY_SETTLEMENT_ITEM,
        tenant_id,
    )
    _put_fields(item, settlement_item, SETTLEMENT_ITEM_FIELDS)

    # String sets must be non-empty and unique
    refs = sorted({ref for ref in settlement_item.referenced_line_items if ref})
    if refs:
        item[ATTR_LINE_REFS] = {"SS": refs}

    return item


def decode_settlement_item(item: Item) -> SettlementItem:
    """Build a SettlementItem from its item."""
    values = _get_fields(item, SETTLEMENT_ITEM_FIELDS)
    if "settlement_id" not in values:
        # Older items may lack the attribute; the sort key always has it
        sort_key = attr_string(item, schema.ATTR_SK) or ""
        values["settlement_id"] = sort_key[len(schema.SK_SETTLEMENT) :]
    refs = item.get(ATTR_LINE_REFS, {}).get("SS", [])
    return SettlementItem(referenced_line_items=sorted(refs), **values)
