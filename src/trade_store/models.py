"""Core models for trade-store."""

import dataclasses
import types
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any, TypeVar, Union, get_args, get_origin, get_type_hints

_D = TypeVar("_D")

_DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Profile(Enum):
    """Delivery granularity of a line item."""

    ONE_HOUR = ("1Hr", timedelta(hours=1))
    FIFTEEN_MIN = ("15min", timedelta(minutes=15))
    FIVE_MIN = ("5min", timedelta(minutes=5))
    ONE_MIN = ("1min", timedelta(minutes=1))

    def __init__(self, label: str, duration: timedelta) -> None:
        self.label = label
        self.duration = duration

    def __str__(self) -> str:
        return self.label

    @classmethod
    def from_value(cls, value: str | None) -> "Profile | None":
        """Look up a profile by its display label (case-insensitive)."""
        if value is None:
            return None
        normalized = value.strip().lower()
        for profile in cls:
            if profile.label.lower() == normalized:
                return profile
        raise ValueError(f"Unknown profile value: {value}")


class DocumentType(Enum):
    """Kind of document a trade record represents."""

    TRADE = "Trade"
    CONFIRMATION = "Confirmation"
    INVOICE = "Invoice"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_value(cls, value: str | None) -> "DocumentType | None":
        """Look up a document type by its display value (case-insensitive)."""
        if value is None:
            return None
        normalized = value.strip().lower()
        for doc_type in cls:
            if doc_type.value.lower() == normalized:
                return doc_type
        raise ValueError(f"Unknown document type value: {value}")


class BuySellIndicator(Enum):
    """Trade direction from the perspective of the booking party."""

    BUY = "BUY"
    SELL = "SELL"


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def format_instant(value: datetime) -> str:
    """Format an instant as UTC ISO-8601 with a ``Z`` suffix (naive = UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_instant(value: str) -> datetime:
    """Parse an ISO-8601 instant into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _as_aware(obj: Any, *names: str) -> None:
    """Attach UTC to naive datetime fields of ``obj`` in place."""
    for name in names:
        value = getattr(obj, name)
        if isinstance(value, datetime) and value.tzinfo is None:
            setattr(obj, name, value.replace(tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Dictionary conversion
# ---------------------------------------------------------------------------


def _dump(value: Any) -> Any:
    """Convert a model value to a JSON-safe structure."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _dump(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, datetime):
        return format_instant(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


def _load_value(hint: Any, raw: Any) -> Any:
    """Convert a JSON value back to the type described by ``hint``."""
    if raw is None:
        return None
    origin = get_origin(hint)
    if origin is Union or origin is types.UnionType:
        args = [a for a in get_args(hint) if a is not type(None)]
        return _load_value(args[0], raw) if len(args) == 1 else raw
    if origin is list:
        (item_hint,) = get_args(hint) or (Any,)
        return [_load_value(item_hint, v) for v in raw]
    if hint is datetime:
        return parse_instant(raw)
    if hint is date:
        return date.fromisoformat(raw)
    if hint is float:
        return float(raw)
    if isinstance(hint, type) and issubclass(hint, Enum):
        try:
            return hint[raw]
        except KeyError:
            from_value = getattr(hint, "from_value", None)
            if from_value is None:
                raise ValueError(f"Unknown {hint.__name__} value: {raw}") from None
            return from_value(raw)
    if isinstance(hint, type) and dataclasses.is_dataclass(hint):
        return _load(hint, raw)
    return raw


def _load(cls: type[_D], data: dict[str, Any]) -> _D:
    """Build a dataclass instance from a dictionary, ignoring unknown keys."""
    hints = get_type_hints(cls)
    kwargs = {
        f.name: _load_value(hints[f.name], data[f.name])
        for f in dataclasses.fields(cls)  # type: ignore[arg-type]
        if f.name in data
    }
    return cls(**kwargs)


class _DictMixin:
    """Shared to_dict/from_dict for model dataclasses."""

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dictionary."""
        result: dict[str, Any] = _dump(self)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Any:
        """Deserialize from a dictionary produced by to_dict()."""
        return _load(cls, data)


# ---------------------------------------------------------------------------
# Aggregate parts
# ---------------------------------------------------------------------------


@dataclass
class Party(_DictMixin):
    """A counterparty on the trade."""

    id: str | None = None
    name: str | None = None
    role: str | None = None


@dataclass
class TradeHeader(_DictMixin):
    """
    Scalar business fields of a trade.

    trade_id is the partition key of every stored item and tenant_id is
    copied onto each of them; both are required to save. A naive
    trade_time is taken as UTC.
    """

    trade_id: str
    tenant_id: str
    trade_date: date | None = None
    trade_time: datetime | None = None
    document_type: DocumentType | None = None
    document_version: str | None = None
    buyer_party: Party | None = None
    seller_party: Party | None = None
    business_unit: str | None = None
    book_strategy: str | None = None
    trader_name: str | None = None
    agreement_id: str | None = None
    market: str | None = None
    commodity: str | None = None
    transaction_type: str | None = None
    delivery_point: str | None = None
    load_type: str | None = None
    buy_sell_indicator: BuySellIndicator | None = None
    amendment_indicator: bool | None = None

    def __post_init__(self) -> None:
        _as_aware(self, "trade_time")


@dataclass
class LineItem(_DictMixin):
    """
    One delivery period of a trade.

    Line items have no business key; their identity is their position
    in PhysicalTrade.line_items.
    """

    period_start_date: date | None = None
    period_start_time: datetime | None = None
    period_end_date: date | None = None
    period_end_time: datetime | None = None
    day_hour: str | None = None
    quantity: float | None = None
    uom: str | None = None
    capacity: float | None = None
    profile: Profile | None = None

    def __post_init__(self) -> None:
        _as_aware(self, "period_start_time", "period_end_time")

    @classmethod
    def generate_schedule(
        cls,
        start: datetime,
        end: datetime,
        profile: Profile,
        tz: tzinfo | None = None,
        quantity: float | None = None,
        uom: str | None = None,
        capacity: float | None = None,
    ) -> list["LineItem"]:
        """
        Generate contiguous line items covering ``[start, end)``.

        Args:
            start: Inclusive lower bound (aware datetime)
            end: Exclusive upper bound (aware datetime)
            profile: Granularity of each generated period
            tz: Zone used for local dates and day/hour labels (UTC if None)
            quantity: Quantity assigned to every line item
            uom: Unit of measure assigned to every line item
            capacity: Capacity assigned to every line item

        Returns:
            Ordered line items without gaps

        Raises:
            ValueError: If the range is empty or not a multiple of the profile
        """
        if start >= end:
            raise ValueError("start must be before end")
        step = profile.duration
        if (end - start) % step:
            raise ValueError("Range must be an exact multiple of the profile duration")

        zone = tz or timezone.utc
        items = []
        current = start
        while current < end:
            following = current + step
            local_start = current.astimezone(zone)
            local_end = following.astimezone(zone)
            items.append(
                cls(
                    period_start_date=local_start.date(),
                    period_start_time=current,
                    period_end_date=local_end.date(),
                    period_end_time=following,
                    day_hour=(
                        f"{_DAY_NAMES[local_start.weekday()]} "
                        f"{local_start:%H:%M}-{local_end:%H:%M}"
                    ),
                    quantity=quantity,
                    uom=uom,
                    capacity=capacity,
                    profile=profile,
                )
            )
            current = following
        return items


@dataclass
class SettlementItem(_DictMixin):
    """
    One settlement record.

    settlement_id is the business key and must be unique within a trade.
    referenced_line_items holds line references such as ``LINE#0001``.
    It is a set kept as a sorted list: blanks and duplicates are dropped
    on construction.
    """

    settlement_id: str
    referenced_line_items: list[str] = field(default_factory=list)
    delivery_date: date | None = None
    actual_quantity: float | None = None
    uom: str | None = None
    settlement_price: float | None = None
    trade_price: float | None = None
    settlement_uom: str | None = None
    trade_uom: str | None = None
    deviation_amount: float | None = None
    deviation_penalty: float | None = None
    period_cashflow: float | None = None
    settlement_currency: str | None = None
    trade_currency: str | None = None
    invoice_status: str | None = None

    def __post_init__(self) -> None:
        self.referenced_line_items = sorted({ref for ref in self.referenced_line_items if ref})


@dataclass
class SettlementInfo(_DictMixin):
    """Settlement totals, stored on the header item."""

    total_volume: float | None = None
    total_volume_uom: str | None = None
    pricing_mechanism: str | None = None
    settlement_price: float | None = None
    trade_price: float | None = None
    settlement_currency: str | None = None
    trade_currency: str | None = None
    settlement_uom: str | None = None
    trade_uom: str | None = None
    start_applicability_date: date | None = None
    start_applicability_time: datetime | None = None
    end_applicability_date: date | None = None
    end_applicability_time: datetime | None = None
    payment_event: str | None = None
    payment_offset: float | None = None
    total_contract_value: float | None = None
    rounding: float | None = None

    def __post_init__(self) -> None:
        _as_aware(self, "start_applicability_time", "end_applicability_time")


@dataclass
class Metadata(_DictMixin):
    """Contract metadata, stored on the header item."""

    effective_date: date | None = None
    termination_date: date | None = None
    governing_law: str | None = None


@dataclass
class PhysicalTrade(_DictMixin):
    """
    A physical power trade confirmation: the unit of storage.

    line_items keep their order through storage. settlement_items do not:
    they are keyed by settlement_id and come back sorted by it as a string
    (``S-10`` before ``S-2``).
    """

    header: TradeHeader
    line_items: list[LineItem] = field(default_factory=list)
    settlement: SettlementInfo | None = None
    settlement_items: list[SettlementItem] = field(default_factory=list)
    metadata: Metadata | None = None

    @property
    def id(self) -> str:
        """Trade ID (partition key)."""
        return self.header.trade_id

    @property
    def tenant(self) -> str:
        """Owning tenant."""
        return self.header.tenant_id


@dataclass
class SearchCriteria(_DictMixin):
    """
    Filters for PhysicalTrade search.

    All string/date fields are equality filters evaluated by DynamoDB and
    combined with AND. trade_time_from/trade_time_to form an inclusive
    range evaluated after each candidate is loaded.
    """

    tenant_id: str | None = None
    business_unit: str | None = None
    market: str | None = None
    trader_name: str | None = None
    agreement_id: str | None = None
    commodity: str | None = None
    transaction_type: str | None = None
    trade_date: date | None = None
    trade_time_from: datetime | None = None
    trade_time_to: datetime | None = None

    @property
    def has_time_range(self) -> bool:
        """True if either bound of the trade time range is set."""
        return self.trade_time_from is not None or self.trade_time_to is not None
