"""
trade-store: Physical trade persistence backed by DynamoDB.

A PhysicalTrade (header, line items, settlement items, settlement summary
and metadata) is stored as a single DynamoDB partition with one item per
record. The library provides:
- Replace-on-save with chunked transactional writes
- Partition reads that restore line-item order
- Idempotent deletes
- Equality search over header attributes with a client-side time range

Example:
    from trade_store import PhysicalTrade, TradeHeader, TradeRepository

    async with TradeRepository(region="us-east-1") as repo:
        await repo.save(
            PhysicalTrade(header=TradeHeader(trade_id="T-1", tenant_id="acme"))
        )
        trade = await repo.find_by_id("T-1")
"""

# ---------------------------------------------------------------------------
# Lazy imports
# ---------------------------------------------------------------------------
# TradeRepository and SyncTradeRepository depend on aioboto3. They are
# imported on first access via __getattr__ below so that models, codec and
# builder can be imported without aioboto3 installed.
# ---------------------------------------------------------------------------
from importlib.metadata import PackageNotFoundError, version
from typing import TYPE_CHECKING

from .builder import build_items, reconstruct, validate_trade
from .exceptions import (
    DataIntegrityError,
    DuplicateSettlementIdError,
    MissingHeaderError,
    SequenceOverflowError,
    StoreUnavailableError,
    TradeNotFoundError,
    TradeStoreError,
    ValidationError,
)
from .models import (
    BuySellIndicator,
    DocumentType,
    LineItem,
    Metadata,
    Party,
    PhysicalTrade,
    Profile,
    SearchCriteria,
    SettlementInfo,
    SettlementItem,
    TradeHeader,
)
from .repository_protocol import TradeRepositoryProtocol

if TYPE_CHECKING:
    from .repository import SyncTradeRepository as SyncTradeRepository
    from .repository import TradeRepository as TradeRepository

try:
    __version__ = version("trade-store")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Main classes
    "TradeRepository",
    "SyncTradeRepository",
    "TradeRepositoryProtocol",
    # Models
    "PhysicalTrade",
    "TradeHeader",
    "Party",
    "LineItem",
    "SettlementItem",
    "SettlementInfo",
    "Metadata",
    "SearchCriteria",
    # Enums
    "Profile",
    "DocumentType",
    "BuySellIndicator",
    # Aggregate building
    "build_items",
    "reconstruct",
    "validate_trade",
    # Exceptions - Base
    "TradeStoreError",
    # Exceptions - Validation
    "ValidationError",
    "SequenceOverflowError",
    "DuplicateSettlementIdError",
    # Exceptions - Trade
    "TradeNotFoundError",
    "DataIntegrityError",
    "MissingHeaderError",
    # Exceptions - Store
    "StoreUnavailableError",
]


def __getattr__(name: str) -> type:
    """Lazy import for classes that require aioboto3."""
    if name == "TradeRepository":
        from .repository import TradeRepository

        return TradeRepository
    if name == "SyncTradeRepository":
        from .repository import SyncTradeRepository

        return SyncTradeRepository
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
