"""Exceptions for trade-store."""

from typing import Any

# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class TradeStoreError(Exception):
    """
    Base exception for all trade-store errors.

    All exceptions raised by this library inherit from this class,
    allowing callers to catch all library-specific errors with a single
    except clause.
    """

    pass


# ---------------------------------------------------------------------------
# Validation Exceptions
# ---------------------------------------------------------------------------


class ValidationError(TradeStoreError):
    """
    Raised when input fails validation.

    Validation always happens before the first store call, so a
    ValidationError guarantees the table was not touched.

    Attributes:
        field: Name of the offending field
        value: The rejected value
        reason: Human-readable explanation
    """

    def __init__(self, field: str, value: Any, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class SequenceOverflowError(ValidationError):
    """Raised when a line-item sequence cannot be encoded in the sort key."""

    def __init__(self, sequence: int, max_sequence: int) -> None:
        self.max_sequence = max_sequence
        super().__init__(
            "sequence",
            sequence,
            f"Must be between 1 and {max_sequence} to keep sort keys ordered",
        )


class DuplicateSettlementIdError(ValidationError):
    """Raised when two settlement items of one trade share a settlement_id."""

    def __init__(self, settlement_id: str) -> None:
        super().__init__(
            "settlement_id",
            settlement_id,
            "Duplicate settlement_id within one trade",
        )


# ---------------------------------------------------------------------------
# Trade Exceptions
# ---------------------------------------------------------------------------


class TradeNotFoundError(TradeStoreError):
    """Raised when a trade is required but no items exist for it."""

    def __init__(self, trade_id: str) -> None:
        self.trade_id = trade_id
        super().__init__(f"Trade not found: {trade_id}")


class DataIntegrityError(TradeStoreError):
    """
    Raised when the items stored for a trade do not form a valid aggregate.

    Typically caused by a save that crashed between its delete and write
    phases, or by out-of-band edits to the table. Never reported as
    "not found".
    """

    def __init__(self, trade_id: str, reason: str) -> None:
        self.trade_id = trade_id
        self.reason = reason
        super().__init__(f"Data integrity violation for trade {trade_id}: {reason}")


class MissingHeaderError(DataIntegrityError):
    """Raised when child items exist for a trade but its header item does not."""

    def __init__(self, trade_id: str, item_count: int) -> None:
        self.item_count = item_count
        super().__init__(
            trade_id,
            f"no header item among {item_count} stored item(s)",
        )


# ---------------------------------------------------------------------------
# Store Exceptions
# ---------------------------------------------------------------------------


class StoreUnavailableError(TradeStoreError):
    """
    Raised when a DynamoDB round trip fails.

    Covers network errors, throttling, server errors and partially
    processed batches. Nothing is retried inside this library; callers
    retry the whole logical operation (save/delete are idempotent).

    Attributes:
        cause: The underlying exception
        operation: Logical operation that was running (save, find, ...)
        trade_id: Trade being processed (if applicable)
        table_name: The DynamoDB table that was being accessed
        chunk: 1-based index of the failed chunk (multi-chunk writes)
        total_chunks: Number of chunks in the operation
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        *,
        operation: str | None = None,
        trade_id: str | None = None,
        table_name: str | None = None,
        chunk: int | None = None,
        total_chunks: int | None = None,
    ) -> None:
        self.cause = cause
        self.operation = operation
        self.trade_id = trade_id
        self.table_name = table_name
        self.chunk = chunk
        self.total_chunks = total_chunks
        super().__init__(self._format_message(message))

    def _format_message(self, message: str) -> str:
        parts = [message]
        context = []
        if self.operation:
            context.append(f"operation={self.operation}")
        if self.table_name:
            context.append(f"table={self.table_name}")
        if self.trade_id:
            context.append(f"trade={self.trade_id}")
        if self.chunk is not None:
            if self.total_chunks is not None:
                context.append(f"chunk={self.chunk}/{self.total_chunks}")
            else:
                context.append(f"chunk={self.chunk}")
        if context:
            parts.append(f"[{', '.join(context)}]")
        return " ".join(parts)
