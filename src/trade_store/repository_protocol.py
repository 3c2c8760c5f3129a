"""Repository protocol for trade storage backends.

Defines the caller-facing contract of a trade store as a
``typing.Protocol`` with ``@runtime_checkable``, so alternative backends
(or test doubles) can be used wherever TradeRepository is expected without
inheriting from it.
"""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import PhysicalTrade, SearchCriteria


@runtime_checkable
class TradeRepositoryProtocol(Protocol):
    """
    Protocol for physical trade storage backends.

    Example:
        class InMemoryTrades:
            table_name = "memory"

            async def save(self, trade: PhysicalTrade) -> PhysicalTrade:
                ...

        assert isinstance(InMemoryTrades(), TradeRepositoryProtocol)
    """

    @property
    def table_name(self) -> str:
        """Name of the backing table."""
        ...

    async def close(self) -> None:
        """
        Release backend resources.

        Safe to call multiple times.
        """
        ...

    async def save(self, trade: "PhysicalTrade") -> "PhysicalTrade":
        """
        Store a trade, replacing any previous version with the same ID.

        Raises:
            ValidationError: If the trade is invalid; the store is untouched
            StoreUnavailableError: If the backend fails
        """
        ...

    async def find_by_id(self, trade_id: str) -> "PhysicalTrade | None":
        """
        Load a trade, or None if nothing is stored under ``trade_id``.

        Raises:
            DataIntegrityError: If stored items do not form a trade
        """
        ...

    async def delete_by_id(self, trade_id: str) -> None:
        """Delete a trade. Deleting a missing trade is a no-op."""
        ...

    async def search(self, criteria: "SearchCriteria | None" = None) -> "list[PhysicalTrade]":
        """Find trades matching all given criteria (empty list if none)."""
        ...
