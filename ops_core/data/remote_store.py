# =============================================================================
# ops_core/data/remote_store.py
# Remote store contract used by every collection manager
# =============================================================================

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Callable


@dataclass(frozen=True)
class ChangeEvent:
    """
    One row change pushed by the remote change feed.

    Consumers treat it as "something in ``table`` changed" and reload; the
    row payloads are informational only.
    """
    table: str
    event_type: str                          # INSERT | UPDATE | DELETE
    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None


@dataclass
class SubscriptionHandle:
    """Returned by ``subscribe_to_changes``; pass it back to ``unsubscribe``."""
    table: str
    channel_name: str
    active: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)


ChangeCallback = Callable[[ChangeEvent], None]


class RemoteStore(ABC):
    """
    Authoritative, multi-writer backend.

    Implementations raise ConnectivityError when the store cannot be
    reached, AuthorizationError when the current identity is rejected and
    RemoteStoreError for anything else. ``update`` raises NotFoundError when
    no row matched the id.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        ascending: bool = True,
    ) -> List[Dict[str, Any]]:
        """Return every row of ``table`` matching the equality ``filters``."""

    @abstractmethod
    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert one row and return it as stored (with its assigned id)."""

    @abstractmethod
    async def update(self, table: str, record_id: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Apply ``partial`` to the row with ``record_id`` and return the stored row."""

    @abstractmethod
    async def delete(self, table: str, record_id: str) -> None:
        """Delete the row with ``record_id``."""

    @abstractmethod
    async def subscribe_to_changes(self, table: str, on_change: ChangeCallback) -> SubscriptionHandle:
        """Deliver a ChangeEvent to ``on_change`` for every change to ``table``."""

    @abstractmethod
    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Stop a subscription. Safe to call more than once."""

    async def close(self) -> None:
        """Release connections and channels."""
