"""
MemoryRepository - Durable append-only log used for audit trails and cross-cycle learning
"""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any, List, Optional
from sqlalchemy import desc
from repositories.base_repository import BaseRepository
from autopilot_database import MemoryEntry
import logging

logger = logging.getLogger(__name__)


def _json_safe(value: Any) -> Any:
    """Convert datetimes, enums and dataclass-like objects into JSON-compatible values."""
    def default(obj):
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, 'to_dict'):
            return obj.to_dict()
        if hasattr(obj, '__dict__'):
            return vars(obj)
        return str(obj)
    return json.loads(json.dumps(value, default=default))


class MemoryRepository(BaseRepository[MemoryEntry]):
    """Key/value log keyed by 'namespace:rest-of-key'"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, MemoryEntry)

    @staticmethod
    def namespace_for(key: str) -> str:
        """Namespace is the key prefix before the first ':'"""
        return key.split(':', 1)[0]

    def store(self, key: str, value: Any, tags: Optional[List[str]] = None) -> MemoryEntry:
        """
        Append a value to the log.

        Args:
            key: Entry key, e.g. 'scheduling:decision:camp-1'
            value: Any JSON-serialisable structure (datetimes and enums are converted)
            tags: Optional labels for later filtering

        Returns:
            The stored entry
        """
        return self.create(
            key=key,
            namespace=self.namespace_for(key),
            value=_json_safe(value),
            tags=list(tags or [])
        )

    def retrieve_recent(self, namespace: str, n: int = 10) -> List[MemoryEntry]:
        """
        Most recent entries in a namespace, newest first.

        Args:
            namespace: Key prefix before the first ':'
            n: Maximum number of entries

        Returns:
            Ordered list of entries
        """
        return (
            self.session.query(MemoryEntry)
            .filter(MemoryEntry.namespace == namespace)
            .order_by(desc(MemoryEntry.created_at), desc(MemoryEntry.id))
            .limit(n)
            .all()
        )

    def get_latest(self, key: str) -> Optional[MemoryEntry]:
        """Latest entry stored under an exact key."""
        return (
            self.session.query(MemoryEntry)
            .filter(MemoryEntry.key == key)
            .order_by(desc(MemoryEntry.created_at), desc(MemoryEntry.id))
            .first()
        )
