from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from threading import RLock
from typing import Dict, Iterable, List, Optional, Tuple

from .models import TodoEntity
from .schemas import TodoCreate, TodoUpdate
from .settings import get_settings

SORT_FIELDS = {"created_at", "updated_at"}

# Fields that an explicit null in an update clears instead of ignoring
NULLABLE_FIELDS = {"description", "due_date"}


@dataclass(frozen=True)
class ListQuery:
    """
    Query parameters for listing todos.
    """
    limit: Optional[int] = None  # None returns every matching item
    offset: int = 0
    completed: Optional[bool] = None
    search: Optional[str] = None
    sort: str = "created_at"  # allowed: created_at, -created_at, updated_at, -updated_at


def parse_sort(sort: Optional[str]) -> Tuple[str, bool]:
    """Split a sort spec into (field, descending), falling back to created_at."""
    key = (sort or "created_at").strip().lower()
    descending = key.startswith("-")
    field = key.lstrip("-")
    if field not in SORT_FIELDS:
        field = "created_at"
    return field, descending


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def changed_fields(data: TodoUpdate) -> Dict[str, object]:
    """
    Return the fields an update actually sets. Explicit nulls are kept only for
    fields that may be cleared.
    """
    changes: Dict[str, object] = {}
    for name in data.model_fields_set:
        value = getattr(data, name)
        if value is None and name not in NULLABLE_FIELDS:
            continue
        changes[name] = value
    return changes


# PUBLIC_INTERFACE
class Repository(ABC):
    """Abstract repository contract for todo storage backends."""

    @abstractmethod
    def create(self, owner_id: str, data: TodoCreate) -> TodoEntity:
        """Create and return a new incomplete TodoEntity owned by owner_id."""

    @abstractmethod
    def get(self, todo_id: int) -> Optional[TodoEntity]:
        """Return a TodoEntity by id, or None if not found."""

    @abstractmethod
    def update(self, todo_id: int, data: TodoUpdate) -> Optional[TodoEntity]:
        """Update fields of an existing TodoEntity. Return updated entity or None if not found."""

    @abstractmethod
    def toggle(self, todo_id: int) -> Optional[TodoEntity]:
        """Atomically flip the completed flag. Return updated entity or None if not found."""

    @abstractmethod
    def delete(self, todo_id: int) -> bool:
        """Delete a TodoEntity by id. Return True if deleted, False if not found."""

    @abstractmethod
    def list(self, owner_id: str, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        """
        Return a slice of owner_id's TodoEntities and the total count matching filters.
        - Supports limit/offset
        - Filter by completed
        - Substring search across title and description (case-insensitive)
        - Sorting by created_at/updated_at (asc/desc), ties broken by id
        """

    @abstractmethod
    def counts(self, owner_id: str) -> Tuple[int, int]:
        """Return (total, completed) counts for owner_id."""


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: dict[int, TodoEntity] = {}
        self._next_id = 1

    def _allocate_id(self) -> int:
        with self._lock:
            i = self._next_id
            self._next_id += 1
            return i

    def create(self, owner_id: str, data: TodoCreate) -> TodoEntity:
        now = utcnow()
        entity: TodoEntity = {
            "id": self._allocate_id(),
            "owner_id": owner_id,
            "title": data.title,
            "description": data.description,
            "completed": False,
            "priority": data.priority,
            "due_date": data.due_date,
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            self._items[entity["id"]] = entity
        return entity.copy()

    def get(self, todo_id: int) -> Optional[TodoEntity]:
        with self._lock:
            item = self._items.get(todo_id)
            return None if item is None else item.copy()

    def update(self, todo_id: int, data: TodoUpdate) -> Optional[TodoEntity]:
        with self._lock:
            existing = self._items.get(todo_id)
            if existing is None:
                return None

            updated = existing.copy()
            updated.update(changed_fields(data))  # type: ignore[typeddict-item]
            updated["updated_at"] = utcnow()

            self._items[todo_id] = updated
            return updated.copy()

    def toggle(self, todo_id: int) -> Optional[TodoEntity]:
        with self._lock:
            existing = self._items.get(todo_id)
            if existing is None:
                return None
            updated = existing.copy()
            updated["completed"] = not existing["completed"]
            updated["updated_at"] = utcnow()
            self._items[todo_id] = updated
            return updated.copy()

    def delete(self, todo_id: int) -> bool:
        with self._lock:
            return self._items.pop(todo_id, None) is not None

    def list(self, owner_id: str, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        q = query or ListQuery()
        with self._lock:
            items: Iterable[TodoEntity] = [t for t in self._items.values() if t["owner_id"] == owner_id]

            if q.completed is not None:
                items = [t for t in items if t["completed"] == q.completed]

            if q.search:
                s = q.search.lower()
                def matches(t: TodoEntity) -> bool:
                    title_ok = s in (t["title"] or "").lower()
                    desc_ok = s in t["description"].lower() if t["description"] else False
                    return title_ok or desc_ok
                items = [t for t in items if matches(t)]

            items = list(items)
            total = len(items)

            field, descending = parse_sort(q.sort)
            items_sorted = sorted(items, key=lambda t: (t[field], t["id"]), reverse=descending)

            start = max(q.offset, 0)
            page = items_sorted[start:] if q.limit is None else items_sorted[start:start + max(q.limit, 0)]

            # Return copies to avoid external mutation
            return [t.copy() for t in page], total

    def counts(self, owner_id: str) -> Tuple[int, int]:
        with self._lock:
            owned = [t for t in self._items.values() if t["owner_id"] == owner_id]
            return len(owned), sum(1 for t in owned if t["completed"])


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_repository() -> Repository:
    """
    Factory returning the configured repository based on settings. The
    instance is shared for the lifetime of the process.
    - memory: InMemoryRepository
    - sqlite: SQLiteRepository
    """
    settings = get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteRepository

        return SQLiteRepository(settings.sqlite_db_path)
    return InMemoryRepository()
