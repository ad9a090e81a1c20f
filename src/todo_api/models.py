from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional, TypedDict

Priority = Literal["low", "medium", "high"]

PRIORITIES = ("low", "medium", "high")


# PUBLIC_INTERFACE
class TodoEntity(TypedDict):
    """
    A lightweight domain model representing a Todo item for non-ORM storage
    backends.

    Fields:
    - id: Unique integer identifier, never reused
    - owner_id: Id of the user that created the item
    - title: Short title (1..200 chars, trimmed on input via schemas)
    - description: Optional detailed description
    - completed: Boolean completion flag
    - priority: One of low, medium, high
    - due_date: Optional due datetime (normalized to datetime in schemas)
    - created_at: UTC creation timestamp (datetime)
    - updated_at: UTC last update timestamp (datetime)
    """

    id: int
    owner_id: str
    title: str
    description: Optional[str]
    completed: bool
    priority: Priority
    due_date: Optional[datetime]
    created_at: datetime
    updated_at: datetime
