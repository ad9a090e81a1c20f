"""
Todo service: the persistence/query contract used by the API.

Every operation takes the id of the authenticated user. Single-record
operations look the record up first (missing -> TodoNotFoundError) and then
check ownership (someone else's -> TodoForbiddenError) before acting. After
each successful mutation the owner's live subscribers receive a fresh
snapshot of their list.
"""
from __future__ import annotations

from typing import Any, List, Mapping, Optional, Tuple, Type, TypeVar, Union

import structlog
from fastapi import Depends
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ValidationError

from .errors import TodoForbiddenError, TodoNotFoundError, TodoValidationError
from .events import TodoEvent, TodoEventBroker, get_broker
from .models import TodoEntity
from .repositories import ListQuery, Repository, get_repository
from .schemas import TodoCreate, TodoOut, TodoStats, TodoUpdate

log = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)


def _coerce(model: Type[M], data: Union[M, Mapping[str, Any]]) -> M:
    """Accept either a validated schema instance or raw fields to validate."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise TodoValidationError(
            "Invalid todo data",
            detail=e.errors(include_url=False, include_context=False),
        ) from e


def to_out(entity: TodoEntity) -> TodoOut:
    """Map a stored entity to its public shape (drops owner_id)."""
    return TodoOut(**{k: v for k, v in entity.items() if k != "owner_id"})  # type: ignore[arg-type]


# PUBLIC_INTERFACE
class TodoService:
    """Ownership-checked todo operations on top of a Repository."""

    def __init__(self, repo: Repository, broker: Optional[TodoEventBroker] = None) -> None:
        self._repo = repo
        self._broker = broker

    def _owned(self, user_id: str, todo_id: int) -> TodoEntity:
        item = self._repo.get(todo_id)
        if item is None:
            raise TodoNotFoundError(todo_id)
        if item["owner_id"] != user_id:
            log.warning("todo_access_denied", todo_id=todo_id, user=user_id)
            raise TodoForbiddenError(todo_id)
        return item

    def _publish(self, user_id: str) -> None:
        if self._broker is None:
            return
        self._broker.publish_latest(user_id, lambda: self.snapshot(user_id))

    def snapshot(self, user_id: str) -> TodoEvent:
        """The user's full list as a stream event."""
        items, _ = self._repo.list(user_id)
        return TodoEvent("snapshot", jsonable_encoder([to_out(it) for it in items]))

    def list(self, user_id: str, query: Optional[ListQuery] = None) -> Tuple[List[TodoOut], int]:
        """Return user_id's todos (oldest first by default) and the total matching count."""
        items, total = self._repo.list(user_id, query)
        return [to_out(it) for it in items], total

    def get(self, user_id: str, todo_id: int) -> TodoOut:
        return to_out(self._owned(user_id, todo_id))

    def create(self, user_id: str, data: Union[TodoCreate, Mapping[str, Any]]) -> TodoOut:
        payload = _coerce(TodoCreate, data)
        created = self._repo.create(user_id, payload)
        log.info("todo_created", todo_id=created["id"], user=user_id)
        self._publish(user_id)
        return to_out(created)

    def update(self, user_id: str, todo_id: int, data: Union[TodoUpdate, Mapping[str, Any]]) -> TodoOut:
        payload = _coerce(TodoUpdate, data)
        self._owned(user_id, todo_id)
        updated = self._repo.update(todo_id, payload)
        if updated is None:
            # Removed between the ownership check and the write
            raise TodoNotFoundError(todo_id)
        log.info("todo_updated", todo_id=todo_id, user=user_id, fields=sorted(payload.model_fields_set))
        self._publish(user_id)
        return to_out(updated)

    def toggle_complete(self, user_id: str, todo_id: int) -> TodoOut:
        self._owned(user_id, todo_id)
        toggled = self._repo.toggle(todo_id)
        if toggled is None:
            raise TodoNotFoundError(todo_id)
        log.info("todo_toggled", todo_id=todo_id, user=user_id, completed=toggled["completed"])
        self._publish(user_id)
        return to_out(toggled)

    def remove(self, user_id: str, todo_id: int) -> None:
        self._owned(user_id, todo_id)
        if not self._repo.delete(todo_id):
            raise TodoNotFoundError(todo_id)
        log.info("todo_removed", todo_id=todo_id, user=user_id)
        self._publish(user_id)

    def stats(self, user_id: str) -> TodoStats:
        total, completed = self._repo.counts(user_id)
        return TodoStats(total=total, active=total - completed, completed=completed)


# PUBLIC_INTERFACE
def get_service(
    repo: Repository = Depends(get_repository),
    broker: TodoEventBroker = Depends(get_broker),
) -> TodoService:
    """FastAPI dependency building the service from the shared repository and broker."""
    return TodoService(repo, broker)
