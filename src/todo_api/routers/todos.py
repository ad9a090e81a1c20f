from __future__ import annotations

import asyncio
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from ..auth import get_current_user
from ..errors import TodoBadRequestError
from ..events import TodoEvent, TodoEventBroker, get_broker
from ..repositories import SORT_FIELDS, ListQuery
from ..schemas import TodoCreate, TodoOut, TodoReplace, TodoStats, TodoUpdate
from ..service import TodoService, get_service
from ..settings import get_settings
from ..utils import pagination_envelope

router = APIRouter(
    prefix="/api/v1/todos",
    tags=["todos"],
)

_ERROR_RESPONSES = {
    401: {"description": "Not authenticated"},
    403: {"description": "Todo belongs to another user"},
    404: {"description": "Todo not found"},
}


class PaginationEnvelope(BaseModel):
    """
    Envelope for paginated list responses.
    """
    items: List[TodoOut] = Field(..., description="List of Todo items")
    total: int = Field(..., description="Total number of items matching the query")
    limit: Optional[int] = Field(..., description="Limit applied to the query, null when unlimited")
    offset: int = Field(..., description="Offset applied to the query")


async def todo_event_stream(
    user_id: str,
    service: TodoService,
    broker: TodoEventBroker,
    ping_seconds: float,
) -> AsyncIterator[str]:
    """
    Yield text/event-stream frames for one user: an initial snapshot, then a
    snapshot after each of their mutations, with pings while idle.
    """
    async with broker.subscribe(user_id) as sub:
        # Subscribe before reading so no mutation falls between the two
        initial = await run_in_threadpool(service.snapshot, user_id)
        yield initial.to_sse()
        while True:
            try:
                event = await asyncio.wait_for(sub.get(), timeout=ping_seconds)
            except asyncio.TimeoutError:
                event = TodoEvent("ping", {})
            yield event.to_sse()


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TodoOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo",
    description="Create a new Todo item for the current user. New items start incomplete.",
    responses={
        201: {"description": "Todo created successfully"},
        401: _ERROR_RESPONSES[401],
        422: {"description": "Validation error"},
    },
)
def create_todo(
    payload: TodoCreate,
    user_id: str = Depends(get_current_user),
    service: TodoService = Depends(get_service),
) -> TodoOut:
    """
    Create a new Todo.
    """
    return service.create(user_id, payload)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=PaginationEnvelope,
    summary="List Todos",
    description=(
        "List the current user's todos with optional filters and pagination.\n\n"
        "Query parameters:\n"
        "- limit: max number of items to return (0..1000); omit for all items\n"
        "- offset: number of items to skip (>=0)\n"
        "- completed: filter by completion status\n"
        "- q: search query for title/description (substring match)\n"
        "- sort: one of created_at (default), -created_at, updated_at, -updated_at\n"
        "- order: asc or desc (if provided, it overrides the direction in sort)\n\n"
        "Returns a pagination envelope with items and total count."
    ),
    responses={
        200: {"description": "List retrieved successfully"},
        400: {"description": "Invalid query parameters"},
        401: _ERROR_RESPONSES[401],
    },
)
def list_todos(
    limit: Optional[int] = Query(None, ge=0, le=1000, description="Maximum number of items to return"),
    offset: int = Query(0, ge=0, description="Number of items to skip"),
    completed: Optional[bool] = Query(None, description="Filter by completion status"),
    q: Optional[str] = Query(None, description="Search text for title/description"),
    sort: Optional[str] = Query(
        "created_at",
        description="Sort by field: created_at, -created_at, updated_at, -updated_at",
    ),
    order: Optional[str] = Query(
        None, description="Override sort direction: 'asc' or 'desc'"
    ),
    user_id: str = Depends(get_current_user),
    service: TodoService = Depends(get_service),
) -> PaginationEnvelope:
    """
    List todos with pagination and filters.
    """
    normalized_sort = (sort or "created_at").strip().lower()
    field = normalized_sort.lstrip("-")
    if field not in SORT_FIELDS:
        field = "created_at"
        normalized_sort = field
    if order:
        ord_norm = order.strip().lower()
        if ord_norm not in {"asc", "desc"}:
            raise TodoBadRequestError("order must be 'asc' or 'desc'")
        normalized_sort = f"-{field}" if ord_norm == "desc" else field

    query = ListQuery(
        limit=limit,
        offset=offset,
        completed=completed,
        search=q.strip() if q and q.strip() else None,
        sort=normalized_sort,
    )
    items, total = service.list(user_id, query)
    envelope = pagination_envelope(items=items, total=total, limit=limit, offset=offset)
    return PaginationEnvelope(**envelope)


# PUBLIC_INTERFACE
@router.get(
    "/stats",
    response_model=TodoStats,
    summary="Todo Counts",
    description="Total, active and completed counts for the current user.",
    responses={401: _ERROR_RESPONSES[401]},
)
def todo_stats(
    user_id: str = Depends(get_current_user),
    service: TodoService = Depends(get_service),
) -> TodoStats:
    return service.stats(user_id)


# PUBLIC_INTERFACE
@router.get(
    "/stream",
    summary="Live Todo Updates",
    description=(
        "Server-Sent Events stream of the current user's list. Emits a 'snapshot' "
        "event on connect and after every change, and 'ping' events while idle."
    ),
    response_class=StreamingResponse,
    responses={
        200: {"content": {"text/event-stream": {}}, "description": "Event stream"},
        401: _ERROR_RESPONSES[401],
    },
)
async def stream_todos(
    user_id: str = Depends(get_current_user),
    service: TodoService = Depends(get_service),
    broker: TodoEventBroker = Depends(get_broker),
) -> StreamingResponse:
    return StreamingResponse(
        todo_event_stream(user_id, service, broker, get_settings().stream_ping_seconds),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Get Todo",
    description="Get a single Todo item by ID.",
    responses={200: {"description": "Todo found"}, **_ERROR_RESPONSES},
)
def get_todo(
    todo_id: int,
    user_id: str = Depends(get_current_user),
    service: TodoService = Depends(get_service),
) -> TodoOut:
    """
    Retrieve a single Todo item by its ID.
    """
    return service.get(user_id, todo_id)


# PUBLIC_INTERFACE
@router.put(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Replace Todo",
    description=(
        "Replace an existing Todo item. Any fields omitted will be set to their default/null "
        "equivalent as per the schema."
    ),
    responses={200: {"description": "Todo updated"}, **_ERROR_RESPONSES},
)
def put_todo(
    todo_id: int,
    payload: TodoReplace,
    user_id: str = Depends(get_current_user),
    service: TodoService = Depends(get_service),
) -> TodoOut:
    """
    Full update (replace) semantics implemented via the partial update by
    sending every field explicitly.
    """
    update = TodoUpdate(**payload.model_dump())
    return service.update(user_id, todo_id, update)


# PUBLIC_INTERFACE
@router.patch(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Update Todo",
    description="Partially update fields of a Todo item.",
    responses={200: {"description": "Todo updated"}, **_ERROR_RESPONSES},
)
def patch_todo(
    todo_id: int,
    payload: TodoUpdate,
    user_id: str = Depends(get_current_user),
    service: TodoService = Depends(get_service),
) -> TodoOut:
    """
    Partial update of a Todo item.
    """
    return service.update(user_id, todo_id, payload)


# PUBLIC_INTERFACE
@router.post(
    "/{todo_id}/toggle",
    response_model=TodoOut,
    summary="Toggle Todo",
    description="Flip the completion flag of a Todo item.",
    responses={200: {"description": "Todo toggled"}, **_ERROR_RESPONSES},
)
def toggle_todo(
    todo_id: int,
    user_id: str = Depends(get_current_user),
    service: TodoService = Depends(get_service),
) -> TodoOut:
    return service.toggle_complete(user_id, todo_id)


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete Todo",
    description="Delete a Todo item by ID.",
    responses={204: {"description": "Todo deleted"}, **_ERROR_RESPONSES},
)
def delete_todo(
    todo_id: int,
    user_id: str = Depends(get_current_user),
    service: TodoService = Depends(get_service),
) -> None:
    """
    Delete a Todo. Returns 204 on success.
    """
    service.remove(user_id, todo_id)
    return None
