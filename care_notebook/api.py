import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Annotated, Any, TypeVar
from uuid import uuid4

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import Field

from care_notebook import config
from care_notebook.adapter import NotebookAdapter, NowFn
from care_notebook.database import (
    InMemoryKeyValueDatabase,
    SqliteDocumentStore,
    Store,
)
from care_notebook.errors import Cancelled, NotebookError, Unknown, ValidationFailed
from care_notebook.logger import get_logger, setup_logger
from care_notebook.models import (
    CamelModel,
    CareNote,
    Caretaker,
    HistoryEntry,
    NotebookMetadata,
    Task,
    TodayState,
)
from care_notebook.notebook_index import (
    NotebookIndex,
    load_index,
    remember,
    resolve,
    save_index,
)

logger = get_logger(__name__)

router = APIRouter()

T = TypeVar("T")

# how often an in-flight store call checks whether the client went away
DISCONNECT_POLL_SECONDS = 0.05


def if_match_revision(
    if_match: Annotated[str | None, Header(alias="If-Match")] = None,
) -> int | None:
    """Accept `If-Match: 3` as well as the quoted entity-tag form `"3"`."""
    if if_match is None:
        return None
    raw = if_match.strip()
    if raw.startswith("W/"):
        raw = raw[2:]
    raw = raw.strip('"')
    try:
        return int(raw)
    except ValueError:
        raise ValidationFailed(
            f"If-Match must be a notebook revision number, got {if_match!r}."
        ) from None


IfMatch = Annotated[int | None, Depends(if_match_revision)]


async def _run(
    request: Request, call: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """
    Run a blocking store call on the threadpool. If the client disconnects
    first, interrupt the store so the call ends with Cancelled.
    """
    work = asyncio.ensure_future(run_in_threadpool(call, *args, **kwargs))
    while True:
        done, _ = await asyncio.wait({work}, timeout=DISCONNECT_POLL_SECONDS)
        if done:
            return work.result()
        if await request.is_disconnected():
            logger.debug(
                "%s %s: client disconnected, interrupting store",
                request.method,
                request.url.path,
            )
            request.app.state.store.interrupt()


class CreateNotebookRequest(CamelModel):
    caree_name: str
    device_id: str | None = None


class CreateNotebookResponse(NotebookMetadata):
    notebook_id: str


class UpdateNotebookRequest(CamelModel):
    caree_name: str


class ResolveNotebookRequest(CamelModel):
    notebook: str | None = None


class ResolveNotebookResponse(CamelModel):
    notebook_id: str | None
    index: NotebookIndex


class NoteRequest(CamelModel):
    note: str
    requested_by: str | None = None


class TaskRequest(CamelModel):
    text: str


class ToggleTaskRequest(CamelModel):
    completed: bool


class CaretakerRequest(CamelModel):
    name: str


class RenameCaretakerRequest(CamelModel):
    new_name: str


class HandoffRequest(CamelModel):
    to_caregiver: str = Field(alias="toCaregiverName")


def _adapter(request: Request, notebook_id: str) -> NotebookAdapter:
    state = request.app.state
    return NotebookAdapter(
        state.store,
        notebook_id,
        now_fn=state.now_fn,
        tz=state.tz,
        edit_window=state.edit_window,
    )


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


# --- notebooks ---


@router.post("/notebooks", status_code=201)
async def create_notebook(
    body: CreateNotebookRequest, request: Request
) -> CreateNotebookResponse:
    notebook_id = str(uuid4())
    store: Store = request.app.state.store

    def create() -> NotebookMetadata:
        metadata = _adapter(request, notebook_id).create(body.caree_name)
        if body.device_id:
            index = load_index(store, body.device_id)
            save_index(
                store,
                body.device_id,
                remember(index, notebook_id, request.app.state.now_fn()),
            )
        return metadata

    metadata = await _run(request, create)
    return CreateNotebookResponse(notebook_id=notebook_id, **metadata.model_dump())


@router.get("/notebooks/{notebook_id}")
async def get_notebook(notebook_id: str, request: Request) -> NotebookMetadata:
    return await _run(request, _adapter(request, notebook_id).get_metadata)


@router.patch("/notebooks/{notebook_id}")
async def update_notebook(
    notebook_id: str, body: UpdateNotebookRequest, request: Request
) -> NotebookMetadata:
    return await _run(
        request, _adapter(request, notebook_id).update_metadata, body.caree_name
    )


@router.get("/devices/{device_id}/notebooks")
async def list_device_notebooks(device_id: str, request: Request) -> NotebookIndex:
    return await _run(request, load_index, request.app.state.store, device_id)


@router.post("/devices/{device_id}/resolve")
async def resolve_device_notebook(
    device_id: str, body: ResolveNotebookRequest, request: Request
) -> ResolveNotebookResponse:
    store: Store = request.app.state.store

    def resolve_and_save() -> ResolveNotebookResponse:
        index = load_index(store, device_id)
        notebook_id, updated = resolve(
            index, body.notebook, request.app.state.now_fn()
        )
        if updated != index:
            save_index(store, device_id, updated)
        return ResolveNotebookResponse(notebook_id=notebook_id, index=updated)

    return await _run(request, resolve_and_save)


# --- today / notes ---


@router.get("/notebooks/{notebook_id}/today")
async def load_today(notebook_id: str, request: Request) -> TodayState:
    return await _run(request, _adapter(request, notebook_id).load_today)


@router.get("/notebooks/{notebook_id}/notes")
async def notes_by_date(
    notebook_id: str, request: Request
) -> dict[str, list[CareNote]]:
    return await _run(request, _adapter(request, notebook_id).get_notes_by_date)


@router.get("/notebooks/{notebook_id}/history")
async def history(
    notebook_id: str,
    request: Request,
    limit: Annotated[int, Query(ge=1)] = 3,
) -> list[HistoryEntry]:
    return await _run(request, _adapter(request, notebook_id).history, limit)


@router.post("/notebooks/{notebook_id}/notes", status_code=201)
async def add_note(
    notebook_id: str,
    body: NoteRequest,
    request: Request,
    if_match: IfMatch,
) -> CareNote:
    return await _run(
        request,
        _adapter(request, notebook_id).add_note,
        body.note,
        expected_revision=if_match,
    )


@router.patch("/notebooks/{notebook_id}/notes/{note_id}")
async def update_note(
    notebook_id: str,
    note_id: str,
    body: NoteRequest,
    request: Request,
    if_match: IfMatch,
) -> CareNote:
    return await _run(
        request,
        _adapter(request, notebook_id).update_note,
        note_id,
        body.note,
        requested_by=body.requested_by,
        expected_revision=if_match,
    )


@router.delete("/notebooks/{notebook_id}/notes/{note_id}", status_code=204)
async def delete_note(
    notebook_id: str,
    note_id: str,
    request: Request,
    if_match: IfMatch,
    requested_by: str | None = None,
) -> Response:
    await _run(
        request,
        _adapter(request, notebook_id).delete_note,
        note_id,
        requested_by=requested_by,
        expected_revision=if_match,
    )
    return Response(status_code=204)


# --- tasks ---


@router.post("/notebooks/{notebook_id}/tasks", status_code=201)
async def add_task(
    notebook_id: str,
    body: TaskRequest,
    request: Request,
    if_match: IfMatch,
) -> Task:
    return await _run(
        request,
        _adapter(request, notebook_id).add_task,
        body.text,
        expected_revision=if_match,
    )


@router.patch("/notebooks/{notebook_id}/tasks/{task_id}")
async def update_task(
    notebook_id: str,
    task_id: str,
    body: TaskRequest,
    request: Request,
    if_match: IfMatch,
) -> Task:
    return await _run(
        request,
        _adapter(request, notebook_id).update_task,
        task_id,
        body.text,
        expected_revision=if_match,
    )


@router.post("/notebooks/{notebook_id}/tasks/{task_id}/toggle")
async def toggle_task(
    notebook_id: str,
    task_id: str,
    body: ToggleTaskRequest,
    request: Request,
    if_match: IfMatch,
) -> Task:
    return await _run(
        request,
        _adapter(request, notebook_id).toggle_task,
        task_id,
        body.completed,
        expected_revision=if_match,
    )


@router.delete("/notebooks/{notebook_id}/tasks/{task_id}", status_code=204)
async def delete_task(
    notebook_id: str,
    task_id: str,
    request: Request,
    if_match: IfMatch,
) -> Response:
    await _run(
        request,
        _adapter(request, notebook_id).delete_task,
        task_id,
        expected_revision=if_match,
    )
    return Response(status_code=204)


# --- caretakers / handoff ---


@router.get("/notebooks/{notebook_id}/caretakers")
async def get_caretakers(notebook_id: str, request: Request) -> list[Caretaker]:
    return await _run(request, _adapter(request, notebook_id).get_caretakers)


@router.post("/notebooks/{notebook_id}/caretakers", status_code=201)
async def add_caretaker(
    notebook_id: str,
    body: CaretakerRequest,
    request: Request,
    if_match: IfMatch,
) -> list[Caretaker]:
    return await _run(
        request,
        _adapter(request, notebook_id).add_caretaker,
        body.name,
        expected_revision=if_match,
    )


@router.post("/notebooks/{notebook_id}/caretakers/{name}/archive")
async def archive_caretaker(
    notebook_id: str, name: str, request: Request, if_match: IfMatch
) -> list[Caretaker]:
    return await _run(
        request,
        _adapter(request, notebook_id).archive_caretaker,
        name,
        expected_revision=if_match,
    )


@router.post("/notebooks/{notebook_id}/caretakers/{name}/restore")
async def restore_caretaker(
    notebook_id: str, name: str, request: Request, if_match: IfMatch
) -> list[Caretaker]:
    return await _run(
        request,
        _adapter(request, notebook_id).restore_caretaker,
        name,
        expected_revision=if_match,
    )


@router.post("/notebooks/{notebook_id}/caretakers/{name}/primary")
async def set_primary_caretaker(
    notebook_id: str, name: str, request: Request, if_match: IfMatch
) -> list[Caretaker]:
    return await _run(
        request,
        _adapter(request, notebook_id).set_primary_caretaker,
        name,
        expected_revision=if_match,
    )


@router.patch("/notebooks/{notebook_id}/caretakers/{name}")
async def rename_caretaker(
    notebook_id: str,
    name: str,
    body: RenameCaretakerRequest,
    request: Request,
    if_match: IfMatch,
) -> list[Caretaker]:
    return await _run(
        request,
        _adapter(request, notebook_id).update_caretaker_name,
        name,
        body.new_name,
        expected_revision=if_match,
    )


@router.post("/notebooks/{notebook_id}/handoff")
async def handoff(
    notebook_id: str,
    body: HandoffRequest,
    request: Request,
    if_match: IfMatch,
) -> TodayState:
    return await _run(
        request,
        _adapter(request, notebook_id).handoff,
        body.to_caregiver,
        expected_revision=if_match,
    )


async def notebook_error_handler(request: Request, exc: NotebookError) -> Response:
    if isinstance(exc, Cancelled):
        # the client went away; nothing to report
        logger.debug("%s %s cancelled", request.method, request.url.path)
        return Response(status_code=exc.status_code)

    if isinstance(exc, Unknown):
        logger.error(
            "%s %s failed: %s",
            request.method,
            request.url.path,
            exc.detail,
            exc_info=exc,
        )
        detail = exc.user_message
    else:
        logger.info(
            "%s %s rejected (%s): %s",
            request.method,
            request.url.path,
            exc.code,
            exc.detail,
        )
        detail = exc.detail

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": detail},
    )


def _default_store() -> Store:
    if config.store_backend() == "sqlite":
        return SqliteDocumentStore(config.database_path())
    return InMemoryKeyValueDatabase()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # an injected store belongs to the caller
    if app.state.owns_store:
        logger.info("closing %s", type(app.state.store).__name__)
        app.state.store.close()


def create_app(
    store: Store | None = None,
    *,
    now_fn: NowFn | None = None,
    tz: tzinfo | None = None,
    edit_window_minutes: int | None = None,
) -> FastAPI:
    """
    Build the service. Arguments override configuration;
    edit_window_minutes=0 disables the note edit window.
    """
    setup_logger()

    app = FastAPI(lifespan=lifespan)
    app.state.owns_store = store is None
    app.state.store = store if store is not None else _default_store()
    app.state.now_fn = now_fn or (lambda: datetime.now(UTC))
    app.state.tz = tz or config.timezone()
    if edit_window_minutes is None:
        app.state.edit_window = config.edit_window()
    elif edit_window_minutes > 0:
        app.state.edit_window = timedelta(minutes=edit_window_minutes)
    else:
        app.state.edit_window = None

    app.add_exception_handler(NotebookError, notebook_error_handler)
    app.include_router(router)
    return app
