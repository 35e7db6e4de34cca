"""HTTP API over one simulator instance.

The browser UI (thread list, editor, preview) talks to these routes; the
simulator is injected at construction and reachable from handlers via
``request.app.state.simulator``. Every mutating route answers with the
change snapshot the repository emitted, so clients can re-render from
the response alone.

Routes:
    GET    /api/health
    GET    /api/threads                    - Thread list + current id
    POST   /api/threads                    - Create a seeded thread
    GET    /api/threads/current            - Current thread
    PATCH  /api/threads/{id}               - Rename
    DELETE /api/threads/{id}               - Delete
    POST   /api/threads/{id}/duplicate     - Duplicate
    GET    /api/navigation                 - Address + current id
    POST   /api/navigate                   - Open a thread (push)
    POST   /api/navigate/back|forward      - History traversal
    POST   /api/messages                   - Add placeholder message
    PATCH  /api/messages/{id}              - Update message
    DELETE /api/messages/{id}              - Delete message
    POST   /api/messages/{id}/images       - Attach image
    PATCH  /api/recipient                  - Update recipient
    POST   /api/clear                      - Restart the demo
    GET    /api/export                     - Export current thread
    POST   /api/import                     - Import as new thread
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from message_simulator import __version__
from message_simulator.events import ChangeEvent
from message_simulator.models import Thread, display_name
from message_simulator.navigation import HistoryNavigation
from message_simulator.simulator import Simulator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["simulator"])


# --- Request bodies ---


class ImageBody(BaseModel):
    src: str


class MessageCreateBody(BaseModel):
    after_id: str | None = None


class ImagePatch(BaseModel):
    id: str | None = None
    src: str


class MessagePatchBody(BaseModel):
    message: str | None = None
    sender: Literal["self", "other"] | None = None
    images: list[ImagePatch] | None = None


class RecipientBody(BaseModel):
    name: str | None = None
    location: str | None = None


class RenameBody(BaseModel):
    name: str | None = None


class NavigateBody(BaseModel):
    thread_id: str


# --- Helpers ---


def _sim(request: Request) -> Simulator:
    return request.app.state.simulator


def _summary(thread: Thread) -> dict[str, Any]:
    last = thread.messages[-1].message if thread.messages else ""
    return {
        "id": thread.id,
        "name": thread.name,
        "displayName": display_name(thread),
        "recipient": thread.recipient.to_dict(),
        "createdAt": thread.created_at,
        "updatedAt": thread.updated_at,
        "messageCount": len(thread.messages),
        "lastMessage": last,
    }


def _thread_body(thread: Thread) -> dict[str, Any]:
    return {**thread.to_dict(), "displayName": display_name(thread)}


class _EventRecorder:
    """Collect the events one repository call emits."""

    def __init__(self, sim: Simulator) -> None:
        self._sim = sim
        self.events: list[ChangeEvent] = []

    def __enter__(self) -> _EventRecorder:
        self._unsubscribe = self._sim.repository.subscribe(self.events.append)
        return self

    def __exit__(self, *exc: object) -> None:
        self._unsubscribe()

    def last(self) -> dict[str, Any] | None:
        return self.events[-1].to_dict() if self.events else None


def _not_found(what: str, item_id: str) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": f"{what} {item_id!r} not found"})


# --- Threads ---


@router.get("/health")
async def health(request: Request) -> dict:
    sim = _sim(request)
    return {
        "status": "ok",
        "version": __version__,
        "threads": len(sim.repository.list_threads()),
        "save_pending": sim.repository.save_pending,
    }


@router.get("/threads")
async def list_threads(request: Request) -> dict:
    repo = _sim(request).repository
    return {
        "threads": [_summary(t) for t in repo.list_threads()],
        "current_thread_id": repo.current_thread_id,
    }


@router.post("/threads")
async def create_thread(request: Request) -> JSONResponse:
    thread = _sim(request).repository.create_thread()
    return JSONResponse(status_code=201, content={"thread": _thread_body(thread)})


@router.get("/threads/current")
async def current_thread(request: Request) -> dict:
    thread = _sim(request).repository.get_current_thread()
    return {"thread": _thread_body(thread) if thread else None}


@router.patch("/threads/{thread_id}")
async def rename_thread(request: Request, thread_id: str, body: RenameBody) -> Any:
    repo = _sim(request).repository
    if not repo.rename_thread(thread_id, body.name):
        return _not_found("Thread", thread_id)
    thread = repo.get_thread(thread_id)
    return {"thread": _thread_body(thread) if thread else None}


@router.delete("/threads/{thread_id}")
async def delete_thread(request: Request, thread_id: str) -> Any:
    sim = _sim(request)
    if not sim.repository.delete_thread(thread_id):
        return _not_found("Thread", thread_id)
    return {"deleted": True, "current_thread_id": sim.repository.current_thread_id}


@router.post("/threads/{thread_id}/duplicate")
async def duplicate_thread(request: Request, thread_id: str) -> Any:
    thread = _sim(request).repository.duplicate_thread(thread_id)
    if thread is None:
        return _not_found("Thread", thread_id)
    return JSONResponse(status_code=201, content={"thread": _thread_body(thread)})


# --- Navigation ---


def _navigation_state(sim: Simulator) -> dict[str, Any]:
    state: dict[str, Any] = {
        "thread": sim.navigation.get_current_thread_id(),
        "current_thread_id": sim.repository.current_thread_id,
    }
    if isinstance(sim.navigation, HistoryNavigation):
        state["address"] = sim.navigation.address
    return state


@router.get("/navigation")
async def navigation(request: Request) -> dict:
    return _navigation_state(_sim(request))


@router.post("/navigate")
async def navigate(request: Request, body: NavigateBody) -> dict:
    sim = _sim(request)
    resolution = sim.reconciler.open_thread(body.thread_id)
    return {**_navigation_state(sim), "source": resolution.source}


async def _traverse(request: Request, delta: int) -> Any:
    sim = _sim(request)
    if not isinstance(sim.navigation, HistoryNavigation):
        return JSONResponse(
            status_code=409,
            content={"error": "History traversal is not available"},
        )
    moved = sim.navigation.go(delta)
    return {**_navigation_state(sim), "moved": moved}


@router.post("/navigate/back")
async def navigate_back(request: Request) -> Any:
    return await _traverse(request, -1)


@router.post("/navigate/forward")
async def navigate_forward(request: Request) -> Any:
    return await _traverse(request, 1)


# --- Messages of the current thread ---


@router.post("/messages")
async def add_message(request: Request, body: MessageCreateBody | None = None) -> Any:
    sim = _sim(request)
    with _EventRecorder(sim) as recorder:
        sim.repository.add_message(body.after_id if body else None)
    return JSONResponse(status_code=201, content=recorder.last())


@router.patch("/messages/{message_id}")
async def update_message(
    request: Request, message_id: str, body: MessagePatchBody
) -> Any:
    sim = _sim(request)
    patch = body.model_dump(exclude_unset=True)
    with _EventRecorder(sim) as recorder:
        updated = sim.repository.update_message(message_id, patch)
    if updated is None:
        return _not_found("Message", message_id)
    return recorder.last()


@router.delete("/messages/{message_id}")
async def delete_message(request: Request, message_id: str) -> Any:
    sim = _sim(request)
    with _EventRecorder(sim) as recorder:
        deleted = sim.repository.delete_message(message_id)
    if not deleted:
        return _not_found("Message", message_id)
    return recorder.last()


@router.post("/messages/{message_id}/images")
async def insert_image(request: Request, message_id: str, body: ImageBody) -> Any:
    sim = _sim(request)
    if not body.src:
        return JSONResponse(status_code=400, content={"error": "src is required"})
    with _EventRecorder(sim) as recorder:
        updated = sim.repository.insert_image(message_id, body.src)
    if updated is None:
        return _not_found("Message", message_id)
    return JSONResponse(status_code=201, content=recorder.last())


@router.patch("/recipient")
async def update_recipient(request: Request, body: RecipientBody) -> dict:
    sim = _sim(request)
    changed = sim.repository.update_recipient(body.model_dump(exclude_none=True))
    return {
        "changed": changed,
        "recipient": sim.repository.get_recipient().to_dict(),
    }


@router.post("/clear")
async def clear(request: Request) -> Any:
    sim = _sim(request)
    with _EventRecorder(sim) as recorder:
        sim.repository.clear()
    return recorder.last()


# --- Import / export ---


@router.get("/export")
async def export(request: Request, pretty: bool = True) -> Response:
    text = _sim(request).repository.export_json(pretty=pretty)
    return Response(
        content=text,
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="thread.json"'},
    )


@router.post("/import")
async def import_thread(request: Request) -> JSONResponse:
    sim = _sim(request)
    outcome = sim.repository.import_json(await request.body())
    if not outcome.ok or outcome.thread is None:
        return JSONResponse(status_code=400, content={"error": outcome.error})
    return JSONResponse(
        status_code=201,
        content={"thread": _thread_body(outcome.thread), "dropped": outcome.dropped},
    )


def create_app(simulator: Simulator) -> FastAPI:
    """FastAPI application serving *simulator*.

    The simulator is started on application startup (unless already
    started) and its pending save is flushed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if not simulator.reconciler.started:
            simulator.start()
        yield
        simulator.close()
        logger.info("Simulator closed")

    app = FastAPI(
        title="Message Simulator",
        version=__version__,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )
    app.state.simulator = simulator
    app.include_router(router)
    return app
