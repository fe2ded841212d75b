import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse

from .config import AppSettings, load_settings
from .db import Database
from .events import EventBus, sse_format
from .llm import FALLBACK_MODELS, ChatCompletionsClient
from .orchestrator import AgentOrchestrator
from .planning import PlanningCoordinator
from .providers import AdapterFactory, GeminiClientFactory, default_gemini_client
from .schemas import ModelsRequest, PlanRequest, SendMessageRequest, WriteFileRequest
from .session import SessionRunner
from .vfs import FileSystemError, PathNotFound
from .workspace import Workspace, open_workspace

logger = logging.getLogger("uvicorn.error")


def get_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.bus


def get_llm_client(request: Request) -> ChatCompletionsClient:
    return request.app.state.llm_client


def get_workspace(request: Request) -> Workspace:
    return request.app.state.workspace


def get_runner(request: Request) -> SessionRunner:
    return request.app.state.runner


def get_planner(request: Request) -> PlanningCoordinator:
    return request.app.state.planner


def get_session_tasks(request: Request) -> Dict[str, asyncio.Task]:
    return request.app.state.session_tasks


router = APIRouter()


@router.get("/api/health")
async def health(workspace: Workspace = Depends(get_workspace)):
    return {"ok": True, "backend": workspace.kind, "index": workspace.index.stats()}


@router.get("/settings")
async def get_settings_route(settings: AppSettings = Depends(get_settings)):
    return {"settings": settings.to_safe_dict()}


@router.get("/api/providers")
async def list_providers():
    return {"providers": sorted(FALLBACK_MODELS)}


@router.post("/api/models")
async def list_models(payload: ModelsRequest, llm_client: ChatCompletionsClient = Depends(get_llm_client)):
    models = await llm_client.fetch_available_models(payload.provider, payload.secret)
    return {"provider": payload.provider, "models": models}


@router.post("/api/plan")
async def generate_plan(payload: PlanRequest, planner: PlanningCoordinator = Depends(get_planner)):
    if not payload.agents:
        raise HTTPException(status_code=400, detail="At least one agent is required.")
    model = payload.model or payload.agents[0].model
    plan = await planner.generate_plan(payload.credential, model, payload.agents, payload.message)
    return {"plan": plan}


@router.post("/api/sessions/{session_id}/messages")
async def send_message(
    session_id: str,
    payload: SendMessageRequest,
    runner: SessionRunner = Depends(get_runner),
    session_tasks: Dict[str, asyncio.Task] = Depends(get_session_tasks),
):
    message = payload.message.strip()
    if not message and not payload.images:
        raise HTTPException(status_code=400, detail="Message is required.")
    if not payload.agents:
        raise HTTPException(status_code=400, detail="At least one agent is required.")
    batch_id = uuid.uuid4().hex

    async def run_and_cleanup() -> None:
        try:
            await runner.send(
                session_id,
                payload.agents,
                payload.credentials,
                message,
                images=payload.images,
                mode=payload.mode,
            )
        except Exception:
            logger.exception("Session %s batch %s crashed", session_id, batch_id)
        finally:
            if session_tasks.get(session_id) is task:
                session_tasks.pop(session_id, None)

    task = asyncio.create_task(run_and_cleanup())
    session_tasks[session_id] = task
    return {"session_id": session_id, "batch_id": batch_id, "agents": [a.id for a in payload.agents]}


@router.post("/api/sessions/{session_id}/stop")
async def stop_session(session_id: str, runner: SessionRunner = Depends(get_runner)):
    stopped = runner.stop(session_id)
    return {"ok": True, "status": "stopping" if stopped else "idle"}


@router.get("/api/sessions/{session_id}/messages")
async def session_messages(session_id: str, runner: SessionRunner = Depends(get_runner)):
    return {"messages": await runner.messages(session_id)}


@router.get("/api/workspace/tree")
async def workspace_tree(path: str = "", workspace: Workspace = Depends(get_workspace)):
    try:
        nodes = workspace.vfs.list_recursive(path, workspace.index.exclude)
    except PathNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except FileSystemError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"backend": workspace.kind, "tree": [n.to_dict() for n in nodes]}


@router.get("/api/workspace/file")
async def read_workspace_file(path: str, workspace: Workspace = Depends(get_workspace)):
    try:
        content = workspace.vfs.read(path)
    except PathNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except FileSystemError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"path": path, "content": content}


@router.put("/api/workspace/file")
async def write_workspace_file(payload: WriteFileRequest, workspace: Workspace = Depends(get_workspace)):
    try:
        workspace.vfs.write(payload.path, payload.content)
    except FileSystemError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"ok": True, "path": payload.path}


@router.get("/api/workspace/search")
async def search_workspace(q: str, workspace: Workspace = Depends(get_workspace)):
    return {"results": workspace.index.search(q)}


@router.get("/events")
async def stream_global_events(bus: EventBus = Depends(get_event_bus)):
    async def event_generator():
        queue = await bus.subscribe_global()
        try:
            while True:
                ev = await queue.get()
                yield sse_format(ev)
        except asyncio.CancelledError:
            pass
        finally:
            await bus.unsubscribe_global(queue)

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@router.get("/api/sessions/{session_id}/events")
async def stream_events(
    session_id: str,
    db: Database = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    # Preload past events then stream new ones
    async def event_generator():
        queue = await bus.subscribe(session_id)
        try:
            past = await db.list_events(session_id)
            for ev in past:
                yield sse_format(ev)
            while True:
                ev = await queue.get()
                yield sse_format(ev)
        except asyncio.CancelledError:
            pass
        finally:
            await bus.unsubscribe(session_id, queue)

    return StreamingResponse(event_generator(), media_type="text/event-stream")


def create_app(
    settings: AppSettings,
    *,
    db: Optional[Database] = None,
    llm_client: Optional[ChatCompletionsClient] = None,
    workspace: Optional[Workspace] = None,
    gemini_client_factory: GeminiClientFactory = default_gemini_client,
    adapters: Optional[AdapterFactory] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.db.init()
        try:
            yield
        finally:
            for task in list(app.state.session_tasks.values()):
                task.cancel()
            await app.state.llm_client.close()
            await app.state.workspace.close()

    app = FastAPI(title="Code Studio Agent Core", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db or Database(settings.database_path)
    app.state.llm_client = llm_client or ChatCompletionsClient(
        timeout=settings.request_timeout_s,
        referer=settings.app_referer,
        title=settings.app_title,
        max_output_tokens=settings.max_output_tokens,
    )
    app.state.workspace = workspace or open_workspace(settings)
    app.state.bus = EventBus(app.state.db)
    app.state.planner = PlanningCoordinator(app.state.llm_client, gemini_client_factory)
    adapter_factory = adapters or AdapterFactory(
        app.state.llm_client,
        registry=app.state.workspace.registry,
        gemini_client_factory=gemini_client_factory,
        max_output_tokens=settings.max_output_tokens,
    )
    app.state.orchestrator = AgentOrchestrator(
        app.state.workspace.executor, adapter_factory, max_turns=settings.max_tool_turns
    )
    app.state.runner = SessionRunner(
        settings,
        app.state.db,
        app.state.bus,
        app.state.workspace,
        app.state.orchestrator,
        app.state.planner,
    )
    app.state.session_tasks = {}
    app.include_router(router)
    return app


def build_app() -> FastAPI:
    return create_app(load_settings())


if __name__ == "__main__":
    import os
    import uvicorn

    settings = load_settings()
    reload_enabled = os.getenv("CODESTUDIO_RELOAD", "").lower() in ("1", "true", "yes", "on")
    try:
        uvicorn.run(
            "codestudio.main:build_app",
            factory=True,
            host=settings.host,
            port=settings.port,
            reload=reload_enabled,
        )
    except KeyboardInterrupt:
        pass
