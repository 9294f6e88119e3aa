"""
FastAPI application — the Find USCE directory service.

Run as a script:
    python app/app.py

Or as a module:
    uvicorn app.app:app --reload

Endpoints:
    GET  /programs            filtered, sorted, paginated listing
         query: q, state, usmle, visa, lor, accepting, sort, page
         returns: {"programs": [...], "total", "page", "total_pages", "page_size"}
    GET  /programs/featured   accepting programs for the landing page
    GET  /programs/{id}       one program (404 if unknown)
    GET  /states              state filter options
    GET  /specialties         specialty options
    GET  /stats               headline counts
    GET  /health              liveness + snapshot size
    POST /chat                body: {"messages": [{"role", "content"}, ...]}
                              returns: text/event-stream of  data: {"text": ...}
                              frames, terminated by  data: [DONE]

Logs each listing query and chat request with wall-clock time to stdout and
logs/app.log (rotating, 5 MB max, 3 backups).
"""

import asyncio
import logging
import logging.handlers
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask

# Ensure project root is on sys.path when running as a script (python app/app.py)
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.settings import Settings
from listing.catalog import ProgramCatalog
from listing.engine import ALL, SORT_NAME, ProgramFilters
from listing.models import Program
from relay.chat import ChatRelay, ChatRequest, ConfigurationError, GENERIC_ERROR, ReplyAccumulator
from relay.client import OpenAIChatClient

log = logging.getLogger("api")


def _setup_logging(log_dir: Path) -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    log_dir.mkdir(exist_ok=True)
    fmt = logging.Formatter("%(asctime)s  %(levelname)s  %(message)s")

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(fmt)

    # Rotate at 5 MB, keep 3 backups
    rotating = logging.handlers.RotatingFileHandler(
        log_dir / "app.log", maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    rotating.setFormatter(fmt)

    root.setLevel(logging.INFO)
    root.addHandler(stream)
    root.addHandler(rotating)


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------

def build_relay(settings: Settings) -> ChatRelay:
    """No key → a relay without a client, which answers every chat with a configuration error."""
    if not settings.api_key:
        log.warning("GEMINI_API_KEY not set; /chat will report a configuration error.")
        return ChatRelay(None, max_duration=settings.chat_max_duration)
    client = OpenAIChatClient.create(
        settings.api_key, base_url=settings.chat_base_url, model=settings.chat_model
    )
    log.info("  Chat client ready (%s).", settings.chat_model)
    return ChatRelay(client, max_duration=settings.chat_max_duration)


def create_app(
    settings: Settings | None = None,
    catalog: ProgramCatalog | None = None,
    relay: ChatRelay | None = None,
) -> FastAPI:
    """
    Build the service.

    Anything not passed in is constructed by the lifespan from `settings`
    (or the environment), so tests can inject a catalog and relay directly.
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _setup_logging(settings.log_dir)
        if app.state.catalog is None:
            log.info("Loading program snapshot…")
            app.state.catalog = ProgramCatalog.load(settings.programs_file)
            log.info("  %d programs loaded.", len(app.state.catalog))
        if app.state.relay is None:
            app.state.relay = build_relay(settings)
        yield  # server runs here

    app = FastAPI(title="Find USCE", lifespan=lifespan)
    app.state.settings = settings
    app.state.catalog  = catalog
    app.state.relay    = relay
    app.include_router(router)
    return app


def get_catalog(request: Request) -> ProgramCatalog:
    return request.app.state.catalog


def get_relay(request: Request) -> ChatRelay:
    return request.app.state.relay


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class ProgramsPage(BaseModel):
    programs: list[Program]
    total: int
    page: int
    total_pages: int
    page_size: int


class Stats(BaseModel):
    total: int
    states: int
    accepting: int
    with_lor: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

router = APIRouter()


@router.get("/health")
def health(catalog: ProgramCatalog = Depends(get_catalog)) -> dict:
    return {"status": "ok", "programs": len(catalog)}


@router.get("/programs", response_model=ProgramsPage)
def list_programs(
    q: str = "",
    state: str = ALL,
    usmle: str = ALL,
    visa: str = ALL,
    lor: bool | None = None,
    accepting: bool | None = None,
    sort: str = SORT_NAME,
    page: int = 1,
    catalog: ProgramCatalog = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
) -> ProgramsPage:
    t0 = time.perf_counter()
    filters = ProgramFilters(
        search=q, state=state, usmle_step=usmle, visa=visa, lor=lor, accepting=accepting
    )
    result = catalog.search(filters, sort=sort, page=page, page_size=settings.page_size)

    elapsed = time.perf_counter() - t0
    log.info(
        "programs  q=%r  state=%r  usmle=%r  visa=%r  lor=%s  accepting=%s  sort=%s  page=%d  hits=%d  %.3fs",
        q, state, usmle, visa, lor, accepting, sort, page, result.total, elapsed,
    )
    return ProgramsPage(
        programs=result.programs,
        total=result.total,
        page=result.page,
        total_pages=result.total_pages,
        page_size=result.page_size,
    )


@router.get("/programs/featured", response_model=list[Program])
def featured_programs(
    limit: int = Query(6, ge=1, le=50),
    catalog: ProgramCatalog = Depends(get_catalog),
) -> list[Program]:
    return catalog.featured(limit)


@router.get("/programs/{program_id}", response_model=Program)
def get_program(program_id: str, catalog: ProgramCatalog = Depends(get_catalog)) -> Program:
    program = catalog.get(program_id)
    if program is None:
        raise HTTPException(status_code=404, detail="Program not found.")
    return program


@router.get("/states")
def list_states(catalog: ProgramCatalog = Depends(get_catalog)) -> list[str]:
    return catalog.states()


@router.get("/specialties")
def list_specialties(catalog: ProgramCatalog = Depends(get_catalog)) -> list[str]:
    return catalog.specialties()


@router.get("/stats", response_model=Stats)
def stats(catalog: ProgramCatalog = Depends(get_catalog)) -> Stats:
    return Stats(**catalog.stats())


@router.post("/chat", response_class=StreamingResponse)
async def chat(req: ChatRequest, request: Request, relay: ChatRelay = Depends(get_relay)):
    log.info("chat  messages=%d", len(req.messages))
    reply = ReplyAccumulator()
    try:
        fragments = await relay.open(req.messages, reply)
    except ConfigurationError as exc:
        log.error("Chat unavailable: %s", exc)
        return JSONResponse({"error": str(exc)}, status_code=500)
    except Exception:
        log.exception("Chat API error")
        return JSONResponse({"error": GENERIC_ERROR}, status_code=500)

    stream = relay.events(fragments, reply)
    if await request.is_disconnected():
        await stream.aclose()
        log.info("Caller left before the reply started; upstream closed.")
        return Response(status_code=204)

    # The background close covers a response that is torn down before its
    # body is iterated.
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        background=BackgroundTask(stream.aclose),
    )


app = create_app()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _launch_server() -> None:
    config = uvicorn.Config(app, host="0.0.0.0", port=8000, reload=False)
    server = uvicorn.Server(config)

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        uvicorn.run(app, host="0.0.0.0", port=8000, reload=False)
        return

    log.warning(
        "Detected an existing asyncio event loop; serving with create_task() instead of asyncio.run()."
    )
    asyncio.create_task(server.serve())


if __name__ == "__main__":
    _setup_logging(app.state.settings.log_dir)
    log.info("=== Find USCE — starting up ===")
    _launch_server()
