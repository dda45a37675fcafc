"""
FastAPI application — the console server.

Two jobs:
  - POST /proxy performs the HTTP call a target describes and returns the
    normalized envelope (HTTP 200 whatever the upstream said; 502 only when
    no response came back at all)
  - /api/* stores chats and their messages in SQLite

Every /api route probes the database first and answers 503 DB_UNAVAILABLE
when the probe fails. Error bodies are always {ok: false, error, message}.
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from customgpt import __version__
from customgpt.config import get_config, setup_logging
from customgpt.errors import ConsoleError, InvalidInput, ProxyTransportError, DatabaseUnavailable
from customgpt.proxy import ProxyExecutor, ProxyRequest
from customgpt.storage.chat_store import ConversationStore, clamp_paging
from customgpt.storage.db import Database
from customgpt.wiretap import WireLog

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Globals, initialized at startup
# ---------------------------------------------------------------------------
database: Database | None = None
store: ConversationStore | None = None
executor: ProxyExecutor | None = None
wire_log: WireLog | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    global database, store, executor, wire_log

    cfg = get_config()
    setup_logging(cfg)

    # Storage
    database = Database(cfg["storage"]["sqlite_path"])
    if not database.init():
        logger.warning("Database not ready at startup, will retry on each request")
    store = ConversationStore(database)

    # Wiretap
    wire_cfg = cfg.get("wiretap", {})
    wire_log = WireLog(wire_cfg.get("path", "./data/wire.jsonl")) if wire_cfg.get("enabled", True) else None

    # Proxy
    executor = ProxyExecutor(timeout=float(cfg["proxy"]["timeout"]), wire=wire_log)

    logger.info(
        "CustomGPT console server started — listening on %s:%s",
        cfg["server"]["host"],
        cfg["server"]["port"],
    )
    logger.info("Storage: SQLite=%s", cfg["storage"]["sqlite_path"])
    logger.info("Wiretap: %s", wire_cfg.get("path") if wire_log else "disabled")
    logger.info("Proxy timeout: %ss", executor.timeout)

    yield

    logger.info("CustomGPT console server shutting down")
    database.teardown()
    if wire_log:
        wire_log.close()


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="CustomGPT Console",
    description="Point it at any endpoint. Keep the conversation.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProxyTransportError)
async def proxy_transport_error(request: Request, exc: ProxyTransportError):
    # The stringified transport error is the `error` itself
    return JSONResponse(
        {"ok": False, "error": exc.message, "message": exc.message},
        status_code=exc.status_code,
    )


@app.exception_handler(ConsoleError)
async def console_error(request: Request, exc: ConsoleError):
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def _json_body(request: Request, required: bool = True) -> dict:
    """Parse a JSON object body. Empty bodies are {} unless required."""
    raw = await request.body()
    if not raw.strip():
        if required:
            raise InvalidInput("Request body is required")
        return {}
    try:
        data = await request.json()
    except ValueError:
        raise InvalidInput("Request body is not valid JSON")
    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object")
    return data


def _store() -> ConversationStore:
    if store is None:
        raise DatabaseUnavailable("Database not initialized")
    return store


def _optional_str(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise InvalidInput(f"{key} must be a string")
    return value


# ---------------------------------------------------------------------------
# Proxy
# ---------------------------------------------------------------------------

@app.post("/proxy")
async def proxy(request: Request):
    """Relay one request to its target and return the envelope."""
    data = await _json_body(request)
    url = data.get("url")
    if not url or not isinstance(url, str):
        raise InvalidInput("Missing or invalid url")

    headers = data.get("headers") or {}
    if not isinstance(headers, dict):
        raise InvalidInput("headers must be an object")
    method = data.get("method") or "GET"
    if not isinstance(method, str):
        raise InvalidInput("method must be a string")

    if executor is None:
        raise ConsoleError("Proxy not initialized")
    envelope = await executor.execute(ProxyRequest(
        url=url,
        method=method,
        headers={str(k): "" if v is None else str(v) for k, v in headers.items()},
        body=data.get("body"),
        response_type=data.get("responseType") or "text",
    ))
    return JSONResponse(envelope.to_dict())


@app.get("/health")
async def health():
    return JSONResponse({"ok": True, "time": int(time.time() * 1000)})


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------

@app.get("/api/dbhealth")
async def db_health():
    if database is not None and database.health_check():
        return JSONResponse({"ok": True, "message": "Database is healthy"})
    return JSONResponse(
        {"ok": False, "error": "DB_UNAVAILABLE", "message": "Database is unavailable"},
        status_code=503,
    )


@app.post("/api/chats")
async def create_chat(request: Request):
    data = await _json_body(request, required=False)
    chat = _store().create_chat(
        chat_name=_optional_str(data, "chat_name"),
        config_name=_optional_str(data, "config_name"),
    )
    return JSONResponse(
        {
            "ok": True,
            "chat_id": chat.chat_id,
            "chat_name": chat.chat_name,
            "created_at": chat.created_at,
            "config_name": chat.config_name,
        },
        status_code=201,
    )


@app.get("/api/chats")
async def list_chats(request: Request):
    # Paging is parsed by hand so junk values fall back instead of failing
    limit, skip = clamp_paging(
        request.query_params.get("limit"),
        request.query_params.get("skip"),
    )
    chats, total = _store().list_chats(limit=limit, skip=skip)
    return JSONResponse({"ok": True, "chats": chats, "total": total, "limit": limit, "skip": skip})


@app.get("/api/chats/{chat_id}")
async def get_chat(chat_id: str):
    chat = _store().get_chat(chat_id)
    return JSONResponse({"ok": True, "chat": chat.to_dict()})


@app.post("/api/chats/{chat_id}/messages")
async def append_message(chat_id: str, request: Request):
    target_store = _store()
    data = await _json_body(request)
    message_id, chat = target_store.append_message(
        chat_id,
        role=data.get("role"),
        interaction_type=data.get("interaction_type"),
        message_content=data.get("message_content"),
        parent_id=_optional_str(data, "parent_id"),
        status=_optional_str(data, "status"),
    )
    return JSONResponse(
        {"ok": True, "message_id": message_id, "chat": chat.to_dict()},
        status_code=201,
    )


@app.patch("/api/chats/{chat_id}")
async def update_chat(chat_id: str, request: Request):
    target_store = _store()
    data = await _json_body(request, required=False)
    chat = target_store.update_chat_metadata(
        chat_id,
        chat_name=_optional_str(data, "chat_name"),
        config_name=_optional_str(data, "config_name"),
    )
    return JSONResponse({"ok": True, "chat": chat.to_dict()})


# ---------------------------------------------------------------------------
# Run with: python -m customgpt.main
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn

    cfg = get_config()
    uvicorn.run(
        "customgpt.main:app",
        host=cfg["server"]["host"],
        port=cfg["server"]["port"],
        reload=False,
    )
