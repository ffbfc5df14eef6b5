from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request
from fastapi.responses import JSONResponse

from carebook.cache import FetchFailure, get_cache
from carebook.cache_worker import CACHE_INTERVAL, cache_loop
from carebook.consumer import AppointmentConsumer
from carebook.directory import filter_directory, greeting


# --------------------------------------------------
# Env & Logging
# --------------------------------------------------
APP_TOKEN = os.environ.get("APP_TOKEN", "").strip()
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)


# --------------------------------------------------
# FastAPI App
# --------------------------------------------------
app = FastAPI(
    title="Carebook Appointments API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

_worker: Optional[asyncio.Task] = None


@app.on_event("startup")
async def startup_event():
    global _worker
    _worker = asyncio.create_task(cache_loop(get_cache(), CACHE_INTERVAL))
    logger.info("[SERVER] Cache worker started (every %ss)", CACHE_INTERVAL)


@app.on_event("shutdown")
async def shutdown_event():
    global _worker
    if _worker is not None:
        _worker.cancel()
        try:
            await _worker
        except asyncio.CancelledError:
            pass
        _worker = None

    aclose = getattr(get_cache().source, "aclose", None)
    if aclose is not None:
        await aclose()


def _authorized(request: Request) -> bool:
    token = (request.headers.get("X-App-Token") or "").strip()
    return not APP_TOKEN or token == APP_TOKEN


def _unauthorized() -> JSONResponse:
    return JSONResponse({"ok": False, "error": "unauthorized"}, status_code=401)


# --------------------------------------------------
# Health
# --------------------------------------------------
@app.get("/health")
def health() -> JSONResponse:
    return JSONResponse({
        "ok": True,
        "ts": int(time.time()),
        "cache": get_cache().status(),
    })


# --------------------------------------------------
# Appointments API
# --------------------------------------------------
@app.get("/appointments")
async def appointments(request: Request) -> JSONResponse:
    if not _authorized(request):
        return _unauthorized()

    cache = get_cache()
    return JSONResponse({
        "ok": True,
        "status": cache.state.status,
        "updated_at": cache.state.updated_at,
        "data": cache.read().to_dict(),
    })


@app.post("/refresh")
async def refresh(request: Request) -> JSONResponse:
    if not _authorized(request):
        return _unauthorized()

    try:
        snapshot = await get_cache().refresh()
    except FetchFailure as e:
        return JSONResponse({
            "ok": False,
            "stale": True,
            "error": str(e),
            "data": e.stale.to_dict(),
        }, status_code=503)

    return JSONResponse({"ok": True, "stale": False, "ts": int(time.time()), "data": snapshot.to_dict()})


# --------------------------------------------------
# Home screen
# --------------------------------------------------
@app.get("/home")
async def home(request: Request, q: str = "", service: Optional[str] = None, asc: bool = True) -> JSONResponse:
    if not _authorized(request):
        return _unauthorized()

    cache = get_cache()
    source = cache.source

    async def profile() -> dict:
        try:
            return await source.fetch_profile()
        except Exception as e:
            logger.error("[HOME] profile fetch error: %r", e)
            return {}

    async def doctors() -> list:
        try:
            return await source.fetch_doctors()
        except Exception as e:
            logger.error("[HOME] doctor list fetch error: %r", e)
            return []

    profile_data, doctor_list = await asyncio.gather(profile(), doctors())
    directory = filter_directory(doctor_list, search_text=q, selected_service=service, ascending=asc)

    return JSONResponse({
        "ok": True,
        "greeting": greeting((profile_data.get("emp_data") or {}).get("name")),
        "profile": profile_data,
        "services": directory["services"],
        "doctors": directory["doctors"],
        "appointments": cache.read().to_dict(),
        "appointments_status": cache.state.status,
    })


# --------------------------------------------------
# WebSocket: one consumer per connection
# --------------------------------------------------
@app.websocket("/ws")
async def ws_endpoint(ws: WebSocket):
    token = (ws.query_params.get("token") or "").strip()
    if APP_TOKEN and token != APP_TOKEN:
        await ws.close(code=1008)
        return

    await ws.accept()
    consumer = AppointmentConsumer(get_cache(), ws.send_json, name=f"ws-{id(ws):x}")

    try:
        await ws.send_json({"type": "hello"})
        consumer.mount()
        while True:
            msg = (await ws.receive_text()).strip()
            if msg == "refresh":
                await consumer.refresh()
    except WebSocketDisconnect:
        pass
    finally:
        consumer.unmount()
        logger.debug("[WS] %s closed", consumer.name)
