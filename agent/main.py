"""Vigil ZFS agent: FastAPI entry point."""

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import config
from exceptions import ZFSError
from services.cmd import ValidationError
from services.collector import ZFSCollector
from services.identity import DeviceIdentityResolver
from services.serials import SerialProber
from services.tools import ToolLocator
from routes import system, zfs

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Vigil ZFS Agent",
    version="0.1.0",
    description="Pool and device health collection for the Vigil server",
)

app.state.collector = ZFSCollector(
    hostname=config.HOSTNAME,
    tools=ToolLocator(),
    resolver=DeviceIdentityResolver(dev_root=config.DEV_ROOT),
    prober=SerialProber(dev_root=config.DEV_ROOT, sys_root=config.SYS_ROOT),
)
app.state.last_report = None


# --- Exception handlers ---


@app.exception_handler(ZFSError)
async def zfs_error_handler(request: Request, exc: ZFSError) -> JSONResponse:
    """Map ZFS exceptions to HTTP responses with safe error messages."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message},
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Map input validation errors to 400 responses."""
    return JSONResponse(
        status_code=400,
        content={"error": str(exc)},
    )


# --- Lifecycle ---


async def collection_loop() -> None:
    """Background task that refreshes the report every INTERVAL seconds."""
    collector: ZFSCollector = app.state.collector
    while True:
        try:
            app.state.last_report = await collector.collect()
            await asyncio.sleep(config.INTERVAL)
        except asyncio.CancelledError:
            break
        except Exception:
            logger.exception("Collection loop: unexpected error")
            await asyncio.sleep(config.INTERVAL)


@app.on_event("startup")
async def startup() -> None:
    tools: ToolLocator = app.state.collector.tools
    zpool_path = tools.zpool()
    if zpool_path:
        logger.info("ZFS tools found: zpool=%s, zfs=%s", zpool_path, tools.zfs())
    else:
        logger.warning("zpool not found; reports will mark ZFS as unavailable")

    if config.INTERVAL > 0:
        app.state.collection_task = asyncio.create_task(collection_loop())


@app.on_event("shutdown")
async def shutdown() -> None:
    task = getattr(app.state, "collection_task", None)
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


# --- Mount routers ---

app.include_router(zfs.router, prefix="/api/zfs", tags=["zfs"])
app.include_router(system.router, prefix="/api/system", tags=["system"])


# --- Health check ---


@app.get("/api/health")
async def health() -> dict:
    """Health check: reports whether the ZFS tools are available."""
    tools: ToolLocator = app.state.collector.tools
    zpool_path = tools.zpool()
    zfs_path = tools.zfs()
    return {
        "status": "ok" if zpool_path and zfs_path else "degraded",
        "zfs": zfs_path,
        "zpool": zpool_path,
    }
