"""健康检查路由

GET /health: 存活探针，进程在即返回 200。
GET /ready:  就绪探针，文档存储不可用或磁盘读不到时返回 503；
             归档任务状态只做展示，不影响就绪。
"""

import shutil

import aiosqlite
import structlog
from fastapi import APIRouter, Request
from squadquest.core.store import verify_wal_mode
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


async def _check_store(request: Request) -> tuple[bool, dict]:
    store = getattr(request.app.state, "store", None)
    if store is None:
        return False, {"sqlite": "error: store not initialized"}
    try:
        wal = await verify_wal_mode(store.conn)
    except (aiosqlite.Error, ValueError) as e:
        log.warning("readiness_sqlite_failed", error=str(e))
        return False, {"sqlite": f"error: {e}"}
    return True, {"sqlite": "ok", "journal": "wal" if wal else "other"}


def _archiver_state(request: Request) -> dict:
    scheduler = getattr(request.app.state, "archiver_scheduler", None)
    if scheduler is None:
        return {"archiver": "disabled"}
    config = request.app.state.archiver_config
    return {
        "archiver": "running" if scheduler.running else "stopped",
        "archiver_dry_run": config.dry_run,
    }


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """就绪检查：sqlite 连通性与 WAL、归档任务、剩余磁盘"""
    store_ok, checks = await _check_store(request)
    checks.update(_archiver_state(request))

    try:
        checks["disk_space_mb"] = shutil.disk_usage("/").free // (1024 * 1024)
        disk_ok = True
    except OSError:
        checks["disk_space_mb"] = 0
        disk_ok = False

    ok = store_ok and disk_ok
    return JSONResponse(
        status_code=200 if ok else 503,
        content={"status": "ready" if ok else "not_ready", "checks": checks},
    )
