import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request

from hostproxy.errors import ConfigError
from hostproxy.reloader import ConfigReloader
from hostproxy.routing import RoutingTable

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


def _describe_table(table: RoutingTable) -> list[dict]:
    return [
        {
            "host": host,
            "backend": route.backend.base_url,
            "redirect_to_https": route.redirect_to_https,
            "preserve_host": route.preserve_host,
            "certificate": host in table.bindings,
        }
        for host, route in sorted(table.routes.items())
    ]


@router.get("/healthz")
async def healthz(request: Request):
    reloader: ConfigReloader = request.app.state.reloader
    table = reloader.router.table
    return {
        "status": "ok" if reloader.router.is_configured else "unconfigured",
        "generation": table.generation,
        "hosts": len(table),
        "certificates": len(table.bindings),
        "last_reload_error": reloader.last_error,
    }


@router.get("/routes")
async def list_routes(request: Request):
    reloader: ConfigReloader = request.app.state.reloader
    table = reloader.router.table
    return {"generation": table.generation, "routes": _describe_table(table)}


@router.post("/reload")
async def reload_routes(request: Request):
    reloader: ConfigReloader = request.app.state.reloader
    logger.info(f"[Admin] Reload requested for {reloader.config_path}")
    try:
        table = await asyncio.to_thread(reloader.reload)
    except ConfigError as e:
        logger.warning(f"[Admin] Reload rejected: {e.detail}")
        raise HTTPException(status_code=409, detail=e.detail)
    return {"generation": table.generation, "routes": _describe_table(table)}

