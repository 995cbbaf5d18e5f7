"""FastAPI wiring: one route per operation under a common prefix."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from .dispatcher import Identify, VFSDispatcher
from .operations import ENDPOINTS

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .config import VFSConfig

logger = logging.getLogger(__name__)


def build_router(dispatcher: VFSDispatcher) -> APIRouter:
    """Create the VFS router: ``GET|POST /{operation}`` plus ``GET /mountpoints``."""
    router = APIRouter()

    for endpoint in ENDPOINTS:
        name = endpoint.operation.value
        router.add_api_route(
            f"/{name}",
            dispatcher.endpoint(name, endpoint.read_only),
            methods=[endpoint.method],
            name=f"vfs_{name}",
            response_model=None,
        )

    async def list_mountpoints(request: Request) -> JSONResponse:
        caller = dispatcher.identify(request)
        return JSONResponse(
            [
                {"name": m.name, "label": m.label, "readOnly": m.read_only}
                for m in dispatcher.config.mounts.visible_to(caller.groups)
            ]
        )

    router.add_api_route(
        "/mountpoints",
        list_mountpoints,
        methods=["GET"],
        name="vfs_mountpoints",
        response_model=None,
    )
    return router


def create_app(
    config: VFSConfig,
    *,
    identify: Identify | None = None,
    prefix: str = "/vfs",
) -> FastAPI:
    """Build an application serving *config* under *prefix*.

    Adapters are opened on startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await config.open()
        logger.info("VFS ready with %d mountpoint(s)", len(config.mounts))
        try:
            yield
        finally:
            await config.close()

    dispatcher = VFSDispatcher(config, identify=identify)
    app = FastAPI(title="mountgate", lifespan=lifespan)
    app.state.dispatcher = dispatcher
    app.include_router(build_router(dispatcher), prefix=prefix)
    return app
