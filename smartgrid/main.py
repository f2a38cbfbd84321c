# =======================================================================================
# smartgrid/main.py - FastAPI Application Entry Point
# =======================================================================================
import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .config import config
from .api.routes.backpacks import router as backpacks_router
from .api.routes.replacement import router as replacement_router
from .api.routes.layout import router as layout_router
from .api.routes.modules import router as modules_router
from .api.state import AppState
from .models.schemas import HealthResponse
from .utils.exceptions import (
    CompatibilityError,
    FormatError,
    IntegrityError,
    LayoutError,
    NotFoundError,
    ProtocolError,
    SmartGridError,
    TransportError,
)

logging.basicConfig(
    level=logging.DEBUG if config.API_DEBUG else config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s: %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Most specific first; anything else is a 500
ERROR_STATUS = [
    (NotFoundError, 404),
    (FormatError, 400),
    (LayoutError, 400),
    (ProtocolError, 409),
    (CompatibilityError, 409),
    (IntegrityError, 422),
    (TransportError, 503),
]


def status_for(error: SmartGridError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(error, cls):
            return status
    return 500


def create_app(state: Optional[AppState] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.smartgrid.start()
        logger.info("SmartGrid API started (layout %s)", app.state.smartgrid.monitor.layout_id)
        yield
        app.state.smartgrid.stop()

    app = FastAPI(
        title="SmartGrid Kit Readiness API",
        version="1.0.0",
        description="Readiness tracking and pouch replacement for RFID-tagged emergency backpacks",
        debug=config.API_DEBUG,
        lifespan=lifespan,
    )
    app.state.smartgrid = state or AppState()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SmartGridError)
    async def smartgrid_error_handler(request: Request, exc: SmartGridError):
        status = status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content={"detail": exc.message, "code": exc.code})

    # Routers
    app.include_router(backpacks_router, prefix="/api", tags=["backpacks"])
    app.include_router(replacement_router, prefix="/api", tags=["replacement"])
    app.include_router(layout_router, prefix="/api", tags=["layout"])
    app.include_router(modules_router, prefix="/api", tags=["modules"])

    @app.get("/api/health", response_model=HealthResponse, tags=["health"])
    def api_health():
        smartgrid = app.state.smartgrid
        try:
            smartgrid.repository.ping()
        except TransportError as e:
            return HealthResponse(status="error", dataAvailable=bool(smartgrid.monitor.backpacks), message=e.message)
        return HealthResponse(
            status="ok" if smartgrid.monitor.connection_error is None else "error",
            dataAvailable=True,
            message=smartgrid.monitor.connection_error,
        )

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("smartgrid.main:create_app", factory=True, host=config.API_HOST, port=config.API_PORT)
