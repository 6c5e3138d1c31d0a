from __future__ import annotations
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .errors import RescueError
from .routers import realtime, reports, rescuers, sms, system
from .state import Coordinator

logger = logging.getLogger("rescuenet")


def create_app(settings: Optional[Settings] = None, coordinator: Optional[Coordinator] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    coordinator = coordinator or Coordinator(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting RescueNet. CORS_ALLOW_ORIGINS=%s" % settings.cors_allow_origins)
        if not settings.sms_configured:
            logger.warning("Twilio is not configured; outbound SMS will only be logged.")
        yield
        coordinator.close()

    app = FastAPI(title="RescueNet API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.coordinator = coordinator

    @app.middleware("http")
    async def structured_logging_middleware(request: Request, call_next):
        trace_id = str(uuid.uuid4())
        request.state.trace_id = trace_id
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(json.dumps({
                "trace_id": trace_id,
                "method": request.method,
                "path": request.url.path,
                "status": 500,
                "latency_ms": round((time.time() - start_time) * 1000, 2),
                "error": str(e),
            }))
            return JSONResponse(status_code=500, content={"detail": "Internal Server Error", "trace_id": trace_id})
        logger.info(json.dumps({
            "trace_id": trace_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.time() - start_time) * 1000, 2),
        }))
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RescueError)
    async def rescue_error_handler(request: Request, exc: RescueError):
        if exc.status_code >= 500:
            logger.error("%s: %s" % (type(exc).__name__, exc.detail))
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    app.include_router(system.router)
    app.include_router(reports.router)
    app.include_router(rescuers.router)
    app.include_router(sms.router)
    app.include_router(realtime.router)
    return app


app = create_app()


if __name__ == "__main__":
    import os
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
