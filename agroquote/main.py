import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware

from agroquote.api.error_handlers import install_error_handlers
from agroquote.api.routes.notifications import notifications_router
from agroquote.config.settings import settings
from agroquote.services.notification_pipeline import NotificationPipeline
from agroquote.utility.logging_client import get_request_id, logger, set_request_id

# =======================
# Lifespan: управление жизненным циклом приложения
# =======================


def build_lifespan(pipeline: Optional[NotificationPipeline] = None):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Builds the notification pipeline once (WebSocket listener + RabbitMQ),
        closes it on shutdown: channel -> connection -> WebSocket listener.
        """
        logger.info("🚀 Application startup", component="lifespan")
        logger.set_level(settings.app.log_level)

        app.state.pipeline = pipeline or NotificationPipeline(settings)
        # Недоступный брокер не валит старт: переподключение идёт в фоне.
        await app.state.pipeline.start()

        yield

        logger.info("🛑 Application shutdown", component="lifespan")
        await app.state.pipeline.close()
        logger.info("Все соединения закрыты", component="lifespan")

    return lifespan


# =======================
# Request ID Middleware
# =======================


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware for request ID tracking and request logging."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or set_request_id()
        if get_request_id() != request_id:
            set_request_id(request_id)

        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.log_exception(
                e,
                component="http",
                context={
                    "method": request.method,
                    "path": str(request.url.path),
                    "duration_ms": round(duration_ms, 2),
                    "request_id": request_id,
                },
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time-ms"] = str(round(duration_ms, 2))

        if duration_ms > 1000:
            logger.structured(
                "warning",
                "slow_request",
                component="http",
                method=request.method,
                path=str(request.url.path),
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
                request_id=request_id,
            )
        elif settings.app.debug:
            logger.structured(
                "debug",
                "request_completed",
                component="http",
                method=request.method,
                path=str(request.url.path),
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
                request_id=request_id,
            )

        return response


def create_app(pipeline: Optional[NotificationPipeline] = None) -> FastAPI:
    application = FastAPI(
        title=settings.app.app_name,
        version=settings.app.app_version,
        lifespan=build_lifespan(pipeline),
    )
    application.add_middleware(RequestIdMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(application)
    application.include_router(notifications_router)
    return application


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=settings.app.backend_port)
