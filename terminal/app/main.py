"""FastAPI entry-point for the check-in terminal."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from .config import Settings, get_settings
from .logging_config import configure_logging
from .session_manager import ScanSessionController

logger = logging.getLogger(__name__)


class MockDecodeRequest(BaseModel):
    text: str


def create_app(
    settings: Optional[Settings] = None,
    controller: Optional[ScanSessionController] = None,
) -> FastAPI:
    settings = settings or get_settings()
    manager = controller or ScanSessionController(settings=settings)

    app = FastAPI(title="checkin-terminal", version="0.1.0")
    app.state.controller = manager

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to prevent application crashes."""
        logger.exception("Unhandled exception in %s: %s", request.url.path, exc)
        return PlainTextResponse(
            f"Internal server error: {str(exc)}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning("Validation error in %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def on_startup() -> None:
        try:
            await manager.start()
            logger.info("Terminal started in %s state", manager.state.value)
        except Exception as e:
            logger.exception("Failed to start scanner: %s", e)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            await manager.teardown()
            logger.info("Terminal shutdown complete")
        except Exception as e:
            logger.exception("Error during shutdown: %s", e)

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", "state": manager.state.value})

    @app.get("/session")
    async def session_snapshot() -> JSONResponse:
        return JSONResponse(manager.session.snapshot())

    @app.post("/session/reset")
    async def scan_again() -> JSONResponse:
        """'Scan next attendee' action."""
        if not await manager.reset():
            return JSONResponse(
                {"status": "ignored", "state": manager.state.value},
                status_code=status.HTTP_409_CONFLICT,
            )
        return JSONResponse({"status": "ok", **manager.session.snapshot()})

    @app.post("/session/copy")
    async def copy_payload() -> JSONResponse:
        text = manager.copy_raw_payload()
        if text is None:
            return JSONResponse({"status": "empty"}, status_code=status.HTTP_404_NOT_FOUND)
        return JSONResponse({"status": "ok", "text": text})

    @app.post("/debug/mock-decode")
    async def mock_decode(payload: MockDecodeRequest) -> JSONResponse:
        """Inject decoded text as if the camera had read it."""
        accepted = manager.handle_decode(payload.text)
        await manager.wait_for_outcome()
        logger.info("🔧 Mock decode accepted=%s state=%s", accepted, manager.state.value)
        return JSONResponse({"accepted": accepted, **manager.session.snapshot()})

    @app.websocket("/ws/ui")
    async def ui_socket(ws: WebSocket) -> None:
        await ws.accept()
        queue = manager.register_ui()
        try:
            # current state first so a late client can render immediately
            await ws.send_json({"type": "snapshot", "state": manager.state.value, "data": manager.session.snapshot()})
            while True:
                event = await queue.get()
                try:
                    await ws.send_json(event.to_dict())
                except Exception as e:
                    logger.debug("WebSocket send failed (client disconnected): %s", e)
                    break
        except WebSocketDisconnect:
            pass
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("Unexpected error in UI websocket: %s", e)
        finally:
            manager.unregister_ui(queue)
            try:
                await ws.close()
            except Exception:
                pass

    return app


def run() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)
    uvicorn.run(create_app(settings), host=settings.controller_host, port=settings.controller_port)


if __name__ == "__main__":
    run()
