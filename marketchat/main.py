import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from marketchat.core.config import settings
from marketchat.core.exceptions import ChatError, StoreFailure
from marketchat.core.logging_config import configure_logging, request_id_var
from marketchat.database.connection import close_mongo_connection, connect_to_mongo
from marketchat.routers.chat import router as chat_router
from marketchat.routers.conversations import router as conversations_router
from marketchat.routers.presence import router as presence_router
from marketchat.utils.websocket_manager import ConnectionManager


configure_logging(service_name=settings.service_name, level=settings.log_level, enable_json=settings.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    app.state.connections = ConnectionManager()
    await connect_to_mongo()
    logger.info("Chat service started")
    try:
        yield
    finally:
        await app.state.connections.close_all()
        await close_mongo_connection()
        logger.info("Chat service stopped")


app = FastAPI(title="Marketplace Chat API", lifespan=lifespan)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id that shows up in logs and the X-Request-ID header."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={"request_id": request_id},
        )
        return response


app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    error = "Route not found" if exc.status_code == 404 else exc.detail
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": error}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg") if errors else None
    body = {"success": False, "error": "Invalid request"}
    if message:
        body["message"] = message
    return JSONResponse(status_code=400, content=body)


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"Store failure on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=StoreFailure().to_envelope())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(status_code=500, content={"success": False, "error": "Something went wrong!", "message": str(exc)})


app.include_router(conversations_router, prefix="/api/chat")
app.include_router(chat_router, prefix="/api/chat")
app.include_router(presence_router, prefix="/api/chat")


@app.get("/api/health")
async def health():

    return {
        "status": "OK",
        "message": "Chat server is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("marketchat.main:app", host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())
