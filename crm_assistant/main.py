"""FastAPI application for the CRM assistant."""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from crm_assistant.api.models import ErrorResponse
from crm_assistant.infra.error_handler import AuthenticationError, ValidationError
from crm_assistant.infra.logging import app_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    app_logger.info("Application starting up")

    yield

    app_logger.info("Application shutting down")

    from crm_assistant.adapters.vendor_adapter_openai import close_openai_client
    from crm_assistant.infra.database import engine
    from crm_assistant.infra.redis_client import close_redis
    from crm_assistant.services.conversation_store import reset_conversation_store

    engine.dispose()
    await close_redis()
    reset_conversation_store()
    await close_openai_client()


app = FastAPI(
    title="CRM Assistant API",
    description="""
    Chat assistant for CRM and financial operations data.

    Each message is routed to a specialist agent (invoices, customers, sales,
    analytics, reports, research, operations, time tracking, transactions or
    general) that answers using tenant-scoped data tools.

    ## Authentication

    Chat endpoints require an API key via:
    - Header: `X-API-Key: <your-api-key>`
    - Header: `Authorization: Bearer <your-api-key>`
    """,
    version="1.0.0",
    lifespan=lifespan,
    tags_metadata=[
        {
            "name": "Chat",
            "description": "Send messages, stream replies, read history and working memory",
        },
        {
            "name": "Health",
            "description": "Health check and monitoring endpoints",
        },
    ],
)

# Setup middleware
from crm_assistant.infra.middleware import RequestContextMiddleware, setup_cors
from crm_assistant.infra.timeout import REQUEST_TIMEOUT, TimeoutMiddleware

app.add_middleware(RequestContextMiddleware)
app.add_middleware(TimeoutMiddleware, timeout=REQUEST_TIMEOUT)
setup_cors(app)

# Import and register routers
from crm_assistant.api.routers import chat, health

app.include_router(chat.router)
app.include_router(health.router)


def error_response(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    error = {"code": code, "message": message}
    error.update(extra)
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error).model_dump())


# Error handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body') or 'body'}: {err['msg']}"
        for err in exc.errors()
    )
    return error_response(400, "VALIDATION_ERROR", problems or "Invalid request")


@app.exception_handler(ValidationError)
async def assistant_validation_handler(request: Request, exc: ValidationError):
    return error_response(400, "VALIDATION_ERROR", exc.message)


@app.exception_handler(AuthenticationError)
async def authentication_handler(request: Request, exc: AuthenticationError):
    return error_response(401, "UNAUTHORIZED", exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    return error_response(exc.status_code, code, str(exc.detail))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    error_id = str(uuid.uuid4())
    app_logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"error_id": error_id})
    return error_response(500, "INTERNAL_ERROR", f"Internal server error. Error ID: {error_id}", errorId=error_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )
