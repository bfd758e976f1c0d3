"""
SheetChat - Main Application.

FastAPI application factory: spreadsheet upload, deduplication and streaming
tool-calling chat.
"""

import logging
import sys
import traceback
from contextlib import asynccontextmanager
from uuid import UUID, uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sheetchat import __version__
from sheetchat.context import AppContext
from sheetchat.exceptions import SheetChatException
from sheetchat.modules.chat.router import router as chat_router
from sheetchat.modules.chat.service import ChatService
from sheetchat.modules.files.router import router as files_router
from sheetchat.schemas import ErrorDetail, ErrorResponse, HealthResponse

# Configure standard logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("sheetchat")


def create_app(context: AppContext | None = None) -> FastAPI:
    """
    Build an app around an explicit AppContext.

    Args:
        context: Shared state for this app; the default wiring (Gemini,
            in-memory stores) is built when omitted.
    """
    context = context or AppContext.build()
    settings = context.settings
    logging.getLogger("sheetchat").setLevel(settings.app_log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info(
            f"Starting SheetChat API v{__version__} "
            f"[env={settings.app_env}] "
            f"[model={context.model.name}] "
            f"[functions={context.registry.names()}]"
        )
        yield
        logger.info("Shutting down SheetChat API")

    app = FastAPI(
        title="SheetChat API",
        description="Chat with spreadsheets: an LLM answers questions by calling tabular query tools.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.context = context
    app.state.chat_service = ChatService(context)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Conversation-ID"],
    )

    # =========================================================================
    # Middleware
    # =========================================================================

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        """Add request ID to all requests."""
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.info(f"[{request_id}] {request.method} {request.url.path}")

        response = await call_next(request)

        logger.info(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code}")

        return response

    # =========================================================================
    # Exception Handlers
    # =========================================================================

    @app.exception_handler(SheetChatException)
    async def sheetchat_exception_handler(request: Request, exc: SheetChatException):
        """Handle SheetChat custom exceptions."""
        request_id_str = getattr(request.state, "request_id", None)
        request_id = None
        if request_id_str:
            try:
                request_id = UUID(request_id_str)
            except (ValueError, TypeError):
                pass

        logger.warning(f"SheetChatException: {exc.code} - {exc.message}")

        body = ErrorResponse(
            error=ErrorDetail(
                code=exc.code,
                message=exc.message,
                details=exc.details,
                request_id=request_id,
            )
        )
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        request_id_str = getattr(request.state, "request_id", None)

        logger.error(f"Unhandled exception on {request.url.path}")
        logger.error(f"Exception type: {type(exc).__name__}")
        logger.error(f"Traceback:\n{traceback.format_exc()}")

        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": str(exc) if settings.app_debug else "An unexpected error occurred",
                    "request_id": request_id_str,
                }
            },
        )

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            version=__version__,
            app_env=settings.app_env,
            is_production=settings.is_production,
            model=settings.gemini.model,
            functions=context.registry.names(),
        )

    app.include_router(files_router)
    app.include_router(chat_router)

    return app


app = create_app()
