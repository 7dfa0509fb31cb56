from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from ..core.logging import setup_logging
from ..core.config import settings
from ..core.errors import ApiError, ProcureDeskError
from ..services.error_messages import extract_error_message
from .routers import approvals, documents, health

logger = setup_logging()
app = FastAPI(title="Procure Desk")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error("Validation error", path=request.url.path, errors=exc.errors())
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors()},
    )


@app.exception_handler(ProcureDeskError)
async def procure_desk_exception_handler(request: Request, exc: ProcureDeskError):
    detail = extract_error_message(exc.body, exc.message) if isinstance(exc, ApiError) else exc.message
    logger.warning(
        "Request failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        status_code=exc.status_code,
        detail=detail,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": detail, "suggestion": exc.suggestion},
    )


# CORS_ORIGINS can be set in .env as comma-separated list
allowed_origins = [origin.strip() for origin in settings.cors_origins.split(",")]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(approvals.router)
app.include_router(documents.router)
