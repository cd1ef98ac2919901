from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from tailor_service.config import settings
from tailor_service.database import init_db
from tailor_service.observability.tracing import configure_tracing
from tailor_service.ratelimit.config import load_rate_limit_config
from tailor_service.routers import tailor, ratelimit

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic"""
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    configure_tracing()
    init_db()

    # Fail fast on bad limit settings rather than on the first request
    rate_limits = load_rate_limit_config()
    logger.info(f"Rate limiting {'enabled' if rate_limits.enabled else 'disabled'}")

    yield

    cancelled = await tailor.cancel_running_pipelines()
    logger.info(f"Shutting down application ({cancelled} pipeline runs cancelled)")

app = FastAPI(
    title=settings.APP_NAME,
    description="Resume tailoring with rate-limited admission and streamed progress",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After"],
)

# Malformed bodies get the same {error} shape as missing fields
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "detail": jsonable_encoder(exc.errors())},
    )

# Global error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error": str(exc) if settings.DEBUG else "An error occurred"
        },
    )

# Health check
@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }

# Include API routers
app.include_router(
    tailor.router,
    prefix=f"{settings.API_V1_PREFIX}/tailor",
    tags=["tailor"],
)
app.include_router(
    ratelimit.router,
    prefix=f"{settings.API_V1_PREFIX}/ratelimit",
    tags=["ratelimit"],
)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
