from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import logging

from .core.config import settings
from .core.database import create_db_and_tables
from .core.cache import cache
from .api.v1.api import api_router
from .services.exceptions import ExamPolicyError

from .middleware.performance import PerformanceMiddleware
from .middleware.timezone import TimezoneMiddleware

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.project_name,
    description="Proctored exam attempts with real-time risk scoring and an incident audit trail",
    version="1.0.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None
)

app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(TimezoneMiddleware)
app.add_middleware(
    PerformanceMiddleware,
    slow_request_threshold=settings.slow_request_threshold
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ExamPolicyError)
async def exam_policy_exception_handler(request: Request, exc: ExamPolicyError):
    logger.info(f"Rejected {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, **exc.context}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
            "request_id": getattr(request.state, 'request_id', 'unknown')
        }
    )


@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting {settings.project_name}...")

    create_db_and_tables()
    logger.info("Database initialized")

    if not cache.enabled:
        logger.info("Cache disabled by configuration")
    elif cache.health_check():
        logger.info("Cache connection established")
    else:
        logger.warning("Cache connection failed - running without cache")

    logger.info(f"{settings.project_name} startup completed")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info(f"Shutting down {settings.project_name}...")
    cache.close()
    logger.info("Cache connections closed")


app.include_router(api_router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("examguard.main:app", host="0.0.0.0", port=settings.port, reload=settings.environment == "development")
