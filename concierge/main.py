from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from contextlib import asynccontextmanager
import asyncio

from concierge.core.config import settings
from concierge.core.logging import get_logger
from concierge.core.middlewares import ErrorHandlingMiddleware, RateLimitMiddleware, exception_handler
from concierge.core.exceptions import AppBaseException
from concierge.core.metrics import MetricsMiddleware, metrics_endpoint
from concierge.core.rate_limit import get_rate_limiter
from concierge.api.routes import router as api_router

# Initialize logger
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    async def cleanup_rate_limits():
        while True:
            await asyncio.sleep(settings.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS)
            try:
                get_rate_limiter().clean_expired_records()
            except Exception as e:
                logger.error(f"Error in rate limit cleanup: {str(e)}")

    cleanup_task = asyncio.create_task(cleanup_rate_limits())
    logger.info("Rate limit cleanup task started")
    try:
        yield
    finally:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            logger.info("Rate limit cleanup task cancelled")


app = FastAPI(
    title=settings.APP_NAME,
    description="AI concierge with per-user admission control",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Middlewares added later wrap earlier ones: metrics sees every response,
# including 401 and 429 rejections from the rate limiter.

# Add Rate Limit middleware
app.add_middleware(RateLimitMiddleware)

# Add error handling middleware
app.add_middleware(ErrorHandlingMiddleware)

# Add Prometheus metrics middleware
app.add_middleware(MetricsMiddleware)

# Add CORS middleware
if settings.CORS_ORIGINS:
    origins = settings.CORS_ORIGINS.split(',')
    logger.info(f"CORS enabled for specific origins: {origins}")
else:
    origins = ["http://localhost:3000"]
    logger.info(f"CORS enabled for specific development origins: {origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)

# Register exception handlers
app.add_exception_handler(AppBaseException, exception_handler)

# Health check endpoints
@app.get("/healthz", tags=["Health"])
async def healthz():
    return {"status": "ok"}

@app.get("/readyz", tags=["Health"])
async def readyz():
    return {
        "status": "ready",
        "services": {
            "rate_limiter": {"windows": len(get_rate_limiter())}
        }
    }

# Prometheus metrics endpoint
@app.get("/metrics", include_in_schema=False)
def metrics():
    return metrics_endpoint()

# Routes
app.include_router(api_router, prefix=settings.API_PREFIX, tags=["AI Concierge"])


if __name__ == "__main__":
    uvicorn.run(
        "concierge.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
