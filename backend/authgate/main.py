"""FastAPI Application Entry Point."""

import logging
import os

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from authgate.api.v1 import api_router
from authgate.core.config import settings
from authgate.core.database import init_models
from authgate.core.errors import AuthError
from authgate.core.rate_limit import limiter
from authgate.middleware import RouteGuardMiddleware

# Configure logging
logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)

# Initialize Sentry before the app is created
if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        # Auth payloads carry credentials
        send_default_pii=False,
        release=f"authgate@{os.getenv('GIT_COMMIT', 'dev')}",
    )
    logger.info(f"Sentry initialized (environment: {settings.SENTRY_ENVIRONMENT})")
else:
    logger.info("Sentry DSN not set - Error tracking disabled")

app = FastAPI(
    title=settings.APP_NAME,
    description="Session and token lifecycle service",
    version="1.0.0",
    debug=settings.DEBUG,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Configure rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render taxonomy errors as `{"message": ..., **extra}`."""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body/query shape errors use the same 400 envelope as service-level validation."""
    errors: dict[str, str] = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query")]
        errors[".".join(location) or "body"] = error.get("msg", "Invalid value")
    message = next(iter(errors.values()), "Invalid request")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": message, "errors": errors},
    )


# Route guard runs inside CORS so redirects still carry CORS headers
app.add_middleware(RouteGuardMiddleware)

# Configure CORS with an explicit whitelist (credentials require exact origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
        "X-Requested-With",
    ],
    max_age=settings.CORS_MAX_AGE,
)


@app.on_event("startup")
async def startup_event() -> None:
    """Create missing tables on application startup."""
    await init_models()


@app.get("/api/v1/health", tags=["health"])
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "service": settings.APP_NAME,
            "environment": settings.APP_ENV,
        },
    )


app.include_router(api_router, prefix=settings.API_V1_PREFIX)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "authgate.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
