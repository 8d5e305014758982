import time

from fastapi import FastAPI, Request, status, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from hospital_api.config import get_settings
from hospital_api.database import init_db, close_db
from hospital_api.deps import Services, build_services
from hospital_api.errors import ServiceError
from hospital_api.rate_limit import limiter
from hospital_api.utils.logger import get_logger

# Routers
from hospital_api.routers import identity as identity_router
from hospital_api.routers import doctors as doctors_router
from hospital_api.routers import appointments as appointments_router
from hospital_api.routers import admin as admin_router

logger = get_logger("main")
settings = get_settings()

HTTP_ERROR_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limited",
    503: "unavailable",
}


def create_app(services: Services | None = None) -> FastAPI:
    """Build the API. Pass ``services`` to skip storage init (tests, embedding)."""
    app = FastAPI(
        title="Hospital Appointments API",
        debug=settings.APP_DEBUG,
    )
    app.state.services = services

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(identity_router.router)
    app.include_router(doctors_router.router)
    app.include_router(appointments_router.router)
    app.include_router(admin_router.router)

    # Error handlers
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        level = logger.error if exc.status_code >= 500 else logger.info
        level(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "code": exc.code, "status_code": exc.status_code},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
        code = HTTP_ERROR_CODES.get(exc.status_code, "http_error")
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "code": code, "status_code": exc.status_code},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.info(f"{request.method} {request.url.path} -> 422: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": jsonable_errors(exc), "code": "validation_error", "status_code": 422},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error", "code": "internal_error", "status_code": 500},
        )

    # Access log
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.1f}ms")
        return response

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz():
        services = app.state.services
        if services is None or not await services.repos.appointments.ping():
            raise HTTPException(status_code=503, detail="Storage is not reachable")
        return {"status": "ok", "storage": settings.STORAGE_BACKEND}

    @app.on_event("startup")
    async def on_startup():
        logger.info(f"Starting {settings.APP_NAME} ({settings.APP_ENV})")
        if app.state.services is None:
            repos = await init_db(settings)
            app.state.services = build_services(repos, settings)
            logger.info(f"Storage initialized ({settings.STORAGE_BACKEND})")

    @app.on_event("shutdown")
    async def on_shutdown():
        services = app.state.services
        if services is not None:
            # Open live views end with Unavailable
            services.hub.fail()
        close_db()
        logger.info(f"{settings.APP_NAME} stopped")

    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    """RequestValidationError.errors() may carry exception objects in ctx."""
    errors = []
    for err in exc.errors():
        err = dict(err)
        if "ctx" in err:
            err["ctx"] = {k: str(v) for k, v in err["ctx"].items()}
        errors.append(err)
    return errors


app = create_app()
