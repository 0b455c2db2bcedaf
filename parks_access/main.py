"""Parques access control - FastAPI entrypoint."""
import logging
from contextlib import asynccontextmanager

from beanie.exceptions import CollectionWasNotInitialized
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from parks_access.api import auth, role_permissions
from parks_access.config import settings
from parks_access.errors import PermissionsError
from parks_access.seed import seed_admin
from parks_access.services.storage import MongoPermissionStorage, PermissionStorage, choose_storage
from parks_access.services.store import MatrixStore

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(storage: PermissionStorage | None = None) -> FastAPI:
    """Build the application; *storage* overrides the configured backend."""
    backend = storage if storage is not None else choose_storage(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if storage is None:
            configure_logging()
        store = MatrixStore(backend, protected_roles=settings.protected_role_keys)
        await store.init()
        if store.degraded:
            logger.warning("Starting in degraded mode: permissions served from defaults/cache")
        elif isinstance(backend, MongoPermissionStorage):
            try:
                await seed_admin()
            except (PyMongoError, CollectionWasNotInitialized) as e:
                logger.warning("Could not seed initial administrator: %s", e)
        app.state.matrix_store = store
        yield
        await store.shutdown()

    app = FastAPI(
        title=settings.app_name,
        description="Role-based module/action permissions for the parks back office",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(PermissionsError)
    async def permissions_error_handler(request: Request, exc: PermissionsError):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"message": "Invalid request", "detail": jsonable_errors(exc)},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])
    app.include_router(role_permissions.router, prefix="/api/role-permissions", tags=["Roles & Permissions"])

    @app.get("/health")
    def health(request: Request):
        store = getattr(request.app.state, "matrix_store", None)
        return {
            "status": "ok",
            "app": settings.app_name,
            "degraded": bool(store and store.degraded),
        }

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]


app = create_app()
