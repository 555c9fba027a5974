import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fileshare.api.routes import auth as auth_routes
from fileshare.api.routes import files as files_routes
from fileshare.api.routes import health as health_routes
from fileshare.api.routes import metrics as metrics_routes
from fileshare.core.config import get_settings
from fileshare.core.errors import register_error_handlers
from fileshare.core.security_headers import SecurityHeadersMiddleware
from fileshare.core.tracing import init_tracing
from fileshare.db.base import Base
from fileshare.db.migrations import run_migrations_on_startup
from fileshare.db.session import engine
from fileshare.models import shared_file, user  # noqa: F401  (register tables)


def create_app() -> FastAPI:
    app = FastAPI(title="FileShare API")
    settings = get_settings()

    @app.on_event("startup")
    def _startup_migrations() -> None:
        # In production we optionally stamp/upgrade via env flags.
        run_migrations_on_startup()

    # Observability: configure logging + optional error tracing
    init_tracing(app)

    origins = [o.strip() for o in settings.backend_cors_origins.split(',') if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Request-ID"],
    )

    app.add_middleware(SecurityHeadersMiddleware)

    register_error_handlers(app)

    app.include_router(health_routes.router)
    app.include_router(metrics_routes.router)
    app.include_router(auth_routes.router)
    app.include_router(files_routes.router)

    # Auto-create tables only in non-production for local/dev convenience.
    # In production all schema changes must go through Alembic migrations.
    if settings.environment != "production":
        Base.metadata.create_all(bind=engine)
        logging.getLogger("fs.db").info("Tables ensured (create_all, %s)", settings.environment)

    return app


app = create_app()
