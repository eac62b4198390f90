"""Application factory for the EPP stock ledger service.

``create_app`` wires configuration, schema setup, the request-context
middleware, the error envelope handlers and the per-resource API routers.
Imports happen inside the factory so the service layer can be used (and
tested) without building a web application.
"""

from __future__ import annotations

from sqlalchemy.engine import Engine


def create_app(bind: Engine | None = None):
    from fastapi import FastAPI
    from fastapi.exceptions import RequestValidationError
    from sqlalchemy.exc import SQLAlchemyError
    from starlette.exceptions import HTTPException as StarletteHTTPException

    from .core.config import settings
    from .core.errors import (
        domain_error_handler,
        http_exception_handler,
        storage_error_handler,
        validation_exception_handler,
    )
    from .core.exceptions import EppLedgerError
    from .db.migrate import run_migrations
    from .db.session import Base, engine
    from .middlewares import RequestContextMiddleware

    # Importing the models registers their tables with the metadata.
    from .models import assignment as _assignment  # noqa: F401
    from .models import delivery as _delivery  # noqa: F401
    from .models import employee as _employee  # noqa: F401
    from .models import inventory as _inventory  # noqa: F401
    from .models import stock as _stock  # noqa: F401
    from .routers import api_deliveries, api_employees, api_inventory, api_renewals

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    run_migrations(bind)

    app = FastAPI(title=settings.APP_NAME)
    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(EppLedgerError, domain_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)

    app.include_router(api_inventory.router)
    app.include_router(api_deliveries.router)
    app.include_router(api_renewals.router)
    app.include_router(api_employees.router)
    return app


__all__ = ["create_app"]
