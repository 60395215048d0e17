from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy import exc as sa_exc
from starlette.concurrency import run_in_threadpool

from home_inventory.config import Settings, get_settings
from home_inventory.db import TRANSIENT_ERRORS, Database
from home_inventory.errors import NotFoundError, PayloadTooLargeError, TransientError, ValidationError
from home_inventory.headers import install_security_headers
from home_inventory.models import AttachmentKind
from home_inventory.routers import api, web
from home_inventory.schema import reconcile_schema
from home_inventory.services.attachment_service import AttachmentStore

logger = logging.getLogger('home_inventory')

PACKAGE_DIR = Path(__file__).resolve().parent
TEMPLATE_DIR = PACKAGE_DIR / 'templates'
STATIC_DIR = PACKAGE_DIR / 'static'


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.log_level.upper(), format='%(asctime)s %(levelname)s %(name)s %(message)s')


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def _validation_error(_req: Request, exc: ValidationError):
        status_code = 413 if isinstance(exc, PayloadTooLargeError) else 400
        return JSONResponse(status_code=status_code, content={'error': exc.code, 'detail': str(exc)})

    @app.exception_handler(NotFoundError)
    async def _not_found(_req: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={'error': 'not_found', 'detail': str(exc)})

    @app.exception_handler(TransientError)
    async def _transient(_req: Request, exc: TransientError):
        return JSONResponse(status_code=503, content={'error': 'unavailable', 'detail': str(exc)})

    async def _database_unavailable(_req: Request, exc: sa_exc.SQLAlchemyError):
        logger.warning('database unavailable: %s', exc)
        return JSONResponse(status_code=503, content={'error': 'unavailable', 'detail': 'database unavailable'})

    for error_cls in TRANSIENT_ERRORS:
        app.add_exception_handler(error_cls, _database_unavailable)

    @app.exception_handler(Exception)
    async def _unhandled(_req: Request, exc: Exception):
        logger.exception('unhandled error: %s', exc)
        return JSONResponse(status_code=500, content={'error': 'internal', 'detail': 'internal error'})


def create_app(settings: Settings | None = None, *, database: Database | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    database = database or Database(settings)
    attachments = AttachmentStore.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        attachments.ensure_directory()
        # FatalError escapes here and aborts startup.
        report = await run_in_threadpool(reconcile_schema, database.engine, seed=settings.seed_defaults)
        app.state.schema_report = report
        logger.info('listening with database %s, uploads in %s', database.engine.url.render_as_string(), attachments.upload_dir)
        try:
            yield
        finally:
            database.dispose()

    app = FastAPI(title='Home Inventory', lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.attachments = attachments
    app.state.attachment_kinds = [kind.value for kind in AttachmentKind]
    app.state.templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

    install_security_headers(app)
    _install_error_handlers(app)

    app.include_router(api.router, prefix=settings.base_url)
    app.include_router(web.router, prefix=settings.base_url)
    app.mount(settings.api_path('/static'), StaticFiles(directory=str(STATIC_DIR)), name='static')
    app.mount(
        settings.api_path('/uploads'),
        StaticFiles(directory=str(attachments.upload_dir), check_dir=False),
        name='uploads',
    )
    return app
