import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chainweave_server.api import analytics as analytics_router
from chainweave_server.api import chain as chain_router
from chainweave_server.api import collections as collections_router
from chainweave_server.api import reconciliation as reconciliation_router
from chainweave_server.api import requests as requests_router
from chainweave_server.api import system as system_router
from chainweave_server.api import users as users_router
from chainweave_server.core.components import build_components
from chainweave_server.core.config import settings
from chainweave_server.core.errors import ChainWeaveError
from chainweave_server.core.logging_config import configure_logging
from chainweave_server.db.session import Base, SessionLocal, engine
import chainweave_server.models  # noqa: F401  registers tables on Base.metadata

_log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the backend components, start the event listener, tear down on exit.

    A chain-enabled configuration missing its RPC URL, contract address or
    signing key raises ConfigError here and startup is aborted. Components
    placed on ``app.state`` before startup are used as-is.
    """
    configure_logging(settings.log_level)

    components = getattr(app.state, 'components', None)
    owned = components is None
    if owned:
        settings.validate_chain()
        Base.metadata.create_all(bind=engine)
        components = build_components(settings, SessionLocal)
        app.state.components = components

    await components.start()
    _log.info(
        "backend ready version=%s chain_enabled=%s listener=%s",
        settings.version, components.blockchain is not None, components.listener is not None,
    )

    yield

    await components.stop()
    if owned:
        app.state.components = None


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    _log.info("validation error url=%s errors=%s", request.url, exc.errors())
    return JSONResponse(status_code=422, content={'detail': jsonable_encoder(exc.errors())})


@app.exception_handler(ChainWeaveError)
async def chainweave_exception_handler(request: Request, exc: ChainWeaveError):
    _log.error("unhandled backend error url=%s: %s", request.url, exc)
    return JSONResponse(status_code=500, content={'detail': str(exc)})


# Routers
app.include_router(requests_router.router, prefix=settings.api_v1_prefix)
app.include_router(users_router.router, prefix=settings.api_v1_prefix)
app.include_router(collections_router.router, prefix=settings.api_v1_prefix)
app.include_router(analytics_router.router, prefix=settings.api_v1_prefix)
app.include_router(chain_router.router, prefix=settings.api_v1_prefix)
app.include_router(reconciliation_router.router, prefix=settings.api_v1_prefix)
app.include_router(system_router.router, prefix=settings.api_v1_prefix)

app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.get('/')
async def root():
    return {'status': 'ok', 'app': settings.app_name}
