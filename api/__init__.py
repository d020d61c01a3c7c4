"""REST API module for the contract market.

This module provides HTTP endpoints under ``/v1`` for:
- Creating and managing listings
- Purchasing contracts and listing owned contracts
- Reading transaction records
- The authenticated user's profile
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth import AuthManager
from config import settings_conf
from contracts import NoopSettlement, SettlementProvider
from database import close as db_close, init_db
from repos import Repositories, create_repositories

from .contracts import router as contracts_router
from .listings import router as listings_router
from .profile import router as profile_router
from .transactions import router as transactions_router

logger = logging.getLogger(__name__)

API_PREFIX = "/v1"


def create_app(
    repositories: Optional[Repositories] = None,
    settlement: Optional[SettlementProvider] = None,
    auth: Optional[AuthManager] = None,
    settings: Optional[Dict[str, Any]] = None
) -> FastAPI:
    """Create the API application.

    Collaborators that are not passed in are built from settings. The
    database pool is only opened, at startup, when no repositories are given
    and the storage backend is ``postgres``.

    Args:
        repositories: Repositories to serve from
        settlement: Settlement provider for purchases
        auth: Token verifier
        settings: Settings dict, defaults to ``config.settings_conf``
    """
    settings = settings or settings_conf

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown events."""
        logger.info("Initializing API...")
        owns_pool = False
        if app.state.repos is None:
            backend = settings['storage_backend']
            pool = None
            if backend == 'postgres':
                pool = await init_db(settings['db_url'])
                owns_pool = True
            app.state.repos = create_repositories(backend, pool)

        yield

        logger.info("Shutting down API...")
        if owns_pool:
            await db_close()

    app = FastAPI(
        title="Contract Market API",
        description="REST API for issuing and trading contracts",
        version="1.0.0",
        lifespan=lifespan
    )

    app.state.repos = repositories
    app.state.settlement = settlement or NoopSettlement(
        currency=settings['settlement_currency'],
        platform_fee_bps=settings['platform_fee_bps']
    )
    app.state.auth = auth or AuthManager(
        secret=settings['jwt_secret'],
        algorithm=settings['jwt_algorithm'],
        audience=settings['jwt_audience'],
        provider=settings['auth_provider']
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Report malformed requests as 400."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": jsonable_errors(exc)}
        )

    @app.get("/")
    async def root():
        return {
            "name": "Contract Market API",
            "version": "1.0.0",
            "status": "running"
        }

    app.include_router(listings_router, prefix=API_PREFIX)
    app.include_router(contracts_router, prefix=API_PREFIX)
    app.include_router(transactions_router, prefix=API_PREFIX)
    app.include_router(profile_router, prefix=API_PREFIX)

    return app


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


app = create_app()

__all__ = ['app', 'create_app', 'API_PREFIX']
