from datetime import datetime
from typing import Dict, Optional
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cryptofolio_api.api import crypto
from cryptofolio_api.api.routes import router
from cryptofolio_api.db.database import Database
from cryptofolio_api.services.coingecko_service import CoinGeckoService
from cryptofolio_api.services.exceptions import CryptofolioError
from cryptofolio_api.services.holding_store import HoldingStore
from cryptofolio_api.services.portfolio_service import PortfolioService
from cryptofolio_shared.config import settings, logger
from cryptofolio_shared.logging_config import bind_request_context, request_context


def create_app(
    database: Optional[Database] = None,
    coingecko_service: Optional[CoinGeckoService] = None,
) -> FastAPI:
    database = database or Database()
    coingecko_service = coingecko_service or CoinGeckoService()

    app = FastAPI(title="Cryptofolio")
    app.state.database = database
    app.state.coingecko_service = coingecko_service
    app.state.portfolio_service = PortfolioService(HoldingStore(database), coingecko_service)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def bind_request_id(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = bind_request_context(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            request_context.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(router)
    app.include_router(crypto.router)

    @app.exception_handler(CryptofolioError)
    async def cryptofolio_error_handler(request: Request, exc: CryptofolioError) -> JSONResponse:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.detail}")
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.on_event("startup")
    async def startup_event() -> None:
        logger.info("Starting up Cryptofolio API")
        await app.state.database.init_db()

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        """
        Release database connections on application shutdown.
        """
        await app.state.database.dispose()

    @app.get("/")
    async def root() -> Dict[str, str]:
        logger.info("Root endpoint accessed")
        return {"message": "Welcome to Cryptofolio supported by FastAPI!"}

    @app.get("/health")
    async def health() -> Dict[str, str]:
        database_ok = await app.state.database.check_db_connection()
        return {
            "status": "ok" if database_ok else "degraded",
            "database": "ok" if database_ok else "unavailable",
            "timestamp": datetime.utcnow().isoformat(),
        }

    return app


app = create_app()
