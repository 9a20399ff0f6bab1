"""
Bank Ledger API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import LedgerConfig, get_config
from ..logging_config import get_logger
from ..seed import seed_accounts
from ..system import BankingSystem
from .accounts import router as accounts_router
from .auth import router as auth_router
from .movements import router as movements_router
from .responses import install_exception_handlers


logger = get_logger("bank_ledger.api")


def create_app(system: Optional[BankingSystem] = None,
               config: Optional[LedgerConfig] = None) -> FastAPI:
    """Create and configure the FastAPI application

    An injected system is used as-is and left open at shutdown; otherwise one
    is built from configuration at startup and closed at shutdown.
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.banking_system is None
        if owned:
            app.state.banking_system = BankingSystem.from_config(config)
            if config.seed_demo_data and not app.state.banking_system.account_manager.list_accounts():
                seeded = seed_accounts(app.state.banking_system.account_manager)
                logger.info("Seeded %d demo accounts", len(seeded))

        yield

        if owned:
            app.state.banking_system.close()
            app.state.banking_system = None

    app = FastAPI(
        title="Bank Ledger API",
        description="Accounts, deposits, withdrawals and phone-based transfers over an atomic ledger",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.banking_system = system

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    install_exception_handlers(app)

    app.include_router(auth_router, prefix="/auth", tags=["Auth"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(movements_router, prefix="/movements", tags=["Movements"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "bank_ledger_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Bank Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "login": "/auth/login",
                "accounts": "/accounts",
                "movements": "/movements",
                "deposit": "/movements/deposit",
                "withdrawal": "/movements/withdrawal",
                "transfer": "/movements/transfer",
            }
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None,
               reload: Optional[bool] = None):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "bank_ledger.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=config.api_reload if reload is None else reload,
        log_level=config.log_level.lower()
    )


app = create_app()
