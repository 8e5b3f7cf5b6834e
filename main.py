from contextlib import asynccontextmanager

from dishka import AsyncContainer
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from dishka.integrations.fastapi import setup_dishka

from core.container import container
from core.exception_handler import (
    validation_exception_handler,
    http_exception_handler,
    custom_exception_handler
)
from core.exceptions import BaseCustomException
from blockchain.router import router as blockchain_router
from explainer.router import router as explainer_router
from explainer.sessions import SessionRegistry

NAME = "Contract Explainer API"
VERSION = "0.4.0"


def create_app(app_container: AsyncContainer) -> FastAPI:
    """
    Build the application around a dependency container.

    Parameters
    ----------
    app_container : AsyncContainer
        Dishka container providing every service

    Returns
    -------
    FastAPI
        Configured application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # streams still running would outlive Redis and the LLM client
        sessions = await app_container.get(SessionRegistry, component="explainer")
        await sessions.shutdown()
        await app_container.close()

    app = FastAPI(
        title=NAME,
        version=VERSION,
        description="Decodes smart contract transactions and explains contracts with an LLM",
        lifespan=lifespan,
    )

    setup_dishka(app_container, app)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(BaseCustomException, custom_exception_handler)
    app.add_exception_handler(Exception, custom_exception_handler)

    app.include_router(blockchain_router)
    app.include_router(explainer_router)

    app.add_api_route("/", root, methods=["GET"])
    app.add_api_route("/health", health, methods=["GET"])

    return app


async def root():
    """
    Root endpoint.

    Returns
    -------
    dict
        Application information
    """
    return {
        "name": NAME,
        "version": VERSION,
        "endpoints": {
            "transactions": "/api/blockchain/transactions",
            "transaction": "/api/blockchain/transaction",
            "contract_details": "/api/explainer/contract/details",
            "explain_contract": "/api/explainer/contract",
            "explain_contract_stream": "/api/explainer/contract/stream",
            "explain_transaction_stream": "/api/explainer/transaction/stream",
            "docs": "/docs"
        }
    }


async def health():
    """
    Health check endpoint.

    Returns
    -------
    dict
        Health status
    """
    return {"status": "healthy", "version": VERSION}


app = create_app(container)
