"""Main application entry point."""

import logging

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

from src.api.billing import billing_error_handler
from src.api.billing import router as billing_router
from src.services.config import load_config
from src.services.errors import BillingError
from src.services.logging import setup_server_logging

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build the FastAPI application with the billing router."""
    app = FastAPI(
        title="Garden Billing",
        description="Billing period accruals, payments and debt reconciliation",
        version="0.1.0",
    )
    app.include_router(billing_router)
    app.add_exception_handler(BillingError, billing_error_handler)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Garden Billing API")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    args = parser.parse_args()

    load_dotenv()
    setup_server_logging(load_config().log_file)

    logger.info("Starting Uvicorn server on %s:%d...", args.host, args.port)
    config = uvicorn.Config(app=app, host=args.host, port=args.port, log_level="info")
    server = uvicorn.Server(config)
    server.run()


if __name__ == "__main__":
    main()
