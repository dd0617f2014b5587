"""
FastAPI application for the board webhook.

Routes:
    POST       {webhook.path}  signed card-move deliveries
    HEAD, GET  {webhook.path}  callback validation (the board probes the URL
                               with HEAD when the webhook is registered)
    GET        /healthz        liveness

The route handlers only read the raw body and the signature header; all
decisions live in WebhookPipeline, which runs in the threadpool because the
store and board calls are blocking.
"""

from __future__ import annotations

import argparse
import sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from production_config import ProductionConfig, get_active_config
from production_ingestion.board_client import BoardClient
from production_ingestion.pipeline import WebhookPipeline
from production_kernel import __version__
from production_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from production_kernel.domain.clock import Clock
from production_kernel.logging_config import configure_logging, get_logger

logger = get_logger("ingestion.app")


def create_app(
    config: ProductionConfig | None = None,
    session_factory: sessionmaker[Session] | None = None,
    board_client: BoardClient | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """
    Build the webhook application.

    Args:
        config: Runtime configuration; loaded via get_active_config() when
            omitted.
        session_factory: Session factory; when omitted the engine is
            initialised from config.database.
        board_client: Board API client; built from config.board when omitted.
        clock: Clock for history timestamps; system clock when omitted.
    """
    configure_logging()
    config = config or get_active_config()

    if session_factory is None:
        db = config.database
        init_engine_from_url(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            statement_timeout_ms=db.statement_timeout_ms,
        )
        session_factory = get_session_factory()

    pipeline = WebhookPipeline(config, session_factory, board_client, clock)

    app = FastAPI(title="Production webhook", version=__version__)
    app.state.config = config
    app.state.pipeline = pipeline

    webhook_path = config.webhook.path
    signature_header = config.webhook.signature_header

    @app.post(webhook_path)
    async def receive_board_event(request: Request) -> JSONResponse:
        """Apply one signed board delivery."""
        body = await request.body()
        signature = request.headers.get(signature_header)
        outcome = await run_in_threadpool(pipeline.handle, body, signature)
        return JSONResponse(outcome.body, status_code=outcome.status_code)

    @app.api_route(webhook_path, methods=["GET", "HEAD"])
    async def validate_callback() -> JSONResponse:
        """Answer the board's HEAD check of the callback URL."""
        return JSONResponse({"ok": True})

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"ok": True, "version": __version__, "config_id": config.config_id}

    logger.info(
        "webhook_app_created",
        extra={"webhook_path": webhook_path, "config_id": config.config_id},
    )
    return app


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Serve the production board webhook")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=8000)
    p.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before serving",
    )
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    import uvicorn

    args = _parse_args(argv)
    app = create_app()
    if args.create_tables:
        create_tables()
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
