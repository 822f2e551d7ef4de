"""
F3 Sidecar: Query Server

FastAPI application serving the query facade to the host node:
  POST /            : JSON-RPC 2.0 (single or batch), Filecoin.F3* methods
  POST /rpc/v0      : same
  POST /rpc/v1      : same
  GET  /health      : liveness
  GET  /ready       : engine running + supervisor state

The server runs on its own thread next to the supervisor loop. Requests
only ever touch the facade, never the supervisor's retry machinery.

Usage:
    from api.server import create_app, serve_in_thread

    app = create_app(facade, supervisor)
    server, thread = serve_in_thread(app, "127.0.0.1", 23456)
    ...
    server.should_exit = True

Requires: pip install fastapi uvicorn
"""

import json
import logging
import threading
import time
from typing import Any

from api.handler import QueryHandler
from api.models import PARSE_ERROR, RpcResponse
from sidecar.facade import QueryFacade

logger = logging.getLogger("f3.sidecar.api")


def create_app(facade: QueryFacade, supervisor: Any = None) -> Any:
    """
    Create and configure the FastAPI application.

    `supervisor` is optional and only read for /ready.
    """
    from fastapi import FastAPI, Request
    from fastapi.responses import JSONResponse, Response

    app = FastAPI(
        title="F3 Sidecar",
        version="0.1.0",
        description="Read-only F3 finality queries",
    )
    handler = QueryHandler(facade)

    # ── JSON-RPC ──────────────────────────────────────────────

    async def rpc(request: Request):
        raw = await request.body()
        try:
            body = json.loads(raw)
        except ValueError as e:
            return JSONResponse(
                content=RpcResponse.failure(None, PARSE_ERROR, f"parse error: {e}").to_dict()
            )

        # Facade calls are blocking; keep them off the event loop
        from starlette.concurrency import run_in_threadpool
        payload = await run_in_threadpool(handler.handle, body)
        if payload is None:
            return Response(status_code=204)
        return JSONResponse(content=payload)

    for path in ("/", "/rpc/v0", "/rpc/v1"):
        app.add_api_route(path, rpc, methods=["POST"])

    # ── Health ────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return JSONResponse(content={
            "status": "ok",
            "timestamp": time.time(),
        })

    @app.get("/ready")
    async def ready():
        running = facade.is_running()
        content: dict[str, Any] = {
            "status": "ok" if running else "fail",
            "running": running,
        }
        if supervisor is not None:
            content["supervisor"] = {
                "state": supervisor.state.value,
                "retries": supervisor.retries,
            }
        return JSONResponse(status_code=200 if running else 503, content=content)

    return app


def serve_in_thread(app: Any, host: str, port: int, log_level: str = "warning"):
    """
    Run uvicorn on a daemon thread. Returns (server, thread); set
    server.should_exit = True to stop it.
    """
    import uvicorn

    config = uvicorn.Config(app, host=host, port=port, log_level=log_level, log_config=None)
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, name="f3-query-server", daemon=True)
    thread.start()
    logger.info("Query server listening on %s:%d", host, port)
    return server, thread
