#!/usr/bin/env python3
"""
Wasm Runner HTTP Gateway

Thin HTTP front for the sandbox core. Extracts request bodies, hands
payloads to the executor and turns outcomes into plain-text responses.

Routes:
    GET  /              usage text
    POST /log           append a UTF-8 message to the diagnostic log
    POST /execute-wasm  run a WebAssembly payload, return its output
    anything else       404

Run:
    python -m wasm_runner.server

Or with uvicorn:
    uvicorn wasm_runner.server:app --host 0.0.0.0 --port 3000
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import ClientDisconnect

from . import __version__
from .config import Settings, load_settings
from .sandbox import (
    ExecutionOutcome,
    Failed,
    FailureStage,
    SandboxExecutor,
    get_profile,
    render_report,
    status_code,
)

# Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("wasm-runner")
# POST /log messages land here, whatever level the root logger runs at
diagnostics = logger.getChild("log")
diagnostics.setLevel(logging.INFO)

VERSION = __version__

# How often a running request checks whether its client went away
DISCONNECT_POLL_SECONDS = 0.25

USAGE_TEXT = """wasm-runner {version}

Runs untrusted WebAssembly in a per-request sandbox and returns its output.

  GET  /              this text
  POST /log           body: UTF-8 text, written to the server log
  POST /execute-wasm  body: WebAssembly {kind} binary
                      200 with stdout (and stderr) on completion or trap
                      400 with the failing stage otherwise

Profile: {profile}
"""

_PROFILE_KINDS = {
    "module": "core module (WASI preview 1, _start or main)",
    "component": "component (WASI command, wasi:cli/run)",
}


def _text(body: str, status: int = 200) -> PlainTextResponse:
    return PlainTextResponse(body, status_code=status, media_type="text/plain; charset=utf-8")


# =============================================================================
# FastAPI App
# =============================================================================

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the gateway. Settings are read from the environment if omitted."""
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        logger.info(f"Wasm Runner starting ({settings.profile.value} profile, {settings.workers} workers)...")
        app.state.executor = SandboxExecutor(
            limits=settings.limits,
            profile=get_profile(settings.profile),
            workers=settings.workers,
            capture_bytes=settings.capture_bytes,
            argv0=settings.argv0,
        )
        yield
        logger.info("Wasm Runner shutting down...")
        await asyncio.to_thread(app.state.executor.shutdown, settings.shutdown_grace_seconds)

    app = FastAPI(
        title="Wasm Runner",
        description="Sandboxed WebAssembly execution service",
        version=VERSION,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        # Unknown paths and unsupported methods look the same to callers
        if exc.status_code in (404, 405):
            return _text("not found", 404)
        return _text(str(exc.detail), exc.status_code)

    # -------------------------------------------------------------------------
    # Routes
    # -------------------------------------------------------------------------

    @app.get("/")
    async def root():
        """Usage text."""
        return _text(USAGE_TEXT.format(
            version=VERSION,
            kind=_PROFILE_KINDS[settings.profile.value],
            profile=settings.profile.value,
        ))

    @app.post("/log")
    async def log_message(request: Request):
        """Write the request body to the diagnostic log."""
        try:
            body = await request.body()
        except ClientDisconnect as e:
            logger.error(f"Error reading request body: {e}")
            return _text("Failed to read request body", 400)

        try:
            message = body.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.error(f"Error parsing UTF-8: {e}")
            return _text("Invalid UTF-8 in request body", 400)

        diagnostics.info(f"[LOG] Received message: {message}")
        return _text("Message logged successfully")

    @app.post("/execute-wasm")
    async def execute_wasm(request: Request):
        """Run the request body as a WebAssembly payload."""
        try:
            payload = await request.body()
        except ClientDisconnect as e:
            logger.error(f"Error reading request body: {e}")
            return _text("Failed to read request body", 400)

        outcome = await _execute_until_disconnect(request, request.app.state.executor, payload)
        return _text(render_report(outcome), status_code(outcome, settings.cancellation_status))

    return app


async def _execute_until_disconnect(
    request: Request,
    executor: SandboxExecutor,
    payload: bytes,
) -> ExecutionOutcome:
    """Run ``payload``, cancelling the execution if the client disconnects."""
    task = asyncio.ensure_future(executor.execute_async(payload))
    while True:
        done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
        if done:
            return task.result()
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling execution")
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            return Failed(stage=FailureStage.CANCELLATION, message="client disconnected")


# uvicorn target: wasm_runner.server:app
app = create_app()


# =============================================================================
# Main
# =============================================================================

def main():
    """Run the service."""
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    settings = load_settings()

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
