from __future__ import annotations

import logging

from fastapi import FastAPI, Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import CommitError, MalformedPayload, PublishError
from .pipeline import Pipeline

TAIGA_PATH = "/taiga"
SHUTDOWN_TIMEOUT = 30.0

logger = logging.getLogger("taiga_updates.web")


def create_app(pipeline: Pipeline) -> FastAPI:
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None, redirect_slashes=False)
    app.state.pipeline = pipeline

    @app.on_event("startup")
    async def startup() -> None:
        pipeline.worker.start()
        logger.info("publishing %s in %s", pipeline.worker.repo.relative_target, pipeline.worker.repo.root)

    @app.on_event("shutdown")
    async def shutdown() -> None:
        await run_in_threadpool(pipeline.close, SHUTDOWN_TIMEOUT)
        if pipeline.worker.is_running():
            logger.error("publish worker still busy after %.0fs, leaving it behind", SHUTDOWN_TIMEOUT)
        else:
            logger.info("publish worker stopped")

    @app.middleware("http")
    async def request_boundary(request: Request, call_next):
        logger.info("%s %s", request.method, request.url)
        logger.debug("User Host: %s", request.client.host if request.client else None)
        logger.debug("User Agent: %s", request.headers.get("user-agent"))
        try:
            return await call_next(request)
        except Exception:
            logger.exception("Error while processing %s request for %s", request.method, request.url)
            return Response(status_code=500)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> Response:
        # Only one route exists; a wrong method is just another unknown endpoint.
        if exc.status_code in {404, 405}:
            return Response(status_code=404)
        return Response(status_code=exc.status_code)

    @app.post(TAIGA_PATH)
    async def taiga(request: Request) -> Response:
        body = await request.body()
        try:
            await pipeline.run(body)
        except MalformedPayload as exc:
            logger.error("Invalid input for %s path: %s", TAIGA_PATH, exc)
            return Response(status_code=400)
        except CommitError as exc:
            logger.error("commit failed: %s %s", exc, exc.stderr or "")
            return Response(status_code=500)
        except PublishError as exc:
            logger.error("%s failed: %s", exc.stage, exc)
            return Response(status_code=500)
        return Response(status_code=200)

    return app
