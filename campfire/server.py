from __future__ import annotations

import logging
import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from campfire import __version__
from campfire.common.error_envelope import build_error_envelope

logger = logging.getLogger(__name__)


async def _http_exception_handler(request: Request, exc: HTTPException):
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        return JSONResponse(content=detail, status_code=exc.status_code)
    envelope = build_error_envelope(
        code="http.exception",
        message=str(detail) if detail else "HTTP exception",
        status_code=exc.status_code,
    )
    return JSONResponse(content=envelope.model_dump(), status_code=exc.status_code)


async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    envelope = build_error_envelope(
        code="validation.error",
        message="Validation failed",
        status_code=400,
        details={"errors": [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]},
    )
    return JSONResponse(content=envelope.model_dump(), status_code=400)


async def _generic_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    envelope = build_error_envelope(
        code="internal.error",
        message="Internal server error",
        status_code=500,
    )
    return JSONResponse(content=envelope.model_dump(), status_code=500)


def register_error_handlers(target_app: FastAPI) -> None:
    target_app.add_exception_handler(HTTPException, _http_exception_handler)
    target_app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    target_app.add_exception_handler(Exception, _generic_exception_handler)


def create_app() -> FastAPI:
    app = FastAPI(title="Campfire Review Core", version=__version__)
    register_error_handlers(app)

    from campfire.recipe_review.routes import router as recipe_review_router
    from campfire.review.routes import router as review_router

    app.include_router(review_router)
    app.include_router(recipe_review_router)

    @app.get("/health")
    async def health_check():
        return {"service": "campfire", "version": __version__, "time": time.time(), "status": "ok"}

    return app
