"""
External script worker service.

POST /execute                 run one WorkerRequest, reply WorkerResponse
POST /cancel/{invocation_id}  mark a running invocation cancelled
GET  /health                  liveness

Run with: uvicorn scriptstep.worker.main:app
"""

import logging
import secrets

import sentry_sdk
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from scriptstep.core.config import settings
from scriptstep.schemas import WorkerRequest
from scriptstep.worker.runner import InvocationRegistry, run_worker_request

_logger = logging.getLogger(__name__)

if settings.SENTRY_DSN and settings.ENVIRONMENT != "local":
    sentry_sdk.init(dsn=str(settings.SENTRY_DSN), enable_tracing=True)

app = FastAPI(title=f"{settings.PROJECT_NAME} worker", docs_url=None, redoc_url=None)
registry = InvocationRegistry()


def verify_token(authorization: str | None = Header(default=None)) -> None:
    expected = settings.SCRIPT_WORKER_AUTH_TOKEN
    if not expected:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return 422 with a readable detail string instead of raw Pydantic errors."""
    messages = []
    for err in exc.errors():
        loc = ".".join(str(l) for l in err.get("loc", []) if l != "body")
        msg = err.get("msg", "Invalid value")
        messages.append(f"{loc}: {msg}" if loc else msg)
    return JSONResponse(status_code=422, content={"detail": "; ".join(messages)})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: log and return 500 with a safe message."""
    _logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    detail = "Internal server error"
    if settings.ENVIRONMENT == "local":
        detail = f"Internal server error: {exc}"
    return JSONResponse(status_code=500, content={"detail": detail})


@app.post("/execute", dependencies=[Depends(verify_token)])
async def execute(body: WorkerRequest) -> JSONResponse:
    if not registry.start(body.invocation_id):
        return JSONResponse(
            status_code=409,
            content={"detail": f"Invocation '{body.invocation_id}' is already running"},
        )
    try:
        response = await run_worker_request(body)
    finally:
        cancelled = registry.finish(body.invocation_id)
    if cancelled:
        _logger.info("discarding output of cancelled invocation %s", body.invocation_id)
        return JSONResponse(
            status_code=409,
            content={"detail": f"Invocation '{body.invocation_id}' was cancelled"},
        )
    return JSONResponse(content=response.to_wire())


@app.post("/cancel/{invocation_id}", dependencies=[Depends(verify_token)])
async def cancel(invocation_id: str) -> dict[str, bool]:
    return {"cancelled": registry.cancel(invocation_id)}


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
