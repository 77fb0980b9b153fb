import asyncio
import logging
import time
from dotenv import load_dotenv

# Load environment variables from .env file before settings are read
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from disclosure.core.config import settings
from disclosure.core.logging import setup_logging, request_id_ctx
from disclosure.core.cache import build_cache
from disclosure.core.errors import DisclosureError
from disclosure.api.router import api_router
from disclosure.core.db import init_models
from disclosure.modules.events.outbox import run_outbox_relay
from disclosure.platform.provider_registry import registry


setup_logging()
app = FastAPI(title=settings.APP_NAME)

logger = logging.getLogger(__name__)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    request_id_ctx.set(request.headers.get("x-request-id", "-"))

    response = await call_next(request)

    process_time = (time.time() - start_time) * 1000
    logger.info(
        f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {process_time:.2f}ms"
    )
    return response

@app.exception_handler(DisclosureError)
async def disclosure_error_handler(request: Request, exc: DisclosureError):
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.http_status,
        content={"error": exc.code, "message": exc.message, "retryable": exc.retryable},
        headers=headers,
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"message": "An internal server error occurred."},
    )


@app.on_event("startup")
async def on_startup():
    await init_models()
    app.state.cache = build_cache()
    app.state.outbox_task = asyncio.create_task(run_outbox_relay())

@app.on_event("shutdown")
async def on_shutdown():
    task = getattr(app.state, "outbox_task", None)
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    cache = getattr(app.state, "cache", None)
    if cache:
        await cache.close()
    await registry.close()


app.include_router(api_router, prefix=settings.API_PREFIX)
