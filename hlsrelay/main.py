from contextlib import asynccontextmanager
from fastapi import FastAPI, Query, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional
import logging

import httpx
from starlette.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from .utils.logging import setup
from .core.config import cfg
from .core.errors import ProxyError
from .models.schemas import ErrorPayload, ProxyRequest, ServiceStatus
from .proxy.pipeline import ForwardingPipeline
from .services.rate_limiter import enforce_rate_limit

APP_VERSION = "1.0.0"

logger = logging.getLogger(__name__)

setup(cfg.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One pooled client for every upstream host, shared by all requests
    client = httpx.AsyncClient(
        timeout=httpx.Timeout(cfg.UPSTREAM_TIMEOUT_S, connect=cfg.UPSTREAM_CONNECT_TIMEOUT_S),
        limits=httpx.Limits(
            max_connections=cfg.MAX_CONNECTIONS,
            max_keepalive_connections=cfg.MAX_KEEPALIVE_CONNECTIONS,
        ),
    )
    app.state.http_client = client
    app.state.pipeline = ForwardingPipeline(client)
    logger.info(f"HLS relay ready on {cfg.PROXY_ROUTE} (upstream timeout {cfg.UPSTREAM_TIMEOUT_S}s)")

    yield

    # Shutdown
    await client.aclose()
    logger.info("HLS relay stopped")

app = FastAPI(title="HLS Relay", version=APP_VERSION, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=cfg.allowed_origins(),
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["Content-Length", "Content-Range", "Accept-Ranges"],
)


@app.exception_handler(ProxyError)
async def proxy_error_handler(request: Request, exc: ProxyError):
    payload = ErrorPayload(**exc.to_payload())
    return JSONResponse(status_code=exc.status_code, content=payload.model_dump(exclude_none=True), headers=exc.headers())


def get_pipeline(request: Request) -> ForwardingPipeline:
    return request.app.state.pipeline


@app.get("/", response_model=ServiceStatus)
def health():
    return ServiceStatus(version=APP_VERSION)


@app.get("/metrics")
def get_metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get(
    cfg.PROXY_ROUTE,
    dependencies=[Depends(enforce_rate_limit)],
    responses={
        400: {"model": ErrorPayload, "description": "Missing or invalid target URL"},
        429: {"model": ErrorPayload, "description": "Rate limit exceeded"},
        500: {"model": ErrorPayload, "description": "Upstream unreachable or internal error"},
    },
)
async def proxy(
    request: Request,
    url: Optional[str] = Query(None, description="Percent-encoded absolute URL to fetch"),
    pipeline: ForwardingPipeline = Depends(get_pipeline),
):
    """
    Fetch ``url`` upstream and relay it.

    Manifests come back rewritten so every playlist, segment, key and subtitle
    they reference is requested through this same route. Segments and other
    binary content are streamed through unmodified.
    """
    proxy_request = ProxyRequest.from_query(
        url,
        range_header=request.headers.get("range"),
        user_agent=request.headers.get("user-agent"),
    )
    try:
        return await pipeline.handle(proxy_request)
    except ProxyError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error proxying {proxy_request.target_url}: {e}", exc_info=True)
        raise ProxyError("Unexpected internal error", code="INTERNAL_ERROR") from e


def run():
    import uvicorn
    logger.info(f"Starting HLS relay on {cfg.APP_HOST}:{cfg.APP_PORT}")
    # Logging is already configured by setup(), keep uvicorn from replacing it
    uvicorn.run(app, host=cfg.APP_HOST, port=cfg.APP_PORT, log_config=None)


if __name__ == "__main__":
    run()
