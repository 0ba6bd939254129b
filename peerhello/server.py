from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
import json
import logging
import time
from typing import Any
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response
from fastapi.staticfiles import StaticFiles
from prometheus_client import generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from .config import ServiceConfig, config_from_env
from .metrics import LatencyRecorder, NullLatencyRecorder, ServiceMetrics, build_metrics
from .render import DEFAULT_UI_DIR, PageRenderer, build_renderer
from .resolver import IdentityResolver
from .whois import WhoIsClient, build_whois_client

_ACCESS_LOGGER = logging.getLogger("peerhello.access")
_SERVER_LOGGER = logging.getLogger("peerhello.server")

if not _ACCESS_LOGGER.handlers:
    _access_handler = logging.StreamHandler()
    _access_handler.setFormatter(logging.Formatter("%(message)s"))
    _ACCESS_LOGGER.addHandler(_access_handler)

_ACCESS_LOGGER.setLevel(logging.INFO)
_ACCESS_LOGGER.propagate = False


def _log_json(logger: logging.Logger, payload: dict[str, Any]) -> None:
    logger.info(json.dumps(payload, sort_keys=True, separators=(",", ":")))


def peer_address(request: Request) -> str:
    """``host:port`` of the connection itself; forwarding headers are ignored."""
    if request.client is None or not request.client.host:
        return ""
    host = request.client.host
    if ":" in host:
        host = f"[{host}]"
    return f"{host}:{request.client.port}"


async def greeting_page(
    resolver: IdentityResolver,
    renderer: PageRenderer,
    peer: str,
    *,
    timeout_sec: float | None = None,
    metrics: ServiceMetrics | None = None,
) -> bytes:
    outcome = await resolver.resolve(peer, timeout_sec=timeout_sec)
    if metrics is not None:
        metrics.record_outcome(outcome)
    return renderer.render(outcome)


def create_app(
    config: ServiceConfig | None = None,
    *,
    whois_client: WhoIsClient | None = None,
    metrics: ServiceMetrics | None = None,
    recorder: LatencyRecorder | None = None,
    renderer: PageRenderer | None = None,
) -> FastAPI:
    if config is None:
        config = config_from_env()
    owns_whois_client = whois_client is None
    if whois_client is None:
        whois_client = build_whois_client(config.whois)
    if metrics is None and config.metrics.enabled:
        metrics = build_metrics(config.metrics.latency_buckets_ms)
    if recorder is None:
        recorder = metrics.latency_recorder() if metrics is not None else NullLatencyRecorder()
    if renderer is None:
        renderer = build_renderer(config.server.ui_dir, dev=config.server.dev)
    resolver = IdentityResolver(whois_client, recorder, timeout_sec=config.whois.timeout_sec)

    @asynccontextmanager
    async def _lifespan(_: FastAPI):
        yield
        if owns_whois_client:
            await whois_client.aclose()

    app = FastAPI(title="peerhello", version="1.0", lifespan=_lifespan)
    app.state.config = config
    app.state.resolver = resolver
    app.state.renderer = renderer
    app.state.metrics = metrics

    ui_dir = config.server.ui_dir or str(DEFAULT_UI_DIR)
    app.mount("/ui", StaticFiles(directory=ui_dir, check_dir=False), name="ui")

    @app.middleware("http")
    async def _access_log_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id", str(time.time_ns()))
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            _SERVER_LOGGER.exception("Unhandled server error for %s %s", request.method, request.url.path)
            raise
        duration_ms = (time.perf_counter() - start) * 1000.0
        response.headers["x-request-id"] = request_id
        _log_json(
            _ACCESS_LOGGER,
            {
                "ts": datetime.now(timezone.utc).isoformat(),
                "event": "access",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 3),
                "peer": peer_address(request),
            },
        )
        return response

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request) -> HTMLResponse:
        body = await greeting_page(resolver, renderer, peer_address(request), metrics=metrics)
        return HTMLResponse(content=body)

    @app.get("/api/uuid", response_class=PlainTextResponse)
    def new_uuid() -> PlainTextResponse:
        value = str(uuid.uuid4())
        if config.server.dev:
            _SERVER_LOGGER.info("issued uuid %s", value)
        if metrics is not None:
            metrics.identifiers_issued.inc()
        return PlainTextResponse(f"{value}\n")

    @app.get("/metrics")
    def prometheus_metrics_endpoint():
        if metrics is None:
            raise HTTPException(status_code=503, detail="prometheus metrics disabled")
        data = generate_latest(metrics.registry)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    return app
