import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import httpx
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from edge_relay.config import ConfigStore
from edge_relay.proxy import create_upstream_client
from edge_relay.routes import admin_router, router
from edge_relay.vars import (
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    RELAY_ADMIN_PREFIX,
    RELAY_CONFIG_FILE,
    RELAY_CONFIG_POLL_INTERVAL,
    SERVICE_NAME,
)

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out ASGI body spans.

    Every relayed chunk produces one ``http.response.body`` span; an SSE
    stream would otherwise bury the request span under hundreds of them.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def configure_tracing(app: FastAPI) -> None:
    provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=((OTLP_HEADERS).split(",") if OTLP_HEADERS else None),
        )
        provider.add_span_processor(
            BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        )
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(
        app, excluded_urls=f"{RELAY_ADMIN_PREFIX}/health,{RELAY_ADMIN_PREFIX}/metrics"
    )


def create_app(
    config_store: Optional[ConfigStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    instrument: bool = True,
) -> FastAPI:
    """
    Build the relay application.

    ``config_store`` and ``transport`` default to the environment driven
    configuration and a real network transport.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = config_store or ConfigStore(RELAY_CONFIG_FILE)
        app.state.config_store = store
        app.state.http_client = create_upstream_client(transport=transport)
        store.register_reload_signal(asyncio.get_running_loop())
        watcher = asyncio.create_task(store.watch(RELAY_CONFIG_POLL_INTERVAL))
        logger.info(
            f"[Relay] Started with config version {store.current.version} "
            f"from {store.current.source}"
        )
        try:
            yield
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher
            await app.state.http_client.aclose()

    # The whole path space belongs to the route table: no docs endpoints
    app = FastAPI(
        title=SERVICE_NAME,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    if instrument:
        Instrumentator(
            excluded_handlers=[f"{RELAY_ADMIN_PREFIX}/metrics"]
        ).instrument(app).expose(app, endpoint=f"{RELAY_ADMIN_PREFIX}/metrics")
        configure_tracing(app)

    app.include_router(admin_router)
    app.include_router(router)
    return app


app = create_app()

app_info = Info("edge_relay_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})
