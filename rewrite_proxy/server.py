import logging
from typing import Dict, Optional

import uvicorn
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from rewrite_proxy.app_proxy.route import router
from rewrite_proxy.models import RewriteConfig
from rewrite_proxy.rewrite import (
    CommitStrategy,
    FullUrlRewriteMiddleware,
    RewriteRule,
    UrlSource,
)
from rewrite_proxy.vars import (
    HOST,
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    PORT,
    REWRITE_COMMIT_STRATEGY,
    REWRITE_NAME,
    REWRITE_URL_SOURCE,
    SERVICE_NAME,
)

logger = logging.getLogger("uvicorn.error")

# Add app_name to the metrics
app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})


def parse_otlp_headers(raw: str) -> Dict[str, str]:
    """Parse ``key=value,key2=value2`` into a header dict."""
    headers = {}
    for item in raw.split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def configure_tracing() -> None:
    """Install the SDK tracer provider, exporting over OTLP when configured."""
    tracer_provider = TracerProvider(
        resource=Resource.create({"service.name": SERVICE_NAME})
    )
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=parse_otlp_headers(OTLP_HEADERS) or None,
        )
        tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
    trace.set_tracer_provider(tracer_provider)


def create_app(
    rule: Optional[RewriteRule] = None,
    url_source: str = REWRITE_URL_SOURCE,
    commit_strategy: str = REWRITE_COMMIT_STRATEGY,
) -> FastAPI:
    """
    Build the proxy application.

    The rewrite rule is compiled here, before the middleware is installed,
    so an invalid pattern raises CompileError and no application is built.
    Unknown URL source or commit strategy values raise ValueError.
    """
    if rule is None:
        rule = RewriteConfig.from_env().compile(REWRITE_NAME)
    url_source = UrlSource(url_source)
    commit_strategy = CommitStrategy(commit_strategy)

    app = FastAPI()
    Instrumentator().instrument(app).expose(app)

    FastAPIInstrumentor.instrument_app(
        app,
        excluded_urls="",
        server_request_hook=None,
        client_request_hook=None,
    )

    app.add_middleware(
        FullUrlRewriteMiddleware,
        rule=rule,
        url_source=url_source,
        commit_strategy=commit_strategy,
    )
    app.include_router(router)
    return app


def main() -> None:
    configure_tracing()
    app = create_app()
    logger.info(f"Starting {SERVICE_NAME} on {HOST}:{PORT}")
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    main()
