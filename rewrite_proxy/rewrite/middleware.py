"""
ASGI middleware that rewrites the full request URL before the inner app
sees the request.

Usage::

    rule = compile_rule(r"//old\\.example\\.com/(.*)", "//new.example.com/$1")
    app.add_middleware(FullUrlRewriteMiddleware, rule=rule)

The rule is compiled by the caller so a bad pattern fails when the
application is assembled, not on the first request.
"""

import logging
from typing import Union

from opentelemetry import trace
from prometheus_client import Counter
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.websockets import WebSocketClose

from .engine import CommitStrategy, RewriteEngine, UrlSource
from .errors import RewriteError
from .rule import RewriteRule

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)

REWRITE_REQUESTS = Counter(
    "url_rewrite_requests_total",
    "Requests seen by the URL rewrite middleware",
    ["rule", "outcome"],
)


class FullUrlRewriteMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        rule: RewriteRule,
        url_source: Union[UrlSource, str] = UrlSource.FULL,
        commit_strategy: Union[CommitStrategy, str] = CommitStrategy.CLONE,
    ):
        self.app = app
        self.engine = RewriteEngine(rule, url_source, commit_strategy)
        if self.engine.commit_strategy is CommitStrategy.IN_PLACE:
            logger.warning(
                f"[{rule.name}] Rewriting request URLs in place; the Host header is "
                "not updated and outer middleware will observe the new URL"
            )
        logger.info(
            f"[{rule.name}] URL rewrite enabled "
            f"(source={self.engine.url_source.value}, "
            f"commit={self.engine.commit_strategy.value})"
        )

    @property
    def rule(self) -> RewriteRule:
        return self.engine.rule

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        name = self.rule.name
        with tracer.start_as_current_span("url_rewrite") as span:
            span.set_attribute("rewrite.name", name)
            try:
                outcome = self.engine.rewrite(scope)
                span.set_attribute("rewrite.original_url", outcome.original_url)
                span.set_attribute("rewrite.rewritten_url", outcome.rewritten_url)
                span.set_attribute("rewrite.changed", outcome.changed)
                new_scope = self.engine.commit(scope, outcome)
            except RewriteError as e:
                span.set_attribute("rewrite.error", str(e))
                span.record_exception(e)
                REWRITE_REQUESTS.labels(rule=name, outcome="failed").inc()
                logger.warning(f"[{name}] {e}")
                await self._reject(scope, receive, send, e)
                return

        if outcome.changed:
            REWRITE_REQUESTS.labels(rule=name, outcome="rewritten").inc()
            logger.debug(
                f"[{name}] Rewrote {outcome.original_url} -> {outcome.rewritten_url}"
            )
        else:
            REWRITE_REQUESTS.labels(rule=name, outcome="unchanged").inc()
        await self.app(new_scope, receive, send)

    async def _reject(
        self, scope: Scope, receive: Receive, send: Send, error: RewriteError
    ) -> None:
        message = f"error rewriting URL: {error}"
        if scope["type"] == "websocket":
            # Close reasons are limited to 123 bytes
            reason = message.encode("utf-8")[:123].decode("utf-8", "ignore")
            await WebSocketClose(code=1011, reason=reason)(scope, receive, send)
            return
        response = PlainTextResponse(message, status_code=500)
        await response(scope, receive, send)
