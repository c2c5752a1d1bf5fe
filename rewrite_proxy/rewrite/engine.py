"""
Rewrites the URL of an ASGI request with a single RewriteRule.

Each request goes through three steps:

1. reconstruct: build the URL string the rule is matched against
2. substitute: apply the rule
3. commit: validate the result and produce the scope handed to the next app

The ASGI scope stands in for the request object. Its URL is split across
``path`` / ``raw_path`` / ``query_string`` while the target host travels in
the ``Host`` header, so the full URL has to be put back together before the
rule can see it.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, MutableMapping, Optional
from urllib.parse import quote

from .errors import InvalidRewrittenURL, RequestConstructionFailed
from .rule import RewriteRule
from .urls import ParsedURL, URLParseError, parse_url

logger = logging.getLogger("uvicorn.error")

Scope = MutableMapping[str, Any]

DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443}

# Schemes a rewritten URL may switch to, per ASGI connection type
SCOPE_SCHEMES = {
    "http": {"http": "http", "https": "https"},
    "websocket": {"ws": "ws", "wss": "wss", "http": "ws", "https": "wss"},
}

# RFC 7230 token characters
_METHOD_TOKEN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


class UrlSource(str, Enum):
    """Where the URL matched by the rule comes from."""

    # Scheme-relative URL including the target host: //host/path?query
    FULL = "full"
    # Request target only: /path?query
    RAW = "raw"


class CommitStrategy(str, Enum):
    """How a rewritten URL is applied to the request."""

    # Build a new scope and leave the received one untouched
    CLONE = "clone"
    # Write the new URL into the received scope; the Host header is not updated
    IN_PLACE = "in_place"


@dataclass(frozen=True)
class RewriteOutcome:
    """The result of matching one request URL against the rule."""

    original_url: str
    rewritten_url: str
    parsed: Optional[ParsedURL] = None
    error: Optional[URLParseError] = None

    @property
    def changed(self) -> bool:
        return self.rewritten_url != self.original_url

    @property
    def valid(self) -> bool:
        return self.error is None


def get_header(scope: Scope, name: bytes) -> Optional[bytes]:
    for key, value in scope.get("headers", ()):
        if key.lower() == name:
            return value
    return None


def target_host(scope: Scope) -> str:
    """The host the request was sent to, from the Host header or the server address."""
    host = get_header(scope, b"host")
    if host is not None:
        return host.decode("latin-1")
    server = scope.get("server")
    if not server:
        return ""
    name, port = server[0], server[1]
    if port is None or DEFAULT_PORTS.get(scope.get("scheme", "http")) == port:
        return name
    return f"{name}:{port}"


# Printable ASCII passes through; controls, spaces, "#" and non-ASCII bytes
# are percent-encoded
_TARGET_SAFE = "".join(chr(c) for c in range(0x21, 0x7F) if chr(c) != "#")


def request_target(scope: Scope) -> str:
    """The escaped path and query string as received, in ASCII form."""
    raw_path = scope.get("raw_path")
    if raw_path:
        path = quote(raw_path, safe=_TARGET_SAFE)
    else:
        path = quote(scope.get("path", ""), safe="/$&+,:;=@")
    query = scope.get("query_string", b"")
    if query:
        path = f"{path}?{quote(query, safe=_TARGET_SAFE)}"
    return path


class RewriteEngine:
    """
    Applies a RewriteRule to ASGI scopes.

    The engine keeps no per-request state: the rule is immutable and every
    call works on its own locals, so one engine serves all concurrent
    requests.
    """

    def __init__(
        self,
        rule: RewriteRule,
        url_source: UrlSource = UrlSource.FULL,
        commit_strategy: CommitStrategy = CommitStrategy.CLONE,
    ):
        self.rule = rule
        self.url_source = UrlSource(url_source)
        self.commit_strategy = CommitStrategy(commit_strategy)

    def reconstruct_full_url(self, scope: Scope) -> str:
        target = request_target(scope)
        host = target_host(scope) if self.url_source is UrlSource.FULL else ""
        if not host:
            # With no authority in front, "//seg" would parse back as a host
            if target.startswith("//"):
                target = "/%2F" + target[2:]
            return target
        if not target.startswith("/"):
            target = "/" + target
        return f"//{host}{target}"

    def rewrite(self, scope: Scope) -> RewriteOutcome:
        """Reconstruct, substitute and validate without touching the scope."""
        original_url = self.reconstruct_full_url(scope)
        rewritten_url = self.rule.substitute(original_url)
        if rewritten_url == original_url:
            return RewriteOutcome(original_url, rewritten_url)
        try:
            parsed = parse_url(rewritten_url)
        except URLParseError as e:
            return RewriteOutcome(original_url, rewritten_url, error=e)
        return RewriteOutcome(original_url, rewritten_url, parsed=parsed)

    def commit(self, scope: Scope, outcome: RewriteOutcome) -> Scope:
        """
        Apply a rewrite outcome.

        Returns the received scope when the URL did not change, otherwise the
        scope carrying the new URL.

        Raises:
            InvalidRewrittenURL: the rewritten URL does not parse
            RequestConstructionFailed: the rewritten URL cannot be carried by
                this kind of request
        """
        if not outcome.changed:
            return scope
        if not outcome.valid:
            raise InvalidRewrittenURL(outcome.rewritten_url, outcome.error) from outcome.error

        parsed = outcome.parsed
        scheme = self._resolve_scheme(scope, parsed, outcome.rewritten_url)
        self._check_request(scope, parsed, outcome.rewritten_url)

        if self.commit_strategy is CommitStrategy.IN_PLACE:
            scope["path"] = parsed.path or "/"
            scope["raw_path"] = (parsed.escaped_path or "/").encode("latin-1")
            scope["query_string"] = parsed.raw_query.encode("latin-1")
            scope["scheme"] = scheme
            return scope
        return self._clone(scope, parsed, scheme)

    def handle(self, scope: Scope) -> Scope:
        """Rewrite the request URL; returns the scope to forward."""
        return self.commit(scope, self.rewrite(scope))

    def _resolve_scheme(self, scope: Scope, parsed: ParsedURL, new_url: str) -> str:
        current = scope.get("scheme") or ("ws" if scope.get("type") == "websocket" else "http")
        if not parsed.scheme:
            return current
        allowed = SCOPE_SCHEMES.get(scope.get("type", "http"), SCOPE_SCHEMES["http"])
        scheme = allowed.get(parsed.scheme)
        if scheme is None:
            raise RequestConstructionFailed(
                new_url, f"unsupported protocol scheme {parsed.scheme!r}"
            )
        return scheme

    def _check_request(self, scope: Scope, parsed: ParsedURL, new_url: str) -> None:
        method = scope.get("method")
        if method is not None and not _METHOD_TOKEN.match(method):
            raise RequestConstructionFailed(new_url, f"invalid method {method!r}")
        if parsed.opaque:
            raise RequestConstructionFailed(
                new_url, "opaque URL cannot be used as a request target"
            )
        target = parsed.escaped_path
        if target and not target.startswith("/"):
            raise RequestConstructionFailed(
                new_url, f"request target {target!r} is not an absolute path"
            )
        try:
            target.encode("latin-1")
            parsed.raw_query.encode("latin-1")
            parsed.host.encode("latin-1")
        except UnicodeEncodeError as e:
            raise RequestConstructionFailed(new_url, e) from e

    def _clone(self, scope: Scope, parsed: ParsedURL, scheme: str) -> Scope:
        headers = list(scope.get("headers", ()))
        if parsed.host:
            host = parsed.host.encode("latin-1")
            headers = [(k, v) for k, v in headers if k.lower() != b"host"]
            headers.insert(0, (b"host", host))

        new_scope = dict(scope)
        new_scope["headers"] = headers
        new_scope["scheme"] = scheme
        new_scope["path"] = parsed.path or "/"
        new_scope["raw_path"] = (parsed.escaped_path or "/").encode("latin-1")
        new_scope["query_string"] = parsed.raw_query.encode("latin-1")
        return new_scope
