from .engine import CommitStrategy, RewriteEngine, RewriteOutcome, UrlSource
from .errors import (
    CompileError,
    InvalidRewrittenURL,
    RequestConstructionFailed,
    RewriteError,
)
from .middleware import FullUrlRewriteMiddleware
from .rule import RewriteRule, compile_rule
from .urls import ParsedURL, URLParseError, parse_url

__all__ = [
    "CommitStrategy",
    "CompileError",
    "FullUrlRewriteMiddleware",
    "InvalidRewrittenURL",
    "ParsedURL",
    "RequestConstructionFailed",
    "RewriteEngine",
    "RewriteError",
    "RewriteOutcome",
    "RewriteRule",
    "URLParseError",
    "UrlSource",
    "compile_rule",
    "parse_url",
]
