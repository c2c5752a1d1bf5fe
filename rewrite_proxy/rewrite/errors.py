"""
Exceptions raised while compiling a rewrite rule or rewriting a request URL.
"""


class CompileError(ValueError):
    """The configured pattern is not a valid regular expression."""

    def __init__(self, name: str, regex: str, reason: Exception):
        self.name = name
        self.regex = regex
        self.reason = reason
        super().__init__(f'{name}: error compiling regex "{regex}": {reason}')


class RewriteError(Exception):
    """Base class for failures that happen while handling a request."""

    message_prefix = "error rewriting request with new URL"

    def __init__(self, new_url: str, detail):
        self.new_url = new_url
        self.detail = detail
        super().__init__(f'{self.message_prefix} "{new_url}": {detail}')


class InvalidRewrittenURL(RewriteError):
    """The substitution produced a string that does not parse as a URL."""

    message_prefix = "error parsing new URL"


class RequestConstructionFailed(RewriteError):
    """A replacement request could not be assembled from the rewritten URL."""

    message_prefix = "error initializing request with new URL"
