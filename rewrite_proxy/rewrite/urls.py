"""
Strict URL parsing for rewritten URLs.

``urllib.parse.urlsplit`` accepts almost any string, which makes it useless
for deciding whether a rewrite produced something a request can carry.
``parse_url`` applies the generic URI grammar checks a proxy needs before it
commits a new URL: scheme syntax, authority (userinfo, host, port) and
percent-escapes. The error messages name the offending URL and the reason,
e.g. ``parse ":/example.com": missing protocol scheme``.
"""

import json
import string
from dataclasses import dataclass, replace
from typing import Optional, Tuple
from urllib.parse import quote, unquote

_SCHEME_FIRST = frozenset(string.ascii_letters)
_SCHEME_REST = frozenset(string.ascii_letters + string.digits + "+-.")
_HEX = frozenset(string.hexdigits)
_UNRESERVED = frozenset(string.ascii_letters + string.digits + "-_.~")
# Sub-delimiters and brackets allowed verbatim in a host
_HOST_EXTRA = frozenset("!$&'()*+,;=:[]<>\"")
_USERINFO_EXTRA = frozenset("-._:~!$&'()*+,;=%@")
# Characters that may appear unescaped in an already-escaped path
_PATH_SAFE = "/$&+,:;=@"
_PATH_VALID = frozenset(_PATH_SAFE + "!'()*[]%") | _UNRESERVED


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


class URLParseError(ValueError):
    """``url`` is not a well-formed URL."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"parse {_quote(url)}: {reason}")


class _Invalid(Exception):
    """Internal: carries the reason up to parse_url."""


@dataclass(frozen=True)
class ParsedURL:
    scheme: str = ""
    opaque: str = ""
    userinfo: Optional[str] = None
    host: str = ""
    path: str = ""
    raw_path: str = ""
    raw_query: str = ""
    force_query: bool = False
    fragment: str = ""

    @property
    def escaped_path(self) -> str:
        """The path in escaped form, preferring the spelling it was parsed from."""
        if self.raw_path and all(c in _PATH_VALID for c in self.raw_path):
            if unquote(self.raw_path) == self.path:
                return self.raw_path
        return quote(self.path, safe=_PATH_SAFE)

    @property
    def has_query(self) -> bool:
        return self.force_query or bool(self.raw_query)

    @property
    def request_target(self) -> str:
        """Origin-form request target: escaped path plus query string."""
        target = self.escaped_path or "/"
        if self.has_query:
            target += "?" + self.raw_query
        return target


def _has_control_character(value: str) -> bool:
    return any(ord(c) < 0x20 or ord(c) == 0x7F for c in value)


def _split_scheme(raw: str) -> Tuple[str, str]:
    for i, c in enumerate(raw):
        if c in _SCHEME_FIRST:
            continue
        if c in _SCHEME_REST:
            if i == 0:
                return "", raw
            continue
        if c == ":":
            if i == 0:
                raise _Invalid("missing protocol scheme")
            return raw[:i], raw[i + 1:]
        return "", raw
    return "", raw


def _check_escapes(value: str, host: bool = False) -> None:
    i = 0
    while i < len(value):
        c = value[i]
        if c == "%":
            escape = value[i:i + 3]
            if len(escape) < 3 or escape[1] not in _HEX or escape[2] not in _HEX:
                raise _Invalid(f"invalid URL escape {_quote(escape)}")
            # Hosts may only percent-encode non-ASCII bytes
            if host and int(escape[1], 16) < 8 and escape != "%25":
                raise _Invalid(f"invalid URL escape {_quote(escape)}")
            i += 3
            continue
        if host and ord(c) < 0x80 and c not in _UNRESERVED and c not in _HOST_EXTRA:
            raise _Invalid(f"invalid character {_quote(c)} in host name")
        i += 1


def _valid_optional_port(port: str) -> bool:
    if port == "":
        return True
    if port[0] != ":":
        return False
    return all(c in string.digits for c in port[1:])


def _parse_host(host: str) -> str:
    if host.startswith("["):
        close = host.rfind("]")
        if close < 0:
            raise _Invalid("missing ']' in host")
        port = host[close + 1:]
        if not _valid_optional_port(port):
            raise _Invalid(f"invalid port {_quote(port)} after host")
    else:
        colon = host.rfind(":")
        if colon >= 0:
            port = host[colon:]
            if not _valid_optional_port(port):
                raise _Invalid(f"invalid port {_quote(port)} after host")
    _check_escapes(host, host=True)
    return unquote(host)


def _parse_authority(authority: str) -> Tuple[Optional[str], str]:
    at = authority.rfind("@")
    host = _parse_host(authority[at + 1:])
    if at < 0:
        return None, host
    userinfo = authority[:at]
    if not all(c in _USERINFO_EXTRA or c.isalnum() for c in userinfo):
        raise _Invalid("invalid userinfo")
    _check_escapes(userinfo)
    return userinfo, host


def _parse(raw: str) -> ParsedURL:
    if _has_control_character(raw):
        raise _Invalid("invalid control character in URL")
    if raw == "*":
        return ParsedURL(path="*", raw_path="*")

    scheme, rest = _split_scheme(raw)
    scheme = scheme.lower()

    force_query = False
    raw_query = ""
    if rest.endswith("?") and rest.count("?") == 1:
        force_query = True
        rest = rest[:-1]
    elif "?" in rest:
        rest, raw_query = rest.split("?", 1)

    if not rest.startswith("/"):
        if scheme:
            return ParsedURL(
                scheme=scheme,
                opaque=rest,
                raw_query=raw_query,
                force_query=force_query,
            )
        # A colon here would be read back as a scheme
        if ":" in rest.split("/", 1)[0]:
            raise _Invalid("first path segment in URL cannot contain colon")

    userinfo = None
    host = ""
    if rest.startswith("//") and (scheme or not rest.startswith("///")):
        authority, slash, path = rest[2:].partition("/")
        rest = slash + path
        userinfo, host = _parse_authority(authority)

    _check_escapes(rest)
    return ParsedURL(
        scheme=scheme,
        userinfo=userinfo,
        host=host,
        path=unquote(rest),
        raw_path=rest,
        raw_query=raw_query,
        force_query=force_query,
    )


def parse_url(raw: str) -> ParsedURL:
    """
    Parse ``raw`` into its components.

    Raises:
        URLParseError: if ``raw`` is not a well-formed URL
    """
    url, _, fragment = raw.partition("#")
    try:
        parsed = _parse(url)
    except _Invalid as e:
        raise URLParseError(url, str(e)) from None
    if not fragment:
        return parsed
    try:
        _check_escapes(fragment)
    except _Invalid as e:
        raise URLParseError(raw, str(e)) from None
    return replace(parsed, fragment=unquote(fragment))
