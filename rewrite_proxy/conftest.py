import pytest


@pytest.fixture
def make_scope():
    """Build an HTTP ASGI scope the way a server hands it to the app."""

    def _make_scope(
        path="/hello",
        query_string=b"",
        host="example.com",
        method="GET",
        scope_type="http",
        scheme="http",
        raw_path=None,
        headers=None,
    ):
        scope_headers = []
        if host is not None:
            scope_headers.append((b"host", host.encode("latin-1")))
        scope_headers.extend(headers or [])
        return {
            "type": scope_type,
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": method,
            "scheme": scheme,
            "path": path,
            "raw_path": raw_path if raw_path is not None else path.encode("latin-1"),
            "query_string": query_string,
            "root_path": "",
            "headers": scope_headers,
            "client": ("192.168.1.100", 51000),
            "server": ("10.0.0.1", 8000),
            "state": {},
        }

    return _make_scope
