import logging
from typing import Dict

import httpx
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response
from opentelemetry import trace

from rewrite_proxy.rewrite.engine import request_target
from rewrite_proxy.vars import PROXY_TIMEOUT, TARGET_SERVER_URL

# Initialize components
router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# httpx hands back the decoded body, so these no longer describe it
DECODED_BODY_HEADERS = {"content-length", "content-encoding"}

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


def get_target_url(request: Request) -> str:
    """Construct the upstream URL from the (possibly rewritten) request target."""
    return TARGET_SERVER_URL + request_target(request.scope)


def prepare_headers(request: Request) -> Dict[str, str]:
    """
    Prepare headers for forwarding to the target server.
    Removes hop-by-hop headers and adds proxy headers. The Host header is
    passed through so host-based rewrites reach the upstream.
    """
    headers = {}

    for name, value in request.headers.items():
        if name.lower() not in HOP_BY_HOP_HEADERS:
            headers[name] = value

    # X-Forwarded-For: append client IP
    client_ip = request.client.host if request.client else "unknown"
    existing_xff = headers.get("x-forwarded-for", "")
    headers["x-forwarded-for"] = f"{existing_xff}, {client_ip}".strip(", ")

    headers["x-forwarded-host"] = request.headers.get("host", "")
    headers["x-forwarded-proto"] = request.url.scheme
    headers["x-real-ip"] = client_ip

    return headers


async def forward_to_target(request: Request) -> Response:
    """
    Forward the request to the target server and relay its response
    unchanged apart from hop-by-hop headers.
    """
    if not TARGET_SERVER_URL:
        raise HTTPException(
            status_code=503,
            detail="TARGET_SERVER_URL is not configured. Proxy is unavailable.",
        )

    with tracer.start_as_current_span("proxy_request") as span:
        target_url = get_target_url(request)
        span.set_attribute("proxy.target_url", target_url)
        span.set_attribute("proxy.method", request.method)

        logger.debug(f"Proxying {request.method} {request.url.path} -> {target_url}")

        headers = prepare_headers(request)
        body = await request.body()

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(PROXY_TIMEOUT), follow_redirects=False
            ) as client:
                response = await client.request(
                    method=request.method,
                    url=target_url,
                    headers=headers,
                    content=body,
                )
        except httpx.TimeoutException as e:
            logger.error(f"Proxy timeout for {target_url}: {e}")
            span.set_attribute("proxy.error", "timeout")
            raise HTTPException(status_code=504, detail="Gateway timeout")
        except httpx.ConnectError as e:
            logger.error(f"Failed to connect to target {target_url}: {e}")
            span.set_attribute("proxy.error", "connection_failed")
            raise HTTPException(
                status_code=502, detail="Bad gateway - cannot connect to target"
            )
        except httpx.HTTPError as e:
            logger.error(f"Proxy error for {target_url}: {e}", exc_info=True)
            span.set_attribute("proxy.error", str(e))
            raise HTTPException(status_code=502, detail=f"Bad gateway: {str(e)}")

        span.set_attribute("proxy.status_code", response.status_code)

        # Repeated fields such as Set-Cookie stay separate
        relayed = Response(content=response.content, status_code=response.status_code)
        for name, value in response.headers.multi_items():
            name_lower = name.lower()
            if name_lower in HOP_BY_HOP_HEADERS or name_lower in DECODED_BODY_HEADERS:
                continue
            relayed.headers.append(name, value)
        return relayed


# Register catch-all route for proxying
@router.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_all(request: Request, path: str):
    """Catch-all route that proxies all requests to the target server."""
    return await forward_to_target(request)
