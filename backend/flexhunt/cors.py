"""Origin allow-listing for the checkout API.

Origins are compared in canonical form so that ``https://www.flexhunt.co``,
``https://flexhunt.co/`` and ``HTTPS://FlexHunt.co:443`` all match the same
configured entry.
"""

from urllib.parse import urlsplit

from fastapi import Request, status
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from .errors import CorsRejected
from .logging_config import get_logger

logger = get_logger("flexhunt.cors")

ALLOWED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
ALLOWED_HEADERS = ["Content-Type", "Authorization", "Origin", "Accept", "X-Requested-With"]
EXPOSED_HEADERS = ["Content-Length", "Content-Type"]

_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_origin(origin: str | None) -> str:
    """Return the canonical ``scheme://host[:port]`` form of an origin.

    Lower-cases scheme and host, strips a leading ``www.``, drops default
    ports, paths and trailing slashes. Unparseable input returns ``""``.
    """
    if not origin:
        return ""
    origin = origin.strip()
    try:
        parts = urlsplit(origin)
        port = parts.port
    except ValueError:
        return ""
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if not scheme or not host:
        return ""
    if host.startswith("www."):
        host = host[4:]
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


class OriginAllowList:
    """Fixed set of canonical origins, built once at startup."""

    def __init__(self, origins: list[str]):
        self.origins = list(origins)
        self._canonical = {normalize_origin(o) for o in origins} - {""}

    def is_allowed(self, origin: str | None) -> bool:
        return normalize_origin(origin) in self._canonical


def cors_headers(origin: str) -> dict[str, str]:
    """Headers that let the browser read a response sent to an allowed origin."""
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Expose-Headers": ", ".join(EXPOSED_HEADERS),
        "Vary": "Origin",
    }


class AllowListCORSMiddleware(BaseHTTPMiddleware):
    """Reject unknown origins with 403 and decorate allowed responses.

    Requests without an Origin header (server-to-server, curl) pass through
    untouched.
    """

    def __init__(self, app: ASGIApp, allow_list: OriginAllowList, debug: bool = False):
        super().__init__(app)
        self.allow_list = allow_list
        self.debug = debug

    def _reject(self, origin: str) -> JSONResponse:
        extra = {"origin": origin}
        if self.debug:
            extra["allowedOrigins"] = self.allow_list.origins
        err = CorsRejected("Cross-Origin Request Blocked", **extra)
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        origin = request.headers.get("origin")
        if origin is None:
            return await call_next(request)

        if not self.allow_list.is_allowed(origin):
            logger.warning(f"CORS rejected | origin={origin} | path={request.url.path}")
            return self._reject(origin)

        headers = cors_headers(origin)
        is_preflight = (
            request.method == "OPTIONS"
            and "access-control-request-method" in request.headers
        )
        if is_preflight:
            headers["Access-Control-Allow-Methods"] = ", ".join(ALLOWED_METHODS)
            headers["Access-Control-Allow-Headers"] = ", ".join(ALLOWED_HEADERS)
            headers["Access-Control-Max-Age"] = "600"
            return Response(status_code=status.HTTP_204_NO_CONTENT, headers=headers)

        response = await call_next(request)
        response.headers.update(headers)
        return response
