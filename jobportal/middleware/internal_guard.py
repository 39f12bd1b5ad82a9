import hmac
import ipaddress
import logging
from typing import Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger("jp.admin_guard")


class InternalGuardMiddleware(BaseHTTPMiddleware):
    """
    Keeps the admin console API off the public internet: calls under the protected prefixes
    need the shared admin key unless they come from loopback. Role checks still apply after this.
    """

    def __init__(
        self,
        app,
        *,
        api_key: str,
        allow_localhost: bool = True,
        protected_prefixes: Iterable[str] = ("/admin",),
        header_name: str = "x-admin-api-key",
    ) -> None:
        super().__init__(app)
        self._api_key = (api_key or "").strip()
        self._allow_localhost = allow_localhost
        self._protected_prefixes = tuple(p.rstrip("/") for p in protected_prefixes)
        self._header_name = header_name.lower()

    def _protects(self, path: str) -> bool:
        # "/admin" and "/admin/..." but not "/administrators".
        return any(path == prefix or path.startswith(prefix + "/") for prefix in self._protected_prefixes)

    def _from_loopback(self, request: Request) -> bool:
        host = request.client.host if request.client else ""
        try:
            return ipaddress.ip_address(host).is_loopback
        except ValueError:
            return host in {"localhost", "testclient"}

    def _has_key(self, request: Request) -> bool:
        supplied = request.headers.get(self._header_name, "").strip()
        return bool(supplied) and hmac.compare_digest(supplied.encode(), self._api_key.encode())

    async def dispatch(self, request: Request, call_next):
        # No key configured: the console is only behind role checks (local/dev).
        if not self._api_key or request.method == "OPTIONS":
            return await call_next(request)
        if not self._protects(request.url.path or "/"):
            return await call_next(request)
        if self._has_key(request) or (self._allow_localhost and self._from_loopback(request)):
            return await call_next(request)

        logger.warning(
            "admin_request_rejected",
            extra={
                "path": request.url.path,
                "method": request.method,
                "client": request.client.host if request.client else None,
                "key_supplied": self._header_name in request.headers,
            },
        )
        return JSONResponse({"detail": "Admin API key required"}, status_code=403)
