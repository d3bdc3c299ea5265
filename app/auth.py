"""Bearer JWT auth middleware and the route-level role gate."""

from __future__ import annotations

import logging
import re
import time
from typing import Optional

from jose import jwt
from jose.exceptions import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from cms.roles import has_permission, is_known_role


ALGORITHM = "HS256"
DEFAULT_ROLE = "viewer"
LOCAL_USER = {"id": "local-admin", "role": "admin", "claims": {}}
PUBLIC_PATHS = {"/health"}

_LOCAL_ORIGIN_RE = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")

logger = logging.getLogger("cms.auth")


def _attach_local_cors(request: Request, response: JSONResponse) -> JSONResponse:
    origin = request.headers.get("origin")
    if origin and _LOCAL_ORIGIN_RE.match(origin):
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Credentials", "true")
        response.headers.setdefault("Access-Control-Allow-Headers", "*")
        response.headers.setdefault("Access-Control-Allow-Methods", "*")
        response.headers.setdefault("Vary", "Origin")
    return response


def _auth_error(code: str, message: str, status_code: int, detail: dict | None = None) -> JSONResponse:
    return JSONResponse(
        {
            "ok": False,
            "errors": [{"code": code, "message": message, "path": "Authorization", "detail": detail}],
            "warnings": [],
        },
        status_code=status_code,
    )


def _get_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def issue_token(user_id: str, role: str, secret: str, audience: Optional[str] = None, expires_in: int = 3600) -> str:
    now = int(time.time())
    claims = {"sub": user_id, "role": role, "iat": now, "exp": now + expires_in}
    if audience:
        claims["aud"] = audience
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def verify_token(token: str, secret: str, audience: Optional[str] = None) -> dict:
    options = {"verify_aud": audience is not None}
    return jwt.decode(token, secret, algorithms=[ALGORITHM], audience=audience, options=options)


def user_from_claims(claims: dict) -> dict:
    role = claims.get("role")
    if not is_known_role(role):
        role = DEFAULT_ROLE
    return {"id": claims.get("sub"), "role": role, "claims": claims}


class JwtAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, secret: str, audience: Optional[str] = None, disabled: bool = False) -> None:
        super().__init__(app)
        self._secret = secret
        self._audience = audience
        self._disabled = disabled

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        if self._disabled:
            request.state.user = dict(LOCAL_USER)
            return await call_next(request)
        if request.method == "OPTIONS" or request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        token = _get_bearer_token(request)
        if not token:
            logger.warning("auth_missing_token path=%s", request.url.path)
            return _attach_local_cors(request, _auth_error("AUTH_MISSING_TOKEN", "Missing bearer token", 401))

        try:
            claims = verify_token(token, self._secret, self._audience)
        except JWTError as exc:
            logger.warning("auth_invalid_token path=%s audience=%s error=%s", request.url.path, self._audience, exc)
            return _attach_local_cors(
                request,
                _auth_error("AUTH_INVALID_TOKEN", "Invalid bearer token", 401, {"error": str(exc)}),
            )

        request.state.user = user_from_claims(claims)
        request.state.auth_ms = (time.perf_counter() - start) * 1000
        return await call_next(request)


def current_role(request: Request) -> Optional[str]:
    user = getattr(request.state, "user", None)
    return user.get("role") if isinstance(user, dict) else None


def require_role(request: Request, required: str) -> JSONResponse | None:
    """Forbidden response when the caller's role is below ``required``."""
    role = current_role(request)
    if has_permission(role, required):
        return None
    logger.warning("auth_forbidden path=%s role=%s required=%s", request.url.path, role, required)
    return _auth_error(
        "AUTH_FORBIDDEN",
        "You do not have permission to perform this action",
        403,
        {"required": required, "role": role},
    )
