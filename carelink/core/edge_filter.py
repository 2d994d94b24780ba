"""
Edge authorization filter.

Runs in front of every request. It only checks a token's signature and
expiry through ``TokenService.verify``; it never opens a database session,
so it stays cheap for requests that are turned away before reaching a
handler. Full identity and role checks happen later in the handlers.

Also adds the baseline security headers to every response:
- X-Frame-Options: frame denial
- X-Content-Type-Options: MIME sniffing protection
- Referrer-Policy: referrer leakage control
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence
from urllib.parse import urlencode
import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .security import TokenService

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "origin-when-cross-origin",
}

PROTECTED_PATHS = ("/chat", "/appointments", "/doctors", "/profile")
AUTH_ONLY_PATHS = ("/login", "/signup")
API_PREFIX = "/api/"
PUBLIC_API_PATHS = ("/api/v1/auth", "/api/v1/info", "/api/v1/openapi.json")

LOGIN_PATH = "/login"
HOME_PATH = "/"


class PathClass(str, Enum):
    PUBLIC = "public"
    AUTH_ONLY = "auth_only"
    PROTECTED = "protected"
    PROTECTED_API = "protected_api"


class EdgeOutcome(str, Enum):
    PASS = "pass"
    REDIRECT_HOME = "redirect_home"
    REDIRECT_LOGIN = "redirect_login"


@dataclass(frozen=True)
class EdgeDecision:
    outcome: EdgeOutcome
    path_class: PathClass
    location: Optional[str] = None


def _matches(path: str, prefixes: Sequence[str]) -> bool:
    return any(path == prefix or path.startswith(f"{prefix}/") for prefix in prefixes)


def login_url(return_to: str) -> str:
    return f"{LOGIN_PATH}?{urlencode({'redirect': return_to})}"


class EdgeAuthorizationFilter:
    """Classifies paths and decides allow / redirect from token validity alone."""

    def __init__(
        self,
        tokens: TokenService,
        protected_paths: Sequence[str] = PROTECTED_PATHS,
        auth_only_paths: Sequence[str] = AUTH_ONLY_PATHS,
        public_api_paths: Sequence[str] = PUBLIC_API_PATHS,
    ):
        self.tokens = tokens
        self.protected_paths = tuple(protected_paths)
        self.auth_only_paths = tuple(auth_only_paths)
        self.public_api_paths = tuple(public_api_paths)

    def classify(self, path: str) -> PathClass:
        if _matches(path, self.auth_only_paths):
            return PathClass.AUTH_ONLY
        if _matches(path, self.protected_paths):
            return PathClass.PROTECTED
        if path.startswith(API_PREFIX) and not _matches(path, self.public_api_paths):
            return PathClass.PROTECTED_API
        return PathClass.PUBLIC

    def decide(self, path: str, token: Optional[str]) -> EdgeDecision:
        path_class = self.classify(path)
        if path_class == PathClass.PUBLIC:
            return EdgeDecision(EdgeOutcome.PASS, path_class)

        authenticated = bool(token) and self.tokens.verify(token).valid

        if path_class == PathClass.AUTH_ONLY:
            if authenticated:
                return EdgeDecision(EdgeOutcome.REDIRECT_HOME, path_class, HOME_PATH)
            return EdgeDecision(EdgeOutcome.PASS, path_class)

        if authenticated:
            return EdgeDecision(EdgeOutcome.PASS, path_class)
        return EdgeDecision(EdgeOutcome.REDIRECT_LOGIN, path_class, login_url(path))


def extract_token(request: Request, cookie_name: str) -> Optional[str]:
    """Session token from the cookie, falling back to a Bearer header."""
    token = request.cookies.get(cookie_name)
    if token:
        return token
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return None


class EdgeAuthorizationMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, edge_filter: EdgeAuthorizationFilter, cookie_name: str = "token"):
        super().__init__(app)
        self.edge_filter = edge_filter
        self.cookie_name = cookie_name

    async def dispatch(self, request: Request, call_next) -> Response:
        # CORS preflight carries no credentials
        if request.method == "OPTIONS":
            return self._with_headers(await call_next(request))

        token = extract_token(request, self.cookie_name)
        decision = self.edge_filter.decide(request.url.path, token)

        if decision.outcome == EdgeOutcome.PASS:
            response = await call_next(request)
        elif decision.outcome == EdgeOutcome.REDIRECT_HOME:
            response = RedirectResponse(decision.location, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
        elif decision.path_class == PathClass.PROTECTED_API:
            logger.debug(f"Rejected unauthenticated API request to {request.url.path}")
            response = JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "Not authenticated", "login_url": decision.location},
                headers={"WWW-Authenticate": "Bearer"},
            )
        else:
            response = RedirectResponse(decision.location, status_code=status.HTTP_307_TEMPORARY_REDIRECT)

        return self._with_headers(response)

    @staticmethod
    def _with_headers(response: Response) -> Response:
        for header, value in SECURITY_HEADERS.items():
            response.headers[header] = value
        return response
