"""
Authentication middleware for the storyboard worker.

  /webhooks/*   provider callbacks; require ?token= matching WEBHOOK_SECRET
  public paths  health, metrics and docs; no auth
  everything    Authorization: Bearer <token> checked by the token verifier
  else          (default: constant-time compare with WORKER_API_TOKEN)

Without a configured secret, development environments allow all traffic.
"""

import logging
import secrets
from typing import Callable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from . import config

logger = logging.getLogger(__name__)

WEBHOOK_PREFIX = "/webhooks/"


def shared_token_verifier(token: str) -> bool:
    return bool(config.WORKER_API_TOKEN) and secrets.compare_digest(token, config.WORKER_API_TOKEN)


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(status_code=401, content={"success": False, "error": message})


class AuthMiddleware(BaseHTTPMiddleware):
    """Reject unauthenticated requests. Responds directly instead of raising."""

    PUBLIC_PATHS = {"/health", "/metrics", "/docs", "/openapi.json", "/redoc"}

    def __init__(self, app, verifier: Optional[Callable[[str], bool]] = None):
        super().__init__(app)
        self.verifier = verifier or shared_token_verifier

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path in self.PUBLIC_PATHS:
            return await call_next(request)

        if path.startswith(WEBHOOK_PREFIX):
            if not config.WEBHOOK_SECRET:
                if config.ENVIRONMENT == "development":
                    return await call_next(request)
                return JSONResponse(
                    status_code=500,
                    content={"success": False, "error": "WEBHOOK_SECRET not configured"},
                )
            provided = request.query_params.get("token", "")
            if not secrets.compare_digest(provided, config.WEBHOOK_SECRET):
                logger.warning(f"Rejected webhook with bad token on {path}")
                return _unauthorized("Invalid or missing webhook token")
            return await call_next(request)

        if not config.WORKER_API_TOKEN and self.verifier is shared_token_verifier:
            if config.ENVIRONMENT == "development":
                return await call_next(request)
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": "WORKER_API_TOKEN not configured"},
            )

        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token or not self.verifier(token.strip()):
            return _unauthorized("Invalid or missing bearer token")

        return await call_next(request)
