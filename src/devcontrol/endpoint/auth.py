"""Bearer-token authentication and capability checks.

Tokens are configured under ``auth.tokens`` and map to a user id and a
list of capability strings. Each request resolves its token into an
:class:`AuthContext` that is passed explicitly to the route handlers.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from devcontrol.config.settings import AuthConfig
from devcontrol.domain.models import AuthContext, Capability

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


class TokenAuthenticator:
    """Resolves bearer tokens to AuthContext instances."""

    def __init__(self, config: AuthConfig) -> None:
        self._grants: list[tuple[str, AuthContext]] = []
        for token, grant in config.tokens.items():
            caps = set()
            for name in grant.capabilities:
                try:
                    caps.add(Capability(name))
                except ValueError:
                    logger.warning(
                        "Ignoring unknown capability %r for user %s", name, grant.user_id
                    )
            self._grants.append(
                (token, AuthContext(user_id=grant.user_id, capabilities=frozenset(caps)))
            )

    def authenticate(self, token: str) -> AuthContext | None:
        match = None
        for known, ctx in self._grants:
            # Check every grant so timing does not reveal which one matched.
            if hmac.compare_digest(known.encode(), token.encode()):
                match = ctx
        return match


def get_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> AuthContext:
    """FastAPI dependency: the authenticated caller, or 401."""
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    authenticator: TokenAuthenticator = request.app.state.authenticator
    ctx = authenticator.authenticate(credentials.credentials)
    if ctx is None:
        logger.warning("Rejected unknown token from %s", _client(request))
        raise HTTPException(
            status_code=401,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return ctx


def require(capability: Capability) -> Callable[..., AuthContext]:
    """Build a dependency that demands ``capability`` of the caller."""

    def dependency(
        request: Request, auth: AuthContext = Depends(get_auth_context)
    ) -> AuthContext:
        if not auth.has(capability):
            logger.warning(
                "Permission denied: user=%s needs %s (%s %s)",
                auth.user_id, capability.value, request.method, request.url.path,
            )
            raise HTTPException(status_code=403, detail="Permission denied")
        return auth

    return dependency


def _client(request: Request) -> str:
    return request.client.host if request.client else "-"
