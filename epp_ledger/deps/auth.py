"""Caller identity as supplied by the identity collaborator.

The core trusts the actor and site it is given and never evaluates roles; the
only flag it reads is whether the caller may erase deliveries.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security.utils import get_authorization_scheme_param

from ..core.config import settings
from ..core.security import decode_token
from ..middlewares import principal_ctx_var


@dataclass
class ActorContext:
    actor_id: str
    site_id: str
    scheme: str
    can_erase: bool = False


def _unauthorized(detail: str = "Unauthorized") -> None:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _set_principal(request: Request, principal: str) -> None:
    principal_ctx_var.set(principal)
    request.state.principal = principal


def _site(header_site: str | None, token_site: str | None = None) -> str:
    site_id = (header_site or "").strip() or (token_site or "")
    if not site_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Site-Id header is required")
    if token_site and site_id != token_site:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token is not valid for this site")
    return site_id


async def require_actor(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
    x_site_id: str | None = Header(default=None, alias="X-Site-Id"),
) -> ActorContext:
    if authorization:
        scheme, credentials = get_authorization_scheme_param(authorization)
        if scheme.lower() == "bearer" and credentials:
            try:
                payload = decode_token(credentials)
            except ValueError as exc:
                raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
            _set_principal(request, f"jwt:{payload.sub}")
            return ActorContext(
                actor_id=payload.sub,
                site_id=_site(x_site_id, payload.site),
                scheme="jwt",
                can_erase=settings.ERASE_SCOPE in payload.scopes,
            )

    api_key = settings.API_KEY
    provided_key = (x_api_key or "").strip()
    if settings.AUTH_ALLOW_API_KEY and api_key and provided_key and hmac.compare_digest(api_key, provided_key):
        # Service principals act on behalf of the user named in X-Actor-Id.
        actor = (x_actor_id or "").strip() or "api-key"
        _set_principal(request, f"api-key:{actor}")
        return ActorContext(actor_id=actor, site_id=_site(x_site_id), scheme="api_key", can_erase=True)

    if not api_key and not authorization:
        actor = (x_actor_id or "").strip() or "anonymous"
        _set_principal(request, f"open:{actor}")
        return ActorContext(actor_id=actor, site_id=_site(x_site_id), scheme="open")

    if api_key and provided_key:
        _unauthorized("Invalid API key")
    _unauthorized("Authorization required")


async def require_eraser(actor: ActorContext = Depends(require_actor)) -> ActorContext:
    if not actor.can_erase:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Erasing deliveries requires a privileged actor")
    return actor
