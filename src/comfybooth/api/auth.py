"""Bearer-token gate for the ComfyBooth API.

Tokens are opaque strings configured ahead of time in
``ComfyBoothConfig.api_tokens`` (token → identity).  There is no login or
token issuance endpoint: a request either presents a known token and
resolves to an identity, or it is rejected.

Dependencies
------------
optional_user
    Identity of the caller, or ``None`` when no token was sent.  Unknown
    tokens are still rejected so a typo never silently downgrades a caller
    to anonymous.
current_user
    Identity of the caller; 401 when no valid token is presented.
require_admin
    Identity of the caller; 403 unless listed in ``admin_users``.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from comfybooth.api.dependencies import get_config
from comfybooth.core.config import ComfyBoothConfig

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


def resolve_identity(token: str, tokens: dict[str, str]) -> str | None:
    """Return the identity bound to ``token``, or ``None`` if it is unknown.

    Comparison is constant-time per configured token.
    """
    for known, identity in tokens.items():
        if hmac.compare_digest(known.encode(), token.encode()):
            return identity
    return None


def optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    config: ComfyBoothConfig = Depends(get_config),
) -> str | None:
    if credentials is None:
        return None
    identity = resolve_identity(credentials.credentials, config.api_tokens)
    if identity is None:
        logger.warning("Rejected request with an unknown bearer token")
        raise HTTPException(status_code=401, detail="invalid or expired token")
    return identity


def current_user(identity: str | None = Depends(optional_user)) -> str:
    if identity is None:
        raise HTTPException(status_code=401, detail="not logged in")
    return identity


def require_admin(
    identity: str = Depends(current_user),
    config: ComfyBoothConfig = Depends(get_config),
) -> str:
    if identity not in config.admin_users:
        raise HTTPException(status_code=403, detail="administrator permission required")
    return identity
