from __future__ import annotations

from typing import Any

from jose import JWTError, jwt

from tenantgate.configs.settings import Settings
from tenantgate.errors import AuthError
from tenantgate.configs.logging_config import get_logger

log = get_logger(__name__)


def decode_token(token: str, settings: Settings) -> dict[str, Any]:
    """
    Decode and validate a session JWT (HS256 shared secret by default).

    Expired or tampered tokens raise AuthError and never reach the engine.
    """
    try:
        options = {"verify_aud": settings.jwt_audience is not None}
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_alg],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
        log.debug("jwt.decode ok sub=%s tenantId=%s", claims.get("sub"), claims.get("tenantId"))
        return claims
    except JWTError as e:
        log.info("jwt.decode failed: %s", str(e))
        raise AuthError("invalid token") from e


def encode_token(claims: dict[str, Any], settings: Settings) -> str:
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_alg)
