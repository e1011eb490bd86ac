# backend/app/auth/jwt_handler.py

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError
from loguru import logger

from app.core.config import settings


# --- Token issuance ---

def create_access_token(
    identity: str,
    platform: str,
    extra_claims: Optional[Dict[str, Any]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Signs a short-lived bearer token for ``identity`` on ``platform``.

    The token carries no upstream session data; it only proves the caller owns
    the identity under which the gateway cached that session.
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS))

    claims: Dict[str, Any] = dict(extra_claims or {})
    claims.update({
        "sub": str(identity),
        "platform": platform,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    })
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


# --- Verification ---

def decode_token(token: str) -> Dict[str, Any]:
    """
    Verifies signature and expiry. Raises ``JWTError`` (incl. ExpiredSignatureError).
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def identity_from_authorization(authorization: Optional[str], platform: Optional[str] = None) -> Optional[str]:
    """
    Returns the identity embedded in an ``Authorization: Bearer`` header, or None
    when the header is missing/malformed, the token is expired or badly signed,
    or the token was issued for a different platform.
    """
    token = extract_bearer(authorization)
    if not token:
        logger.debug("No bearer token on request.")
        return None

    try:
        payload = decode_token(token)
    except ExpiredSignatureError:
        logger.info("Bearer token expired.")
        return None
    except JWTError as e:
        logger.warning(f"Bearer token rejected ({e.__class__.__name__}): {e}")
        return None

    if platform and payload.get("platform") != platform:
        logger.warning(f"Token for platform '{payload.get('platform')}' presented to '{platform}' gateway.")
        return None

    identity = payload.get("sub")
    return str(identity) if identity else None
