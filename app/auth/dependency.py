# backend/app/auth/dependency.py
from typing import Callable, Optional

from fastapi import Header

from app.auth.jwt_handler import identity_from_authorization


def identity_for(platform: str) -> Callable[..., Optional[str]]:
    """
    Dependency factory resolving the caller's identity for one gateway.

    Resolves to None instead of raising: the gateway decides whether a missing
    identity (or one without a cached session) is an authentication failure.
    """
    def resolve_identity(authorization: Optional[str] = Header(None)) -> Optional[str]:
        return identity_from_authorization(authorization, platform)

    return resolve_identity
