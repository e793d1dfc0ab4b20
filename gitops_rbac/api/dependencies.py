"""
FastAPI Dependencies

Resolve the access core and the caller's identity, and enforce
permissions on the API's own endpoints.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gitops_rbac.access.identity import Identity
from gitops_rbac.core.access_core import AccessCore
from gitops_rbac.core.exceptions import VerificationError


security = HTTPBearer(auto_error=False)


def get_core(request: Request) -> AccessCore:
    """The AccessCore attached to the application."""
    return request.app.state.core


def get_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    return credentials.credentials if credentials else ""


async def get_identity(
    token: str = Depends(get_token),
    core: AccessCore = Depends(get_core),
) -> Identity:
    """
    Verify the bearer token.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    verifier = core.engine.verifier
    if verifier is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Token verification is not configured",
        )
    try:
        return verifier.verify(token)
    except VerificationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )


def require(resource: str, verb: str):
    """Dependency factory: caller must be allowed ``verb`` on ``resource``."""

    async def dependency(
        identity: Identity = Depends(get_identity),
        core: AccessCore = Depends(get_core),
    ) -> Identity:
        decision = await core.authorize(identity, resource, verb)
        if not decision.allow:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {verb} {resource} ({decision.reason.value})",
            )
        return identity

    return dependency
