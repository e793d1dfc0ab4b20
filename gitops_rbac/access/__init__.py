"""
GITOPS RBAC - Access Module

Components:
- identity.py: Identity and claim verification (OIDC/JWT)
- engine.py: Default-deny authorization engine
"""

from gitops_rbac.access.engine import (
    AuthorizationEngine,
    Decision,
    DecisionReason,
    Explanation,
)
from gitops_rbac.access.identity import ClaimVerifier, Identity, JWTClaimVerifier

__all__ = [
    "AuthorizationEngine",
    "Decision",
    "DecisionReason",
    "Explanation",
    "ClaimVerifier",
    "Identity",
    "JWTClaimVerifier",
]
