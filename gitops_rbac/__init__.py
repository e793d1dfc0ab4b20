# GITOPS RBAC - Declarative access control for GitOps delivery
"""
GITOPS RBAC: policy compilation, OIDC identity binding and a tamper-evident
audit trail for a GitOps continuous-delivery control plane.

Core Components:
    - Policy Compiler: YAML/JSON roles + bindings -> immutable generation
    - Policy Store: Atomically swapped current generation
    - Authorization Engine: Default-deny decisions, every one audited
    - Audit Logger: Hash-chained, durably persisted audit trail

Example:
    from gitops_rbac import AccessCore, Identity, get_settings

    core = AccessCore.from_settings(get_settings())
    await core.start()
    await core.compile_and_install(open("policy.yaml").read(), actor="admin")
    decision = await core.authorize(
        Identity.of("alice", groups=["team-view"]), "apps/guestbook", "get"
    )
"""

from gitops_rbac.access.engine import AuthorizationEngine, Decision, DecisionReason
from gitops_rbac.access.identity import ClaimVerifier, Identity, JWTClaimVerifier
from gitops_rbac.audit.chain import AuditEntry, ChainVerification
from gitops_rbac.audit.logger import AuditLogger
from gitops_rbac.config import Settings, get_settings
from gitops_rbac.core.access_core import AccessCore
from gitops_rbac.policy.compiler import compile_policy
from gitops_rbac.policy.model import PolicyGeneration
from gitops_rbac.policy.store import PolicyStore

__version__ = "1.0.0"

__all__ = [
    "AccessCore",
    "AuthorizationEngine",
    "Decision",
    "DecisionReason",
    "ClaimVerifier",
    "Identity",
    "JWTClaimVerifier",
    "AuditEntry",
    "AuditLogger",
    "ChainVerification",
    "Settings",
    "get_settings",
    "compile_policy",
    "PolicyGeneration",
    "PolicyStore",
]
