"""
GITOPS RBAC - Policy Module

Components:
- patterns.py: Resource/verb/subject pattern parsing and matching
- model.py: Immutable Role, Binding and PolicyGeneration types
- compiler.py: Policy document -> PolicyGeneration
- store.py: Atomically swapped current generation
"""

from gitops_rbac.policy.compiler import (
    PolicyDocument,
    compile_policy,
    load_policy_file,
    parse_policy_text,
)
from gitops_rbac.policy.model import (
    Binding,
    Permission,
    PolicyDiff,
    PolicyGeneration,
    Role,
    empty_generation,
)
from gitops_rbac.policy.patterns import (
    PatternError,
    ResourcePattern,
    SubjectKind,
    SubjectPattern,
    Verb,
)
from gitops_rbac.policy.store import PolicyStore

__all__ = [
    "PolicyDocument",
    "compile_policy",
    "load_policy_file",
    "parse_policy_text",
    "Binding",
    "Permission",
    "PolicyDiff",
    "PolicyGeneration",
    "Role",
    "empty_generation",
    "PatternError",
    "ResourcePattern",
    "SubjectKind",
    "SubjectPattern",
    "Verb",
    "PolicyStore",
]
