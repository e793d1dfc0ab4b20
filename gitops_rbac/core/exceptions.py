"""
GITOPS RBAC - Centralized Exception Hierarchy
=============================================

Structured exception types for the access-control core.

Exception Categories:
    - CompileError: Policy documents that cannot be compiled
    - VerificationError: Bearer tokens rejected by the claim verifier
    - PolicyStoreError: Invalid policy installs
    - AuditError: Audit persistence and archive failures
    - ConfigurationError: Configuration and setup problems

A Deny decision is never an exception. Exceptions signal that the core
could not reach a decision (or could not record one).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class AccessControlError(Exception):
    """
    Base exception for all access-control errors.

    Attributes:
        message: Human-readable error description
        code: Optional error code for programmatic handling
        details: Optional dict with additional context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


# =============================================================================
# POLICY COMPILATION ERRORS
# =============================================================================


class CompileErrorKind(str, Enum):
    """Rule violated by a policy document."""

    UNKNOWN_ROLE_REFERENCE = "UnknownRoleReference"
    DUPLICATE_ROLE_NAME = "DuplicateRoleName"
    MALFORMED_PATTERN = "MalformedPattern"
    UNKNOWN_VERB = "UnknownVerb"
    MALFORMED_DOCUMENT = "MalformedDocument"


@dataclass(frozen=True)
class CompileIssue:
    """One diagnostic produced while compiling a policy document."""

    kind: CompileErrorKind
    location: str
    subject: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "kind": self.kind.value,
            "location": self.location,
            "subject": self.subject,
            "message": self.message,
        }

    def __str__(self) -> str:
        return f"{self.location}: {self.kind.value}: {self.message}"


class CompileError(AccessControlError):
    """Policy document rejected by the compiler."""

    def __init__(self, issues: List[CompileIssue], **kwargs):
        if not issues:
            raise ValueError("CompileError requires at least one issue")
        summary = "; ".join(str(issue) for issue in issues)
        super().__init__(
            f"Policy rejected ({len(issues)} issue(s)): {summary}",
            code=issues[0].kind.value,
            **kwargs,
        )
        self.issues = list(issues)

    @property
    def kinds(self) -> List[CompileErrorKind]:
        return [issue.kind for issue in self.issues]

    def has(self, kind: CompileErrorKind) -> bool:
        return kind in self.kinds


# =============================================================================
# IDENTITY ERRORS
# =============================================================================


class VerificationError(AccessControlError):
    """Bearer token could not be verified. Always Deny-equivalent upstream."""


# =============================================================================
# POLICY STORE ERRORS
# =============================================================================


class PolicyStoreError(AccessControlError):
    """Base exception for policy store errors."""

    pass


class StaleGenerationError(PolicyStoreError):
    """Install attempted with a generation not newer than the current one."""

    def __init__(self, message: str, current: int = 0, attempted: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.current = current
        self.attempted = attempted


# =============================================================================
# AUDIT ERRORS
# =============================================================================


class AuditError(AccessControlError):
    """Base exception for audit trail errors."""

    pass


class AuditPersistenceError(AuditError):
    """An audit entry could not be durably written. Fatal to the request."""

    def __init__(self, message: str, sequence_number: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.sequence_number = sequence_number


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigurationError(AccessControlError):
    """Invalid or missing configuration."""


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "AccessControlError",
    "CompileErrorKind",
    "CompileIssue",
    "CompileError",
    "VerificationError",
    "PolicyStoreError",
    "StaleGenerationError",
    "AuditError",
    "AuditPersistenceError",
    "ConfigurationError",
]
