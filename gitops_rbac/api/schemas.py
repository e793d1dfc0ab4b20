"""
API Schemas

Pydantic models for the access-control API.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field


class AuthorizeRequest(BaseModel):
    """Authorization query for the bearer of the request token."""

    resource: str = Field(min_length=1, max_length=512)
    verb: str = Field(min_length=1, max_length=32)


class DecisionResponse(BaseModel):
    """Authorization decision."""

    allow: bool
    reason: str
    matched_roles: List[str] = []
    generation: int


class PolicySummaryResponse(BaseModel):
    """Installed policy generation."""

    generation: int
    digest: str
    compiled_at: str
    roles: List[str] = []
    bindings: int = 0


class CompileIssueResponse(BaseModel):
    kind: str
    location: str
    subject: str
    message: str


class AuditEntryResponse(BaseModel):
    """Persisted audit entry."""

    sequence_number: int
    timestamp: str
    event_type: str
    actor_subject: str
    resource: str
    verb: str
    decision: str
    reason: str
    policy_generation: int
    prior_entry_hash: str
    entry_hash: str


class AuditRangeResponse(BaseModel):
    entries: List[AuditEntryResponse] = []
    count: int = 0


class ChainVerificationResponse(BaseModel):
    valid: bool
    checked: int
    broken_at: Optional[int] = None
    message: str = ""


class ErrorResponse(BaseModel):
    detail: Any
    issues: Optional[List[CompileIssueResponse]] = None
