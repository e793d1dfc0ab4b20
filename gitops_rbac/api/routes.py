"""
Access Control Routes

Authorization queries, policy installation and audit trail access.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from gitops_rbac.access.identity import Identity
from gitops_rbac.api.dependencies import get_core, get_token, require
from gitops_rbac.api.schemas import (
    AuditEntryResponse,
    AuditRangeResponse,
    AuthorizeRequest,
    ChainVerificationResponse,
    CompileIssueResponse,
    DecisionResponse,
    ErrorResponse,
    PolicySummaryResponse,
)
from gitops_rbac.core.access_core import AccessCore
from gitops_rbac.core.exceptions import CompileError


router = APIRouter()


# ==================== Authorization ====================


@router.post(
    "/authorize",
    response_model=DecisionResponse,
    summary="Authorize the token bearer",
)
async def authorize(
    request: AuthorizeRequest,
    token: str = Depends(get_token),
    core: AccessCore = Depends(get_core),
) -> DecisionResponse:
    """
    Decide whether the bearer may perform ``verb`` on ``resource``.

    An invalid token is a Deny with reason ``VerificationFailed``, not an
    HTTP error.
    """
    decision = await core.authorize_token(token, request.resource, request.verb)
    return DecisionResponse(**decision.to_dict())


# ==================== Policy ====================


@router.get(
    "/policy",
    response_model=PolicySummaryResponse,
    summary="Get installed policy generation",
)
async def get_policy(
    identity: Identity = Depends(require("policy", "get")),
    core: AccessCore = Depends(get_core),
) -> PolicySummaryResponse:
    return PolicySummaryResponse(**core.current_generation().summary())


@router.post(
    "/policy",
    response_model=PolicySummaryResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
    summary="Compile and install a policy document",
)
async def install_policy(
    document: Dict[str, Any],
    identity: Identity = Depends(require("policy", "update")),
    core: AccessCore = Depends(get_core),
):
    """Install a new generation. Rejected documents return 422 with every issue."""
    try:
        generation = await core.compile_and_install(document, actor=identity.subject)
    except CompileError as e:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ErrorResponse(
                detail="Policy rejected",
                issues=[CompileIssueResponse(**issue.to_dict()) for issue in e.issues],
            ).model_dump(),
        )
    return PolicySummaryResponse(**generation.summary())


# ==================== Audit ====================


@router.get(
    "/audit",
    response_model=AuditRangeResponse,
    summary="Read audit entries by sequence range",
)
async def audit_range(
    start: int = Query(1, ge=1),
    end: Optional[int] = Query(None, ge=1),
    identity: Identity = Depends(require("audit", "get")),
    core: AccessCore = Depends(get_core),
) -> AuditRangeResponse:
    entries = await core.audit_range(start, end)
    return AuditRangeResponse(
        entries=[AuditEntryResponse(**e.to_dict()) for e in entries],
        count=len(entries),
    )


@router.get(
    "/audit/verify",
    response_model=ChainVerificationResponse,
    summary="Verify the audit hash chain",
)
async def verify_audit_chain(
    start: int = Query(1, ge=1),
    end: Optional[int] = Query(None, ge=1),
    identity: Identity = Depends(require("audit", "get")),
    core: AccessCore = Depends(get_core),
) -> ChainVerificationResponse:
    result = await core.verify_chain(start, end)
    return ChainVerificationResponse(**result.to_dict())
