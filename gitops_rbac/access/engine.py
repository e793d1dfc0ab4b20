"""
GITOPS RBAC - Authorization Engine

Default-deny evaluation of (identity, resource, verb) against the current
policy generation. There is no explicit deny rule: a request is allowed
only when some permission of some bound role matches it.

Every ``authorize`` call appends exactly one audit entry before returning.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from gitops_rbac.access.identity import ClaimVerifier, Identity
from gitops_rbac.audit.chain import AuditDecision, AuditEntry, AuditEventType
from gitops_rbac.audit.logger import AuditLogger
from gitops_rbac.core.exceptions import ConfigurationError, VerificationError
from gitops_rbac.policy.store import PolicyStore


logger = logging.getLogger(__name__)


ANONYMOUS = "anonymous"


def normalize_verb(verb: str) -> str:
    return verb.strip().lower()


class DecisionReason(str, Enum):
    """Why a decision came out the way it did."""

    PERMISSION_GRANTED = "PermissionGranted"
    NO_MATCHING_BINDING = "NoMatchingBinding"
    NO_MATCHING_PERMISSION = "NoMatchingPermission"
    IDENTITY_EXPIRED = "IdentityExpired"
    VERIFICATION_FAILED = "VerificationFailed"


@dataclass(frozen=True)
class Decision:
    """Result of one authorization query."""

    allow: bool
    reason: DecisionReason
    matched_roles: Tuple[str, ...] = ()
    generation: int = 0

    @classmethod
    def deny(cls, reason: DecisionReason, generation: int = 0) -> "Decision":
        return cls(allow=False, reason=reason, generation=generation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allow": self.allow,
            "reason": self.reason.value,
            "matched_roles": list(self.matched_roles),
            "generation": self.generation,
        }


@dataclass(frozen=True)
class Explanation:
    """Dry-run evaluation details for policy authors."""

    decision: Decision
    matched_bindings: Tuple[str, ...] = ()
    bound_roles: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.decision.to_dict(),
            "matched_bindings": list(self.matched_bindings),
            "bound_roles": list(self.bound_roles),
        }


class AuthorizationEngine:
    """
    Evaluates requests against the policy store and audits each decision.

    Example:
        engine = AuthorizationEngine(store, audit_logger)
        decision = await engine.authorize(identity, "apps/guestbook", "sync")
    """

    def __init__(
        self,
        store: PolicyStore,
        audit_logger: AuditLogger,
        verifier: Optional[ClaimVerifier] = None,
    ):
        self.store = store
        self.audit_logger = audit_logger
        self.verifier = verifier

    # --------------------------------------------------------
    # Evaluation
    # --------------------------------------------------------

    def explain(
        self,
        identity: Identity,
        resource: str,
        verb: str,
        now: Optional[datetime] = None,
    ) -> Explanation:
        """Evaluate without auditing."""
        if identity.is_expired(now):
            return Explanation(
                Decision.deny(DecisionReason.IDENTITY_EXPIRED, self.store.generation_number)
            )

        # One snapshot for the whole evaluation.
        generation = self.store.current()
        verb = normalize_verb(verb)

        bindings = generation.matching_bindings(identity.subject, identity.groups, identity.email)
        if not bindings:
            return Explanation(
                Decision.deny(DecisionReason.NO_MATCHING_BINDING, generation.number)
            )

        bound: List[str] = []
        for binding in bindings:
            for name in binding.roles:
                if name not in bound:
                    bound.append(name)

        matched = tuple(name for name in bound if generation.roles[name].grants(resource, verb))
        if matched:
            decision = Decision(
                allow=True,
                reason=DecisionReason.PERMISSION_GRANTED,
                matched_roles=matched,
                generation=generation.number,
            )
        else:
            decision = Decision.deny(DecisionReason.NO_MATCHING_PERMISSION, generation.number)

        return Explanation(
            decision=decision,
            matched_bindings=tuple(str(b.subject) for b in bindings),
            bound_roles=tuple(bound),
        )

    def evaluate(self, identity: Identity, resource: str, verb: str) -> Decision:
        return self.explain(identity, resource, verb).decision

    # --------------------------------------------------------
    # Audited entry points
    # --------------------------------------------------------

    async def authorize(self, identity: Identity, resource: str, verb: str) -> Decision:
        """
        Decide and audit one request.

        Raises:
            AuditPersistenceError: If the decision could not be audited
        """
        verb = normalize_verb(verb)
        decision = self.evaluate(identity, resource, verb)
        await self._record(identity.subject, resource, verb, decision)
        return decision

    async def authorize_token(self, token: str, resource: str, verb: str) -> Decision:
        """Verify a bearer token, then authorize. Verification failures are audited denies."""
        if self.verifier is None:
            raise ConfigurationError("No claim verifier configured", code="NO_VERIFIER")

        verb = normalize_verb(verb)
        try:
            identity = self.verifier.verify(token)
        except VerificationError as e:
            logger.info(f"Token verification failed for {verb} {resource}: {e}")
            decision = Decision.deny(
                DecisionReason.VERIFICATION_FAILED, self.store.generation_number
            )
            await self._record(ANONYMOUS, resource, verb, decision)
            return decision

        return await self.authorize(identity, resource, verb)

    async def _record(
        self,
        subject: str,
        resource: str,
        verb: str,
        decision: Decision,
    ) -> AuditEntry:
        if decision.allow:
            logger.debug(f"ALLOW {subject} {verb} {resource} via {list(decision.matched_roles)}")
        else:
            logger.info(f"DENY {subject} {verb} {resource}: {decision.reason.value}")

        # The append runs in its own task so a cancelled caller cannot
        # leave a computed decision unaudited.
        append = asyncio.ensure_future(self.audit_logger.append(
            event_type=AuditEventType.AUTHZ_DECISION,
            actor_subject=subject,
            resource=resource,
            verb=verb,
            decision=AuditDecision.ALLOW if decision.allow else AuditDecision.DENY,
            reason=decision.reason.value,
            policy_generation=decision.generation,
        ))
        try:
            return await asyncio.shield(append)
        except asyncio.CancelledError:
            append.add_done_callback(_report_orphaned_append)
            raise


def _report_orphaned_append(task: "asyncio.Future[AuditEntry]") -> None:
    """Surface the outcome of an append whose caller was cancelled."""
    if task.cancelled():
        logger.error("Audit append cancelled after its caller went away")
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Audit append failed after its caller was cancelled: {error}")
