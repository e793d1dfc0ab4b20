"""
GITOPS RBAC - Access Core

Wires the policy store, compiler, authorization engine and audit logger
together and exposes the query interface used by callers and the API:

    authorize / authorize_token / explain
    compile_and_install
    audit_range / verify_chain
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Union

from gitops_rbac.access.engine import AuthorizationEngine, Decision, Explanation
from gitops_rbac.access.identity import ClaimVerifier, Identity, JWTClaimVerifier
from gitops_rbac.audit.chain import AuditDecision, AuditEntry, AuditEventType, ChainVerification
from gitops_rbac.audit.logger import AuditLogger
from gitops_rbac.audit.session import AuditDatabase
from gitops_rbac.config import Settings
from gitops_rbac.core.event_bus import Event, EventBus, EventPriority, EventType
from gitops_rbac.core.exceptions import CompileError, StaleGenerationError
from gitops_rbac.policy.compiler import PolicySource, compile_policy, load_policy_file
from gitops_rbac.policy.model import PolicyGeneration
from gitops_rbac.policy.store import PolicyStore


logger = logging.getLogger(__name__)


POLICY_VERB = "install"
SYSTEM_ACTOR = "system"
STALE_REASON = "StaleGeneration"


def policy_resource(number: int) -> str:
    return f"policy/generation-{number}"


class AccessCore:
    """
    Access-control core.

    Example:
        core = AccessCore.from_settings(get_settings())
        await core.start()
        await core.compile_and_install(document, actor="ops-admin")
        decision = await core.authorize(identity, "apps/guestbook", "sync")
    """

    def __init__(
        self,
        audit_logger: AuditLogger,
        store: Optional[PolicyStore] = None,
        verifier: Optional[ClaimVerifier] = None,
        event_bus: Optional[EventBus] = None,
        database: Optional[AuditDatabase] = None,
    ):
        self.store = store or PolicyStore()
        self.audit_logger = audit_logger
        self.event_bus = event_bus
        self.database = database
        self.engine = AuthorizationEngine(self.store, audit_logger, verifier)
        self._install_lock = asyncio.Lock()
        self._policy_path: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "AccessCore":
        database = AuditDatabase(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
        event_bus = EventBus()
        audit_logger = AuditLogger(
            database.session_maker,
            event_bus=event_bus,
            retention_days=settings.AUDIT_RETENTION_DAYS,
            archive_dir=settings.AUDIT_ARCHIVE_DIR,
        )

        verifier = None
        if settings.OIDC_SECRET or settings.OIDC_PUBLIC_KEY or settings.OIDC_JWKS_URL:
            verifier = JWTClaimVerifier.from_settings(settings)
        else:
            logger.warning("No OIDC key configured; token authorization is disabled")

        core = cls(
            audit_logger,
            verifier=verifier,
            event_bus=event_bus,
            database=database,
        )
        core._policy_path = settings.POLICY_PATH
        return core

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def start(self) -> None:
        if self.database is not None:
            await self.database.init()
        await self.audit_logger.open()
        if self.event_bus is not None:
            await self.event_bus.start()
        if self._policy_path:
            await self.load_policy(self._policy_path)
        logger.info(f"Access core started at policy generation {self.store.generation_number}")

    async def stop(self) -> None:
        if self.event_bus is not None:
            await self.event_bus.stop()
        if self.database is not None:
            await self.database.close()
        logger.info("Access core stopped")

    # --------------------------------------------------------
    # Policy
    # --------------------------------------------------------

    def current_generation(self) -> PolicyGeneration:
        return self.store.current()

    async def compile_and_install(
        self,
        document: PolicySource,
        actor: str = SYSTEM_ACTOR,
    ) -> PolicyGeneration:
        """
        Compile ``document`` and make it the current policy.

        The change is audited before it becomes visible. A rejected document
        is audited as ``policy.rejected`` and the installed generation stays
        authoritative.

        Raises:
            CompileError: If the document is rejected
            StaleGenerationError: If another writer installed a newer generation
            AuditPersistenceError: If the change could not be audited
        """
        async with self._install_lock:
            current = self.store.current()
            candidate_number = current.number + 1

            try:
                generation = compile_policy(document, previous=current.number)
            except CompileError as e:
                await self._reject(
                    actor, candidate_number, current.number, e.code or "CompileError",
                    issues=[issue.to_dict() for issue in e.issues],
                )
                raise

            # The store may be shared with writers outside this core.
            latest = self.store.current()
            if generation.number <= latest.number:
                await self._reject(actor, generation.number, latest.number, STALE_REASON)
                raise StaleGenerationError(
                    f"Generation {generation.number} was superseded by "
                    f"generation {latest.number} during compilation",
                    current=latest.number,
                    attempted=generation.number,
                )

            await self.audit_logger.append(
                event_type=AuditEventType.POLICY_INSTALLED,
                actor_subject=actor,
                resource=policy_resource(generation.number),
                verb=POLICY_VERB,
                decision=AuditDecision.ALLOW,
                reason=generation.digest,
                policy_generation=generation.number,
            )
            try:
                self.store.install(generation)
            except StaleGenerationError as e:
                # Lost a race after the install entry was written; the
                # rejection entry supersedes it.
                await self._reject(actor, generation.number, e.current, STALE_REASON)
                raise

        diff = generation.diff(current)
        await self._publish(EventType.POLICY_INSTALLED, {
            "actor": actor,
            **generation.summary(),
            "previous_generation": current.number,
            "added_roles": list(diff.added_roles),
            "removed_roles": list(diff.removed_roles),
            "changed_roles": list(diff.changed_roles),
        })
        return generation

    async def _reject(
        self,
        actor: str,
        candidate: int,
        current: int,
        reason: str,
        issues: Optional[List[dict]] = None,
    ) -> None:
        await self.audit_logger.append(
            event_type=AuditEventType.POLICY_REJECTED,
            actor_subject=actor,
            resource=policy_resource(candidate),
            verb=POLICY_VERB,
            decision=AuditDecision.DENY,
            reason=reason,
            policy_generation=current,
        )
        await self._publish(EventType.POLICY_REJECTED, {
            "actor": actor,
            "current_generation": current,
            "reason": reason,
            "issues": issues or [],
        })

    async def load_policy(
        self,
        path: Union[str, Path],
        actor: str = SYSTEM_ACTOR,
    ) -> PolicyGeneration:
        """Compile and install a policy document from disk."""
        return await self.compile_and_install(load_policy_file(path), actor=actor)

    async def _publish(self, event_type: EventType, data: dict) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(Event(
            event_type=event_type,
            data=data,
            source="access_core",
            priority=EventPriority.CRITICAL,
        ))

    # --------------------------------------------------------
    # Authorization
    # --------------------------------------------------------

    async def authorize(self, identity: Identity, resource: str, verb: str) -> Decision:
        return await self.engine.authorize(identity, resource, verb)

    async def authorize_token(self, token: str, resource: str, verb: str) -> Decision:
        return await self.engine.authorize_token(token, resource, verb)

    def explain(self, identity: Identity, resource: str, verb: str) -> Explanation:
        return self.engine.explain(identity, resource, verb)

    # --------------------------------------------------------
    # Audit
    # --------------------------------------------------------

    async def audit_range(self, start: int = 1, end: Optional[int] = None) -> List[AuditEntry]:
        return await self.audit_logger.range(start, end)

    async def verify_chain(self, start: int = 1, end: Optional[int] = None) -> ChainVerification:
        return await self.audit_logger.verify_chain(start, end)
