"""
Tests for the Authorization Engine
==================================

Default-deny evaluation and the one-entry-per-decision audit contract.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import jwt
import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from gitops_rbac.access.engine import AuthorizationEngine, DecisionReason
from gitops_rbac.access.identity import Identity, JWTClaimVerifier
from gitops_rbac.audit.chain import AuditDecision, AuditEventType
from gitops_rbac.core.exceptions import AuditPersistenceError, ConfigurationError
from gitops_rbac.policy.compiler import compile_policy
from gitops_rbac.policy.store import PolicyStore


SECRET = "engine-test-secret-long-enough-for-hs256"


class TestEvaluation:
    """Decisions without looking at the audit trail."""

    def test_viewer_can_get(self, engine, viewer):
        decision = engine.evaluate(viewer, "apps/guestbook", "get")
        assert decision.allow
        assert decision.reason is DecisionReason.PERMISSION_GRANTED
        assert decision.matched_roles == ("viewer",)
        assert decision.generation == 1

    def test_viewer_cannot_delete(self, engine, viewer):
        decision = engine.evaluate(viewer, "apps/guestbook", "delete")
        assert not decision.allow
        assert decision.reason is DecisionReason.NO_MATCHING_PERMISSION
        assert decision.matched_roles == ()

    def test_unbound_subject(self, engine, outsider):
        decision = engine.evaluate(outsider, "apps/guestbook", "get")
        assert not decision.allow
        assert decision.reason is DecisionReason.NO_MATCHING_BINDING

    def test_literal_resource_permission(self, engine, deployer):
        assert engine.evaluate(deployer, "apps/guestbook", "override").allow
        assert not engine.evaluate(deployer, "apps/billing", "override").allow

    def test_segment_count_must_match(self, engine, viewer):
        assert not engine.evaluate(viewer, "apps/guestbook/pods", "get").allow
        assert not engine.evaluate(viewer, "apps", "get").allow

    def test_verb_is_case_insensitive(self, engine, viewer):
        assert engine.evaluate(viewer, "apps/guestbook", "GET").allow

    def test_matched_roles_lists_every_granting_role(self, policy_document, audit_logger, future):
        policy_document["bindings"].append(
            {"subjectPattern": "user:dana", "roles": ["admin", "viewer", "deployer"]}
        )
        engine = AuthorizationEngine(PolicyStore(compile_policy(policy_document)), audit_logger)
        dana = Identity.of("dana", expires_at=future)

        decision = engine.evaluate(dana, "apps/guestbook", "get")
        assert decision.matched_roles == ("admin", "viewer", "deployer")
        assert engine.evaluate(dana, "apps/guestbook", "sync").matched_roles == ("admin", "deployer")

    def test_bare_name_binding_matches_group(self, audit_logger, future):
        generation = compile_policy({
            "roles": [{"name": "viewer", "permissions": ["get apps/*"]}],
            "bindings": [{"subjectPattern": "team-view", "roles": ["viewer"]}],
        })
        engine = AuthorizationEngine(PolicyStore(generation), audit_logger)
        identity = Identity.of("erin", groups=["team-view"], expires_at=future)
        assert engine.evaluate(identity, "apps/x", "get").allow

    def test_empty_policy_denies_everything(self, audit_logger, viewer):
        engine = AuthorizationEngine(PolicyStore(), audit_logger)
        decision = engine.evaluate(viewer, "apps/guestbook", "get")
        assert decision.reason is DecisionReason.NO_MATCHING_BINDING
        assert decision.generation == 0

    def test_expired_identity(self, engine):
        expired = Identity.of(
            "alice",
            groups=["team-view"],
            expires_at=datetime.now(timezone.utc) - timedelta(seconds=1),
        )
        decision = engine.evaluate(expired, "apps/guestbook", "get")
        assert not decision.allow
        assert decision.reason is DecisionReason.IDENTITY_EXPIRED

    def test_explain_details(self, engine, deployer):
        explanation = engine.explain(deployer, "apps/guestbook", "delete")
        assert explanation.matched_bindings == ("group:team-deploy",)
        assert explanation.bound_roles == ("deployer",)
        assert explanation.decision.reason is DecisionReason.NO_MATCHING_PERMISSION

    @pytest.mark.asyncio
    async def test_explain_is_not_audited(self, engine, audit_logger, viewer):
        engine.explain(viewer, "apps/guestbook", "get")
        assert await audit_logger.count() == 0


class TestAuditedAuthorization:
    """Every authorize call leaves exactly one entry."""

    @pytest.mark.asyncio
    async def test_one_entry_per_decision(self, engine, audit_logger, viewer, outsider):
        await engine.authorize(viewer, "apps/guestbook", "get")
        await engine.authorize(viewer, "apps/guestbook", "delete")
        await engine.authorize(outsider, "apps/guestbook", "get")

        entries = await audit_logger.range()
        assert [e.sequence_number for e in entries] == [1, 2, 3]
        assert [e.decision for e in entries] == [
            AuditDecision.ALLOW, AuditDecision.DENY, AuditDecision.DENY,
        ]
        assert [e.reason for e in entries] == [
            "PermissionGranted", "NoMatchingPermission", "NoMatchingBinding",
        ]
        assert all(e.event_type is AuditEventType.AUTHZ_DECISION for e in entries)
        assert entries[0].actor_subject == "alice"
        assert entries[0].policy_generation == 1

    @pytest.mark.asyncio
    async def test_expired_identity_is_audited(self, engine, audit_logger):
        expired = Identity.of("alice", expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
        await engine.authorize(expired, "apps/guestbook", "get")

        entries = await audit_logger.range()
        assert len(entries) == 1
        assert entries[0].reason == "IdentityExpired"

    @pytest.mark.asyncio
    async def test_naive_expiry_is_evaluated_and_audited(self, engine, audit_logger):
        naive_future = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)
        identity = Identity.of("alice", groups=["team-view"], expires_at=naive_future)

        decision = await engine.authorize(identity, "apps/guestbook", "get")

        assert decision.allow
        assert (await audit_logger.range())[0].reason == "PermissionGranted"

    @pytest.mark.asyncio
    async def test_verb_recorded_as_evaluated(self, engine, audit_logger, viewer):
        """Audit entry carries the normalized verb the decision was made on."""
        decision = await engine.authorize(viewer, "apps/guestbook", " GET ")

        assert decision.allow
        assert (await audit_logger.range())[0].verb == "get"

    @pytest.mark.asyncio
    async def test_audit_failure_never_returns_allow(self, engine, audit_logger, viewer):
        failure = OperationalError("INSERT", {}, Exception("disk I/O error"))
        with patch.object(AsyncSession, "commit", new=AsyncMock(side_effect=failure)):
            with pytest.raises(AuditPersistenceError):
                await engine.authorize(viewer, "apps/guestbook", "get")

        assert await audit_logger.count() == 0
        assert audit_logger.last_sequence == 0

        decision = await engine.authorize(viewer, "apps/guestbook", "get")
        assert decision.allow
        assert [e.sequence_number for e in await audit_logger.range()] == [1]

    @pytest.mark.asyncio
    async def test_cancelled_caller_still_audits(self, engine, audit_logger, viewer):
        original = audit_logger.append
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_append(**kwargs):
            started.set()
            await release.wait()
            return await original(**kwargs)

        audit_logger.append = slow_append

        task = asyncio.create_task(engine.authorize(viewer, "apps/guestbook", "get"))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        release.set()
        for _ in range(100):
            if audit_logger.last_sequence == 1:
                break
            await asyncio.sleep(0.01)

        entries = await audit_logger.range()
        assert len(entries) == 1
        assert entries[0].decision is AuditDecision.ALLOW

    @pytest.mark.asyncio
    async def test_cancelled_caller_failed_append_is_logged(self, engine, audit_logger, viewer, caplog):
        started = asyncio.Event()
        release = asyncio.Event()

        async def failing_append(**kwargs):
            started.set()
            await release.wait()
            raise AuditPersistenceError("disk full", sequence_number=1)

        audit_logger.append = failing_append

        task = asyncio.create_task(engine.authorize(viewer, "apps/guestbook", "get"))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        with caplog.at_level(logging.ERROR, logger="gitops_rbac.access.engine"):
            release.set()
            for _ in range(100):
                if any("caller was cancelled" in r.getMessage() for r in caplog.records):
                    break
                await asyncio.sleep(0.01)

        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert any("disk full" in r.getMessage() for r in errors)


class TestTokenAuthorization:
    """Bearer token entry point."""

    @pytest.fixture
    def token_engine(self, store, audit_logger):
        verifier = JWTClaimVerifier(secret=SECRET, algorithms=["HS256"])
        return AuthorizationEngine(store, audit_logger, verifier)

    def _token(self, **claims):
        claims.setdefault("exp", datetime.now(timezone.utc) + timedelta(minutes=5))
        return jwt.encode(claims, SECRET, algorithm="HS256")

    @pytest.mark.asyncio
    async def test_valid_token(self, token_engine, audit_logger):
        token = self._token(sub="bob", groups=["team-deploy"])
        decision = await token_engine.authorize_token(token, "apps/guestbook", "sync")

        assert decision.allow
        assert decision.matched_roles == ("deployer",)
        assert (await audit_logger.range())[0].actor_subject == "bob"

    @pytest.mark.asyncio
    async def test_invalid_token_is_audited_deny(self, token_engine, audit_logger):
        decision = await token_engine.authorize_token("garbage", "apps/guestbook", "get")

        assert not decision.allow
        assert decision.reason is DecisionReason.VERIFICATION_FAILED
        entries = await audit_logger.range()
        assert len(entries) == 1
        assert entries[0].actor_subject == "anonymous"
        assert entries[0].reason == "VerificationFailed"

    @pytest.mark.asyncio
    async def test_no_verifier(self, engine):
        with pytest.raises(ConfigurationError):
            await engine.authorize_token("token", "apps/guestbook", "get")
