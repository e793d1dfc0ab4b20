"""
GITOPS RBAC Test Configuration
==============================

Pytest fixtures for the access-control core: in-memory audit database,
policy documents and identities.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from gitops_rbac.access.engine import AuthorizationEngine
from gitops_rbac.access.identity import Identity
from gitops_rbac.audit.logger import AuditLogger
from gitops_rbac.audit.session import create_engine_for, create_session_maker, init_schema
from gitops_rbac.core.access_core import AccessCore
from gitops_rbac.core.event_bus import EventBus
from gitops_rbac.policy.compiler import compile_policy
from gitops_rbac.policy.store import PolicyStore


@pytest_asyncio.fixture
async def db_engine():
    """Async in-memory SQLite engine with the audit schema."""
    engine = create_engine_for("sqlite+aiosqlite:///:memory:")
    await init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return create_session_maker(db_engine)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def audit_logger(session_maker, event_bus, tmp_path):
    return AuditLogger(
        session_maker,
        event_bus=event_bus,
        retention_days=30,
        archive_dir=tmp_path / "archive",
    )


@pytest.fixture
def policy_document():
    """Viewer/deployer/admin policy in the shape operators write."""
    return {
        "roles": [
            {
                "name": "viewer",
                "permissions": [{"resource": "apps/*", "verb": "get"}],
            },
            {
                "name": "deployer",
                "permissions": [
                    {"resource": "apps/*", "verb": "get"},
                    {"resource": "apps/*", "verb": "sync"},
                    "override apps/guestbook",
                ],
            },
            {
                "name": "admin",
                "permissions": [
                    {"resource": "apps/*", "verb": "*"},
                    {"resource": "policy", "verb": "*"},
                    {"resource": "audit", "verb": "get"},
                ],
            },
        ],
        "bindings": [
            {"subjectPattern": "group:team-view", "roles": ["viewer"]},
            {"subjectPattern": "group:team-deploy", "roles": ["deployer"]},
            {"subjectPattern": "user:root-admin", "roles": ["admin"]},
        ],
    }


@pytest.fixture
def generation(policy_document):
    return compile_policy(policy_document)


@pytest.fixture
def store(generation):
    return PolicyStore(generation)


@pytest.fixture
def engine(store, audit_logger):
    return AuthorizationEngine(store, audit_logger)


@pytest.fixture
def core(audit_logger, event_bus):
    return AccessCore(audit_logger, event_bus=event_bus)


@pytest.fixture
def future():
    return datetime.now(timezone.utc) + timedelta(hours=1)


@pytest.fixture
def viewer(future):
    return Identity.of("alice", groups=["team-view"], issuer="https://dex.example", expires_at=future)


@pytest.fixture
def deployer(future):
    return Identity.of("bob", groups=["team-deploy"], issuer="https://dex.example", expires_at=future)


@pytest.fixture
def outsider(future):
    return Identity.of("carol", groups=["ops"], issuer="https://dex.example", expires_at=future)
