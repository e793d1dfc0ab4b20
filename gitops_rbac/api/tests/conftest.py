"""
Test Configuration and Fixtures

Shared fixtures for GITOPS RBAC API tests.
Provides an isolated audit database, a core with a loaded policy and
signed bearer tokens.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import jwt
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

from gitops_rbac.access.identity import JWTClaimVerifier
from gitops_rbac.api.main import create_app
from gitops_rbac.audit.logger import AuditLogger
from gitops_rbac.audit.session import create_engine_for, create_session_maker, init_schema
from gitops_rbac.config import Settings
from gitops_rbac.core.access_core import AccessCore
from gitops_rbac.core.event_bus import EventBus


TEST_SECRET = "api-test-secret-long-enough-for-hs256"
TEST_ISSUER = "https://dex.test"

TEST_POLICY = {
    "roles": [
        {"name": "viewer", "permissions": ["get apps/*"]},
        {"name": "deployer", "permissions": ["get apps/*", "sync apps/*"]},
        {"name": "policy-admin", "permissions": ["* policy", "get audit"]},
    ],
    "bindings": [
        {"subjectPattern": "group:team-view", "roles": ["viewer"]},
        {"subjectPattern": "group:team-deploy", "roles": ["deployer"]},
        {"subjectPattern": "user:ops-admin", "roles": ["policy-admin"]},
    ],
}


def make_token(subject: str, groups=(), expires_in: int = 600, secret: str = TEST_SECRET) -> str:
    return jwt.encode(
        {
            "sub": subject,
            "iss": TEST_ISSUER,
            "groups": list(groups),
            "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        },
        secret,
        algorithm="HS256",
    )


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ==================== Database Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async SQLite engine for testing."""
    engine = create_engine_for("sqlite+aiosqlite:///:memory:")
    await init_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture(scope="function")
def audit_logger(async_engine, event_bus, tmp_path) -> AuditLogger:
    return AuditLogger(
        create_session_maker(async_engine),
        event_bus=event_bus,
        archive_dir=tmp_path / "archive",
    )


# ==================== Application Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def core(audit_logger, event_bus) -> AccessCore:
    """Access core with the test policy installed as generation 1."""
    verifier = JWTClaimVerifier(
        issuers=[TEST_ISSUER],
        secret=TEST_SECRET,
        algorithms=["HS256"],
    )
    core = AccessCore(audit_logger, verifier=verifier, event_bus=event_bus)
    await core.compile_and_install(TEST_POLICY, actor="bootstrap")
    return core


@pytest.fixture(scope="function")
def app(core) -> FastAPI:
    """Create FastAPI app around the test core."""
    return create_app(core=core, settings=Settings(LOG_LEVEL="WARNING"))


@pytest_asyncio.fixture(scope="function")
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


# ==================== Auth Fixtures ====================


@pytest.fixture
def viewer_headers() -> dict:
    return bearer(make_token("alice", groups=["team-view"]))


@pytest.fixture
def deployer_headers() -> dict:
    return bearer(make_token("bob", groups=["team-deploy"]))


@pytest.fixture
def admin_headers() -> dict:
    """Headers for the subject allowed to manage policy and read audit."""
    return bearer(make_token("ops-admin"))
