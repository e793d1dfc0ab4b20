"""
GITOPS RBAC - Audit Module

Components:
- chain.py: Entry type, hashing and pure chain verification
- models.py: SQLAlchemy tables
- session.py: Async engine / session management
- logger.py: AuditLogger (append, reads, verification, export, archive)
"""

from gitops_rbac.audit.chain import (
    GENESIS_HASH,
    AuditDecision,
    AuditEntry,
    AuditEventType,
    ChainVerification,
    verify_entries,
)
from gitops_rbac.audit.logger import AuditArchive, AuditLogger
from gitops_rbac.audit.session import AuditDatabase

__all__ = [
    "GENESIS_HASH",
    "AuditDecision",
    "AuditEntry",
    "AuditEventType",
    "ChainVerification",
    "verify_entries",
    "AuditArchive",
    "AuditLogger",
    "AuditDatabase",
]
