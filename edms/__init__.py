"""
EDMS — Role-based enterprise document management core.

Packages:
    edms.security   — role hierarchy and access predicates
    edms.documents  — document lifecycle, shares, tags, blob storage
    edms.audit      — append-only audit trail
    edms.db         — SQLAlchemy models, sessions, repositories
    edms.engine     — config, errors, identity, logging, request context
    edms.api        — FastAPI glue
"""

__version__ = "1.0.0"
__all__ = ["security", "documents", "audit", "db", "engine", "api"]
