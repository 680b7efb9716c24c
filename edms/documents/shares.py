"""
EDMS Share Registry — per-user, time-bounded, revocable document grants.

A share is active iff it is not revoked and not yet expired. For any
(document, user) pair the registry keeps at most one active row: a grant
updates the active row in place, and writes for one document are
serialized through an in-process keyed lock. Rows that slipped past the
lock (another process, legacy data) are collapsed on the next write:
everything but the most recent active row is revoked.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Generator, List, Optional, Tuple

from sqlalchemy.orm import Session

from edms.db.base import as_utc, utcnow
from edms.db.models import DocumentShare
from edms.db.repositories import ShareRepository
from edms.documents.models import PermissionLevel

logger = logging.getLogger("edms.documents.shares")


class KeyedLock:
    """One lock per key, dropped again once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, Tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: str) -> Generator[None, None, None]:
        with self._guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, users + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                lock, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)

    def __len__(self) -> int:
        return len(self._locks)


class ShareRegistry:
    """
    Stateless over the store apart from the lock table; every method works
    inside the caller's session and never commits.
    """

    def __init__(self):
        self._locks = KeyedLock()

    def document_lock(self, document_id: str):
        """Serialize share writes for one document. Hold it across the commit."""
        return self._locks.hold(str(document_id))

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def active_share_for(
        self, session: Session, document_id: str, user_id: str, now: Optional[datetime] = None
    ) -> Optional[DocumentShare]:
        """Most recently granted active share, or None."""
        rows = ShareRepository(session).active_for(document_id, user_id, now)
        return rows[0] if rows else None

    def has_active_share(
        self, session: Session, document_id: str, user_id: str, now: Optional[datetime] = None
    ) -> bool:
        return self.active_share_for(session, document_id, user_id, now) is not None

    def get(self, session: Session, share_id: str) -> Optional[DocumentShare]:
        return ShareRepository(session).get(share_id)

    def shares_for_document(self, session: Session, document_id: str) -> List[DocumentShare]:
        """Non-revoked shares (expired ones included), newest first."""
        return ShareRepository(session).for_document(document_id)

    def shares_for_user(
        self, session: Session, user_id: str, now: Optional[datetime] = None
    ) -> List[DocumentShare]:
        """Active shares granted to ``user_id``."""
        return ShareRepository(session).for_user(user_id, now)

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    def grant_or_update(
        self,
        session: Session,
        document_id: str,
        target_user: str,
        level: PermissionLevel,
        expires_at: Optional[datetime],
        grantor: str,
        now: Optional[datetime] = None,
    ) -> Tuple[DocumentShare, bool]:
        """
        Upsert the active share for (document, target_user).

        Returns (share, created). Call under ``document_lock(document_id)``.
        """
        now = now or utcnow()
        expires_at = as_utc(expires_at)
        active = ShareRepository(session).active_for(document_id, target_user, now)

        if active:
            share = active[0]
            for stale in active[1:]:
                self._revoke_row(stale, grantor, now)
                logger.warning(
                    "Collapsed duplicate share %s on document %s for user %s",
                    stale.id, document_id, target_user,
                )
            share.permission_level = PermissionLevel(level).value
            share.expires_at = expires_at
            session.flush()
            return share, False

        share = DocumentShare(
            document_id=document_id,
            shared_with_user_id=target_user,
            permission_level=PermissionLevel(level).value,
            shared_by=grantor,
            shared_at=now,
            expires_at=expires_at,
            is_revoked=False,
        )
        session.add(share)
        session.flush()
        return share, True

    def revoke(
        self, session: Session, share_id: str, revoked_by: str, now: Optional[datetime] = None
    ) -> bool:
        """Revoke a share. Missing or already revoked → False, nothing changes."""
        share = ShareRepository(session).get(share_id)
        if share is None or share.is_revoked:
            return False
        self._revoke_row(share, revoked_by, now or utcnow())
        session.flush()
        return True

    @staticmethod
    def _revoke_row(share: DocumentShare, revoked_by: str, now: datetime) -> None:
        share.is_revoked = True
        share.revoked_at = now
        share.revoked_by = revoked_by
