"""Expiring lease locks stored in the database (set-if-absent with a TTL)."""

import logging
import time
import uuid
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from src.contest_draft.db import Database, LockLease
from src.contest_draft.errors import ConcurrencyBusyError

logger = logging.getLogger(__name__)


class LockManager:
    """Short-lived named leases.

    A lease is held until released with its token or until it expires, so a
    crashed holder never blocks a key for longer than its TTL.
    """

    def __init__(self, database: Database, clock: Callable[[], float] = time.time):
        self.database = database
        self.clock = clock

    def acquire(self, key: str, ttl_seconds: float) -> Optional[str]:
        """Take the lease if it is free or expired.

        Returns:
            The holder token, or None if someone else holds the key.
        """
        token = uuid.uuid4().hex
        now = self.clock()
        try:
            with self.database.serializable() as session:
                lease = session.execute(
                    select(LockLease).where(LockLease.key == key).with_for_update()
                ).scalar_one_or_none()
                if lease is not None and lease.expires_at > now:
                    logger.debug("Lease %s busy for %.1fs", key, lease.expires_at - now)
                    return None
                if lease is None:
                    session.add(LockLease(key=key, token=token, expires_at=now + ttl_seconds))
                else:
                    lease.token = token
                    lease.expires_at = now + ttl_seconds
        except IntegrityError:
            logger.debug("Lease %s taken concurrently", key)
            return None
        return token

    def release(self, key: str, token: str) -> bool:
        """Release the lease if ``token`` still owns it."""
        with self.database.session() as session:
            result = session.execute(
                delete(LockLease).where(LockLease.key == key, LockLease.token == token)
            )
            released = result.rowcount > 0
        if not released:
            logger.warning("Lease %s expired or changed hands before release", key)
        return released

    def is_held(self, key: str) -> bool:
        with self.database.session() as session:
            lease = session.get(LockLease, key)
            return lease is not None and lease.expires_at > self.clock()

    @contextmanager
    def hold(self, key: str, ttl_seconds: float, message: str = "") -> Iterator[str]:
        """Hold a lease for the duration of the block.

        Raises:
            ConcurrencyBusyError: If the lease is already held.
        """
        token = self.acquire(key, ttl_seconds)
        if token is None:
            raise ConcurrencyBusyError(
                message or "Another request is being processed. Please try again.",
                reason="lock_busy",
            )
        try:
            yield token
        finally:
            self.release(key, token)

    def purge_expired(self) -> int:
        with self.database.session() as session:
            result = session.execute(
                delete(LockLease).where(LockLease.expires_at <= self.clock())
            )
            return result.rowcount
