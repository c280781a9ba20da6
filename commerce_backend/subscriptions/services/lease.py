"""
DISTRIBUTED JOB LEASE

A scheduled job runs on exactly one node by holding a named JobLease row.

- acquire_lease(): take the lease if it is free, expired, or already ours.
- release_lease(): drop it (only by its owner).
- renew_lease(): extend the expiry while the owner still holds it.
- hold_lease(): context manager; yields a HeldLease that is truthy when held
  and can be renewed by long-running jobs through heartbeat().

The row is locked with select_for_update() while deciding, so two nodes
racing for the same expired lease cannot both win.
"""

from __future__ import annotations

import logging
import os
import socket
import uuid
from contextlib import contextmanager
from datetime import timedelta

from django.db import IntegrityError, transaction
from django.utils import timezone

from subscriptions.models import JobLease

logger = logging.getLogger(__name__)


def default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def acquire_lease(name: str, owner: str, ttl_seconds: int) -> bool:
    now = timezone.now()
    expires_at = now + timedelta(seconds=int(ttl_seconds))

    try:
        with transaction.atomic():
            lease = JobLease.objects.select_for_update().filter(name=name).first()

            if lease is None:
                JobLease.objects.create(
                    name=name,
                    owner=owner,
                    acquired_at=now,
                    expires_at=expires_at,
                )
                return True

            if lease.owner != owner and lease.expires_at > now:
                logger.info(
                    "Lease held by another owner",
                    extra={"lease": name, "holder": lease.owner, "expires_at": lease.expires_at.isoformat()},
                )
                return False

            lease.owner = owner
            lease.acquired_at = now
            lease.expires_at = expires_at
            lease.save(update_fields=["owner", "acquired_at", "expires_at"])
            return True
    except IntegrityError:
        # Another node inserted the row first.
        return False


def release_lease(name: str, owner: str) -> bool:
    deleted, _ = JobLease.objects.filter(name=name, owner=owner).delete()
    return bool(deleted)


def renew_lease(name: str, owner: str, ttl_seconds: int) -> bool:
    """Push the expiry of a lease we still own; False once another owner took it over."""
    expires_at = timezone.now() + timedelta(seconds=int(ttl_seconds))
    updated = JobLease.objects.filter(name=name, owner=owner).update(expires_at=expires_at)
    return bool(updated)


class HeldLease:
    """
    Handle yielded by hold_lease(). Truthy while the lease is ours.

    Long jobs call heartbeat() between units of work; it renews the lease once
    a third of the TTL has passed and returns False when the lease was lost.
    """

    def __init__(self, name: str, owner: str, ttl_seconds: int, held: bool):
        self.name = name
        self.owner = owner
        self.ttl_seconds = int(ttl_seconds)
        self.held = held
        self.renewed_at = timezone.now()

    def __bool__(self):
        return self.held

    def renew(self) -> bool:
        if not self.held:
            return False
        if not renew_lease(self.name, self.owner, self.ttl_seconds):
            self.held = False
            logger.warning("Lease lost to another owner", extra={"lease": self.name, "owner": self.owner})
            return False
        self.renewed_at = timezone.now()
        return True

    def heartbeat(self) -> bool:
        if not self.held:
            return False
        if timezone.now() - self.renewed_at < timedelta(seconds=self.ttl_seconds / 3):
            return True
        return self.renew()


@contextmanager
def hold_lease(name: str, *, ttl_seconds: int, owner: str | None = None):
    owner = owner or default_owner()
    lease = HeldLease(name, owner, ttl_seconds, acquire_lease(name, owner, ttl_seconds))
    try:
        yield lease
    finally:
        if lease.held:
            release_lease(name, owner)
