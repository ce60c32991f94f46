"""Create-or-update decisions for a single user."""
from __future__ import annotations

import logging

from .directory import DirectoryClient
from .models import Role, UnknownRoleError, UpsertOutcome, UserRecord

logger = logging.getLogger("d2lsync.reconciler")


class Reconciler:
    """Bring one directory user in line with the system of record.

    The existing user is always read before anything is written. Skipping
    the read would let a retried create race a create that already landed.
    """

    def __init__(self, directory: DirectoryClient) -> None:
        self._directory = directory

    def upsert(self, role: Role, record: UserRecord) -> UpsertOutcome:
        remote = self._directory.read_user(record.user_name)

        if remote is None:
            if role is Role.UNKNOWN:
                raise UnknownRoleError(
                    f"Cannot create {record.user_name}: the source role is not recognised"
                )
            self._directory.create_user(role, record)
            logger.info("Created user %s as %s", record.user_name, role.value)
            return UpsertOutcome.CREATED

        if remote.record == record and remote.is_active:
            logger.info("No update required for %s", record.user_name)
            return UpsertOutcome.NOOP

        self._directory.update_user(remote.user_id, record)
        logger.info("Updated user %s (id %s)", record.user_name, remote.user_id)
        return UpsertOutcome.UPDATED


__all__ = ["Reconciler"]
