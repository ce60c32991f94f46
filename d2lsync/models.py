"""Domain models shared by the synchronisation engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class UnknownRoleError(RuntimeError):
    """Raised when a role code is required for a role that could not be parsed."""


_ROLE_CODES = {
    "Faculty": "109",
    "Staff": "118",
    "Student": "110",
}


class Role(Enum):
    """Directory role assigned to newly created users."""

    FACULTY = "Faculty"
    STAFF = "Staff"
    STUDENT = "Student"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: object) -> "Role":
        """Map a source-of-record role name onto :class:`Role`.

        Never raises: anything that is not a known role name, including
        non-string column values, becomes :attr:`Role.UNKNOWN` and callers
        decide how to treat it.
        """

        if not isinstance(value, str):
            return cls.UNKNOWN
        cleaned = value.strip().lower()
        for role in (cls.FACULTY, cls.STAFF, cls.STUDENT):
            if role.value.lower() == cleaned:
                return role
        return cls.UNKNOWN

    @property
    def code(self) -> str:
        try:
            return _ROLE_CODES[self.value]
        except KeyError as exc:
            raise UnknownRoleError("No directory role code exists for an unknown role") from exc


@dataclass(frozen=True)
class UserRecord:
    """A user as described by the system of record.

    ``middle_name`` is always a string (blank when absent); only the org
    defined id and the external email may be ``None``.
    """

    first_name: str
    last_name: str
    user_name: str
    middle_name: str = ""
    org_defined_id: Optional[str] = None
    external_email: Optional[str] = None


@dataclass(frozen=True)
class RemoteUser:
    """A user as currently stored in the downstream directory."""

    user_id: int
    record: UserRecord
    is_active: bool


@dataclass(frozen=True)
class JournalEvent:
    """A single entry of the change journal."""

    sequence_number: int
    entity_id: Optional[int] = None

    @property
    def advances_only(self) -> bool:
        return self.entity_id is None


class UpsertOutcome(Enum):
    CREATED = "created"
    UPDATED = "updated"
    NOOP = "noop"


__all__ = [
    "JournalEvent",
    "RemoteUser",
    "Role",
    "UnknownRoleError",
    "UpsertOutcome",
    "UserRecord",
]
