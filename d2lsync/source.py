"""Read access to the change journal and user records in the system of record."""
from __future__ import annotations

import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence, Tuple, Type

from .config import DEFAULT_QUERIES
from .models import JournalEvent, Role, UserRecord


class SourceUnavailableError(RuntimeError):
    """Raised when the system of record cannot be queried."""


class ChangeSource(Protocol):
    def journal(self, start: int, limit: int) -> List[JournalEvent]:
        ...

    def max_sequence(self) -> Optional[int]:
        ...

    def record(self, entity_id: int) -> Optional[Tuple[Role, UserRecord]]:
        ...


class InvalidRecordError(RuntimeError):
    """Raised when a user row lacks a value the directory requires."""


def _required_column(value: Any, column: str) -> str:
    if value is None or str(value).strip() == "":
        raise InvalidRecordError(f"User row has no {column}")
    return str(value)


def sqlite_connector(path: Path) -> Callable[[], sqlite3.Connection]:
    """Return a connection factory for a SQLite system of record."""

    uri = f"{path.resolve(strict=False).as_uri()}?mode=ro"

    def _connect() -> sqlite3.Connection:
        return sqlite3.connect(uri, uri=True)

    return _connect


def build_user_record(row: Sequence[Any]) -> Tuple[Role, UserRecord]:
    """Turn a user row into a role and record.

    Columns: preferred first name, first name, middle name, last name,
    user name, org defined id, email, role. A preferred first name replaces
    the legal first name and leaves the middle name blank. A missing first
    name, last name or user name raises :class:`InvalidRecordError`.
    """

    preferred, first, middle, last, user_name, org_id, email, role = row
    if preferred:
        first_name = preferred
        middle_name = ""
    else:
        first_name = first
        middle_name = middle or ""

    record = UserRecord(
        first_name=_required_column(first_name, "first name"),
        middle_name=str(middle_name),
        last_name=_required_column(last, "last name"),
        user_name=_required_column(user_name, "user name"),
        org_defined_id=str(org_id) if org_id is not None else None,
        external_email=str(email) if email is not None else None,
    )
    return Role.parse(role), record


class SQLChangeSource:
    """Change source backed by any DB-API 2.0 connection factory."""

    def __init__(
        self,
        connect: Callable[[], Any],
        *,
        queries: Optional[Mapping[str, str]] = None,
        errors: Tuple[Type[BaseException], ...] = (sqlite3.Error,),
    ) -> None:
        self._connect = connect
        self._queries = dict(DEFAULT_QUERIES)
        if queries:
            self._queries.update(queries)
        self._errors = errors

    def _fetch(self, name: str, params: Sequence[Any]) -> List[Sequence[Any]]:
        try:
            with closing(self._connect()) as conn:
                cursor = conn.cursor()
                try:
                    cursor.execute(self._queries[name], tuple(params))
                    return list(cursor.fetchall())
                finally:
                    cursor.close()
        except self._errors as exc:
            raise SourceUnavailableError(f"The {name} query failed: {exc}") from exc

    def max_sequence(self) -> Optional[int]:
        rows = self._fetch("journal_max_id", ())
        if not rows or rows[0][0] is None:
            return None
        return int(rows[0][0])

    def journal(self, start: int, limit: int) -> List[JournalEvent]:
        rows = self._fetch("journal", (start, limit))
        events: List[JournalEvent] = []
        for sequence_number, entity_id in rows:
            events.append(
                JournalEvent(
                    sequence_number=int(sequence_number),
                    entity_id=int(entity_id) if entity_id is not None else None,
                )
            )
        return events

    def record(self, entity_id: int) -> Optional[Tuple[Role, UserRecord]]:
        rows = self._fetch("user", (entity_id,))
        if not rows:
            return None
        try:
            return build_user_record(rows[0])
        except InvalidRecordError as exc:
            raise InvalidRecordError(f"User {entity_id}: {exc}") from exc


__all__ = [
    "ChangeSource",
    "InvalidRecordError",
    "SQLChangeSource",
    "SourceUnavailableError",
    "build_user_record",
    "sqlite_connector",
]
