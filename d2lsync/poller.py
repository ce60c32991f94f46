"""Journal-following driver that feeds the reconciler and tracks progress."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from .checkpoint import CheckpointStore
from .config import SyncSettings
from .directory import DirectoryError
from .models import JournalEvent, Role, UnknownRoleError, UpsertOutcome, UserRecord
from .reconciler import Reconciler
from .source import ChangeSource, InvalidRecordError, SourceUnavailableError

logger = logging.getLogger("d2lsync.poller")


@dataclass
class SyncSummary:
    """Tally of what happened while processing one batch or id list."""

    created: int = 0
    updated: int = 0
    noop: int = 0
    skipped: int = 0
    failed: int = 0

    def record_outcome(self, outcome: UpsertOutcome) -> None:
        if outcome is UpsertOutcome.CREATED:
            self.created += 1
        elif outcome is UpsertOutcome.UPDATED:
            self.updated += 1
        else:
            self.noop += 1

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.noop + self.skipped + self.failed

    def __str__(self) -> str:
        return (
            f"{self.created} created, {self.updated} updated, {self.noop} unchanged, "
            f"{self.skipped} skipped, {self.failed} failed"
        )


class PollLoop:
    """Drain the change journal into the directory.

    ``checkpoint`` is only advanced over events that were fully applied, and
    never past an event whose reconciliation failed. A stop requested with
    :meth:`request_stop` takes effect between events, never in the middle of
    a reconciliation.
    """

    def __init__(
        self,
        settings: SyncSettings,
        *,
        source: ChangeSource,
        reconciler: Reconciler,
        store: Optional[CheckpointStore] = None,
        sleep: Optional[Callable[[float], object]] = None,
    ) -> None:
        self._settings = settings
        self._source = source
        self._reconciler = reconciler
        self._store = store
        self._stop = threading.Event()
        self._sleep = sleep if sleep is not None else self._stop.wait
        self._checkpoint: Optional[int] = None
        self._persisted: Optional[int] = None
        self._failures: Dict[int, int] = {}

    @property
    def checkpoint(self) -> Optional[int]:
        return self._checkpoint

    @property
    def store(self) -> Optional[CheckpointStore]:
        return self._store

    @property
    def failure_counts(self) -> Dict[int, int]:
        """Consecutive failures per sequence number for events not yet applied."""

        return dict(self._failures)

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def request_stop(self) -> None:
        """Ask the loop to finish the current event, persist progress and return."""

        self._stop.set()

    # ------------------------------------------------------------------
    # Single-shot modes
    # ------------------------------------------------------------------
    def run_single(self, role: Role, record: UserRecord) -> bool:
        """Reconcile one explicitly supplied record. Returns ``True`` on success."""

        try:
            self._reconciler.upsert(role, record)
        except (DirectoryError, UnknownRoleError) as exc:
            logger.error("Error while synchronising user %s: %s", record.user_name, exc)
            return False
        return True

    def run_ids(self, entity_ids: Iterable[int]) -> SyncSummary:
        """Reconcile exactly ``entity_ids`` once, without touching the checkpoint."""

        summary = SyncSummary()
        for entity_id in entity_ids:
            try:
                resolved = self._source.record(entity_id)
            except (SourceUnavailableError, InvalidRecordError) as exc:
                logger.error("Failed to look up user %s: %s", entity_id, exc)
                summary.failed += 1
                continue

            if resolved is None:
                logger.warning("User %s not found in the system of record", entity_id)
                summary.skipped += 1
                continue

            role, record = resolved
            try:
                summary.record_outcome(self._reconciler.upsert(role, record))
            except UnknownRoleError as exc:
                logger.warning("Skipping user %s: %s", entity_id, exc)
                summary.skipped += 1
            except DirectoryError as exc:
                logger.error("Error while synchronising user %s (%s): %s", entity_id, record.user_name, exc)
                summary.failed += 1

        logger.info("Processed %d id(s): %s", summary.processed, summary)
        return summary

    # ------------------------------------------------------------------
    # Journal mode
    # ------------------------------------------------------------------
    def bootstrap(self) -> Optional[int]:
        """Load the checkpoint, or start from the head of the journal when there is none.

        Returns ``None`` only when a stop was requested before the journal
        head could be read.
        """

        if self._store is None:
            raise RuntimeError("Journal mode requires a checkpoint store")

        stored = self._store.load()
        if stored is not None:
            logger.info("Resuming from checkpoint %s", stored)
            self._checkpoint = self._persisted = stored
            return stored

        while True:
            try:
                head = self._source.max_sequence()
                break
            except SourceUnavailableError as exc:
                logger.warning(
                    "Unable to read the journal head (%s); retrying in %.0fs",
                    exc,
                    self._settings.backoff_interval,
                )
                self._sleep(self._settings.backoff_interval)
                if self._stop.is_set():
                    return None

        start = head if head is not None else 0
        logger.info("No checkpoint found; starting from journal head %s", start)
        self._store.save(start)
        self._checkpoint = self._persisted = start
        return start

    def _note_failure(self, event: JournalEvent, user: str, exc: Exception) -> None:
        attempts = self._failures.get(event.sequence_number, 0) + 1
        self._failures[event.sequence_number] = attempts
        logger.error(
            "Failed to synchronise user %s (%s) from event %s, attempt %d: %s",
            event.entity_id,
            user,
            event.sequence_number,
            attempts,
            exc,
        )

    def _apply(self, event: JournalEvent, summary: SyncSummary) -> bool:
        """Process one event. Returns ``True`` once the event is fully handled."""

        if event.entity_id is None:
            summary.skipped += 1
            return True

        try:
            resolved = self._source.record(event.entity_id)
        except InvalidRecordError as exc:
            self._note_failure(event, "unreadable row", exc)
            summary.failed += 1
            return False

        if resolved is None:
            logger.info(
                "User %s from event %s no longer exists; skipping",
                event.entity_id,
                event.sequence_number,
            )
            summary.skipped += 1
            return True

        role, record = resolved
        try:
            summary.record_outcome(self._reconciler.upsert(role, record))
        except UnknownRoleError as exc:
            logger.warning("Skipping event %s: %s", event.sequence_number, exc)
            summary.skipped += 1
            return True
        except DirectoryError as exc:
            self._note_failure(event, record.user_name, exc)
            summary.failed += 1
            return False
        return True

    def drain(self) -> SyncSummary:
        """Process one batch of journal events and persist the new checkpoint.

        Raises :class:`SourceUnavailableError` without moving the checkpoint
        when the system of record cannot be queried.
        """

        summary = SyncSummary()
        if self._checkpoint is None and self.bootstrap() is None:
            return summary
        assert self._checkpoint is not None and self._store is not None

        start = self._checkpoint
        events = self._source.journal(start, self._settings.batch_size)
        if not events:
            return summary

        cursor = start
        blocked = False
        for event in events:
            if self._stop.is_set():
                logger.info("Stop requested; leaving the rest of the batch for the next run")
                break
            if self._apply(event, summary):
                self._failures.pop(event.sequence_number, None)
                if not blocked and event.sequence_number > cursor:
                    cursor = event.sequence_number
            else:
                blocked = True

        if cursor != self._persisted:
            self._store.save(cursor)
            self._persisted = cursor
        self._checkpoint = cursor

        logger.info(
            "Drained %d of %d event(s) after %s: %s; checkpoint is %s",
            summary.processed,
            len(events),
            start,
            summary,
            cursor,
        )
        return summary

    def run_once(self) -> bool:
        """Run one drain cycle and sleep. Returns ``False`` if the source was unavailable."""

        try:
            self.drain()
        except SourceUnavailableError as exc:
            logger.warning(
                "System of record unavailable (%s); retrying from checkpoint %s in %.0fs",
                exc,
                self._checkpoint,
                self._settings.backoff_interval,
            )
            if not self._stop.is_set():
                self._sleep(self._settings.backoff_interval)
            return False

        if not self._stop.is_set():
            self._sleep(self._settings.poll_interval)
        return True

    def run_forever(self, *, max_cycles: Optional[int] = None) -> None:
        """Follow the journal until stopped; ``max_cycles`` bounds the loop."""

        if self._checkpoint is None and self.bootstrap() is None:
            return

        cycles = 0
        while not self._stop.is_set() and (max_cycles is None or cycles < max_cycles):
            self.run_once()
            cycles += 1

        if self._stop.is_set():
            logger.info("Stopped at checkpoint %s", self._checkpoint)


__all__ = ["PollLoop", "SyncSummary"]
