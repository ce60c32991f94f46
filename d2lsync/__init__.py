"""Incremental synchronisation of users from a system of record into a D2L directory."""

from __future__ import annotations

from .checkpoint import CheckpointError, CheckpointStore
from .config import ConfigurationError, SyncSettings, load_settings
from .directory import DirectoryClient, DirectoryError
from .models import JournalEvent, RemoteUser, Role, UpsertOutcome, UserRecord
from .poller import PollLoop, SyncSummary
from .reconciler import Reconciler
from .source import InvalidRecordError, SQLChangeSource, SourceUnavailableError, sqlite_connector


__all__ = [
    "CheckpointError",
    "CheckpointStore",
    "ConfigurationError",
    "DirectoryClient",
    "DirectoryError",
    "InvalidRecordError",
    "JournalEvent",
    "PollLoop",
    "Reconciler",
    "RemoteUser",
    "Role",
    "SQLChangeSource",
    "SourceUnavailableError",
    "SyncSettings",
    "SyncSummary",
    "UpsertOutcome",
    "UserRecord",
    "load_settings",
    "sqlite_connector",
]
