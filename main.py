"""Command-line interface for the D2L directory synchronisation service."""

from __future__ import annotations
import argparse
import contextlib
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Sequence

from d2lsync.checkpoint import CheckpointError, CheckpointStore
from d2lsync.config import ConfigurationError, SyncSettings, load_settings
from d2lsync.directory import DirectoryClient
from d2lsync.models import Role, UserRecord
from d2lsync.poller import PollLoop
from d2lsync.reconciler import Reconciler
from d2lsync.source import SQLChangeSource, sqlite_connector

logger = logging.getLogger("d2lsync.main")

def _parse_ids(value: str) -> List[int]:
    ids: List[int] = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError as exc:
            raise argparse.ArgumentTypeError(f"invalid user id {part!r}") from exc
    if not ids:
        raise argparse.ArgumentTypeError("at least one user id is required")
    return ids


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Synchronise users into the D2L directory. With --role a single user is "
            "upserted, with --ids the listed users are synchronised once, otherwise "
            "the change journal is followed continuously."
        )
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML file with non-secret settings")
    parser.add_argument(
        "--checkpoint-file",
        type=Path,
        default=None,
        help="Override the checkpoint location (default: D2L_CHECKPOINT_PATH or data/checkpoint)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    parser.add_argument(
        "--ids",
        type=_parse_ids,
        default=None,
        help="Comma-separated user ids to synchronise once, bypassing the journal",
    )

    single = parser.add_argument_group("single user")
    single.add_argument("--role", default=None, help="Faculty, Staff or Student")
    single.add_argument("--first-name", default=None)
    single.add_argument("--middle-name", default="")
    single.add_argument("--last-name", default=None)
    single.add_argument("--user-name", default=None)
    single.add_argument("--org-defined-id", default=None)
    single.add_argument("--external-email", default=None)

    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.role is not None:
        if args.ids is not None:
            parser.error("--role and --ids cannot be combined")
        missing = [
            flag
            for flag, value in (
                ("--first-name", args.first_name),
                ("--last-name", args.last_name),
                ("--user-name", args.user_name),
            )
            if not value
        ]
        if missing:
            parser.error(f"--role requires {', '.join(missing)}")
        if Role.parse(args.role) is Role.UNKNOWN:
            parser.error(f"unknown role {args.role!r}; expected Faculty, Staff or Student")

    return args


def _single_record(args: argparse.Namespace) -> UserRecord:
    return UserRecord(
        first_name=args.first_name,
        middle_name=args.middle_name or "",
        last_name=args.last_name,
        user_name=args.user_name,
        org_defined_id=args.org_defined_id,
        external_email=args.external_email,
    )


def _build_loop(settings: SyncSettings, directory: DirectoryClient, *, journal: bool) -> PollLoop:
    source = SQLChangeSource(sqlite_connector(settings.source_path), queries=settings.queries)
    store = CheckpointStore(settings.checkpoint_path) if journal else None
    return PollLoop(settings, source=source, reconciler=Reconciler(directory), store=store)


@contextlib.contextmanager
def _stop_on_signals(loop: PollLoop) -> Iterator[None]:
    """Route SIGINT and SIGTERM to ``loop.request_stop`` for the duration of the block."""

    def _handle(signum: int, _frame: object) -> None:
        logger.info("Received %s; stopping after the current event", signal.Signals(signum).name)
        loop.request_stop()

    previous: Dict[int, object] = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handle)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def main(argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        settings = load_settings(os.environ if environ is None else environ, args.config)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 1
    if args.checkpoint_file is not None:
        settings = settings.with_checkpoint_path(args.checkpoint_file)

    with DirectoryClient(settings) as directory:
        if args.role is not None:
            loop = _build_loop(settings, directory, journal=False)
            return 0 if loop.run_single(Role.parse(args.role), _single_record(args)) else 1

        if args.ids is not None:
            _build_loop(settings, directory, journal=False).run_ids(args.ids)
            return 0

        loop = _build_loop(settings, directory, journal=True)
        logger.info("Following the change journal in %s", settings.source_path)
        try:
            with _stop_on_signals(loop):
                loop.run_forever()
        except CheckpointError as exc:
            logger.error("Checkpoint store failure: %s", exc)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
