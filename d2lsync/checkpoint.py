"""Durable storage for the journal checkpoint."""
from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger("d2lsync.checkpoint")


class CheckpointError(RuntimeError):
    """Raised when the checkpoint file cannot be read or written."""


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


class CheckpointStore:
    """A single text file holding the last fully applied sequence number."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._last_saved: Optional[int] = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[int]:
        """Return the stored checkpoint, or ``None`` when none was saved yet."""

        try:
            raw = self._path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CheckpointError(f"Failed to read checkpoint {self._path}: {exc}") from exc

        try:
            value = int(raw)
        except ValueError as exc:
            raise CheckpointError(f"Checkpoint file {self._path} does not contain an integer: {raw!r}") from exc
        if value < 0:
            raise CheckpointError(f"Checkpoint file {self._path} holds a negative value: {value}")

        self._last_saved = value
        return value

    def save(self, value: int) -> None:
        """Replace the stored checkpoint with ``value``.

        Values lower than the last one written are ignored.
        """

        if self._last_saved is not None and value < self._last_saved:
            logger.warning(
                "Refusing to move checkpoint backwards from %s to %s", self._last_saved, value
            )
            return

        try:
            _ensure_directory(self._path)
            fd, tmp_name = tempfile.mkstemp(prefix=".checkpoint-", dir=self._path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(f"{value}\n")
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise CheckpointError(f"Failed to write checkpoint {self._path}: {exc}") from exc

        self._last_saved = value
        logger.debug("Checkpoint %s saved to %s", value, self._path)


__all__ = ["CheckpointError", "CheckpointStore"]
