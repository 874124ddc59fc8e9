"""Dispatch trail: append-only JSON Lines record of relay events with rotation.

Each dispatch, webhook result, callback and provisioning run is written as
one line so an operator can follow a session end to end.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from src.models import AuditEvent


def read_trail(log_path: Path, session_id: str | None = None) -> list[dict[str, object]]:
    """Parse a trail file, optionally keeping only one session's events."""
    if not log_path.exists():
        return []
    entries = [
        json.loads(line)
        for line in log_path.read_text().splitlines()
        if line.strip()
    ]
    if session_id is None:
        return entries
    return [e for e in entries if e.get("session_id") == session_id]


class AuditLogger:
    """Append-only trail writer with size-based rotation."""

    def __init__(
        self,
        log_path: str,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count

    @classmethod
    def from_env(cls, log_path: str) -> AuditLogger:
        max_bytes = int(os.environ.get("DISPATCH_TRAIL_MAX_BYTES", "10485760"))
        backup_count = int(os.environ.get("DISPATCH_TRAIL_BACKUP_COUNT", "5"))
        return cls(log_path=log_path, max_bytes=max_bytes, backup_count=backup_count)

    def _backup(self, index: int) -> Path:
        return self.log_path.parent / f"{self.log_path.name}.{index}"

    def _maybe_rotate(self) -> None:
        if not self.log_path.exists():
            return
        if self.log_path.stat().st_size < self._max_bytes:
            return

        oldest = self._backup(self._backup_count)
        if oldest.exists():
            oldest.unlink()
        for i in range(self._backup_count - 1, 0, -1):
            if self._backup(i).exists():
                self._backup(i).rename(self._backup(i + 1))
        self.log_path.rename(self._backup(1))

    def log(self, event: AuditEvent) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._maybe_rotate()
        with open(self.log_path, "a") as f:
            f.write(event.model_dump_json() + "\n")
