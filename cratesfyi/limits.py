"""Sandbox limits applied to documentation builds."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy import text


def scale(value: int, interval: int, labels) -> str:
    """Express ``value`` in the largest unit of ``labels`` it reaches."""
    labels = list(labels)
    chosen = labels[0]
    for label in labels[1:]:
        if value / interval >= 1.0:
            chosen = label
            value //= interval
        else:
            break
    return f"{value} {chosen}"


@dataclass
class Limits:
    """Memory, time, network and log-size limits of one build."""

    memory: int = 3 * 1024 * 1024 * 1024
    timeout: timedelta = field(default_factory=lambda: timedelta(minutes=15))
    networking: bool = False
    max_log_size: int = 100 * 1024

    @classmethod
    def for_crate(cls, conn, name: str) -> Limits:
        """Defaults, overridden by the crate's row in ``sandbox_overrides``."""
        limits = cls()
        row = (
            conn.execute(
                text("SELECT * FROM sandbox_overrides WHERE crate_name = :name"),
                {"name": name},
            )
            .mappings()
            .first()
        )
        if row is not None:
            if row["max_memory_bytes"] is not None:
                limits.memory = int(row["max_memory_bytes"])
            if row["timeout_seconds"] is not None:
                limits.timeout = timedelta(seconds=int(row["timeout_seconds"]))
        return limits

    def for_website(self) -> dict[str, str]:
        """Human-readable limits, keyed by description in sorted order."""
        time_labels = ["seconds", "minutes", "hours"]
        size_labels = ["bytes", "KB", "MB", "GB"]
        entries = {
            "Available RAM": scale(self.memory, 1024, size_labels),
            "Maximum rustdoc execution time": scale(
                int(self.timeout.total_seconds()), 60, time_labels
            ),
            "Maximum size of a build log": scale(self.max_log_size, 1024, size_labels),
            "Network access": "allowed" if self.networking else "blocked",
        }
        return dict(sorted(entries.items()))