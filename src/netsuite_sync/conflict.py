"""
Conflict resolution between local and remote copies of a record.

Pure and deterministic: given a strategy and the two last-modified
timestamps, decide which side wins.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from netsuite_sync.models import ConflictStrategy


class Resolution(str, Enum):
    USE_LOCAL = "use_local"
    USE_REMOTE = "use_remote"
    FLAG_MANUAL = "flag_manual"


@dataclass(frozen=True)
class ConflictResult:
    resolution: Resolution
    reason: str


Timestamp = str | datetime | None


def parse_timestamp(value: Timestamp) -> datetime | None:
    """
    Parse an ISO-8601 timestamp into an aware datetime.

    Naive values are taken as UTC. Empty or unparseable values return None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def resolve_conflict(
    strategy: ConflictStrategy | str,
    local_modified: Timestamp,
    remote_modified: Timestamp,
) -> ConflictResult:
    """
    Decide which side wins when both copies changed since the last sync.

    remote_wins / local_wins are unconditional and manual always flags.
    newest_wins compares timestamps: a missing local timestamp defers to
    remote, a missing remote timestamp defers to local, and ties go to
    remote.
    """
    strategy = ConflictStrategy(strategy)

    if strategy == ConflictStrategy.REMOTE_WINS:
        return ConflictResult(Resolution.USE_REMOTE, "Remote wins strategy applied")
    if strategy == ConflictStrategy.LOCAL_WINS:
        return ConflictResult(Resolution.USE_LOCAL, "Local wins strategy applied")
    if strategy == ConflictStrategy.MANUAL:
        return ConflictResult(Resolution.FLAG_MANUAL, "Flagged for manual review")

    local_time = parse_timestamp(local_modified)
    remote_time = parse_timestamp(remote_modified)

    if local_time is None and remote_time is None:
        return ConflictResult(
            Resolution.USE_REMOTE, "No timestamps available, defaulting to remote"
        )
    if local_time is None:
        return ConflictResult(Resolution.USE_REMOTE, "No local timestamp")
    if remote_time is None:
        return ConflictResult(Resolution.USE_LOCAL, "No remote timestamp")

    if remote_time >= local_time:
        return ConflictResult(
            Resolution.USE_REMOTE,
            f"Remote is newer ({remote_modified} >= {local_modified})",
        )
    return ConflictResult(
        Resolution.USE_LOCAL,
        f"Local is newer ({local_modified} > {remote_modified})",
    )
