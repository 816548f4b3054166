"""Per-item outcome records and their aggregation."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ResultAction(str, Enum):
    """What happened (or would have happened) to one template item."""

    CREATED = "Created"
    UPDATED = "Updated"
    SKIPPED = "Skipped"
    FAILED = "Failed"
    DELETED = "Deleted"
    WOULD_CREATE = "WouldCreate"
    WOULD_UPDATE = "WouldUpdate"
    WOULD_DELETE = "WouldDelete"


@dataclass(frozen=True)
class ResultRecord:
    """Outcome of processing a single template item.

    Records are created once and never modified; a run only appends them.

    Attributes:
        name: Display name of the resource (after any name prefix).
        resource_type: Family label or OData type of the resource.
        action: The outcome.
        status: Free-text detail, the error message for failures.
        timestamp: When the outcome was recorded (UTC).
        path: Template file the item came from.
        id: Remote identifier when known.
        platform: Target platform for platform-scoped resources.
        state: Resulting state for stateful resources (conditional access).
    """

    name: str
    resource_type: str
    action: ResultAction
    status: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    path: str | None = None
    id: str | None = None
    platform: str | None = None
    state: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "type": self.resource_type,
            "action": self.action.value,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "path": self.path,
            "id": self.id,
            "platform": self.platform,
            "state": self.state,
        }


@dataclass(frozen=True)
class ResultSummary:
    """Counts of outcomes by action."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    deleted: int = 0
    would_create: int = 0
    would_update: int = 0
    would_delete: int = 0

    @property
    def total(self) -> int:
        """Number of records summarized."""
        return (
            self.created
            + self.updated
            + self.skipped
            + self.failed
            + self.deleted
            + self.would_create
            + self.would_update
            + self.would_delete
        )

    @property
    def success(self) -> bool:
        """A run succeeds when no item failed."""
        return self.failed == 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "deleted": self.deleted,
            "would_create": self.would_create,
            "would_update": self.would_update,
            "would_delete": self.would_delete,
            "total": self.total,
            "success": self.success,
        }


def summarize(records: Iterable[ResultRecord]) -> ResultSummary:
    """Tally records by action."""
    counts = Counter(record.action for record in records)
    return ResultSummary(
        created=counts[ResultAction.CREATED],
        updated=counts[ResultAction.UPDATED],
        skipped=counts[ResultAction.SKIPPED],
        failed=counts[ResultAction.FAILED],
        deleted=counts[ResultAction.DELETED],
        would_create=counts[ResultAction.WOULD_CREATE],
        would_update=counts[ResultAction.WOULD_UPDATE],
        would_delete=counts[ResultAction.WOULD_DELETE],
    )
