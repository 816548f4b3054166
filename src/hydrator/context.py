"""Run-scoped hydration state.

One RunContext is created when a run starts and passed explicitly to
everything that needs it. It is discarded when the process exits; nothing
here is persisted between runs.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .config import CloudEnvironment
from .results import ResultRecord, ResultSummary, summarize


@dataclass
class RunContext:
    """State of one hydration run.

    Attributes:
        tenant_id: Tenant being hydrated.
        environment: Cloud the tenant lives in.
        connected: Set once the prerequisite gate has passed.
        started_at: Run start (UTC).
    """

    tenant_id: str
    environment: CloudEnvironment = CloudEnvironment.GLOBAL
    connected: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    _results: dict[str, list[ResultRecord]] = field(default_factory=dict, repr=False)

    def add_results(self, category: str, records: Iterable[ResultRecord]) -> None:
        """Append records to a category. Records are never removed."""
        self._results.setdefault(category, []).extend(records)

    @property
    def categories(self) -> list[str]:
        """Categories in the order they first received results."""
        return list(self._results)

    def results_for(self, category: str) -> list[ResultRecord]:
        """Records of one category, as a copy."""
        return list(self._results.get(category, []))

    def all_results(self) -> list[ResultRecord]:
        """Every record of the run, in category order."""
        return [record for records in self._results.values() for record in records]

    def summary(self, category: str | None = None) -> ResultSummary:
        """Summary of the whole run or of one category."""
        if category is not None:
            return summarize(self._results.get(category, []))
        return summarize(self.all_results())

    @property
    def success(self) -> bool:
        """False if and only if at least one item failed."""
        return self.summary().success

    @property
    def duration_seconds(self) -> float:
        """Seconds elapsed since the run started."""
        return (datetime.now(UTC) - self.started_at).total_seconds()
