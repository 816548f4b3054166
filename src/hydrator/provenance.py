"""Provenance marking and run audit records.

Two kinds of provenance live here:

1. The resource marker. Every resource this tool writes carries
   PROVENANCE_MARKER in a free-text field (description or notes). Delete
   mode only ever removes resources that carry it, so objects an
   administrator created by hand are never touched even when their names
   collide with a template.

2. The run record. Every run is stamped with tool version, tenant, mode,
   git metadata and outcome counts and logged as one structured entry,
   answering "what did the hydrator do to this tenant, and when?".
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, MutableMapping
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
TOOL_VERSION = os.environ.get("HYDRATOR_VERSION", "dev")

PROVENANCE_MARKER = "Imported by Intune Hydrator"


def has_marker(attributes: Mapping[str, Any] | None, marker_field: str) -> bool:
    """Check whether a remote object was written by this tool."""
    if not attributes:
        return False
    value = attributes.get(marker_field)
    return isinstance(value, str) and PROVENANCE_MARKER in value


def stamp_marker(payload: MutableMapping[str, Any], marker_field: str) -> None:
    """Append the provenance marker to a payload field, once."""
    current = payload.get(marker_field)
    text = current if isinstance(current, str) else ""
    if PROVENANCE_MARKER in text:
        return
    payload[marker_field] = f"{text} - {PROVENANCE_MARKER}" if text.strip() else PROVENANCE_MARKER


@dataclass
class RunProvenance:
    """Complete provenance record for a hydration run."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    tool_version: str = TOOL_VERSION
    tenant_id: str = ""
    environment: str = ""

    # Template source of truth
    git_commit_sha: str = ""
    git_branch: str = ""
    git_repo: str = ""
    templates_dir: str = ""

    # Run outcome
    mode: str = "create"
    dry_run: bool = False
    families: list[str] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)

    duration_seconds: float = 0.0

    error: str | None = None
    error_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class ProvenanceLogger:
    """Logs run provenance records for audit."""

    def __init__(self) -> None:
        self._git_commit_sha = os.environ.get("GIT_COMMIT_SHA", "")
        self._git_branch = os.environ.get("GIT_BRANCH", "")
        self._git_repo = os.environ.get("GIT_REPO", "")

    def create_provenance(
        self,
        tenant_id: str,
        environment: str,
        mode: str,
        dry_run: bool,
        templates_dir: str = "",
    ) -> RunProvenance:
        """Create a new provenance record for a run."""
        return RunProvenance(
            tool_version=TOOL_VERSION,
            tenant_id=tenant_id,
            environment=environment,
            git_commit_sha=self._git_commit_sha,
            git_branch=self._git_branch,
            git_repo=self._git_repo,
            templates_dir=templates_dir,
            mode=mode,
            dry_run=dry_run,
        )

    def log_provenance(self, provenance: RunProvenance) -> None:
        """Log a completed provenance record.

        Logged at ERROR when the run aborted, WARNING when items failed.
        """
        log_level = logging.INFO
        if provenance.error:
            log_level = logging.ERROR
        elif provenance.summary.get("failed"):
            log_level = logging.WARNING

        logger.log(
            log_level,
            "Hydration provenance",
            extra={
                "provenance": provenance.to_dict(),
                "tenant_id": provenance.tenant_id,
                "mode": provenance.mode,
                "dry_run": provenance.dry_run,
                "git_commit": provenance.git_commit_sha,
                "tool_version": provenance.tool_version,
                "duration_seconds": provenance.duration_seconds,
            },
        )


_provenance_logger: ProvenanceLogger | None = None


def get_provenance_logger() -> ProvenanceLogger:
    """Get the global provenance logger instance."""
    global _provenance_logger
    if _provenance_logger is None:
        _provenance_logger = ProvenanceLogger()
    return _provenance_logger
