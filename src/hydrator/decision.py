"""Create / update / skip decision for one template item.

The decision is a pure function of what exists remotely, what the template
wants and the run policy. It performs no I/O, so the reconcilers can run it
unchanged in dry-run mode.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .cache import ExistingResourceRef
from .config import UpdatePolicy
from .diff_normalizer import DiffNormalizer


class UpsertAction(str, Enum):
    """Outcome of the upsert decision."""

    CREATE = "Create"
    UPDATE = "Update"
    SKIP = "Skip"


@dataclass(frozen=True)
class UpsertDecision:
    """The decided action and a human-readable reason for the report."""

    action: UpsertAction
    reason: str


_DEFAULT_NORMALIZER = DiffNormalizer()


def decide(
    existing: ExistingResourceRef | None,
    desired: Mapping[str, Any],
    force_update: bool,
    *,
    policy: UpdatePolicy = UpdatePolicy.UPDATE_ON_DIFF,
    excluded_fields: Iterable[str] = (),
    resource_type: str = "*",
    normalizer: DiffNormalizer | None = None,
) -> UpsertDecision:
    """Decide what to do with a template item.

    Rules, in order:
    1. Nothing exists under the name: create.
    2. force_update is set: update unconditionally.
    3. The existing object already satisfies the desired payload: skip.
    4. Otherwise the update policy decides. When the existing attributes
       are unknown the objects cannot be compared and the policy decides.

    Args:
        existing: Existing remote resource, or None if absent.
        desired: Payload the template would send.
        force_update: Update even when nothing differs.
        policy: Tie-break for rule 4.
        excluded_fields: Family-specific keys left out of the comparison.
        resource_type: Resource type used for normalization rule matching.
        normalizer: Comparison engine, defaults to the standard rules.

    Returns:
        The decision.
    """
    if existing is None:
        return UpsertDecision(UpsertAction.CREATE, "Not found")

    if force_update:
        return UpsertDecision(UpsertAction.UPDATE, "Force update requested")

    difference: str | None = None
    if existing.attributes is not None:
        normalizer = normalizer or _DEFAULT_NORMALIZER
        difference = normalizer.find_difference(
            existing.attributes, desired, resource_type, excluded_fields
        )
        if difference is None:
            return UpsertDecision(UpsertAction.SKIP, "Already exists and matches template")

    detail = f"differs at {difference}" if difference else "existing state unknown"
    if policy == UpdatePolicy.SKIP_UNLESS_FORCED:
        return UpsertDecision(UpsertAction.SKIP, f"Already exists ({detail}); update not forced")
    return UpsertDecision(UpsertAction.UPDATE, f"Drift detected ({detail})")
