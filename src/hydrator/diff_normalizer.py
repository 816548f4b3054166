"""Diff normalization for desired-versus-existing comparisons.

Microsoft Graph returns objects that are syntactically different from the
templates that created them even when nothing has drifted:

1. Server-assigned fields (id, timestamps, version) that templates never carry
2. Properties the service adds with default values the template omitted
3. null vs [] vs {} vs missing for empty collections
4. Case differences in enum values ("Disabled" vs "disabled")
5. Boolean flags rendered as strings

The comparison is desired-driven: only keys the template mentions are
compared, so properties the service fills in do not count as drift. The
remaining differences are normalized through path-matched rules before
values are compared.
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# Fields the service assigns or computes. Never part of a comparison and
# never sent upstream.
SERVER_ASSIGNED_FIELDS: frozenset[str] = frozenset(
    {
        "id",
        "createdDateTime",
        "lastModifiedDateTime",
        "modifiedDateTime",
        "renewedDateTime",
        "deletedDateTime",
        "version",
        "@odata.context",
        "@odata.etag",
        "@odata.id",
        "assignments",
        "isAssigned",
        "supportsScopeTags",
        "deviceStatusOverview",
        "userStatusOverview",
        "deployedAppCount",
        "dependentAppCount",
        "supersedingAppCount",
        "supersededAppCount",
        "uploadState",
        "publishingState",
        "isPublished",
        "largeIcon",
        "assignedDevicesCount",
        "settingCount",
        "creationSource",
        "priorityMetaData",
    }
)


class NormalizationType(str, Enum):
    """Types of normalization operations."""

    # Empty equivalence: [], {}, "", null, missing are equivalent
    EMPTY_EQUIVALENCE = "empty_equivalence"

    # Boolean normalization: "true", "True", True are equivalent
    BOOLEAN_NORMALIZE = "boolean_normalize"

    # Case normalization for enums/discriminators
    CASE_INSENSITIVE = "case_insensitive"

    # Array order independence
    ARRAY_UNORDERED = "array_unordered"


@dataclass(frozen=True)
class NormalizationRule:
    """A single normalization rule.

    Attributes:
        resource_type: Resource type to match (family name or OData type, supports wildcards)
        path_pattern: Property path pattern, "/" separated ("*" one segment, "**" any)
        normalization_type: Type of normalization to apply
        reason: Human-readable explanation
    """

    resource_type: str
    path_pattern: str
    normalization_type: NormalizationType
    reason: str = ""

    def matches(self, resource_type: str, path: str) -> bool:
        """Check if this rule applies to a resource and path."""
        if self.resource_type != "*" and not fnmatch.fnmatch(
            resource_type.lower(), self.resource_type.lower()
        ):
            return False
        path_parts = [p for p in path.split("/") if p]
        pattern_parts = [p for p in self.path_pattern.split("/") if p]
        return _match_parts(path_parts, pattern_parts)


def _match_parts(path_parts: list[str], pattern_parts: list[str]) -> bool:
    """Recursively match path segments against pattern segments."""
    if not pattern_parts:
        return not path_parts
    if pattern_parts[0] == "**":
        if len(pattern_parts) == 1:
            return True
        return any(
            _match_parts(path_parts[i:], pattern_parts[1:]) for i in range(len(path_parts) + 1)
        )
    if not path_parts:
        return False
    if pattern_parts[0] == "*" or fnmatch.fnmatch(path_parts[0].lower(), pattern_parts[0].lower()):
        return _match_parts(path_parts[1:], pattern_parts[1:])
    return False


DEFAULT_NORMALIZATION_RULES: list[NormalizationRule] = [
    NormalizationRule(
        resource_type="*",
        path_pattern="**",
        normalization_type=NormalizationType.EMPTY_EQUIVALENCE,
        reason="Empty collections and null are interchangeable in Graph responses",
    ),
    NormalizationRule(
        resource_type="*",
        path_pattern="**/@odata.type",
        normalization_type=NormalizationType.CASE_INSENSITIVE,
        reason="OData type names are case-insensitive",
    ),
    NormalizationRule(
        resource_type="*",
        path_pattern="**/state",
        normalization_type=NormalizationType.CASE_INSENSITIVE,
        reason="State values may have case variations",
    ),
    NormalizationRule(
        resource_type="*",
        path_pattern="**/*Enabled",
        normalization_type=NormalizationType.BOOLEAN_NORMALIZE,
        reason="Boolean flags may be string or bool",
    ),
    NormalizationRule(
        resource_type="*",
        path_pattern="**/roleScopeTagIds",
        normalization_type=NormalizationType.ARRAY_UNORDERED,
        reason="Scope tag order doesn't matter",
    ),
    NormalizationRule(
        resource_type="*",
        path_pattern="**/groupTypes",
        normalization_type=NormalizationType.ARRAY_UNORDERED,
        reason="Group type order doesn't matter",
    ),
]


@dataclass
class DiffNormalizer:
    """Compares a desired payload against an existing remote object.

    Attributes:
        rules: Normalization rules, applied in order.
    """

    rules: list[NormalizationRule] = field(
        default_factory=lambda: list(DEFAULT_NORMALIZATION_RULES)
    )

    def normalize_value(self, value: Any, resource_type: str, path: str) -> Any:
        """Normalize a value based on applicable rules."""
        normalized = value
        for rule in self.rules:
            if rule.matches(resource_type, path):
                normalized = _apply_normalization(normalized, rule.normalization_type)
        return normalized

    def find_difference(
        self,
        existing: Mapping[str, Any],
        desired: Mapping[str, Any],
        resource_type: str = "*",
        excluded_fields: Iterable[str] = (),
    ) -> str | None:
        """Find the first property where existing does not satisfy desired.

        Args:
            existing: Remote object as returned by the service.
            desired: Payload the template would send.
            resource_type: Family or OData type used for rule matching.
            excluded_fields: Keys ignored at every depth, in addition to
                SERVER_ASSIGNED_FIELDS.

        Returns:
            "/"-separated path of the first difference, or None when equivalent.
        """
        excluded = SERVER_ASSIGNED_FIELDS | frozenset(excluded_fields)
        return self._diff(existing, desired, resource_type, "", excluded)

    def are_equivalent(
        self,
        existing: Mapping[str, Any],
        desired: Mapping[str, Any],
        resource_type: str = "*",
        excluded_fields: Iterable[str] = (),
    ) -> bool:
        """Check if existing already satisfies desired."""
        return self.find_difference(existing, desired, resource_type, excluded_fields) is None

    def _diff(
        self,
        existing: Any,
        desired: Any,
        resource_type: str,
        path: str,
        excluded: frozenset[str],
    ) -> str | None:
        normalized_desired = self.normalize_value(desired, resource_type, path)
        normalized_existing = self.normalize_value(existing, resource_type, path)

        if isinstance(normalized_desired, Mapping):
            if normalized_existing is None:
                normalized_existing = {}
            if not isinstance(normalized_existing, Mapping):
                return path or "/"
            for key, value in normalized_desired.items():
                if key in excluded:
                    continue
                child_path = f"{path}/{key}"
                difference = self._diff(
                    normalized_existing.get(key), value, resource_type, child_path, excluded
                )
                if difference is not None:
                    return difference
            return None

        if isinstance(normalized_desired, list):
            if not isinstance(normalized_existing, list):
                return path or "/"
            if len(normalized_existing) != len(normalized_desired):
                return path or "/"
            for index, (have, want) in enumerate(
                zip(normalized_existing, normalized_desired, strict=True)
            ):
                difference = self._diff(have, want, resource_type, f"{path}/{index}", excluded)
                if difference is not None:
                    return difference
            return None

        if normalized_existing != normalized_desired:
            return path or "/"
        return None


def _apply_normalization(value: Any, normalization_type: NormalizationType) -> Any:
    match normalization_type:
        case NormalizationType.EMPTY_EQUIVALENCE:
            return _normalize_empty(value)
        case NormalizationType.BOOLEAN_NORMALIZE:
            return _normalize_boolean(value)
        case NormalizationType.CASE_INSENSITIVE:
            return value.lower() if isinstance(value, str) else value
        case NormalizationType.ARRAY_UNORDERED:
            return _normalize_array_order(value)
        case _:
            return value


def _normalize_empty(value: Any) -> Any:
    """Normalize empty values to None.

    [], {}, "", null all become None for comparison.
    """
    if isinstance(value, str | list | tuple | dict) and len(value) == 0:
        return None
    return value


def _normalize_boolean(value: Any) -> Any:
    """Normalize boolean-like strings to actual booleans."""
    if isinstance(value, str):
        if value.lower() == "true":
            return True
        if value.lower() == "false":
            return False
    return value


def _normalize_array_order(value: Any) -> Any:
    """Sort arrays of scalars so order is irrelevant."""
    if isinstance(value, list):
        try:
            return sorted(value, key=lambda x: str(x))
        except TypeError:
            return value
    return value
