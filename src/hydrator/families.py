"""Per-family reconcilers and the family registry.

Each family declares its endpoints, provenance field and read-only
properties, and overrides the reconciler hooks where Graph needs a
structural fixup. The registry maps family names (as used in settings and
on the command line) to reconciler classes.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .cache import ExistingResourceRef
from .copying import deep_copy
from .diff_normalizer import SERVER_ASSIGNED_FIELDS, DiffNormalizer
from .graph_client import API_V1
from .models import AssignmentFilterTemplate, GroupTemplate
from .reconciler import Endpoint, Reconciler

logger = logging.getLogger(__name__)


def _typed(table: Mapping[str, Endpoint]) -> dict[str, Endpoint]:
    """Key an @odata.type table case-insensitively."""
    return {odata_type.lower(): endpoint for odata_type, endpoint in table.items()}


# =============================================================================
# Groups and filters (typed schemas)
# =============================================================================


class GroupReconciler(Reconciler):
    """Security groups, dynamic or assigned."""

    category = "Groups"
    directory = "groups"
    resource_type = "group"
    default_endpoint = Endpoint("groups", api_version=API_V1)
    # Generated nicknames are not stable across runs
    update_exclusions = frozenset({"mailNickname"})

    def apply_fixups(self, payload: dict[str, Any], endpoint: Endpoint) -> dict[str, Any]:
        return GroupTemplate.model_validate(payload).to_payload()


class FilterReconciler(Reconciler):
    """Assignment filters."""

    category = "Filters"
    directory = "filters"
    resource_type = "assignmentFilter"
    default_endpoint = Endpoint("deviceManagement/assignmentFilters")
    # Graph rejects platform changes on existing filters
    update_exclusions = frozenset({"platform"})

    def apply_fixups(self, payload: dict[str, Any], endpoint: Endpoint) -> dict[str, Any]:
        return AssignmentFilterTemplate.model_validate(payload).to_payload()

    def platform_of(self, body: Mapping[str, Any], endpoint: Endpoint | None) -> str | None:
        platform = body.get("platform")
        return platform if isinstance(platform, str) else None


# =============================================================================
# Notification message templates
# =============================================================================


class NotificationReconciler(Reconciler):
    """Compliance notification message templates.

    Localized messages cannot be created inline; they are written to the
    template's sub-collection once the template exists, and compared by
    locale on later runs.
    """

    category = "NotificationTemplates"
    directory = "notifications"
    resource_type = "notificationMessageTemplate"
    default_endpoint = Endpoint("deviceManagement/notificationMessageTemplates")
    read_only_fields = frozenset({"localizedNotificationMessages"})

    def child_drift(
        self, existing: ExistingResourceRef, body: Mapping[str, Any], endpoint: Endpoint
    ) -> str | None:
        plan = self._message_plan(existing.remote_id, body, endpoint)
        if not plan:
            return None
        return f"/localizedNotificationMessages/{plan[0][1].get('locale')}"

    def sync_children(self, remote_id: str, body: Mapping[str, Any], endpoint: Endpoint) -> None:
        collection = f"{endpoint.item_path(remote_id)}/localizedNotificationMessages"
        plan = self._message_plan(remote_id, body, endpoint)
        for message_id, payload in plan:
            if message_id:
                self._graph.patch(
                    f"{collection}/{message_id}", payload, api_version=endpoint.api_version
                )
            else:
                self._graph.post(collection, payload, api_version=endpoint.api_version)
        if plan:
            logger.debug(
                "Wrote localized notification messages",
                extra={"template_id": remote_id, "message_count": len(plan)},
            )

    def _message_plan(
        self, remote_id: str, body: Mapping[str, Any], endpoint: Endpoint
    ) -> list[tuple[str | None, dict[str, Any]]]:
        """Messages to write as (existing message id or None, payload)."""
        desired = []
        for message in body.get("localizedNotificationMessages") or []:
            if isinstance(message, Mapping):
                desired.append(
                    {k: v for k, v in deep_copy(message).items() if k not in SERVER_ASSIGNED_FIELDS}
                )
        if not desired:
            return []

        current = {
            str(m.get("locale", "")).lower(): m
            for m in self._graph.list_all(
                f"{endpoint.item_path(remote_id)}/localizedNotificationMessages",
                api_version=endpoint.api_version,
            )
        }
        normalizer = DiffNormalizer()
        plan: list[tuple[str | None, dict[str, Any]]] = []
        for payload in desired:
            have = current.get(str(payload.get("locale", "")).lower())
            if have is None:
                plan.append((None, payload))
            elif not normalizer.are_equivalent(have, payload, self.resource_type):
                plan.append((have.get("id"), payload))
        return plan


# =============================================================================
# Compliance policies
# =============================================================================

_DEVICE_COMPLIANCE = "deviceManagement/deviceCompliancePolicies"

BLOCK_ACTION: dict[str, Any] = {
    "actionType": "block",
    "gracePeriodHours": 0,
    "notificationTemplateId": "",
    "notificationMessageCCList": [],
}


def normalize_scheduled_actions(rules: Any) -> list[dict[str, Any]]:
    """Normalize compliance scheduled actions for a create request.

    Graph requires at least one rule with a block action. Identifiers from
    exported policies are dropped; a missing block action is added.
    """
    normalized: list[dict[str, Any]] = []
    for rule in rules if isinstance(rules, list) else []:
        if not isinstance(rule, Mapping):
            continue
        configurations = [
            {k: v for k, v in deep_copy(config).items() if k not in SERVER_ASSIGNED_FIELDS}
            for config in rule.get("scheduledActionConfigurations") or []
            if isinstance(config, Mapping)
        ]
        if not any(c.get("actionType") == "block" for c in configurations):
            configurations.insert(0, dict(BLOCK_ACTION, notificationMessageCCList=[]))
        normalized.append(
            {
                "ruleName": rule.get("ruleName") or "PasswordRequired",
                "scheduledActionConfigurations": configurations,
            }
        )

    if not normalized:
        normalized.append(
            {
                "ruleName": "PasswordRequired",
                "scheduledActionConfigurations": [dict(BLOCK_ACTION, notificationMessageCCList=[])],
            }
        )
    return normalized


class ComplianceReconciler(Reconciler):
    """Device compliance policies, per platform and settings catalog."""

    category = "CompliancePolicies"
    directory = "compliance"
    resource_type = "compliancePolicy"
    typed_endpoints = _typed(
        {
            "#microsoft.graph.windows10CompliancePolicy": Endpoint(_DEVICE_COMPLIANCE, platform="Windows"),
            "#microsoft.graph.iosCompliancePolicy": Endpoint(_DEVICE_COMPLIANCE, platform="iOS"),
            "#microsoft.graph.macOSCompliancePolicy": Endpoint(_DEVICE_COMPLIANCE, platform="macOS"),
            "#microsoft.graph.androidCompliancePolicy": Endpoint(_DEVICE_COMPLIANCE, platform="Android"),
            "#microsoft.graph.androidWorkProfileCompliancePolicy": Endpoint(
                _DEVICE_COMPLIANCE, platform="Android"
            ),
            "#microsoft.graph.androidDeviceOwnerCompliancePolicy": Endpoint(
                _DEVICE_COMPLIANCE, platform="Android"
            ),
            "#microsoft.graph.aospDeviceOwnerCompliancePolicy": Endpoint(
                _DEVICE_COMPLIANCE, platform="Android"
            ),
            "#microsoft.graph.deviceManagementCompliancePolicy": Endpoint(
                "deviceManagement/compliancePolicies",
                name_field="name",
                update_method="PUT",
            ),
        }
    )
    # Scheduled actions have their own sub-resources once the policy exists
    update_exclusions = frozenset({"scheduledActionsForRule"})

    def apply_fixups(self, payload: dict[str, Any], endpoint: Endpoint) -> dict[str, Any]:
        payload["scheduledActionsForRule"] = normalize_scheduled_actions(
            payload.get("scheduledActionsForRule")
        )
        return payload

    def platform_of(self, body: Mapping[str, Any], endpoint: Endpoint | None) -> str | None:
        if endpoint is not None and endpoint.platform:
            return endpoint.platform
        platforms = body.get("platforms")
        return platforms if isinstance(platforms, str) else None


# =============================================================================
# App protection and enrollment
# =============================================================================


class AppProtectionReconciler(Reconciler):
    """Managed app protection (MAM) policies.

    Targeted apps are set through the targetApps action, which replaces the
    policy's app list, after every create or update. On later runs the
    listed apps are compared with the template by app identifier.
    """

    category = "AppProtection"
    directory = "app-protection"
    resource_type = "managedAppProtection"
    typed_endpoints = _typed(
        {
            "#microsoft.graph.iosManagedAppProtection": Endpoint(
                "deviceAppManagement/iosManagedAppProtections", platform="iOS"
            ),
            "#microsoft.graph.androidManagedAppProtection": Endpoint(
                "deviceAppManagement/androidManagedAppProtections", platform="Android"
            ),
            "#microsoft.graph.windowsManagedAppProtection": Endpoint(
                "deviceAppManagement/windowsManagedAppProtections", platform="Windows"
            ),
        }
    )
    read_only_fields = frozenset({"apps"})

    def child_drift(
        self, existing: ExistingResourceRef, body: Mapping[str, Any], endpoint: Endpoint
    ) -> str | None:
        targets = _target_apps(body)
        if not targets:
            return None
        listed = self._graph.list_all(
            f"{endpoint.item_path(existing.remote_id)}/apps", api_version=endpoint.api_version
        )
        if sorted(map(_app_identity, listed)) != sorted(map(_app_identity, targets)):
            return "/apps"
        return None

    def sync_children(self, remote_id: str, body: Mapping[str, Any], endpoint: Endpoint) -> None:
        targets = _target_apps(body)
        if not targets:
            return
        self._graph.post(
            f"{endpoint.item_path(remote_id)}/targetApps",
            {"apps": targets},
            api_version=endpoint.api_version,
        )


def _target_apps(body: Mapping[str, Any]) -> list[dict[str, Any]]:
    apps = body.get("apps")
    if not isinstance(apps, list):
        return []
    return [
        {k: v for k, v in deep_copy(app).items() if k != "id"}
        for app in apps
        if isinstance(app, Mapping)
    ]


def _app_identity(app: Mapping[str, Any]) -> tuple[tuple[str, str], ...]:
    """Comparable form of an app's mobileAppIdentifier."""
    identifier = app.get("mobileAppIdentifier")
    if not isinstance(identifier, Mapping):
        return ()
    return tuple(sorted((k, str(v).lower()) for k, v in identifier.items()))


class EnrollmentReconciler(Reconciler):
    """Autopilot deployment profiles and enrollment status page configurations."""

    category = "EnrollmentProfiles"
    directory = "enrollment"
    resource_type = "enrollmentProfile"
    typed_endpoints = _typed(
        {
            "#microsoft.graph.azureADWindowsAutopilotDeploymentProfile": Endpoint(
                "deviceManagement/windowsAutopilotDeploymentProfiles", platform="Windows"
            ),
            "#microsoft.graph.activeDirectoryWindowsAutopilotDeploymentProfile": Endpoint(
                "deviceManagement/windowsAutopilotDeploymentProfiles", platform="Windows"
            ),
            "#microsoft.graph.windows10EnrollmentCompletionPageConfiguration": Endpoint(
                "deviceManagement/deviceEnrollmentConfigurations", platform="Windows"
            ),
        }
    )
    # Assigned by the service in creation order
    read_only_fields = frozenset({"priority"})


# =============================================================================
# Conditional access
# =============================================================================

CA_DISABLED = "disabled"


class ConditionalAccessReconciler(Reconciler):
    """Conditional access policies.

    SAFETY: Policies are always created disabled, whatever the template
    says. An administrator enables them after review. Existing policies
    never have their state changed.

    Conditional access policies have no free-text field for the provenance
    marker. A policy counts as created by this tool when it matches a
    template by name and is still in the disabled state it was created in;
    enabled policies are never deleted.
    """

    category = "ConditionalAccess"
    directory = "conditional-access"
    resource_type = "conditionalAccessPolicy"
    default_endpoint = Endpoint("identity/conditionalAccess/policies", api_version=API_V1)
    marker_field = None
    read_only_fields = frozenset({"templateId"})
    update_exclusions = frozenset({"state"})

    def apply_fixups(self, payload: dict[str, Any], endpoint: Endpoint) -> dict[str, Any]:
        requested = payload.get("state")
        if requested and str(requested).lower() != CA_DISABLED:
            logger.info(
                "Conditional access policy will be created disabled",
                extra={"policy": payload.get("displayName"), "requested_state": requested},
            )
        payload["state"] = CA_DISABLED
        return payload

    def is_owned(self, existing: ExistingResourceRef) -> bool:
        state = (existing.attributes or {}).get("state")
        return isinstance(state, str) and state.lower() == CA_DISABLED

    def state_of(self, attributes: Mapping[str, Any] | None) -> str | None:
        state = (attributes or {}).get("state")
        return state if isinstance(state, str) else None


# =============================================================================
# Mobile apps
# =============================================================================

_MOBILE_APPS = "deviceAppManagement/mobileApps"

# Identify an app independently of its display name
SECONDARY_APP_KEYS: tuple[str, ...] = ("packageIdentifier", "bundleId", "packageId", "appStoreUrl")


class MobileAppReconciler(Reconciler):
    """Store and web apps in the app catalog.

    Apps carry the provenance marker in notes. Existing apps are also
    matched by package identity so a renamed app is not added twice.
    """

    category = "MobileApps"
    directory = "mobile-apps"
    resource_type = "mobileApp"
    marker_field = "notes"
    typed_endpoints = _typed(
        {
            "#microsoft.graph.winGetApp": Endpoint(_MOBILE_APPS, platform="Windows"),
            "#microsoft.graph.windowsMicrosoftEdgeApp": Endpoint(_MOBILE_APPS, platform="Windows"),
            "#microsoft.graph.officeSuiteApp": Endpoint(_MOBILE_APPS, platform="Windows"),
            "#microsoft.graph.macOSMicrosoftEdgeApp": Endpoint(_MOBILE_APPS, platform="macOS"),
            "#microsoft.graph.macOSOfficeSuiteApp": Endpoint(_MOBILE_APPS, platform="macOS"),
            "#microsoft.graph.iosStoreApp": Endpoint(_MOBILE_APPS, platform="iOS"),
            "#microsoft.graph.iosVppApp": Endpoint(_MOBILE_APPS, platform="iOS"),
            "#microsoft.graph.androidManagedStoreApp": Endpoint(_MOBILE_APPS, platform="Android"),
            "#microsoft.graph.androidStoreApp": Endpoint(_MOBILE_APPS, platform="Android"),
            "#microsoft.graph.webApp": Endpoint(_MOBILE_APPS, platform="Web"),
        }
    )

    def find_existing(
        self, name: str, body: Mapping[str, Any], endpoint: Endpoint
    ) -> ExistingResourceRef | None:
        found = super().find_existing(name, body, endpoint)
        if found is not None:
            return found

        keys = {k: body[k] for k in SECONDARY_APP_KEYS if isinstance(body.get(k), str) and body[k]}
        if not keys:
            return None

        def same_package(ref: ExistingResourceRef) -> bool:
            attributes = ref.attributes or {}
            return any(attributes.get(k) == v for k, v in keys.items())

        return self._cache_for(endpoint).find(same_package)


# =============================================================================
# Registry
# =============================================================================

RECONCILERS: dict[str, type[Reconciler]] = {
    "groups": GroupReconciler,
    "filters": FilterReconciler,
    "notifications": NotificationReconciler,
    "compliance": ComplianceReconciler,
    "app-protection": AppProtectionReconciler,
    "enrollment": EnrollmentReconciler,
    "conditional-access": ConditionalAccessReconciler,
    "mobile-apps": MobileAppReconciler,
}


def endpoints_of(reconciler_cls: type[Reconciler]) -> list[tuple[str, Endpoint]]:
    """(type, endpoint) pairs of a family, for listings."""
    if reconciler_cls.typed_endpoints:
        return sorted(reconciler_cls.typed_endpoints.items())
    if reconciler_cls.default_endpoint is not None:
        return [("*", reconciler_cls.default_endpoint)]
    return []
