"""Pydantic models for the settings file and typed templates.

These models provide:
1. Type-safe parsing of the settings file
2. Validation at the boundary (fail fast, fail loudly)
3. Typed schemas for the template families whose shape is fully known
   (groups, assignment filters). Other families pass through as generic
   JSON mappings because their schemas are owned by the service.
"""

from __future__ import annotations

import re
import uuid
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator

from .config import (
    FAMILY_ORDER,
    AuthMode,
    CloudEnvironment,
    HydrationMode,
    ReportFormat,
    UpdatePolicy,
)

# =============================================================================
# Settings File
# =============================================================================


class TenantSettings(BaseModel):
    """Target tenant."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    tenant_id: str = Field(alias="tenantId")
    environment: CloudEnvironment = CloudEnvironment.GLOBAL


class AuthenticationSettings(BaseModel):
    """How to authenticate against Graph.

    Secrets are deliberately absent: a client secret is only ever read from
    the environment.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    mode: AuthMode = AuthMode.INTERACTIVE
    client_id: str | None = Field(None, alias="clientId")
    certificate_path: str | None = Field(None, alias="certificatePath")


class OptionSettings(BaseModel):
    """Run behavior."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    mode: HydrationMode = HydrationMode.CREATE
    dry_run: bool = Field(False, alias="dryRun")
    force_update: bool = Field(False, alias="forceUpdate")
    update_policy: UpdatePolicy = Field(UpdatePolicy.UPDATE_ON_DIFF, alias="updatePolicy")
    name_prefix: str = Field("", alias="namePrefix")
    item_delay_seconds: Annotated[float, Field(ge=0, le=10, alias="itemDelaySeconds")] = 0.2
    check_licenses: bool = Field(True, alias="checkLicenses")


class ImportSettings(BaseModel):
    """Per-family enable toggles. Every family is enabled unless turned off."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    groups: bool = True
    filters: bool = True
    notifications: bool = True
    compliance: bool = True
    app_protection: bool = Field(True, alias="appProtection")
    enrollment: bool = True
    conditional_access: bool = Field(True, alias="conditionalAccess")
    mobile_apps: bool = Field(True, alias="mobileApps")

    def enabled_families(self) -> tuple[str, ...]:
        """Enabled family names, in hydration order."""
        toggles = {
            "groups": self.groups,
            "filters": self.filters,
            "notifications": self.notifications,
            "compliance": self.compliance,
            "app-protection": self.app_protection,
            "enrollment": self.enrollment,
            "conditional-access": self.conditional_access,
            "mobile-apps": self.mobile_apps,
        }
        return tuple(family for family in FAMILY_ORDER if toggles[family])


class ReportingSettings(BaseModel):
    """Report output location and formats."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    output_path: str = Field("reports", alias="outputPath")
    formats: list[ReportFormat] = Field(
        default_factory=lambda: [ReportFormat.MARKDOWN, ReportFormat.JSON]
    )


class SettingsFile(BaseModel):
    """Root of the settings file."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    tenant: TenantSettings
    authentication: AuthenticationSettings = Field(default_factory=AuthenticationSettings)
    options: OptionSettings = Field(default_factory=OptionSettings)
    imports: ImportSettings = Field(default_factory=ImportSettings)
    reporting: ReportingSettings = Field(default_factory=ReportingSettings)
    templates_path: str = Field("templates", alias="templatesPath")


# =============================================================================
# Typed Templates
# =============================================================================

MAX_MAIL_NICKNAME_LENGTH = 64


class GroupTemplate(BaseModel):
    """Security group template, dynamic or assigned."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    display_name: Annotated[str, Field(min_length=1, max_length=256, alias="displayName")]
    description: str = ""
    membership_rule: str | None = Field(None, alias="membershipRule")
    mail_nickname: str | None = Field(None, alias="mailNickname")
    group_types: list[str] | None = Field(None, alias="groupTypes")

    @field_validator("membership_rule")
    @classmethod
    def validate_membership_rule(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            raise ValueError("membershipRule must not be blank")
        return v

    @property
    def is_dynamic(self) -> bool:
        """Dynamic groups carry a membership rule."""
        return self.membership_rule is not None

    def to_payload(self) -> dict[str, Any]:
        """Convert to a Graph group creation body."""
        payload: dict[str, Any] = {
            "displayName": self.display_name,
            "description": self.description,
            "mailEnabled": False,
            "mailNickname": self.mail_nickname or mail_nickname_for(self.display_name),
            "securityEnabled": True,
        }
        if self.is_dynamic:
            group_types = list(self.group_types or [])
            if "DynamicMembership" not in group_types:
                group_types.append("DynamicMembership")
            payload["groupTypes"] = group_types
            payload["membershipRule"] = self.membership_rule
            payload["membershipRuleProcessingState"] = "On"
        else:
            payload["groupTypes"] = list(self.group_types or [])
        return payload


def mail_nickname_for(display_name: str) -> str:
    """Derive a mail nickname: ASCII letters and digits only, bounded length."""
    nickname = re.sub(r"[^A-Za-z0-9]", "", display_name)[:MAX_MAIL_NICKNAME_LENGTH]
    return nickname or f"group{uuid.uuid4().hex[:12]}"


VALID_FILTER_PLATFORMS = {
    "android",
    "androidForWork",
    "iOS",
    "macOS",
    "windows10AndLater",
    "androidWorkProfile",
    "androidAOSP",
    "androidMobileApplicationManagement",
    "iOSMobileApplicationManagement",
    "windowsMobileApplicationManagement",
}


class AssignmentFilterTemplate(BaseModel):
    """Assignment filter template."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    display_name: Annotated[str, Field(min_length=1, max_length=200, alias="displayName")]
    description: str = ""
    platform: str
    rule: Annotated[str, Field(min_length=1)]
    management_type: str | None = Field(None, alias="assignmentFilterManagementType")
    role_scope_tags: list[str] = Field(default_factory=lambda: ["0"], alias="roleScopeTags")

    @field_validator("platform")
    @classmethod
    def validate_platform(cls, v: str) -> str:
        if v not in VALID_FILTER_PLATFORMS:
            raise ValueError(f"platform must be one of {sorted(VALID_FILTER_PLATFORMS)}")
        return v

    def to_payload(self) -> dict[str, Any]:
        """Convert to a Graph assignment filter body."""
        payload: dict[str, Any] = {
            "displayName": self.display_name,
            "description": self.description,
            "platform": self.platform,
            "rule": self.rule,
            "roleScopeTags": list(self.role_scope_tags),
        }
        if self.management_type:
            payload["assignmentFilterManagementType"] = self.management_type
        return payload
