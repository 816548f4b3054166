"""Tests for settings and typed template models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from hydrator.config import FAMILY_ORDER, AuthMode, ReportFormat
from hydrator.models import (
    AssignmentFilterTemplate,
    GroupTemplate,
    ImportSettings,
    SettingsFile,
    mail_nickname_for,
)


class TestSettingsFile:
    """Tests for SettingsFile model."""

    def test_defaults(self) -> None:
        settings = SettingsFile.model_validate({"tenant": {"tenantId": "t"}})

        assert settings.authentication.mode == AuthMode.INTERACTIVE
        assert settings.options.item_delay_seconds == 0.2
        assert settings.templates_path == "templates"
        assert settings.reporting.formats == [ReportFormat.MARKDOWN, ReportFormat.JSON]

    def test_unknown_top_level_keys_ignored(self) -> None:
        SettingsFile.model_validate({"tenant": {"tenantId": "t"}, "comment": "baseline"})

    def test_all_families_enabled_by_default(self) -> None:
        assert ImportSettings().enabled_families() == FAMILY_ORDER

    def test_disabled_families_keep_order(self) -> None:
        imports = ImportSettings.model_validate({"groups": False, "appProtection": False})

        families = imports.enabled_families()
        assert "groups" not in families
        assert "app-protection" not in families
        assert list(families) == [f for f in FAMILY_ORDER if f in families]

    def test_unknown_family_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ImportSettings.model_validate({"printers": True})


class TestGroupTemplate:
    """Tests for GroupTemplate model."""

    def test_dynamic_group(self) -> None:
        group = GroupTemplate.model_validate(
            {"displayName": "Corp iPhones", "membershipRule": '(device.deviceOSType -eq "iPhone")',
             "groupTypes": ["Unified"]}
        )

        payload = group.to_payload()

        assert group.is_dynamic
        assert payload["groupTypes"] == ["Unified", "DynamicMembership"]
        assert payload["membershipRuleProcessingState"] == "On"

    def test_dynamic_membership_not_duplicated(self) -> None:
        group = GroupTemplate.model_validate(
            {"displayName": "G", "membershipRule": "(user.department -eq \"IT\")",
             "groupTypes": ["DynamicMembership"]}
        )

        assert group.to_payload()["groupTypes"] == ["DynamicMembership"]

    def test_explicit_nickname_kept(self) -> None:
        group = GroupTemplate.model_validate({"displayName": "G", "mailNickname": "g-nick"})

        assert group.to_payload()["mailNickname"] == "g-nick"

    def test_blank_rule_rejected(self) -> None:
        with pytest.raises(ValidationError):
            GroupTemplate.model_validate({"displayName": "G", "membershipRule": " "})

    def test_name_required(self) -> None:
        with pytest.raises(ValidationError):
            GroupTemplate.model_validate({"displayName": ""})


class TestMailNickname:
    def test_strips_non_alphanumerics(self) -> None:
        assert mail_nickname_for("Pilot Users (EU) - 2024") == "PilotUsersEU2024"

    def test_bounded_length(self) -> None:
        assert len(mail_nickname_for("x" * 100)) == 64

    def test_fallback_for_non_ascii_names(self) -> None:
        nickname = mail_nickname_for("Überprüfung ✓")

        assert nickname == "berprfung"
        assert mail_nickname_for("✓✓").startswith("group")


class TestAssignmentFilterTemplate:
    """Tests for AssignmentFilterTemplate model."""

    def test_payload(self) -> None:
        template = AssignmentFilterTemplate.model_validate(
            {"displayName": "Corp", "platform": "iOS", "rule": "(device.deviceOwnership -eq \"Corporate\")",
             "assignmentFilterManagementType": "devices"}
        )

        assert template.to_payload() == {
            "displayName": "Corp",
            "description": "",
            "platform": "iOS",
            "rule": "(device.deviceOwnership -eq \"Corporate\")",
            "roleScopeTags": ["0"],
            "assignmentFilterManagementType": "devices",
        }

    def test_unknown_platform(self) -> None:
        with pytest.raises(ValidationError, match="platform must be one of"):
            AssignmentFilterTemplate.model_validate(
                {"displayName": "F", "platform": "tvOS", "rule": "(x)"}
            )

    def test_rule_required(self) -> None:
        with pytest.raises(ValidationError):
            AssignmentFilterTemplate.model_validate({"displayName": "F", "platform": "iOS", "rule": ""})
