"""Tests for the prerequisite gate."""

from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest
from graph_mock import MockCredential, MockGraphService, make_jwt, seed_tenant

from hydrator.config import Config
from hydrator.prerequisites import (
    PrerequisiteChecker,
    PrerequisiteError,
    decode_token_claims,
    granted_scopes,
    missing_scopes,
)


@pytest.fixture
def config(tenant_id: str, templates_dir: Path) -> Config:
    return Config(tenant_id=tenant_id, templates_dir=templates_dir)


class TestTokenClaims:
    def test_decode(self) -> None:
        claims = decode_token_claims(make_jwt({"tid": "abc", "scp": "a b"}))

        assert claims == {"tid": "abc", "scp": "a b"}

    def test_not_a_jwt(self) -> None:
        with pytest.raises(PrerequisiteError, match="not a JWT"):
            decode_token_claims("opaque-token")

    def test_unreadable_claims(self) -> None:
        with pytest.raises(PrerequisiteError, match="unreadable"):
            decode_token_claims("a.!!!.c")

    def test_delegated_and_application_scopes(self) -> None:
        scopes = granted_scopes({"scp": "Group.ReadWrite.All Policy.Read.All",
                                 "roles": ["DeviceManagementApps.ReadWrite.All"]})

        assert scopes == {
            "Group.ReadWrite.All",
            "Policy.Read.All",
            "DeviceManagementApps.ReadWrite.All",
        }


class TestMissingScopes:
    def test_nothing_missing(self) -> None:
        assert missing_scopes(["groups"], {"Group.ReadWrite.All"}) == []

    def test_broader_permission_satisfies(self) -> None:
        assert missing_scopes(["groups"], {"Directory.ReadWrite.All"}) == []

    def test_reported_once(self) -> None:
        missing = missing_scopes(["filters", "compliance"], set())

        assert missing == ["DeviceManagementConfiguration.ReadWrite.All"]

    def test_only_enabled_families_count(self) -> None:
        assert missing_scopes(["groups"], {"Group.ReadWrite.All"}) == []
        assert "Policy.ReadWrite.ConditionalAccess" in missing_scopes(
            ["conditional-access"], {"Group.ReadWrite.All"}
        )


class TestPrerequisiteChecker:
    def test_passes(
        self, config: Config, graph: MockGraphService, credential: MockCredential
    ) -> None:
        seed_tenant(graph, organization="Fabrikam")

        result = PrerequisiteChecker(credential, graph, config).check()

        assert result.organization == "Fabrikam"
        assert "INTUNE_A" in result.service_plans
        assert credential.get_token_calls == [("https://graph.microsoft.com/.default",)]

    def test_application_token(self, config: Config, graph: MockGraphService) -> None:
        seed_tenant(graph)
        credential = MockCredential(application=True)

        result = PrerequisiteChecker(credential, graph, config).check()

        assert "Group.ReadWrite.All" in result.granted_scopes

    def test_authentication_failure(
        self, config: Config, graph: MockGraphService, credential: MockCredential
    ) -> None:
        credential.set_failure(True, "invalid_client")

        with pytest.raises(PrerequisiteError, match="Authentication failed: invalid_client"):
            PrerequisiteChecker(credential, graph, config).check()

    def test_wrong_tenant(self, config: Config, graph: MockGraphService) -> None:
        credential = MockCredential(tenant_id="99999999-8888-7777-6666-555555555555")

        with pytest.raises(PrerequisiteError, match="issued for tenant 9999"):
            PrerequisiteChecker(credential, graph, config).check()

    def test_missing_permission(self, config: Config, graph: MockGraphService) -> None:
        credential = MockCredential(scopes=("Group.ReadWrite.All",))

        with pytest.raises(PrerequisiteError, match="Missing Graph permissions"):
            PrerequisiteChecker(credential, graph, config).check()

    def test_permission_of_disabled_family_not_needed(
        self, config: Config, graph: MockGraphService
    ) -> None:
        seed_tenant(graph)
        config = dataclasses.replace(config, enabled_families=("groups",))
        credential = MockCredential(scopes=("Group.ReadWrite.All",))

        PrerequisiteChecker(credential, graph, config).check()

    def test_organization_lookup_failure(
        self, config: Config, graph: MockGraphService, credential: MockCredential
    ) -> None:
        graph.fail_on("GET", "organization", message="Forbidden")

        with pytest.raises(PrerequisiteError, match="Organization lookup failed: Forbidden"):
            PrerequisiteChecker(credential, graph, config).check()

    def test_no_intune_plan(
        self, config: Config, graph: MockGraphService, credential: MockCredential
    ) -> None:
        seed_tenant(graph, service_plans=("AAD_PREMIUM",))

        with pytest.raises(PrerequisiteError, match="Intune"):
            PrerequisiteChecker(credential, graph, config).check()

    def test_conditional_access_needs_premium(
        self, config: Config, graph: MockGraphService, credential: MockCredential
    ) -> None:
        seed_tenant(graph, service_plans=("INTUNE_A",))

        with pytest.raises(PrerequisiteError, match="P1 or P2"):
            PrerequisiteChecker(credential, graph, config).check()

    def test_premium_not_needed_without_conditional_access(
        self, config: Config, graph: MockGraphService, credential: MockCredential
    ) -> None:
        seed_tenant(graph, service_plans=("INTUNE_A",))
        config = dataclasses.replace(config, enabled_families=("groups", "compliance"))

        PrerequisiteChecker(credential, graph, config).check()

    def test_license_check_can_be_disabled(
        self, config: Config, graph: MockGraphService, credential: MockCredential
    ) -> None:
        graph.seed("organization", {"displayName": "Contoso"})
        config = dataclasses.replace(config, check_licenses=False)

        result = PrerequisiteChecker(credential, graph, config).check()

        assert result.service_plans == set()
        assert [c.path for c in graph.calls] == ["organization"]
