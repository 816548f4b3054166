"""Tests for run orchestration and exit codes."""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Callable
from pathlib import Path

import pytest
from graph_mock import MockCredential, MockGraphService, seed_tenant

from hydrator.config import Config, HydrationMode, ReportFormat
from hydrator.main import EXIT_FAILURE, EXIT_PREREQUISITE, EXIT_SUCCESS, run_hydration
from hydrator.orchestrator import Hydrator, family_order
from hydrator.prerequisites import PrerequisiteError
from hydrator.provenance import PROVENANCE_MARKER
from hydrator.results import ResultAction

CA_POLICIES = "identity/conditionalAccess/policies"


@pytest.fixture
def config(tenant_id: str, templates_dir: Path, tmp_path: Path) -> Config:
    return Config(
        tenant_id=tenant_id,
        templates_dir=templates_dir,
        reports_dir=tmp_path / "reports",
        report_formats=(ReportFormat.MARKDOWN, ReportFormat.JSON, ReportFormat.CSV),
        item_delay_seconds=0,
    )


@pytest.fixture
def tenant(graph: MockGraphService) -> MockGraphService:
    seed_tenant(graph)
    return graph


@pytest.fixture
def baseline(write_template: Callable[..., Path]) -> None:
    write_template("groups", "pilot.json", {"displayName": "Pilot Users"})
    write_template(
        "conditional-access",
        "mfa.json",
        {"displayName": "Require MFA", "state": "enabled",
         "conditions": {"users": {"includeUsers": ["All"]}}},
    )


class TestFamilyOrder:
    def test_create_follows_dependency_order(self, config: Config) -> None:
        assert family_order(config)[:2] == ["groups", "filters"]
        assert family_order(config)[-1] == "mobile-apps"

    def test_delete_reverses_order(self, config: Config) -> None:
        config = dataclasses.replace(config, mode=HydrationMode.DELETE)

        assert family_order(config)[0] == "mobile-apps"
        assert family_order(config)[-1] == "groups"

    def test_only_enabled_families(self, config: Config) -> None:
        config = dataclasses.replace(
            config, enabled_families=("conditional-access", "groups")
        )

        assert family_order(config) == ["groups", "conditional-access"]


@pytest.mark.usefixtures("baseline")
class TestHydrator:
    def test_run_creates_templates(
        self, config: Config, tenant: MockGraphService, credential: MockCredential
    ) -> None:
        context = Hydrator(config, tenant, credential).run()

        assert context.connected
        assert context.success
        assert [r.action for r in context.results_for("Groups")] == [ResultAction.CREATED]
        [policy] = context.results_for("ConditionalAccess")
        assert policy.action == ResultAction.CREATED
        assert policy.state == "disabled"
        assert policy.path is not None and policy.path.endswith("mfa.json")

    def test_groups_written_before_conditional_access(
        self, config: Config, tenant: MockGraphService, credential: MockCredential
    ) -> None:
        Hydrator(config, tenant, credential).run()

        assert [c.path for c in tenant.calls_for("POST")] == ["groups", CA_POLICIES]

    def test_delete_walks_families_backwards(
        self, config: Config, tenant: MockGraphService, credential: MockCredential
    ) -> None:
        tenant.seed("groups", {"displayName": "Pilot Users", "description": PROVENANCE_MARKER})
        tenant.seed(CA_POLICIES, {"displayName": "Require MFA", "state": "disabled"})
        config = dataclasses.replace(config, mode=HydrationMode.DELETE)

        context = Hydrator(config, tenant, credential).run()

        assert context.summary().deleted == 2
        deletes = [c.path.rpartition("/")[0] for c in tenant.calls_for("DELETE")]
        assert deletes == [CA_POLICIES, "groups"]

    def test_dry_run_writes_nothing(
        self, config: Config, tenant: MockGraphService, credential: MockCredential
    ) -> None:
        config = dataclasses.replace(config, dry_run=True)

        context = Hydrator(config, tenant, credential).run()

        assert tenant.write_calls == []
        assert context.summary().would_create == 2

    def test_broken_file_is_a_failed_record(
        self,
        config: Config,
        tenant: MockGraphService,
        credential: MockCredential,
        templates_dir: Path,
    ) -> None:
        (templates_dir / "groups" / "broken.json").write_text("{not json", encoding="utf-8")

        context = Hydrator(config, tenant, credential).run()

        records = context.results_for("Groups")
        assert [(r.name, r.action) for r in records] == [
            ("broken.json", ResultAction.FAILED),
            ("Pilot Users", ResultAction.CREATED),
        ]
        assert not context.success

    def test_reports_written(
        self, config: Config, tenant: MockGraphService, credential: MockCredential
    ) -> None:
        hydrator = Hydrator(config, tenant, credential)
        hydrator.run()

        suffixes = sorted(p.suffix for p in hydrator.report_paths)
        assert suffixes == [".csv", ".json", ".md"]
        json_report = next(p for p in hydrator.report_paths if p.suffix == ".json")
        data = json.loads(json_report.read_text(encoding="utf-8"))
        assert data["summary"]["created"] == 2
        assert data["mode"] == "create"
        assert data["categories"]["Groups"]["results"][0]["name"] == "Pilot Users"

    def test_prerequisite_failure_processes_nothing(
        self, config: Config, tenant: MockGraphService
    ) -> None:
        foreign = MockCredential(tenant_id="99999999-8888-7777-6666-555555555555")

        with pytest.raises(PrerequisiteError, match="expected"):
            Hydrator(config, tenant, foreign).run()

        assert tenant.write_calls == []
        assert not config.reports_dir.exists()


@pytest.mark.usefixtures("baseline")
class TestExitCodes:
    def test_success(
        self, config: Config, tenant: MockGraphService, credential: MockCredential
    ) -> None:
        assert run_hydration(config, credential=credential, graph=tenant) == EXIT_SUCCESS

    def test_item_failure(
        self, config: Config, tenant: MockGraphService, credential: MockCredential
    ) -> None:
        tenant.fail_on("POST", "groups", message="Quota exceeded")

        assert run_hydration(config, credential=credential, graph=tenant) == EXIT_FAILURE
        # The failure stays local to its item
        assert [c.path for c in tenant.calls_for("POST")] == ["groups", CA_POLICIES]

    def test_authentication_failure(
        self, config: Config, tenant: MockGraphService, credential: MockCredential
    ) -> None:
        credential.set_failure(True, "AADSTS700016: application not found")

        assert run_hydration(config, credential=credential, graph=tenant) == EXIT_PREREQUISITE
        assert tenant.calls == []

    def test_missing_licence(
        self, config: Config, graph: MockGraphService, credential: MockCredential
    ) -> None:
        seed_tenant(graph, service_plans=("EXCHANGE_S_STANDARD",))

        assert run_hydration(config, credential=credential, graph=graph) == EXIT_PREREQUISITE
        assert graph.write_calls == []
