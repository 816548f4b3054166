"""Tests for entry point helpers and logging setup."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from hydrator.config import Config, ConfigurationError, HydrationMode
from hydrator.main import (
    EXIT_FAILURE,
    EXIT_PREREQUISITE,
    JsonFormatter,
    apply_overrides,
    main,
)

TENANT_ID = "12345678-1234-1234-1234-123456789012"


@pytest.fixture
def config(templates_dir: Path) -> Config:
    return Config(tenant_id=TENANT_ID, templates_dir=templates_dir)


class TestApplyOverrides:
    def test_no_flags_returns_same_config(self, config: Config) -> None:
        assert apply_overrides(config) is config

    def test_flags_switch_behavior_on(self, config: Config) -> None:
        result = apply_overrides(
            config, dry_run=True, delete=True, force_update=True, families=["groups"]
        )

        assert result.dry_run is True
        assert result.mode == HydrationMode.DELETE
        assert result.force_update is True
        assert result.enabled_families == ("groups",)

    def test_flags_never_switch_off(self, templates_dir: Path) -> None:
        config = Config(tenant_id=TENANT_ID, templates_dir=templates_dir, dry_run=True)

        assert apply_overrides(config, families=["filters"]).dry_run is True

    def test_overrides_are_validated(self, config: Config) -> None:
        with pytest.raises(ConfigurationError, match="Unknown resource families"):
            apply_overrides(config, families=["printers"])


class TestJsonFormatter:
    def test_extra_fields_included(self) -> None:
        record = logging.LogRecord(
            name="hydrator.reconciler",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Created %s",
            args=("Pilot",),
            exc_info=None,
        )
        record.item_name = "Pilot"
        record.category = "Groups"

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Created Pilot"
        assert data["level"] == "INFO"
        assert data["logger"] == "hydrator.reconciler"
        assert data["item_name"] == "Pilot"
        assert data["category"] == "Groups"
        assert "lineno" not in data


class TestMain:
    def test_secret_in_settings(self, tmp_path: Path, templates_dir: Path) -> None:
        settings = tmp_path / "settings.yaml"
        settings.write_text(
            f"tenant:\n  tenantId: {TENANT_ID}\npassword: hunter2\n", encoding="utf-8"
        )

        assert main(settings) == EXIT_PREREQUISITE

    def test_invalid_settings(self, tmp_path: Path) -> None:
        settings = tmp_path / "settings.yaml"
        settings.write_text("[]\n", encoding="utf-8")

        assert main(settings) == EXIT_FAILURE
