"""Run orchestration.

A run:
1. Passes the prerequisite gate (fatal on failure)
2. Hydrates each enabled family in dependency order, or in reverse order
   when deleting, so dependents go before what they depend on
3. Logs the summary, writes the reports and logs the run provenance
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

from azure.core.credentials import TokenCredential

from .config import FAMILY_ORDER, Config, HydrationMode
from .context import RunContext
from .families import RECONCILERS
from .graph_client import GraphClient
from .prerequisites import PrerequisiteChecker
from .provenance import get_provenance_logger
from .reconciler import ReconcileOptions
from .report import write_reports
from .results import ResultAction, ResultRecord
from .template_loader import load_family_templates

logger = logging.getLogger(__name__)


def family_order(config: Config) -> list[str]:
    """Enabled families in the order this run processes them."""
    families = [family for family in FAMILY_ORDER if config.is_enabled(family)]
    if config.mode == HydrationMode.DELETE:
        families.reverse()
    return families


class Hydrator:
    """Hydrates one tenant from a template tree."""

    def __init__(
        self,
        config: Config,
        graph: GraphClient,
        credential: TokenCredential,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._graph = graph
        self._credential = credential
        self._sleep = sleep
        self._options = ReconcileOptions(
            force_update=config.force_update,
            update_policy=config.update_policy,
            name_prefix=config.name_prefix,
            item_delay_seconds=config.item_delay_seconds,
        )
        self.report_paths: list[Path] = []

    def run(self) -> RunContext:
        """Run the hydration.

        Returns:
            The run context with every result record.

        Raises:
            PrerequisiteError: If the prerequisite gate fails. No family is
                processed in that case.
        """
        config = self._config
        context = RunContext(tenant_id=config.tenant_id, environment=config.environment)
        provenance_logger = get_provenance_logger()
        provenance = provenance_logger.create_provenance(
            tenant_id=config.tenant_id,
            environment=config.environment.value,
            mode=config.mode.value,
            dry_run=config.dry_run,
            templates_dir=str(config.templates_dir),
        )

        logger.info(
            "Starting hydration",
            extra={
                "tenant_id": config.tenant_id,
                "environment": config.environment.value,
                "mode": config.mode.value,
                "dry_run": config.dry_run,
                "families": list(config.enabled_families),
            },
        )

        try:
            PrerequisiteChecker(self._credential, self._graph, config).check()
            context.connected = True

            for family in family_order(config):
                provenance.families.append(family)
                self.hydrate_family(family, context)
        except Exception as e:
            provenance.error = str(e)
            provenance.error_type = type(e).__name__
            raise
        finally:
            provenance.summary = context.summary().to_dict()
            provenance.duration_seconds = context.duration_seconds
            provenance_logger.log_provenance(provenance)

        self._log_summary(context)
        self.report_paths = write_reports(
            context,
            config.reports_dir,
            config.report_formats,
            mode=config.mode.value,
            dry_run=config.dry_run,
        )
        return context

    def hydrate_family(self, family: str, context: RunContext) -> list[ResultRecord]:
        """Load and reconcile the templates of one family.

        Template files that fail to load become Failed records; the other
        files of the family are still reconciled.
        """
        reconciler_cls = RECONCILERS[family]
        reconciler = reconciler_cls(self._graph, self._options, sleep=self._sleep)

        items, errors = load_family_templates(self._config.templates_dir, reconciler_cls.directory)
        records = [
            ResultRecord(
                name=path.name,
                resource_type=reconciler_cls.resource_type,
                action=ResultAction.FAILED,
                status=str(error),
                path=str(path),
            )
            for path, error in errors
        ]
        records.extend(reconciler.reconcile(items, self._config.mode, self._config.dry_run))
        context.add_results(reconciler_cls.category, records)

        summary = context.summary(reconciler_cls.category)
        logger.info(
            "Family hydrated: %s",
            family,
            extra={"family": family, "category": reconciler_cls.category, "summary": summary.to_dict()},
        )
        return records

    def _log_summary(self, context: RunContext) -> None:
        summary = context.summary()
        level = logging.INFO if summary.success else logging.WARNING
        logger.log(
            level,
            "Hydration complete",
            extra={
                "tenant_id": context.tenant_id,
                "duration_seconds": round(context.duration_seconds, 2),
                "summary": summary.to_dict(),
            },
        )
        for record in context.all_results():
            if record.action == ResultAction.FAILED:
                logger.warning(
                    "Failed item: %s",
                    record.name,
                    extra={"item_name": record.name, "type": record.resource_type,
                           "error": record.status},
                )
