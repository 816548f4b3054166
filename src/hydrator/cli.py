"""Intune Hydrator CLI.

Usage:
    hydrator run --settings settings.yaml            # Hydrate a tenant
    hydrator run --settings settings.yaml --dry-run  # Show what would change
    hydrator run --delete                            # Remove what the tool created
    hydrator validate --templates templates/         # Check templates offline
    hydrator families                                # List families and endpoints
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from .config import FAMILY_ORDER, ConfigurationError
from .families import RECONCILERS, endpoints_of
from .main import (
    EXIT_FAILURE,
    EXIT_PREREQUISITE,
    apply_overrides,
    load_config,
    run_hydration,
    setup_logging,
)
from .provenance import TOOL_VERSION
from .results import ResultAction
from .security import SecretInFileError
from .template_loader import TemplateLoadError, load_family_templates

SETTINGS_PATH = click.Path(exists=True, dir_okay=False, path_type=Path)


@click.group()
@click.version_option(version=TOOL_VERSION, prog_name="hydrator")
def cli() -> None:
    """Intune Hydrator.

    Reconciles JSON templates of groups, filters, policies and apps into a
    Microsoft Intune tenant through Microsoft Graph.

    \b
    Quick Start:
        hydrator validate --templates templates/
        hydrator run --settings settings.yaml --dry-run
        hydrator run --settings settings.yaml
    """
    pass


@cli.command("run")
@click.option("--settings", "-s", "settings_path", type=SETTINGS_PATH,
              help="Settings file (YAML or JSON). Without it, HYDRATOR_* variables are used.")
@click.option("--dry-run", is_flag=True, help="Decide and report without writing")
@click.option("--delete", is_flag=True, help="Delete resources created by this tool")
@click.option("--force-update", is_flag=True, help="Update existing resources unconditionally")
@click.option("--family", "families", multiple=True, type=click.Choice(FAMILY_ORDER),
              help="Limit the run to a family (repeatable)")
@click.option("--log-format", type=click.Choice(["json", "text"]), default="json",
              show_default=True, help="Log output format")
def run_command(
    settings_path: Path | None,
    dry_run: bool,
    delete: bool,
    force_update: bool,
    families: tuple[str, ...],
    log_format: str,
) -> None:
    """Hydrate a tenant from templates."""
    setup_logging(log_format)

    try:
        config = apply_overrides(
            load_config(settings_path),
            dry_run=dry_run,
            delete=delete,
            force_update=force_update,
            families=families,
        )
    except SecretInFileError as e:
        click.secho(f"Security violation: {e}", fg="red", err=True)
        sys.exit(EXIT_PREREQUISITE)
    except (ConfigurationError, TemplateLoadError) as e:
        raise click.ClickException(str(e)) from e

    sys.exit(run_hydration(config))


@cli.command()
@click.option("--templates", "-t", "templates_dir", default="templates", show_default=True,
              type=click.Path(exists=True, file_okay=False, path_type=Path),
              help="Template root directory")
@click.option("--family", "families", multiple=True, type=click.Choice(FAMILY_ORDER),
              help="Limit validation to a family (repeatable)")
def validate(templates_dir: Path, families: tuple[str, ...]) -> None:
    """Check templates offline: files parse, items are named and typed."""
    problems = 0
    checked = 0

    for family in families or FAMILY_ORDER:
        reconciler_cls = RECONCILERS[family]
        items, errors = load_family_templates(templates_dir, reconciler_cls.directory)

        for path, error in errors:
            problems += 1
            click.secho(f"✗ {family}: {path}: {error}", fg="red")

        for item in items:
            checked += 1
            problem = reconciler_cls.identity_problem(item.body)
            if problem is None:
                continue
            action, status = problem
            problems += 1
            color = "red" if action == ResultAction.FAILED else "yellow"
            click.secho(f"✗ {family}: {item.source_label}: {status}", fg=color)

    if problems:
        click.secho(f"\n{problems} problem(s) in {checked} template(s)", fg="red")
        sys.exit(EXIT_FAILURE)

    click.secho(f"✓ {checked} template(s) valid", fg="green")


@cli.command()
def families() -> None:
    """List resource families, their template directories and endpoints."""
    for family in FAMILY_ORDER:
        reconciler_cls = RECONCILERS[family]
        click.secho(
            f"{family} ({reconciler_cls.category}) <- templates/{reconciler_cls.directory}",
            bold=True,
        )
        for odata_type, endpoint in endpoints_of(reconciler_cls):
            click.echo(f"  {odata_type:<72} {endpoint.api_version}/{endpoint.path}")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
