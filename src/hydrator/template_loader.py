"""Template and settings file loading with validation.

SECURITY: All file operations enforce size limits to prevent DoS attacks
via large files. Input validation is performed at the boundary.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import (
    CLIENT_SECRET_ENV_VAR,
    MAX_SETTINGS_FILE_SIZE_BYTES,
    MAX_TEMPLATE_FILE_SIZE_BYTES,
    Config,
    ConfigurationError,
)
from .models import SettingsFile
from .security import reject_inline_secrets

logger = logging.getLogger(__name__)


class TemplateLoadError(Exception):
    """Raised when a template or settings file cannot be loaded."""

    pass


@dataclass(frozen=True)
class DesiredStateItem:
    """One desired-state template.

    The body is owned by the loader. Reconcilers treat it as read-only and
    copy it before making any change.

    Attributes:
        body: The template as parsed from JSON.
        source: File the template was read from.
        index: Position of the item within its file.
    """

    body: dict[str, Any] = field(default_factory=dict)
    source: Path | None = None
    index: int = 0

    @property
    def source_label(self) -> str | None:
        """Source path for reports, with the item index for multi-item files."""
        if self.source is None:
            return None
        return f"{self.source}#{self.index}" if self.index else str(self.source)


def _read_bounded(path: Path, limit: int) -> str:
    """Read a text file after checking its size.

    Raises:
        TemplateLoadError: If the file is missing, too large or unreadable.
    """
    if not path.exists():
        raise TemplateLoadError(f"File not found: {path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise TemplateLoadError(f"Failed to stat file {path}: {e}") from e

    if file_size > limit:
        raise TemplateLoadError(f"File exceeds maximum size of {limit} bytes: {path}")

    try:
        return path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        raise TemplateLoadError(f"Failed to read file {path}: {e}") from e


def iter_template_files(templates_dir: Path, directory: str) -> Iterator[Path]:
    """Yield the JSON template files of a family in file-name order.

    A missing family directory yields nothing.
    """
    family_dir = templates_dir / directory
    if not family_dir.is_dir():
        logger.info(
            "No template directory for family",
            extra={"family": directory, "path": str(family_dir)},
        )
        return
    yield from sorted(p for p in family_dir.rglob("*.json") if p.is_file())


def load_template_file(path: Path) -> list[DesiredStateItem]:
    """Load the templates of one JSON file.

    A file holds either a single template object or a list of them.

    Raises:
        TemplateLoadError: If the file cannot be read or does not hold
            template objects.
    """
    content = _read_bounded(path, MAX_TEMPLATE_FILE_SIZE_BYTES)

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise TemplateLoadError(f"Invalid JSON in {path}: {e}") from e

    documents = data if isinstance(data, list) else [data]
    items: list[DesiredStateItem] = []
    for index, document in enumerate(documents):
        if not isinstance(document, dict):
            raise TemplateLoadError(f"Template #{index} in {path} must be a JSON object")
        items.append(DesiredStateItem(body=document, source=path, index=index))
    return items


def load_family_templates(
    templates_dir: Path, directory: str
) -> tuple[list[DesiredStateItem], list[tuple[Path, TemplateLoadError]]]:
    """Load every template of a family.

    A broken file does not stop the remaining files from loading.

    Returns:
        Tuple of (templates in file order, per-file load errors).
    """
    items: list[DesiredStateItem] = []
    errors: list[tuple[Path, TemplateLoadError]] = []

    for path in iter_template_files(templates_dir, directory):
        try:
            items.extend(load_template_file(path))
        except TemplateLoadError as e:
            logger.error("Failed to load template", extra={"path": str(path), "error": str(e)})
            errors.append((path, e))

    logger.info(
        "Loaded templates for family '%s' from %s",
        directory,
        templates_dir / directory,
        extra={"template_count": len(items), "error_count": len(errors)},
    )
    return items, errors


def load_settings(path: Path) -> Config:
    """Load and validate a settings file (YAML or JSON).

    Relative paths in the file are resolved against the file's directory.
    The client secret, when needed, comes from the environment only.

    Raises:
        TemplateLoadError: If the file cannot be read or fails validation.
        SecretInFileError: If the file contains a credential secret.
        ConfigurationError: If the resulting configuration is invalid.
    """
    content = _read_bounded(path, MAX_SETTINGS_FILE_SIZE_BYTES)

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise TemplateLoadError(f"Invalid YAML/JSON in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise TemplateLoadError(f"Settings file must contain a mapping: {path}")

    # SECURITY: Secrets never live in files that may be committed
    reject_inline_secrets(raw_data, source=str(path))

    try:
        settings = SettingsFile.model_validate(raw_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise TemplateLoadError(f"Validation failed for {path}:\n{error_list}") from e

    base_dir = path.parent

    def resolve(value: str) -> Path:
        candidate = Path(value).expanduser()
        return candidate if candidate.is_absolute() else base_dir / candidate

    auth = settings.authentication
    options = settings.options

    try:
        config = Config(
            tenant_id=settings.tenant.tenant_id,
            environment=settings.tenant.environment,
            auth_mode=auth.mode,
            client_id=auth.client_id,
            certificate_path=resolve(auth.certificate_path) if auth.certificate_path else None,
            client_secret=os.environ.get(CLIENT_SECRET_ENV_VAR) or None,
            templates_dir=resolve(settings.templates_path),
            reports_dir=resolve(settings.reporting.output_path),
            report_formats=tuple(settings.reporting.formats),
            mode=options.mode,
            dry_run=options.dry_run,
            force_update=options.force_update,
            update_policy=options.update_policy,
            name_prefix=options.name_prefix,
            item_delay_seconds=options.item_delay_seconds,
            enabled_families=settings.imports.enabled_families(),
            check_licenses=options.check_licenses,
        )
    except ConfigurationError:
        logger.error("Invalid settings", extra={"path": str(path)})
        raise

    logger.info("Loaded settings from %s", path, extra={"tenant_id": config.tenant_id})
    return config
