"""Run entry points and logging setup.

Exit codes:
    0: every item succeeded
    1: at least one item failed, or the configuration is invalid
    2: a prerequisite or security check failed, nothing was changed
"""

from __future__ import annotations

import dataclasses
import json
import logging
import sys
import time
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path

from azure.core.credentials import TokenCredential

from .config import Config, ConfigurationError, HydrationMode
from .graph_client import GraphClient
from .orchestrator import Hydrator
from .prerequisites import PrerequisiteError
from .security import SecretInFileError, get_credential
from .template_loader import TemplateLoadError, load_settings

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_PREREQUISITE = 2

# LogRecord attributes that are not structured extra fields
_STANDARD_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_format: str = "json", level: int = logging.INFO) -> None:
    """Configure root logging on stdout.

    Args:
        log_format: "json" for structured output, "text" for humans.
        level: Root log level.
    """
    handler = logging.StreamHandler(sys.stdout)
    if log_format == "text":
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
        )
    else:
        handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("msal").setLevel(logging.WARNING)


def load_config(settings_path: Path | None = None) -> Config:
    """Load configuration from a settings file, or the environment without one."""
    if settings_path is not None:
        return load_settings(settings_path)
    return Config.from_env()


def apply_overrides(
    config: Config,
    *,
    dry_run: bool = False,
    delete: bool = False,
    force_update: bool = False,
    families: Iterable[str] = (),
) -> Config:
    """Apply command line overrides. Flags only ever switch behavior on."""
    changes: dict[str, object] = {}
    if dry_run:
        changes["dry_run"] = True
    if delete:
        changes["mode"] = HydrationMode.DELETE
    if force_update:
        changes["force_update"] = True
    selected = tuple(families)
    if selected:
        changes["enabled_families"] = selected
    # replace() re-runs validation
    return dataclasses.replace(config, **changes) if changes else config


def run_hydration(
    config: Config,
    *,
    credential: TokenCredential | None = None,
    graph: GraphClient | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Run a hydration and map its outcome to an exit code."""
    logger = logging.getLogger(__name__)

    try:
        credential = credential or get_credential(config)
        graph = graph or GraphClient(credential, config.environment)
        context = Hydrator(config, graph, credential, sleep=sleep).run()
    except PrerequisiteError as e:
        logger.critical("Prerequisite check failed, nothing was changed", extra={"error": str(e)})
        return EXIT_PREREQUISITE
    except Exception as e:
        logger.exception("Hydration failed unexpectedly", extra={"error": str(e)})
        return EXIT_FAILURE

    return EXIT_SUCCESS if context.success else EXIT_FAILURE


def main(settings_path: Path | None = None) -> int:
    """Load configuration and run.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = load_config(settings_path)
    except SecretInFileError as e:
        # SECURITY: Secret committed to a settings file - refuse to start
        logger.critical("Security violation: secret in settings file", extra={"error": str(e)})
        return EXIT_PREREQUISITE
    except (ConfigurationError, TemplateLoadError) as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return EXIT_FAILURE

    return run_hydration(config)


def run() -> None:
    """Entry point for environment-configured runs."""
    sys.exit(main())


if __name__ == "__main__":
    run()
