"""Configuration management with validation.

Configuration is validated once at load time. Every problem found is
collected and reported together so a broken settings file can be fixed
in one pass instead of one error at a time.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TypeVar


E = TypeVar("E", bound=Enum)


class CloudEnvironment(str, Enum):
    """Microsoft cloud the tenant lives in."""

    GLOBAL = "Global"
    USGOV = "USGov"
    USGOV_DOD = "USGovDoD"
    CHINA = "China"


class AuthMode(str, Enum):
    """Supported authentication flows."""

    INTERACTIVE = "interactive"
    DEVICE_CODE = "device_code"
    CLIENT_SECRET = "client_secret"
    CERTIFICATE = "certificate"
    MANAGED_IDENTITY = "managed_identity"


class HydrationMode(str, Enum):
    """Whether a run converges the tenant towards the templates or removes them."""

    CREATE = "create"
    DELETE = "delete"


class UpdatePolicy(str, Enum):
    """What to do when an existing resource differs from its template.

    UPDATE_ON_DIFF: Overwrite the remote resource (last write wins).
    SKIP_UNLESS_FORCED: Leave it alone unless force_update is set.
    """

    UPDATE_ON_DIFF = "update_on_diff"
    SKIP_UNLESS_FORCED = "skip_unless_forced"


class ReportFormat(str, Enum):
    """Report renderings written at the end of a run."""

    JSON = "json"
    MARKDOWN = "markdown"
    CSV = "csv"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Resource families in the order they are hydrated. Later families may
# reference earlier ones (conditional access targets groups, apps are
# assigned with filters), so deletion walks this list backwards.
FAMILY_ORDER: tuple[str, ...] = (
    "groups",
    "filters",
    "notifications",
    "compliance",
    "app-protection",
    "enrollment",
    "conditional-access",
    "mobile-apps",
)

# Configuration constants with documented bounds
DEFAULT_ITEM_DELAY_SECONDS = 0.2
MAX_ITEM_DELAY_SECONDS = 10.0
MAX_NAME_PREFIX_LENGTH = 32

# Security constraints - enforced limits to prevent abuse
MAX_SETTINGS_FILE_SIZE_BYTES = 256 * 1024  # 256KB max settings file
MAX_TEMPLATE_FILE_SIZE_BYTES = 2 * 1024 * 1024  # 2MB max template file
MAX_LIST_PAGES = 1000  # Max continuation pages followed per listing

# Input validation patterns
VALID_TENANT_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_NAME_PREFIX_PATTERN = r"^[^\r\n\t]*$"

# Client secrets are only ever read from this variable, never from files
CLIENT_SECRET_ENV_VAR = "HYDRATOR_CLIENT_SECRET"


@dataclass(frozen=True)
class Config:
    """Hydrator configuration.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-run.
    """

    # Required fields
    tenant_id: str

    # Identity
    environment: CloudEnvironment = CloudEnvironment.GLOBAL
    auth_mode: AuthMode = AuthMode.INTERACTIVE
    client_id: str | None = None
    certificate_path: Path | None = None
    client_secret: str | None = field(default=None, repr=False)

    # Paths
    templates_dir: Path = field(default_factory=lambda: Path("templates"))
    reports_dir: Path = field(default_factory=lambda: Path("reports"))
    report_formats: tuple[ReportFormat, ...] = (ReportFormat.MARKDOWN, ReportFormat.JSON)

    # Behavior
    mode: HydrationMode = HydrationMode.CREATE
    dry_run: bool = False
    force_update: bool = False
    update_policy: UpdatePolicy = UpdatePolicy.UPDATE_ON_DIFF
    name_prefix: str = ""
    item_delay_seconds: float = DEFAULT_ITEM_DELAY_SECONDS
    enabled_families: tuple[str, ...] = FAMILY_ORDER
    check_licenses: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.tenant_id:
            errors.append("TENANT_ID is required")
        elif not re.match(VALID_TENANT_ID_PATTERN, self.tenant_id.lower()):
            errors.append(f"TENANT_ID must be a valid GUID: {self.tenant_id}")

        # Auth-mode specific validation
        needs_client_id = (AuthMode.CLIENT_SECRET, AuthMode.CERTIFICATE)
        if self.auth_mode in needs_client_id and not self.client_id:
            errors.append(f"CLIENT_ID is required for auth mode {self.auth_mode.value}")

        if self.auth_mode == AuthMode.CLIENT_SECRET and not self.client_secret:
            errors.append(f"{CLIENT_SECRET_ENV_VAR} is required for auth mode client_secret")

        if self.auth_mode == AuthMode.CERTIFICATE:
            if self.certificate_path is None:
                errors.append("CERTIFICATE_PATH is required for auth mode certificate")
            elif not self.certificate_path.exists():
                errors.append(f"Certificate file does not exist: {self.certificate_path}")

        # Path validation
        if not self.templates_dir.exists():
            errors.append(f"Templates directory does not exist: {self.templates_dir}")

        # Behavior validation
        if not 0 <= self.item_delay_seconds <= MAX_ITEM_DELAY_SECONDS:
            errors.append(f"ITEM_DELAY_SECONDS must be between 0 and {MAX_ITEM_DELAY_SECONDS}")

        if len(self.name_prefix) > MAX_NAME_PREFIX_LENGTH:
            errors.append(f"NAME_PREFIX exceeds maximum length of {MAX_NAME_PREFIX_LENGTH}")
        elif not re.match(VALID_NAME_PREFIX_PATTERN, self.name_prefix):
            errors.append("NAME_PREFIX must not contain control characters")

        unknown = [f for f in self.enabled_families if f not in FAMILY_ORDER]
        if unknown:
            errors.append(f"Unknown resource families {unknown}; valid: {list(FAMILY_ORDER)}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def is_enabled(self, family: str) -> bool:
        """Check whether a resource family takes part in this run."""
        return family in self.enabled_families

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            HYDRATOR_TENANT_ID: Target Entra ID tenant (GUID)
            HYDRATOR_ENVIRONMENT: Global, USGov, USGovDoD or China (default: Global)
            HYDRATOR_AUTH_MODE: interactive, device_code, client_secret,
                certificate or managed_identity (default: interactive)
            HYDRATOR_CLIENT_ID: App registration / managed identity client ID
            HYDRATOR_CERTIFICATE_PATH: PEM/PFX certificate for certificate auth
            HYDRATOR_CLIENT_SECRET: Client secret for client_secret auth
            TEMPLATES_DIR: Template root directory (default: templates)
            REPORTS_DIR: Report output directory (default: reports)
            REPORT_FORMATS: Comma-separated list of json, markdown, csv
            HYDRATION_MODE: create or delete (default: create)
            DRY_RUN: If "true", decide and report without writing (default: false)
            FORCE_UPDATE: If "true", update existing resources unconditionally
            UPDATE_POLICY: update_on_diff or skip_unless_forced
            NAME_PREFIX: Prefix applied to every display name
            ITEM_DELAY_SECONDS: Pause between remote writes (default: 0.2)
            ENABLED_FAMILIES: Comma-separated family names (default: all)
            CHECK_LICENSES: If "false", skip the licensing prerequisite
        """

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_list(key: str, default: tuple[str, ...]) -> tuple[str, ...]:
            value = os.environ.get(key, "")
            if not value.strip():
                return default
            return tuple(part.strip() for part in value.split(",") if part.strip())

        certificate = os.environ.get("HYDRATOR_CERTIFICATE_PATH")

        return cls(
            tenant_id=os.environ.get("HYDRATOR_TENANT_ID", ""),
            environment=parse_enum(
                CloudEnvironment, os.environ.get("HYDRATOR_ENVIRONMENT"), "HYDRATOR_ENVIRONMENT"
            ),
            auth_mode=parse_enum(AuthMode, os.environ.get("HYDRATOR_AUTH_MODE"), "HYDRATOR_AUTH_MODE"),
            client_id=os.environ.get("HYDRATOR_CLIENT_ID") or None,
            certificate_path=Path(certificate) if certificate else None,
            client_secret=os.environ.get(CLIENT_SECRET_ENV_VAR) or None,
            templates_dir=Path(os.environ.get("TEMPLATES_DIR", "templates")),
            reports_dir=Path(os.environ.get("REPORTS_DIR", "reports")),
            report_formats=tuple(
                parse_enum(ReportFormat, value, "REPORT_FORMATS")
                for value in get_list("REPORT_FORMATS", ("markdown", "json"))
            ),
            mode=parse_enum(HydrationMode, os.environ.get("HYDRATION_MODE"), "HYDRATION_MODE"),
            dry_run=get_bool("DRY_RUN", False),
            force_update=get_bool("FORCE_UPDATE", False),
            update_policy=parse_enum(
                UpdatePolicy, os.environ.get("UPDATE_POLICY"), "UPDATE_POLICY"
            ),
            name_prefix=os.environ.get("NAME_PREFIX", ""),
            item_delay_seconds=get_float("ITEM_DELAY_SECONDS", DEFAULT_ITEM_DELAY_SECONDS),
            enabled_families=get_list("ENABLED_FAMILIES", FAMILY_ORDER),
            check_licenses=get_bool("CHECK_LICENSES", True),
        )


def parse_enum(enum_cls: type[E], value: str | None, key: str) -> E:
    """Parse an enum value, falling back to the first member when unset.

    Matching is case-insensitive on the member value.

    Raises:
        ConfigurationError: If the value is not a member of the enum.
    """
    members = list(enum_cls)
    if not value:
        return members[0]
    for member in members:
        if str(member.value).lower() == value.strip().lower():
            return member
    valid = [str(m.value) for m in members]
    raise ConfigurationError(f"{key} must be one of {valid}: {value}")
