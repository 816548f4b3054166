"""Prerequisite gate evaluated once before any family is reconciled.

Unlike item-level problems, a failed prerequisite is fatal: without a
token for the right tenant, the needed permissions and an Intune licence,
every write would fail, so the run stops before the first one.

Checks, in order:
1. A Graph token can be acquired
2. The token was issued by the configured tenant
3. The token carries the permissions every enabled family needs
4. The organization can be read
5. The tenant has an Intune service plan, and Entra ID P1/P2 when
   conditional access is enabled
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError, ClientAuthenticationError

from .config import Config
from .graph_client import GraphClient, describe_error, graph_scope

logger = logging.getLogger(__name__)

# Graph permissions each family needs, delegated (scp) or application (roles)
REQUIRED_SCOPES: dict[str, tuple[str, ...]] = {
    "groups": ("Group.ReadWrite.All",),
    "filters": ("DeviceManagementConfiguration.ReadWrite.All",),
    "notifications": ("DeviceManagementServiceConfig.ReadWrite.All",),
    "compliance": ("DeviceManagementConfiguration.ReadWrite.All",),
    "app-protection": ("DeviceManagementApps.ReadWrite.All",),
    "enrollment": ("DeviceManagementServiceConfig.ReadWrite.All",),
    "conditional-access": ("Policy.ReadWrite.ConditionalAccess", "Policy.Read.All"),
    "mobile-apps": ("DeviceManagementApps.ReadWrite.All",),
}

# Broader permissions that include a narrower one
IMPLIED_BY: dict[str, tuple[str, ...]] = {
    "Group.ReadWrite.All": ("Directory.ReadWrite.All",),
    "Policy.Read.All": ("Policy.ReadWrite.ConditionalAccess",),
}

INTUNE_SERVICE_PLANS = frozenset({"INTUNE_A", "INTUNE_A_VL", "INTUNE_EDU", "INTUNE_SMBIZ"})
ENTRA_PREMIUM_SERVICE_PLANS = frozenset({"AAD_PREMIUM", "AAD_PREMIUM_P2"})


class PrerequisiteError(Exception):
    """Raised when the run cannot start. Always fatal."""

    pass


@dataclass
class PrerequisiteResult:
    """What the gate established about the tenant."""

    tenant_id: str
    organization: str = ""
    granted_scopes: set[str] = field(default_factory=set)
    service_plans: set[str] = field(default_factory=set)


def decode_token_claims(token: str) -> dict[str, Any]:
    """Decode the claims of a JWT access token without verifying it.

    The token comes straight from Entra ID over TLS; the claims are only
    read to report configuration mistakes early.

    Raises:
        PrerequisiteError: If the token is not a readable JWT.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise PrerequisiteError("Access token is not a JWT")
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment))
    except (binascii.Error, ValueError) as e:
        raise PrerequisiteError(f"Access token claims are unreadable: {e}") from e
    if not isinstance(claims, dict):
        raise PrerequisiteError("Access token claims are not an object")
    return claims


def granted_scopes(claims: dict[str, Any]) -> set[str]:
    """Permissions carried by a token: delegated scp and application roles."""
    scopes = set(str(claims.get("scp", "")).split())
    roles = claims.get("roles") or []
    if isinstance(roles, list):
        scopes.update(str(role) for role in roles)
    return scopes


def missing_scopes(families: Iterable[str], granted: set[str]) -> list[str]:
    """Permissions the enabled families need that the token lacks."""
    missing: list[str] = []
    for family in families:
        for scope in REQUIRED_SCOPES.get(family, ()):
            if scope in granted or any(s in granted for s in IMPLIED_BY.get(scope, ())):
                continue
            if scope not in missing:
                missing.append(scope)
    return missing


class PrerequisiteChecker:
    """Runs the prerequisite gate for one run."""

    def __init__(self, credential: TokenCredential, graph: GraphClient, config: Config) -> None:
        self._credential = credential
        self._graph = graph
        self._config = config

    def check(self) -> PrerequisiteResult:
        """Run every check.

        Raises:
            PrerequisiteError: On the first failing check.
        """
        claims = self._token_claims()
        result = PrerequisiteResult(tenant_id=self._config.tenant_id)

        token_tenant = str(claims.get("tid", "")).lower()
        if token_tenant != self._config.tenant_id.lower():
            raise PrerequisiteError(
                f"Token was issued for tenant {token_tenant or '<unknown>'}, "
                f"expected {self._config.tenant_id}"
            )

        result.granted_scopes = granted_scopes(claims)
        missing = missing_scopes(self._config.enabled_families, result.granted_scopes)
        if missing:
            raise PrerequisiteError(f"Missing Graph permissions: {', '.join(missing)}")

        result.organization = self._organization_name()

        if self._config.check_licenses:
            result.service_plans = self._service_plans()
            self._check_licenses(result.service_plans)
        else:
            logger.warning("License check disabled")

        logger.info(
            "Prerequisites satisfied",
            extra={
                "tenant_id": result.tenant_id,
                "organization": result.organization,
                "scope_count": len(result.granted_scopes),
            },
        )
        return result

    def _token_claims(self) -> dict[str, Any]:
        scope = graph_scope(self._config.environment)
        try:
            token = self._credential.get_token(scope)
        except ClientAuthenticationError as e:
            raise PrerequisiteError(f"Authentication failed: {e.message}") from e
        except AzureError as e:
            raise PrerequisiteError(f"Token acquisition failed: {e}") from e
        return decode_token_claims(token.token)

    def _organization_name(self) -> str:
        try:
            organizations = self._graph.list_all("organization")
        except AzureError as e:
            raise PrerequisiteError(f"Organization lookup failed: {describe_error(e)}") from e
        if not organizations:
            raise PrerequisiteError("Organization lookup returned no organization")
        return str(organizations[0].get("displayName", ""))

    def _service_plans(self) -> set[str]:
        try:
            skus = self._graph.list_all("subscribedSkus")
        except AzureError as e:
            raise PrerequisiteError(f"License lookup failed: {describe_error(e)}") from e

        plans: set[str] = set()
        for sku in skus:
            for plan in sku.get("servicePlans") or []:
                if plan.get("provisioningStatus", "Success") == "Success":
                    plans.add(str(plan.get("servicePlanName", "")))
        return plans

    def _check_licenses(self, plans: set[str]) -> None:
        if not plans & INTUNE_SERVICE_PLANS:
            raise PrerequisiteError("Tenant has no active Intune service plan")

        if self._config.is_enabled("conditional-access") and not plans & ENTRA_PREMIUM_SERVICE_PLANS:
            raise PrerequisiteError(
                "Conditional access requires an Entra ID P1 or P2 service plan"
            )
