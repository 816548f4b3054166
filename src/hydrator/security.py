"""Credential construction and secret hygiene.

SECURITY INVARIANTS:
1. Credential secrets are never read from settings files. A settings file
   is configuration that gets shared and committed; a secret in it is a
   leak waiting to happen. Client secrets come from HYDRATOR_CLIENT_SECRET.
2. Secret values never appear in log records.
3. Tokens are issued by Entra ID for the authority of the configured
   cloud only.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from azure.core.credentials import TokenCredential
from azure.identity import (
    AzureAuthorityHosts,
    CertificateCredential,
    ClientSecretCredential,
    DeviceCodeCredential,
    InteractiveBrowserCredential,
    ManagedIdentityCredential,
)

from .config import CLIENT_SECRET_ENV_VAR, AuthMode, CloudEnvironment, Config

logger = logging.getLogger(__name__)

AUTHORITY_HOSTS: dict[CloudEnvironment, str] = {
    CloudEnvironment.GLOBAL: AzureAuthorityHosts.AZURE_PUBLIC_CLOUD,
    CloudEnvironment.USGOV: AzureAuthorityHosts.AZURE_GOVERNMENT,
    CloudEnvironment.USGOV_DOD: AzureAuthorityHosts.AZURE_GOVERNMENT,
    CloudEnvironment.CHINA: AzureAuthorityHosts.AZURE_CHINA,
}

# Keys that must never carry a value in a settings file (case-insensitive)
FORBIDDEN_SETTINGS_KEYS: tuple[str, ...] = (
    "clientsecret",
    "client_secret",
    "password",
    "certificatepassword",
    "certificate_password",
)


class SecretInFileError(Exception):
    """Raised when a settings file carries a credential secret.

    This is a fatal error: the run does not start.
    """

    pass


def reject_inline_secrets(data: Mapping[str, Any], source: str = "settings") -> None:
    """Fail if any nested key of a settings mapping holds a secret.

    Raises:
        SecretInFileError: If a forbidden key carries a non-empty value.
    """

    def walk(node: Any, path: str) -> None:
        if isinstance(node, Mapping):
            for key, value in node.items():
                key_path = f"{path}.{key}" if path else str(key)
                if str(key).lower() in FORBIDDEN_SETTINGS_KEYS and value:
                    logger.critical(
                        "Secret found in settings file",
                        extra={
                            "security_event": "secret_in_file",
                            "source": source,
                            "key": key_path,
                            "action": "startup_blocked",
                        },
                    )
                    raise SecretInFileError(
                        f"{source} contains a secret at '{key_path}'. "
                        f"Remove it and provide the secret via {CLIENT_SECRET_ENV_VAR}."
                    )
                walk(value, key_path)
        elif isinstance(node, list):
            for index, value in enumerate(node):
                walk(value, f"{path}[{index}]")

    walk(data, "")


def get_credential(config: Config) -> TokenCredential:
    """Build the azure-identity credential for the configured auth mode.

    Args:
        config: Validated configuration.

    Returns:
        A TokenCredential for the tenant and cloud of the configuration.
    """
    authority = AUTHORITY_HOSTS[config.environment]

    logger.info(
        "Creating credential",
        extra={
            "auth_mode": config.auth_mode.value,
            "environment": config.environment.value,
            "client_id": _mask(config.client_id),
        },
    )

    match config.auth_mode:
        case AuthMode.CLIENT_SECRET:
            # SAFETY: client_id and client_secret are validated non-None in
            # Config.__post_init__() for this auth mode
            return ClientSecretCredential(
                tenant_id=config.tenant_id,
                client_id=config.client_id,
                client_secret=config.client_secret,
                authority=authority,
            )
        case AuthMode.CERTIFICATE:
            return CertificateCredential(
                tenant_id=config.tenant_id,
                client_id=config.client_id,
                certificate_path=str(config.certificate_path),
                authority=authority,
            )
        case AuthMode.MANAGED_IDENTITY:
            if config.client_id:
                return ManagedIdentityCredential(client_id=config.client_id)
            return ManagedIdentityCredential()
        case AuthMode.DEVICE_CODE:
            kwargs: dict[str, Any] = {"tenant_id": config.tenant_id, "authority": authority}
            if config.client_id:
                kwargs["client_id"] = config.client_id
            return DeviceCodeCredential(**kwargs)
        case _:
            kwargs = {"tenant_id": config.tenant_id, "authority": authority}
            if config.client_id:
                kwargs["client_id"] = config.client_id
            return InteractiveBrowserCredential(**kwargs)


def _mask(value: str | None) -> str | None:
    if not value:
        return value
    return value[:8] + "..." if len(value) > 8 else value
