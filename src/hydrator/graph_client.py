"""Microsoft Graph client built on the Azure Core pipeline.

The Graph REST API is treated as a black-box JSON service:
- GET enumerates collections, following @odata.nextLink continuation links
- POST creates, PATCH or PUT updates, DELETE removes

ARCHITECTURE:
Requests go through azure.core's PipelineClient so authentication
(bearer tokens from an azure-identity credential), retries, user agent and
request logging are pipeline policies rather than hand-written plumbing.
Non-success responses surface as azure.core.exceptions.HttpResponseError
with the OData error body parsed.

SECURITY:
- Tokens are requested for the Graph resource of the configured cloud only
- Continuation links are followed only on the same Graph host
- Listings are bounded by MAX_LIST_PAGES to prevent runaway paging
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from azure.core import PipelineClient
from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError, HttpResponseError
from azure.core.pipeline.policies import (
    BearerTokenCredentialPolicy,
    HeadersPolicy,
    NetworkTraceLoggingPolicy,
    RetryPolicy,
    UserAgentPolicy,
)
from azure.core.rest import HttpRequest

from .config import MAX_LIST_PAGES, CloudEnvironment
from .provenance import TOOL_VERSION

logger = logging.getLogger(__name__)

GRAPH_ENDPOINTS: dict[CloudEnvironment, str] = {
    CloudEnvironment.GLOBAL: "https://graph.microsoft.com",
    CloudEnvironment.USGOV: "https://graph.microsoft.us",
    CloudEnvironment.USGOV_DOD: "https://dod-graph.microsoft.us",
    CloudEnvironment.CHINA: "https://microsoftgraph.chinacloudapi.cn",
}

API_V1 = "v1.0"
API_BETA = "beta"


def graph_scope(environment: CloudEnvironment) -> str:
    """OAuth scope for the Graph resource of a cloud."""
    return f"{GRAPH_ENDPOINTS[environment]}/.default"


def describe_error(error: BaseException) -> str:
    """Human-readable message for a failed remote call.

    Prefers the structured Graph error message (error.message in the OData
    body) over the generic transport message.
    """
    if isinstance(error, HttpResponseError):
        odata = getattr(error, "error", None)
        message = getattr(odata, "message", None)
        if message:
            return str(message)
        if error.message:
            return str(error.message)
    text = str(error)
    return text or type(error).__name__


@dataclass
class GraphPage:
    """One page of a Graph collection listing."""

    items: list[dict[str, Any]] = field(default_factory=list)
    next_link: str | None = None


class GraphClient:
    """Synchronous Microsoft Graph client.

    Calls are sequential; the client holds no per-request state.
    """

    def __init__(
        self,
        credential: TokenCredential | None = None,
        environment: CloudEnvironment = CloudEnvironment.GLOBAL,
        *,
        pipeline_client: Any | None = None,
    ) -> None:
        """Initialize the Graph client.

        Args:
            credential: azure-identity credential used for bearer tokens.
            environment: Cloud whose Graph endpoint is used.
            pipeline_client: Pre-built client exposing send_request(), used
                instead of building one from the credential.
        """
        self._base_url = GRAPH_ENDPOINTS[environment]
        if pipeline_client is not None:
            self._client = pipeline_client
        else:
            if credential is None:
                raise ValueError("credential is required when no pipeline_client is given")
            self._client = PipelineClient(
                base_url=self._base_url,
                policies=[
                    HeadersPolicy({"Accept": "application/json"}),
                    UserAgentPolicy(sdk_moniker=f"intune-hydrator/{TOOL_VERSION}"),
                    RetryPolicy(),
                    BearerTokenCredentialPolicy(credential, graph_scope(environment)),
                    NetworkTraceLoggingPolicy(),
                ],
            )

    @property
    def base_url(self) -> str:
        """Graph endpoint of the configured cloud."""
        return self._base_url

    def get(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        *,
        api_version: str = API_V1,
    ) -> dict[str, Any]:
        """GET a single object."""
        return self._send("GET", self._url(path, api_version), params=params) or {}

    def iter_pages(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        *,
        api_version: str = API_V1,
    ) -> Iterator[GraphPage]:
        """Yield the pages of a collection until no continuation link remains.

        Raises:
            HttpResponseError: If any page request fails.
            RuntimeError: If the listing exceeds MAX_LIST_PAGES.
        """
        url: str | None = self._url(path, api_version)
        request_params = params
        pages = 0

        while url:
            pages += 1
            if pages > MAX_LIST_PAGES:
                raise RuntimeError(
                    f"Listing {path} exceeded {MAX_LIST_PAGES} pages. "
                    f"This may indicate a paging loop in the service response."
                )
            body = self._send("GET", url, params=request_params) or {}
            next_link = body.get("@odata.nextLink")
            yield GraphPage(items=list(body.get("value", [])), next_link=next_link)

            url = self._checked_next_link(next_link) if next_link else None
            # The continuation link already carries the query string
            request_params = None

    def list_all(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        *,
        api_version: str = API_V1,
    ) -> list[dict[str, Any]]:
        """Collect every object of a collection."""
        items: list[dict[str, Any]] = []
        for page in self.iter_pages(path, params, api_version=api_version):
            items.extend(page.items)
        return items

    def post(
        self, path: str, body: Mapping[str, Any], *, api_version: str = API_V1
    ) -> dict[str, Any]:
        """POST a new object, returning the created object."""
        return self._send("POST", self._url(path, api_version), json=body) or {}

    def patch(
        self, path: str, body: Mapping[str, Any], *, api_version: str = API_V1
    ) -> dict[str, Any]:
        """PATCH an existing object."""
        return self._send("PATCH", self._url(path, api_version), json=body) or {}

    def put(
        self, path: str, body: Mapping[str, Any], *, api_version: str = API_V1
    ) -> dict[str, Any]:
        """PUT (replace) an existing object."""
        return self._send("PUT", self._url(path, api_version), json=body) or {}

    def delete(self, path: str, *, api_version: str = API_V1) -> None:
        """DELETE an object."""
        self._send("DELETE", self._url(path, api_version))

    def _url(self, path: str, api_version: str) -> str:
        return f"{self._base_url}/{api_version}/{path.lstrip('/')}"

    def _checked_next_link(self, next_link: str) -> str:
        """Only follow continuation links that stay on the Graph host."""
        if urlparse(next_link).netloc != urlparse(self._base_url).netloc:
            raise HttpResponseError(
                message=f"Refusing to follow continuation link to foreign host: {next_link}"
            )
        return next_link

    def _send(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Send a request and decode the JSON response.

        Raises:
            HttpResponseError: On a non-success status.
            AzureError: On transport failures.
        """
        request = HttpRequest(method, url, params=dict(params) if params else None, json=json)
        try:
            response = self._client.send_request(request)
        except AzureError as e:
            logger.error(
                "Graph request failed",
                extra={"method": method, "url": url, "error": str(e)},
            )
            raise

        response.raise_for_status()

        if response.status_code == 204 or not response.content:
            return None
        return response.json()
