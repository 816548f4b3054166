"""Microsoft Graph Mock for Integration Testing.

This package provides an in-memory stand-in for the Graph REST API that
enables reconciliation tests without tenant connectivity.

Key Features:
- In-memory collections keyed by Graph path
- Paginated listings with @odata.nextLink continuation links
- Error injection by method, path and display name
- Call recording for assertions on what was (not) written
- Credentials issuing fake JWT access tokens with configurable claims

Usage:
    from graph_mock import MockGraphService, create_mock_credential

    graph = MockGraphService(page_size=1)
    graph.seed("groups", {"displayName": "Existing"})

    reconciler = GroupReconciler(graph)
    records = reconciler.reconcile(templates)

    assert graph.write_calls == []
"""

from .credential import MockCredential, create_mock_credential, make_jwt
from .service import MockCall, MockGraphService, seed_tenant

__all__ = [
    "MockCall",
    "MockCredential",
    "MockGraphService",
    "create_mock_credential",
    "make_jwt",
    "seed_tenant",
]
