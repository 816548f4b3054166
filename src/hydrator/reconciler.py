"""Generic reconciliation of template items against one Graph collection.

For every template item, in template order:
1. Validate identity (display name, and the @odata.type discriminator for
   typed families)
2. Resolve the target endpoint from the discriminator
3. Look up the existing resource in the endpoint's cache (built once per run,
   or queried by name when the collection could not be enumerated)
4. CREATE mode: prepare the payload, decide create/update/skip, write the
   resource and then its sub-resources
5. DELETE mode: delete only resources this tool created
6. Record the outcome

ARCHITECTURE:
One item failing never stops the batch. Every exception raised while an
item is processed becomes a Failed record and the loop moves on. Only the
prerequisite gate, which runs before any reconciler, can abort a run.

Family reconcilers subclass Reconciler and override class attributes and
hooks; the loop itself is shared.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, ClassVar

from pydantic import ValidationError

from .cache import ExistingResourceRef, ResourceCache
from .config import DEFAULT_ITEM_DELAY_SECONDS, HydrationMode, UpdatePolicy
from .copying import deep_copy
from .decision import UpsertAction, UpsertDecision, decide
from .diff_normalizer import SERVER_ASSIGNED_FIELDS
from .graph_client import API_BETA, GraphClient, describe_error
from .provenance import has_marker, stamp_marker
from .results import ResultAction, ResultRecord
from .template_loader import DesiredStateItem

logger = logging.getLogger(__name__)

ODATA_TYPE = "@odata.type"
UNNAMED = "(unnamed)"


@dataclass(frozen=True)
class Endpoint:
    """A Graph collection that a family writes to.

    Attributes:
        path: Collection path below the API version.
        api_version: v1.0 or beta.
        name_field: Property holding the display name.
        update_method: PATCH, or PUT for resources replaced as a whole.
        platform: Platform label recorded for resources of this endpoint.
    """

    path: str
    api_version: str = API_BETA
    name_field: str = "displayName"
    update_method: str = "PATCH"
    platform: str | None = None

    @property
    def cache_key(self) -> tuple[str, str]:
        """Endpoints sharing a collection share one cache."""
        return (self.api_version, self.path)

    def item_path(self, remote_id: str) -> str:
        return f"{self.path}/{remote_id}"


@dataclass(frozen=True)
class ReconcileOptions:
    """Run options shared by all reconcilers.

    Attributes:
        force_update: Update existing resources even when nothing differs.
        update_policy: What to do with drifted resources when not forced.
        name_prefix: Prepended to every display name not already carrying it.
        item_delay_seconds: Pause between successive remote writes.
    """

    force_update: bool = False
    update_policy: UpdatePolicy = UpdatePolicy.UPDATE_ON_DIFF
    name_prefix: str = ""
    item_delay_seconds: float = DEFAULT_ITEM_DELAY_SECONDS


class Reconciler:
    """Drives template items of one family through lookup, decision and write.

    Subclasses declare:
        category: Result category label.
        directory: Template directory below the templates root.
        resource_type: Type label recorded when an item has no @odata.type.
        default_endpoint: Endpoint of untyped families.
        typed_endpoints: @odata.type (lowercase) to endpoint, for typed families.
        marker_field: Free-text property carrying the provenance marker.
        read_only_fields: Family properties never sent and never compared.
        update_exclusions: Properties sent on create only.
    """

    category: ClassVar[str] = ""
    directory: ClassVar[str] = ""
    resource_type: ClassVar[str] = ""
    default_endpoint: ClassVar[Endpoint | None] = None
    typed_endpoints: ClassVar[Mapping[str, Endpoint]] = {}
    marker_field: ClassVar[str | None] = "description"
    read_only_fields: ClassVar[frozenset[str]] = frozenset()
    update_exclusions: ClassVar[frozenset[str]] = frozenset()

    def __init__(
        self,
        graph: GraphClient,
        options: ReconcileOptions | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the reconciler.

        Args:
            graph: Graph client used for listings and writes.
            options: Run options.
            sleep: Used for the inter-write delay.
        """
        self._graph = graph
        self._options = options or ReconcileOptions()
        self._sleep = sleep
        self._caches: dict[tuple[str, str], ResourceCache] = {}
        self._writes = 0

    @property
    def comparison_exclusions(self) -> frozenset[str]:
        """Keys left out of the existing-versus-desired comparison."""
        return SERVER_ASSIGNED_FIELDS | self.read_only_fields | self.update_exclusions

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    def reconcile(
        self,
        templates: Iterable[DesiredStateItem | Mapping[str, Any]],
        mode: HydrationMode = HydrationMode.CREATE,
        dry_run: bool = False,
    ) -> list[ResultRecord]:
        """Reconcile template items, one at a time, in the order given.

        Returns:
            One record per processed item. In DELETE mode items without a
            matching resource created by this tool produce no record.
        """
        records: list[ResultRecord] = []
        for template in templates:
            item = template if isinstance(template, DesiredStateItem) else DesiredStateItem(
                body=dict(template)
            )
            record = self._process(item, mode, dry_run)
            if record is not None:
                records.append(record)

        logger.info(
            "Reconciled %s",
            self.category,
            extra={"category": self.category, "mode": mode.value, "dry_run": dry_run,
                   "record_count": len(records)},
        )
        return records

    def _process(
        self, item: DesiredStateItem, mode: HydrationMode, dry_run: bool
    ) -> ResultRecord | None:
        body = item.body
        path = item.source_label

        problem = self.identity_problem(body)
        if problem is not None:
            action, status = problem
            label = self.template_name(body) or (
                item.source.name if item.source is not None else UNNAMED
            )
            log = logger.error if action == ResultAction.FAILED else logger.warning
            log(
                "Template item rejected: %s",
                status,
                extra={"category": self.category, "item_name": label, "path": path},
            )
            return self._record(label, body, action, status, path=path)

        # SAFETY: identity_problem() returned None, so both are present
        raw_name = self.template_name(body)
        endpoint = self.resolve_endpoint(body)
        assert raw_name is not None and endpoint is not None

        name = self.prefixed(raw_name)
        try:
            if mode == HydrationMode.DELETE:
                return self._delete(name, body, endpoint, dry_run, path)
            return self._upsert(name, body, endpoint, dry_run, path)
        except Exception as e:
            message = failure_message(e)
            logger.error(
                "Failed to reconcile %s",
                name,
                extra={"category": self.category, "item_name": name, "error": message},
            )
            return self._record(
                name, body, ResultAction.FAILED, message, endpoint=endpoint, path=path
            )

    def _upsert(
        self,
        name: str,
        body: Mapping[str, Any],
        endpoint: Endpoint,
        dry_run: bool,
        path: str | None,
    ) -> ResultRecord:
        existing = self.find_existing(name, body, endpoint)

        # Ownership is established by creation only: a resource someone else
        # created is updated without claiming it for deletion
        stamp = existing is None or self.is_owned(existing)
        payload = self.build_payload(body, name, endpoint, stamp=stamp)
        desired = payload if existing is None else self.prepare_update_payload(payload)

        decision = decide(
            existing,
            desired,
            self._options.force_update,
            policy=self._options.update_policy,
            excluded_fields=self.comparison_exclusions,
            resource_type=str(body.get(ODATA_TYPE) or self.resource_type),
        )
        if (
            decision.action == UpsertAction.SKIP
            and self._options.update_policy == UpdatePolicy.UPDATE_ON_DIFF
            and existing is not None
            and existing.remote_id
        ):
            child_difference = self.child_drift(existing, body, endpoint)
            if child_difference is not None:
                decision = UpsertDecision(
                    UpsertAction.UPDATE, f"Drift detected (differs at {child_difference})"
                )

        logger.debug(
            "Upsert decision",
            extra={"category": self.category, "item_name": name, "action": decision.action.value,
                   "reason": decision.reason},
        )

        if decision.action == UpsertAction.SKIP:
            # SAFETY: existing is never None when the decision is SKIP
            assert existing is not None
            return self._record(
                name, body, ResultAction.SKIPPED, decision.reason, endpoint=endpoint, path=path,
                remote_id=existing.remote_id, state=self.state_of(existing.attributes),
            )

        if decision.action == UpsertAction.CREATE:
            return self._create(name, body, payload, endpoint, dry_run, path)

        # SAFETY: existing is never None when the decision is UPDATE
        assert existing is not None
        return self._update(name, body, desired, existing, decision, endpoint, dry_run, path)

    def _create(
        self,
        name: str,
        body: Mapping[str, Any],
        payload: dict[str, Any],
        endpoint: Endpoint,
        dry_run: bool,
        path: str | None,
    ) -> ResultRecord:
        if dry_run:
            # Later items of this run see the resource as they would in a real run
            self._cache_for(endpoint).remember(
                ExistingResourceRef(name=name, remote_id="", attributes=payload)
            )
            return self._record(
                name, body, ResultAction.WOULD_CREATE, "Would create", endpoint=endpoint,
                path=path, state=self.state_of(payload),
            )

        self._pause_between_writes()
        created = self._graph.post(endpoint.path, payload, api_version=endpoint.api_version)
        remote_id = created.get("id")
        attributes = {**payload, **created}

        # Visible to later items of this run (name uniqueness, idempotence)
        if remote_id:
            self._cache_for(endpoint).remember(
                ExistingResourceRef(name=name, remote_id=remote_id, attributes=attributes)
            )
            failure = self._sync_children(name, remote_id, body, endpoint)
            if failure is not None:
                return self._record(
                    name, body, ResultAction.FAILED, failure, endpoint=endpoint, path=path,
                    remote_id=remote_id, state=self.state_of(attributes),
                )

        logger.info(
            "Created %s",
            name,
            extra={"category": self.category, "item_name": name, "id": remote_id},
        )
        return self._record(
            name, body, ResultAction.CREATED, "Created", endpoint=endpoint, path=path,
            remote_id=remote_id, state=self.state_of(attributes),
        )

    def _update(
        self,
        name: str,
        body: Mapping[str, Any],
        payload: dict[str, Any],
        existing: ExistingResourceRef,
        decision: UpsertDecision,
        endpoint: Endpoint,
        dry_run: bool,
        path: str | None,
    ) -> ResultRecord:
        state = self.state_of(existing.attributes)
        if dry_run:
            return self._record(
                name, body, ResultAction.WOULD_UPDATE, decision.reason, endpoint=endpoint,
                path=path, remote_id=existing.remote_id, state=state,
            )

        self._pause_between_writes()
        item_path = endpoint.item_path(existing.remote_id)
        if endpoint.update_method == "PUT":
            self._graph.put(item_path, payload, api_version=endpoint.api_version)
        else:
            self._graph.patch(item_path, payload, api_version=endpoint.api_version)

        cache = self._cache_for(endpoint)
        # Matched under another name (secondary key): re-key the entry
        if existing.name != name:
            cache.forget(existing.name)
        cache.remember(
            ExistingResourceRef(
                name=name,
                remote_id=existing.remote_id,
                attributes={**(existing.attributes or {}), **payload},
            )
        )

        failure = self._sync_children(name, existing.remote_id, body, endpoint)
        if failure is not None:
            return self._record(
                name, body, ResultAction.FAILED, failure, endpoint=endpoint, path=path,
                remote_id=existing.remote_id, state=state,
            )

        logger.info(
            "Updated %s",
            name,
            extra={"category": self.category, "item_name": name, "id": existing.remote_id,
                   "reason": decision.reason},
        )
        return self._record(
            name, body, ResultAction.UPDATED, decision.reason, endpoint=endpoint, path=path,
            remote_id=existing.remote_id, state=state,
        )

    def _delete(
        self,
        name: str,
        body: Mapping[str, Any],
        endpoint: Endpoint,
        dry_run: bool,
        path: str | None,
    ) -> ResultRecord | None:
        existing = self.find_existing(name, body, endpoint)
        if existing is None:
            logger.debug("Nothing to delete", extra={"category": self.category, "item_name": name})
            return None

        # SAFETY: Only resources this tool created are ever deleted. Anything
        # else is left untouched without a record.
        if not self.is_owned(existing):
            logger.info(
                "Not created by this tool, leaving untouched",
                extra={"category": self.category, "item_name": name, "id": existing.remote_id},
            )
            return None

        if dry_run:
            self._cache_for(endpoint).forget(existing.name)
            return self._record(
                name, body, ResultAction.WOULD_DELETE, "Would delete", endpoint=endpoint,
                path=path, remote_id=existing.remote_id,
            )

        self._pause_between_writes()
        self._graph.delete(
            endpoint.item_path(existing.remote_id), api_version=endpoint.api_version
        )
        self._cache_for(endpoint).forget(existing.name)

        logger.info(
            "Deleted %s",
            name,
            extra={"category": self.category, "item_name": name, "id": existing.remote_id},
        )
        return self._record(
            name, body, ResultAction.DELETED, "Deleted", endpoint=endpoint, path=path,
            remote_id=existing.remote_id,
        )

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    @classmethod
    def template_name(cls, body: Mapping[str, Any]) -> str | None:
        """Display name of a template: displayName, or name for settings catalog."""
        for key in ("displayName", "name"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return None

    @classmethod
    def resolve_endpoint(cls, body: Mapping[str, Any]) -> Endpoint | None:
        """Map an item to its endpoint. None means unsupported."""
        if cls.typed_endpoints:
            odata_type = body.get(ODATA_TYPE)
            if not isinstance(odata_type, str):
                return None
            return cls.typed_endpoints.get(odata_type.lower())
        return cls.default_endpoint

    @classmethod
    def identity_problem(cls, body: Mapping[str, Any]) -> tuple[ResultAction, str] | None:
        """Check that an item names itself and maps to an endpoint.

        Runs before any remote call.

        Returns:
            (action, status) for a rejected item, None for a valid one.
        """
        if not cls.template_name(body):
            return ResultAction.FAILED, "Missing displayName"
        odata_type = body.get(ODATA_TYPE)
        if cls.typed_endpoints and not odata_type:
            return ResultAction.FAILED, "Missing @odata.type"
        if cls.resolve_endpoint(body) is None:
            return ResultAction.SKIPPED, f"Unsupported type: {odata_type}"
        return None

    def prefixed(self, name: str) -> str:
        """Apply the configured name prefix unless already present."""
        prefix = self._options.name_prefix
        if not prefix or name.startswith(prefix):
            return name
        return f"{prefix}{name}"

    def find_existing(
        self, name: str, body: Mapping[str, Any], endpoint: Endpoint
    ) -> ExistingResourceRef | None:
        """Find the remote resource an item corresponds to.

        Falls back to a filtered query by name when the collection could not
        be enumerated. A failing query propagates so the item fails instead
        of being created a second time.
        """
        cache = self._cache_for(endpoint)
        existing = cache.lookup(name)
        if existing is None and cache.degraded:
            existing = self._query_by_name(name, endpoint)
            if existing is not None:
                cache.remember(existing)
        return existing

    def is_owned(self, existing: ExistingResourceRef) -> bool:
        """Whether a remote resource carries this tool's provenance marker."""
        if self.marker_field is None:
            return False
        return has_marker(existing.attributes, self.marker_field)

    def build_payload(
        self,
        body: Mapping[str, Any],
        name: str,
        endpoint: Endpoint,
        *,
        stamp: bool = True,
    ) -> dict[str, Any]:
        """Build the create body for an item.

        The template is copied first; it is never modified.
        """
        payload = deep_copy(body)
        for key in SERVER_ASSIGNED_FIELDS | self.read_only_fields:
            payload.pop(key, None)

        for key in ("displayName", "name"):
            if key != endpoint.name_field:
                payload.pop(key, None)
        payload[endpoint.name_field] = name

        payload = self.apply_fixups(payload, endpoint)
        if stamp and self.marker_field:
            stamp_marker(payload, self.marker_field)
        return payload

    def apply_fixups(self, payload: dict[str, Any], endpoint: Endpoint) -> dict[str, Any]:
        """Family-specific structural changes to the create body."""
        return payload

    def prepare_update_payload(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Derive the update body from the create body."""
        return {k: v for k, v in payload.items() if k not in self.update_exclusions}

    def child_drift(
        self, existing: ExistingResourceRef, body: Mapping[str, Any], endpoint: Endpoint
    ) -> str | None:
        """Path of the first sub-resource differing from the template, if any."""
        return None

    def sync_children(self, remote_id: str, body: Mapping[str, Any], endpoint: Endpoint) -> None:
        """Write the sub-resources of a created or updated resource."""

    def platform_of(self, body: Mapping[str, Any], endpoint: Endpoint | None) -> str | None:
        return endpoint.platform if endpoint is not None else None

    def state_of(self, attributes: Mapping[str, Any] | None) -> str | None:
        """Recorded state for stateful resources."""
        return None

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _cache_for(self, endpoint: Endpoint) -> ResourceCache:
        """Build the endpoint's cache on first use."""
        cache = self._caches.get(endpoint.cache_key)
        if cache is None:
            name_field = endpoint.name_field

            def name_of(obj: Mapping[str, Any]) -> str | None:
                value = obj.get(name_field)
                return value if isinstance(value, str) and value else None

            cache = ResourceCache.build(
                lambda: self._graph.iter_pages(endpoint.path, api_version=endpoint.api_version),
                name_of,
                collection=endpoint.path,
            )
            self._caches[endpoint.cache_key] = cache
        return cache

    def _query_by_name(self, name: str, endpoint: Endpoint) -> ExistingResourceRef | None:
        quoted = name.replace("'", "''")
        matches = self._graph.list_all(
            endpoint.path,
            {"$filter": f"{endpoint.name_field} eq '{quoted}'"},
            api_version=endpoint.api_version,
        )
        for obj in matches:
            remote_id = obj.get("id")
            if obj.get(endpoint.name_field) == name and remote_id:
                logger.debug(
                    "Found by name query",
                    extra={"category": self.category, "item_name": name, "id": remote_id},
                )
                return ExistingResourceRef(name=name, remote_id=remote_id, attributes=obj)
        return None

    def _sync_children(
        self, name: str, remote_id: str, body: Mapping[str, Any], endpoint: Endpoint
    ) -> str | None:
        """Run sync_children. Returns the failure status, or None on success."""
        try:
            self.sync_children(remote_id, body, endpoint)
        except Exception as e:
            message = failure_message(e)
            logger.error(
                "Failed to write sub-resources of %s",
                name,
                extra={"category": self.category, "item_name": name, "id": remote_id,
                       "error": message},
            )
            return f"Sub-resources failed: {message}"
        return None

    def _pause_between_writes(self) -> None:
        """Sleep before every write but the first of this reconciler."""
        delay = self._options.item_delay_seconds
        if self._writes and delay > 0:
            self._sleep(delay)
        self._writes += 1

    def _record(
        self,
        name: str,
        body: Mapping[str, Any],
        action: ResultAction,
        status: str,
        *,
        endpoint: Endpoint | None = None,
        path: str | None = None,
        remote_id: str | None = None,
        state: str | None = None,
    ) -> ResultRecord:
        odata_type = body.get(ODATA_TYPE)
        return ResultRecord(
            name=name,
            resource_type=odata_type if isinstance(odata_type, str) else self.resource_type,
            action=action,
            status=status,
            path=path,
            id=remote_id or None,
            platform=self.platform_of(body, endpoint),
            state=state,
        )


def failure_message(error: BaseException) -> str:
    """Status text for a failed item."""
    if isinstance(error, ValidationError):
        problems = "; ".join(
            f"{'.'.join(str(x) for x in e['loc']) or 'template'}: {e['msg']}"
            for e in error.errors()
        )
        return f"Invalid template: {problems}"
    return describe_error(error)
