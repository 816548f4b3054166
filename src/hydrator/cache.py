"""Name-keyed lookup caches of existing remote resources.

Each reconciler enumerates a remote collection once per run instead of
querying for every template item. If enumeration fails the cache comes
back empty and marked degraded; reconcilers then look each item up with a
filtered query by name instead.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Page(Protocol):
    """One page of a paginated listing."""

    items: list[dict[str, Any]]
    next_link: str | None


ListPages = Callable[[], Iterable[Page]]
NameExtractor = Callable[[Mapping[str, Any]], str | None]


@dataclass(frozen=True)
class ExistingResourceRef:
    """A resource found remotely during this run.

    Attributes:
        name: Display name the resource is keyed by.
        remote_id: Service-assigned identifier.
        attributes: Raw object as listed, when available.
    """

    name: str
    remote_id: str
    attributes: dict[str, Any] | None = None


def display_name(obj: Mapping[str, Any]) -> str | None:
    """Default name extractor: displayName, falling back to name."""
    value = obj.get("displayName") or obj.get("name")
    return value if isinstance(value, str) and value else None


def _drain(list_pages: ListPages, name_extractor: NameExtractor) -> dict[str, ExistingResourceRef]:
    refs: dict[str, ExistingResourceRef] = {}
    for page in list_pages():
        for obj in page.items:
            name = name_extractor(obj)
            remote_id = obj.get("id")
            if not name or not remote_id:
                continue
            # First seen wins: later pages never overwrite a cached name
            if name not in refs:
                refs[name] = ExistingResourceRef(name=name, remote_id=remote_id, attributes=obj)
    return refs


def build_name_index(
    list_pages: ListPages,
    name_extractor: NameExtractor = display_name,
) -> dict[str, str]:
    """Drain a paginated listing into a name to id map.

    Args:
        list_pages: Callable returning the pages of the listing. Continuation
            cursors are followed until a page carries none.
        name_extractor: Returns the lookup name of a listed object.

    Returns:
        Name to id map, or an empty map if the listing failed.
    """
    try:
        refs = _drain(list_pages, name_extractor)
    except Exception as e:
        logger.warning("Resource enumeration failed, continuing without cache", extra={"error": str(e)})
        return {}
    return {name: ref.remote_id for name, ref in refs.items()}


class ResourceCache:
    """Existing resources of one remote collection, keyed by name.

    Keeps the raw listed objects so the upsert decision can compare them
    with the desired payload.
    """

    def __init__(
        self,
        refs: Mapping[str, ExistingResourceRef] | None = None,
        *,
        degraded: bool = False,
    ) -> None:
        self._refs: dict[str, ExistingResourceRef] = dict(refs or {})
        self._degraded = degraded

    @classmethod
    def build(
        cls,
        list_pages: ListPages,
        name_extractor: NameExtractor = display_name,
        *,
        collection: str = "",
    ) -> ResourceCache:
        """Enumerate a collection into a cache.

        A failed enumeration returns an empty, degraded cache instead of
        raising.
        """
        try:
            refs = _drain(list_pages, name_extractor)
        except Exception as e:
            logger.warning(
                "Resource enumeration failed, looking items up by name",
                extra={"collection": collection, "error": str(e)},
            )
            return cls(degraded=True)

        logger.debug(
            "Resource cache built",
            extra={"collection": collection, "cached_count": len(refs)},
        )
        return cls(refs)

    @property
    def degraded(self) -> bool:
        """True when enumeration failed and the cache is empty for that reason."""
        return self._degraded

    @property
    def ids(self) -> dict[str, str]:
        """Name to id view of the cache."""
        return {name: ref.remote_id for name, ref in self._refs.items()}

    def __len__(self) -> int:
        return len(self._refs)

    def __contains__(self, name: object) -> bool:
        return name in self._refs

    def lookup(self, name: str) -> ExistingResourceRef | None:
        """Find an existing resource by name."""
        return self._refs.get(name)

    def find(
        self, predicate: Callable[[ExistingResourceRef], bool]
    ) -> ExistingResourceRef | None:
        """Find the first cached resource matching a predicate."""
        for ref in self._refs.values():
            if predicate(ref):
                return ref
        return None

    def remember(self, ref: ExistingResourceRef) -> None:
        """Record a resource written during this run."""
        self._refs[ref.name] = ref

    def forget(self, name: str) -> None:
        """Drop a resource deleted during this run."""
        self._refs.pop(name, None)
