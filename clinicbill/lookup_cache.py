"""Per-run memoisation of entity lookups.

A billing run touches the same patients, physicians and procedure codes many
times.  :class:`EntityLookupCache` makes sure each of them is fetched at most
once per run and lets one batch listing be indexed under several keys (a
physician is named by id, document number or display name).  Misses are
remembered too, as :data:`NOT_FOUND`, so an unknown key never triggers a
second fetch.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Dict, Generic, Iterable, Optional, TypeVar, Union

import structlog


logger = structlog.get_logger(__name__)


T = TypeVar("T")


class _NotFound:
    __slots__ = ()

    def __repr__(self) -> str:
        return "NOT_FOUND"

    def __bool__(self) -> bool:
        return False


NOT_FOUND: Any = _NotFound()

Fetcher = Callable[[], Union[Optional[T], Awaitable[Optional[T]]]]
Loader = Callable[[], Union[Iterable[T], Awaitable[Iterable[T]]]]


def normalize_key(key: Any) -> Optional[str]:
    """Return the lookup form of ``key``; ``None`` for blank keys."""

    if key is None or isinstance(key, bool):
        return None
    text = str(key).strip()
    return text or None


async def _call(func: Callable[[], Any]) -> Any:
    result = func()
    if inspect.isawaitable(result):
        result = await result
    return result


class EntityLookupCache(Generic[T]):
    """Memoise lookups for one entity kind during a single run."""

    def __init__(self, name: str = "entity") -> None:
        self.name = name
        self._entries: Dict[str, Any] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Any) -> Any:
        """Return the cached value, :data:`NOT_FOUND`, or ``None`` if never seen."""

        normalised = normalize_key(key)
        if normalised is None:
            return None
        return self._entries.get(normalised)

    def register_aliases(self, value: T, keys: Iterable[Any]) -> None:
        """Index ``value`` under every non-blank key in ``keys``.

        An alias already bound to another value keeps its first binding.
        """

        for key in keys:
            normalised = normalize_key(key)
            if normalised is None:
                continue
            current = self._entries.get(normalised)
            if current is None or current is NOT_FOUND:
                self._entries[normalised] = value

    async def get_or_fetch(self, key: Any, fetcher: Fetcher) -> Any:
        """Return the value for ``key``, calling ``fetcher`` only on a miss.

        ``fetcher`` may be a plain or async callable.  If it raises or returns
        ``None`` the key is stored as :data:`NOT_FOUND`; other keys are
        unaffected.
        """

        normalised = normalize_key(key)
        if normalised is None:
            return NOT_FOUND
        if normalised in self._entries:
            self.hits += 1
            return self._entries[normalised]

        self.misses += 1
        try:
            value = await _call(fetcher)
        except Exception as exc:  # noqa: BLE001 - a failed lookup is a miss
            logger.warning(
                "entity_lookup_failed", cache=self.name, key=normalised, error=str(exc)
            )
            value = None
        if value is None:
            logger.info("entity_lookup_miss", cache=self.name, key=normalised)
            self._entries[normalised] = NOT_FOUND
            return NOT_FOUND
        self._entries[normalised] = value
        return value

    async def populate(
        self, loader: Loader, aliases: Callable[[T], Iterable[Any]]
    ) -> int:
        """Load one batch with ``loader`` and index each item by ``aliases``.

        Returns the number of items indexed; a failing loader indexes none and
        the cache keeps working through :meth:`get_or_fetch`.
        """

        try:
            items = await _call(loader)
        except Exception as exc:  # noqa: BLE001 - fall back to per-key fetches
            logger.warning("entity_batch_load_failed", cache=self.name, error=str(exc))
            return 0
        count = 0
        for item in items or ():
            self.register_aliases(item, aliases(item))
            count += 1
        logger.debug("entity_batch_loaded", cache=self.name, count=count)
        return count


__all__ = ["NOT_FOUND", "EntityLookupCache", "normalize_key"]
