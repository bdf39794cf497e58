from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Iterator, Optional

import numpy as np

logger = logging.getLogger(__name__)


class KeyMarker(Enum):
    """Normalized stand-ins for absent key components.

    Enum members never compare equal to data values, so an unstratified key
    cannot collide with a stratum whose level is "none" or "".
    """

    NO_STRATUM = "no_stratum"
    ALL_GROUPS = "all_groups"

    def __repr__(self) -> str:
        return f"<{self.value}>"


@dataclass(frozen=True)
class ComputationKey:
    variable: str
    stratum: Hashable
    group: Hashable
    kind: str
    method: str = ""

    def describe(self) -> str:
        strat = "none" if self.stratum is KeyMarker.NO_STRATUM else str(self.stratum)
        grp = "all" if self.group is KeyMarker.ALL_GROUPS else str(self.group)
        meth = f":{self.method}" if self.method else ""
        return f"var={self.variable} strat={strat} group={grp} kind={self.kind}{meth}"


def _plain(value: Any) -> Hashable:
    if isinstance(value, np.generic):
        return value.item()
    return value


def computation_key(
    variable: str,
    stratum: Any = None,
    kind: Any = "",
    *,
    group: Any = None,
    method: str = "",
) -> ComputationKey:
    """Pure, deterministic key for one statistic.

    Equal components always give an equal key; any differing component gives a
    different key. Missing stratum/group are replaced by KeyMarker sentinels.
    """
    return ComputationKey(
        variable=str(variable),
        stratum=KeyMarker.NO_STRATUM if stratum is None else _plain(stratum),
        group=KeyMarker.ALL_GROUPS if group is None else _plain(group),
        kind=str(getattr(kind, "value", kind)),
        method=str(method or ""),
    )


class ResultCache:
    """Memoization store owned by exactly one Blueprint."""

    def __init__(self) -> None:
        self._store: Dict[ComputationKey, Any] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def __len__(self) -> int:
        return len(self._store)

    def __iter__(self) -> Iterator[ComputationKey]:
        return iter(list(self._store))

    def get(self, key: ComputationKey, default: Optional[Any] = None) -> Any:
        return self._store.get(key, default)

    def put(self, key: ComputationKey, value: Any) -> Any:
        with self._lock:
            self._store[key] = value
        return value

    def get_or_compute(self, key: ComputationKey, compute: Callable[[], Any]) -> Any:
        """Return the cached value, computing and storing it on first request.

        The computation runs outside the lock; when two threads race on the same
        key the first stored value wins and both callers receive it.
        """
        with self._lock:
            if key in self._store:
                self.hits += 1
                return self._store[key]
            self.misses += 1
        logger.debug("cache miss: %s", key.describe())
        value = compute()
        with self._lock:
            return self._store.setdefault(key, value)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self.hits = 0
            self.misses = 0

    def __repr__(self) -> str:
        return f"ResultCache(entries={len(self._store)}, hits={self.hits}, misses={self.misses})"
