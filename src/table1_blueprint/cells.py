from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Hashable, Mapping, Optional, Union

import numpy as np

from .cache import ComputationKey, ResultCache, computation_key
from .dataset import Dataset
from .errors import ComputationNotApplicable
from .stats import StatisticProviders

logger = logging.getLogger(__name__)


class ComputationKind(str, Enum):
    NUMERIC_SUMMARY = "numeric_summary"
    PROPORTION_SUMMARY = "proportion_summary"
    MISSING_COUNT = "missing_count"
    P_VALUE = "p_value"


class Sentinel(Enum):
    """Cached outcomes that are not statistic values."""

    NOT_APPLICABLE = "not_applicable"
    INSUFFICIENT_DATA = "insufficient_data"

    def __repr__(self) -> str:
        return self.name


NOT_APPLICABLE = Sentinel.NOT_APPLICABLE
INSUFFICIENT_DATA = Sentinel.INSUFFICIENT_DATA

Result = Union[str, int, float, Dict[Any, str], Sentinel]


@dataclass(frozen=True)
class StaticContent:
    text: str
    marker: Optional[int] = None


@dataclass(frozen=True)
class Separator:
    rule_type: str = "stratum"


@dataclass(frozen=True)
class Computation:
    """Deferred statistic: describes what to compute, never holds the result.

    `stratum` and `group` name the subset (None = not restricted); `level`
    selects one entry of a per-level proportion mapping.
    """

    variable: str
    kind: ComputationKind
    stratum: Optional[Hashable] = None
    group: Optional[Hashable] = None
    method: str = ""
    level: Optional[Hashable] = None
    group_var: Optional[str] = None
    strata_var: Optional[str] = None
    categorical: bool = False

    @property
    def cache_key(self) -> ComputationKey:
        return computation_key(self.variable, self.stratum, self.kind, group=self.group, method=self.method)


class _Empty:
    _instance: Optional["_Empty"] = None

    def __new__(cls) -> "_Empty":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "EMPTY"


EMPTY = _Empty()

Cell = Union[StaticContent, Computation, Separator, _Empty]
CELL_TYPES = (StaticContent, Computation, Separator, _Empty)


def is_cell(obj: Any) -> bool:
    return isinstance(obj, CELL_TYPES)


def evaluate(cell: Cell, dataset: Dataset, cache: ResultCache, providers: StatisticProviders) -> Result:
    """Resolve a cell to its raw value.

    Static and separator cells never touch the cache. Computation cells are
    computed at most once per cache; failures resolve to NOT_APPLICABLE and
    are cached like any other value.
    """
    if cell is EMPTY or isinstance(cell, Separator):
        return ""
    if isinstance(cell, StaticContent):
        return cell.text
    if not isinstance(cell, Computation):
        raise TypeError(f"Not a cell: {cell!r}")

    value = cache.get_or_compute(cell.cache_key, lambda: _compute(cell, dataset, providers))
    if cell.kind is ComputationKind.PROPORTION_SUMMARY and cell.level is not None and isinstance(value, Mapping):
        return value.get(cell.level, NOT_APPLICABLE)
    return value


def _compute(cell: Computation, dataset: Dataset, providers: StatisticProviders) -> Result:
    try:
        return _dispatch(cell, dataset, providers)
    except ComputationNotApplicable as e:
        logger.debug("not applicable (%s): %s", cell.cache_key.describe(), e)
        return NOT_APPLICABLE
    except Exception as e:
        logger.warning("statistic failed (%s): %s: %s", cell.cache_key.describe(), type(e).__name__, e)
        return NOT_APPLICABLE


def _dispatch(cell: Computation, dataset: Dataset, providers: StatisticProviders) -> Result:
    scope: Dict[str, Any] = {}
    if cell.strata_var is not None and cell.stratum is not None:
        scope[cell.strata_var] = cell.stratum
    if cell.kind is not ComputationKind.P_VALUE and cell.group_var is not None and cell.group is not None:
        scope[cell.group_var] = cell.group
    subset = dataset.restrict(scope)
    if len(subset) == 0:
        return INSUFFICIENT_DATA

    values = subset.column(cell.variable)

    if cell.kind is ComputationKind.MISSING_COUNT:
        return int(values.isna().sum())

    if cell.kind is ComputationKind.NUMERIC_SUMMARY:
        present = values.dropna()
        if present.empty:
            return INSUFFICIENT_DATA
        return str(providers.numeric_summary(present.to_numpy(dtype=float)))

    if cell.kind is ComputationKind.PROPORTION_SUMMARY:
        present = values.dropna()
        if present.empty:
            return INSUFFICIENT_DATA
        return dict(providers.proportion_summary(present, dataset.levels(cell.variable)))

    if cell.kind is ComputationKind.P_VALUE:
        if cell.group_var is None:
            raise ComputationNotApplicable("p-value needs a grouping variable")
        both = subset.frame[[cell.variable, cell.group_var]].dropna()
        if both.empty:
            return INSUFFICIENT_DATA
        test = providers.categorical_test if cell.categorical else providers.continuous_test
        p = float(test(both[cell.variable], both[cell.group_var]))
        if not np.isfinite(p):
            raise ComputationNotApplicable("non-finite p-value")
        return p

    raise ValueError(f"Unknown computation kind: {cell.kind}")
