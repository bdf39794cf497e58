"""Shape planning.

The planner decides how many rows and columns the table has, and what each
one means, from the table spec and static dataset facts (column kinds and
level sets). It never looks at a statistic, so the shape of a table does not
move when the numbers in the data do.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Hashable, List, Optional, Tuple

from .dataset import DatasetSchema, VariableKind
from .errors import InvalidSpec
from .spec import TableSpec

logger = logging.getLogger(__name__)

LABEL_KEY = "label"
TOTAL_KEY = "Total"
PVALUE_KEY = "p.value"


class RowRole(str, Enum):
    VARIABLE = "variable"
    VARIABLE_LEVEL = "variable_level"
    MISSING = "missing"
    STRATUM_HEADER = "stratum_header"
    FOOTNOTE = "footnote"


class ColumnRole(str, Enum):
    ROW_LABEL = "row_label"
    GROUP_LEVEL = "group_level"
    TOTAL = "total"
    PVALUE = "pvalue"


@dataclass(frozen=True)
class RowSlot:
    role: RowRole
    variable: Optional[str] = None
    level: Optional[Hashable] = None
    stratum: Optional[Hashable] = None


@dataclass(frozen=True)
class ColumnSlot:
    role: ColumnRole
    key: Hashable
    label: str
    group: Optional[Hashable] = None

    @property
    def is_data(self) -> bool:
        return self.role in (ColumnRole.GROUP_LEVEL, ColumnRole.TOTAL)


@dataclass(frozen=True)
class DimensionPlan:
    spec: TableSpec
    rows: Tuple[RowSlot, ...]
    columns: Tuple[ColumnSlot, ...]
    group_levels: Tuple[Any, ...] = ()
    strata_levels: Tuple[Any, ...] = ()

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def col_count(self) -> int:
        return len(self.columns)

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.row_count, self.col_count)

    @property
    def row_roles(self) -> Tuple[RowRole, ...]:
        return tuple(r.role for r in self.rows)

    @property
    def col_roles(self) -> Tuple[ColumnRole, ...]:
        return tuple(c.role for c in self.columns)

    @property
    def col_keys(self) -> Tuple[Hashable, ...]:
        return tuple(c.key for c in self.columns)

    def column_index(self, key: Hashable) -> int:
        for j, c in enumerate(self.columns):
            if c.key == key:
                return j
        raise KeyError(key)


def _variable_rows(var: str, kind: VariableKind, levels: Tuple[Any, ...], stratum: Any, spec: TableSpec) -> List[RowSlot]:
    opts = spec.options
    rows = [RowSlot(RowRole.VARIABLE, variable=var, stratum=stratum)]
    if kind is VariableKind.CATEGORICAL:
        for level in levels:
            rows.append(RowSlot(RowRole.VARIABLE_LEVEL, variable=var, level=level, stratum=stratum))
            if opts.show_missing_rows and opts.missing_policy == "per_level":
                rows.append(RowSlot(RowRole.MISSING, variable=var, level=level, stratum=stratum))
        if opts.show_missing_rows and (opts.missing_policy == "per_variable" or not levels):
            rows.append(RowSlot(RowRole.MISSING, variable=var, stratum=stratum))
    elif opts.show_missing_rows:
        rows.append(RowSlot(RowRole.MISSING, variable=var, stratum=stratum))
    return rows


def plan_dimensions(spec: TableSpec, schema: DatasetSchema) -> DimensionPlan:
    """Compute the row/column layout of a table without evaluating any statistic."""
    spec = spec.resolve(schema)
    opts = spec.options

    group_levels: Tuple[Any, ...] = ()
    if spec.group is not None:
        group_levels = schema[spec.group].levels
        if not group_levels:
            raise InvalidSpec(f"Grouping variable '{spec.group}' has no non-missing levels")

    strata_levels: Tuple[Any, ...] = ()
    if spec.strata is not None:
        strata_levels = schema[spec.strata].levels
        if not strata_levels:
            raise InvalidSpec(f"Stratification variable '{spec.strata}' has no non-missing levels")

    block_strata = strata_levels if spec.strata is not None else (None,)
    rows: List[RowSlot] = []
    for stratum in block_strata:
        if spec.strata is not None:
            rows.append(RowSlot(RowRole.STRATUM_HEADER, stratum=stratum))
        for v in spec.variables:
            levels = schema[v.name].levels if v.is_categorical else ()
            rows.extend(_variable_rows(v.name, v.kind, levels, stratum, spec))

    columns: List[ColumnSlot] = [ColumnSlot(ColumnRole.ROW_LABEL, LABEL_KEY, "Variable")]
    for level in group_levels:
        columns.append(ColumnSlot(ColumnRole.GROUP_LEVEL, level, str(level), group=level))
    if opts.show_totals_column:
        columns.append(ColumnSlot(ColumnRole.TOTAL, TOTAL_KEY, TOTAL_KEY))
    if opts.show_pvalue:
        columns.append(ColumnSlot(ColumnRole.PVALUE, PVALUE_KEY, "p-value"))

    plan = DimensionPlan(
        spec=spec,
        rows=tuple(rows),
        columns=tuple(columns),
        group_levels=tuple(group_levels),
        strata_levels=tuple(strata_levels),
    )
    logger.debug("planned %dx%d table (%d strata, %d groups)", plan.row_count, plan.col_count, len(strata_levels), len(group_levels))
    return plan
