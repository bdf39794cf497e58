from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

import pandas as pd

from .blueprint import Blueprint
from .cache import ResultCache
from .cells import Computation, ComputationKind, Separator, StaticContent
from .dataset import Dataset
from .dimensions import ColumnRole, ColumnSlot, DimensionPlan, RowRole, RowSlot, plan_dimensions
from .errors import InvalidSpec
from .spec import TableOptions, TableSpec, VariableSpec
from .stats import StatisticProviders, resolve_providers

logger = logging.getLogger(__name__)

MISSING_LABEL = "Missing"


def _strata_title(name: str) -> str:
    return name.replace("_", " ").replace(".", " ").title()


def _data_cell(
    plan: DimensionPlan,
    providers: StatisticProviders,
    row: RowSlot,
    col: ColumnSlot,
) -> Optional[Computation]:
    spec = plan.spec
    var = spec.variable(row.variable)
    common = dict(
        variable=var.name,
        stratum=row.stratum,
        group_var=spec.group,
        strata_var=spec.strata,
        categorical=var.is_categorical,
    )

    if col.role is ColumnRole.PVALUE:
        if row.role is not RowRole.VARIABLE:
            return None
        method = providers.categorical_method if var.is_categorical else providers.continuous_method
        return Computation(kind=ComputationKind.P_VALUE, method=method, **common)

    group = col.group if col.role is ColumnRole.GROUP_LEVEL else None
    if row.role is RowRole.VARIABLE:
        if var.is_categorical:
            return None
        return Computation(kind=ComputationKind.NUMERIC_SUMMARY, group=group, method=providers.numeric_method, **common)
    if row.role is RowRole.VARIABLE_LEVEL:
        return Computation(
            kind=ComputationKind.PROPORTION_SUMMARY,
            group=group,
            level=row.level,
            method=providers.proportion_method,
            **common,
        )
    if row.role is RowRole.MISSING:
        return Computation(kind=ComputationKind.MISSING_COUNT, group=group, **common)
    return None


def _populate(bp: Blueprint) -> None:
    plan = bp.plan
    spec = plan.spec
    for i, row in enumerate(plan.rows):
        if row.role is RowRole.STRATUM_HEADER:
            bp[i, 0] = StaticContent(f"{_strata_title(spec.strata)}: {row.stratum}")
            for j in range(1, plan.col_count):
                bp[i, j] = Separator("stratum")
            continue

        if row.role is RowRole.VARIABLE:
            bp[i, 0] = StaticContent(spec.variable(row.variable).display_label)
        elif row.role is RowRole.VARIABLE_LEVEL:
            bp[i, 0] = StaticContent(str(row.level))
        elif row.role is RowRole.MISSING:
            bp[i, 0] = StaticContent(MISSING_LABEL)

        for j, col in enumerate(plan.columns):
            if col.role is ColumnRole.ROW_LABEL:
                continue
            cell = _data_cell(plan, bp.providers, row, col)
            if cell is not None:
                bp[i, j] = cell


def _annotate_group_sizes(bp: Blueprint) -> None:
    group = bp.spec.group
    for j, col in enumerate(bp.col_slots):
        if col.role is ColumnRole.GROUP_LEVEL:
            n = int((bp.dataset.column(group) == col.group).fillna(False).sum())
        elif col.role is ColumnRole.TOTAL:
            n = len(bp.dataset)
        else:
            continue
        bp.col_labels[j] = f"{col.label} (n={n})"


def _column_for(plan: DimensionPlan, key: str) -> int:
    for j, col in enumerate(plan.columns):
        if str(col.key) == key or col.label == key:
            return j
    raise InvalidSpec(f"Footnote refers to unknown column '{key}'. Columns: {[str(c.key) for c in plan.columns]}")


def _check_footnotes(plan: DimensionPlan) -> None:
    notes = plan.spec.options.footnotes
    unknown = [k for k in notes.variables if k not in plan.spec.variable_names]
    if unknown:
        raise InvalidSpec(f"Footnotes refer to unknown variables: {unknown}")
    for key in notes.columns:
        _column_for(plan, key)


def _apply_footnotes(bp: Blueprint) -> None:
    """Number variable notes in variable order, then column notes; mark their cells."""
    notes = bp.footnotes
    number = 1
    for var in bp.spec.variables:
        text = notes.variables.get(var.name)
        if text is None:
            continue
        for i, row in enumerate(bp.row_slots):
            if row.role is RowRole.VARIABLE and row.variable == var.name:
                bp[i, 0] = StaticContent(var.display_label, marker=number)
        bp.notes.append((number, text))
        number += 1
    for key, text in notes.columns.items():
        bp.column_markers[_column_for(bp.plan, key)] = number
        bp.notes.append((number, text))
        number += 1


def build_blueprint(
    spec: TableSpec,
    data: Union[Dataset, pd.DataFrame, Mapping[str, Sequence[Any]]],
    providers: Optional[StatisticProviders] = None,
    cache: Optional[ResultCache] = None,
) -> Blueprint:
    """Plan, allocate and populate a blueprint. No statistic is computed here."""
    spec.validate()
    dataset = Dataset.coerce(data)
    wanted = list(spec.variable_names) + [c for c in (spec.group, spec.strata) if c is not None]
    schema = dataset.schema([c for c in wanted if c in dataset])

    plan = plan_dimensions(spec, schema)
    _check_footnotes(plan)
    if providers is None:
        providers = resolve_providers(plan.spec.options)

    bp = Blueprint.allocate(plan, dataset, providers, cache=cache)
    _populate(bp)
    if plan.spec.options.show_group_sizes:
        _annotate_group_sizes(bp)
    _apply_footnotes(bp)
    logger.debug("built %r", bp)
    return bp


def table1(
    data: Union[Dataset, pd.DataFrame, Mapping[str, Sequence[Any]]],
    group: Optional[str],
    variables: Iterable[Union[str, VariableSpec, Mapping[str, Any]]],
    strata: Optional[str] = None,
    *,
    providers: Optional[StatisticProviders] = None,
    cache: Optional[ResultCache] = None,
    **options: Any,
) -> Blueprint:
    """One-call construction: `table1(df, "arm", ["age", "sex"], show_pvalue=True)`."""
    if isinstance(variables, (str, VariableSpec, Mapping)):
        variables = [variables]
    spec = TableSpec(
        group=group,
        variables=tuple(VariableSpec.from_value(v) for v in variables),
        strata=strata,
        options=TableOptions.from_mapping(options),
    )
    return build_blueprint(spec, data, providers=providers, cache=cache)


def variable_rows(bp: Blueprint, name: str) -> List[int]:
    """Row indices of the variable rows for `name` (one per stratum)."""
    return [i for i, r in enumerate(bp.row_slots) if r.role is RowRole.VARIABLE and r.variable == name]
