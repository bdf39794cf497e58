from dataclasses import replace

import numpy as np
import pandas as pd
import pytest

from table1_blueprint.builder import build_blueprint, table1, variable_rows
from table1_blueprint.cache import ResultCache
from table1_blueprint.cells import INSUFFICIENT_DATA, NOT_APPLICABLE, Computation, ComputationKind, Separator, StaticContent
from table1_blueprint.dimensions import RowRole
from table1_blueprint.errors import InvalidSpec
from table1_blueprint.spec import Footnotes, TableOptions, TableSpec, VariableSpec
from table1_blueprint.stats import resolve_providers


def _trial_df() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "arm": ["A", "A", "A", "B", "B", "B"],
            "age": [10, 20, 30, 40, 50, 60],
            "sex": ["F", "F", "M", "F", "M", "M"],
        }
    )


def _make_df(n: int = 90, seed: int = 17) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    return pd.DataFrame(
        {
            "arm": pd.Categorical(rng.choice(["A", "B"], size=n), categories=["A", "B"]),
            "site": pd.Categorical(rng.choice(["north", "south", "west"], size=n), categories=["north", "south", "west"]),
            "age": rng.normal(55, 8, size=n),
            "weight": rng.normal(72, 10, size=n),
        }
    )


def test_builder_populates_descriptors_without_computing():
    calls = []
    base = resolve_providers(TableOptions())

    def spy(values):
        calls.append(len(values))
        return base.numeric_summary(values)

    providers = replace(base, numeric_summary=spy)
    bp = table1(_trial_df(), "arm", ["age"], providers=providers)

    assert bp.shape == (1, 4)
    assert bp[0, 0] == StaticContent("age")
    assert isinstance(bp[0, 1], Computation)
    assert bp[0, 1].kind is ComputationKind.NUMERIC_SUMMARY
    assert bp[0, 3].kind is ComputationKind.P_VALUE
    assert len({bp[0, j].cache_key for j in (1, 2, 3)}) == 3
    assert calls == []
    assert len(bp.cache) == 0

    assert bp.evaluate(0, 1) == "20.00 (10.00)"
    assert bp.evaluate(0, 2) == "50.00 (10.00)"
    assert 0.0 < bp.evaluate(0, 3) < 0.05
    assert calls == [3, 3]
    assert len(bp.cache) == 3


def test_categorical_rows():
    bp = table1(_trial_df(), "arm", ["sex"], show_totals_column=True, show_missing_rows=True)
    assert [r.role for r in bp.row_slots] == [RowRole.VARIABLE, RowRole.VARIABLE_LEVEL, RowRole.VARIABLE_LEVEL, RowRole.MISSING]
    assert bp.row_labels == ["sex", "F", "M", "Missing"]
    assert bp[0, 1] is not None and not isinstance(bp[0, 1], Computation)
    assert bp[0, 4].kind is ComputationKind.P_VALUE

    assert bp.evaluate(1, 1) == "2 (66.7%)"
    assert bp.evaluate(2, 2) == "2 (66.7%)"
    assert bp.evaluate(1, 3) == "3 (50.0%)"
    assert bp.evaluate(3, 1) == 0
    assert isinstance(bp.evaluate(0, 4), float)


def test_totals_and_group_sizes():
    bp = table1(_trial_df(), "arm", ["age"], show_totals_column=True, show_group_sizes=True)
    assert bp.col_labels == ["Variable", "A (n=3)", "B (n=3)", "Total (n=6)", "p-value"]
    assert bp.evaluate(0, 3) == "35.00 (18.71)"


def test_totals_only_table():
    bp = table1(_trial_df(), None, ["age", "sex"], show_totals_column=True, show_pvalue=False)
    assert bp.shape == (4, 2)
    assert bp.evaluate(0, 1) == "35.00 (18.71)"
    assert bp.evaluate(1, 1) == ""
    assert bp.evaluate(2, 1) == "3 (50.0%)"


def test_stratified_blueprint():
    bp = table1(
        _make_df(),
        "arm",
        ["age", "weight"],
        strata="site",
        show_missing_rows=True,
        show_totals_column=True,
    )
    assert bp.shape == (15, 5)
    assert bp[0, 0] == StaticContent("Site: north")
    assert all(bp[0, j] == Separator("stratum") for j in range(1, 5))

    rows = variable_rows(bp, "age")
    assert len(rows) == 3
    keys = {bp[i, 4].cache_key for i in rows}
    assert len(keys) == 3
    assert [bp[i, 4].stratum for i in rows] == ["north", "south", "west"]


def test_empty_dataset_resolves_to_insufficient_data():
    df = _make_df().iloc[0:0]
    bp = table1(df, "arm", ["age"], strata="site", show_missing_rows=True)
    full = table1(_make_df(), "arm", ["age"], strata="site", show_missing_rows=True)
    assert bp.shape == full.shape
    for r, c, cell in bp.populated():
        if isinstance(cell, Computation):
            assert bp.evaluate(r, c) is INSUFFICIENT_DATA


def test_single_level_variable_pvalue_not_applicable():
    df = _trial_df().assign(flag="y")
    bp = table1(df, "arm", ["flag"])
    assert bp.evaluate(0, 3) is NOT_APPLICABLE
    assert bp.evaluate(0, 3) is NOT_APPLICABLE
    assert bp.cache.misses == 1


def test_footnote_numbering():
    notes = Footnotes(
        variables={"sex": "Self-reported", "age": "Age in years"},
        columns={"p.value": "Welch t-test"},
        general=("Values are n (%) or mean (SD)",),
    )
    spec = TableSpec(
        group="arm",
        variables=(VariableSpec("age"), VariableSpec("sex", label="Sex")),
        options=TableOptions(footnotes=notes),
    )
    bp = build_blueprint(spec, _trial_df())
    assert bp.notes == [(1, "Age in years"), (2, "Self-reported"), (3, "Welch t-test")]
    assert bp[0, 0] == StaticContent("age", marker=1)
    assert bp[1, 0] == StaticContent("Sex", marker=2)
    assert bp.column_markers == {3: 3}


def test_footnote_targets_must_exist():
    with pytest.raises(InvalidSpec):
        table1(_trial_df(), "arm", ["age"], footnotes={"variables": {"bmi": "x"}})
    with pytest.raises(InvalidSpec):
        table1(_trial_df(), "arm", ["age"], footnotes={"columns": {"Total": "x"}})


def test_unknown_option_is_rejected():
    with pytest.raises(InvalidSpec):
        table1(_trial_df(), "arm", ["age"], show_everything=True)


def test_to_frame():
    frame = table1(_trial_df(), "arm", ["age"]).to_frame()
    assert list(frame.columns) == ["label", "A", "B", "p.value"]
    assert frame.iloc[0, 1] == "20.00 (10.00)"


def test_injected_cache_is_used():
    cache = ResultCache()
    bp = table1(_trial_df(), "arm", ["age"], cache=cache)
    assert bp.cache is cache
    bp.evaluate(0, 1)
    bp.evaluate(0, 1)
    assert (cache.misses, cache.hits) == (1, 1)

    spec = TableSpec(group="arm", variables=(VariableSpec("age"),), options=TableOptions())
    other = ResultCache()
    assert build_blueprint(spec, _trial_df(), cache=other).cache is other
