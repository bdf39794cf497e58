import logging
from dataclasses import replace

import numpy as np
import pandas as pd
import pytest
from scipy import stats as sps

from table1_blueprint.cache import ResultCache
from table1_blueprint.cells import (
    EMPTY,
    INSUFFICIENT_DATA,
    NOT_APPLICABLE,
    Computation,
    ComputationKind,
    Separator,
    StaticContent,
    evaluate,
)
from table1_blueprint.dataset import Dataset
from table1_blueprint.spec import TableOptions
from table1_blueprint.stats import resolve_providers


def _make_ds() -> Dataset:
    return Dataset(
        pd.DataFrame(
            {
                "arm": ["A", "A", "A", "B", "B", "B"],
                "age": [10.0, 20.0, 30.0, 40.0, 50.0, np.nan],
                "sex": ["F", "F", "M", "F", "M", "M"],
                "flag": ["y"] * 6,
            }
        )
    )


def _summary(group=None, kind=ComputationKind.NUMERIC_SUMMARY, variable="age", **kw) -> Computation:
    return Computation(variable=variable, kind=kind, group=group, group_var="arm", **kw)


class _Counter:
    def __init__(self, fn):
        self.fn = fn
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        return self.fn(*args, **kwargs)


def test_computation_evaluated_at_most_once():
    base = resolve_providers(TableOptions())
    spy = _Counter(base.numeric_summary)
    providers = replace(base, numeric_summary=spy)
    cache = ResultCache()
    ds = _make_ds()
    cell = _summary(group="A", method=providers.numeric_method)

    first = evaluate(cell, ds, cache, providers)
    second = evaluate(cell, ds, cache, providers)
    assert first == second == "20.00 (10.00)"
    assert spy.calls == 1
    assert len(cache) == 1


def test_static_and_separator_cells_skip_cache():
    cache = ResultCache()
    providers = resolve_providers(TableOptions())
    ds = _make_ds()
    assert evaluate(StaticContent("Age"), ds, cache, providers) == "Age"
    assert evaluate(Separator("stratum"), ds, cache, providers) == ""
    assert evaluate(EMPTY, ds, cache, providers) == ""
    assert len(cache) == 0
    with pytest.raises(TypeError):
        evaluate("Age", ds, cache, providers)


def test_missing_values_are_dropped_and_counted():
    cache = ResultCache()
    providers = resolve_providers(TableOptions())
    ds = _make_ds()
    assert evaluate(_summary(group="B"), ds, cache, providers) == "45.00 (7.07)"
    assert evaluate(_summary(group="B", kind=ComputationKind.MISSING_COUNT), ds, cache, providers) == 1
    assert evaluate(_summary(kind=ComputationKind.MISSING_COUNT), ds, cache, providers) == 1


def test_proportion_cells_share_one_cached_mapping():
    cache = ResultCache()
    providers = resolve_providers(TableOptions())
    ds = _make_ds()
    f = _summary(group="A", kind=ComputationKind.PROPORTION_SUMMARY, variable="sex", level="F")
    m = _summary(group="A", kind=ComputationKind.PROPORTION_SUMMARY, variable="sex", level="M")
    assert f.cache_key == m.cache_key
    assert evaluate(f, ds, cache, providers) == "2 (66.7%)"
    assert evaluate(m, ds, cache, providers) == "1 (33.3%)"
    assert len(cache) == 1


def test_single_level_categorical_pvalue_is_not_applicable():
    cache = ResultCache()
    providers = resolve_providers(TableOptions())
    ds = _make_ds()
    cell = _summary(kind=ComputationKind.P_VALUE, variable="flag", categorical=True, method="fisher")
    assert evaluate(cell, ds, cache, providers) is NOT_APPLICABLE
    assert evaluate(cell, ds, cache, providers) is NOT_APPLICABLE
    assert cache.misses == 1


def test_pvalue_for_two_groups():
    cache = ResultCache()
    providers = resolve_providers(TableOptions())
    p = evaluate(_summary(kind=ComputationKind.P_VALUE, method="ttest"), _make_ds(), cache, providers)
    assert isinstance(p, float)
    assert p == pytest.approx(sps.ttest_ind([10.0, 20.0, 30.0], [40.0, 50.0]).pvalue)


def test_empty_subset_is_insufficient_data():
    cache = ResultCache()
    providers = resolve_providers(TableOptions())
    ds = _make_ds()
    assert evaluate(_summary(group="C"), ds, cache, providers) is INSUFFICIENT_DATA
    all_missing = Dataset(pd.DataFrame({"arm": ["A", "B"], "age": [np.nan, np.nan]}))
    assert evaluate(_summary(group="A"), all_missing, ResultCache(), providers) is INSUFFICIENT_DATA


def test_failing_provider_is_cached_as_not_applicable(caplog):
    def boom(values):
        raise RuntimeError("provider exploded")

    spy = _Counter(boom)
    providers = replace(resolve_providers(TableOptions()), numeric_summary=spy)
    cache = ResultCache()
    cell = _summary(group="A")
    with caplog.at_level(logging.WARNING, logger="table1_blueprint.cells"):
        assert evaluate(cell, _make_ds(), cache, providers) is NOT_APPLICABLE
    assert evaluate(cell, _make_ds(), cache, providers) is NOT_APPLICABLE
    assert spy.calls == 1
    assert "provider exploded" in caplog.text


def test_stratum_restricts_subset():
    ds = Dataset(
        pd.DataFrame(
            {
                "arm": ["A", "A", "B", "B"],
                "site": ["n", "s", "n", "s"],
                "age": [1.0, 100.0, 3.0, 300.0],
            }
        )
    )
    providers = resolve_providers(TableOptions(decimal_digits=0))
    cell = Computation(variable="age", kind=ComputationKind.NUMERIC_SUMMARY, stratum="n", group="A", group_var="arm", strata_var="site")
    assert evaluate(cell, ds, ResultCache(), providers) == "1 (NA)"
