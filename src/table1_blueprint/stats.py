from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats

from .errors import ComputationNotApplicable, InvalidSpec

logger = logging.getLogger(__name__)

NumericSummary = Callable[[np.ndarray], str]
ProportionSummary = Callable[[pd.Series, Sequence[Any]], Dict[Any, str]]
TestFunction = Callable[[pd.Series, pd.Series], float]

_NUMERIC_SUMMARIES: Dict[str, Callable[..., str]] = {}
_CONTINUOUS_TESTS: Dict[str, TestFunction] = {}
_CATEGORICAL_TESTS: Dict[str, TestFunction] = {}


def register_numeric_summary(name: str) -> Callable[[Callable[..., str]], Callable[..., str]]:
    """Decorator registering `fn(values, digits) -> str` under `name`."""

    def deco(fn: Callable[..., str]) -> Callable[..., str]:
        _NUMERIC_SUMMARIES[name] = fn
        logger.debug("Registered numeric summary: %s", name)
        return fn

    return deco


def register_test(name: str, *, kind: str) -> Callable[[TestFunction], TestFunction]:
    """Decorator registering `fn(values, groups) -> p_value` as a continuous or categorical test."""
    if kind == "continuous":
        registry = _CONTINUOUS_TESTS
    elif kind == "categorical":
        registry = _CATEGORICAL_TESTS
    else:
        raise ValueError(f"Unknown test kind: {kind}")

    def deco(fn: TestFunction) -> TestFunction:
        registry[name] = fn
        logger.debug("Registered %s test: %s", kind, name)
        return fn

    return deco


def numeric_summaries() -> list[str]:
    return sorted(_NUMERIC_SUMMARIES)


def continuous_tests() -> list[str]:
    return sorted(_CONTINUOUS_TESTS)


def categorical_tests() -> list[str]:
    return sorted(_CATEGORICAL_TESTS)


def format_number(x: float, digits: int) -> str:
    x = float(x)
    if not np.isfinite(x):
        return "NA"
    out = f"{x:.{int(digits)}f}"
    # avoid "-0.00"
    if out.lstrip("-").strip("0.") == "" and out.startswith("-"):
        out = out[1:]
    return out


def _as_float(values: Any) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    return arr[np.isfinite(arr)]


def _sd(arr: np.ndarray) -> float:
    return float(np.std(arr, ddof=1)) if arr.size > 1 else float("nan")


# --- numeric summaries -----------------------------------------------------


@register_numeric_summary("mean_sd")
def mean_sd(values: Any, digits: int = 2) -> str:
    arr = _as_float(values)
    return f"{format_number(np.mean(arr), digits)} ({format_number(_sd(arr), digits)})"


@register_numeric_summary("median_iqr")
def median_iqr(values: Any, digits: int = 2) -> str:
    arr = _as_float(values)
    q1, med, q3 = np.quantile(arr, [0.25, 0.5, 0.75])
    return f"{format_number(med, digits)} [{format_number(q1, digits)}, {format_number(q3, digits)}]"


@register_numeric_summary("mean_ci")
def mean_ci(values: Any, digits: int = 2) -> str:
    """Mean with a normal-approximation 95% interval (1.96 standard errors)."""
    arr = _as_float(values)
    m = float(np.mean(arr))
    se = _sd(arr) / np.sqrt(arr.size)
    return f"{format_number(m, digits)} ({format_number(m - 1.96 * se, digits)}, {format_number(m + 1.96 * se, digits)})"


@register_numeric_summary("median_range")
def median_range(values: Any, digits: int = 2) -> str:
    arr = _as_float(values)
    return (
        f"{format_number(np.median(arr), digits)} "
        f"({format_number(np.min(arr), digits)}, {format_number(np.max(arr), digits)})"
    )


@register_numeric_summary("mean_se")
def mean_se(values: Any, digits: int = 2) -> str:
    arr = _as_float(values)
    se = _sd(arr) / np.sqrt(arr.size)
    return f"{format_number(np.mean(arr), digits)} ± {format_number(se, digits)}"


def proportion_summary(values: pd.Series, levels: Sequence[Any], digits: int = 1) -> Dict[Any, str]:
    """`n (pct%)` per level; percentages use the non-missing values as denominator."""
    s = pd.Series(values).dropna()
    total = int(len(s))
    counts = s.value_counts()
    out: Dict[Any, str] = {}
    for level in levels:
        n = int(counts.get(level, 0))
        pct = 100.0 * n / total if total else 0.0
        out[level] = f"{n} ({format_number(pct, digits)}%)"
    return out


# --- tests -----------------------------------------------------------------


def _split_groups(values: pd.Series, groups: pd.Series) -> list[np.ndarray]:
    df = pd.DataFrame({"v": pd.to_numeric(pd.Series(values).reset_index(drop=True), errors="coerce"),
                       "g": pd.Series(groups).reset_index(drop=True)}).dropna()
    parts = [grp["v"].to_numpy(dtype=float) for _, grp in df.groupby("g", observed=True, sort=True)]
    return [p for p in parts if p.size > 0]


def _contingency(values: pd.Series, groups: pd.Series) -> pd.DataFrame:
    v = pd.Series(values).reset_index(drop=True)
    g = pd.Series(groups).reset_index(drop=True)
    keep = v.notna() & g.notna()
    table = pd.crosstab(v[keep], g[keep])
    table = table.loc[table.sum(axis=1) > 0, table.sum(axis=0) > 0]
    if min(table.shape) < 2:
        raise ComputationNotApplicable(
            f"contingency table needs at least 2 occupied levels and 2 groups, got {table.shape[0]}x{table.shape[1]}"
        )
    return table


def _finite_p(p: Any) -> float:
    p = float(p)
    if not np.isfinite(p):
        raise ComputationNotApplicable("test returned a non-finite p-value")
    return p


@register_test("ttest", kind="continuous")
def ttest(values: pd.Series, groups: pd.Series) -> float:
    """Pooled-variance t-test; with more than two groups this is the one-way ANOVA F-test."""
    parts = _split_groups(values, groups)
    if len(parts) < 2:
        raise ComputationNotApplicable("t-test needs at least 2 occupied groups")
    if len(parts) == 2:
        return _finite_p(stats.ttest_ind(parts[0], parts[1], equal_var=True).pvalue)
    return _finite_p(stats.f_oneway(*parts).pvalue)


@register_test("welch", kind="continuous")
def welch(values: pd.Series, groups: pd.Series) -> float:
    parts = _split_groups(values, groups)
    if len(parts) != 2:
        raise ComputationNotApplicable(f"Welch t-test needs exactly 2 groups, got {len(parts)}")
    return _finite_p(stats.ttest_ind(parts[0], parts[1], equal_var=False).pvalue)


@register_test("anova", kind="continuous")
def anova(values: pd.Series, groups: pd.Series) -> float:
    parts = _split_groups(values, groups)
    if len(parts) < 2:
        raise ComputationNotApplicable("ANOVA needs at least 2 occupied groups")
    return _finite_p(stats.f_oneway(*parts).pvalue)


@register_test("kruskal", kind="continuous")
def kruskal(values: pd.Series, groups: pd.Series) -> float:
    parts = _split_groups(values, groups)
    if len(parts) < 2:
        raise ComputationNotApplicable("Kruskal-Wallis needs at least 2 occupied groups")
    try:
        res = stats.kruskal(*parts)
    except ValueError as e:
        # all values identical
        raise ComputationNotApplicable(str(e)) from e
    return _finite_p(res.pvalue)


@register_test("fisher", kind="categorical")
def fisher(values: pd.Series, groups: pd.Series) -> float:
    """Fisher's exact test for 2x2 tables; larger tables use the chi-square test."""
    table = _contingency(values, groups)
    if table.shape == (2, 2):
        return _finite_p(stats.fisher_exact(table.to_numpy()).pvalue)
    logger.debug("fisher: %sx%s table, using chi-square", table.shape[0], table.shape[1])
    return _finite_p(stats.chi2_contingency(table.to_numpy())[1])


@register_test("chisq", kind="categorical")
def chisq(values: pd.Series, groups: pd.Series) -> float:
    """Chi-square test; sparse 2x2 tables (any cell below 5) fall back to Fisher's exact test."""
    table = _contingency(values, groups)
    arr = table.to_numpy()
    if table.shape == (2, 2) and (arr < 5).any():
        return _finite_p(stats.fisher_exact(arr).pvalue)
    return _finite_p(stats.chi2_contingency(arr)[1])


# --- provider bundle -------------------------------------------------------


@dataclass(frozen=True)
class StatisticProviders:
    """Statistic functions bound for one blueprint, with the names used in cache keys."""

    numeric_summary: NumericSummary
    proportion_summary: ProportionSummary
    continuous_test: TestFunction
    categorical_test: TestFunction
    numeric_method: str = "mean_sd"
    proportion_method: str = "n_pct"
    continuous_method: str = "ttest"
    categorical_method: str = "fisher"


def _callable_name(fn: Callable[..., Any]) -> str:
    return f"custom:{getattr(fn, '__name__', type(fn).__name__)}"


def _lookup(option: Union[str, Callable[..., Any]], registry: Dict[str, Any], what: str) -> tuple[Any, str, bool]:
    if callable(option):
        return option, _callable_name(option), True
    name = str(option)
    if name not in registry:
        raise InvalidSpec(f"Unknown {what} '{name}'. Available: {sorted(registry)}")
    return registry[name], name, False


def resolve_providers(options: Any) -> StatisticProviders:
    """Bind the provider functions named by `options` (a TableOptions or compatible object)."""
    digits = int(getattr(options, "decimal_digits", 2))
    pct_digits = int(getattr(options, "percent_digits", 1))

    num_fn, num_name, num_custom = _lookup(getattr(options, "numeric_summary", "mean_sd"), _NUMERIC_SUMMARIES, "numeric summary")
    if not num_custom:
        num_fn = partial(num_fn, digits=digits)
        num_name = f"{num_name}/{digits}"
    cont_fn, cont_name, _ = _lookup(getattr(options, "continuous_test", "ttest"), _CONTINUOUS_TESTS, "continuous test")
    cat_fn, cat_name, _ = _lookup(getattr(options, "categorical_test", "fisher"), _CATEGORICAL_TESTS, "categorical test")

    return StatisticProviders(
        numeric_summary=num_fn,
        proportion_summary=partial(proportion_summary, digits=pct_digits),
        continuous_test=cont_fn,
        categorical_test=cat_fn,
        numeric_method=num_name,
        proportion_method=f"n_pct/{pct_digits}",
        continuous_method=cont_name,
        categorical_method=cat_name,
    )
