import re

import numpy as np
import pandas as pd
import pytest

from table1_blueprint.builder import table1
from table1_blueprint.errors import InvalidSpec, ShapeMismatch, UnknownTheme
from table1_blueprint.render import OutputFormat, render, render_console, render_html, render_latex

_NUMBER = re.compile(r"\d+\.\d+")


def _trial_df() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "arm": ["A", "A", "A", "B", "B", "B"],
            "age": [10, 20, 30, 40, 50, 60],
            "sex": ["F", "F", "M", "F", "M", "M"],
        }
    )


def _make_df(n: int = 80, seed: int = 23) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    return pd.DataFrame(
        {
            "arm": pd.Categorical(rng.choice(["A", "B"], size=n), categories=["A", "B"]),
            "site": pd.Categorical(rng.choice(["north", "south"], size=n), categories=["north", "south"]),
            "age": rng.normal(60, 9, size=n),
            "sex": pd.Categorical(rng.choice(["F", "M"], size=n), categories=["F", "M"]),
        }
    )


def _row(lines, prefix):
    return next(line for line in lines if line.startswith(prefix))


def test_console_output():
    table = render_console(table1(_trial_df(), "arm", ["age"]))
    assert table.format is OutputFormat.CONSOLE
    assert table.packages == ()
    header = table.lines[0]
    for label in ("Variable", "A", "B", "p-value"):
        assert label in header
    assert set(table.lines[1]) == {"-"}
    row = _row(table.lines, "age")
    assert "20.00 (10.00)" in row
    assert "50.00 (10.00)" in row
    assert "0.021" in row


def test_rendering_is_idempotent_and_reuses_cache():
    bp = table1(_trial_df(), "arm", ["age", "sex"], show_missing_rows=True)
    first = render(bp, fmt="console").text
    entries = len(bp.cache)
    misses = bp.cache.misses
    assert render(bp, fmt="console").text == first
    render(bp, fmt="html")
    render(bp, fmt="latex")
    assert len(bp.cache) == entries
    assert bp.cache.misses == misses


def test_same_numbers_in_every_format():
    bp = table1(_trial_df(), "arm", ["age"], show_totals_column=True)
    console = _row(render_console(bp).lines, "age")
    html = _row(render_html(bp).lines, '<tr class="variable"><td>age</td>')
    latex = _row(render_latex(bp).lines, "age &")

    expected = _NUMBER.findall(console)
    assert expected == ["20.00", "10.00", "50.00", "10.00", "35.00", "18.71", "0.021"]
    assert _NUMBER.findall(re.sub(r"<[^>]+>", " ", html)) == expected
    assert _NUMBER.findall(re.sub(r"\\[a-zA-Z]+", " ", latex)) == expected


def test_html_structure():
    table = render_html(table1(_trial_df(), "arm", ["age", "sex"]), theme="jama")
    assert table.lines[0] == "<style>"
    assert '<table class="table1 table1-jama">' in table.lines
    assert "<thead>" in table.lines and "<tbody>" in table.lines
    assert table.lines[-1] == "</table>"
    assert any(".table1.table1-jama" in line for line in table.lines)
    level_row = _row(table.lines, '<tr class="variable_level">')
    assert "padding-left" in level_row


def test_latex_structure_and_packages():
    table = render_latex(table1(_trial_df(), "arm", ["age"]))
    assert "\\begin{tabular}{lccc}" in table.lines
    assert table.lines[table.lines.index("\\begin{tabular}{lccc}") + 1] == "\\toprule"
    assert "\\midrule" in table.lines
    assert table.lines[-2:] == ("\\bottomrule", "\\end{tabular}")
    assert table.packages == ("booktabs",)


def test_striped_theme_declares_color_packages():
    table = render_latex(table1(_trial_df(), "arm", ["age", "sex"]), theme="nejm")
    assert "xcolor" in table.packages and "colortbl" in table.packages
    assert table.lines[0].startswith("\\definecolor{table1stripe}{HTML}{FEFCF0}")
    assert any(line.startswith("\\rowcolor{table1stripe}") for line in table.lines)
    assert "20.00 $\\pm$ 10.00" in _row(table.lines, "age &")


def test_footnotes_in_every_format():
    bp = table1(
        _trial_df(),
        "arm",
        ["age"],
        footnotes={"variables": {"age": "Age in years"}, "columns": {"p.value": "t-test"}, "general": ["Mean (SD)"]},
    )
    console = render_console(bp)
    assert console.lines[-4:] == ("Footnotes:", "1. Age in years", "2. t-test", "• Mean (SD)")
    assert _row(console.lines, "age¹")
    assert "p-value²" in console.lines[0]

    html = render_html(bp).text
    assert "<tfoot>" in html
    assert "age<sup>1</sup>" in html

    latex = render_latex(bp)
    assert "threeparttable" in latex.packages
    assert latex.lines[0] == "\\begin{threeparttable}"
    assert latex.lines[-1] == "\\end{threeparttable}"
    assert "\\item[1] Age in years" in latex.lines
    assert "\\item Mean (SD)" in latex.lines


def test_theme_marker_style():
    bp = table1(_trial_df(), "arm", ["age"], footnotes={"variables": {"age": "Age in years"}})
    lines = render_console(bp, theme="jama").lines
    assert "a. Age in years" in lines
    assert _row(lines, "agea")


def test_title_and_stratum_order():
    bp = table1(_make_df(), "arm", ["age", "sex"], strata="site", title="Baseline characteristics")
    for fmt in ("console", "html", "latex"):
        lines = render(bp, fmt=fmt).lines
        assert lines[0] == "Baseline characteristics"
        assert lines[1] == ""
        text = "\n".join(lines)
        assert text.index("Site: north") < text.index("Site: south")


def test_unknown_theme_still_renders():
    bp = table1(_trial_df(), "arm", ["age"])
    with pytest.warns(UnknownTheme):
        table = render(bp, theme="nonexistent")
    assert table.text == render_console(bp).text


def test_shape_violation_stops_render():
    bp = table1(_trial_df(), "arm", ["age"])
    bp.col_labels.append("extra")
    with pytest.raises(ShapeMismatch):
        render(bp)


def test_unknown_format():
    with pytest.raises(InvalidSpec):
        render(table1(_trial_df(), "arm", ["age"]), fmt="docx")


def test_blueprint_render_shortcut():
    bp = table1(_trial_df(), "arm", ["age"])
    assert bp.render("latex").text == render_latex(bp).text


def test_inline_theme_with_unknown_base_still_renders():
    bp = table1(_trial_df(), "arm", ["age"])
    with pytest.warns(UnknownTheme):
        table = render(bp, theme={"base": "nonexistent"})
    assert "20.00 (10.00)" in _row(table.lines, "age")


def test_nature_theme_latex_rules():
    table = render_latex(table1(_trial_df(), "arm", ["age"]), theme="nature")
    assert "\\toprule[1pt]" in table.lines
    assert "\\midrule[0.5pt]" in table.lines
    assert table.lines[-2:] == ("\\bottomrule[1pt]", "\\end{tabular}")
    assert table.packages[:3] == ("booktabs", "array", "xcolor")


def test_numeric_custom_summary_is_not_shown_as_pvalue():
    bp = table1(_trial_df(), "arm", ["age"], numeric_summary=lambda v: float(np.mean(v)))
    assert bp.evaluate(0, 1) == "20.0"
    row = _row(render_console(bp).lines, "age")
    assert "20.0" in row
    assert "20.000" not in row
