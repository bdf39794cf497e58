"""Render pipeline.

One control flow for every output format:

    validate -> resolve theme -> title -> evaluate grid
    -> setup -> header -> body -> footnotes -> cleanup

The per-format parts live in a dispatch table with one entry of six hooks
per OutputFormat. The grid is evaluated once per render, row-major, before
any hook runs, so every format sees the same cached values.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Sequence, Tuple

from .cells import Computation, StaticContent
from .dimensions import RowRole
from .errors import InvalidSpec
from .themes import Theme, apply, format_marker, resolve_theme

logger = logging.getLogger(__name__)


class OutputFormat(str, Enum):
    CONSOLE = "console"
    HTML = "html"
    LATEX = "latex"

    @classmethod
    def coerce(cls, value: Any) -> "OutputFormat":
        if isinstance(value, OutputFormat):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as e:
            raise InvalidSpec(f"Unknown output format {value!r}. Available: {[f.value for f in cls]}") from e


@dataclass(frozen=True)
class RenderedTable:
    format: OutputFormat
    lines: Tuple[str, ...]
    packages: Tuple[str, ...] = ()

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    def __str__(self) -> str:
        return self.text


@dataclass
class RenderContext:
    blueprint: Any
    theme: Theme
    fmt: OutputFormat
    matrix: List[List[str]]
    header: List[str]
    notes: List[Tuple[str, str]] = field(default_factory=list)
    general: List[str] = field(default_factory=list)

    @property
    def n_cols(self) -> int:
        return self.blueprint.n_cols

    @property
    def has_footnotes(self) -> bool:
        return bool(self.notes or self.general)

    def indent(self, row: int) -> int:
        role = self.blueprint.row_slots[row].role
        if role is RowRole.VARIABLE:
            return self.theme.variable_indent
        if role in (RowRole.VARIABLE_LEVEL, RowRole.MISSING):
            return self.theme.variable_indent + self.theme.level_indent
        return 0

    def is_stratum(self, row: int) -> bool:
        return self.blueprint.row_slots[row].role is RowRole.STRATUM_HEADER


class FormatHooks(NamedTuple):
    setup: Callable[[RenderContext], List[str]]
    header: Callable[[RenderContext], List[str]]
    body: Callable[[RenderContext], List[str]]
    escape: Callable[[str], str]
    footnotes: Callable[[RenderContext], List[str]]
    cleanup: Callable[[RenderContext], List[str]]


# --- markers ---------------------------------------------------------------

_SUPERSCRIPTS = str.maketrans("0123456789", "⁰¹²³⁴⁵⁶⁷⁸⁹")


def _marker_markup(fmt: OutputFormat, theme: Theme, index: int) -> str:
    mark = format_marker(theme, index)
    if fmt is OutputFormat.HTML:
        return f"<sup>{html.escape(mark)}</sup>"
    if fmt is OutputFormat.LATEX:
        return f"\\tnote{{{escape_latex(mark)}}}"
    if theme.footnote_style == "numeric":
        return mark.translate(_SUPERSCRIPTS)
    return mark


# --- console ---------------------------------------------------------------

_MIN_WIDTH = 8
_JOIN = "  "


def _console_widths(ctx: RenderContext) -> List[int]:
    widths = [max(_MIN_WIDTH, len(h)) for h in ctx.header]
    for i, row in enumerate(ctx.matrix):
        if ctx.is_stratum(i):
            continue
        for j, text in enumerate(row):
            n = len(text) + (ctx.indent(i) if j == 0 else 0)
            widths[j] = max(widths[j], n)
    return widths


def _console_line(cells: Sequence[str], widths: Sequence[int]) -> str:
    out = [cells[0].ljust(widths[0])] + [c.center(w) for c, w in zip(cells[1:], widths[1:])]
    return _JOIN.join(out).rstrip()


def _console_rule(ctx: RenderContext) -> str:
    widths = _console_widths(ctx)
    return ctx.theme.console_rule * (sum(widths) + len(_JOIN) * (len(widths) - 1))


def _console_setup(ctx: RenderContext) -> List[str]:
    return []


def _console_header(ctx: RenderContext) -> List[str]:
    return [_console_line(ctx.header, _console_widths(ctx)), _console_rule(ctx)]


def _console_body(ctx: RenderContext) -> List[str]:
    widths = _console_widths(ctx)
    lines: List[str] = []
    for i, row in enumerate(ctx.matrix):
        if ctx.is_stratum(i):
            if i > 0 and ctx.theme.stratum_separator == "line":
                lines.append(_console_rule(ctx))
            elif i > 0 and ctx.theme.stratum_separator == "space":
                lines.append("")
            lines.append(row[0])
            continue
        cells = [" " * ctx.indent(i) + row[0]] + row[1:]
        lines.append(_console_line(cells, widths))
    lines.append(_console_rule(ctx))
    return lines


def _console_escape(text: str) -> str:
    return text


def _console_footnotes(ctx: RenderContext) -> List[str]:
    if not ctx.has_footnotes:
        return []
    lines = ["", "Footnotes:"]
    lines += [f"{mark}. {text}" for mark, text in ctx.notes]
    lines += [f"• {text}" for text in ctx.general]
    return lines


def _console_cleanup(ctx: RenderContext) -> List[str]:
    return []


# --- html ------------------------------------------------------------------


def _html_escape(text: str) -> str:
    return html.escape(text, quote=True)


def _html_setup(ctx: RenderContext) -> List[str]:
    t = ctx.theme
    scope = f".table1.{t.css_class}"
    weight = "bold" if t.header_bold else "normal"
    background = f" background-color: {t.header_background};" if t.header_background else ""
    lines = [
        "<style>",
        f"{scope} {{ border-collapse: collapse; font-family: {t.font_family}; font-size: {t.font_size}; color: {t.text_color}; }}",
        f"{scope} th, {scope} td {{ padding: 4px 8px; text-align: center; }}",
        f"{scope} th:first-child, {scope} td:first-child {{ text-align: left; }}",
        f"{scope} thead th {{ font-weight: {weight}; border-top: 2px solid {t.border_color}; border-bottom: 1px solid {t.border_color};{background} }}",
        f"{scope} tbody tr:last-child td {{ border-bottom: 2px solid {t.border_color}; }}",
        f"{scope} tr.stratum td {{ font-style: italic; }}",
    ]
    if t.stratum_separator == "line":
        lines.append(f"{scope} tr.stratum td {{ border-top: 1px solid {t.border_color}; }}")
    elif t.stratum_separator == "space":
        lines.append(f"{scope} tr.stratum td {{ padding-top: 12px; }}")
    if t.stripe_rows:
        lines.append(f"{scope} tbody tr.stripe td {{ background-color: {t.stripe_color}; }}")
    lines.append(f"{scope} tfoot td {{ font-size: smaller; text-align: left; }}")
    lines.append("</style>")
    lines.append(f'<table class="table1 {t.css_class}">')
    return lines


def _html_header(ctx: RenderContext) -> List[str]:
    cells = "".join(f"<th>{h}</th>" for h in ctx.header)
    return ["<thead>", f"<tr>{cells}</tr>", "</thead>"]


def _html_body(ctx: RenderContext) -> List[str]:
    lines = ["<tbody>"]
    stripe = 0
    for i, row in enumerate(ctx.matrix):
        if ctx.is_stratum(i):
            stripe = 0
            lines.append(f'<tr class="stratum"><td colspan="{ctx.n_cols}">{row[0]}</td></tr>')
            continue
        stripe += 1
        role = ctx.blueprint.row_slots[i].role.value
        classes = role + (" stripe" if ctx.theme.stripe_rows and stripe % 2 == 0 else "")
        indent = ctx.indent(i)
        first = f'<td style="padding-left: {0.5 + 0.5 * indent:g}em">' if indent else "<td>"
        cells = first + row[0] + "</td>" + "".join(f"<td>{c}</td>" for c in row[1:])
        lines.append(f'<tr class="{classes}">{cells}</tr>')
    lines.append("</tbody>")
    return lines


def _html_footnotes(ctx: RenderContext) -> List[str]:
    if not ctx.has_footnotes:
        return []
    lines = ["<tfoot>"]
    for mark, text in ctx.notes:
        lines.append(f'<tr><td colspan="{ctx.n_cols}"><sup>{_html_escape(mark)}</sup> {_html_escape(text)}</td></tr>')
    for text in ctx.general:
        lines.append(f'<tr><td colspan="{ctx.n_cols}">{_html_escape(text)}</td></tr>')
    lines.append("</tfoot>")
    return lines


def _html_cleanup(ctx: RenderContext) -> List[str]:
    return ["</table>"]


# --- latex -----------------------------------------------------------------

_LATEX_SPECIALS = {
    "\\": "\\textbackslash{}",
    "&": "\\&",
    "%": "\\%",
    "$": "\\$",
    "#": "\\#",
    "_": "\\_",
    "{": "\\{",
    "}": "\\}",
    "~": "\\textasciitilde{}",
    "^": "\\textasciicircum{}",
    "<": "$<$",
    ">": "$>$",
    "±": "$\\pm$",
}


def escape_latex(text: str) -> str:
    return "".join(_LATEX_SPECIALS.get(ch, ch) for ch in text)


_STRIPE_COLOR = "table1stripe"


def _latex_setup(ctx: RenderContext) -> List[str]:
    lines: List[str] = []
    if ctx.theme.stripe_rows:
        lines.append(f"\\definecolor{{{_STRIPE_COLOR}}}{{HTML}}{{{ctx.theme.stripe_color.lstrip('#').upper()}}}")
    if ctx.has_footnotes:
        lines.append("\\begin{threeparttable}")
    lines.append("\\begin{tabular}{l" + "c" * (ctx.n_cols - 1) + "}")
    if ctx.theme.top_rule:
        lines.append(ctx.theme.top_rule)
    return lines


def _latex_header(ctx: RenderContext) -> List[str]:
    cells = [f"\\textbf{{{h}}}" if ctx.theme.header_bold and h else h for h in ctx.header]
    lines = [" & ".join(cells) + " \\\\"]
    if ctx.theme.mid_rule:
        lines.append(ctx.theme.mid_rule)
    return lines


def _latex_body(ctx: RenderContext) -> List[str]:
    lines: List[str] = []
    stripe = 0
    for i, row in enumerate(ctx.matrix):
        if ctx.is_stratum(i):
            stripe = 0
            if i > 0 and ctx.theme.stratum_separator == "line":
                lines.append(ctx.theme.mid_rule or "\\hline")
            elif i > 0 and ctx.theme.stratum_separator == "space":
                lines.append("\\noalign{\\vskip 4pt}")
            lines.append(f"\\multicolumn{{{ctx.n_cols}}}{{l}}{{\\textit{{{row[0]}}}}} \\\\")
            continue
        stripe += 1
        prefix = f"\\rowcolor{{{_STRIPE_COLOR}}}" if ctx.theme.stripe_rows and stripe % 2 == 0 else ""
        indent = ctx.indent(i)
        first = (f"\\hspace{{{indent}ex}}" if indent else "") + row[0]
        lines.append(prefix + " & ".join([first] + row[1:]) + " \\\\")
    if ctx.theme.bottom_rule:
        lines.append(ctx.theme.bottom_rule)
    lines.append("\\end{tabular}")
    return lines


def _latex_footnotes(ctx: RenderContext) -> List[str]:
    if not ctx.has_footnotes:
        return []
    lines = ["\\begin{tablenotes}", "\\small"]
    lines += [f"\\item[{escape_latex(mark)}] {escape_latex(text)}" for mark, text in ctx.notes]
    lines += [f"\\item {escape_latex(text)}" for text in ctx.general]
    lines.append("\\end{tablenotes}")
    return lines


def _latex_cleanup(ctx: RenderContext) -> List[str]:
    return ["\\end{threeparttable}"] if ctx.has_footnotes else []


DISPATCH: Dict[OutputFormat, FormatHooks] = {
    OutputFormat.CONSOLE: FormatHooks(
        _console_setup, _console_header, _console_body, _console_escape, _console_footnotes, _console_cleanup
    ),
    OutputFormat.HTML: FormatHooks(_html_setup, _html_header, _html_body, _html_escape, _html_footnotes, _html_cleanup),
    OutputFormat.LATEX: FormatHooks(
        _latex_setup, _latex_header, _latex_body, escape_latex, _latex_footnotes, _latex_cleanup
    ),
}

if set(DISPATCH) != set(OutputFormat):
    raise RuntimeError(f"render dispatch table does not cover {sorted(set(OutputFormat) - set(DISPATCH))}")


def escape_for(fmt: Any) -> Callable[[str], str]:
    return DISPATCH[OutputFormat.coerce(fmt)].escape


# --- shared stages ---------------------------------------------------------


def display_matrix(blueprint: Any, theme: Theme, fmt: Any) -> List[List[str]]:
    """Evaluate every cell row-major and format it for `fmt` (markers included, no indentation)."""
    fmt = OutputFormat.coerce(fmt)
    escape = DISPATCH[fmt].escape
    matrix: List[List[str]] = []
    for i in range(blueprint.n_rows):
        row: List[str] = []
        for j in range(blueprint.n_cols):
            cell = blueprint.get(i, j)
            if isinstance(cell, StaticContent):
                text = escape(cell.text)
                if cell.marker is not None:
                    text += _marker_markup(fmt, theme, cell.marker)
            elif isinstance(cell, Computation):
                text = apply(theme, fmt, blueprint.evaluate(i, j))
            else:
                text = ""
            row.append(text)
        matrix.append(row)
    return matrix


def _header_labels(blueprint: Any, theme: Theme, fmt: OutputFormat) -> List[str]:
    escape = DISPATCH[fmt].escape
    out = []
    for j, label in enumerate(blueprint.col_labels):
        text = escape(label)
        marker = blueprint.column_markers.get(j)
        if marker is not None:
            text += _marker_markup(fmt, theme, marker)
        out.append(text)
    return out


def _latex_packages(ctx: RenderContext) -> Tuple[str, ...]:
    pkgs = list(ctx.theme.latex_packages)
    if ctx.theme.top_rule.startswith("\\toprule") or ctx.theme.mid_rule.startswith("\\midrule"):
        pkgs.append("booktabs")
    if ctx.has_footnotes:
        pkgs.append("threeparttable")
    if ctx.theme.stripe_rows:
        pkgs += ["xcolor", "colortbl"]
    return tuple(dict.fromkeys(pkgs))


def render(blueprint: Any, theme: Any = None, fmt: Any = "console") -> RenderedTable:
    fmt = OutputFormat.coerce(fmt)
    blueprint.validate()
    theme = resolve_theme(theme)
    hooks = DISPATCH[fmt]

    lines: List[str] = []
    title = blueprint.options.title
    if title:
        lines += [hooks.escape(title), ""]

    ctx = RenderContext(
        blueprint=blueprint,
        theme=theme,
        fmt=fmt,
        matrix=display_matrix(blueprint, theme, fmt),
        header=_header_labels(blueprint, theme, fmt),
        notes=[(format_marker(theme, idx), text) for idx, text in blueprint.notes],
        general=list(blueprint.footnotes.general),
    )

    lines += hooks.setup(ctx)
    lines += hooks.header(ctx)
    lines += hooks.body(ctx)
    lines += hooks.footnotes(ctx)
    lines += hooks.cleanup(ctx)

    packages = _latex_packages(ctx) if fmt is OutputFormat.LATEX else ()
    logger.debug("rendered %s table with theme %s (%d lines)", fmt.value, theme.key, len(lines))
    return RenderedTable(format=fmt, lines=tuple(lines), packages=packages)


def render_console(blueprint: Any, theme: Any = None) -> RenderedTable:
    return render(blueprint, theme=theme, fmt=OutputFormat.CONSOLE)


def render_html(blueprint: Any, theme: Any = None) -> RenderedTable:
    return render(blueprint, theme=theme, fmt=OutputFormat.HTML)


def render_latex(blueprint: Any, theme: Any = None) -> RenderedTable:
    return render(blueprint, theme=theme, fmt=OutputFormat.LATEX)
