"""Themes: immutable bundles of formatting parameters.

A theme never affects which statistics are computed or how they are cached;
it only decides how a raw result is displayed (p-value precision, sentinel
texts, markers, rules, colors) for a given output format.
"""

from __future__ import annotations

import logging
import re
import warnings
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from .errors import InvalidSpec, UnknownTheme

logger = logging.getLogger(__name__)

DEFAULT_THEME = "console"

STRATUM_SEPARATORS = ("line", "space", "none")
FOOTNOTE_STYLES = ("numeric", "lettered", "symbolic", "bracketed")
SYMBOLS = ("*", "†", "‡", "§", "¶", "‖")

_MEAN_SD = re.compile(r"^(-?\d[\d.]*|NA) \((-?\d[\d.]*|NA)\)$")


@dataclass(frozen=True)
class Theme:
    key: str
    name: str
    pvalue_digits: int = 3
    variable_indent: int = 0
    level_indent: int = 2
    numeric_separator: Optional[str] = None

    css_class: str = "table1-console"
    font_family: str = "monospace"
    font_size: str = "12px"
    text_color: str = "#000000"
    border_color: str = "#000000"
    header_background: str = ""
    header_bold: bool = True
    stripe_rows: bool = False
    stripe_color: str = "#f5f5f5"

    top_rule: str = "\\toprule"
    mid_rule: str = "\\midrule"
    bottom_rule: str = "\\bottomrule"
    latex_packages: Tuple[str, ...] = ("booktabs",)
    console_rule: str = "-"

    stratum_separator: str = "line"
    footnote_style: str = "numeric"
    not_applicable_text: str = "NA"
    insufficient_data_text: str = "—"

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["latex_packages"] = list(self.latex_packages)
        return d

    def validate(self) -> None:
        if not self.key:
            raise InvalidSpec("theme key must be non-empty")
        if isinstance(self.pvalue_digits, bool) or not isinstance(self.pvalue_digits, int) or self.pvalue_digits < 1:
            raise InvalidSpec(f"pvalue_digits must be a positive integer, got {self.pvalue_digits!r}")
        if self.variable_indent < 0 or self.level_indent < 0:
            raise InvalidSpec("indentation must be non-negative")
        if self.stratum_separator not in STRATUM_SEPARATORS:
            raise InvalidSpec(f"stratum_separator must be one of {STRATUM_SEPARATORS}, got {self.stratum_separator!r}")
        if self.footnote_style not in FOOTNOTE_STYLES:
            raise InvalidSpec(f"footnote_style must be one of {FOOTNOTE_STYLES}, got {self.footnote_style!r}")

    @staticmethod
    def from_mapping(raw: Mapping[str, Any], base: Optional["Theme"] = None) -> "Theme":
        """Build a theme from a mapping, layered on `base` (default: the console theme)."""
        raw = dict(raw)
        parent = raw.pop("base", None)
        if parent is not None:
            base = resolve_theme(str(parent))
        base = base or BUILTIN_THEMES[DEFAULT_THEME]

        known = {f.name for f in fields(Theme)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise InvalidSpec(f"Unknown theme fields: {unknown}")
        if "latex_packages" in raw:
            raw["latex_packages"] = tuple(raw["latex_packages"] or ())
        if "key" in raw:
            raw["key"] = str(raw["key"]).lower()
        theme = replace(base, **raw)
        theme.validate()
        return theme


def _builtin(key: str, name: str, **kw: Any) -> Theme:
    kw.setdefault("css_class", f"table1-{key}")
    return Theme(key=key, name=name, **kw)


BUILTIN_THEMES: Dict[str, Theme] = {
    t.key: t
    for t in (
        _builtin("console", "Console"),
        _builtin(
            "nejm",
            "New England Journal of Medicine",
            numeric_separator=" ± ",
            font_family="Times, serif",
            text_color="#333333",
            border_color="#cccccc",
            stripe_rows=True,
            stripe_color="#fefcf0",
            latex_packages=("booktabs", "array"),
            footnote_style="symbolic",
        ),
        _builtin(
            "lancet",
            "The Lancet",
            pvalue_digits=4,
            level_indent=1,
            font_family="Times, serif",
            font_size="9px",
            mid_rule="",
            latex_packages=("booktabs", "array"),
            stratum_separator="space",
        ),
        _builtin(
            "jama",
            "JAMA",
            font_family="Arial, sans-serif",
            font_size="10px",
            latex_packages=("booktabs", "array"),
            footnote_style="lettered",
        ),
        _builtin(
            "bmj",
            "The BMJ",
            font_family="Helvetica, Arial, sans-serif",
            font_size="10px",
            header_background="#e6eef5",
            top_rule="\\hline\\hline",
            mid_rule="\\hline",
            bottom_rule="\\hline\\hline",
            latex_packages=(),
            footnote_style="bracketed",
        ),
        _builtin(
            "nature",
            "Nature Medicine",
            font_family="Arial, sans-serif",
            font_size="10px",
            text_color="#1a1a1a",
            top_rule="\\toprule[1pt]",
            mid_rule="\\midrule[0.5pt]",
            bottom_rule="\\bottomrule[1pt]",
            latex_packages=("booktabs", "array", "xcolor"),
        ),
        _builtin(
            "simple",
            "Simple",
            header_bold=False,
            font_family="sans-serif",
            stratum_separator="none",
        ),
    )
}

_REGISTRY: Dict[str, Theme] = dict(BUILTIN_THEMES)


def list_themes() -> List[str]:
    return sorted(_REGISTRY)


def get_theme(key: str) -> Theme:
    k = str(key).lower()
    if k not in _REGISTRY:
        raise KeyError(f"Unknown theme: {key}")
    return _REGISTRY[k]


def register_theme(theme: Union[Theme, Mapping[str, Any]], *, overwrite: bool = False) -> Theme:
    if not isinstance(theme, Theme):
        theme = Theme.from_mapping(theme)
    theme.validate()
    k = theme.key.lower()
    if k in BUILTIN_THEMES:
        raise InvalidSpec(f"Cannot replace built-in theme '{k}'")
    if k in _REGISTRY and not overwrite:
        raise InvalidSpec(f"Theme '{k}' is already registered")
    _REGISTRY[k] = theme
    logger.debug("registered theme %s", k)
    return theme


def unregister_theme(key: str) -> None:
    k = str(key).lower()
    if k in BUILTIN_THEMES:
        raise InvalidSpec(f"Cannot remove built-in theme '{k}'")
    if _REGISTRY.pop(k, None) is None:
        raise KeyError(f"Unknown theme: {key}")


def resolve_theme(theme: Union[str, Theme, Mapping[str, Any], None] = None) -> Theme:
    """Theme object for a name, inline definition or None.

    Unknown names warn with UnknownTheme and fall back to the console theme.
    """
    if theme is None:
        return _REGISTRY[DEFAULT_THEME]
    if isinstance(theme, Theme):
        return theme
    if isinstance(theme, Mapping):
        raw = dict(theme)
        raw.setdefault("key", "inline")
        raw.setdefault("name", str(raw["key"]))
        return Theme.from_mapping(raw)
    try:
        return get_theme(str(theme))
    except KeyError:
        warnings.warn(f"Unknown theme '{theme}', using '{DEFAULT_THEME}'", UnknownTheme, stacklevel=2)
        return _REGISTRY[DEFAULT_THEME]


def load_theme_bundle(yaml_path: str | Path, *, register: bool = True) -> List[Theme]:
    """Load theme definitions from YAML (`themes: {key: {...}}` or a bare mapping)."""
    p = Path(yaml_path)
    if not p.exists():
        raise FileNotFoundError(f"Theme bundle not found: {p}")
    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    defs = raw.get("themes", raw) if isinstance(raw, Mapping) else None
    if not isinstance(defs, Mapping):
        raise InvalidSpec(f"Theme bundle {p} must contain a mapping of theme definitions")

    out: List[Theme] = []
    for key, spec in defs.items():
        if not isinstance(spec, Mapping):
            raise InvalidSpec(f"Theme '{key}' in {p} is not a mapping")
        spec = dict(spec)
        spec.setdefault("key", str(key))
        spec.setdefault("name", str(key))
        spec.setdefault("css_class", f"table1-{str(key).lower()}")
        theme = Theme.from_mapping(spec)
        if register:
            register_theme(theme, overwrite=True)
        out.append(theme)
    return out


def save_theme_bundle(themes: List[Theme], yaml_path: str | Path) -> Path:
    p = Path(yaml_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    payload = {"themes": {t.key: {k: v for k, v in t.to_dict().items() if k != "key"} for t in themes}}
    p.write_text(yaml.safe_dump(payload, sort_keys=False, allow_unicode=True), encoding="utf-8")
    return p


# --- value formatting ------------------------------------------------------


def _lettered(index: int) -> str:
    out = ""
    while index > 0:
        index, rem = divmod(index - 1, 26)
        out = chr(ord("a") + rem) + out
    return out


def format_marker(theme: Theme, index: int) -> str:
    """Footnote marker text for the 1-based `index` in the theme's style."""
    if index < 1:
        raise ValueError("footnote index starts at 1")
    style = theme.footnote_style
    if style == "lettered":
        return _lettered(index)
    if style == "symbolic":
        sym = SYMBOLS[(index - 1) % len(SYMBOLS)]
        return sym * ((index - 1) // len(SYMBOLS) + 1)
    if style == "bracketed":
        return f"[{index}]"
    return str(index)


def format_pvalue(theme: Theme, p: float) -> str:
    digits = theme.pvalue_digits
    threshold = 10.0 ** (-digits)
    if p < threshold:
        return f"<{threshold:.{digits}f}"
    return f"{p:.{digits}f}"


def apply(theme: Theme, fmt: Any, value: Any) -> str:
    """Display text for a raw cell value in the target format, escaped."""
    from .cells import Sentinel
    from .render import escape_for

    if isinstance(value, Sentinel):
        text = theme.not_applicable_text if value is Sentinel.NOT_APPLICABLE else theme.insufficient_data_text
    elif value is None:
        text = ""
    elif isinstance(value, bool):
        text = str(value)
    elif isinstance(value, int):
        text = str(value)
    elif isinstance(value, float):
        text = format_pvalue(theme, value)
    elif isinstance(value, Mapping):
        text = "; ".join(f"{k}: {v}" for k, v in value.items())
    else:
        text = str(value)
        if theme.numeric_separator:
            m = _MEAN_SD.match(text)
            if m:
                text = f"{m.group(1)}{theme.numeric_separator}{m.group(2)}"
    return escape_for(fmt)(text)
