"""table1_blueprint

Lazy "Table 1" summary tables for clinical and biomedical reports.

The package exposes:
- a dimension planner that fixes the table shape from static dataset facts
- a sparse blueprint grid of deferred cell computations with a per-table cache
- default statistic providers (scipy.stats) injectable by name or callable
- journal themes and a render pipeline for console, HTML and LaTeX
"""

from .blueprint import Blueprint
from .builder import build_blueprint, table1
from .cache import ComputationKey, KeyMarker, ResultCache, computation_key
from .cells import (
    EMPTY,
    INSUFFICIENT_DATA,
    NOT_APPLICABLE,
    Computation,
    ComputationKind,
    Separator,
    Sentinel,
    StaticContent,
    evaluate,
)
from .dataset import Dataset, DatasetSchema, VariableKind
from .dimensions import ColumnRole, DimensionPlan, RowRole, plan_dimensions
from .errors import (
    ComputationNotApplicable,
    IndexOutOfBounds,
    InvalidSpec,
    ShapeMismatch,
    Table1Error,
    UnknownTheme,
)
from .render import OutputFormat, RenderedTable, render, render_console, render_html, render_latex
from .spec import Footnotes, TableOptions, TableSpec, VariableSpec, load_table_spec
from .stats import StatisticProviders, register_numeric_summary, register_test, resolve_providers
from .themes import (
    Theme,
    apply,
    format_marker,
    list_themes,
    load_theme_bundle,
    register_theme,
    resolve_theme,
    save_theme_bundle,
    unregister_theme,
)

__version__ = "0.1.0"
