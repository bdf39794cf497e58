from __future__ import annotations

import logging
import operator
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pandas as pd

from .cache import ResultCache
from .cells import EMPTY, Cell, Result, StaticContent, evaluate, is_cell
from .dataset import Dataset
from .dimensions import ColumnSlot, DimensionPlan, RowSlot
from .errors import IndexOutOfBounds, ShapeMismatch
from .stats import StatisticProviders, resolve_providers

logger = logging.getLogger(__name__)


class Blueprint:
    """Sparse row x column grid of cells for one table.

    The grid is filled once by the builder and only read afterwards. Each
    blueprint owns its own ResultCache; evaluating a cell writes into the
    cache, never into the grid.
    """

    def __init__(
        self,
        plan: DimensionPlan,
        dataset: Dataset,
        providers: StatisticProviders,
        cache: Optional[ResultCache] = None,
    ) -> None:
        self.plan = plan
        self.spec = plan.spec
        self.options = plan.spec.options
        self.footnotes = plan.spec.options.footnotes
        self.dataset = dataset
        self.providers = providers
        self.cache = cache if cache is not None else ResultCache()

        self.n_rows = plan.row_count
        self.n_cols = plan.col_count
        self.row_slots: List[RowSlot] = list(plan.rows)
        self.col_slots: List[ColumnSlot] = list(plan.columns)
        self.col_labels: List[str] = [c.label for c in plan.columns]
        self.column_markers: Dict[int, int] = {}
        self.notes: List[Tuple[int, str]] = []
        self._cells: Dict[Tuple[int, int], Cell] = {}

    @classmethod
    def allocate(
        cls,
        plan: DimensionPlan,
        dataset: Dataset,
        providers: Optional[StatisticProviders] = None,
        cache: Optional[ResultCache] = None,
    ) -> "Blueprint":
        """Empty grid of the planned shape."""
        if providers is None:
            providers = resolve_providers(plan.spec.options)
        logger.debug("allocating %dx%d blueprint", plan.row_count, plan.col_count)
        return cls(plan, dataset, providers, cache)

    # --- shape -------------------------------------------------------------

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.n_rows, self.n_cols)

    @property
    def cell_count(self) -> int:
        return len(self._cells)

    @property
    def row_labels(self) -> List[str]:
        out = []
        for i in range(self.n_rows):
            cell = self._cells.get((i, 0), EMPTY)
            out.append(cell.text if isinstance(cell, StaticContent) else "")
        return out

    def _check(self, row: Any, col: Any) -> Tuple[int, int]:
        try:
            r, c = operator.index(row), operator.index(col)
        except TypeError as e:
            raise TypeError(f"Blueprint indices must be integers, got ({row!r}, {col!r})") from e
        if not (0 <= r < self.n_rows and 0 <= c < self.n_cols):
            raise IndexOutOfBounds(r, c, self.shape)
        return r, c

    # --- cell access -------------------------------------------------------

    def set(self, row: int, col: int, cell: Cell) -> None:
        r, c = self._check(row, col)
        if not is_cell(cell):
            raise TypeError(f"Expected a cell, got {type(cell).__name__}")
        if cell is EMPTY:
            self._cells.pop((r, c), None)
        else:
            self._cells[(r, c)] = cell

    def get(self, row: int, col: int) -> Cell:
        r, c = self._check(row, col)
        return self._cells.get((r, c), EMPTY)

    def clear(self, row: int, col: int) -> None:
        r, c = self._check(row, col)
        self._cells.pop((r, c), None)

    def __getitem__(self, key: Tuple[int, int]) -> Cell:
        row, col = key
        return self.get(row, col)

    def __setitem__(self, key: Tuple[int, int], cell: Cell) -> None:
        row, col = key
        self.set(row, col, cell)

    def populated(self) -> Iterator[Tuple[int, int, Cell]]:
        """Set coordinates in row-major order."""
        for (r, c) in sorted(self._cells):
            yield r, c, self._cells[(r, c)]

    # --- evaluation --------------------------------------------------------

    def evaluate(self, row: int, col: int) -> Result:
        return evaluate(self.get(row, col), self.dataset, self.cache, self.providers)

    def clear_cache(self) -> None:
        self.cache.clear()

    def validate(self) -> None:
        """Raise ShapeMismatch if slot arrays, labels or cells disagree with the shape."""
        if len(self.row_slots) != self.n_rows:
            raise ShapeMismatch(f"{len(self.row_slots)} row slots for {self.n_rows} rows")
        if len(self.col_slots) != self.n_cols:
            raise ShapeMismatch(f"{len(self.col_slots)} column slots for {self.n_cols} columns")
        if len(self.col_labels) != self.n_cols:
            raise ShapeMismatch(f"{len(self.col_labels)} column labels for {self.n_cols} columns")
        for (r, c) in self._cells:
            if not (0 <= r < self.n_rows and 0 <= c < self.n_cols):
                raise ShapeMismatch(f"cell at [{r}, {c}] outside {self.n_rows}x{self.n_cols} grid")
        for c in self.column_markers:
            if not (0 <= c < self.n_cols):
                raise ShapeMismatch(f"footnote marker on missing column {c}")

    def copy(self) -> "Blueprint":
        """Same cells and labels, fresh cache."""
        other = type(self)(self.plan, self.dataset, self.providers)
        other.n_rows, other.n_cols = self.n_rows, self.n_cols
        other.row_slots = list(self.row_slots)
        other.col_slots = list(self.col_slots)
        other.col_labels = list(self.col_labels)
        other.column_markers = dict(self.column_markers)
        other.notes = list(self.notes)
        other._cells = dict(self._cells)
        return other

    # --- output ------------------------------------------------------------

    def to_frame(self, theme: Any = None) -> pd.DataFrame:
        """Evaluated grid as display strings, one DataFrame column per table column."""
        from .render import display_matrix
        from .themes import resolve_theme

        matrix = display_matrix(self, resolve_theme(theme), "console")
        return pd.DataFrame(matrix, columns=[str(c.key) for c in self.col_slots])

    def render(self, fmt: Any = "console", theme: Any = None) -> Any:
        from .render import render

        return render(self, theme=theme, fmt=fmt)

    def __repr__(self) -> str:
        return f"Blueprint({self.n_rows}x{self.n_cols}, cells={len(self._cells)}, cache={len(self.cache)})"
