from __future__ import annotations


class Table1Error(Exception):
    """Base class for table1_blueprint errors."""


class InvalidSpec(Table1Error, ValueError):
    """The table specification cannot be planned against the dataset."""


class IndexOutOfBounds(Table1Error, IndexError):
    def __init__(self, row: int, col: int, shape: tuple[int, int]) -> None:
        self.row = row
        self.col = col
        self.shape = shape
        super().__init__(f"Index [{row}, {col}] out of bounds for {shape[0]}x{shape[1]} blueprint")


class ShapeMismatch(Table1Error):
    """Blueprint structure violates its own shape invariants."""


class ComputationNotApplicable(Table1Error):
    """A statistic cannot be computed for this subset (e.g. fewer than 2 groups)."""


class UnknownTheme(UserWarning):
    """Requested theme is not registered; the default theme is used instead."""
