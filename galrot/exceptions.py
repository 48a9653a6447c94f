"""Exception hierarchy for the fitting pipeline.

Each stage raises its own subclass so a failure names the stage it came
from; lower-level errors are attached with ``raise ... from exc``.
"""

from typing import Optional


class GalrotError(Exception):
    """Base class for all pipeline errors."""


class CatalogError(GalrotError):
    """A catalog record could not be turned into an object."""

    def __init__(self, message: str, row: Optional[int] = None, name: Optional[str] = None):
        self.row = row
        self.name = name
        context = []
        if row is not None:
            context.append(f"row {row}")
        if name is not None:
            context.append(f"object {name!r}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class FitError(GalrotError):
    """The outer optimization failed."""


class OutlierError(GalrotError):
    """The critical multipliers of the outlier test could not be found."""


class ConfidenceIntervalError(GalrotError):
    """One side of a confidence interval could not be found."""

    def __init__(self, message: str, parameter: str, side: str):
        self.parameter = parameter
        self.side = side
        super().__init__(f"{parameter} ({side}): {message}")


class CovarianceError(GalrotError):
    """The Hessian at the optimum could not be inverted."""
