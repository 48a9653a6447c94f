"""Covariance of the fitted parameters from the curvature of the cost."""

from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import numpy as np

from galrot.exceptions import CovarianceError
from galrot.utils import setup_logger

logger = setup_logger(__name__)

HESSIAN_STEP = 1e-5


def compute_hessian(f: Callable, x, h: float = HESSIAN_STEP) -> np.ndarray:
    """Central-difference Hessian of *f* at *x*.

    Diagonal entries use the three-point second-derivative formula, the
    off-diagonal ones the four-point mixed-partial formula. Only the upper
    triangle is evaluated, so the result is exactly symmetric.
    """
    x = np.asarray(x, dtype=np.float64)
    m = x.size
    f_0 = f(x)
    hessian = np.empty((m, m), dtype=np.float64)

    def shifted(*steps):
        y = x.copy()
        for i, s in steps:
            y[i] += s
        return f(y)

    for i in range(m):
        hessian[i, i] = (shifted((i, h)) - 2.0 * f_0 + shifted((i, -h))) / h**2
        for j in range(i + 1, m):
            hessian[i, j] = (
                shifted((i, h), (j, h))
                - shifted((i, h), (j, -h))
                - shifted((i, -h), (j, h))
                + shifted((i, -h), (j, -h))
            ) / (4.0 * h**2)
            hessian[j, i] = hessian[i, j]
    return hessian


def leading_minors(matrix) -> np.ndarray:
    """Determinants of the leading principal minors of orders 2..m."""
    matrix = np.asarray(matrix, dtype=np.float64)
    return np.array([np.linalg.det(matrix[:k, :k]) for k in range(2, matrix.shape[0] + 1)])


@dataclass
class CovarianceResult:
    """Hessian, covariance and correlation matrices at the optimum."""

    names: list
    hessian: np.ndarray = field(repr=False)
    covariance: np.ndarray = field(repr=False)
    errors: np.ndarray
    correlation: np.ndarray = field(repr=False)
    minors: np.ndarray = field(repr=False)

    @property
    def positive_definite(self) -> bool:
        return bool(self.hessian[0, 0] > 0 and np.all(self.minors > 0))

    def to_dataframes(self) -> dict:
        """Covariance, correlation and minors as DataFrames, keyed by table name."""
        import pandas as pd

        return {
            "covariance": pd.DataFrame(self.covariance, index=self.names, columns=self.names),
            "correlation": pd.DataFrame(self.correlation, index=self.names, columns=self.names),
            "minors": pd.DataFrame(
                {"order": np.arange(2, len(self.names) + 1), "determinant": self.minors}
            ),
        }


def estimate_covariance(
    f: Callable,
    x,
    names: Optional[Sequence[str]] = None,
    h: float = HESSIAN_STEP,
) -> CovarianceResult:
    """Covariance matrix as the inverse of the Hessian of *f* at *x*.

    Raises:
        CovarianceError: If the Hessian is singular.
    """
    x = np.asarray(x, dtype=np.float64)
    names = list(names) if names is not None else [f"x{i}" for i in range(x.size)]
    hessian = compute_hessian(f, x, h)
    minors = leading_minors(hessian)
    if np.any(minors <= 0) or hessian[0, 0] <= 0:
        logger.warning("The Hessian is not positive definite; minors: %s", minors)

    if not np.all(np.isfinite(hessian)):
        raise CovarianceError("The Hessian has non-finite entries")
    if np.linalg.cond(hessian) > 1.0 / np.finfo(np.float64).eps:
        raise CovarianceError("The Hessian is singular to working precision")
    try:
        covariance = np.linalg.inv(hessian)
    except np.linalg.LinAlgError as exc:
        raise CovarianceError(f"Couldn't invert the Hessian: {exc}") from exc

    diagonal = np.diag(covariance)
    if np.any(diagonal <= 0):
        logger.warning("Non-positive variances on the diagonal of the covariance matrix")
    errors = np.sqrt(np.abs(diagonal))
    correlation = covariance / np.outer(errors, errors)

    for name, error in zip(names, errors):
        logger.info("sigma(%s) = %.6g", name, error)
    return CovarianceResult(
        names=names,
        hessian=hessian,
        covariance=covariance,
        errors=errors,
        correlation=correlation,
        minors=minors,
    )
