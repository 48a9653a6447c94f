"""Post-fit diagnostics: parallax systematics and multi-modal inner costs."""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from galrot.catalog import Object
from galrot.config import Consts
from galrot.inner import InnerProblem, count_local_minima, inner_profile
from galrot.params import Params
from galrot.utils import setup_logger

logger = setup_logger(__name__)


# ---------------------------------------------------------------------------
# Systematic error of the parallaxes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParallaxStatistics:
    """Weighted statistics of x_i = p_r - p_obs over the non-outlier objects.

    Weights are p_i = 1 / sigma_p^2.
    """

    n: int
    sum_p: float
    mean: float
    sigma: float
    sigma_mean: float
    sigma_stroke: float
    sigma_sigma: float
    sigma_reciprocal: float
    sigma_sigma_reciprocal: float
    mean_error: float
    median_error: float

    def to_dict(self) -> dict:
        return {
            "n": self.n,
            "sum_p": self.sum_p,
            "delta_varpi": self.mean,
            "sigma": self.sigma,
            "sigma_mean": self.sigma_mean,
            "sigma_stroke": self.sigma_stroke,
            "sigma_sigma": self.sigma_sigma,
            "sigma_reciprocal": self.sigma_reciprocal,
            "sigma_sigma_reciprocal": self.sigma_sigma_reciprocal,
            "mean_par_e": self.mean_error,
            "median_par_e": self.median_error,
        }


def parallax_statistics(objects: list[Object], reduced_parallaxes: dict) -> ParallaxStatistics:
    """Mean systematic offset between the reduced and the observed parallaxes.

    Args:
        objects: The catalog.
        reduced_parallaxes: Reduced parallax per catalog index.

    Raises:
        ValueError: If fewer than two objects take part.
    """
    indices = [i for i, obj in enumerate(objects) if not obj.outlier and i in reduced_parallaxes]
    if len(indices) < 2:
        raise ValueError(f"At least 2 objects are needed, got {len(indices)}")

    par = np.array([objects[i].par for i in indices])
    par_e = np.array([objects[i].par_e for i in indices])
    x = np.array([reduced_parallaxes[i] for i in indices]) - par
    p = 1.0 / par_e**2
    n = len(indices)

    sum_p = p.sum()
    mean = np.sum(p * x) / sum_p
    sigma = np.sqrt((np.sum(p * x**2) - sum_p * mean**2) / (n - 1))
    sigma_stroke = np.sqrt(np.sum(p * (x - mean) ** 2) / sum_p)
    sigma_sigma = sigma / np.sqrt(2.0 * (n - 1))
    with np.errstate(divide="ignore", invalid="ignore"):
        sigma_reciprocal = np.float64(1.0) / sigma
        sigma_sigma_reciprocal = sigma_sigma / sigma**2

    stats = ParallaxStatistics(
        n=n,
        sum_p=float(sum_p),
        mean=float(mean),
        sigma=float(sigma),
        sigma_mean=float(sigma / np.sqrt(sum_p)),
        sigma_stroke=float(sigma_stroke),
        sigma_sigma=float(sigma_sigma),
        sigma_reciprocal=float(sigma_reciprocal),
        sigma_sigma_reciprocal=float(sigma_sigma_reciprocal),
        # Root mean square of the parallax errors
        mean_error=float(np.sqrt(np.mean(par_e**2))),
        median_error=float(np.median(par_e)),
    )
    logger.info(
        "Delta varpi = %.6f +/- %.6f mas (N = %d)", stats.mean, stats.sigma_mean, n
    )
    return stats


# ---------------------------------------------------------------------------
# Odd objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OddObject:
    """An object whose inner cost has several local minima."""

    index: int
    name: str
    n_minima: int
    par: float
    par_r: Optional[float]


def find_odd_objects(
    objects: list[Object],
    params: Params,
    consts: Consts,
    reduced_parallaxes: Optional[dict] = None,
    n_points: int = 1001,
) -> list[OddObject]:
    """Objects whose inner cost is multi-modal at the fitted parameters."""
    reduced_parallaxes = reduced_parallaxes or {}
    odd = []
    for i, obj in enumerate(objects):
        if obj.outlier:
            continue
        problem = InnerProblem.from_object(obj, params, consts)
        _, values = inner_profile(problem, n_points)
        n_minima = count_local_minima(values)
        if n_minima > 1:
            odd.append(OddObject(i, obj.name, n_minima, obj.par, reduced_parallaxes.get(i)))
    logger.info("Found %d object(s) with a multi-modal inner cost", len(odd))
    return odd


def odd_objects_to_dataframe(odd: list[OddObject]) -> "pd.DataFrame":
    import pandas as pd

    return pd.DataFrame(
        [
            {"i": o.index + 1, "name": o.name, "n_minima": o.n_minima, "par": o.par, "par_r": o.par_r}
            for o in odd
        ],
        columns=["i", "name", "n_minima", "par", "par_r"],
    )
