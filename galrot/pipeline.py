"""Fitting session: the fit, the outlier cycle and the post-fit stages.

A ``FitSession`` owns the catalog and the configuration for the duration of
a run. The stages after the fit (confidence intervals, covariance, profiles,
diagnostics) only read the fit result, so a failure in one of them leaves
the fitted parameters and the rotation curve usable.
"""

from dataclasses import dataclass, field, replace
from typing import Optional

import numpy as np

from galrot.catalog import Object, apply_outlier_mask, get_outlier_mask, objects_to_dataframe
from galrot.config import Consts, FitConfig
from galrot.cost import CostEvaluation, GlobalCost
from galrot.covariance import CovarianceResult, estimate_covariance
from galrot.diagnostics import ParallaxStatistics, find_odd_objects, parallax_statistics
from galrot.inner import CHANNELS
from galrot.intervals import ConfidenceInterval, compute_profiles, estimate_confidence_intervals
from galrot.observers import FitObserver
from galrot.optimize import FixedObjective, run_optimizer
from galrot.outliers import OutlierReport, find_outliers, find_outliers_4d
from galrot.params import SIGMA_INDICES, Bounds, Params, check_within
from galrot.rotcurve import RotationCurve
from galrot.utils import setup_logger

logger = setup_logger(__name__)


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------


@dataclass
class FitResult:
    """Everything known about a fit; post-fit stages fill the optional fields."""

    params: Params
    cost: float
    n_objects: int
    n_used: int
    n_iterations: int
    converged: bool
    degree: int
    l_stroke: int
    evaluation: CostEvaluation = field(repr=False)
    rotation_curve: RotationCurve = field(repr=False)
    intervals: list = field(default_factory=list, repr=False)
    covariance: Optional[CovarianceResult] = field(default=None, repr=False)
    outlier_reports: list = field(default_factory=list, repr=False)

    @property
    def reduced_parallaxes(self) -> dict:
        return self.evaluation.reduced_parallaxes

    @property
    def triples(self) -> dict:
        return self.evaluation.triples

    def interval(self, name: str) -> Optional[ConfidenceInterval]:
        for ci in self.intervals:
            if ci.name == name:
                return ci
        return None

    def to_dict(self) -> dict:
        """Convert to dict suitable for database insertion."""
        return {
            "degree": self.degree,
            "l_stroke": self.l_stroke,
            "n_objects": self.n_objects,
            "n_used": self.n_used,
            "n_iterations": self.n_iterations,
            "best_cost": self.cost,
            "converged": self.converged,
        }

    def to_summary_dataframe(self) -> "pd.DataFrame":
        """One row per fitted or derived parameter."""
        import pandas as pd

        sigmas = {}
        if self.covariance is not None:
            sigmas = dict(zip(self.covariance.names, self.covariance.errors))
        rows = []
        for name, value in self.params.to_dict().items():
            ci = self.interval(name)
            rows.append(
                {
                    "parameter": name,
                    "value": value,
                    "ep": ci.plus if ci is not None else np.nan,
                    "em": ci.minus if ci is not None else np.nan,
                    "sigma": sigmas.get(name, np.nan),
                }
            )
        return pd.DataFrame(rows)

    def to_objects_dataframe(self, objects: list[Object]) -> "pd.DataFrame":
        """Per-object table with the reduced parallaxes and the discrepancies."""
        df = objects_to_dataframe(objects)
        df["par_r"] = [self.reduced_parallaxes.get(i, np.nan) for i in range(len(objects))]
        for channel in CHANNELS:
            df[f"d_{channel}"] = [
                self.triples[i][channel].relative_discrepancy if i in self.triples else np.nan
                for i in range(len(objects))
            ]
        return df


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class FitSession:
    """Runs the fitting stages over one catalog.

    Args:
        objects: Catalog objects with their Galactic observables computed.
        params: Initial parameters; padded or truncated to ``config.degree``.
        consts: Model constants.
        config: Numerical policy.
        bounds: Bounds of the outer search; defaults per degree.
        observer: Receives every optimizer iteration.
    """

    def __init__(
        self,
        objects: list[Object],
        params: Optional[Params] = None,
        consts: Optional[Consts] = None,
        config: Optional[FitConfig] = None,
        bounds: Optional[Bounds] = None,
        observer: Optional[FitObserver] = None,
    ):
        self.config = config or FitConfig()
        self.objects = objects
        self.params = (params or Params()).with_degree(self.config.degree)
        self.consts = consts or Consts()
        self.bounds = bounds or Bounds.default(self.config.degree)
        self.observer = observer
        self.result: Optional[FitResult] = None
        check_within(self.params, self.bounds)

    @property
    def fixed(self) -> dict:
        """Parameters held at their initial values."""
        if self.config.fit_sigmas:
            return {}
        x = self.params.to_vector()
        return {i: float(x[i]) for i in SIGMA_INDICES}

    @property
    def names(self) -> list:
        return list(self.params.names)

    def objective(self) -> GlobalCost:
        return GlobalCost(self.objects, self.params, self.consts, self.config)

    def _require_result(self) -> FitResult:
        if self.result is None:
            raise RuntimeError("No fit yet; call fit() first")
        return self.result

    def fit(self, start: Optional[Params] = None) -> FitResult:
        """Minimize the global cost over the non-outlier objects.

        Raises:
            FitError: If the outer optimization fails.
        """
        start = start or self.params
        n_used = sum(not obj.outlier for obj in self.objects)
        if n_used == 0:
            raise ValueError("Every object is flagged as an outlier")
        logger.info(
            "Fitting degree %d to %d of %d objects (%s)",
            self.config.degree, n_used, len(self.objects), self.config.method,
        )

        objective = self.objective()
        problem = FixedObjective(objective, self.fixed) if self.fixed else objective
        bounds = self.bounds.drop(*self.fixed) if self.fixed else self.bounds
        x0 = start.to_vector()
        if self.fixed:
            x0 = problem.reduce(x0)

        res = run_optimizer(problem, x0, bounds, self.config, self.observer, stage="fit")
        x = problem.expand(res.x) if self.fixed else res.x
        params = Params.from_vector(x)

        self.result = FitResult(
            params=params,
            cost=res.cost,
            n_objects=len(self.objects),
            n_used=n_used,
            n_iterations=res.n_iterations,
            converged=res.converged,
            degree=self.config.degree,
            l_stroke=self.config.l_stroke,
            evaluation=res.evaluation,
            rotation_curve=RotationCurve.from_params(params),
        )
        for name, value in params.to_dict().items():
            logger.info("  %s = %.6f", name, value)
        return self.result

    def reject_outliers(self, four_dimensional: bool = False) -> list[OutlierReport]:
        """Flag outliers using the triples of the last fit.

        Raises:
            OutlierError: If there are too few objects for the test.
        """
        result = self._require_result()
        reports = [find_outliers(self.objects, result.triples, self.config.l_stroke)]
        if four_dimensional:
            reports.append(find_outliers_4d(self.objects, result.triples, self.config.l_stroke))
        result.outlier_reports.extend(reports)
        return reports

    def fit_with_outliers(self, four_dimensional: bool = False, max_cycles: int = 100) -> FitResult:
        """Alternate fits and outlier passes until no new object is flagged."""
        result = self.fit()
        for cycle in range(1, max_cycles + 1):
            reports = self.reject_outliers(four_dimensional)
            if not any(r.flagged for r in reports):
                logger.info("No new outliers after %d cycle(s)", cycle)
                break
            history = result.outlier_reports
            result = self.fit(start=result.params)
            result.outlier_reports = history
        else:
            logger.warning("The outlier cycle didn't settle in %d cycles", max_cycles)
        return result

    def _best_vector(self) -> np.ndarray:
        return self._require_result().params.to_vector()

    def fit_errors(self) -> list[ConfidenceInterval]:
        """Profile-likelihood confidence intervals of the free parameters."""
        result = self._require_result()
        logger.info("Computing the confidence intervals")
        result.intervals = estimate_confidence_intervals(
            self.objective(),
            self._best_vector(),
            result.cost,
            bounds=self.bounds,
            config=self.config,
            observer=self.observer,
            fixed=self.fixed,
            names=self.names,
        )
        return result.intervals

    def fit_covariance(self) -> CovarianceResult:
        """Covariance of the free parameters from the Hessian at the optimum.

        Raises:
            CovarianceError: If the Hessian can't be inverted.
        """
        result = self._require_result()
        objective = self.objective()
        x = self._best_vector()
        names = self.names
        if self.fixed:
            problem = FixedObjective(objective, self.fixed)
            x = problem.reduce(x)
            names = [names[i] for i in problem.free_indices]
            objective = problem
        logger.info("Computing the covariance matrix")
        result.covariance = estimate_covariance(objective, x, names, h=self.config.hessian_step)
        return result.covariance

    def compute_profiles(self) -> dict:
        self._require_result()
        return compute_profiles(
            self.objective(),
            self._best_vector(),
            bounds=self.bounds,
            config=self.config,
            observer=self.observer,
            fixed=self.fixed,
            names=self.names,
        )

    def parallax_statistics(self) -> ParallaxStatistics:
        return parallax_statistics(self.objects, self._require_result().reduced_parallaxes)

    def find_odd_objects(self) -> list:
        result = self._require_result()
        return find_odd_objects(self.objects, result.params, self.consts, result.reduced_parallaxes)


# ---------------------------------------------------------------------------
# Degree scan
# ---------------------------------------------------------------------------


def scan_degrees(
    objects: list[Object],
    degree_max: int,
    params: Optional[Params] = None,
    consts: Optional[Consts] = None,
    config: Optional[FitConfig] = None,
    observer: Optional[FitObserver] = None,
    reject: bool = True,
) -> "pd.DataFrame":
    """Fit every degree from 1 to *degree_max* and tabulate the best costs.

    Each degree starts from the outlier flags the catalog had on entry and
    from the parameters of the previous degree.
    """
    import pandas as pd

    config = config or FitConfig()
    params = params or Params()
    mask = get_outlier_mask(objects)
    rows = []
    for degree in range(1, degree_max + 1):
        apply_outlier_mask(objects, mask)
        session = FitSession(
            objects,
            params=params,
            consts=consts,
            config=replace(config, degree=degree),
            observer=observer,
        )
        result = session.fit_with_outliers() if reject else session.fit()
        params = result.params
        rows.append(
            {
                "n": degree,
                "n_used": result.n_used,
                "L_1": result.cost,
                "sigma_theta": result.params.sigma_theta,
            }
        )
        logger.info("Degree %d: L_1 = %.10g", degree, result.cost)
    return pd.DataFrame(rows)
