"""Outer optimization of the global cost.

The primary method is L-BFGS-B with a central-difference gradient; simulated
annealing (``scipy.optimize.dual_annealing``) is available as a global,
derivative-free alternative inside the bounds. Both report every iteration
to an optional ``FitObserver``.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np
from scipy.optimize import dual_annealing, minimize

from galrot.config import FitConfig
from galrot.cost import CostEvaluation
from galrot.exceptions import FitError
from galrot.observers import FitObserver, IterationEvent, notify
from galrot.params import Bounds
from galrot.utils import central_diff_gradient, setup_logger

logger = setup_logger(__name__)


def evaluate(objective: Callable, x, with_triples: bool = False) -> CostEvaluation:
    """Evaluate any objective, with or without per-object details."""
    if hasattr(objective, "evaluate"):
        return objective.evaluate(x, with_triples=with_triples)
    return CostEvaluation(cost=float(objective(np.asarray(x, dtype=np.float64))))


# ---------------------------------------------------------------------------
# Objectives with frozen parameters
# ---------------------------------------------------------------------------


class FixedObjective:
    """An objective with some of its parameters held at fixed values.

    The free vector holds the remaining parameters in their original order.

    Args:
        objective: Cost over the full parameter vector.
        fixed: Mapping from parameter index to its fixed value.
        n_params: Length of the full vector; taken from
            ``objective.n_params`` when omitted.
    """

    def __init__(self, objective: Callable, fixed: dict, n_params: Optional[int] = None):
        self.objective = objective
        self.fixed = {int(i): float(v) for i, v in fixed.items()}
        self.n_params = n_params if n_params is not None else objective.n_params
        self.free_indices = [i for i in range(self.n_params) if i not in self.fixed]

    def expand(self, free) -> np.ndarray:
        free = np.asarray(free, dtype=np.float64)
        if free.size != len(self.free_indices):
            raise ValueError(f"Expected {len(self.free_indices)} free values, got {free.size}")
        x = np.empty(self.n_params, dtype=np.float64)
        x[self.free_indices] = free
        for i, value in self.fixed.items():
            x[i] = value
        return x

    def reduce(self, x) -> np.ndarray:
        return np.asarray(x, dtype=np.float64)[self.free_indices]

    def evaluate(self, free, with_triples: bool = False) -> CostEvaluation:
        return evaluate(self.objective, self.expand(free), with_triples=with_triples)

    def __call__(self, free) -> float:
        return self.evaluate(free).cost


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class OptimizeResult:
    """Outcome of an outer optimization."""

    x: np.ndarray
    cost: float
    n_iterations: int
    n_evaluations: int
    converged: bool
    message: str
    evaluation: CostEvaluation = field(repr=False)


class _Tracker:
    """Caches the last evaluation and the best point for the callbacks."""

    def __init__(self, objective: Callable, stage: str, observer: Optional[FitObserver]):
        self.objective = objective
        self.stage = stage
        self.observer = observer
        self.last_x: Optional[np.ndarray] = None
        self.last: Optional[CostEvaluation] = None
        self.best_x: Optional[np.ndarray] = None
        self.best_cost = np.inf
        self.iteration = 0
        self.n_evaluations = 0

    def evaluate(self, x) -> CostEvaluation:
        x = np.array(x, dtype=np.float64)
        if self.last_x is not None and np.array_equal(x, self.last_x):
            return self.last
        self.last = evaluate(self.objective, x)
        self.last_x = x
        self.n_evaluations += 1
        if self.last.cost < self.best_cost:
            self.best_cost = self.last.cost
            self.best_x = x.copy()
        return self.last

    def step(self, x) -> None:
        ev = self.evaluate(x)
        self.iteration += 1
        notify(
            self.observer,
            IterationEvent(
                stage=self.stage,
                iteration=self.iteration,
                cost=ev.cost,
                best_cost=self.best_cost,
                params=np.array(x, dtype=np.float64),
                best_params=np.array(x if self.best_x is None else self.best_x, dtype=np.float64),
                reduced_parallaxes=ev.reduced_parallaxes,
            ),
        )


# ---------------------------------------------------------------------------
# Optimizers
# ---------------------------------------------------------------------------


def minimize_cost(
    objective: Callable,
    x0,
    bounds: Optional[Bounds] = None,
    config: Optional[FitConfig] = None,
    observer: Optional[FitObserver] = None,
    stage: str = "fit",
) -> OptimizeResult:
    """Minimize *objective* with L-BFGS-B and a central-difference gradient.

    Stops when the relative cost decrease falls below ``config.tol_cost`` or
    the projected gradient below ``config.gtol``.

    Raises:
        FitError: If the line search fails or the iteration cap is reached.
    """
    config = config or FitConfig()
    x0 = np.asarray(x0, dtype=np.float64)
    tracker = _Tracker(objective, stage, observer)

    def fun(x):
        ev = tracker.evaluate(x)
        return ev.cost, central_diff_gradient(objective, x)

    res = minimize(
        fun,
        x0,
        jac=True,
        method="L-BFGS-B",
        bounds=bounds.as_list() if bounds is not None else None,
        callback=tracker.step,
        options={
            "maxcor": config.lbfgs_memory,
            "ftol": config.tol_cost,
            "gtol": config.gtol,
            "maxiter": config.max_iters,
        },
    )
    if not res.success:
        logger.error("[%s] L-BFGS-B failed after %d iterations: %s", stage, res.nit, res.message)
        raise FitError(f"{stage}: L-BFGS-B failed after {res.nit} iterations: {res.message}")

    x = np.asarray(res.x, dtype=np.float64)
    final = evaluate(objective, x, with_triples=True)
    logger.info("[%s] converged in %d iterations: cost %.10g", stage, res.nit, final.cost)
    return OptimizeResult(
        x=x,
        cost=final.cost,
        n_iterations=int(res.nit),
        n_evaluations=tracker.n_evaluations,
        converged=True,
        message=str(res.message),
        evaluation=final,
    )


def anneal_cost(
    objective: Callable,
    x0,
    bounds: Bounds,
    config: Optional[FitConfig] = None,
    observer: Optional[FitObserver] = None,
    stage: str = "fit",
) -> OptimizeResult:
    """Minimize *objective* inside *bounds* with simulated annealing.

    Every cost evaluation of the annealer, including those of its local
    searches, is reported to *observer* as one iteration.

    Raises:
        FitError: If the annealing reports a failure.
    """
    config = config or FitConfig()
    if bounds is None:
        raise ValueError("Simulated annealing needs bounds")
    x0 = bounds.clip(x0)
    tracker = _Tracker(objective, stage, observer)

    def cost(x):
        tracker.step(x)
        return tracker.last.cost

    def callback(x, f, context):
        logger.debug("[%s] annealing minimum %.10g (context %d)", stage, f, context)
        return False

    res = dual_annealing(
        cost,
        bounds=bounds.as_list(),
        maxiter=config.anneal_max_iters,
        seed=config.seed,
        x0=x0,
        callback=callback,
    )
    if not res.success:
        logger.error("[%s] annealing failed: %s", stage, res.message)
        raise FitError(f"{stage}: annealing failed: {res.message}")

    x = np.asarray(res.x, dtype=np.float64)
    final = evaluate(objective, x, with_triples=True)
    logger.info("[%s] annealing finished after %d iterations: cost %.10g", stage, res.nit, final.cost)
    return OptimizeResult(
        x=x,
        cost=final.cost,
        n_iterations=int(res.nit),
        n_evaluations=tracker.n_evaluations,
        converged=True,
        message=" ".join(np.atleast_1d(res.message).astype(str)),
        evaluation=final,
    )


def run_optimizer(
    objective: Callable,
    x0,
    bounds: Optional[Bounds] = None,
    config: Optional[FitConfig] = None,
    observer: Optional[FitObserver] = None,
    stage: str = "fit",
) -> OptimizeResult:
    """Dispatch to the method named by ``config.method``.

    When no parameter is free, the objective is just evaluated at *x0*.
    """
    config = config or FitConfig()
    x0 = np.asarray(x0, dtype=np.float64)
    if x0.size == 0:
        final = evaluate(objective, x0, with_triples=True)
        return OptimizeResult(
            x=x0, cost=final.cost, n_iterations=0, n_evaluations=1,
            converged=True, message="no free parameters", evaluation=final,
        )
    if config.method == "annealing":
        return anneal_cost(objective, x0, bounds, config, observer, stage)
    return minimize_cost(objective, x0, bounds, config, observer, stage)
