"""Profile-likelihood confidence intervals and parameter profiles.

The profile cost of parameter i at value x is the global cost minimized over
all the other parameters with i frozen at x. The one-sigma bounds are the
roots of ``profile(x) - profile(best) - 0.5`` on either side of the best value.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import numpy as np
from scipy.optimize import brentq

from galrot.config import FitConfig
from galrot.exceptions import ConfidenceIntervalError, FitError
from galrot.observers import FitObserver
from galrot.optimize import FixedObjective, run_optimizer
from galrot.params import Bounds
from galrot.utils import setup_logger

logger = setup_logger(__name__)


@dataclass
class ConfidenceInterval:
    """Asymmetric one-sigma bounds of one parameter.

    A side is None when its root couldn't be found; ``errors`` then holds
    the reason, keyed by side.
    """

    name: str
    index: int
    value: float
    plus: Optional[float] = None
    minus: Optional[float] = None
    errors: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.plus is not None and self.minus is not None

    @property
    def upper(self) -> Optional[float]:
        return None if self.plus is None else self.value + self.plus

    @property
    def lower(self) -> Optional[float]:
        return None if self.minus is None else self.value - self.minus


@dataclass(frozen=True)
class ProfilePoint:
    param_value: float
    cost: float


def _names(n: int, names: Optional[Sequence[str]]) -> list:
    return list(names) if names is not None else [f"x{i}" for i in range(n)]


def frozen_cost(
    objective: Callable,
    best_x,
    index: int,
    value: float,
    bounds: Optional[Bounds] = None,
    config: Optional[FitConfig] = None,
    observer: Optional[FitObserver] = None,
    fixed: Optional[dict] = None,
    stage: Optional[str] = None,
) -> float:
    """Global cost minimized with parameter *index* frozen at *value*.

    The minimization starts from *best_x*. Parameters in *fixed* stay fixed
    as well.

    Raises:
        FitError: If the frozen optimization fails.
    """
    best_x = np.asarray(best_x, dtype=np.float64)
    frozen = dict(fixed or {})
    frozen[index] = value
    problem = FixedObjective(objective, frozen, n_params=best_x.size)
    free_bounds = bounds.drop(*frozen) if bounds is not None else None
    x0 = problem.reduce(best_x)
    if free_bounds is not None:
        x0 = free_bounds.clip(x0)
    res = run_optimizer(
        problem,
        x0,
        bounds=free_bounds,
        config=config,
        observer=observer,
        stage=stage or f"frozen #{index}={value:.6g}",
    )
    return res.cost


def find_bound(
    profile: Callable[[float], float],
    best_value: float,
    best_cost: float,
    width: float,
    side: str,
    name: str,
    config: Optional[FitConfig] = None,
) -> float:
    """Distance from *best_value* to the root of ``profile(x) - best_cost - 0.5``.

    Args:
        profile: Profile cost as a function of the parameter value.
        best_value: Value of the parameter at the optimum.
        best_cost: Cost at the optimum.
        width: Search width on the chosen side.
        side: ``"plus"`` or ``"minus"``.
        name: Parameter name, for the error context.

    Raises:
        ConfidenceIntervalError: If the bracket holds no sign change, the
            root-finder doesn't converge or a frozen fit fails.
    """
    config = config or FitConfig()
    if side == "plus":
        a, b = best_value, best_value + width
    elif side == "minus":
        a, b = best_value - width, best_value
    else:
        raise ValueError(f"side must be 'plus' or 'minus', got {side!r}")

    def f(x):
        return profile(x) - best_cost - 0.5

    try:
        root = brentq(f, a, b, xtol=config.ci_tolerance, maxiter=config.ci_max_iters)
    except (ValueError, RuntimeError, FitError) as exc:
        raise ConfidenceIntervalError(str(exc), parameter=name, side=side) from exc
    return abs(root - best_value)


def estimate_confidence_interval(
    objective: Callable,
    best_x,
    best_cost: float,
    index: int,
    bounds: Optional[Bounds] = None,
    config: Optional[FitConfig] = None,
    observer: Optional[FitObserver] = None,
    fixed: Optional[dict] = None,
    width: Optional[float] = None,
    name: Optional[str] = None,
) -> ConfidenceInterval:
    """Confidence interval of one parameter.

    The root level is the frozen cost at the best value plus 0.5. The
    *best_cost* of the full fit is only compared with it.

    A failure on one side is recorded in the result and doesn't prevent the
    other side from being computed.
    """
    config = config or FitConfig()
    best_x = np.asarray(best_x, dtype=np.float64)
    name = name or f"x{index}"
    width = config.ci_width(index) if width is None else width
    value = float(best_x[index])

    def profile(x):
        return frozen_cost(
            objective, best_x, index, x,
            bounds=bounds, config=config, observer=observer, fixed=fixed,
            stage=f"frozen {name}={x:.6g}",
        )

    ci = ConfidenceInterval(name=name, index=index, value=value)
    try:
        level = profile(value)
    except FitError as exc:
        logger.error("Frozen fit of %s at its best value failed: %s", name, exc)
        ci.errors = {side: str(exc) for side in ("plus", "minus")}
        return ci
    if not np.isclose(level, best_cost, rtol=0.0, atol=config.ci_tolerance):
        logger.debug(
            "Frozen cost of %s at its best value is %.9g, full fit gave %.9g",
            name, level, best_cost,
        )

    for side in ("plus", "minus"):
        try:
            setattr(ci, side, find_bound(profile, value, level, width, side, name, config))
        except ConfidenceIntervalError as exc:
            logger.error("Confidence interval failed: %s", exc)
            ci.errors[side] = str(exc)

    if ci.ok:
        logger.info("%s = %.6f +%.6f -%.6f", name, value, ci.plus, ci.minus)
    return ci


def estimate_confidence_intervals(
    objective: Callable,
    best_x,
    best_cost: float,
    bounds: Optional[Bounds] = None,
    config: Optional[FitConfig] = None,
    observer: Optional[FitObserver] = None,
    fixed: Optional[dict] = None,
    names: Optional[Sequence[str]] = None,
) -> list[ConfidenceInterval]:
    """Confidence intervals of every parameter not in *fixed*."""
    best_x = np.asarray(best_x, dtype=np.float64)
    names = _names(best_x.size, names)
    fixed = fixed or {}
    return [
        estimate_confidence_interval(
            objective, best_x, best_cost, i,
            bounds=bounds, config=config, observer=observer, fixed=fixed, name=names[i],
        )
        for i in range(best_x.size)
        if i not in fixed
    ]


def compute_profiles(
    objective: Callable,
    best_x,
    bounds: Optional[Bounds] = None,
    config: Optional[FitConfig] = None,
    observer: Optional[FitObserver] = None,
    fixed: Optional[dict] = None,
    names: Optional[Sequence[str]] = None,
) -> dict:
    """Profile cost of every free parameter around its best value.

    Each profile has ``config.profile_points + 1`` points spanning
    ``±config.profile_half_width``.

    Returns:
        Mapping from parameter name to a list of ProfilePoint.
    """
    config = config or FitConfig()
    best_x = np.asarray(best_x, dtype=np.float64)
    names = _names(best_x.size, names)
    fixed = fixed or {}

    profiles = {}
    for i in range(best_x.size):
        if i in fixed:
            continue
        values = np.linspace(
            best_x[i] - config.profile_half_width,
            best_x[i] + config.profile_half_width,
            config.profile_points + 1,
        )
        points = []
        for value in values:
            cost = frozen_cost(
                objective, best_x, i, float(value),
                bounds=bounds, config=config, observer=observer, fixed=fixed,
                stage=f"frozen profile {names[i]}={value:.6g}",
            )
            points.append(ProfilePoint(float(value), cost))
        profiles[names[i]] = points
        logger.info("Profile of %s: %d points", names[i], len(points))
    return profiles


def profiles_to_dataframe(profiles: dict) -> "pd.DataFrame":
    import pandas as pd

    return pd.DataFrame(
        [
            {"parameter": name, "value": p.param_value, "cost": p.cost}
            for name, points in profiles.items()
            for p in points
        ]
    )
