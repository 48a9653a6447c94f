"""Per-object reduced-parallax solver (the inner optimization).

For fixed global parameters, each object's kinematics is reconciled with the
model by choosing a latent "reduced" parallax p_r that minimizes

    J(p_r) = sum over channels of ((observed - model(p_r)) / error)^2

where the channels are the line-of-sight velocity, the two proper motions
and the parallax itself. J is often multi-modal, so the minimum is searched
for on a grid of brackets around the observed parallax rather than by a
single local descent.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.optimize import minimize_scalar

from galrot.catalog import Object
from galrot.config import Consts, FitConfig
from galrot.coords import compute_r_g
from galrot.params import Params
from galrot.utils import DIFF_STEP, setup_logger

logger = setup_logger(__name__)

# Residual channels, in the order used by the outlier test
CHANNELS = ("v_r", "mu_l_cos_b", "mu_b", "par")

# Smallest reduced parallax (mas) the solver may evaluate
MIN_PARALLAX = float(np.finfo(np.float64).eps)

# Half-width of the inner-profile window, in units of the parallax error
PROFILE_HALF_WIDTH = 9.0


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Triple:
    """Observed value, model value and total error of one residual channel."""

    observed: float
    model: float
    error: float

    @property
    def relative_discrepancy(self) -> float:
        return abs(self.model - self.observed) / self.error


@dataclass(frozen=True)
class InnerSolution:
    """Result of the inner optimization for one object.

    Attributes:
        par_r: Reduced parallax (mas).
        cost: J at par_r.
        bracketed: False when no bracket was found and J was evaluated
            at the observed parallax instead.
        converged: False when the bracket refinement hit its iteration cap.
    """

    par_r: float
    cost: float
    bracketed: bool
    converged: bool


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


def model_observables(l, b, par_r, params: Params, consts: Consts):
    """Model line-of-sight velocity and proper motions at parallax *par_r*.

    Works element-wise when *par_r* is an array.

    Returns:
        Tuple (v_r, mu_l_cos_b, mu_b) in km/s and mas/yr.
    """
    r_0 = params.r_0
    k = consts.k
    sin_l, cos_l = np.sin(l), np.cos(l)
    sin_b, cos_b = np.sin(b), np.cos(b)

    r_h = 1.0 / par_r
    r_g = compute_r_g(l, b, r_h, r_0)
    series = params.rot_curve_series(r_g - r_0)

    v_r_sun = (
        -params.u_sun * cos_l * cos_b
        - params.v_sun * sin_l * cos_b
        - params.w_sun * sin_b
    )
    v_r = series * r_0 / r_g * sin_l * cos_b + v_r_sun
    mu_l_cos_b = (
        series * (r_0 * cos_l / r_h - cos_b) / r_g
        - params.omega_0 * cos_b
        + (params.u_sun * sin_l - params.v_sun * cos_l) / r_h
    ) / k
    mu_b = (
        -series * r_0 / r_g / r_h * sin_l * sin_b
        + (
            params.u_sun * cos_l * sin_b
            + params.v_sun * sin_l * sin_b
            - params.w_sun * cos_b
        )
        / r_h
    ) / k
    return v_r, mu_l_cos_b, mu_b


@dataclass(frozen=True)
class InnerProblem:
    """The inner cost of one object for fixed global parameters.

    The errors include the natural velocity dispersions projected onto the
    line of sight and the tangential directions at the observed distance
    (and, for objects outside Reid et al. (2019), the extra velocity term).
    """

    l: float
    b: float
    par: float
    par_e: float
    v_r: float
    v_r_e: float
    mu_l_cos_b: float
    mu_l_cos_b_e: float
    mu_b: float
    mu_b_e: float
    params: Params
    consts: Consts

    @classmethod
    def from_object(cls, obj: Object, params: Params, consts: Consts) -> "InnerProblem":
        l, b = obj.l, obj.b
        r_h = 1.0 / obj.par
        r_g = float(compute_r_g(l, b, r_h, params.r_0))

        sin_l, cos_l = np.sin(l), np.cos(l)
        sin_b, cos_b = np.sin(b), np.cos(b)
        sin_lambda = r_h * cos_b / r_g * sin_l
        cos_lambda = (params.r_0 - r_h * cos_b * cos_l) / r_g
        sin_phi_2 = (sin_lambda * cos_l + cos_lambda * sin_l) ** 2
        cos_phi_2 = (cos_lambda * cos_l - sin_lambda * sin_l) ** 2

        s_r_2 = params.sigma_r**2
        s_t_2 = params.sigma_theta**2
        s_z_2 = params.sigma_z**2
        d_v_r_nat = (
            s_r_2 * cos_phi_2 * cos_b**2
            + s_t_2 * sin_phi_2 * cos_l**2
            + s_z_2 * sin_b**2
        )
        d_v_l_nat = s_r_2 * sin_phi_2 + s_t_2 * cos_phi_2
        d_v_b_nat = (
            s_r_2 * cos_phi_2 * sin_b**2
            + s_t_2 * sin_phi_2 * sin_b**2
            + s_z_2 * cos_b**2
        )

        # Velocity variances become proper-motion variances at distance r_h
        delim = consts.k**2 * r_h**2
        d_v_r = obj.v_r_e**2 + d_v_r_nat
        d_mu_l = obj.mu_l_cos_b_e**2 + d_v_l_nat / delim
        d_mu_b = obj.mu_b_e**2 + d_v_b_nat / delim
        if not obj.from_reid:
            d_v_r += consts.vel_term**2
            d_mu_l += consts.vel_term**2 / delim
            d_mu_b += consts.vel_term**2 / delim

        return cls(
            l=l,
            b=b,
            par=obj.par,
            par_e=obj.par_e,
            v_r=obj.v_r,
            v_r_e=float(np.sqrt(d_v_r)),
            mu_l_cos_b=obj.mu_l_cos_b,
            mu_l_cos_b_e=float(np.sqrt(d_mu_l)),
            mu_b=obj.mu_b,
            mu_b_e=float(np.sqrt(d_mu_b)),
            params=params,
            consts=consts,
        )

    @property
    def log_sigma(self) -> float:
        """Normalization term ln(sigma_v) + ln(sigma_mu_l) + ln(sigma_mu_b)."""
        return float(np.log(self.v_r_e) + np.log(self.mu_l_cos_b_e) + np.log(self.mu_b_e))

    def model(self, par_r):
        return model_observables(self.l, self.b, par_r, self.params, self.consts)

    def cost(self, par_r):
        """J at *par_r*; element-wise for arrays."""
        v_r, mu_l_cos_b, mu_b = self.model(par_r)
        return (
            ((self.v_r - v_r) / self.v_r_e) ** 2
            + ((self.mu_l_cos_b - mu_l_cos_b) / self.mu_l_cos_b_e) ** 2
            + ((self.mu_b - mu_b) / self.mu_b_e) ** 2
            + ((self.par - par_r) / self.par_e) ** 2
        )

    def cost_derivative(self, par_r):
        """Central-difference derivative of J, scaled to the parallax error."""
        h = DIFF_STEP * self.par_e
        return (self.cost(par_r + h) - self.cost(par_r - h)) / (2.0 * h)

    def triples(self, par_r: float) -> dict:
        """Residual triples of every channel at *par_r*."""
        v_r, mu_l_cos_b, mu_b = self.model(par_r)
        return {
            "v_r": Triple(self.v_r, float(v_r), self.v_r_e),
            "mu_l_cos_b": Triple(self.mu_l_cos_b, float(mu_l_cos_b), self.mu_l_cos_b_e),
            "mu_b": Triple(self.mu_b, float(mu_b), self.mu_b_e),
            "par": Triple(self.par, float(par_r), self.par_e),
        }


# ---------------------------------------------------------------------------
# Solver
# ---------------------------------------------------------------------------


def find_brackets(problem: InnerProblem, start: float, end: float, n_subintervals: int) -> list:
    """Subintervals of [start, end] where dJ/dp_r changes sign from - to +."""
    grid = np.linspace(start, end, n_subintervals + 1)
    deriv = problem.cost_derivative(grid)
    idx = np.flatnonzero((deriv[:-1] < 0.0) & (deriv[1:] > 0.0))
    return [(grid[i], grid[i + 1]) for i in idx]


def solve_inner(problem: InnerProblem, config: Optional[FitConfig] = None) -> InnerSolution:
    """Find the reduced parallax minimizing J for one object.

    The window around the observed parallax is widened through
    ``config.inner_windows`` (in units of the parallax error) until some
    subinterval brackets a local minimum. Every bracket is refined with a
    bounded Brent search and the lowest minimum wins. When no window yields
    a bracket, J is evaluated at the observed parallax.

    Args:
        problem: Inner cost of the object.
        config: Numerical policy (subintervals, windows, tolerance, cap).

    Returns:
        InnerSolution. Non-convergence of a refinement is tolerated; the
        best point found is kept.
    """
    config = config or FitConfig()
    par, par_e = problem.par, problem.par_e
    # Keeps the derivative stencil at positive parallaxes
    floor = MIN_PARALLAX + DIFF_STEP * par_e

    for width in config.inner_windows:
        start = max(floor, par - width * par_e)
        end = par + width * par_e
        brackets = find_brackets(problem, start, end, config.inner_subintervals)
        if not brackets:
            continue

        best = None
        for lo, hi in brackets:
            res = minimize_scalar(
                lambda x: float(problem.cost(x)),
                bounds=(lo, hi),
                method="bounded",
                options={"xatol": config.inner_xtol, "maxiter": config.inner_max_iters},
            )
            if not res.success:
                logger.debug(
                    "Inner refinement on [%.6g, %.6g] stopped: %s", lo, hi, res.message
                )
            candidate = InnerSolution(
                par_r=float(res.x),
                cost=float(res.fun),
                bracketed=True,
                converged=bool(res.success),
            )
            if best is None or candidate.cost < best.cost:
                best = candidate
        return best

    return InnerSolution(par_r=par, cost=float(problem.cost(par)), bracketed=False, converged=True)


# ---------------------------------------------------------------------------
# Inner profiles
# ---------------------------------------------------------------------------


def inner_profile(problem: InnerProblem, n_points: int = 1001) -> tuple:
    """Sample J over [max(eps, p - 9 sigma_p), p + 9 sigma_p].

    Returns:
        Tuple (par_r grid, J values).
    """
    start = max(MIN_PARALLAX, problem.par - PROFILE_HALF_WIDTH * problem.par_e)
    end = problem.par + PROFILE_HALF_WIDTH * problem.par_e
    grid = np.linspace(start, end, n_points)
    return grid, problem.cost(grid)


def count_local_minima(values) -> int:
    """Number of strict interior local minima of a sampled curve."""
    values = np.asarray(values, dtype=np.float64)
    if values.size < 3:
        return 0
    inner = values[1:-1]
    return int(np.sum((inner < values[:-2]) & (inner < values[2:])))
