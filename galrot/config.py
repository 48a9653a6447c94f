"""Immutable configuration of a fitting session.

``Consts`` holds the physical constants that are never fitted, ``FitConfig``
the numerical policy of every stage. Both are built once (usually by the CLI)
and passed explicitly to the code that needs them.
"""

from dataclasses import dataclass

import numpy as np

from galrot.coords import dms2rad, hms2rad, parse_dms, parse_hms

SQRT_EPS = float(np.sqrt(np.finfo(np.float64).eps))

# Search widths of the confidence intervals, in the order of the fitted parameters
CI_WIDTHS = (2.0, 2.0, 2.0, 10.0, 2.0, 4.0, 5.0, 20.0, 2.0)

# Search width used for the rotation-curve series terms
CI_SERIES_WIDTH = 20.0

METHODS = ("lbfgs", "annealing")


@dataclass(frozen=True)
class Consts:
    """Constants of the model that are not fitted."""

    # Right ascension of the north Galactic pole (rad), Reid et al. (2009)
    alpha_ngp: float = hms2rad(12.0, 51.0, 26.2817)
    # Declination of the north Galactic pole (rad), Reid et al. (2009)
    delta_ngp: float = dms2rad(27.0, 7.0, 42.013)
    # Longitude of the north celestial pole (rad), Reid et al. (2009)
    l_ncp: float = float(np.radians(122.932))
    # Linear velocities units conversion coefficient
    k: float = 4.7406
    # Standard solar motion (km/s)
    u_sun_standard: float = 10.3
    v_sun_standard: float = 15.3
    w_sun_standard: float = 7.7
    # Extra velocity error for objects outside Reid et al. (2019), km/s
    vel_term: float = 10.0

    @classmethod
    def from_strings(cls, alpha_ngp: str, delta_ngp: str, l_ncp_deg: float, **kwargs) -> "Consts":
        """Build constants from sexagesimal pole coordinates."""
        return cls(
            alpha_ngp=parse_hms(alpha_ngp),
            delta_ngp=parse_dms(delta_ngp),
            l_ncp=float(np.radians(l_ncp_deg)),
            **kwargs,
        )


@dataclass(frozen=True)
class FitConfig:
    """Numerical policy of the fitting stages."""

    # Degree of the rotation-curve series (1 is the linear model)
    degree: int = 1
    # Number of the smallest exceedances that may be kept by the outlier test
    l_stroke: int = 1
    # Outer optimization
    method: str = "lbfgs"
    lbfgs_memory: int = 7
    tol_cost: float = 1e-10
    gtol: float = 1e-5
    max_iters: int = 1000
    fit_sigmas: bool = True
    anneal_max_iters: int = 100
    seed: int = 42
    # Inner optimization
    inner_subintervals: int = 50
    inner_windows: tuple = (3.0, 6.0, 9.0)
    inner_xtol: float = SQRT_EPS
    inner_max_iters: int = 100
    # Confidence intervals
    ci_widths: tuple = CI_WIDTHS
    ci_tolerance: float = SQRT_EPS
    ci_max_iters: int = 100
    # Covariance
    hessian_step: float = 1e-5
    # Parameter profiles
    profile_half_width: float = 1.0
    profile_points: int = 100
    # Worker threads for the per-object terms
    workers: int = 1

    def __post_init__(self):
        if self.degree < 1:
            raise ValueError(f"degree must be >= 1, got {self.degree}")
        if self.l_stroke < 1:
            raise ValueError(f"l_stroke must be >= 1, got {self.l_stroke}")
        if self.method not in METHODS:
            raise ValueError(f"method must be one of {METHODS}, got {self.method!r}")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.inner_subintervals < 1:
            raise ValueError("inner_subintervals must be positive")
        if list(self.inner_windows) != sorted(self.inner_windows):
            raise ValueError("inner_windows must be increasing")

    def ci_width(self, index: int) -> float:
        """Search width of the confidence interval of parameter *index*."""
        if index < len(self.ci_widths):
            return float(self.ci_widths[index])
        return CI_SERIES_WIDTH
