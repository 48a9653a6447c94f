"""Global parameters of the Galaxy model and their bounds."""

import math
from dataclasses import dataclass, field, replace
from typing import Optional

import numpy as np

# Names of the fitted parameters, in vector order
BASE_PARAM_NAMES = (
    "R_0",
    "omega_0",
    "A",
    "u_sun",
    "v_sun",
    "w_sun",
    "sigma_R",
    "sigma_theta",
    "sigma_z",
)

# Indices of the velocity-dispersion components
SIGMA_INDICES = (6, 7, 8)


def param_names(degree: int = 1) -> tuple:
    """Names of the fitted parameters for a rotation curve of the given degree."""
    return BASE_PARAM_NAMES + tuple(f"theta_{i}" for i in range(2, degree + 1))


@dataclass(frozen=True)
class Params:
    """Fitted parameters of the model.

    ``theta_n`` holds the higher derivatives of the rotation curve at R_0
    (theta_2 ... theta_n); it is empty for the linear model.
    """

    # Galactocentric distance to the Sun (kpc)
    r_0: float = 8.15
    # Angular velocity of rotation at R = R_0 (km/s/kpc)
    omega_0: float = 28.0
    # Oort's A constant (km/s/kpc)
    a: float = 17.0
    # Peculiar motion of the Sun (km/s)
    u_sun: float = 10.7
    v_sun: float = 19.0
    w_sun: float = 7.7
    # Ellipsoid of natural velocity dispersions (km/s)
    sigma_r: float = 12.0
    sigma_theta: float = 6.0
    sigma_z: float = 3.0
    theta_n: tuple = field(default=())

    @property
    def degree(self) -> int:
        return 1 + len(self.theta_n)

    @property
    def names(self) -> tuple:
        return param_names(self.degree)

    @property
    def theta_0(self) -> float:
        """Linear rotation velocity at R_0 (km/s)."""
        return self.r_0 * self.omega_0

    @property
    def theta_1(self) -> float:
        """Slope of the rotation curve at R_0 (km/s/kpc)."""
        return self.omega_0 - 2.0 * self.a

    @property
    def theta_sun(self) -> float:
        """Full circular velocity of the Sun (km/s)."""
        return self.theta_0 + self.v_sun

    def to_vector(self) -> np.ndarray:
        return np.array(
            [
                self.r_0,
                self.omega_0,
                self.a,
                self.u_sun,
                self.v_sun,
                self.w_sun,
                self.sigma_r,
                self.sigma_theta,
                self.sigma_z,
                *self.theta_n,
            ],
            dtype=np.float64,
        )

    @classmethod
    def from_vector(cls, x) -> "Params":
        x = [float(v) for v in x]
        if len(x) < len(BASE_PARAM_NAMES):
            raise ValueError(
                f"At least {len(BASE_PARAM_NAMES)} values are needed, got {len(x)}"
            )
        return cls(*x[: len(BASE_PARAM_NAMES)], theta_n=tuple(x[len(BASE_PARAM_NAMES):]))

    def with_degree(self, degree: int) -> "Params":
        """Return a copy with the series truncated or padded with zeros."""
        n_terms = degree - 1
        theta_n = tuple(self.theta_n[:n_terms]) + (0.0,) * max(0, n_terms - len(self.theta_n))
        return replace(self, theta_n=theta_n)

    def rot_curve_series(self, delta_r):
        """Series R * (omega(R) - omega_0) of the rotation curve at R = R_0 + delta_r."""
        series = (self.theta_1 - self.omega_0) * delta_r
        for i, theta_i in enumerate(self.theta_n, start=2):
            series = series + theta_i * delta_r**i / math.factorial(i)
        return series

    def rotation_velocity(self, r):
        """Azimuthal velocity of the rotation curve at Galactocentric distance r."""
        delta_r = r - self.r_0
        theta = self.theta_0 + self.theta_1 * delta_r
        for i, theta_i in enumerate(self.theta_n, start=2):
            theta = theta + theta_i * delta_r**i / math.factorial(i)
        return theta

    def to_dict(self) -> dict:
        """Fitted and derived values keyed by name."""
        d = dict(zip(self.names, self.to_vector().tolist()))
        d.update(theta_0=self.theta_0, theta_1=self.theta_1, theta_sun=self.theta_sun)
        return d


# Default search box of the outer optimization
DEFAULT_INTERVALS = (
    (5.0, 12.0),
    (15.0, 45.0),
    (5.0, 30.0),
    (-30.0, 40.0),
    (-30.0, 50.0),
    (-20.0, 30.0),
    (0.0, 50.0),
    (0.0, 50.0),
    (0.0, 50.0),
)

DEFAULT_SERIES_INTERVAL = (-100.0, 100.0)


@dataclass(frozen=True)
class Bounds:
    """One closed interval per fitted parameter."""

    intervals: tuple

    def __post_init__(self):
        intervals = tuple((float(lo), float(hi)) for lo, hi in self.intervals)
        for i, (lo, hi) in enumerate(intervals):
            if not lo < hi:
                raise ValueError(f"Bound #{i} must satisfy lower < upper, got [{lo}, {hi}]")
        object.__setattr__(self, "intervals", intervals)

    @classmethod
    def default(cls, degree: int = 1) -> "Bounds":
        return cls(DEFAULT_INTERVALS + (DEFAULT_SERIES_INTERVAL,) * (degree - 1))

    def __len__(self) -> int:
        return len(self.intervals)

    @property
    def lower(self) -> np.ndarray:
        return np.array([lo for lo, _ in self.intervals])

    @property
    def upper(self) -> np.ndarray:
        return np.array([hi for _, hi in self.intervals])

    def contains(self, x) -> bool:
        x = np.asarray(x, dtype=np.float64)
        return bool(np.all(x >= self.lower) and np.all(x <= self.upper))

    def clip(self, x) -> np.ndarray:
        return np.clip(np.asarray(x, dtype=np.float64), self.lower, self.upper)

    def drop(self, *indices: int) -> "Bounds":
        """Bounds of the remaining parameters once *indices* are fixed."""
        return Bounds(tuple(b for i, b in enumerate(self.intervals) if i not in indices))

    def as_list(self) -> list:
        return list(self.intervals)


def check_within(params: Params, bounds: Optional[Bounds]) -> None:
    """Raise ValueError when the initial parameters fall outside their bounds."""
    if bounds is None:
        return
    x = params.to_vector()
    if len(bounds) != x.size:
        raise ValueError(f"Expected {x.size} bounds, got {len(bounds)}")
    for name, value, (lo, hi) in zip(params.names, x, bounds.intervals):
        if not lo <= value <= hi:
            raise ValueError(f"Initial {name} = {value} is outside [{lo}, {hi}]")
