"""Catalog of Galactic objects: parsing, per-object data and outlier flags.

The catalog is a whitespace-delimited table with a header row and ``#``
comments, one object per row:

    name alpha delta par par_e v_lsr v_lsr_e mu_x mu_x_e mu_y mu_y_e type source

``alpha`` is ``HH:MM:SS.s``, ``delta`` is ``±DD:MM:SS.s``, parallaxes are in
mas, velocities in km/s and proper motions in mas/yr.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from galrot.config import Consts
from galrot.coords import (
    compute_mu,
    compute_r_g,
    compute_theta,
    compute_u_v_w,
    compute_v_l_v_b,
    compute_v_r,
    parse_dms,
    parse_hms,
    to_cartesian,
    to_spherical,
)
from galrot.dual import Dual
from galrot.exceptions import CatalogError
from galrot.params import Params
from galrot.utils import setup_logger

logger = setup_logger(__name__)

CATALOG_COLUMNS = [
    "name",
    "alpha",
    "delta",
    "par",
    "par_e",
    "v_lsr",
    "v_lsr_e",
    "mu_x",
    "mu_x_e",
    "mu_y",
    "mu_y_e",
    "type",
    "source",
]

NUMERIC_COLUMNS = CATALOG_COLUMNS[3:11]

# Parallax (mas) assumed for the lower bound when par - par_e is not positive
MIN_PARALLAX = 1.0 / 50.0

# Source label of the objects from Reid et al. (2019)
REID_SOURCE = "Reid"


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class Measurement:
    """A value with the bounds obtained by propagating the input bounds."""

    value: float
    upper: float
    lower: float

    @classmethod
    def from_bounds(cls, value, *bounds) -> "Measurement":
        value = float(value)
        candidates = [value] + [float(b) for b in bounds]
        return cls(value=value, upper=max(candidates), lower=min(candidates))

    @property
    def error_plus(self) -> float:
        return self.upper - self.value

    @property
    def error_minus(self) -> float:
        return self.value - self.lower


@dataclass
class Object:
    """One catalog object with its observed and derived data."""

    name: str
    par: float
    par_e: float
    alpha: Optional[float] = None
    delta: Optional[float] = None
    v_lsr: Optional[float] = None
    v_lsr_e: Optional[float] = None
    mu_x: Optional[float] = None
    mu_x_e: Optional[float] = None
    mu_y: Optional[float] = None
    mu_y_e: Optional[float] = None
    obj_type: str = ""
    source: str = ""
    outlier: bool = False
    # Observables in Galactic coordinates
    l: Optional[float] = None
    b: Optional[float] = None
    v_r: Optional[float] = None
    v_r_e: Optional[float] = None
    mu_l_cos_b: Optional[float] = None
    mu_l_cos_b_e: Optional[float] = None
    mu_b: Optional[float] = None
    mu_b_e: Optional[float] = None
    # Per-object kinematics (filled by ``compute``)
    r_h: Optional[Measurement] = None
    r_g: Optional[Measurement] = None
    x: Optional[Measurement] = None
    y: Optional[Measurement] = None
    z: Optional[Measurement] = None
    v_l: Optional[Measurement] = None
    v_b: Optional[Measurement] = None
    u: Optional[Measurement] = None
    v: Optional[Measurement] = None
    w: Optional[Measurement] = None
    theta: Optional[Measurement] = None
    theta_evel: Optional[float] = None

    @property
    def from_reid(self) -> bool:
        return self.source == REID_SOURCE

    @property
    def par_p(self) -> float:
        return self.par + self.par_e

    @property
    def par_m(self) -> float:
        # A parallax can't be non-positive; assume a large but finite distance
        par_m = self.par - self.par_e
        return par_m if par_m > 0.0 else MIN_PARALLAX

    @classmethod
    def from_galactic(
        cls,
        name: str,
        l: float,
        b: float,
        par: float,
        par_e: float,
        v_r: float,
        v_r_e: float,
        mu_l_cos_b: float,
        mu_l_cos_b_e: float,
        mu_b: float,
        mu_b_e: float,
        source: str = REID_SOURCE,
    ) -> "Object":
        """Build an object directly from its Galactic observables."""
        return cls(
            name=name,
            par=par,
            par_e=par_e,
            source=source,
            l=l,
            b=b,
            v_r=v_r,
            v_r_e=v_r_e,
            mu_l_cos_b=mu_l_cos_b,
            mu_l_cos_b_e=mu_l_cos_b_e,
            mu_b=mu_b,
            mu_b_e=mu_b_e,
            r_h=Measurement.from_bounds(1.0 / par, 1.0 / (par + par_e), 1.0 / _par_m(par, par_e)),
        )

    def compute_observables(self, consts: Consts) -> None:
        """Convert the equatorial observables to the Galactic frame.

        Fills l, b, the heliocentric line-of-sight velocity, the Galactic
        proper motions with their propagated uncertainties and the
        heliocentric distance.
        """
        self.l, self.b = (float(v) for v in to_spherical(self.alpha, self.delta, consts))
        self.v_r = float(compute_v_r(self.l, self.b, self.v_lsr, consts))
        self.v_r_e = self.v_lsr_e
        mu_l_cos_b, mu_b = compute_mu(self.alpha, self.delta, self.mu_x, self.mu_y, consts)
        self.mu_l_cos_b, self.mu_b = float(mu_l_cos_b), float(mu_b)

        # Partial derivatives by the equatorial proper motions
        dl_dx, db_dx = _mu_derivatives(self, consts, wrt="mu_x")
        dl_dy, db_dy = _mu_derivatives(self, consts, wrt="mu_y")
        d_mu_x, d_mu_y = self.mu_x_e**2, self.mu_y_e**2
        self.mu_l_cos_b_e = float(np.sqrt(dl_dx**2 * d_mu_x + dl_dy**2 * d_mu_y))
        self.mu_b_e = float(np.sqrt(db_dx**2 * d_mu_x + db_dy**2 * d_mu_y))

        self.r_h = Measurement.from_bounds(1.0 / self.par, 1.0 / self.par_p, 1.0 / self.par_m)

    def compute(self, params: Params, consts: Consts) -> None:
        """Compute all per-object data for the given parameters."""
        self.compute_observables(consts)
        r_h = self.r_h
        values = [
            _kinematics(self.l, self.b, r, self.v_r, self.mu_l_cos_b, self.mu_b, params, consts)
            for r in (r_h.value, 1.0 / self.par_p, 1.0 / self.par_m)
        ]
        for key in values[0]:
            nominal, *bounds = (v[key] for v in values)
            setattr(self, key, Measurement.from_bounds(nominal, *bounds))
        self.theta_evel = self._compute_theta_evel(params, consts)

    def _compute_theta_evel(self, params: Params, consts: Consts) -> float:
        """Uncertainty of the azimuthal velocity inherited from the velocities.

        Sources: Gromov, Nikiforov, Ossipkov (2016)
        """
        derivs = {}
        for wrt in ("v_lsr", "mu_x", "mu_y"):
            inputs = {key: getattr(self, key) for key in ("v_lsr", "mu_x", "mu_y")}
            inputs[wrt] = Dual.var(inputs[wrt])
            l, b = to_spherical(self.alpha, self.delta, consts)
            v_r = compute_v_r(l, b, inputs["v_lsr"], consts)
            mu_l_cos_b, mu_b = compute_mu(self.alpha, self.delta, inputs["mu_x"], inputs["mu_y"], consts)
            theta = _kinematics(l, b, 1.0 / self.par, v_r, mu_l_cos_b, mu_b, params, consts)["theta"]
            derivs[wrt] = theta.deriv if isinstance(theta, Dual) else 0.0

        d_v_lsr = self.v_lsr_e**2
        d_mu_x = self.mu_x_e**2
        d_mu_y = self.mu_y_e**2
        if not self.from_reid:
            extra_v = consts.vel_term**2
            extra_mu = extra_v / consts.k**2 * self.par**2
            d_v_lsr += extra_v
            d_mu_x += extra_mu
            d_mu_y += extra_mu
        return float(
            np.sqrt(
                derivs["v_lsr"] ** 2 * d_v_lsr
                + derivs["mu_x"] ** 2 * d_mu_x
                + derivs["mu_y"] ** 2 * d_mu_y
            )
        )


def _par_m(par: float, par_e: float) -> float:
    par_m = par - par_e
    return par_m if par_m > 0.0 else MIN_PARALLAX


def _mu_derivatives(obj: Object, consts: Consts, wrt: str) -> tuple:
    mu_x = Dual.var(obj.mu_x) if wrt == "mu_x" else obj.mu_x
    mu_y = Dual.var(obj.mu_y) if wrt == "mu_y" else obj.mu_y
    mu_l_cos_b, mu_b = compute_mu(obj.alpha, obj.delta, mu_x, mu_y, consts)
    return mu_l_cos_b.deriv, mu_b.deriv


def _kinematics(l, b, r_h, v_r, mu_l_cos_b, mu_b, params: Params, consts: Consts) -> dict:
    r_g = compute_r_g(l, b, r_h, params.r_0)
    x, y, z = to_cartesian(l, b, r_h)
    v_l, v_b = compute_v_l_v_b(r_h, mu_l_cos_b, mu_b, consts.k)
    u, v, w = compute_u_v_w(l, b, v_r, v_l, v_b)
    theta = compute_theta(l, b, r_h, r_g, u, v, params.u_sun, params.theta_sun, params.r_0)
    return {
        "r_g": r_g, "x": x, "y": y, "z": z,
        "v_l": v_l, "v_b": v_b,
        "u": u, "v": v, "w": w,
        "theta": theta,
    }


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_catalog(filepath: str | Path) -> pd.DataFrame:
    """Parse a catalog file into a DataFrame.

    Skips comment lines starting with '#'. Angles are kept as strings.

    Raises:
        FileNotFoundError: If filepath does not exist.
        CatalogError: If a column is missing or a numeric field can't be parsed.
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Catalog file not found: {filepath}")

    df = pd.read_csv(
        filepath,
        sep=r"\s+",
        comment="#",
        header=0,
        dtype={"name": str, "alpha": str, "delta": str, "type": str, "source": str},
    )

    missing = [col for col in CATALOG_COLUMNS if col not in df.columns]
    if missing:
        raise CatalogError(f"Missing columns {missing} in {filepath.name}")

    for col in NUMERIC_COLUMNS:
        values = pd.to_numeric(df[col], errors="coerce")
        bad = values.isna()
        if bad.any():
            row = int(np.flatnonzero(bad.to_numpy())[0])
            raise CatalogError(
                f"Non-numeric value {df[col].iloc[row]!r} in column {col!r}",
                row=row + 1,
                name=df["name"].iloc[row],
            )
        df[col] = values.astype(np.float64)

    logger.info("Parsed %s: %d objects", filepath.name, len(df))
    return df


def object_from_record(record: pd.Series, row: int) -> Object:
    """Build an object from one catalog row, validating it."""
    name = str(record["name"])
    try:
        alpha = parse_hms(record["alpha"])
        delta = parse_dms(record["delta"])
    except ValueError as exc:
        raise CatalogError(str(exc), row=row, name=name) from exc

    if record["par"] <= 0.0:
        raise CatalogError(f"Non-positive parallax {record['par']}", row=row, name=name)
    for col in ("par_e", "v_lsr_e", "mu_x_e", "mu_y_e"):
        if record[col] <= 0.0:
            raise CatalogError(f"Non-positive uncertainty {col} = {record[col]}", row=row, name=name)

    return Object(
        name=name,
        par=float(record["par"]),
        par_e=float(record["par_e"]),
        alpha=alpha,
        delta=delta,
        v_lsr=float(record["v_lsr"]),
        v_lsr_e=float(record["v_lsr_e"]),
        mu_x=float(record["mu_x"]),
        mu_x_e=float(record["mu_x_e"]),
        mu_y=float(record["mu_y"]),
        mu_y_e=float(record["mu_y_e"]),
        obj_type=str(record["type"]),
        source=str(record["source"]),
    )


def load_catalog(filepath: str | Path, consts: Optional[Consts] = None) -> list[Object]:
    """Parse a catalog and compute the Galactic observables of every object."""
    consts = consts or Consts()
    df = parse_catalog(filepath)
    objects = []
    for i, (_, record) in enumerate(df.iterrows(), start=1):
        obj = object_from_record(record, row=i)
        obj.compute_observables(consts)
        objects.append(obj)
    n_reid = sum(obj.from_reid for obj in objects)
    logger.info("Loaded %d objects (%d from Reid et al.)", len(objects), n_reid)
    return objects


# ---------------------------------------------------------------------------
# Outlier flags
# ---------------------------------------------------------------------------


def count_non_outliers(objects: list[Object]) -> int:
    return sum(not obj.outlier for obj in objects)


def get_outlier_mask(objects: list[Object]) -> list[bool]:
    return [obj.outlier for obj in objects]


def apply_outlier_mask(objects: list[Object], mask: list[bool]) -> None:
    if len(mask) != len(objects):
        raise ValueError(f"Mask of length {len(mask)} doesn't match {len(objects)} objects")
    for obj, flag in zip(objects, mask):
        obj.outlier = bool(flag)


def objects_to_dataframe(objects: list[Object]) -> pd.DataFrame:
    """Per-object data table (angles in degrees)."""
    rows = []
    for i, obj in enumerate(objects, start=1):
        row = {
            "i": i,
            "name": obj.name,
            "type": obj.obj_type,
            "source": obj.source,
            "outlier": obj.outlier,
            "l_deg": np.degrees(obj.l) if obj.l is not None else np.nan,
            "b_deg": np.degrees(obj.b) if obj.b is not None else np.nan,
            "par": obj.par,
            "par_e": obj.par_e,
            "v_r": obj.v_r,
            "mu_l_cos_b": obj.mu_l_cos_b,
            "mu_l_cos_b_e": obj.mu_l_cos_b_e,
            "mu_b": obj.mu_b,
            "mu_b_e": obj.mu_b_e,
            "theta_evel": obj.theta_evel,
        }
        for key in ("r_h", "r_g", "x", "y", "z", "v_l", "v_b", "u", "v", "w", "theta"):
            m = getattr(obj, key)
            row[key] = m.value if m is not None else np.nan
            row[f"{key}_ep"] = m.error_plus if m is not None else np.nan
            row[f"{key}_em"] = m.error_minus if m is not None else np.nan
        rows.append(row)
    return pd.DataFrame(rows)
