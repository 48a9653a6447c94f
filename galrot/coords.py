"""Coordinate conversions and elementary kinematics of Galactic objects.

All angles are in radians, distances in kpc, velocities in km/s and proper
motions in mas/yr. The functions use NumPy ufuncs throughout, so they accept
plain floats as well as ``galrot.dual.Dual`` values.

References:
  - Reid et al. (2009) for the position of the Galactic pole.
  - Gromov, Nikiforov & Ossipkov (2016) for the azimuthal velocity and the
    unit conversion factor k = 4.7406.
"""

import numpy as np

# 1 rad/yr in mas/yr
RAD_TO_MAS = np.degrees(1.0) * 3600.0 * 1000.0

TWO_PI = 2.0 * np.pi


# ---------------------------------------------------------------------------
# Sexagesimal angles
# ---------------------------------------------------------------------------


def hms2rad(hours: float, minutes: float, seconds: float) -> float:
    """Convert an hour angle to radians."""
    return float(np.radians(hours * 15.0 + minutes / 4.0 + seconds / 240.0))


def dms2rad(degrees: float, minutes: float, seconds: float, negative: bool = False) -> float:
    """Convert a degree-minute-second angle to radians.

    The sign is taken from *degrees*, or from *negative* when the degrees
    field is zero (e.g. ``-00:30:00``).
    """
    sign = -1.0 if (negative or degrees < 0) else 1.0
    return float(sign * np.radians(abs(degrees) + minutes / 60.0 + seconds / 3600.0))


def _split_sexagesimal(text: str) -> list[float]:
    parts = str(text).strip().split(":")
    if len(parts) != 3:
        raise ValueError(f"Three colon-separated values were expected, got {text!r}")
    try:
        return [float(p) for p in parts]
    except ValueError as exc:
        raise ValueError(f"Couldn't parse the angle {text!r}") from exc


def parse_hms(text: str) -> float:
    """Parse an ``HH:MM:SS.s`` string into radians."""
    hours, minutes, seconds = _split_sexagesimal(text)
    return hms2rad(hours, minutes, seconds)


def parse_dms(text: str) -> float:
    """Parse a ``±DD:MM:SS.s`` string into radians."""
    degrees, minutes, seconds = _split_sexagesimal(text)
    return dms2rad(degrees, minutes, seconds, negative=str(text).strip().startswith("-"))


def _wrap_two_pi(angle):
    while angle < 0.0:
        angle = angle + TWO_PI
    while angle >= TWO_PI:
        angle = angle - TWO_PI
    return angle


def _wrap_pi(angle):
    while angle > np.pi:
        angle = angle - TWO_PI
    while angle <= -np.pi:
        angle = angle + TWO_PI
    return angle


# ---------------------------------------------------------------------------
# Equatorial <-> Galactic
# ---------------------------------------------------------------------------


def to_spherical(alpha, delta, consts):
    """Convert equatorial coordinates to Galactic longitude and latitude.

    Args:
        alpha: Right ascension (rad).
        delta: Declination (rad).
        consts: Object carrying ``alpha_ngp``, ``delta_ngp`` and ``l_ncp``.

    Returns:
        Tuple (l, b) in radians, with l in [0, 2*pi).
    """
    d_alpha = alpha - consts.alpha_ngp
    phi = np.arctan2(
        np.cos(delta) * np.sin(d_alpha),
        np.cos(consts.delta_ngp) * np.sin(delta)
        - np.sin(consts.delta_ngp) * np.cos(delta) * np.cos(d_alpha),
    )
    l = _wrap_two_pi(consts.l_ncp - phi)
    b = np.arcsin(
        np.sin(consts.delta_ngp) * np.sin(delta)
        + np.cos(consts.delta_ngp) * np.cos(delta) * np.cos(d_alpha)
    )
    return l, b


def to_cartesian(l, b, r_h):
    """Heliocentric Galactic Cartesian coordinates (X toward the centre)."""
    x = r_h * np.cos(b) * np.cos(l)
    y = r_h * np.cos(b) * np.sin(l)
    z = r_h * np.sin(b)
    return x, y, z


# ---------------------------------------------------------------------------
# Distances and velocities
# ---------------------------------------------------------------------------


def compute_r_g(l, b, r_h, r_0):
    """Galactocentric distance projected on the Galactic plane."""
    d = r_h * np.cos(b)
    return np.sqrt(r_0**2 + d**2 - 2.0 * r_0 * d * np.cos(l))


def compute_mu(alpha, delta, mu_x, mu_y, consts):
    """Convert equatorial proper motions to Galactic ``(mu_l cos b, mu_b)``.

    The object is moved along its equatorial proper motion for one year and
    the change of its Galactic coordinates is measured.

    Args:
        alpha, delta: Equatorial coordinates (rad).
        mu_x: Proper motion in right ascension, ``mu_alpha cos(delta)`` (mas/yr).
        mu_y: Proper motion in declination (mas/yr).
        consts: Pole coordinates (see ``to_spherical``).
    """
    l, b = to_spherical(alpha, delta, consts)
    mu_alpha = mu_x / np.cos(delta) / RAD_TO_MAS
    mu_delta = mu_y / RAD_TO_MAS
    l_ahead, b_ahead = to_spherical(alpha + mu_alpha, delta + mu_delta, consts)
    d_l = _wrap_pi(l_ahead - l)
    mu_l_cos_b = d_l * RAD_TO_MAS * np.cos(b)
    mu_b = (b_ahead - b) * RAD_TO_MAS
    return mu_l_cos_b, mu_b


def compute_v_r(l, b, v_lsr, consts):
    """Heliocentric line-of-sight velocity from the LSR velocity.

    The standard solar motion in ``consts`` is removed.
    """
    return (
        v_lsr
        - (consts.u_sun_standard * np.cos(l) + consts.v_sun_standard * np.sin(l)) * np.cos(b)
        - consts.w_sun_standard * np.sin(b)
    )


def compute_v_l_v_b(r_h, mu_l_cos_b, mu_b, k):
    """Tangential velocities from proper motions at heliocentric distance ``r_h``."""
    return k * r_h * mu_l_cos_b, k * r_h * mu_b


def compute_u_v_w(l, b, v_r, v_l, v_b):
    """Heliocentric Galactic Cartesian velocities."""
    aux = v_r * np.cos(b) - v_b * np.sin(b)
    u = aux * np.cos(l) - v_l * np.sin(l)
    v = aux * np.sin(l) + v_l * np.cos(l)
    w = v_b * np.cos(b) + v_r * np.sin(b)
    return u, v, w


def compute_theta(l, b, r_h, r_g, u, v, u_sun, theta_sun, r_0):
    """Azimuthal velocity of an object in the Galactocentric frame.

    Args:
        l, b: Galactic coordinates (rad).
        r_h: Heliocentric distance (kpc).
        r_g: Galactocentric distance (kpc).
        u, v: Heliocentric velocities toward the centre and rotation (km/s).
        u_sun: Peculiar motion of the Sun toward the centre (km/s).
        theta_sun: Full circular velocity of the Sun (km/s).
        r_0: Galactocentric distance of the Sun (kpc).
    """
    u_g = u + u_sun
    v_g = v + theta_sun
    d = r_h * np.cos(b)
    sin_lambda = d / r_g * np.sin(l)
    cos_lambda = (r_0 - d * np.cos(l)) / r_g
    return u_g * sin_lambda + v_g * cos_lambda
