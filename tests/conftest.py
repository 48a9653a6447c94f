"""Shared pytest fixtures for the Galactic rotation fit test suite."""

import pytest
import numpy as np

from galrot.catalog import Object
from galrot.config import Consts
from galrot.coords import compute_mu, parse_dms, parse_hms, to_spherical
from galrot.database import Base
from galrot.dual import Dual
from galrot.inner import model_observables
from galrot.params import Params
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Parameters used to generate the synthetic catalogs (no natural dispersions)
TRUE_PARAMS = Params(
    r_0=8.15,
    omega_0=28.0,
    a=17.0,
    u_sun=10.7,
    v_sun=19.0,
    w_sun=7.7,
    sigma_r=0.0,
    sigma_theta=0.0,
    sigma_z=0.0,
)

# (alpha, delta, parallax in mas)
SYNTHETIC_POSITIONS = [
    ("00:02:29.19", "+67:23:05.6", 0.44),
    ("01:23:33.18", "+61:48:48.2", 0.35),
    ("02:25:40.78", "+62:05:52.4", 0.51),
    ("03:27:38.76", "+58:47:00.1", 1.20),
    ("04:39:15.21", "+50:12:44.0", 0.60),
    ("05:35:14.16", "-05:22:21.5", 2.41),
    ("06:08:54.10", "+21:38:25.0", 0.66),
    ("07:07:18.90", "-10:27:02.0", 0.25),
    ("08:10:40.30", "-36:08:55.0", 0.38),
    ("09:32:12.10", "-52:40:10.0", 0.42),
    ("10:43:58.60", "-59:33:03.0", 0.43),
    ("11:11:53.40", "-61:18:23.0", 0.15),
    ("12:30:12.50", "-62:30:11.0", 0.30),
    ("13:12:36.00", "-62:33:49.0", 0.20),
    ("14:59:31.90", "-59:01:06.0", 0.27),
    ("16:06:25.78", "-50:54:14.2", 0.32),
    ("17:20:53.40", "-35:46:59.0", 0.61),
    ("18:03:40.33", "-24:22:42.7", 0.60),
    ("18:34:20.91", "-05:59:42.1", 0.33),
    ("19:00:07.00", "+04:08:31.0", 0.19),
    ("19:46:47.10", "+23:44:51.0", 0.37),
    ("20:38:36.43", "+42:37:34.8", 0.75),
    ("21:39:10.30", "+58:06:47.0", 1.07),
    ("22:56:17.98", "+62:01:49.4", 0.39),
]

PAR_RELATIVE_ERROR = 0.1
V_LSR_ERROR = 3.0
MU_ERROR = 0.05


def make_synthetic_objects(params: Params = TRUE_PARAMS, consts: Consts = None) -> list:
    """Objects whose observations follow the model exactly.

    The Galactic proper motions of the model are converted back to
    equatorial ones with the Jacobian of ``compute_mu``.
    """
    consts = consts or Consts()
    objects = []
    for i, (alpha_s, delta_s, par) in enumerate(SYNTHETIC_POSITIONS, start=1):
        alpha, delta = parse_hms(alpha_s), parse_dms(delta_s)
        l, b = to_spherical(alpha, delta, consts)
        v_r, mu_l_cos_b, mu_b = model_observables(l, b, par, params, consts)

        v_lsr = (
            v_r
            + (consts.u_sun_standard * np.cos(l) + consts.v_sun_standard * np.sin(l)) * np.cos(b)
            + consts.w_sun_standard * np.sin(b)
        )
        d_x = compute_mu(alpha, delta, Dual.var(0.0), 0.0, consts)
        d_y = compute_mu(alpha, delta, 0.0, Dual.var(0.0), consts)
        jacobian = np.array([[d_x[0].deriv, d_y[0].deriv], [d_x[1].deriv, d_y[1].deriv]])
        mu_x, mu_y = np.linalg.solve(jacobian, [mu_l_cos_b, mu_b])

        obj = Object(
            name=f"SYN{i:02d}",
            par=par,
            par_e=PAR_RELATIVE_ERROR * par,
            alpha=alpha,
            delta=delta,
            v_lsr=float(v_lsr),
            v_lsr_e=V_LSR_ERROR,
            mu_x=float(mu_x),
            mu_x_e=MU_ERROR,
            mu_y=float(mu_y),
            mu_y_e=MU_ERROR,
            obj_type="HMSFR",
            source="Reid",
        )
        obj.compute_observables(consts)
        objects.append(obj)
    return objects


def synthetic_catalog_text(objects: list) -> str:
    header = "name alpha delta par par_e v_lsr v_lsr_e mu_x mu_x_e mu_y mu_y_e type source"
    lines = ["# Synthetic catalog", header]
    for obj, (alpha_s, delta_s, _) in zip(objects, SYNTHETIC_POSITIONS):
        lines.append(
            f"{obj.name} {alpha_s} {delta_s} {obj.par!r} {obj.par_e!r} "
            f"{obj.v_lsr!r} {obj.v_lsr_e!r} {obj.mu_x!r} {obj.mu_x_e!r} "
            f"{obj.mu_y!r} {obj.mu_y_e!r} {obj.obj_type} {obj.source}"
        )
    return "\n".join(lines) + "\n"


@pytest.fixture
def consts():
    return Consts()


@pytest.fixture
def true_params():
    return TRUE_PARAMS


@pytest.fixture(scope="session")
def make_objects():
    """Factory of fresh synthetic catalogs (flags are mutable)."""
    return make_synthetic_objects


@pytest.fixture
def synthetic_objects(make_objects):
    return make_objects()


@pytest.fixture
def synthetic_catalog_file(synthetic_objects, tmp_path):
    """Write the synthetic catalog to a temporary file."""
    filepath = tmp_path / "synthetic.dat"
    filepath.write_text(synthetic_catalog_text(synthetic_objects))
    return filepath


@pytest.fixture
def sample_catalog_content():
    """Return string content of a minimal valid catalog."""
    return (
        "# Test catalog\n"
        "name alpha delta par par_e v_lsr v_lsr_e mu_x mu_x_e mu_y mu_y_e type source\n"
        "G348.70-01.04 17:20:04.04 -38:58:30.9 0.296 0.026 -7.0 6.0 -0.73 0.19 -2.83 0.19 HMSFR Reid\n"
        "G351.44+00.65 17:20:54.60 -35:45:08.6 0.752 0.069 -8.8 3.0 0.31 0.50 -0.88 1.80 HMSFR Reid\n"
        "# A comment in the middle\n"
        "S255 06:12:54.02 +17:59:23.3 0.563 0.036 5.0 3.0 -0.14 0.54 -0.84 0.54 HMSFR Other\n"
    )


@pytest.fixture
def sample_catalog_file(sample_catalog_content, tmp_path):
    """Write sample catalog content to a temporary file."""
    filepath = tmp_path / "catalog.dat"
    filepath.write_text(sample_catalog_content)
    return filepath


@pytest.fixture
def in_memory_engine():
    """Create an in-memory SQLite engine with schema initialized."""
    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def in_memory_session(in_memory_engine):
    """Create a session bound to the in-memory database."""
    factory = sessionmaker(bind=in_memory_engine)
    session = factory()
    yield session
    session.close()


@pytest.fixture
def quadratic():
    """A positive-definite quadratic cost with known minimum and curvature."""
    hessian = np.array([[4.0, 1.0, 0.5], [1.0, 3.0, 0.2], [0.5, 0.2, 2.0]])
    minimum = np.array([1.0, -2.0, 0.5])

    def f(x):
        d = np.asarray(x, dtype=np.float64) - minimum
        return float(0.5 * d @ hessian @ d)

    return {"f": f, "hessian": hessian, "minimum": minimum}
