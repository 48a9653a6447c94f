"""Tests for the per-object reduced-parallax solver."""

import pytest
import numpy as np

from galrot.catalog import Object
from galrot.config import FitConfig
from galrot.inner import (
    CHANNELS,
    InnerProblem,
    Triple,
    count_local_minima,
    find_brackets,
    inner_profile,
    model_observables,
    solve_inner,
)
from galrot.params import Params
from galrot.utils import DIFF_STEP


class StubProblem:
    """A one-dimensional cost with the interface the solver uses."""

    def __init__(self, cost, par, par_e):
        self._cost = cost
        self.par = par
        self.par_e = par_e

    def cost(self, x):
        return self._cost(np.asarray(x, dtype=np.float64))

    def cost_derivative(self, x):
        h = DIFF_STEP * self.par_e
        return (self.cost(x + h) - self.cost(x - h)) / (2.0 * h)


def center_object(par=0.5, par_e=0.05):
    """One object toward l = 0, b = 0 at rest with respect to the Sun."""
    return Object.from_galactic(
        "center", l=0.0, b=0.0, par=par, par_e=par_e,
        v_r=0.0, v_r_e=3.0,
        mu_l_cos_b=0.0, mu_l_cos_b_e=0.1,
        mu_b=0.0, mu_b_e=0.1,
    )


STILL_SUN = dict(u_sun=0.0, v_sun=0.0, w_sun=0.0, sigma_r=0.0, sigma_theta=0.0, sigma_z=0.0)


class TestTriple:
    def test_relative_discrepancy(self):
        assert Triple(observed=1.0, model=4.0, error=2.0).relative_discrepancy == pytest.approx(1.5)
        assert Triple(observed=4.0, model=1.0, error=2.0).relative_discrepancy == pytest.approx(1.5)


class TestModel:
    def test_vectorized_over_parallax(self, true_params, consts):
        grid = np.array([0.2, 0.5, 1.0])
        v_r, mu_l, mu_b = model_observables(1.0, 0.1, grid, true_params, consts)
        assert v_r.shape == mu_l.shape == mu_b.shape == (3,)
        for i, p in enumerate(grid):
            scalar = model_observables(1.0, 0.1, p, true_params, consts)
            assert scalar[0] == pytest.approx(v_r[i])

    def test_toward_center_only_the_proper_motion_is_affected(self, consts):
        params = Params(r_0=8.15, omega_0=28.0, a=17.0, **STILL_SUN)
        v_r, mu_l, mu_b = model_observables(0.0, 0.0, 0.5, params, consts)
        assert v_r == pytest.approx(0.0, abs=1e-12)
        assert mu_b == pytest.approx(0.0, abs=1e-12)
        assert mu_l == pytest.approx((2 * 17.0 - 28.0) / consts.k)


class TestInnerProblem:
    def test_natural_dispersions_inflate_errors(self, consts):
        obj = center_object()
        quiet = InnerProblem.from_object(obj, Params(**STILL_SUN), consts)
        noisy = InnerProblem.from_object(obj, Params(u_sun=0.0, v_sun=0.0, w_sun=0.0), consts)
        assert quiet.v_r_e == pytest.approx(3.0)
        assert noisy.v_r_e > quiet.v_r_e
        assert noisy.mu_l_cos_b_e > quiet.mu_l_cos_b_e

    def test_radial_dispersion_projects_on_line_of_sight_toward_center(self, consts):
        """At l = 0, b = 0 the line of sight is radial: sigma_v^2 = e^2 + sigma_R^2."""
        obj = center_object()
        params = Params(u_sun=0.0, v_sun=0.0, w_sun=0.0, sigma_r=4.0, sigma_theta=0.0, sigma_z=0.0)
        problem = InnerProblem.from_object(obj, params, consts)
        assert problem.v_r_e == pytest.approx(5.0)

    def test_azimuthal_dispersion_vanishes_on_line_of_sight_at_l_90(self, consts):
        """At l = 90 deg, b = 0 the sigma_theta term is projected with cos^2 l = 0."""
        obj = Object.from_galactic(
            "quadrature", l=np.pi / 2, b=0.0, par=0.5, par_e=0.05,
            v_r=0.0, v_r_e=1.0,
            mu_l_cos_b=0.0, mu_l_cos_b_e=0.1,
            mu_b=0.0, mu_b_e=0.1,
        )
        params = Params(u_sun=0.0, v_sun=0.0, w_sun=0.0, sigma_r=0.0, sigma_theta=10.0, sigma_z=0.0)
        problem = InnerProblem.from_object(obj, params, consts)
        assert problem.v_r_e == pytest.approx(1.0)
        assert problem.mu_l_cos_b_e > 0.1

    def test_non_reid_objects_get_extra_velocity_term(self, consts):
        params = Params(**STILL_SUN)
        reid = InnerProblem.from_object(center_object(), params, consts)
        other = center_object()
        other.source = "Other"
        extra = InnerProblem.from_object(other, params, consts)
        assert extra.v_r_e == pytest.approx(np.hypot(3.0, consts.vel_term))
        delim = consts.k * 2.0
        assert extra.mu_b_e == pytest.approx(np.hypot(0.1, consts.vel_term / delim))
        assert reid.mu_b_e == pytest.approx(0.1)

    def test_triples_cover_every_channel(self, consts):
        problem = InnerProblem.from_object(center_object(), Params(**STILL_SUN), consts)
        triples = problem.triples(0.5)
        assert tuple(triples) == CHANNELS
        assert triples["par"].model == pytest.approx(0.5)


class TestSolveInner:
    def test_object_toward_center(self, consts):
        """p_r = 0.5 and J equals the constant proper-motion mismatch."""
        params = Params(r_0=8.15, omega_0=28.0, a=17.0, **STILL_SUN)
        problem = InnerProblem.from_object(center_object(), params, consts)
        solution = solve_inner(problem)
        mismatch = (2 * 17.0 - 28.0) / consts.k / 0.1
        assert solution.par_r == pytest.approx(0.5, abs=1e-6)
        assert solution.cost == pytest.approx(mismatch**2, rel=1e-8)

    def test_object_toward_center_with_consistent_proper_motion(self, consts):
        params = Params(r_0=8.15, omega_0=28.0, a=14.0, **STILL_SUN)
        problem = InnerProblem.from_object(center_object(), params, consts)
        solution = solve_inner(problem)
        assert solution.par_r == pytest.approx(0.5, abs=1e-6)
        assert solution.cost == pytest.approx(0.0, abs=1e-10)

    def test_zero_noise_object_is_recovered(self, synthetic_objects, true_params, consts):
        for obj in synthetic_objects[:5]:
            problem = InnerProblem.from_object(obj, true_params, consts)
            solution = solve_inner(problem)
            assert solution.par_r == pytest.approx(obj.par, rel=1e-6)
            assert solution.cost == pytest.approx(0.0, abs=1e-8)

    def test_fallback_without_bracket(self):
        """A monotone cost has no bracket: J is evaluated at the observed parallax."""
        problem = StubProblem(lambda x: 3.0 * x, par=1.0, par_e=0.1)
        solution = solve_inner(problem)
        assert not solution.bracketed
        assert solution.par_r == 1.0
        assert solution.cost == pytest.approx(3.0)

    def test_lowest_of_several_minima_wins(self):
        problem = StubProblem(
            lambda x: ((x - 1.0) * (x - 2.0)) ** 2 + 0.01 * (x - 1.0), par=1.5, par_e=0.2
        )
        brackets = find_brackets(problem, 0.9, 2.1, 50)
        assert len(brackets) == 2
        solution = solve_inner(problem)
        assert solution.bracketed
        assert solution.par_r == pytest.approx(1.0, abs=0.01)

    def test_window_widens_until_a_bracket_appears(self):
        """The minimum at 1.8 lies outside 3 sigma but inside 6 sigma."""
        problem = StubProblem(lambda x: (x - 1.8) ** 2, par=1.0, par_e=0.2)
        solution = solve_inner(problem, FitConfig())
        assert solution.bracketed
        assert solution.par_r == pytest.approx(1.8, abs=1e-6)


class TestInnerProfile:
    def test_count_local_minima(self):
        assert count_local_minima(np.cos(np.linspace(0, 2 * np.pi, 1001))) == 1
        assert count_local_minima(np.sin(np.linspace(0, 4 * np.pi, 1001))) == 2
        assert count_local_minima([1.0, 2.0]) == 0

    def test_profile_window(self, consts):
        problem = InnerProblem.from_object(center_object(par=0.2, par_e=0.05), Params(), consts)
        grid, values = inner_profile(problem, 101)
        assert grid[0] == pytest.approx(np.finfo(float).eps)
        assert grid[-1] == pytest.approx(0.2 + 9 * 0.05)
        assert values.shape == (101,)
