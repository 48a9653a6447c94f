"""Tests for coordinate conversions and elementary kinematics."""

import pytest
import numpy as np

from galrot.coords import (
    compute_mu,
    compute_r_g,
    compute_theta,
    compute_u_v_w,
    compute_v_l_v_b,
    compute_v_r,
    dms2rad,
    hms2rad,
    parse_dms,
    parse_hms,
    to_cartesian,
    to_spherical,
)
from galrot.dual import Dual


class TestSexagesimal:
    def test_hms(self):
        assert hms2rad(6.0, 0.0, 0.0) == pytest.approx(np.pi / 2)
        assert parse_hms("12:00:00") == pytest.approx(np.pi)

    def test_dms_sign(self):
        assert parse_dms("-30:00:00") == pytest.approx(-np.pi / 6)
        assert parse_dms("+30:00:00") == pytest.approx(np.pi / 6)

    def test_negative_zero_degrees_keeps_sign(self):
        """'-00:30:00' is half a degree south, not north."""
        assert parse_dms("-00:30:00") == pytest.approx(-np.radians(0.5))
        assert dms2rad(0.0, 30.0, 0.0, negative=True) < 0

    @pytest.mark.parametrize("text", ["12:00", "aa:bb:cc", ""])
    def test_malformed_raises(self, text):
        with pytest.raises(ValueError):
            parse_hms(text)


class TestToSpherical:
    def test_galactic_center(self, consts):
        """Sgr A* lies at l ~ 359.944 deg, b ~ -0.046 deg."""
        l, b = to_spherical(parse_hms("17:45:40.04"), parse_dms("-29:00:28.1"), consts)
        assert np.degrees(l) == pytest.approx(359.944, abs=0.01)
        assert np.degrees(b) == pytest.approx(-0.046, abs=0.01)

    def test_longitude_range(self, consts):
        for alpha in np.linspace(0.0, 2 * np.pi, 13, endpoint=False):
            l, _ = to_spherical(alpha, 0.3, consts)
            assert 0.0 <= l < 2 * np.pi

    def test_to_cartesian_norm(self):
        x, y, z = to_cartesian(0.7, -0.2, 3.0)
        assert np.sqrt(x**2 + y**2 + z**2) == pytest.approx(3.0)


class TestDistancesAndVelocities:
    def test_r_g_toward_center(self):
        assert compute_r_g(0.0, 0.0, 2.0, 8.15) == pytest.approx(6.15)

    def test_r_g_toward_anticenter(self):
        assert compute_r_g(np.pi, 0.0, 2.0, 8.15) == pytest.approx(10.15)

    def test_v_r_removes_standard_solar_motion(self, consts):
        """Toward l = 0, b = 0 only U_sun projects onto the line of sight."""
        assert compute_v_r(0.0, 0.0, 0.0, consts) == pytest.approx(-consts.u_sun_standard)

    def test_uvw_in_the_plane_toward_center(self):
        u, v, w = compute_u_v_w(0.0, 0.0, 5.0, 7.0, -2.0)
        assert (u, v, w) == pytest.approx((5.0, 7.0, -2.0))

    def test_v_l_v_b_scale_with_distance(self):
        v_l, v_b = compute_v_l_v_b(2.0, 1.0, -0.5, 4.7406)
        assert v_l == pytest.approx(9.4812)
        assert v_b == pytest.approx(-4.7406)

    def test_theta_of_object_at_rest_in_rotating_frame(self):
        """An object moving with the Sun's circular velocity toward l = 0."""
        theta = compute_theta(0.0, 0.0, 2.0, 6.15, 0.0, 0.0, 0.0, 240.0, 8.15)
        assert theta == pytest.approx(240.0)


class TestProperMotions:
    def test_zero_motion(self, consts):
        mu_l, mu_b = compute_mu(1.0, 0.4, 0.0, 0.0, consts)
        assert mu_l == pytest.approx(0.0, abs=1e-9)
        assert mu_b == pytest.approx(0.0, abs=1e-9)

    def test_total_motion_is_preserved(self, consts):
        """The rotation between frames keeps the length of the motion vector."""
        mu_l, mu_b = compute_mu(2.1, -0.5, 3.0, -4.0, consts)
        assert np.hypot(mu_l, mu_b) == pytest.approx(5.0, rel=1e-5)

    def test_dual_derivative_matches_linear_response(self, consts):
        alpha, delta = 4.0, 0.8
        mu_l, mu_b = compute_mu(alpha, delta, Dual.var(0.0), 0.0, consts)
        mu_l_1, mu_b_1 = compute_mu(alpha, delta, 1.0, 0.0, consts)
        assert mu_l.deriv == pytest.approx(mu_l_1, rel=1e-5)
        assert mu_b.deriv == pytest.approx(mu_b_1, rel=1e-5)
