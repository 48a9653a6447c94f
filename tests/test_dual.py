"""Tests for the forward-mode dual numbers."""

import pytest
import numpy as np

from galrot.dual import Dual


class TestArithmetic:
    def test_product_rule(self):
        x = Dual.var(3.0)
        y = x * x + 2.0 * x
        assert y.value == pytest.approx(15.0)
        assert y.deriv == pytest.approx(8.0)

    def test_quotient_rule(self):
        x = Dual.var(2.0)
        y = 1.0 / x
        assert y.value == pytest.approx(0.5)
        assert y.deriv == pytest.approx(-0.25)

    def test_subtraction_from_constant(self):
        x = Dual.var(1.5)
        y = 4.0 - x
        assert y.value == pytest.approx(2.5)
        assert y.deriv == pytest.approx(-1.0)

    def test_power_with_float_exponent(self):
        x = Dual.var(4.0)
        y = x**0.5
        assert y.value == pytest.approx(2.0)
        assert y.deriv == pytest.approx(0.25)

    def test_power_of_negative_base_with_constant_dual_exponent(self):
        """A constant Dual exponent behaves as a plain number."""
        x = Dual.var(-2.0)
        y = x ** Dual.cst(2.0)
        assert y.value == pytest.approx(4.0)
        assert y.deriv == pytest.approx(-4.0)

    def test_constant_has_zero_derivative(self):
        c = Dual.cst(7.0)
        assert (c * 3.0).deriv == 0.0

    def test_comparisons_use_value(self):
        assert Dual(1.0, 100.0) < 2.0
        assert Dual(3.0, -1.0) >= Dual(3.0, 5.0)
        assert not Dual(0.0, 1.0) > 0.0


class TestUfuncs:
    @pytest.mark.parametrize(
        "func, deriv",
        [
            (np.sin, np.cos),
            (np.cos, lambda x: -np.sin(x)),
            (np.exp, np.exp),
            (np.log, lambda x: 1.0 / x),
            (np.sqrt, lambda x: 0.5 / np.sqrt(x)),
            (np.arctan, lambda x: 1.0 / (1.0 + x * x)),
        ],
    )
    def test_unary_derivatives(self, func, deriv):
        x0 = 0.7
        y = func(Dual.var(x0))
        assert isinstance(y, Dual)
        assert y.value == pytest.approx(func(x0))
        assert y.deriv == pytest.approx(deriv(x0))

    def test_arcsin_matches_finite_difference(self):
        x0, h = 0.3, 1e-6
        y = np.arcsin(Dual.var(x0))
        fd = (np.arcsin(x0 + h) - np.arcsin(x0 - h)) / (2 * h)
        assert y.deriv == pytest.approx(fd, rel=1e-6)

    def test_arctan2_derivative_in_both_arguments(self):
        y0, x0 = 0.4, -1.2
        dy = np.arctan2(Dual.var(y0), x0)
        dx = np.arctan2(y0, Dual.var(x0))
        r2 = x0**2 + y0**2
        assert dy.value == pytest.approx(np.arctan2(y0, x0))
        assert dy.deriv == pytest.approx(x0 / r2)
        assert dx.deriv == pytest.approx(-y0 / r2)

    def test_numpy_scalar_on_the_left(self):
        y = np.float64(2.0) * Dual.var(3.0)
        assert isinstance(y, Dual)
        assert y.deriv == pytest.approx(2.0)

    def test_chain_through_composite_expression(self):
        """d/dx sin(x)^2 + cos(x)^2 == 0."""
        x = Dual.var(1.1)
        y = np.sin(x) ** 2 + np.cos(x) ** 2
        assert y.value == pytest.approx(1.0)
        assert y.deriv == pytest.approx(0.0, abs=1e-12)
