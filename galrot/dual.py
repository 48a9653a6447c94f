"""Forward-mode dual numbers for uncertainty propagation.

A ``Dual`` carries a value and its derivative with respect to one chosen
input. Arithmetic operators and the NumPy ufuncs used by ``galrot.coords``
are overloaded, so the coordinate functions can be evaluated with a single
input marked as the variable and the partial derivative read off the result:

    >>> mu_x = Dual.var(1.5)
    >>> mu_l_cos_b, mu_b = compute_mu(alpha, delta, mu_x, mu_y, consts)
    >>> mu_l_cos_b.deriv  # d(mu_l cos b) / d(mu_x)

The type is used only for error propagation; the cost functions work on
plain floats.
"""

import operator

import numpy as np


def _lift(x) -> "Dual":
    return x if isinstance(x, Dual) else Dual(x, 0.0)


class Dual:
    """A value paired with its first derivative."""

    __slots__ = ("value", "deriv")

    def __init__(self, value, deriv=0.0):
        self.value = float(value)
        self.deriv = float(deriv)

    @classmethod
    def var(cls, value) -> "Dual":
        """The independent variable (derivative 1)."""
        return cls(value, 1.0)

    @classmethod
    def cst(cls, value) -> "Dual":
        """A constant (derivative 0)."""
        return cls(value, 0.0)

    def __repr__(self) -> str:
        return f"Dual({self.value!r}, {self.deriv!r})"

    def __float__(self) -> float:
        return self.value

    # Arithmetic -----------------------------------------------------------

    def __add__(self, other):
        other = _lift(other)
        return Dual(self.value + other.value, self.deriv + other.deriv)

    __radd__ = __add__

    def __sub__(self, other):
        other = _lift(other)
        return Dual(self.value - other.value, self.deriv - other.deriv)

    def __rsub__(self, other):
        return _lift(other) - self

    def __mul__(self, other):
        other = _lift(other)
        return Dual(
            self.value * other.value,
            self.deriv * other.value + self.value * other.deriv,
        )

    __rmul__ = __mul__

    def __truediv__(self, other):
        other = _lift(other)
        return Dual(
            self.value / other.value,
            (self.deriv * other.value - self.value * other.deriv) / other.value**2,
        )

    def __rtruediv__(self, other):
        return _lift(other) / self

    def __pow__(self, other):
        if isinstance(other, Dual) and other.deriv == 0.0:
            other = other.value
        if isinstance(other, Dual):
            value = self.value**other.value
            deriv = value * (
                other.deriv * np.log(self.value) + other.value * self.deriv / self.value
            )
            return Dual(value, deriv)
        return Dual(self.value**other, other * self.value ** (other - 1) * self.deriv)

    def __rpow__(self, other):
        value = other**self.value
        return Dual(value, value * np.log(other) * self.deriv)

    def __neg__(self):
        return Dual(-self.value, -self.deriv)

    def __pos__(self):
        return self

    def __abs__(self):
        return self if self.value >= 0.0 else -self

    # Comparisons act on the value only -------------------------------------

    def __lt__(self, other):
        return self.value < _lift(other).value

    def __le__(self, other):
        return self.value <= _lift(other).value

    def __gt__(self, other):
        return self.value > _lift(other).value

    def __ge__(self, other):
        return self.value >= _lift(other).value

    # NumPy integration ------------------------------------------------------

    def __array_ufunc__(self, ufunc, method, *inputs, **kwargs):
        if method != "__call__" or kwargs:
            return NotImplemented
        if ufunc in _UNARY:
            (x,) = inputs
            x = _lift(x)
            f, df = _UNARY[ufunc]
            return Dual(f(x.value), df(x.value) * x.deriv)
        if ufunc in _BINARY:
            a, b = (_lift(x) for x in inputs)
            return _BINARY[ufunc](a, b)
        return NotImplemented


def _arctan2(y: Dual, x: Dual) -> Dual:
    denom = x.value**2 + y.value**2
    return Dual(
        np.arctan2(y.value, x.value),
        (x.value * y.deriv - y.value * x.deriv) / denom,
    )


def _hypot(a: Dual, b: Dual) -> Dual:
    value = np.hypot(a.value, b.value)
    return Dual(value, (a.value * a.deriv + b.value * b.deriv) / value)


_DEG = np.pi / 180.0

_UNARY = {
    np.sin: (np.sin, np.cos),
    np.cos: (np.cos, lambda x: -np.sin(x)),
    np.tan: (np.tan, lambda x: 1.0 / np.cos(x) ** 2),
    np.arcsin: (np.arcsin, lambda x: 1.0 / np.sqrt(1.0 - x * x)),
    np.arccos: (np.arccos, lambda x: -1.0 / np.sqrt(1.0 - x * x)),
    np.arctan: (np.arctan, lambda x: 1.0 / (1.0 + x * x)),
    np.sqrt: (np.sqrt, lambda x: 0.5 / np.sqrt(x)),
    np.exp: (np.exp, np.exp),
    np.log: (np.log, lambda x: 1.0 / x),
    np.square: (np.square, lambda x: 2.0 * x),
    np.absolute: (np.absolute, np.sign),
    np.negative: (np.negative, lambda x: -1.0),
    np.positive: (np.positive, lambda x: 1.0),
    np.deg2rad: (np.deg2rad, lambda x: _DEG),
    np.radians: (np.radians, lambda x: _DEG),
    np.rad2deg: (np.rad2deg, lambda x: 1.0 / _DEG),
    np.degrees: (np.degrees, lambda x: 1.0 / _DEG),
}

_BINARY = {
    np.add: operator.add,
    np.subtract: operator.sub,
    np.multiply: operator.mul,
    np.true_divide: operator.truediv,
    np.power: operator.pow,
    np.arctan2: _arctan2,
    np.hypot: _hypot,
}
