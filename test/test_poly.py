# Copyright (C) 2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others
# SPDX-License-Identifier: MIT
import numpy as np
from scipy.integrate import quad
import pytest

import irsparse
from irsparse import gauss
from irsparse import poly
from irsparse import _roots


def test_shape(sve_logistic):
    u, s, v = sve_logistic[42].part()
    l = s.size
    assert u.shape == (l,)

    assert u[3].shape == ()
    assert u[2:5].shape == (3,)


def test_slice(sve_logistic):
    sve_result = sve_logistic[42]

    basis = irsparse.FiniteTempBasis('F', 4.2, 10, sve_result=sve_result)
    assert basis[:4].size == 4


@pytest.mark.parametrize("fn", ["u", "v"])
def test_broadcast_uv(sve_logistic, fn):
    sve_result = sve_logistic[42]
    basis = irsparse.FiniteTempBasis('F', 4.2, 10, sve_result=sve_result)

    f = getattr(basis, fn)
    assert_eq = np.testing.assert_array_equal

    l = [1, 2, 4]
    x = [0.5, 0.3, 1.0, 2.0]

    # Broadcast over x
    assert_eq(f[1](x), [f[1](xi) for xi in x])

    # Broadcast over l
    assert_eq(f[l](x[0]), [f[li](x[0]) for li in l])

    # Broadcast over both l, x
    assert_eq(f[l](x), np.reshape([f[li](xi) for li in l for xi in x], (3, 4)))

    # Tensorial
    assert_eq(f[l](np.reshape(x, (2, 2))), f[l](x).reshape(3, 2, 2))


def test_broadcast_uhat(sve_logistic):
    sve_result = sve_logistic[42]
    basis = irsparse.FiniteTempBasis('B', 4.2, 10, sve_result=sve_result)

    f = basis.uhat
    def assert_eq(x, y): np.testing.assert_allclose(x, y, rtol=1e-13, atol=1e-15)

    l = [1, 2, 4]
    x = [-2, 8, 4, 6]

    # Broadcast over x
    assert_eq(f[1](x), [f[1](xi) for xi in x])

    # Broadcast over l
    assert_eq(f[l](x[0]), [f[li](x[0]) for li in l])

    # Broadcast over both l, x
    assert_eq(f[l](x), np.reshape([f[li](xi) for li in l for xi in x], (3, 4)))

    # Tensorial
    assert_eq(f[l](np.reshape(x, (2, 2))), f[l](x).reshape(3, 2, 2))


def test_violate(sve_logistic):
    u, s, v = sve_logistic[42].part()

    with pytest.raises(ValueError):
        u(1.5)
    with pytest.raises(ValueError):
        v(-3.0)


def test_eval(sve_logistic):
    u, s, v = sve_logistic[42].part()
    l = s.size

    np.testing.assert_array_equal(
            u(0.4), [u[i](0.4) for i in range(l)])
    np.testing.assert_array_equal(
            u([0.4, -0.2]),
            [[u[i](x) for x in (0.4, -0.2)] for i in range(l)])


def test_immutable(sve_logistic):
    u, s, v = sve_logistic[42]
    with pytest.raises(ValueError):
        u.data[0, 0, 0] = 1
    with pytest.raises(ValueError):
        u.knots[0] = -2


def test_invalid_construction():
    with pytest.raises(ValueError):
        poly.PiecewiseLegendrePoly(np.ones((2, 2)), [0, 1, 1])
    with pytest.raises(ValueError):
        poly.PiecewiseLegendrePoly(np.ones((2, 2)), [0, 1])
    with pytest.raises(ValueError):
        poly.PiecewiseLegendrePoly([[np.nan]], [0, 1])


def test_legendre_p2():
    # P_2(x) == (3 x^2 - 1)/2 on a single segment [-1, 1]
    p = poly.PiecewiseLegendrePoly([[0], [0], [1]], [-1, 1])
    x = np.linspace(-1, 1, 9)
    np.testing.assert_allclose(p(x), 1.5 * x**2 - .5, atol=1e-15)
    np.testing.assert_allclose(p.roots(), [-1/np.sqrt(3), 1/np.sqrt(3)],
                               atol=1e-14)

    dp = p.deriv()
    np.testing.assert_allclose(dp(x), 3 * x, atol=1e-14)
    np.testing.assert_allclose(dp.roots(), [0], atol=1e-14)
    np.testing.assert_allclose(p.deriv(2)(x), 3, atol=1e-13)


def test_roots_across_knots():
    # f(x) == x - 0.5 on the segments [0, 0.5] and [0.5, 2]: the root sits
    # on the knot and must be reported once
    knots = np.array([0, .5, 2])
    mid = .5 * (knots[1:] + knots[:-1])
    half = .5 * (knots[1:] - knots[:-1])
    data = np.array([mid - .5, half]) * np.sqrt(half)
    p = poly.PiecewiseLegendrePoly(data, knots)
    np.testing.assert_allclose(p(knots), knots - .5, atol=1e-15)
    np.testing.assert_allclose(p.roots(), [.5], atol=1e-12)


def test_roots_of_noise():
    # Constant on three segments, with rounding noise in the higher orders
    knots = np.array([0, .1, .5, 1])
    data = np.zeros((8, 3))
    data[0] = np.sqrt(np.diff(knots) / 2)
    data[1:] = 1e-17 * np.cos(np.arange(21)).reshape(7, 3)
    p = poly.PiecewiseLegendrePoly(data, knots, symm=1)
    np.testing.assert_allclose(p(knots), 1, rtol=1e-15)
    assert p.bound() >= 1
    assert p.roots().size == 0

    dp = p.deriv()
    scale = 2 / p.dx * p.bound()
    assert dp.roots(scale=scale).size == 0


def test_matrix_hat(sve_logistic):
    u, s, v = sve_logistic[42].part()
    uhat = poly.PiecewiseLegendreFT(u, "odd")

    n = np.array([1, 3, 5, -1, -3, 5])
    result = uhat(n.reshape(3, 2))
    result_iter = uhat(n).reshape(-1, 3, 2)
    assert result.shape == result_iter.shape
    np.testing.assert_array_equal(result, result_iter)


def test_eval_unique(sve_logistic):
    u, s, v = sve_logistic[42].part()
    uhat = poly.PiecewiseLegendreFT(u, "odd")

    res1 = uhat(np.array([1, 3, 3, 1]))
    idx = np.array([0, 1, 1, 0])
    res2 = uhat(np.array([1, 3]))[:, idx]
    np.testing.assert_array_equal(res1, res2)


@pytest.mark.parametrize("n_asymp", [None, 1])
def test_ft_constant(n_asymp):
    # p(x) == 1 on [0, beta] transforms to 2j*beta/(pi*n) for odd n
    beta = 3.
    knots = np.array([0, 1, beta])
    data = np.sqrt(.5 * np.diff(knots))[None, :]
    p = poly.PiecewiseLegendrePoly(data, knots)
    phat = poly.PiecewiseLegendreFT(p, "odd", n_asymp)

    n = np.array([-7, -1, 1, 3, 101, 1001])
    np.testing.assert_allclose(phat(n), 2j * beta / (np.pi * n), rtol=1e-10)


def test_ft_quadrature(sve_logistic):
    u, s, v = sve_logistic[42]
    uhat = poly.PiecewiseLegendreFT(u[5], "odd")
    for n in [-5, 1, 3, 11]:
        phase = lambda x: np.exp(1j * np.pi * n * (x + 1) / 2)
        re = quad(lambda x: (u[5](x) * phase(x)).real, -1, 1,
                  points=u.knots[1:-1], limit=500, epsabs=1e-13)[0]
        im = quad(lambda x: (u[5](x) * phase(x)).imag, -1, 1,
                  points=u.knots[1:-1], limit=500, epsabs=1e-13)[0]
        np.testing.assert_allclose(uhat(n), re + 1j * im, rtol=0, atol=1e-10)


def test_ft_asymptotic_matches(sve_logistic):
    u, s, v = sve_logistic[42]
    exact = poly.PiecewiseLegendreFT(u, "odd")
    model = poly.PiecewiseLegendreFT(u, "odd", n_asymp=1)
    n = np.array([2001, -4001, 10001, 100_001])
    ref = exact(n)
    np.testing.assert_allclose(model(n), ref, rtol=0,
                               atol=1e-5 * np.abs(ref).max())


def test_ft_invalid(sve_logistic):
    u, s, v = sve_logistic[42]
    with pytest.raises(ValueError):
        poly.PiecewiseLegendreFT(u, "fermionic")

    uhat = poly.PiecewiseLegendreFT(u, "odd")
    with pytest.raises(ValueError):
        uhat(2)
    with pytest.raises(ValueError):
        uhat(1.5)


def test_extrema(sve_logistic):
    u, s, v = sve_logistic[42]
    uhat = poly.PiecewiseLegendreFT(u, "odd", 40 * 42)
    wn = uhat[6].extrema()
    assert (wn % 2 == 1).all()
    np.testing.assert_array_equal(wn, -wn[::-1])

    wn_pos = uhat[6].extrema(positive_only=True)
    np.testing.assert_array_equal(wn_pos, wn[wn > 0])

    with pytest.raises(ValueError):
        uhat.extrema()
    with pytest.raises(ValueError):
        uhat[6].extrema(part='both')


def test_discrete_extrema_noise():
    # Past m == 0, the function is rounding noise with a wiggling sign
    def f(m): return np.where(m == 0, 1., 1e-17 * np.cos(m))

    np.testing.assert_array_equal(
        _roots.discrete_extrema(f, np.arange(50)), [0])


def test_discrete_extrema_sparse_grid():
    grid = np.unique(np.geomspace(1, 10_000, 80).astype(int))
    found = _roots.discrete_extrema(lambda m: np.cos(m / 7) / m, grid)
    assert found.size > 5
    assert (found[1:] > found[:-1]).all()
    assert np.isin(found, np.arange(1, 10_001)).all()


@pytest.mark.parametrize("lambda_, atol", [(42, 1e-13), (1E+4, 1e-11)])
def test_overlap(sve_logistic, lambda_, atol):
    u, s, v = sve_logistic[lambda_].part()

    # Keep only even number of polynomials
    u, s, v = u[:2*(s.size//2)], s[:2*(s.size//2)], v[:2*(s.size//2)]

    np.testing.assert_allclose(u[0].overlap(u[0]), 1, rtol=0, atol=atol)

    ref = (np.arange(s.size) == 0).astype(float)
    np.testing.assert_allclose(u.overlap(u[0]), ref, rtol=0, atol=atol)


def test_overlap_break_points(sve_logistic):
    u, s, v = sve_logistic[42].part()

    D = 0.5 * v.xmax
    rhow = lambda omega: np.where(abs(omega) <= D, 1, 0)
    rhol = v.overlap(rhow, points=[-D, D])

    edges = np.unique(np.clip(np.hstack([v.knots, -D, D]), -D, D))
    rule = gauss.legendre(16).piecewise(edges)
    rhol_ref = v(rule.x) @ rule.w

    np.testing.assert_allclose(rhol, rhol_ref, rtol=0,
                               atol=1e-12 * np.abs(rhol_ref).max())
