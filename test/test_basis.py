# Copyright (C) 2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others
# SPDX-License-Identifier: MIT
import numpy as np
import pytest

import irsparse
from irsparse import basis as _basis
from irsparse import gauss
from irsparse import poly


@pytest.mark.parametrize("stat, lambda_", [('F', 10), ('F', 42), ('F', 10_000),
                                           ('B', 10), ('B', 10_000)])
def test_single_pole(sve_logistic, sve_reg_bose, stat, lambda_):
    """Compare G(iw) of a single pole at omega = pole to the IR expansion"""
    wmax = 1.0
    pole = 0.1 * wmax
    beta = lambda_ / wmax

    if stat == 'F':
        basis = irsparse.FiniteTempBasis(
                    stat, beta, wmax, sve_result=sve_logistic[lambda_])
        stat_shift, weight = 1, 1
    else:
        kernel = irsparse.RegularizedBoseKernel(lambda_)
        basis = irsparse.FiniteTempBasis(
                    stat, beta, wmax, kernel=kernel,
                    sve_result=sve_reg_bose[lambda_])
        stat_shift, weight = 0, 1 / pole

    gl = -basis.s * basis.v(pole) * weight

    matsu_test = np.array([-1, 0, 1, 1E+2, 1E+4, 1E+6, 1E+8, 1E+10, 1E+12],
                          dtype=np.int64)
    wn = 2 * matsu_test + stat_shift
    giw = gl @ basis.uhat(wn)
    giw_ref = 1 / (1j * np.pi / beta * wn - pole)

    magnitude = np.abs(giw_ref).max()
    diff = np.abs(giw - giw_ref)
    tol = max(100 * basis.accuracy, 1e-10)

    # Absolute error
    assert (diff / magnitude).max() < tol

    # Relative error, also in the asymptotic region
    assert (diff / np.abs(giw_ref)).max() < tol


def test_single_pole_tau(sve_logistic):
    beta, wmax, pole = 4.2, 10, 2.5
    basis = irsparse.FiniteTempBasis('F', beta, wmax,
                                     sve_result=sve_logistic[42])
    gl = -basis.s * basis.v(pole)

    tau = np.linspace(0, beta, 31)
    gtau = gl @ basis.u(tau)
    gtau_ref = -np.exp(-tau * pole) / (1 + np.exp(-beta * pole))
    np.testing.assert_allclose(gtau, gtau_ref, rtol=0,
                               atol=100 * basis.accuracy)


def test_physical_scaling(sve_logistic):
    beta, wmax = 4.2, 10
    basis = irsparse.FiniteTempBasis('F', beta, wmax,
                                     sve_result=sve_logistic[42])
    u, s, v = sve_logistic[42]

    x = np.linspace(-1, 1, 13)
    np.testing.assert_allclose(basis.u(beta / 2 * (x + 1)),
                               np.sqrt(2 / beta) * u(x), rtol=1e-13, atol=1e-13)
    np.testing.assert_allclose(basis.v(wmax * x), v(x) / np.sqrt(wmax),
                               rtol=1e-13, atol=1e-13)
    np.testing.assert_allclose(basis.s, np.sqrt(beta / 2 * wmax) * s)

    # Orthonormality on the physical interval
    rule = gauss.legendre(16).piecewise(basis.u.knots)
    uu = (basis.u(rule.x) * rule.w) @ basis.u(rule.x).T
    np.testing.assert_allclose(uu, np.eye(basis.size), atol=1e-10)

    # SVE result is shared, not rescaled in place
    np.testing.assert_array_equal(basis.sve_result.s, s)


def test_tau_points_shared():
    """Fermionic and bosonic basis share the same time sampling"""
    beta, wmax, eps = 2, 5, 1e-5
    basis_f = irsparse.FiniteTempBasis('F', beta, wmax, eps)
    basis_b = irsparse.FiniteTempBasis('B', beta, wmax, eps)
    tau_f = basis_f.default_tau_sampling_points()
    tau_b = basis_b.default_tau_sampling_points()
    np.testing.assert_array_equal(tau_f, tau_b)

    assert tau_f.size == basis_f.size
    assert (np.diff(tau_f) > 0).all()
    assert 0 < tau_f[0] and tau_f[-1] < beta
    np.testing.assert_allclose(tau_f, beta - tau_f[::-1], atol=1e-12)


@pytest.mark.parametrize("stat", ['F', 'B'])
@pytest.mark.parametrize("lambda_", [10, 42, 10_000])
def test_matsubara_points(sve_logistic, stat, lambda_):
    basis = irsparse.DimensionlessBasis(stat, lambda_,
                                        sve_result=sve_logistic[lambda_])
    zeta = {'F': 1, 'B': 0}[stat]

    wn = basis.default_matsubara_sampling_points()
    assert (wn % 2 == zeta).all()
    assert (np.diff(wn) > 0).all()
    np.testing.assert_array_equal(wn, -wn[::-1])
    assert wn.size >= basis.size

    wn = basis.default_matsubara_sampling_points(mitigate=False)
    wn_pos = basis.default_matsubara_sampling_points(positive_only=True,
                                                     mitigate=False)
    assert (wn_pos >= 0).all()
    np.testing.assert_array_equal(wn_pos, wn[wn >= 0])
    if stat == 'B':
        assert wn[wn.size // 2] == 0
        assert wn_pos[0] == 0


def test_matsubara_fence(sve_logistic):
    basis = irsparse.DimensionlessBasis('F', 10_000,
                                        sve_result=sve_logistic[10_000])
    plain = basis.default_matsubara_sampling_points(mitigate=False)
    fenced = basis.default_matsubara_sampling_points()
    assert plain.size >= _basis.FENCE_OUTER_SIZE
    assert fenced.size == plain.size + 4
    assert fenced[-1] > plain[-1]
    assert fenced[0] < plain[0]

    plain_pos = basis.default_matsubara_sampling_points(
                    positive_only=True, mitigate=False)
    fenced_pos = basis.default_matsubara_sampling_points(positive_only=True)
    assert fenced_pos.size > plain_pos.size
    assert fenced_pos[0] == plain_pos[0]
    assert fenced_pos[-1] >= plain_pos[-1]


def test_fence_thresholds():
    # The checks use the size of the running set of points
    wn = np.arange(-41, 42, 2)
    assert wn.size == 42
    fenced = _basis._fence_matsubara_sampling(wn, False, 20, 42, .025)
    np.testing.assert_array_equal(fenced, np.arange(-43, 44, 2))

    wn = np.arange(-37, 38, 2)
    fenced = _basis._fence_matsubara_sampling(wn, False, 20, 42, .025)
    np.testing.assert_array_equal(fenced, wn)

    wn = np.arange(1, 20, 2)
    fenced = _basis._fence_matsubara_sampling(wn, True, 20, 42, .025)
    np.testing.assert_array_equal(fenced, wn)

    wn = np.array([1, 101, 201, 301, 401, 501, 601, 701, 801, 901, 1001, 1101,
                   1201, 1301, 1401, 1501, 1601, 1701, 1801, 1901])
    fenced = _basis._fence_matsubara_sampling(wn, True, 20, 42, .025)
    np.testing.assert_array_equal(fenced, np.hstack([wn[:-1], 1805, 1901]))


def test_small_basis():
    basis = irsparse.FiniteTempBasis('F', 3, 0)
    assert basis.size == 1
    assert basis.lambda_ == 0
    np.testing.assert_allclose(basis.u(np.linspace(0, 3, 5)),
                               [np.full(5, 1 / np.sqrt(3))], rtol=1e-12)

    wn = basis.default_matsubara_sampling_points()
    assert wn.size >= 1 and (wn % 2 == 1).all()


@pytest.mark.parametrize("stat", ['F', 'B'])
def test_zero_cutoff_sampling(stat):
    basis = irsparse.FiniteTempBasis(stat, 1., 0.)
    assert basis.size == 1

    tau = basis.default_tau_sampling_points()
    np.testing.assert_allclose(tau, [.5], rtol=1e-14)

    smpl = irsparse.MatsubaraSampling(basis)
    wn = smpl.wn
    assert (np.diff(wn) > 0).all()
    assert (wn % 2 == (1 if stat == 'F' else 0)).all()
    if stat == 'B':
        np.testing.assert_array_equal(wn, [0])

    gl = np.array([.7])
    np.testing.assert_allclose(smpl.fit(smpl.evaluate(gl)), gl, rtol=1e-12)


def test_coarse_sve_result_warns(sve_logistic):
    result = sve_logistic[42]
    assert result.eps > 1e-12
    with pytest.warns(UserWarning, match="precomputed sve_result"):
        basis = irsparse.FiniteTempBasis('F', 4.2, 10, 1e-12,
                                         sve_result=result)
    assert basis.size == result.size


def test_sampling_points_without_extrema():
    # The last function is linear, so the midpoint is the only candidate
    data = np.array([[[1., 0.]], [[0., 1.]]])
    u = poly.PiecewiseLegendrePoly(data, [0, 3])
    np.testing.assert_allclose(_basis._default_sampling_points(u), [1.5])


def test_max_size(sve_logistic):
    result = sve_logistic[42]
    basis = irsparse.FiniteTempBasis('F', 4.2, 10, sve_result=result,
                                     max_size=5)
    assert basis.size == 5
    assert basis.accuracy == result.s[5] / result.s[0]

    full = irsparse.FiniteTempBasis('F', 4.2, 10, sve_result=result)
    assert full.size == result.size
    assert full.accuracy == result.s[-1] / result.s[0]
    np.testing.assert_allclose(full.significance[:5], basis.significance)

    coarse = irsparse.FiniteTempBasis('F', 4.2, 10, 1e-3, sve_result=result)
    assert coarse.size == (result.s >= 1e-3 * result.s[0]).sum()
    assert coarse.accuracy < 1e-3

    with pytest.warns(UserWarning, match="max_size"):
        more = irsparse.DimensionlessBasis('F', 42, sve_result=result,
                                           max_size=result.size + 10)
    assert more.size == result.size


def test_slicing(sve_logistic):
    basis = irsparse.FiniteTempBasis('F', 4.2, 10, sve_result=sve_logistic[42])
    part = basis[:5]
    assert isinstance(part, irsparse.FiniteTempBasis)
    assert part.size == 5
    assert part.beta == basis.beta and part.wmax == basis.wmax
    np.testing.assert_array_equal(part.s, basis.s[:5])
    np.testing.assert_array_equal(part.u(1.2), basis.u(1.2)[:5])

    with pytest.raises(ValueError):
        basis[::2]
    with pytest.raises(ValueError):
        basis[3]

    dim = irsparse.DimensionlessBasis('B', 42, sve_result=sve_logistic[42])
    assert dim[2:4].size == 2


def test_rescale(sve_logistic):
    basis = irsparse.FiniteTempBasis('F', 4.2, 10, sve_result=sve_logistic[42])
    other = basis.rescale(8.4)
    assert other.beta == 8.4
    assert other.wmax == pytest.approx(5)
    assert other.lambda_ == basis.lambda_
    assert other.sve_result is basis.sve_result
    np.testing.assert_allclose(other.s, basis.s)
    np.testing.assert_allclose(other.u(2 * np.array([.3, 1.7, 4.])),
                               basis.u([.3, 1.7, 4.]) / np.sqrt(2))


def test_dimensionless(sve_logistic):
    basis = irsparse.DimensionlessBasis('F', 42, sve_result=sve_logistic[42])
    assert basis.beta is None and basis.wmax is None
    assert basis.lambda_ == 42
    assert basis.statistics == 'F'
    assert basis.u.xmin == -1 and basis.u.xmax == 1
    assert basis.is_well_conditioned
    np.testing.assert_array_equal(basis.s, sve_logistic[42].s)

    # The Matsubara functions are transforms on the reduced interval
    uhat_2 = basis.uhat[2](3)
    phys = irsparse.FiniteTempBasis('F', 2, 21, sve_result=sve_logistic[42])
    np.testing.assert_allclose(phys.uhat[2](3), uhat_2)


def test_validation(sve_logistic):
    with pytest.raises(ValueError):
        irsparse.FiniteTempBasis('F', 0, 10)
    with pytest.raises(ValueError):
        irsparse.FiniteTempBasis('F', 1, -1)
    with pytest.raises(ValueError):
        irsparse.FiniteTempBasis('X', 4.2, 10, sve_result=sve_logistic[42])
    with pytest.raises(ValueError):
        irsparse.FiniteTempBasis('F', 4.2, 10,
                                 kernel=irsparse.RegularizedBoseKernel(42))
    with pytest.raises(ValueError):
        irsparse.FiniteTempBasis('F', 4.2, 10,
                                 kernel=irsparse.LogisticKernel(43))
    with pytest.raises(ValueError):
        irsparse.DimensionlessBasis('F', -1)


def test_repr(sve_logistic):
    basis = irsparse.FiniteTempBasis('B', 4.2, 10, sve_result=sve_logistic[42])
    assert repr(basis).startswith("FiniteTempBasis('B', 4.2, 10")
    assert "LogisticKernel(" in repr(basis)
