# Copyright (C) 2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others
# SPDX-License-Identifier: MIT
from warnings import warn
import numpy as np

from . import abstract
from . import kernel as _kernel
from . import poly
from . import sve

# Oversampling of the outermost Matsubara frequencies: points at a relative
# offset FENCE_OFFSET inside the outermost ones are added once the set has
# FENCE_MIN_SIZE points, and outside of them once it has FENCE_OUTER_SIZE.
FENCE_MIN_SIZE = 20
FENCE_OUTER_SIZE = 42
FENCE_OFFSET = 0.025

_FREQ = {'F': 'odd', 'B': 'even'}


class FiniteTempBasis(abstract.AbstractBasis):
    """IR basis in physical units, for fixed temperature and cutoff.

    Holds the truncated singular value expansion of the analytic
    continuation kernel, mapping real frequencies ``ω`` in ``[-wmax, wmax]``
    to imaginary times ``τ`` in ``[0, beta]``::

        K(τ, ω) ≈ sum(u[l](τ) * s[l] * v[l](ω) for l in range(L))

    The expansion is computed in the dimensionless variables ``x`` and
    ``y`` of the kernel, see `DimensionlessBasis`, and transferred to
    physical units by ``τ = beta/2 * (x + 1)`` and ``ω = wmax * y``.

    Arguments:

      - ``statistics``: ``'F'`` for fermions, ``'B'`` for bosons
      - ``beta``: inverse temperature (positive)
      - ``wmax``: frequency cutoff (non-negative)
      - ``eps``: relative cutoff for the singular values, see ``sve.compute``
      - ``max_size``: maximum number of basis functions
      - ``kernel``: kernel with ``lambda_ == beta * wmax``.  Defaults to
        ``LogisticKernel``.
      - ``sve_result``: reuse a precomputed ``SVEResult`` of the kernel, e.g.,
        for the fermionic and bosonic basis of the same cutoff.

    Example:
        Propagator of a single fermionic level at ``ω = 2.5`` at inverse
        temperature 10, in IR coefficients and at a few frequencies::

            import irsparse
            basis = irsparse.FiniteTempBasis('F', beta=10, wmax=4.2)
            gl = -basis.s * basis.v(2.5)
            giw = gl @ basis.uhat([1, 3, 5, 7])
    """
    def __init__(self, statistics, beta, wmax, eps=None, *,
                 max_size=None, kernel=None, sve_result=None):
        if not (beta > 0):
            raise ValueError("inverse temperature beta must be positive")
        if not (wmax >= 0):
            raise ValueError("frequency cutoff must be non-negative")

        self._kernel = _get_kernel(statistics, beta * wmax, kernel)
        full_result = _get_sve(self._kernel, eps, sve_result)
        sve_result = _truncate(full_result, eps, max_size)

        self._sve_result = sve_result
        self._statistics = statistics
        self._beta = beta
        self._wmax = wmax
        self._accuracy = _accuracy(full_result, sve_result)

        self._u, self._s, self._v = _rescale(
                    sve_result, beta, wmax, self._kernel.ypower)
        self._uhat = poly.PiecewiseLegendreFT(
                    self._u, _FREQ[statistics], _n_asymp(self._kernel))

    def __repr__(self):
        return (f"FiniteTempBasis({self._statistics!r}, {self._beta!r}, "
                f"{self._wmax!r}, kernel={self._kernel!r})")

    def __getitem__(self, index):
        return FiniteTempBasis(
                    self._statistics, self._beta, self._wmax,
                    kernel=self._kernel,
                    sve_result=self._sve_result[_check_slice(index)])

    @property
    def statistics(self): return self._statistics

    @property
    def beta(self): return self._beta

    @property
    def wmax(self): return self._wmax

    @property
    def lambda_(self): return self._kernel.lambda_

    @property
    def u(self) -> poly.PiecewiseLegendrePoly: return self._u

    @property
    def uhat(self) -> poly.PiecewiseLegendreFT: return self._uhat

    @property
    def s(self) -> np.ndarray:
        """Singular values in physical units"""
        return self._s

    @property
    def v(self) -> poly.PiecewiseLegendrePoly:
        """Basis functions of real frequency ``ω`` in ``[-wmax, wmax]``.

        Called as ``v(omega)``, gives all functions at once; ``v[l]`` selects
        a single function or a subset.
        """
        return self._v

    @property
    def accuracy(self):
        return self._accuracy

    @property
    def kernel(self):
        """Underlying kernel in dimensionless variables"""
        return self._kernel

    @property
    def sve_result(self):
        """Singular value expansion (in reduced variables) of the basis"""
        return self._sve_result

    def default_tau_sampling_points(self):
        return _default_sampling_points(self._u)

    def default_matsubara_sampling_points(self, *, positive_only=False,
                                          mitigate=True, **fence_args):
        return _default_matsubara_sampling_points(
                    self._uhat, positive_only=positive_only,
                    mitigate=mitigate, **fence_args)

    def default_omega_sampling_points(self):
        """Default sampling points on the real frequency axis"""
        return _default_sampling_points(self._v)

    def rescale(self, new_beta):
        """Same basis at inverse temperature ``new_beta``.

        ``lambda_ == beta * wmax`` is kept fixed, so ``wmax`` changes in
        inverse proportion.  Nothing is recomputed, as the expansion in
        dimensionless variables only depends on ``lambda_``.
        """
        new_wmax = self._kernel.lambda_ / new_beta
        return FiniteTempBasis(self._statistics, new_beta, new_wmax,
                               kernel=self._kernel,
                               sve_result=self._sve_result)


class DimensionlessBasis(abstract.AbstractBasis):
    """IR basis in dimensionless variables, for fixed ``lambda_``.

    For a continuation kernel ``K`` from real frequencies, ``y ∈ [-1, 1]``, to
    imaginary time, ``x ∈ [-1, 1]``, this class stores the truncated singular
    value expansion or IR basis::

        K(x, y) ≈ sum(u[l](x) * s[l] * v[l](y) for l in range(L))

    The functions on the Matsubara axis are obtained as::

        uhat[l](n) == ∫ dx exp(1j * pi * n * (x + 1)/2) u[l](x)

    This is the basis of `FiniteTempBasis` before the change of variables
    ``τ = β/2 * (x + 1)``, ``ω = wmax * y``, which is useful whenever the
    temperature is not yet fixed.
    """
    def __init__(self, statistics, lambda_, eps=None, *, max_size=None,
                 kernel=None, sve_result=None):
        if not (lambda_ >= 0):
            raise ValueError("kernel cutoff lambda must be non-negative")

        self._kernel = _get_kernel(statistics, lambda_, kernel)
        full_result = _get_sve(self._kernel, eps, sve_result)
        sve_result = _truncate(full_result, eps, max_size)

        self._sve_result = sve_result
        self._statistics = statistics
        self._lambda = lambda_
        self._accuracy = _accuracy(full_result, sve_result)

        self._u, self._s, self._v = sve_result
        self._uhat = poly.PiecewiseLegendreFT(
                    self._u, _FREQ[statistics], _n_asymp(self._kernel))

    def __repr__(self):
        return (f"DimensionlessBasis({self._statistics!r}, {self._lambda!r}, "
                f"kernel={self._kernel!r})")

    def __getitem__(self, index):
        return DimensionlessBasis(
                    self._statistics, self._lambda, kernel=self._kernel,
                    sve_result=self._sve_result[_check_slice(index)])

    @property
    def statistics(self): return self._statistics

    @property
    def lambda_(self): return self._lambda

    @property
    def beta(self): return None

    @property
    def wmax(self): return None

    @property
    def u(self) -> poly.PiecewiseLegendrePoly: return self._u

    @property
    def uhat(self) -> poly.PiecewiseLegendreFT: return self._uhat

    @property
    def s(self) -> np.ndarray: return self._s

    @property
    def v(self) -> poly.PiecewiseLegendrePoly: return self._v

    @property
    def accuracy(self):
        return self._accuracy

    @property
    def kernel(self): return self._kernel

    @property
    def sve_result(self): return self._sve_result

    def default_tau_sampling_points(self):
        return _default_sampling_points(self._u)

    def default_matsubara_sampling_points(self, *, positive_only=False,
                                          mitigate=True, **fence_args):
        return _default_matsubara_sampling_points(
                    self._uhat, positive_only=positive_only,
                    mitigate=mitigate, **fence_args)

    def default_omega_sampling_points(self):
        """Default sampling points on the reduced real frequency axis"""
        return _default_sampling_points(self._v)


def _rescale(sve_result, beta, wmax, ypower):
    """Basis functions and singular values in physical units.

    The polynomials are scaled to the new variables by transforming the
    knots according to: tau = beta/2 * (x + 1), w = wmax * y.  Scaling
    the data is not necessary as the normalization is inferred.  Returns
    new objects ``(u, s, v)``; the reduced ones are left untouched.
    """
    u, s, v = sve_result
    u_ = poly.PiecewiseLegendrePoly(
                u.data, beta/2 * (u.knots + 1), beta/2 * u.dx, u.symm)

    # For wmax == 0 the real frequency axis degenerates to a point, so we
    # keep the reduced variable there.
    if wmax == 0:
        return u_, np.sqrt(beta/2) * s, v

    v_ = poly.PiecewiseLegendrePoly(v.data, wmax * v.knots, wmax * v.dx, v.symm)

    # K(τ, ω) dω picks up the Jacobians of both variables, and kernels
    # with ypower carry an extra factor of ω in their definition.
    s_ =np.sqrt(beta/2 * wmax) * (wmax**(-ypower)) * s
    return u_, s_, v_


def _get_sve(kernel, eps, sve_result):
    if sve_result is None:
        return sve.compute(kernel, eps)
    if eps is not None and eps < sve_result.eps:
        warn(f"\nRequested accuracy eps={eps:.2g}, but the precomputed "
             f"sve_result is only accurate to {sve_result.eps:.2g}.\n"
             f"Basis functions beyond the latter are missing.\n",
             UserWarning, 3)
    return sve_result


def _truncate(sve_result, eps, max_size):
    if max_size is not None and max_size > sve_result.size:
        warn(f"Requested max_size={max_size} basis functions, but the SVE "
             f"only provides {sve_result.size}", UserWarning, 3)
    return sve_result.part(eps, max_size)


def _accuracy(full_result, sve_result):
    s = sve_result.s
    if full_result.size > s.size:
        return full_result.s[s.size] / s[0]
    return s[-1] / s[0]


def _n_asymp(kernel):
    # A cutoff of zero yields polynomials, for which the asymptotic model
    # carries no benefit.
    radius = kernel.conv_radius
    return radius if radius else None


def _default_sampling_points(u):
    """Sampling points from the extrema of the highest-order function"""
    last = u[-1]

    # Markov's inequality bounds the derivative, and with it the rounding
    # noise in its coefficients, by the magnitude of the function itself.
    deriv_scale = last.polyorder**2 * 2 / last.dx * last.bound()
    maxima = last.deriv().roots(scale=deriv_scale)
    if not maxima.size:
        return np.array([.5 * (last.xmin + last.xmax)])

    # The interval ends are extrema too, but sampling halfway towards them
    # gives a better conditioned matrix.
    left = .5 * (maxima[:1] + last.xmin)
    right = .5 * (maxima[-1:] + last.xmax)
    return np.concatenate([left, maxima, right])


def _default_matsubara_sampling_points(uhat, *, positive_only=False,
                                       mitigate=True,
                                       fence_min_size=FENCE_MIN_SIZE,
                                       fence_outer_size=FENCE_OUTER_SIZE,
                                       fence_offset=FENCE_OFFSET):
    # Sign changes of the highest-order function on the discrete frequency
    # grid, analogous to the extrema in imaginary time
    wn = uhat[-1].extrema(positive_only=positive_only)

    if mitigate:
        wn = _fence_matsubara_sampling(wn, positive_only, fence_min_size,
                                       fence_outer_size, fence_offset)

    # Bosonic sampling without n = 0 is badly conditioned
    if uhat.zeta == 0:
        wn = np.unique(np.hstack((0, wn)))
    return wn


def _fence_matsubara_sampling(wn, positive_only, min_size, outer_size,
                              offset):
    # Frequencies are restricted to a grid, so the condition number of
    # Matsubara sampling grows with the basis size, unlike in imaginary time.
    # Extra points next to the outermost frequencies keep it in check.
    if not wn.size:
        return wn
    wn_outer = wn[-1:] if positive_only else wn[[0, -1]]
    wn_diff = 2 * np.round(offset * wn_outer).astype(int)
    if wn.size >= min_size:
        wn = np.hstack([wn, wn_outer - wn_diff])
    if wn.size >= outer_size:
        wn = np.hstack([wn, wn_outer + wn_diff])
    return np.unique(wn)


def _get_kernel(statistics, lambda_, kernel):
    if statistics not in _FREQ:
        raise ValueError(f"statistics must be 'F' (fermions) or 'B' (bosons), "
                         f"not {statistics!r}")
    if kernel is None:
        return _kernel.LogisticKernel(lambda_)

    if statistics == 'F' and isinstance(kernel, _kernel.RegularizedBoseKernel):
        raise ValueError("RegularizedBoseKernel is only valid for bosons")
    kernel_lambda = getattr(kernel, 'lambda_', None)
    if kernel_lambda is not None and \
            not np.isclose(kernel_lambda, lambda_, atol=0, rtol=1e-12):
        raise ValueError(f"kernel has lambda = {kernel_lambda}, but the "
                         f"basis needs {lambda_}")
    return kernel


def _check_slice(index):
    if not isinstance(index, slice):
        raise ValueError("basis can only be sliced, e.g., basis[:n]")
    if index.step not in (None, 1):
        raise ValueError("basis slices must be contiguous")
    return index
