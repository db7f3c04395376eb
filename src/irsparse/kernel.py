# Copyright (C) 2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others
# SPDX-License-Identifier: MIT
import numpy as np


class KernelBase:
    """Real, smooth kernel ``K(x, y)`` of a first-kind integral equation::

        u(x) == ∫ dy K(x, y) v(y)

    on the rectangle ``[xmin, xmax] x [ymin, ymax]``.  Square integrability
    makes the singular value expansion exist, and smoothness makes the
    singular values fall off exponentially.

    A kernel is an immutable value, fixed by its type and ``lambda_``.
    """
    def __call__(self, x, y, x_plus=None, x_minus=None):
        """Value of ``K(x, y)``, broadcast over array arguments.

        Near the ends of the interval, ``x - xmin`` and ``xmax - x`` suffer
        from cancellation.  Callers that know these distances more accurately
        pass them as ``x_plus`` and ``x_minus``.
        """
        raise NotImplementedError()

    def sve_hints(self, eps):
        """Discretization hints for the SVE routines, see ``SVEHintsBase``"""
        raise NotImplementedError()

    @property
    def xrange(self):
        """Domain ``(xmin, xmax)`` of the first argument"""
        return -1, 1

    @property
    def yrange(self):
        """Domain ``(ymin, ymax)`` of the second argument"""
        return -1, 1

    @property
    def is_centrosymmetric(self):
        """Whether ``K(x, y) == K(-x, -y)`` holds everywhere.

        The SVE of such kernels splits into an even and an odd block of a
        quarter of the size each, see ``sve.CentrosymmSVE``.
        """
        return False

    def get_symmetrized(self, sign):
        """Reduced kernel ``K(x, y) + sign * K(x, -y)`` on the positive half"""
        return ReducedKernel(self, sign)

    @property
    def ypower(self):
        """Power of ``y`` multiplied into the kernel by its definition"""
        return 0

    @property
    def conv_radius(self):
        """Frequency beyond which the Matsubara transforms are asymptotic.

        For ``abs(n) > conv_radius``, the basis functions on the Matsubara
        axis are evaluated from an asymptotic expansion, which has better
        relative accuracy there.  ``None`` disables the asymptotics.
        """
        return None


class SVEHintsBase:
    """Starting point for discretizing the SVE of a kernel to accuracy eps"""
    @property
    def segments_x(self):
        """Initial panel edges on the ``x`` axis.

        Should reflect the approximate position of roots of a high-order
        singular function in ``x``.
        """
        raise NotImplementedError()

    @property
    def segments_y(self):
        """Initial panel edges on the ``y`` axis"""
        raise NotImplementedError()

    @property
    def ngauss(self):
        """Number of Gauss-Legendre nodes per panel"""
        raise NotImplementedError()

    @property
    def nsvals(self):
        """Upper bound for number of singular values above the threshold"""
        raise NotImplementedError()

    @property
    def noise_floor(self):
        """Relative size of rounding errors in computed kernel values.

        Panels are never refined beyond this level, as the Legendre
        coefficients of the kernel values stop decaying there.
        """
        return 0


class LogisticKernel(KernelBase):
    """Fermionic/bosonic analytical continuation kernel.

    In dimensionless variables ``x = 2*τ/β - 1``, ``y = β*ω/Λ``, the kernel
    is a function on ``[-1, 1] x [-1, 1]``::

        K(x, y) == exp(-Λ * y * (x + 1)/2) / (1 + exp(-Λ*y))

    It is the continuation kernel for fermions, and can be used for bosons
    by absorbing the factor ``tanh(Λy/2)`` into the spectral function.
    """
    def __init__(self, lambda_):
        if not (lambda_ >= 0):
            raise ValueError("kernel cutoff lambda must be non-negative")
        self.lambda_ = lambda_

    def __repr__(self):
        return f"LogisticKernel({self.lambda_!r})"

    def __call__(self, x, y, x_plus=None, x_minus=None):
        x, y = _check_domain(self, x, y)
        u_plus, u_minus, v = _compute_uv(self.lambda_, x, y, x_plus, x_minus)
        return self._compute(u_plus, u_minus, v)

    def _compute(self, u_plus, u_minus, v):
        # With u_± = (1 ± x)/2 and v = Λy, the kernel is both
        #
        #    exp(-u_+ * v) / (1 + exp(-v))  ==  exp(u_- * v) / (1 + exp(v))
        #
        # and only the first (second) form is free of overflow for v >= 0
        # (v < 0).
        abs_v = np.abs(v)
        u = np.where(v >= 0, u_plus, u_minus)
        return np.exp(-abs_v * u) / (1 + np.exp(-abs_v))

    def sve_hints(self, eps):
        return _SVEHintsLogistic(self, eps)

    @property
    def is_centrosymmetric(self):
        return True

    def get_symmetrized(self, sign):
        if sign == -1:
            return _LogisticKernelOdd(self, sign)
        return super().get_symmetrized(sign)

    @property
    def conv_radius(self): return 40 * self.lambda_


class _SVEHintsLogistic(SVEHintsBase):
    def __init__(self, kernel, eps):
        self.kernel = kernel
        self.eps = eps

    @property
    def ngauss(self): return 10 if self.eps >= 1e-8 else 16

    @property
    def segments_x(self):
        nzeros = max(int(np.round(15 * _log10(self.kernel.lambda_))), 1)
        diffs = 1. / np.cosh(.143 * np.arange(nzeros))
        return _mirror_positive(diffs.cumsum())

    @property
    def segments_y(self):
        # Spacing of the zeros close to y = ±1, which decay differently
        leading_diffs = np.array([
            0.01523, 0.03314, 0.04848, 0.05987, 0.06703, 0.07028, 0.07030,
            0.06791, 0.06391, 0.05896, 0.05358, 0.04814, 0.04288, 0.03795,
            0.03342, 0.02932, 0.02565, 0.02239, 0.01951, 0.01699])

        nzeros = max(int(np.round(20 * _log10(self.kernel.lambda_))), 2)
        diffs = .25 / np.exp(.141 * np.arange(nzeros))
        nleading = min(nzeros, leading_diffs.size)
        diffs[:nleading] = leading_diffs[:nleading]
        return _clustered_at_ends(diffs)

    @property
    def nsvals(self):
        log10_lambda = max(1, _log10(self.kernel.lambda_))
        return int(np.round((25 + log10_lambda) * log10_lambda))

    @property
    def noise_floor(self): return _exponent_noise(self.kernel.lambda_)


class RegularizedBoseKernel(KernelBase):
    """Regularized bosonic analytical continuation kernel.

    In dimensionless variables ``x = 2*τ/β - 1``, ``y = β*ω/Λ``, the kernel
    is a function on ``[-1, 1] x [-1, 1]``::

        K(x, y) == y * exp(-Λ * y * (x + 1)/2) / (1 - exp(-Λ*y))

    The factor ``y`` removes the pole of the Bose function at ``y == 0``,
    where the kernel continues to ``K(x, 0) == 1/Λ``.  The spectral function
    must be divided by ``y`` accordingly, which is why the singular values
    scale with an extra power of the frequency (``ypower == 1``).
    """
    def __init__(self, lambda_):
        if not (lambda_ > 0):
            raise ValueError("kernel cutoff lambda must be positive")
        self.lambda_ = lambda_

    def __repr__(self):
        return f"RegularizedBoseKernel({self.lambda_!r})"

    def __call__(self, x, y, x_plus=None, x_minus=None):
        x, y = _check_domain(self, x, y)
        u_plus, u_minus, v = _compute_uv(self.lambda_, x, y, x_plus, x_minus)
        return self._compute(u_plus, u_minus, v)

    def _compute(self, u_plus, u_minus, v):
        # In terms of u_± and v, we have:
        #
        #     K == 1/Λ * exp(-u_+ * v) * v / (1 - exp(-v))
        #       == 1/Λ * exp(-u_- * -v) * (-v) / (1 - exp(v))
        #
        # where again the first (second) form is used for v >= 0 (v < 0).
        # The ratio |v| / (1 - exp(-|v|)) tends to one for v -> 0, and
        # expm1 keeps full precision in the denominator there.
        abs_v = np.abs(v)
        u = np.where(v >= 0, u_plus, u_minus)
        not_tiny = abs_v >= 1e-200
        ratio = np.ones_like(abs_v)
        np.divide(abs_v, -np.expm1(-abs_v), out=ratio, where=not_tiny)
        return np.exp(-abs_v * u) * ratio / abs_v.dtype.type(self.lambda_)

    def sve_hints(self, eps):
        return _SVEHintsRegularizedBose(self, eps)

    @property
    def is_centrosymmetric(self):
        return True

    def get_symmetrized(self, sign):
        if sign == -1:
            return _RegularizedBoseKernelOdd(self, sign)
        return super().get_symmetrized(sign)

    @property
    def ypower(self): return 1

    @property
    def conv_radius(self): return 40 * self.lambda_


class _SVEHintsRegularizedBose(SVEHintsBase):
    def __init__(self, kernel, eps):
        self.kernel = kernel
        self.eps = eps

    @property
    def ngauss(self): return 10 if self.eps >= 1e-8 else 16

    @property
    def segments_x(self):
        nzeros = max(int(np.round(15 * _log10(self.kernel.lambda_))), 15)
        diffs = 1. / np.cosh(.18 * np.arange(nzeros))
        return _mirror_positive(diffs.cumsum())

    @property
    def segments_y(self):
        nzeros = max(int(np.round(20 * _log10(self.kernel.lambda_))), 20)
        i = np.arange(nzeros)
        diffs = .12 / np.exp(.0337 * i * np.log(i + 1))
        return _clustered_at_ends(diffs)

    @property
    def nsvals(self):
        log10_lambda = max(1, _log10(self.kernel.lambda_))
        return int(28 * log10_lambda)

    @property
    def noise_floor(self): return _exponent_noise(self.kernel.lambda_)


class ReducedKernel(KernelBase):
    """Even or odd part of a centrosymmetric kernel on the positive half.

    If ``K(x, y) == K(-x, -y)``, singular functions come in even and odd
    ones.  Their restrictions to ``x, y >= 0`` are the singular functions
    of::

        K(x, y) + sign * K(x, -y)

    on ``[0, 1] x [0, 1]``, with ``sign = 1`` for the even and ``sign = -1``
    for the odd ones.  Continuing them with the parity to the negative half
    yields the singular functions of ``K``.
    """
    def __init__(self, inner, sign=1):
        if not inner.is_centrosymmetric:
            raise ValueError("inner kernel must be centrosymmetric")
        if sign not in (1, -1):
            raise ValueError("sign must square to one")
        self.inner = inner
        self.sign = sign

    def __call__(self, x, y, x_plus=None, x_minus=None):
        x, y = _check_domain(self, x, y)

        # The inner kernel measures x_plus from -1 rather than from 0.
        if x_plus is not None:
            x_plus = 1 + x_plus

        k_plus = self.inner(x, y, x_plus, x_minus)
        k_minus = self.inner(x, -y, x_plus, x_minus)
        if self.sign == 1:
            return k_plus + k_minus
        return k_plus - k_minus

    @property
    def xrange(self):
        return 0, self.inner.xrange[1]

    @property
    def yrange(self):
        return 0, self.inner.yrange[1]

    def sve_hints(self, eps):
        return _SVEHintsReduced(self.inner.sve_hints(eps))

    def get_symmetrized(self, sign):
        raise RuntimeError("cannot symmetrize twice")

    @property
    def ypower(self): return self.inner.ypower

    @property
    def conv_radius(self): return self.inner.conv_radius


class _SVEHintsReduced(SVEHintsBase):
    def __init__(self, inner_hints):
        self.inner_hints = inner_hints

    @property
    def ngauss(self): return self.inner_hints.ngauss

    @property
    def segments_x(self): return _positive_half(self.inner_hints.segments_x)

    @property
    def segments_y(self): return _positive_half(self.inner_hints.segments_y)

    @property
    def nsvals(self): return (self.inner_hints.nsvals + 1) // 2

    @property
    def noise_floor(self): return self.inner_hints.noise_floor


class _LogisticKernelOdd(ReducedKernel):
    """Odd part of the logistic kernel on ``[0, 1] x [0, 1]``::

        K(x, y) == -sinh(Λ/2 * x * y) / cosh(Λ/2 * y)
    """
    def __call__(self, x, y, x_plus=None, x_minus=None):
        result = np.asarray(super().__call__(x, y, x_plus, x_minus))

        # Forming the difference cancels digits for small x * y, where we
        # use the closed form instead.
        v_half = self.inner.lambda_ / 2 * np.asarray(y)
        xv_half = x * v_half
        xy_small = xv_half < 1
        cosh_finite = v_half < 85
        numer = _masked(np.sinh, xv_half, xy_small, 0.)
        denom = _masked(np.cosh, v_half, cosh_finite, 1.)
        np.divide(-numer, denom, out=result, where=xy_small & cosh_finite)
        return result


class _RegularizedBoseKernelOdd(ReducedKernel):
    """Odd part of the regularized Bose kernel on ``[0, 1] x [0, 1]``::

        K(x, y) == -y * sinh(Λ/2 * x * y) / sinh(Λ/2 * y)
    """
    def __call__(self, x, y, x_plus=None, x_minus=None):
        result = np.asarray(super().__call__(x, y, x_plus, x_minus))

        # Same cancellation issue as for the logistic kernel.  At y == 0 both
        # forms vanish, so we keep the difference there.
        y = np.asarray(y)
        v_half = self.inner.lambda_ / 2 * y
        xv_half = x * v_half
        xy_small = xv_half < 1
        sinh_range = (v_half > 1e-200) & (v_half < 85)
        numer = -y * _masked(np.sinh, xv_half, xy_small, 0.)
        denom = _masked(np.sinh, v_half, sinh_range, 1.)
        np.divide(numer, denom, out=result, where=xy_small & sinh_range)
        return result


def _masked(ufunc, arg, where, fill):
    """``ufunc(arg)`` where ``where`` holds, ``fill`` elsewhere"""
    res = np.full(np.shape(arg), fill, dtype=np.result_type(arg, float))
    ufunc(arg, out=res, where=where)
    return res


def matrix_from_gauss(kernel, gauss_x, gauss_y):
    """Compute matrix ``K(x[i], y[j])`` for the nodes of two quadrature rules"""
    # The forward/backward distances of the rule are passed on, since (1 ± x)
    # cannot be formed accurately near x = ∓1, where the nodes cluster.
    return kernel(gauss_x.x[:, None], gauss_y.x[None, :],
                  gauss_x.x_forward[:, None], gauss_x.x_backward[:, None])


def _check_domain(kernel, x, y):
    """Raise unless x and y lie in the domain of the kernel"""
    x = np.asarray(x)
    xmin, xmax = kernel.xrange
    if not ((x >= xmin) & (x <= xmax)).all():
        raise ValueError(f"x values not in range [{xmin:g},{xmax:g}]")

    y = np.asarray(y)
    ymin, ymax = kernel.yrange
    if not ((y >= ymin) & (y <= ymax)).all():
        raise ValueError(f"y values not in range [{ymin:g},{ymax:g}]")
    return x, y


def _compute_uv(lambda_, x, y, x_plus=None, x_minus=None):
    if x_plus is None:
        x_plus = 1 + x
    if x_minus is None:
        x_minus = 1 - x
    return .5 * x_plus, .5 * x_minus, lambda_ * y


def _log10(lambda_):
    # Hints only grow with lambda, so everything below one is treated alike
    return np.log10(max(lambda_, 1))


def _exponent_noise(lambda_):
    # Exponents up to lambda carry an absolute rounding error of lambda * eps
    return 4 * max(lambda_, 1) * np.finfo(float).eps


def _mirror_positive(cumdiffs):
    """Edges on [-1, 1] from cumulative positive panel widths"""
    pos = cumdiffs / cumdiffs[-1]
    return np.concatenate((-pos[::-1], [0], pos))


def _clustered_at_ends(diffs):
    """Edges on [-1, 1] with the panel widths ``diffs`` counted from -1"""
    zeros = diffs.cumsum()
    zeros = zeros[:-1] / zeros[-1] - 1
    return np.concatenate(([-1], zeros, [0], -zeros[::-1], [1]))


def _positive_half(edges):
    edges = np.asarray(edges)
    if not np.allclose(edges, -edges[::-1]):
        raise ValueError("segments must be symmetric")
    pos = edges[edges.size // 2:]
    if pos[0] != 0:
        pos = np.hstack([0, pos])
    return pos
