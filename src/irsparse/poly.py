# Copyright (C) 2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others
# SPDX-License-Identifier: MIT
from warnings import warn
import numpy as np
import numpy.polynomial.legendre as np_legendre
import scipy.integrate as sp_integrate
import scipy.special as sp_special

from . import _util
from . import _roots


class PiecewiseLegendrePoly:
    """Piecewise Legendre polynomial.

    Models a function on the interval ``[xmin, xmax]`` as a set of segments
    on the intervals ``S[i] = [a[i], a[i+1]]``, where on each interval the
    function is expanded in scaled Legendre polynomials::

        f(x) == sqrt(2/dx[i]) * sum(data[l, i] * P[l](t) for l in range(N))

    with ``t == 2*(x - mid[i])/dx[i]`` the local coordinate in ``[-1, 1]``.
    The normalization is chosen such that the coefficients of an orthonormal
    set of functions are themselves orthonormal.

    ``data`` has shape ``(polyorder, nsegments, ...)``, where the trailing
    dimensions enumerate a set of functions sharing the same knots.  Instances
    are immutable: the data array is copied and frozen on construction.
    ``symm`` records the parity of each function with respect to the midpoint
    of the interval: ``1`` for even, ``-1`` for odd, and ``0`` for unknown.
    """
    def __init__(self, data, knots, dx=None, symm=None):
        data = np.array(data)
        knots = np.array(knots)
        if data.ndim < 2:
            raise ValueError("data must be of shape (polyorder, nsegments, ...)")
        if np.isnan(data).any():
            raise ValueError("data must not contain NaN")

        nsegments = data.shape[1]
        if knots.shape != (nsegments + 1,):
            raise ValueError(f"expecting {nsegments + 1} knots, got array "
                             f"of shape {knots.shape}")
        if not (knots[1:] > knots[:-1]).all():
            raise ValueError("Knots must be strictly increasing")

        if symm is None:
            symm = np.zeros(data.shape[2:], int)
        symm = np.array(symm)
        if symm.shape != data.shape[2:]:
            raise ValueError("symm must have one entry per function")

        # The segment widths may be passed explicitly, because they are often
        # known more accurately than the difference of adjacent knots.
        dx = np.diff(knots) if dx is None else np.array(dx)
        if not np.allclose(dx, np.diff(knots)):
            raise ValueError("segment widths dx inconsistent with knots")

        for arr in (data, knots, dx, symm):
            arr.flags.writeable = False

        self.data = data
        self.knots = knots
        self.dx = dx
        self.symm = symm
        self._xm = .5 * (knots[1:] + knots[:-1])
        self._inv_xs = 2 / dx
        self._norm = np.sqrt(self._inv_xs)

    def __getitem__(self, l):
        """Subset of the functions, sharing the knots"""
        if not isinstance(l, tuple):
            l = (l,)
        return self.__class__(self.data[(slice(None), slice(None)) + l],
                              self.knots, self.dx, self.symm[l])

    def __call__(self, x):
        """Evaluate polynomial at position x

        Returns an array of shape ``self.shape + x.shape``.  Raises
        ``ValueError`` if any ``x`` lies outside ``[xmin, xmax]``.
        """
        i, t = self._split(np.asarray(x))

        # Evaluate with the x dimensions first, then move them to the back
        bshape = i.shape + (1,) * self.ndim
        res = _legendre_series(self.data[:, i], t.reshape(bshape))
        res *= self._norm[i].reshape(bshape)
        return res.transpose([*range(i.ndim, res.ndim), *range(i.ndim)])

    def overlap(self, f, *, rtol=1e-12, return_error=False, points=None):
        r"""Overlap integral ``∫ dx f(x) * self(x)`` over ``[xmin, xmax]``.

        ``f`` is called with a scalar ``x`` and may return an array, in which
        case the result has the shape ``self.shape + f(x).shape``.  The
        integral is computed adaptively by ``scipy.integrate.quad_vec``,
        splitting at the knots as well as at the optional break ``points``,
        where ``f`` may be non-smooth.  A warning is issued if the relative
        tolerance ``rtol`` is not reached.  If ``return_error`` is set, the
        pair ``(result, error_estimate)`` is returned.
        """
        breaks = self.knots[1:-1]
        if points is not None:
            points = np.asarray(points).ravel()
            points = points[(points > self.xmin) & (points < self.xmax)]
            breaks = np.unique(np.hstack((breaks, points)))

        result, error, info = sp_integrate.quad_vec(
            lambda x: np.multiply.outer(self(x), f(x)), self.xmin, self.xmax,
            epsrel=rtol, points=breaks, full_output=True)
        if not info.success:
            warn(f"Integration did not converge (status {info.status})")
        if return_error:
            return result, error
        return result

    def deriv(self, n=1):
        """Polynomial for the ``n``-th derivative"""
        # d/dx == 2/dx[i] * d/dt on segment i
        factor = (self._inv_xs ** n).reshape((1, -1) + (1,) * self.ndim)
        ddata = np_legendre.legder(self.data, n) * factor
        return self.__class__(ddata, self.knots, self.dx, (-1)**n * self.symm)

    def bound(self):
        """Upper bound on ``abs(self(x))`` over the whole interval"""
        # |P[l](t)| <= 1 on [-1, 1]
        norm = self._norm.reshape((-1,) + (1,) * self.ndim)
        return (np.abs(self.data).sum(0) * norm).max(0)

    def roots(self, *, scale=None, rtol=1e-12):
        """Roots of a single polynomial in ascending order.

        The roots in each segment are the eigenvalues of the Legendre
        companion matrix of the local expansion, polished by Newton's method.
        Legendre coefficients contributing less than ``rtol * scale`` to the
        function values are dropped as rounding noise beforehand, where
        ``scale`` defaults to `bound()` and may be given per segment.  For a
        derivative, pass the scale of the undifferentiated function divided
        by the segment width, as its noise is set by the latter.  If the
        polynomial has a definite parity, the roots are symmetrized about
        the midpoint.
        """
        if self.ndim:
            raise ValueError("select single polynomial before calling roots()")
        if scale is None:
            scale = self.bound()

        atol = rtol * scale / self._norm
        if (np.abs(self.data) <= atol).all():
            # Zero up to rounding noise, including the midpoint of odd ones
            return np.zeros(0)

        found = [self._xm[i] + _segment_roots(self.data[:, i], atol[i])
                 / self._inv_xs[i] for i in range(self.nsegments)]
        roots = np.sort(np.hstack(found))

        # Roots close to a knot are found in both adjacent segments
        tol = 1e-5 * self.dx.min()
        if roots.size > 1:
            roots = roots[np.hstack(([True], np.diff(roots) > tol))]

        if self.symm:
            xmid = (self.xmax + self.xmin) / 2
            right = roots[roots > xmid + tol]
            left = (self.xmax + self.xmin) - right[::-1]
            middle = [xmid] if self.symm == -1 else []
            roots = np.hstack((left, middle, right))
        return roots

    @property
    def shape(self): return self.data.shape[2:]

    @property
    def size(self): return int(np.prod(self.shape))

    @property
    def ndim(self): return self.data.ndim - 2

    @property
    def xmin(self): return self.knots[0]

    @property
    def xmax(self): return self.knots[-1]

    @property
    def nsegments(self): return self.data.shape[1]

    @property
    def polyorder(self): return self.data.shape[0]

    def _split(self, x):
        """Segment index and local coordinate in ``[-1, 1]`` for each x"""
        x = _util.check_range(x, self.xmin, self.xmax)
        # x == xmax belongs to the last segment
        i = np.minimum(self.knots.searchsorted(x, 'right'), self.nsegments) - 1
        return i, (x - self._xm[i]) * self._inv_xs[i]


def _legendre_series(coeffs, t):
    """Evaluate ``sum(coeffs[l] * P[l](t))`` by the three-term recurrence"""
    res = np.array(coeffs[0] + 0 * t, dtype=np.result_type(coeffs, t))
    if coeffs.shape[0] == 1:
        return res
    p_prev = np.ones_like(t)
    p = t
    res += coeffs[1] * p
    for l in range(1, coeffs.shape[0] - 1):
        p_prev, p = p, ((2*l + 1) * t * p - l * p_prev) / (l + 1)
        res += coeffs[l+1] * p
    return res


def _segment_roots(coeffs, atol, margin=1e-6):
    """Roots of a Legendre series in the local coordinate [-1, 1]"""
    # Trailing coefficients at noise level would blow up the companion matrix
    keep = np.flatnonzero(np.abs(coeffs) > atol)
    if not keep.size or keep[-1] == 0:
        return np.zeros(0)
    t = np_legendre.legroots(coeffs[:keep[-1]+1])

    if np.iscomplexobj(t):
        t = t[np.abs(t.imag) <= margin].real
    t = t[np.abs(t) <= 1 + margin]

    dcoeffs = np_legendre.legder(coeffs)
    for _ in range(3):
        dval = np_legendre.legval(t, dcoeffs)
        step = np.zeros_like(t)
        np.divide(np_legendre.legval(t, coeffs), dval, out=step,
                  where=dval != 0)
        t = t - step
    t = t[np.abs(t) <= 1 + 2 * margin]
    return t.clip(-1, 1)


class PiecewiseLegendreFT:
    """Matsubara transform of a piecewise Legendre polynomial.

    Computes, for reduced Matsubara frequencies ``n``, the integral::

        phat(n) == ∫ dx exp(1j*pi*n * (x - xmin)/(xmax - xmin)) * p(x)

    over the interval of ``p``.  Continuing ``p`` antiperiodically yields
    fermionic transforms (``freq='odd'``, defined for odd ``n`` only), while
    continuing it periodically yields bosonic ones (``freq='even'``, even
    ``n`` only).

    Frequencies with ``abs(n) >= n_asymp`` are served by an asymptotic series
    in ``1/n``, whose moments are the derivatives of ``p`` at the interval
    ends.  There, it is more accurate than the sum over segments.  With
    ``n_asymp=None``, the exact sum is always used.
    """
    # Dense at low frequencies, then logarithmically spaced up to 2**25
    _DEFAULT_GRID = np.unique(np.hstack([
        np.arange(64), np.logspace(6, 25, 16 * 19 + 1, base=2).astype(int)]))

    def __init__(self, poly, freq='even', n_asymp=None, power_model=None):
        if freq not in ('even', 'odd'):
            raise ValueError("freq must be either 'even' or 'odd'")
        self.poly = poly
        self.freq = freq
        self.zeta = 1 if freq == 'odd' else 0
        if n_asymp is None:
            self.n_asymp = np.inf
            self._model = None
        else:
            self.n_asymp = n_asymp
            self._model = power_model
            if self._model is None:
                self._model = _PowerModel.from_poly(freq, poly)

    @property
    def shape(self): return self.poly.shape

    @property
    def size(self): return self.poly.size

    @property
    def ndim(self): return self.poly.ndim

    def __getitem__(self, l):
        model = None if self._model is None else self._model[l]
        return self.__class__(self.poly[l], self.freq, self.n_asymp, model)

    @_util.ravel_argument(last_dim=True)
    def __call__(self, n):
        """Transform at the reduced frequencies ``n``, frequencies last"""
        n = _util.check_reduced_matsubara(n, self.zeta)
        near = np.abs(n) < self.n_asymp
        result = np.empty(self.shape + n.shape, complex)
        if near.any():
            result[..., near] = _compute_unl_inner(self.poly, n[near])
        if not near.all():
            result[..., ~near] = self._model.giw(n[~near])
        return result

    def extrema(self, *, part=None, grid=None, positive_only=False):
        """Reduced frequencies at which the transform has its extrema.

        By symmetry, the transform of a function of definite parity is
        either purely real or purely imaginary.  ``part`` selects which one
        is searched and by default is derived from ``poly.symm``.  The search
        runs over ``n == 2*m + zeta`` for the integers ``m`` in ``grid``.
        The result is mirrored to negative frequencies unless
        ``positive_only`` is set.
        """
        if self.poly.shape:
            raise ValueError("extrema need a single polynomial")
        if part is None:
            part = self._default_part()
        if part not in ('real', 'imag'):
            raise ValueError("part must be either 'real' or 'imag'")
        if grid is None:
            grid = self._DEFAULT_GRID

        def f(m):
            values = self(2 * m + self.zeta)
            return values.real if part == 'real' else values.imag

        wn = 2 * _roots.discrete_extrema(f, grid) + self.zeta
        return wn if positive_only else _symmetrize_matsubara(wn)

    def _default_part(self):
        # Even functions have real bosonic and imaginary fermionic transforms,
        # odd functions the other way round.
        if self.poly.symm == 1:
            even = True
        elif self.poly.symm == -1:
            even = False
        else:
            raise ValueError("cannot detect parity of the polynomial")
        return 'real' if even == (self.zeta == 0) else 'imag'


def _imag_power(n):
    """``1j**n`` for integer ``n``, without rounding error"""
    n = np.asarray(n)
    if not np.issubdtype(n.dtype, np.integer):
        raise ValueError("exponent must be integer")
    return np.array([1, 1j, -1, -1j])[n % 4]


def _get_tnl(l, w):
    r"""Fourier integral of the Legendre polynomial ``P[l]``::

        T[l](w) == ∫_{-1}^1 dx exp(1j * w * x) * P[l](x) == 2 i^l j[l](w)

    where ``j[l]`` is the spherical Bessel function.
    """
    # j[l] is only evaluated for w >= 0; T[l](-w) is the complex conjugate
    result = 2 * _imag_power(l) * sp_special.spherical_jn(l, np.abs(w))
    return np.where(w < 0, result.conj(), result)


def _shift_xmid(poly):
    """Return scaled midpoints as pair ``(diff, shift)``.

    The midpoints of the segments, measured from ``xmin`` in units of half
    the interval, lie in ``[0, 2]``.  They are returned as an integer
    ``shift`` in ``(0, 1, 2)`` and a float ``diff`` such that
    ``shift + diff`` is the scaled midpoint to floating point accuracy.
    """
    scale = 2 / (poly.xmax - poly.xmin)
    dx_half = poly.dx / 2
    xmid_left = (poly.dx.cumsum() - dx_half) * scale
    xmid_right = (poly.dx[::-1].cumsum()[::-1] - dx_half) * scale
    xmid_center = (poly._xm - .5 * (poly.xmin + poly.xmax)) * scale

    shift = np.round(xmid_left).astype(int).clip(0, 2)
    diff = np.choose(shift, (xmid_left, xmid_center, -xmid_right))
    return diff, shift


def _phase_stable(poly, wn):
    """Phase ``exp(1j*pi*wn * (xmid - xmin)/(xmax - xmin))`` per segment.

    Returns an array of shape ``(nsegments, wn.size)``.
    """
    # For large wn, the argument winds around the unit circle many times,
    # and reducing it to [-pi, pi) eats the digits of xmid.  The scaled
    # midpoint is therefore split into an integer part, which is applied
    # exactly as a power of 1j, and a small remainder.
    diff, shift = _shift_xmid(poly)
    return (_imag_power(shift[:, None] * wn)
            * np.exp(.5j * np.pi * diff[:, None] * wn))


def _compute_unl_inner(poly, wn):
    """Exact transform as a sum over segments and Legendre orders"""
    # With x == xmid[i] + dx[i]/2 * t on segment i, the term of order l is
    #   sqrt(dx[i]/2) * data[l,i] * T[l](dx[i]/2 * w) * exp(1j*w*(xmid[i]-xmin))
    half_dx = poly.dx / 2
    w = np.pi / (poly.xmax - poly.xmin) * wn
    order = np.arange(poly.polyorder)[:, None, None]
    tnl = _get_tnl(order, half_dx[:, None] * w) * _phase_stable(poly, wn)

    coeffs = poly.data.reshape(poly.polyorder, poly.nsegments, -1)
    coeffs = coeffs * np.sqrt(half_dx)[:, None]
    result = np.tensordot(coeffs, tnl, axes=([0, 1], [0, 1]))
    return result.reshape(poly.shape + wn.shape)


class _PowerModel:
    """Asymptotic series of a transform in ``1/iw``::

        phat(n) ~ sum(moments[k] / (iw)**(k+1) for k in range(N))

    where ``iw == 1j * pi * n / length`` for the reduced frequency ``n``.
    """
    def __init__(self, moments, length=2):
        self.moments = np.asarray(moments)
        self.length = length

    @classmethod
    def from_poly(cls, freq, poly):
        """Moments from the derivatives of ``poly`` at the interval ends.

        Integrating by parts repeatedly, the transform becomes a sum over
        the jumps of the derivatives across the (anti-)periodic boundary::

            A[k] == (-1)**k * (sign * p^(k)(xmax) - p^(k)(xmin))

        where ``sign`` is ``-1`` for odd and ``1`` for even frequencies.
        """
        sign = -1 if freq == 'odd' else 1
        derivs = np.asarray(_derivs(poly, [poly.xmin, poly.xmax]))
        k = np.arange(derivs.shape[0]).reshape((-1,) + (1,) * poly.ndim)
        moments = (-1.0)**k * (sign * derivs[..., 1] - derivs[..., 0])
        return cls(moments, poly.xmax - poly.xmin)

    def giw(self, wn):
        """Series at the frequencies ``wn``, frequencies last"""
        wn = _util.check_reduced_matsubara(wn)
        iw = 1j * np.pi / self.length * wn
        inv_iw = np.zeros_like(iw)
        np.divide(1, iw, out=inv_iw, where=wn != 0)

        # Horner scheme in 1/iw
        result = np.zeros(self.moments.shape[1:] + wn.shape,
                          np.result_type(1j, self.moments))
        for moment in self.moments[::-1]:
            result = (result + moment[..., None]) * inv_iw
        return result

    def __getitem__(self, l):
        if not isinstance(l, tuple):
            l = (l,)
        return self.__class__(self.moments[(slice(None),) + l], self.length)


def _derivs(ppoly, x):
    """Values of ``ppoly`` and of all its non-vanishing derivatives at x"""
    values = [ppoly(x)]
    for _ in range(1, ppoly.polyorder):
        ppoly = ppoly.deriv()
        values.append(ppoly(x))
    return values


def _symmetrize_matsubara(x0):
    """Mirror ascending non-negative frequencies to the negative axis"""
    if not x0.size:
        return x0
    if not (x0[1:] >= x0[:-1]).all():
        raise ValueError("set of Matsubara points not ordered")
    if not (x0[0] >= 0):
        raise ValueError("points must be non-negative")

    # Zero is its own mirror image
    skip = 1 if x0[0] == 0 else 0
    return np.hstack([-x0[skip:][::-1], x0])
