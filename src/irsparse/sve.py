# Copyright (C) 2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others
# SPDX-License-Identifier: MIT
from warnings import warn
import numpy as np

from . import gauss
from . import poly
from . import svd
from . import kernel

MACHINE_EPS = np.finfo(float).eps


def compute(K, eps=None, n_sv=None, n_gauss=None, dtype=float,
            sve_strat=None, svd_strat=None):
    """Truncated singular value expansion (SVE) of an integral kernel.

    For a kernel ``K`` on ``[xmin, xmax] x [ymin, ymax]``, computes the
    expansion::

        K(x, y) ≈ sum(u[l](x) * s[l] * v[l](y) for l in range(L))

    with singular values ``s`` in non-increasing order, and left and right
    singular functions ``u`` and ``v`` that are orthonormal on their
    respective intervals.  Internally, the kernel is discretized by Gauss
    quadrature on panels refined until the kernel is resolved, which turns
    the SVE into the SVD of one matrix (or two, for centrosymmetric
    kernels).

    Arguments:

      - ``K``: kernel, e.g., ``LogisticKernel``.
      - ``eps``: relative cutoff for the singular values, defaulting to the
        square root of the machine epsilon.  Smaller cutoffs switch to the
        accurate two-pass SVD and issue a warning.  Cutoffs below the
        machine epsilon are raised to it.
      - ``n_sv``: if given, keep at most that many singular triples.
      - ``n_gauss``: Gauss-Legendre order per panel; taken from the kernel's
        hints if not given.
      - ``dtype``: floating point type of the result.
      - ``sve_strat``: discretization, `CentrosymmSVE` for centrosymmetric
        kernels and `SamplingSVE` otherwise.
      - ``svd_strat``: strategy for `svd.compute`, derived from ``eps``.

    Returns an `SVEResult`, which unpacks into ``u, s, v``.
    """
    eps, default_svd_strat = _choose_accuracy(eps)
    if svd_strat is None:
        svd_strat = default_svd_strat
    if sve_strat is None:
        sve_strat = CentrosymmSVE if K.is_centrosymmetric else SamplingSVE

    discretization = sve_strat(K, eps, n_gauss=n_gauss)
    blocks = [svd.compute(a, discretization.nsvals_hint, svd_strat)
              for a in discretization.matrices]
    u, s, v = truncate(*zip(*blocks), rtol=eps, lmax=n_sv)
    u, s, v = discretization.postprocess(u, s, v, dtype)
    return SVEResult(u, s, v, eps)


class SVEResult:
    """Truncated singular value expansion of a kernel.

    Holds the left singular functions ``u``, the singular values ``s`` and
    the right singular functions ``v``, all of the same length ``L``, where
    ``s`` is positive and non-increasing, as well as the relative cutoff
    ``eps`` used for the truncation.  Unpacks as ``u, s, v = result``.

    Instances are immutable and may be shared by any number of bases, which
    derive their own (rescaled) copies of the functions.
    """
    def __init__(self, u, s, v, eps):
        s = np.array(s)
        if s.ndim != 1:
            raise ValueError("singular values must be a vector")
        if u.shape != s.shape or v.shape != s.shape:
            raise ValueError(f"mismatched SVE shapes: u{u.shape}, s{s.shape}, "
                             f"v{v.shape}")
        if not (s > 0).all():
            raise ValueError("singular values must be positive")
        if not (s[1:] <= s[:-1]).all():
            raise ValueError("singular values must be non-increasing")
        s.flags.writeable = False

        self.u = u
        self.s = s
        self.v = v
        self.eps = eps

    def __iter__(self):
        return iter((self.u, self.s, self.v))

    def __len__(self):
        return self.s.size

    def __repr__(self):
        return f"<SVEResult: {self.s.size} functions, eps={self.eps:.3g}>"

    def __getitem__(self, l):
        """Return contiguous range of singular triples as new result"""
        if not isinstance(l, slice):
            raise TypeError("SVEResult can only be sliced")
        start, stop, step = l.indices(self.s.size)
        if step != 1:
            raise ValueError("slice must be contiguous")
        if stop <= start:
            raise ValueError("slice must not be empty")
        l = slice(start, stop)
        return self.__class__(self.u[l], self.s[l], self.v[l], self.eps)

    def part(self, eps=None, max_size=None):
        """Truncate further to singular values ``s[l] >= eps * s[0]``.

        At most ``max_size`` values are kept, if given.  Returns a new result.
        """
        if eps is None:
            eps = self.eps
        cut = int((self.s >= eps * self.s[0]).sum())
        if max_size is not None and max_size < cut:
            cut = max_size
        if cut == self.s.size:
            return self
        return self.__class__(self.u[:cut], self.s[:cut], self.v[:cut],
                              max(eps, self.eps))

    @property
    def size(self): return self.s.size


class SamplingSVE:
    """Discretization of the SVE by Gauss quadrature.

    With composite Gauss rules ``(x, wx)`` on the x axis and ``(y, wy)`` on
    the y axis, the integrals in the SVE equations become weighted sums.  The
    singular values of the kernel are then approximated by those of the
    matrix::

        A[i, j] == sqrt(wx[i]) * K(x[i], y[j]) * sqrt(wy[j])

    and the singular vectors of ``A`` are the singular functions at the
    nodes, up to the same weights::

        U[i, l] ≈ sqrt(wx[i]) * u[l](x[i])
        V[j, l] ≈ sqrt(wy[j]) * v[l](y[j])

    From there, collocation on each panel yields the Legendre coefficients.

    The panels start out from the kernel's hints and are bisected where the
    kernel is not resolved to ``eps``, unless ``refine`` is false or explicit
    ``segments_x``/``segments_y`` are given for reuse.  See P. Hansen,
    Discrete Inverse Problems, Ch. 3.1 for the method.
    """
    def __init__(self, K, eps, *, n_gauss=None, segments_x=None,
                 segments_y=None, refine=True):
        hints = K.sve_hints(eps)
        if n_gauss is None:
            n_gauss = hints.ngauss
        self.K = K
        self.eps = eps
        self.n_gauss = n_gauss
        self.nsvals_hint = hints.nsvals
        self._rule = gauss.legendre(n_gauss)

        if segments_x is None:
            segments_x = hints.segments_x
        if segments_y is None:
            segments_y = hints.segments_y
        if refine:
            segments_x, segments_y = refine_segments(
                        (K,), self._rule, segments_x, segments_y, eps)

        self._segs_x = np.asarray(segments_x, float)
        self._segs_y = np.asarray(segments_y, float)
        self._gauss_x = self._rule.piecewise(self._segs_x)
        self._gauss_y = self._rule.piecewise(self._segs_y)
        self._sqrtw_x = np.sqrt(self._gauss_x.w)
        self._sqrtw_y = np.sqrt(self._gauss_y.w)

    @property
    def matrices(self):
        """Tuple of the single weighted kernel matrix"""
        a = kernel.matrix_from_gauss(self.K, self._gauss_x, self._gauss_y)
        return self._sqrtw_x[:, None] * a * self._sqrtw_y,

    def postprocess(self, u, s, v, dtype=None):
        """Singular functions from the SVD of the single block"""
        (u,), (s,), (v,) = u, s, v
        if dtype is None:
            dtype = np.result_type(u, s, v)

        u_data = self._to_legendre(u / self._sqrtw_x[:, None], self._segs_x)
        v_data = self._to_legendre(v / self._sqrtw_y[:, None], self._segs_y)

        # Singular vector pairs are only unique up to a common sign, which
        # may differ between LAPACK builds.  Demanding u[l](xmax) > 0 fixes
        # it and connects to the Legendre polynomials as lambda goes to
        # zero.  Since P[n](1) == 1, u[l](xmax) has the sign of the sum of
        # the coefficients on the last panel.
        gauge = np.where(u_data[:, -1, :].sum(0) < 0, -1, 1)
        u_data = u_data * gauge
        v_data = v_data * gauge

        u = poly.PiecewiseLegendrePoly(u_data.astype(dtype),
                                       self._segs_x.astype(dtype))
        v = poly.PiecewiseLegendrePoly(v_data.astype(dtype),
                                       self._segs_y.astype(dtype))
        return u, s.astype(dtype), v

    def _to_legendre(self, values, segs):
        """Piecewise Legendre coefficients from values at the Gauss nodes"""
        nseg = segs.size - 1
        values = values.reshape(nseg, self.n_gauss, values.shape[-1])
        cmat = gauss.legendre_collocation(self._rule)

        # Coefficients of sqrt(2/dx)-normalized polynomials: [order, seg, l]
        data = np.einsum('kn,snl->ksl', cmat, values)
        return data * np.sqrt(.5 * np.diff(segs))[:, None]


class CentrosymmSVE:
    """SVE of a centrosymmetric kernel, split into even and odd parts.

    If ``K(x, y) == K(-x, -y)``, the singular functions can be chosen either
    even or odd, and on the positive half of the interval, they are the
    singular functions of one of the reduced kernels::

        K_even(x, y) == K(x, y) + K(x, -y)
        K_odd(x, y)  == K(x, y) - K(x, -y)

    on ``[0, 1] x [0, 1]``.  The SVE thus decomposes into two independent
    problems of a quarter of the size.  The results are merged, sorted by
    singular value, and continued to the negative half with the parity as
    sign.  For kernels generating a Chebyshev system (see A. Karlin, Total
    Positivity), even and odd functions alternate.

    Both reduced kernels are discretized on the same panels, which are
    refined against both of them at once.
    """
    def __init__(self, K, eps, *, InnerSVE=None, n_gauss=None):
        if InnerSVE is None:
            InnerSVE = SamplingSVE
        self.K = K
        self.eps = eps

        k_even = K.get_symmetrized(+1)
        k_odd = K.get_symmetrized(-1)
        hints = k_even.sve_hints(eps)
        if n_gauss is None:
            n_gauss = hints.ngauss
        segs_x, segs_y = refine_segments(
                    (k_even, k_odd), gauss.legendre(n_gauss),
                    hints.segments_x, hints.segments_y, eps)

        shared = dict(n_gauss=n_gauss, segments_x=segs_x,
                      segments_y=segs_y, refine=False)
        self.even = InnerSVE(k_even, eps, **shared)
        self.odd = InnerSVE(k_odd, eps, **shared)
        self._segs_x = np.asarray(segs_x, float)
        self._segs_y = np.asarray(segs_y, float)
        self.nsvals_hint = max(self.even.nsvals_hint, self.odd.nsvals_hint)

    @property
    def matrices(self):
        """Even and odd block"""
        return self.even.matrices + self.odd.matrices

    def postprocess(self, u, s, v, dtype):
        """Singular functions on the full interval from both blocks"""
        u_even, s_even, v_even = self.even.postprocess(
                                        u[:1], s[:1], v[:1], dtype)
        u_odd, s_odd, v_odd = self.odd.postprocess(
                                        u[1:], s[1:], v[1:], dtype)

        # Interleave by descending singular value; the stable sort keeps
        # the even function first for (numerically) degenerate pairs
        s = np.hstack([s_even, s_odd])
        order = np.argsort(-s, kind='stable')
        signs = np.hstack([np.ones(s_even.size, int),
                           -np.ones(s_odd.size, int)])[order]
        u_half = np.concatenate([u_even.data, u_odd.data], axis=2)[..., order]
        v_half = np.concatenate([v_even.data, v_odd.data], axis=2)[..., order]

        u = _continue_to_negative(u_half, self._segs_x, signs, dtype)
        v = _continue_to_negative(v_half, self._segs_y, signs, dtype)
        return u, s[order], v


def _continue_to_negative(data, segs, signs, dtype):
    """Polynomial on [-1, 1] from the coefficients on [0, 1] and parities"""
    # The reduced functions are normalized on [0, 1], the full ones on
    # [-1, 1].  P[n](-t) == (-1)**n P[n](t) flips the segments on the left.
    data = data / np.sqrt(np.array(2, dtype=data.dtype))
    order_sign = (-1) ** np.arange(data.shape[0])
    mirrored = data[:, ::-1, :] * order_sign[:, None, None] * signs
    data = np.concatenate([mirrored, data], axis=1)

    dx = np.diff(segs)
    knots = np.concatenate([-segs[::-1], segs[1:]])
    dx = np.concatenate([dx[::-1], dx])
    return poly.PiecewiseLegendrePoly(data, knots.astype(dtype),
                                      dx.astype(dtype), symm=signs)


def refine_segments(kernels, rule, segs_x, segs_y, eps):
    """Refine panels on both axes until the kernels are resolved.

    The ``x`` panels are refined against the kernels sampled along the
    ``y`` quadrature nodes and vice versa, see ``gauss.refine_edges``.
    Tolerances below the rounding noise of the kernel values, which grows
    with the kernel cutoff, cannot be resolved and are raised to it with a
    warning.  Returns the refined ``(segs_x, segs_y)``.
    """
    noise = max(K.sve_hints(eps).noise_floor for K in kernels)
    if max(eps, gauss.REFINE_FLOOR) < noise:
        warn(f"\nBasis cutoff is {float(eps):.2g}, but the kernel values "
             f"carry rounding noise of {float(noise):.2g}.\nThe quadrature is "
             f"refined to the noise level, and singular values below it are "
             f"not accurate.\n", UserWarning, 4)
        eps = noise

    y_nodes = rule.piecewise(segs_y).x
    segs_x = gauss.refine_edges(
        rule, segs_x, lambda x: np.hstack(
            [K(x[:, None], y_nodes[None, :]) for K in kernels]), eps)

    x_nodes = rule.piecewise(segs_x).x
    segs_y = gauss.refine_edges(
        rule, segs_y, lambda y: np.hstack(
            [K(x_nodes[None, :], y[:, None]) for K in kernels]), eps)
    return segs_x, segs_y


def _choose_accuracy(eps):
    """Choose accuracy and SVD strategy based on requested cutoff"""
    safe_eps = np.sqrt(MACHINE_EPS)
    if eps is None:
        return safe_eps, 'fast'
    if not (eps > 0):
        raise ValueError("cutoff eps must be positive")
    if eps >= safe_eps:
        return eps, 'fast'

    msg = (f"\nBasis cutoff is {float(eps):.2g}, which is below sqrt(eps) "
           f"with eps = {float(MACHINE_EPS):.2g}.\nSingular values and "
           f"functions for large l are less precise than the cutoff.\n")
    if eps < MACHINE_EPS:
        msg += (f"The cutoff cannot be resolved in double precision and is "
                f"raised to {float(MACHINE_EPS):.2g}.\n")
        eps = MACHINE_EPS
    warn(msg, UserWarning, 3)
    return eps, 'accurate'


def truncate(u, s, v, rtol=0, lmax=None):
    """Truncate a block-wise singular value decomposition.

    ``u``, ``s`` and ``v`` are sequences with one thin SVD ``(u[i], s[i],
    v[i])`` per block.  Keeps the singular values with ``s/max(s) > rtol``
    and, if ``lmax`` is given, at most ``lmax`` of them in total.  Returns
    truncated copies of the three sequences.
    """
    if lmax is not None and (lmax < 0 or int(lmax) != lmax):
        raise ValueError("lmax must be a non-negative integer")
    if not (0 <= rtol <= 1):
        raise ValueError("rtol must lie between 0 and 1")

    s_all = np.sort(np.hstack(s))[::-1]
    cutoff = rtol * s_all[0] if s_all.size else 0

    # The size limit is imposed through the cutoff as well, so that a
    # degenerate pair of singular values is dropped or kept as a whole.
    if lmax is not None and lmax < s_all.size:
        cutoff = max(cutoff, s_all[lmax])

    keep = [int((si > cutoff).sum()) for si in s]
    return ([ui[:, :k] for ui, k in zip(u, keep)],
            [si[:k] for si, k in zip(s, keep)],
            [vi[:, :k] for vi, k in zip(v, keep)])
