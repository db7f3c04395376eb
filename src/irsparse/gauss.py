# Copyright (C) 2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others
# SPDX-License-Identifier: MIT
import warnings
import numpy as np

import scipy.linalg as sp_linalg
import numpy.polynomial.legendre as np_legendre

from ._util import ConvergenceError

# Maximum number of bisection levels in refine_edges
MAX_REFINE_LEVELS = 12

# Maximum total number of panels produced by refine_edges
MAX_REFINE_PANELS = 1024

# Trailing coefficients below STALL_RTOL that shrink by less than a factor
# STALL_SHRINK per bisection are taken as rounding noise
STALL_RTOL = 1e-8
STALL_SHRINK = 0.5

# Trailing Legendre coefficients below this relative size are rounding noise,
# so we never ask refine_edges for a smaller tolerance than this.
REFINE_FLOOR = 1e-14


class Rule:
    """Quadrature rule.

    Approximation of an integral by a weighted sum over discrete points:

         ∫ f(x) * dx ~ sum(f(xi) * wi for (xi, wi) in zip(x, w))

    on the interval ``[a, b]``.  Besides the nodes ``x``, the rule keeps the
    distances ``x_forward == x - a`` and ``x_backward == b - x``, which are
    stored separately because forming them from ``x`` cancels digits close
    to the interval ends, exactly where Gauss nodes cluster.
    """
    def __init__(self, x, w, x_forward=None, x_backward=None, a=-1, b=1):
        x = np.asarray(x)
        self.x = x
        self.w = np.asarray(w)
        self.x_forward = np.asarray(x - a if x_forward is None else x_forward)
        self.x_backward = np.asarray(b - x if x_backward is None else x_backward)
        self.a = a
        self.b = b

    def reseat(self, a, b):
        """Return the same rule mapped linearly to ``[a, b]``"""
        factor = (b - a) / (self.b - self.a)
        return Rule((self.x - self.a) * factor + a, self.w * factor,
                    self.x_forward * factor, self.x_backward * factor, a, b)

    def scale(self, factor):
        """Return rule with weights multiplied by ``factor``"""
        return Rule(self.x, self.w * factor, self.x_forward, self.x_backward,
                    self.a, self.b)

    def piecewise(self, edges):
        """Composite rule: a copy of this rule on every panel of ``edges``"""
        edges = np.asarray(edges)
        if not (edges[1:] > edges[:-1]).all():
            raise ValueError("segments ends must be ordered ascendingly")
        return self.join(*(self.reseat(a, b)
                           for a, b in zip(edges[:-1], edges[1:])))

    def astype(self, dtype):
        dtype = np.dtype(dtype)
        return Rule(self.x.astype(dtype), self.w.astype(dtype),
                    self.x_forward.astype(dtype), self.x_backward.astype(dtype),
                    dtype.type(self.a), dtype.type(self.b))

    @staticmethod
    def join(*rules):
        """Join rules on adjacent intervals into a single rule"""
        if not rules:
            return Rule((), ())

        a = rules[0].a
        b = rules[-1].b
        for left, right in zip(rules[:-1], rules[1:]):
            if left.b != right.a:
                raise ValueError("Gauss rules must be ascending")

        x = np.hstack([r.x for r in rules])
        w = np.hstack([r.w for r in rules])
        x_forward = np.hstack([r.x_forward + (r.a - a) for r in rules])
        x_backward = np.hstack([r.x_backward + (b - r.b) for r in rules])
        return Rule(x, w, x_forward, x_backward, a, b)


def legendre(n, dtype=float):
    """Gauss-Legendre quadrature with ``n`` points on ``[-1, 1]``.

    The nodes are first obtained as eigenvalues of the Jacobi matrix of the
    Legendre recurrence (Golub-Welsch) and then polished by Newton steps on
    ``P[n]``, which brings them to full precision.  The weights follow from
    the derivative at the nodes.
    """
    if n < 1:
        raise ValueError("number of quadrature points must be positive")

    k = np.arange(1, n)
    offdiag = k / np.sqrt(4.0 * k**2 - 1)
    x = sp_linalg.eigvalsh_tridiagonal(np.zeros(n), offdiag)

    prevstep = np.inf
    for _ in range(10):
        p, dp = _legendre_value_deriv(n, x)
        step = p / dp
        x = x - step
        currstep = np.abs(step).max(initial=0)
        if currstep == 0 or not (2 * currstep <= prevstep):
            break
        prevstep = currstep
    else:
        warnings.warn("Newton iteration for Gauss nodes did not converge")

    _, dp = _legendre_value_deriv(n, x)
    w = 2 / ((1 - x) * (1 + x) * dp**2)

    # Enforce exact symmetry, which the eigenvalue solver does not guarantee
    x = .5 * (x - x[::-1])
    w = .5 * (w + w[::-1])
    return Rule(x, w).astype(dtype)


def _legendre_value_deriv(n, x):
    """Value and derivative of the Legendre polynomial ``P[n]`` at ``x``"""
    p_prev = np.ones_like(x)
    p = x.copy()
    for k in range(1, n):
        p_prev, p = p, ((2 * k + 1) * x * p - k * p_prev) / (k + 1)
    # (1 - x) * (1 + x) avoids the rounding error of x**2 near the ends
    dp = n * (p_prev - x * p) / ((1 - x) * (1 + x))
    return p, dp


def legendre_collocation(rule, n=None):
    """Matrix mapping values at Gauss-Legendre nodes to Legendre coefficients.

    For a rule of ``N`` nodes on ``[-1, 1]`` and ``n <= N``, returns the
    ``(n, N)`` matrix ``C`` such that ``C @ f(rule.x)`` are the coefficients
    of the interpolating Legendre series of ``f``.  As Gauss quadrature is
    exact for the required products, ``C`` is the exact inverse of the
    Vandermonde matrix for ``n == N``.
    """
    if n is None:
        n = rule.x.size
    vander = np_legendre.legvander(rule.x, n - 1)
    norm = np.arange(n, dtype=rule.x.dtype) + .5
    return norm[:, None] * (vander * rule.w[:, None]).T


def refine_edges(rule, edges, func, rtol, max_levels=MAX_REFINE_LEVELS,
                 max_panels=MAX_REFINE_PANELS):
    """Bisect panels until ``rule`` resolves ``func`` on each of them.

    Given a Gauss-Legendre ``rule`` on ``[-1, 1]`` and panel ``edges``,
    samples ``func`` on the composite rule.  ``func`` is called with a
    vector of points and shall return an array with one row per point (the
    columns may, e.g., sample a bivariate function along the other
    variable).  Every panel whose Legendre expansion has trailing
    coefficients larger than ``rtol`` times the largest magnitude of
    ``func`` is bisected, and the process repeated on the new panels.

    Returns the refined, ascending array of edges.  Raises
    ``ConvergenceError`` if panels are still unresolved after
    ``max_levels`` bisections, if the refinement would exceed
    ``max_panels`` panels, or if trailing coefficients already below
    ``STALL_RTOL`` stop shrinking, which means they are rounding noise of
    ``func``.
    """
    if rule.a != -1 or rule.b != 1:
        raise ValueError("expecting rule on the interval [-1, 1]")
    edges = np.asarray(edges)
    if not (edges[1:] > edges[:-1]).all():
        raise ValueError("segments ends must be ordered ascendingly")

    rtol = max(rtol, REFINE_FLOOR)
    cmat = legendre_collocation(rule)
    ntail = min(2, rule.x.size)

    start = edges[:-1]
    stop = edges[1:]
    npanels = start.size
    done = [edges]
    magnitude = None
    prev_worst = None
    for level in range(max_levels + 1):
        xmid = .5 * (start + stop)
        xhalf = .5 * (stop - start)
        x = xmid[:, None] + xhalf[:, None] * rule.x
        fx = np.asarray(func(x.ravel()))
        fx = fx.reshape(x.shape + (-1,))
        if magnitude is None:
            magnitude = np.abs(fx).max(initial=0)

        coeffs = np.einsum('kn,pnj->pkj', cmat, fx)
        tail = np.abs(coeffs[:, -ntail:]).max(axis=(1, 2)) / (magnitude or 1)
        unresolved = tail > rtol
        if not unresolved.any():
            break

        def fail(reason):
            return ConvergenceError(
                f"Quadrature refinement {reason}: target tolerance "
                f"{rtol:.3g}, achieved {tail.max():.3g}")

        if level == max_levels:
            raise fail(f"did not converge after {max_levels} levels")
        worst = tail[unresolved].max()
        if prev_worst is not None and STALL_SHRINK * prev_worst < worst \
                < STALL_RTOL:
            raise fail(f"stalled at level {level}")
        prev_worst = worst
        npanels += unresolved.sum()
        if npanels > max_panels:
            raise fail(f"exceeds {max_panels} panels")

        start = start[unresolved]
        stop = stop[unresolved]
        xmid = xmid[unresolved]
        done.append(xmid)
        start, stop = np.hstack([start, xmid]), np.hstack([xmid, stop])

    return np.unique(np.hstack(done))
