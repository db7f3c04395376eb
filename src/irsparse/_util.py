# Copyright (C) 2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others
# SPDX-License-Identifier: MIT
import functools
import numpy as np


def ravel_argument(last_dim=False):
    """Allow function of a flat array to be called with any array shape.

    The wrapped function receives its (last) argument flattened.  The shape
    of the argument is then restored either on the first dimensions of the
    result (the default) or, if ``last_dim`` is set, on its last dimensions.
    Works for plain functions as well as for methods.
    """
    def decorate(fn):
        @functools.wraps(fn)
        def wrapper(*args):
            *head, x = args
            x = np.asarray(x)
            res = fn(*head, x.ravel())
            if last_dim:
                return res.reshape(res.shape[:-1] + x.shape)
            return res.reshape(x.shape + res.shape[1:])
        return wrapper
    return decorate


def check_reduced_matsubara(n, zeta=None):
    """Return ``n`` as integer array of reduced Matsubara frequencies.

    A reduced frequency is the integer ``n`` in ``w[n] == n * pi / beta``,
    so fermionic frequencies (``zeta == 1``) are odd and bosonic ones
    (``zeta == 0``) are even.  Raises if ``n`` is not integral or, when
    ``zeta`` is given, has the wrong parity.
    """
    n = np.asarray(n)
    if not np.issubdtype(n.dtype, np.integer):
        n_int = n.astype(int)
        if not (n_int == n).all():
            raise ValueError("reduced frequency n must be integer")
        n = n_int
    if zeta is not None and not (n % 2 == zeta).all():
        raise ValueError(
            "reduced frequencies must be {} for this statistics"
            .format("odd" if zeta else "even"))
    return n


def check_range(x, xmin, xmax):
    """Raise unless every element of ``x`` lies in ``[xmin, xmax]``"""
    x = np.asarray(x)
    if not (x >= xmin).all():
        raise ValueError(f"Some x violate lower bound {xmin}")
    if not (x <= xmax).all():
        raise ValueError(f"Some x violate upper bound {xmax}")
    return x


def check_svd_result(svd_result, matrix_shape=None):
    """Return ``(u, s, vH)`` after checking it is a consistent thin SVD"""
    u, s, vH = map(np.asarray, svd_result)
    if u.ndim != 2 or s.ndim != 1 or vH.ndim != 2:
        raise ValueError("SVD must consist of matrix, vector and matrix")
    if not (u.shape[1] == s.size == vH.shape[0]):
        raise ValueError(f"shape mismatch between SVD elements: "
                         f"{u.shape} x {s.shape} x {vH.shape}")
    if matrix_shape is not None and (u.shape[0], vH.shape[1]) != matrix_shape:
        raise ValueError(f"shape mismatch between SVD "
                         f"({u.shape[0]}, {vH.shape[1]}) and matrix "
                         f"{matrix_shape}")
    return u, s, vH


class ConvergenceError(RuntimeError):
    """A numerical procedure failed to reach its target accuracy.

    This is fatal: all algorithms in this package are deterministic, so the
    only remedy is to change the parameters (tolerance, refinement limits)
    of the failing call.
    """
    pass
