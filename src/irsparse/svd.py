# Copyright (C) 2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others
# SPDX-License-Identifier: MIT
import numpy as np
import scipy.linalg as sp_linalg
from scipy.linalg.lapack import dgejsv as _lapack_dgejsv

from ._util import ConvergenceError

# Singular values below this fraction of the largest one are not resolved
# by a single dense SVD and are recomputed in the second pass of the
# 'accurate' strategy.
DEFLATION_RTOL = np.sqrt(np.finfo(float).eps)


def compute(a_matrix, n_sv_hint=None, strategy='fast'):
    """Compute thin/truncated singular value decomposition

    Computes the thin/truncated singular value decomposition of a matrix `A`
    into `U`, `s`, `V`:

        A == (U * s) @ V.T

    The `strategy` parameter can be:

     - `fast`: divide-and-conquer SVD, where only the `n_sv_hint` most
       significant singular values are returned;
     - `default`: SVD based on QR iteration;
     - `accurate`: two-pass SVD, where singular values far below the largest
       one are recomputed from the deflated matrix using the one-sided
       Jacobi method, see `two_pass`.

    Failure of the underlying LAPACK routine raises `ConvergenceError`.
    """
    a_matrix = np.asarray(a_matrix)
    if a_matrix.ndim != 2:
        raise ValueError("a must be of matrix form")
    m, n = a_matrix.shape
    if n_sv_hint is None:
        n_sv_hint = min(m, n)
    n_sv_hint = min(m, n, n_sv_hint)

    if strategy == 'fast':
        u, s, vh = _lapack_svd(a_matrix, 'gesdd')
        u, s, vh = u[:, :n_sv_hint], s[:n_sv_hint], vh[:n_sv_hint]
        v = vh.T.conj()
    elif strategy == 'default':
        u, s, vh = _lapack_svd(a_matrix, 'gesvd')
        v = vh.T.conj()
    elif strategy == 'accurate':
        u, s, v = two_pass(a_matrix)
    else:
        raise ValueError("invalid strategy:" + str(strategy))
    return u, s, v


def two_pass(a, rtol=DEFLATION_RTOL):
    """Two-pass SVD recovering small singular values.

    A dense SVD ``A == U @ diag(s) @ V.T`` determines small singular values
    only up to an absolute error of ``eps * s[0]``.  Thus, after the first
    pass, we split off the leading block of singular values above
    ``rtol * s[0]``, which are well-resolved, and project ``A`` onto the
    orthogonal complement of the corresponding singular subspaces::

        B = U2.T @ A @ V2

    The singular values of ``B`` are the trailing singular values of ``A``,
    but ``B`` has lost the dominant scale, so a second SVD of ``B`` using
    the (relatively accurate) one-sided Jacobi method resolves them far
    below ``eps * s[0]``.  Returns ``(u, s, v)`` as `compute`.
    """
    m, n = a.shape
    if m < n:
        v, s, u = two_pass(a.T, rtol)
        return u, s, v

    u, s, vh = _lapack_svd(a, 'gesvd')
    v = vh.T
    if not s.size or not s[0]:
        return u, s, v

    nhead = int((s > rtol * s[0]).sum())
    if nhead == s.size:
        return u, s, v

    u_head, u_tail = u[:, :nhead], u[:, nhead:]
    v_head, v_tail = v[:, :nhead], v[:, nhead:]
    residual = u_tail.T @ (a @ v_tail)
    ub, sb, vb = _jacobi_svd(residual)

    u = np.hstack([u_head, u_tail @ ub])
    s = np.hstack([s[:nhead], sb])
    v = np.hstack([v_head, v_tail @ vb])

    order = np.argsort(-s, kind='stable')
    return u[:, order], s[order], v[:, order]


def _lapack_svd(a, driver):
    try:
        return sp_linalg.svd(a, full_matrices=False, lapack_driver=driver)
    except np.linalg.LinAlgError as err:
        raise ConvergenceError(
            f"SVD ({driver}) of {a.shape[0]}x{a.shape[1]} matrix did not "
            f"converge") from err


def _jacobi_svd(a):
    """Compute SVD using the (more accurate) one-sided Jacobi method"""
    m, n = a.shape
    if m < n:
        v, s, u = _jacobi_svd(a.T)
        return u, s, v

    # joba='F': full accuracy for matrices with graded rows and columns
    s, u, v, work, _iwork, info = _lapack_dgejsv(a, 2)
    if info < 0:
        raise ValueError("LAPACK error - invalid parameter")
    if info > 0:
        raise ConvergenceError(
            f"Jacobi SVD of {m}x{n} matrix did not converge "
            f"(info = {info})")

    # GEJSV may return scaled singular values to avoid overflow
    if work[0] != work[1]:
        s = s * (work[1] / work[0])
    return u[:, :n], s, v
