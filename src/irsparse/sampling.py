# Copyright (C) 2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others
# SPDX-License-Identifier: MIT
import numpy as np
from warnings import warn

from . import _util

# Fits with a sampling matrix of larger condition number issue a warning
CONDITIONING_THRESHOLD = 1e8


class AbstractSampling:
    """Transformation between IR coefficients and values on sparse points.

    A sampling object fixes a small set of points ``x[i]``, in imaginary
    time or in Matsubara frequency, and the matrix ``A[i, l]`` of the basis
    functions at these points.  It then maps between the two representations
    of a propagator::

        G(x[i]) == sum(A[i, l] * g[l] for l in range(basis.size))

    in both directions: `evaluate` computes the values from the coefficients,
    while `fit` recovers the coefficients from the values by a least squares
    fit.  As the points are chosen close to the roots (or extrema) of the
    highest-order basis function, the fit is well-conditioned.

    Both directions act along a single ``axis`` of an array of arbitrary
    dimension.  Results may be written into a preallocated array ``out``, and
    `fit` can use a preallocated one-dimensional ``workspace`` of at least
    `workspace_length` elements for its intermediate result.  All shapes are
    checked before anything is computed.
    """
    def evaluate(self, al, axis=0, *, out=None):
        """Values at the sampling points from the basis coefficients"""
        return self.matrix.matmul(al, axis, out=out)

    def fit(self, ax, axis=0, *, out=None, workspace=None):
        """Basis coefficients from the values at the sampling points"""
        gl = self.matrix.lstsq(ax, axis, out=out, workspace=workspace)
        cond = self.matrix.cond
        if self.basis.is_well_conditioned and not cond <= CONDITIONING_THRESHOLD:
            warn(f"Fitting on these sampling points is poorly conditioned "
                 f"(cond = {cond:.2g}), expect loss of precision",
                 ConditioningWarning, 2)
        return gl

    def workspace_length(self, ax, axis=0):
        """Number of elements `fit` needs as ``workspace`` for ``ax``"""
        return self.matrix.workspace_length(ax, axis)

    @property
    def cond(self):
        """Condition number of the sampling matrix"""
        return self.matrix.cond

    @property
    def sampling_points(self):
        raise NotImplementedError()

    @property
    def matrix(self):
        """Sampling matrix in decomposed form"""
        raise NotImplementedError()

    @property
    def basis(self):
        raise NotImplementedError()


class TauSampling(AbstractSampling):
    """Sparse sampling in imaginary time.

    Default points are the extrema of the highest-order basis function,
    see ``basis.default_tau_sampling_points()``.  Explicit points are in the
    time variable of the basis, i.e., ``[0, beta]`` for a physical basis and
    ``[-1, 1]`` for a dimensionless one.
    """
    def __init__(self, basis, sampling_points=None):
        if sampling_points is None:
            points = basis.default_tau_sampling_points()
        else:
            points = np.asarray(sampling_points)
            if points.ndim != 1:
                raise ValueError("sampling points must be a vector")

        self._basis = basis
        self._points = points
        self._matrix = DecomposedMatrix(basis.u(points).T)

    @property
    def basis(self): return self._basis

    @property
    def sampling_points(self): return self._points

    @property
    def matrix(self): return self._matrix

    @property
    def tau(self):
        """Sampling times"""
        return self._points


class MatsubaraSampling(AbstractSampling):
    """Sparse sampling in Matsubara frequencies.

    Sampling points are reduced frequencies ``n``, i.e., integer multiples of
    ``pi/beta``: odd for fermions and even for bosons.  Explicit points are
    sorted.

    With ``positive_only=True``, the propagator is assumed to be real in
    imaginary time or, equivalently, to satisfy::

        G(-n) == G(n).conj()

    Only non-negative frequencies are then sampled and the fit is restricted
    to real coefficients, which needs about half as many points.
    """
    def __init__(self, basis, sampling_points=None, *, positive_only=False):
        if sampling_points is None:
            points = basis.default_matsubara_sampling_points(
                                                positive_only=positive_only)
        else:
            points = _util.check_reduced_matsubara(sampling_points)
            if points.ndim != 1:
                raise ValueError("sampling points must be a vector")
            points = np.sort(points)
            if positive_only and points[0] < 0:
                raise ValueError("positive_only sampling requires frequencies "
                                 "n >= 0")

        self._basis = basis
        self._points = points
        self._positive_only = positive_only

        amat = basis.uhat(points).T
        if positive_only:
            self._matrix = SplitDecomposedMatrix(
                                amat, _split_complex(amat, points[0] == 0))
        else:
            self._matrix = DecomposedMatrix(amat)

    @property
    def basis(self): return self._basis

    @property
    def sampling_points(self): return self._points

    @property
    def matrix(self): return self._matrix

    @property
    def positive_only(self):
        """Whether only non-negative frequencies are sampled"""
        return self._positive_only

    @property
    def wn(self):
        """Sampling frequencies as reduced Matsubara indices"""
        return self._points


class _DecomposedBase:
    """Shared part of matrices stored alongside a singular value decomposition"""
    def _set_matrix(self, a, s):
        self._a = a
        self._s = s

    def __matmul__(self, x):
        return self.matmul(x)

    def matmul(self, x, axis=0, *, out=None):
        """Product ``A @ x``, taken along ``axis`` of ``x``"""
        nrows, ncols = self._a.shape
        xmat, rest = _to_matrix(x, axis, ncols, "coefficients")
        self._check_input(xmat)
        return _write_along_axis(
                    lambda xm, res: np.matmul(self._a, xm, out=res),
                    xmat, rest, axis, nrows, np.result_type(self._a, xmat), out)

    def workspace_length(self, x, axis=0):
        """Number of workspace elements `lstsq` needs for ``x``"""
        xmat, _ = _to_matrix(x, axis, self._a.shape[0], "values")
        return self._s.size * xmat.shape[1]

    def _check_input(self, xmat):
        pass

    def __array__(self, dtype=None, copy=None):
        if dtype is None:
            return self._a
        return self._a.astype(dtype)

    @property
    def a(self):
        """The matrix itself"""
        return self._a

    @property
    def s(self):
        """Non-zero singular values, largest first"""
        return self._s

    @property
    def cond(self):
        """Ratio of largest to smallest singular value"""
        return self._s[0] / self._s[-1]


def _drop_zero(u, s, vh):
    """Remove triples with vanishing singular value"""
    nonzero = s != 0
    if nonzero.all():
        return u, s, vh
    return u[:, nonzero], s[nonzero], vh[nonzero]


class DecomposedMatrix(_DecomposedBase):
    """Matrix ``A`` together with its thin singular value decomposition::

        A == (u * s) @ vH

    Least squares problems are then solved by ``A.lstsq(x)`` as::

        vH.conj().T @ ((u.conj().T @ x) / s[:, None])

    which avoids forming the normal equations and so is accurate even for
    matrices with a sizeable condition number.  The decomposition is computed
    once on construction unless passed as ``svd_result``.
    """
    def __init__(self, a, svd_result=None):
        a = np.asarray(a)
        if a.ndim != 2:
            raise ValueError("a must be a matrix")
        if svd_result is None:
            svd_result = np.linalg.svd(a, full_matrices=False)
        u, s, vh = _drop_zero(*_util.check_svd_result(svd_result, a.shape))

        self._set_matrix(a, s)
        self._uh = np.array(u.conj().T)
        self._v = np.array(vh.conj().T)

    def lstsq(self, x, axis=0, *, out=None, workspace=None):
        """Least squares solution ``y`` of ``A @ y ≈ x`` along ``axis``"""
        xmat, rest = _to_matrix(x, axis, self._a.shape[0], "values")
        work_dtype = np.result_type(self._uh, xmat)
        work = _check_workspace(workspace, self._s.size, xmat.shape[1],
                                work_dtype)

        def solve(xm, res):
            tmp = np.matmul(self._uh, xm, out=work)
            tmp /= self._s[:, None]
            return np.matmul(self._v, tmp, out=res)

        return _write_along_axis(solve, xmat, rest, axis, self._v.shape[0],
                                 np.result_type(self._v, work_dtype), out)

    @property
    def u(self):
        """Left singular vectors as columns"""
        return self._uh.conj().T

    @property
    def vH(self):
        """Right singular vectors as rows"""
        return self._v.conj().T


class SplitDecomposedMatrix(_DecomposedBase):
    """Complex matrix ``A`` restricted to real solution vectors.

    For real ``y``, the residual of ``A @ y ≈ x`` is that of the real system
    obtained by stacking real and imaginary parts of ``A`` and ``x``.  The
    SVD of the stacked matrix, with the two halves of its left singular
    vectors recombined into a complex ``u``, is the split decomposition::

        A == (u * s) @ vT

    with real ``vT``.  The least squares solution over real vectors is then::

        vT.T @ ((u.conj().T @ x).real / s[:, None])

    Use `_split_complex` to obtain ``(u, s, vT)``.
    """
    def __init__(self, a, ssvd_result):
        a = np.asarray(a)
        if a.ndim != 2:
            raise ValueError("a must be a matrix")
        u, s, vt = _util.check_svd_result(ssvd_result, a.shape)
        if not np.issubdtype(u.dtype, np.complexfloating):
            raise ValueError("u of a split SVD must be complex")
        if np.issubdtype(vt.dtype, np.complexfloating):
            raise ValueError("vT of a split SVD must be real")
        u, s, vt = _drop_zero(u, s, vt)

        self._set_matrix(a, s)
        self._ure = np.array(u.real.T)
        self._uim = np.array(u.imag.T)
        self._v = np.array(vt.T)

    def _check_input(self, xmat):
        if np.iscomplexobj(xmat):
            warn("Coefficients of a split decomposition are expected to be "
                 "real", UserWarning, 4)

    def lstsq(self, x, axis=0, *, out=None, workspace=None):
        """Real least squares solution ``y`` of ``A @ y ≈ x`` along ``axis``"""
        xmat, rest = _to_matrix(x, axis, self._a.shape[0], "values")
        work_dtype = np.result_type(self._ure, xmat.real)
        work = _check_workspace(workspace, self._s.size, xmat.shape[1],
                                work_dtype)

        def solve(xm, res):
            # Re(u^H x) == Re(u)^T Re(x) + Im(u)^T Im(x)
            tmp = np.matmul(self._ure, xm.real, out=work)
            tmp += self._uim @ xm.imag
            tmp /= self._s[:, None]
            return np.matmul(self._v, tmp, out=res)

        return _write_along_axis(solve, xmat, rest, axis, self._v.shape[0],
                                 np.result_type(self._v, work_dtype), out)

    @property
    def u(self):
        """Complex left singular vectors as columns"""
        return self._ure.T + 1j * self._uim.T

    @property
    def vH(self):
        """Real right singular vectors as rows"""
        return self._v.T


class ConditioningWarning(RuntimeWarning):
    """Issued when fitting a sampling problem that is poorly conditioned.

    The coefficients are then ambiguous to a degree that a significant loss
    of precision has to be expected, usually because the sampling points do
    not resolve the basis functions.
    """


def _split_complex(mat, has_zero=False):
    """Split SVD of a complex matrix acting on real vectors.

    For real ``x``, ``mat @ x`` is determined by the real and imaginary
    parts stacked on top of each other, so the SVD of this real matrix
    solves the least squares problem over real solutions.  The imaginary
    part of the row of a zero frequency vanishes and is left out.
    """
    mat = np.asarray(mat)
    if not np.issubdtype(mat.dtype, np.complexfloating):
        raise ValueError("mat must be complex matrix")
    n = mat.shape[0]
    offset_imag = 1 if has_zero else 0
    rmat = np.vstack((mat.real, mat[offset_imag:].imag))
    ur, s, vT = np.linalg.svd(rmat, full_matrices=False)

    # Recombine the two halves of the left singular vectors
    u = np.zeros((n, s.size), mat.dtype)
    u.real = ur[:n]
    u.imag[offset_imag:] = ur[n:]
    return u, s, vT


def _to_matrix(x, axis, size, what):
    """Move ``axis`` of ``x`` to the front and flatten the others"""
    x = np.asarray(x)
    if not -x.ndim <= axis < x.ndim:
        raise ValueError(f"axis {axis} is out of bounds for {what} of "
                         f"dimension {x.ndim}")
    if x.shape[axis] != size:
        raise ValueError(f"{what} have {x.shape[axis]} entries along axis "
                         f"{axis}, expecting {size}")
    x = np.moveaxis(x, axis, 0)
    return x.reshape(size, -1), x.shape[1:]


def _check_workspace(workspace, nrows, ncols, dtype):
    """Return ``(nrows, ncols)`` view into workspace, or None"""
    if workspace is None:
        return None
    if not isinstance(workspace, np.ndarray) or workspace.ndim != 1:
        raise ValueError("workspace must be a one-dimensional array")
    if workspace.size < nrows * ncols:
        raise ValueError(f"workspace too small: {workspace.size} elements, "
                         f"expecting at least {nrows * ncols}")
    if workspace.dtype != dtype:
        raise ValueError(f"workspace must be of type {np.dtype(dtype)}")
    if not workspace.flags.c_contiguous:
        raise ValueError("workspace must be contiguous")
    return workspace[:nrows * ncols].reshape(nrows, ncols)


def _write_along_axis(op, x2, batch_shape, axis, nrows, dtype, out):
    """Apply ``op`` to the flattened ``x2`` and restore the shape of ``x``.

    ``op(x2, res)`` computes the ``(nrows, -1)`` result matrix, writing into
    ``res`` unless it is None.  If ``out`` is given, the result is stored
    there: directly if its memory layout permits, otherwise by copy.
    """
    ndim = len(batch_shape) + 1
    axis = axis % ndim
    result_shape = list(batch_shape)
    result_shape.insert(axis, nrows)
    result_shape = tuple(result_shape)

    if out is not None:
        if not isinstance(out, np.ndarray):
            raise ValueError("out must be a numpy array")
        if out.shape != result_shape:
            raise ValueError(f"out has shape {out.shape}, expecting "
                             f"{result_shape}")
        if not np.can_cast(dtype, out.dtype, 'same_kind'):
            raise ValueError(f"cannot store result of type {np.dtype(dtype)} "
                             f"in out array of type {out.dtype}")
        if axis == 0 and out.flags.c_contiguous and out.dtype == dtype:
            op(x2, out.reshape(nrows, -1))
            return out

    res = op(x2, None).reshape((nrows,) + tuple(batch_shape))
    res = np.moveaxis(res, 0, axis)
    if out is None:
        return res
    np.copyto(out, res, casting='same_kind')
    return out
