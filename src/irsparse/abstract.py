# Copyright (C) 2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others
# SPDX-License-Identifier: MIT

class AbstractBasis:
    r"""Interface of a truncated IR basis.

    A basis holds a set of functions ``u[l]`` on the imaginary-time axis
    together with their Fourier transforms ``uhat[l]`` on the Matsubara axis,
    such that a two-point propagator is expanded as:

    .. math::    G(\tau) \approx \sum_{l=0}^{L-1} g_l U_l(\tau),
                 \qquad
                 \hat G(n) \approx \sum_{l=0}^{L-1} g_l \hat U_l(n),

    with the same expansion coefficients ``g_l`` in both representations.
    With ``gl`` a vector of coefficients, this reads::

        G_tau = basis.u(tau).T @ gl
        G_n = basis.uhat(n).T @ gl

    The right singular functions ``v[l]`` on the real-frequency axis and the
    singular values ``s[l]`` connect the basis to a spectral function.

    There are only two implementations, `FiniteTempBasis` (physical units)
    and `DimensionlessBasis` (reduced variables).  Both are immutable.
    """
    @property
    def u(self):
        r"""Basis functions on the imaginary time axis.

        ``u`` is vectorized over both the function index and the time::

            basis.u[l](tau)     # l-th function at time tau
            basis.u(tau)        # all functions, shape (size,) + tau.shape
        """
        raise NotImplementedError()

    @property
    def uhat(self):
        r"""Fourier transforms of :py:attr:`u` on the Matsubara axis:

        .. math::

           \hat u(n) = \int_0^\beta d\tau \exp(i\pi n \tau/\beta) u(\tau)

        Note:
            The argument is the reduced frequency ``n``, the Matsubara
            frequency in units of ``pi/beta``.  It is odd for fermions
            (``1, 3, 5, ...``) and even for bosons (``0, 2, 4, ...``), and
            other values raise an error.
        """
        raise NotImplementedError()

    @property
    def v(self):
        """Basis functions on the real frequency axis"""
        raise NotImplementedError()

    @property
    def s(self):
        """Singular values, largest first"""
        raise NotImplementedError()

    @property
    def statistics(self):
        """``'F'`` for fermions or ``'B'`` for bosons"""
        raise NotImplementedError()

    def __getitem__(self, index):
        """Return basis for a contiguous range of functions, e.g. `basis[:3]`.

        The singular value expansion is sliced, not recomputed.
        """
        raise NotImplementedError()

    @property
    def shape(self):
        """Shape of the set of basis functions"""
        return self.s.shape

    @property
    def size(self):
        """Number of basis functions"""
        return self.s.size

    @property
    def significance(self):
        """Singular values relative to the largest one.

        Bounds the relative error made by dropping the coefficient of each
        basis function.
        """
        return self.s / self.s[0]

    @property
    def accuracy(self):
        """Relative error bound for expansions in the truncated basis"""
        return self.significance[-1]

    @property
    def lambda_(self):
        """Basis cutoff parameter, `Λ == β * wmax`"""
        raise NotImplementedError()

    @property
    def beta(self):
        """Inverse temperature, or None for a dimensionless basis"""
        raise NotImplementedError()

    @property
    def wmax(self):
        """Frequency cutoff, or None for a dimensionless basis"""
        raise NotImplementedError()

    def default_tau_sampling_points(self):
        """Default sampling points on the imaginary time axis"""
        raise NotImplementedError()

    def default_matsubara_sampling_points(self, *, positive_only=False,
                                          mitigate=True):
        """Default sampling points as reduced Matsubara frequencies

        Arguments:
            positive_only (bool):
                Restrict to ``n >= 0``, for propagators obeying
                ``ghat(-n) == ghat(n).conj()``, i.e., real in imaginary time.
            mitigate (bool):
                Add points next to the outermost frequencies, which keeps
                the condition number low for large bases.
        """
        raise NotImplementedError()

    @property
    def is_well_conditioned(self):
        """Whether sampling on the default points is expected to be stable"""
        return True
