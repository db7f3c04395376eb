"""
Sparse intermediate representation (IR) for many-body propagators
==================================================================

This library constructs the intermediate representation of imaginary-time
propagators from the singular value expansion of the analytic continuation
kernel, and provides sparse sampling on top of it:

 - on-the-fly computation of basis functions for arbitrary cutoff Λ
 - basis functions on imaginary time, Matsubara and real frequencies
 - routines for sparse sampling in imaginary time and Matsubara frequency
"""
__copyright__ = "2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others"
__license__ = "MIT"
__version__ = "0.1.0"

from ._util import ConvergenceError
from .kernel import RegularizedBoseKernel, LogisticKernel
from .sve import compute as compute_sve, SVEResult
from .basis import FiniteTempBasis, DimensionlessBasis
from .sampling import TauSampling, MatsubaraSampling, ConditioningWarning
