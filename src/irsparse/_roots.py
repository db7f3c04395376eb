# Copyright (C) 2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others
# SPDX-License-Identifier: MIT
"""
Auxiliary module for locating extrema of functions on the integers.
"""
import numpy as np


def discrete_extrema(f, xgrid, rtol=1e-12):
    """Find extrema of an oscillating function on the integers.

    Evaluates ``f`` on the ascending integer ``xgrid`` and looks for the
    places where the slope of ``f`` changes sign.  Each such bracket is then
    narrowed down to the integer with the largest magnitude of ``f`` by
    bisection, assuming ``abs(f)`` is unimodal inside the bracket (as it is
    for Bessel-like functions on a sufficiently fine grid).  The ends of the
    grid count as extrema if ``abs(f)`` decreases inwards or ``f`` changes
    sign right next to them.

    Values of ``f`` no larger than ``rtol`` times the largest magnitude on
    the grid are rounding noise: they neither count as extrema nor as sign
    changes.  Returns the extrema in ascending order, without duplicates.
    """
    xgrid = np.asarray(xgrid)
    if xgrid.ndim != 1 or xgrid.size < 3:
        raise ValueError("grid must be a vector of at least three points")

    fx = f(xgrid)
    absfx = np.abs(fx)
    noise = rtol * absfx.max()

    # A turn at i means that the extremum lies strictly between xgrid[i]
    # and xgrid[i+2].
    falling = np.signbit(np.diff(fx))
    turns = np.flatnonzero(falling[:-1] != falling[1:])
    found = [_refine_extremum(f, xgrid[i], xgrid[i+2], absfx[i], absfx[i+2])
             for i in turns]

    negative = np.signbit(fx)
    if absfx[0] > noise and (absfx[0] > absfx[1] or
                             absfx[1] > noise and negative[0] != negative[1]):
        found.append(xgrid[0])
    if absfx[-1] > noise and (absfx[-1] > absfx[-2] or
                              absfx[-2] > noise and negative[-1] != negative[-2]):
        found.append(xgrid[-1])

    # Brackets of adjacent turns overlap and may yield the same integer
    found = np.unique(np.array(found, dtype=xgrid.dtype))
    if found.size:
        found = found[np.abs(f(found)) > noise]
    return found


def _refine_extremum(f, a, b, absf_a, absf_b):
    """Integer in ``(a, b)`` where ``abs(f)`` is largest"""
    while b - a > 2:
        m = (a + b) // 2
        absf_m = np.abs(f(m))
        absf_n = np.abs(f(m + 1))
        if absf_m > absf_n:
            b, absf_b = m + 1, absf_n
        else:
            a, absf_a = m, absf_m
    if b - a == 2:
        return a + 1
    return a if absf_a > absf_b else b
