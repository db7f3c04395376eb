# Copyright (C) 2020-2022 Markus Wallerberger, Hiroshi Shinaoka, and others
# SPDX-License-Identifier: MIT
#
# This file is available from EVERY test in the directory.  This is why
# we use it to compute the expansions ONCE.
import pytest
import irsparse


@pytest.fixture(scope="package")
def sve_logistic():
    """SVE of the logistic kernel for different cutoffs Lambda"""
    print("Precomputing SVEs for logistic kernel ...")
    return {
        10:     irsparse.compute_sve(irsparse.LogisticKernel(10)),
        42:     irsparse.compute_sve(irsparse.LogisticKernel(42)),
        10_000: irsparse.compute_sve(irsparse.LogisticKernel(10_000))
        }


@pytest.fixture(scope="package")
def sve_reg_bose():
    """SVE of the regularized Bose kernel for different cutoffs Lambda"""
    print("Precomputing SVEs for regularized Bose kernel ...")
    return {
        10:     irsparse.compute_sve(irsparse.RegularizedBoseKernel(10)),
        10_000: irsparse.compute_sve(irsparse.RegularizedBoseKernel(10_000))
        }
