"""Algebraic routines."""

from typing import Tuple
import warnings

import numpy as np
import scipy.linalg

from .basics import Array
from .. import options


def compute_condition_number(x: Array) -> float:
    """Compute the condition number of a square matrix."""
    if x.size == 0:
        return 0
    if not np.isfinite(x).all():
        return np.nan
    try:
        return np.linalg.cond(x.astype(np.float64))
    except scipy.linalg.LinAlgError:
        return np.nan


def precisely_identify_singularity(x: Array) -> Tuple[bool, bool, float]:
    """Compute the condition number of a matrix to identify whether it is nearly singular."""
    singular = False
    successful = True
    condition = np.nan
    if options.singular_tol < np.inf:
        condition = compute_condition_number(x)
        successful = not np.isnan(condition)
        singular = successful and condition > options.singular_tol

    return singular, successful, condition


def precisely_solve(a: Array, b: Array) -> Tuple[Array, bool]:
    """Attempt to precisely solve a system of equations. Nearly singular systems are not considered solved."""
    singular, successful, _ = precisely_identify_singularity(a)
    if singular or not successful:
        return np.full_like(b, np.nan), False
    try:
        with warnings.catch_warnings():
            warnings.filterwarnings('error')
            solved = scipy.linalg.solve(a, b) if b.size > 0 else b
            successful = True
    except (ValueError, scipy.linalg.LinAlgError, scipy.linalg.LinAlgWarning):
        solved = np.full_like(b, np.nan)
        successful = False

    return solved, successful
