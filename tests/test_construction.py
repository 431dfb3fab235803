"""Tests of ownership and diversion matrix construction."""

from typing import Any

import numpy as np
import pytest

from pymerger import build_diversions, build_ownership, exceptions, options


@pytest.mark.parametrize(['owner', 'expected'], [
    pytest.param([1, 2, 3], np.eye(3), id="single-product firms"),
    pytest.param(['A', 'A', 'B'], [[1, 1, 0], [1, 1, 0], [0, 0, 1]], id="string IDs"),
    pytest.param([[7], [7], [7]], np.ones((3, 3)), id="column of IDs"),
    pytest.param([[1, 0.5, 0], [0.5, 1, 0], [0, 0, 1]], [[1, 0.5, 0], [0.5, 1, 0], [0, 0, 1]], id="partial ownership")
])
def test_ownership(owner: Any, expected: Any) -> None:
    """Test that ownership matrices are built from firm IDs and that valid matrices pass through unchanged."""
    ownership = build_ownership(owner, 3)
    np.testing.assert_array_equal(ownership, expected)
    assert ownership.dtype == options.dtype


def test_ownership_properties() -> None:
    """Test that matrices built from IDs are symmetric with a unit diagonal and values in the unit interval."""
    ids = np.random.RandomState(0).choice(4, 20)
    ownership = build_ownership(ids)
    np.testing.assert_array_equal(ownership, ownership.T)
    np.testing.assert_array_equal(np.diag(ownership), 1)
    assert ((ownership == 0) | (ownership == 1)).all()


@pytest.mark.parametrize(['owner', 'expected'], [
    pytest.param('monopoly', np.ones((3, 3)), id="monopoly"),
    pytest.param('single', np.eye(3), id="single"),
])
def test_special_ownership(owner: str, expected: Any) -> None:
    """Test that special cases of ownership are supported."""
    np.testing.assert_array_equal(build_ownership(owner, 3), expected)


@pytest.mark.parametrize('owner', [
    pytest.param([[1, 1.5, 0], [0, 1, 0], [0, 0, 1]], id="value above one"),
    pytest.param([[1, -0.5, 0], [0, 1, 0], [0, 0, 1]], id="negative value"),
    pytest.param([[1, np.nan, 0], [0, 1, 0], [0, 0, 1]], id="missing value"),
    pytest.param(np.eye(2), id="too few rows"),
    pytest.param(np.ones((3, 2)), id="not square"),
    pytest.param([1, 2], id="too few IDs"),
    pytest.param('duopoly', id="unknown special case")
])
def test_invalid_ownership(owner: Any) -> None:
    """Test that invalid ownership structures are rejected."""
    with pytest.raises(exceptions.InvalidOwnershipError):
        build_ownership(owner, 3)


def test_synthesized_diversions() -> None:
    """Test that diversion ratios proportional to shares have non-negative off-diagonal elements, perturbed diagonal
    elements, and rows that sum to a non-positive number.
    """
    shares = np.array([0.2, 0.3, 0.5])
    diversions = build_diversions(shares)
    off_diagonal = diversions[~np.eye(3, dtype=bool)]
    assert (off_diagonal >= 0).all()
    np.testing.assert_allclose(np.diag(diversions), -1 - options.diversion_perturbation, rtol=0, atol=0)
    assert (diversions.sum(axis=1) <= 0).all()
    np.testing.assert_allclose(diversions[0, 1], 0.3 / 0.8, rtol=1e-14, atol=0)
    np.testing.assert_allclose(diversions.sum(axis=1), -options.diversion_perturbation, rtol=0, atol=1e-14)


def test_single_product_diversions() -> None:
    """Test that a single product with the entire market has no diversion to other products."""
    np.testing.assert_array_equal(build_diversions([1.0]), [[-1 - options.diversion_perturbation]])


def test_exact_diagonal_perturbation() -> None:
    """Test that supplied diagonal diversion ratios of exactly negative one are perturbed so that rows which sum to
    zero do not make calibration degenerate, while other diagonal elements are left alone.
    """
    supplied = np.array([
        [-1, 0.6, 0.4],
        [0.3, -1 + 1e-7, 0.2],
        [0.5, 0.5, -1]
    ])
    diversions = build_diversions(np.full(3, 1 / 3), supplied)
    expected = supplied.copy()
    expected[0, 0] = expected[2, 2] = -1 - options.diversion_perturbation
    np.testing.assert_array_equal(diversions, expected)
    assert (diversions.sum(axis=1) < 0).all()


@pytest.mark.parametrize('supplied', [
    pytest.param([[-1, 0.5], [0.5, -1]], id="wrong shape"),
    pytest.param([[-0.9, 0.5, 0.4], [0.3, -1, 0.2], [0.5, 0.5, -1]], id="diagonal far from negative one"),
    pytest.param([[-1, -0.1, 0.4], [0.3, -1, 0.2], [0.5, 0.5, -1]], id="negative off-diagonal"),
    pytest.param([[-1, 0.7, 0.4], [0.3, -1, 0.2], [0.5, 0.5, -1]], id="positive row sum"),
    pytest.param([[-1, np.inf, 0.4], [0.3, -1, 0.2], [0.5, 0.5, -1]], id="infinite value")
])
def test_invalid_diversions(supplied: Any) -> None:
    """Test that invalid diversion ratios are rejected."""
    with pytest.raises(exceptions.InputValidationError):
        build_diversions(np.full(3, 1 / 3), supplied)


def test_rounded_diagonal_perturbation() -> None:
    """Test that supplied diagonal diversion ratios that differ from negative one by rounding error are perturbed like
    exact ones.
    """
    supplied = np.array([
        [-np.nextafter(1, 2), 0.6, 0.4],
        [0.3, -1 + 1e-10, 0.2],
        [0.5, 0.5, -1 - 1e-9]
    ])
    assert supplied[0, 0] != -1
    diversions = build_diversions(np.full(3, 1 / 3), supplied)
    np.testing.assert_array_equal(np.diag(diversions), -1 - options.diversion_perturbation)
    assert (diversions.sum(axis=1) < 0).all()
